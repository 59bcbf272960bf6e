"""Pytest configuration and shared fixtures for PKI testing."""

import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator

from localca.config import PKISettings
from localca.pki_service.models import CASubject
from localca.pki_service.service import PKIService
from localca.pki_service.store import CertificateStore
from localca.pki_service.trust_store import LinuxTrustStore

from .utils.test_helpers import FakeRunner


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test artifacts."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def settings(temp_dir: Path) -> PKISettings:
    """Settings with small keys so tests stay fast."""
    return PKISettings(
        output_dir=temp_dir / "output",
        ca_key_size=2048,
        leaf_key_size=2048,
    )


@pytest.fixture
def store(settings: PKISettings) -> CertificateStore:
    return CertificateStore(settings.output_dir)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def trust_store(temp_dir: Path, fake_runner: FakeRunner) -> LinuxTrustStore:
    """Linux trust store writing anchors into the temp dir and never running real commands."""
    return LinuxTrustStore(
        runner=fake_runner,
        timeout=5,
        anchors_dir=temp_dir / "anchors",
        update_command=["update-ca-certificates"],
    )


@pytest.fixture
def service(settings: PKISettings, trust_store: LinuxTrustStore) -> PKIService:
    return PKIService(settings, trust_store=trust_store)


@pytest.fixture
def root_ca(service: PKIService) -> str:
    """The 'Root-A' CA used across scenarios."""
    return service.create_ca(CASubject(common_name="Root-A", country="GB"), expiry_days=3650)


@pytest.fixture
def device_cert(service: PKIService, root_ca: str) -> str:
    """Leaf 'device1.local' signed by Root-A."""
    return service.create_certificate("device1.local", "device1.local,10.0.0.5", root_ca, expiry_days=730)
