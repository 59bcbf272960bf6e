"""Unit tests for trust store installation with a fake command runner."""

import subprocess

import pytest

from localca.crypto_utils import CertificateVerifier, X509Utils
from localca.errors import (
    CommandFailedError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    StorageError,
    UnsupportedError,
)
from localca.pki_service.trust_store import (
    LinuxTrustStore,
    MacOSTrustStore,
    TrustStoreInstaller,
    UnsupportedTrustStore,
    WindowsTrustStore,
    run_command,
    safe_label,
    select_trust_store,
)

from ..utils.test_helpers import CertificateFactory, FakeRunner


@pytest.fixture
def ca_cert():
    cert, _ = CertificateFactory.create_ca_certificate("Trust CA")
    return cert


def make_privileged(monkeypatch, trust_store, privileged=True):
    monkeypatch.setattr(trust_store, "is_privileged", lambda: privileged)


class TestSelectTrustStore:

    @pytest.mark.parametrize("system,cls", [
        ("Windows", WindowsTrustStore),
        ("Darwin", MacOSTrustStore),
        ("Linux", LinuxTrustStore),
        ("FreeBSD", UnsupportedTrustStore),
    ])
    def test_selects_by_platform(self, system, cls):
        assert isinstance(select_trust_store(system, runner=FakeRunner()), cls)

    def test_unsupported_reports_name(self):
        store = select_trust_store("Plan9", runner=FakeRunner())
        assert store.name == "plan9"
        assert not store.supported


class TestInstaller:
    """Test the install flow against the Linux implementation."""

    def test_install_writes_anchor_and_updates(self, service, root_ca, trust_store, fake_runner, monkeypatch):
        make_privileged(monkeypatch, trust_store)

        result = service.install_ca(root_ca)

        anchor = trust_store.anchors_dir / f"{safe_label(root_ca)}.crt"
        assert anchor.is_file()
        assert X509Utils.load_certificate(anchor.read_bytes()) == service.store.load_certificate(root_ca)
        assert fake_runner.calls == [["update-ca-certificates"]]
        assert result.already_installed is False
        assert result.trust_store == "linux"

    def test_install_is_idempotent(self, service, root_ca, trust_store, fake_runner, monkeypatch):
        """Test that a second install detects the thumbprint and adds nothing."""
        make_privileged(monkeypatch, trust_store)
        service.install_ca(root_ca)

        result = service.install_ca(root_ca)

        assert result.already_installed is True
        assert len(list(trust_store.anchors_dir.iterdir())) == 1
        assert fake_runner.calls == [["update-ca-certificates"]]

    def test_not_privileged(self, service, root_ca, trust_store, fake_runner, monkeypatch):
        """Test that missing privilege is reported before any command runs."""
        make_privileged(monkeypatch, trust_store, privileged=False)

        with pytest.raises(PermissionDeniedError):
            service.install_ca(root_ca)

        assert fake_runner.calls == []
        assert not trust_store.anchors_dir.exists()

    def test_missing_ca(self, service, trust_store, monkeypatch):
        make_privileged(monkeypatch, trust_store)
        with pytest.raises(NotFoundError):
            service.install_ca("Nope")

    def test_unsupported_platform(self, service, root_ca):
        installer = TrustStoreInstaller(service.ca_manager, UnsupportedTrustStore("Plan9"))
        with pytest.raises(UnsupportedError):
            installer.install(root_ca)

    def test_command_failure(self, service, root_ca, trust_store, fake_runner, monkeypatch):
        make_privileged(monkeypatch, trust_store)
        fake_runner.respond("update-ca-certificates", returncode=1, stderr="boom")

        with pytest.raises(CommandFailedError) as exc_info:
            service.install_ca(root_ca)
        assert exc_info.value.returncode == 1
        assert "boom" in str(exc_info.value)

    def test_command_timeout(self, service, root_ca, trust_store, fake_runner, monkeypatch):
        make_privileged(monkeypatch, trust_store)
        fake_runner.raise_for("update-ca-certificates", OperationTimeoutError("timed out"))

        with pytest.raises(OperationTimeoutError):
            service.install_ca(root_ca)

    def test_is_privileged(self, service, trust_store, monkeypatch):
        make_privileged(monkeypatch, trust_store, privileged=False)
        assert service.is_privileged() is False
        make_privileged(monkeypatch, trust_store)
        assert service.is_privileged() is True


class TestWindowsTrustStore:

    def test_is_installed_queries_thumbprint(self, ca_cert):
        runner = FakeRunner()
        store = WindowsTrustStore(runner=runner)

        assert store.is_installed(ca_cert)
        thumbprint = CertificateVerifier.get_certificate_fingerprint(ca_cert, "sha1")
        assert runner.calls == [["certutil", "-store", "Root", thumbprint]]

    def test_not_installed(self, ca_cert):
        runner = FakeRunner()
        runner.respond("certutil", returncode=0x80092004)
        assert not WindowsTrustStore(runner=runner).is_installed(ca_cert)

    def test_install_adds_to_root(self, ca_cert):
        runner = FakeRunner()
        WindowsTrustStore(runner=runner).install(ca_cert, "localca-Trust_CA")

        args = runner.calls[0]
        assert args[:4] == ["certutil", "-addstore", "-f", "Root"]
        assert args[4].endswith(".pem")

    def test_not_privileged_off_windows(self):
        assert WindowsTrustStore(runner=FakeRunner()).is_privileged() is False


class TestMacOSTrustStore:

    def test_is_installed_matches_sha1(self, ca_cert):
        runner = FakeRunner()
        thumbprint = CertificateVerifier.get_certificate_fingerprint(ca_cert, "sha1").upper()
        runner.respond("security", stdout=f"SHA-1 hash: {thumbprint}\nkeychain: System\n")

        assert MacOSTrustStore(runner=runner).is_installed(ca_cert)

    def test_is_not_installed(self, ca_cert):
        runner = FakeRunner()
        runner.respond("security", stdout="SHA-1 hash: 00FF\n")
        assert not MacOSTrustStore(runner=runner).is_installed(ca_cert)

    def test_install_command(self, ca_cert):
        runner = FakeRunner()
        MacOSTrustStore(runner=runner).install(ca_cert, "localca-Trust_CA")

        args = runner.calls[0]
        assert args[:7] == [
            "security", "add-trusted-cert", "-d", "-r", "trustRoot", "-k", "/Library/Keychains/System.keychain"
        ]


class TestLinuxTrustStore:

    def test_ignores_unreadable_anchors(self, temp_dir, ca_cert):
        anchors = temp_dir / "anchors"
        anchors.mkdir()
        (anchors / "broken.crt").write_bytes(b"nonsense")
        store = LinuxTrustStore(runner=FakeRunner(), anchors_dir=anchors, update_command=["update-ca-trust", "extract"])

        assert not store.is_installed(ca_cert)
        store.install(ca_cert, "localca-Trust_CA")
        assert store.is_installed(ca_cert)

    def test_fedora_update_command(self, temp_dir, ca_cert):
        runner = FakeRunner()
        store = LinuxTrustStore(runner=runner, anchors_dir=temp_dir / "a", update_command=["update-ca-trust", "extract"])
        store.install(ca_cert, "localca-Trust_CA")
        assert runner.calls == [["update-ca-trust", "extract"]]

    def test_failed_write_leaves_no_temp_file(self, temp_dir, ca_cert, monkeypatch):
        """Test that a failed anchor write removes its temp file and skips the update."""
        runner = FakeRunner()
        anchors = temp_dir / "anchors"
        store = LinuxTrustStore(runner=runner, anchors_dir=anchors, update_command=["update-ca-certificates"])

        def failing_chmod(path, mode):
            raise OSError("read-only file system")

        monkeypatch.setattr("localca.pki_service.trust_store.os.chmod", failing_chmod)

        with pytest.raises(StorageError):
            store.install(ca_cert, "localca-Trust_CA")

        assert list(anchors.iterdir()) == []
        assert runner.calls == []

    def test_denied_write_is_permission_error(self, temp_dir, ca_cert, monkeypatch):
        store = LinuxTrustStore(runner=FakeRunner(), anchors_dir=temp_dir / "anchors",
                                update_command=["update-ca-certificates"])

        def denied_replace(src, dst):
            raise PermissionError("denied")

        monkeypatch.setattr("localca.pki_service.trust_store.os.replace", denied_replace)

        with pytest.raises(PermissionDeniedError):
            store.install(ca_cert, "localca-Trust_CA")
        assert list((temp_dir / "anchors").iterdir()) == []


class TestRunCommand:

    def test_timeout(self, monkeypatch):
        def fake_run(*args, **kwargs):
            raise subprocess.TimeoutExpired(cmd="slow", timeout=1)

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(OperationTimeoutError):
            run_command(["slow"], timeout=1)

    def test_missing_executable(self, monkeypatch):
        def fake_run(*args, **kwargs):
            raise FileNotFoundError("no such file")

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(UnsupportedError):
            run_command(["certutil"], timeout=1)


@pytest.mark.parametrize("name,expected", [
    ("Root-A", "localca-Root-A"),
    ("My Root CA", "localca-My_Root_CA"),
])
def test_safe_label(name, expected):
    assert safe_label(name) == expected
