"""Service facade wiring the store, issuance, export and trust-store components."""

from pathlib import Path
from typing import Iterable, Optional, Union
import logging

from pydantic import ValidationError as PydanticValidationError

from ..config import PKISettings
from ..crypto_utils import CertificateFormatConverter
from ..errors import ValidationError
from .ca_manager import CAManager
from .cert_issuer import CertificateIssuer
from .exporter import BundleExporter
from .inspector import CertificateInspector
from .models import CASubject, CertificateDetails, InstallResult
from .packager import InstallerArtifact, InstallerPackager
from .store import CertificateStore
from .trust_store import TrustStore, TrustStoreInstaller, select_trust_store

logger = logging.getLogger(__name__)


class PKIService:
    """
    Entry point for every local PKI operation.

    The HTTP application and the CLI are thin callers of this class; all
    failures surface as `localca.errors.PKIError` subclasses.
    """

    def __init__(self, settings: Optional[PKISettings] = None, trust_store: Optional[TrustStore] = None):
        """
        Initialize the service.

        Args:
            settings: Runtime settings (defaults to PKISettings.from_env())
            trust_store: Trust store implementation (defaults to the host's)
        """
        self.settings = settings or PKISettings.from_env()
        self.store = CertificateStore(self.settings.output_dir)
        self.ca_manager = CAManager(self.store, self.settings)
        self.cert_issuer = CertificateIssuer(self.ca_manager, self.store, self.settings)
        self.inspector = CertificateInspector(self.store, self.cert_issuer)
        self.exporter = BundleExporter(self.store, self.settings)
        self.trust_store = trust_store or select_trust_store(timeout=self.settings.command_timeout)
        self.installer = TrustStoreInstaller(self.ca_manager, self.trust_store)
        self.packager = InstallerPackager(self.ca_manager, self.store)

        logger.info(f"PKI service ready (output: {self.store.root}, trust store: {self.trust_store.name})")

    # CAs

    def create_ca(self, subject: Union[CASubject, dict], expiry_days: Optional[int] = None) -> str:
        if isinstance(subject, dict):
            try:
                subject = CASubject(**subject)
            except PydanticValidationError as e:
                errors = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
                raise ValidationError(f"invalid subject: {errors}", operation="create CA") from e
        return self.ca_manager.create_ca(subject, expiry_days)

    def list_cas(self) -> list[str]:
        return self.ca_manager.list_cas()

    def delete_ca(self, name: str):
        self.ca_manager.delete_ca(name)

    def get_ca_certificate_pem(self, name: str) -> bytes:
        return self.ca_manager.get_ca_certificate_pem(name)

    def get_ca_certificate_der(self, name: str) -> bytes:
        return CertificateFormatConverter.pem_to_der(self.get_ca_certificate_pem(name))

    # Leaf certificates

    def create_certificate(
        self,
        common_name: str,
        sans: Union[str, Iterable[str], None],
        issuer_ca_name: str,
        expiry_days: Optional[int] = None
    ) -> str:
        return self.cert_issuer.create_certificate(common_name, sans, issuer_ca_name, expiry_days)

    def list_certificates(self, issuer_ca_name: Optional[str] = None) -> list[str]:
        return self.cert_issuer.list_certificates(issuer_ca_name)

    def delete_certificate(self, identifier: str):
        self.cert_issuer.delete_certificate(identifier)

    def list_orphaned_certificates(self) -> list[str]:
        return self.cert_issuer.list_orphaned_certificates()

    def inspect_certificate(self, identifier: str) -> CertificateDetails:
        return self.inspector.inspect(identifier)

    def inspect_ca(self, name: str) -> CertificateDetails:
        self.store.validate_ca_name(name, "inspect CA")
        return self.inspector.inspect(name)

    # Export and distribution

    def export_bundle(self, identifier: str, password: str = "") -> bytes:
        if not password:
            logger.warning(f"Exporting {identifier} without a password; the private key is not encrypted")
        return self.exporter.export_bundle(identifier, password)

    def write_bundle(self, identifier: str, password: str = "") -> Path:
        if not password:
            logger.warning(f"Exporting {identifier} without a password; the private key is not encrypted")
        return self.exporter.write_bundle(identifier, password)

    def export_chain_pem(self, identifier: str) -> bytes:
        return self.exporter.export_chain_pem(identifier)

    def generate_installer(self, ca_name: str) -> InstallerArtifact:
        return self.packager.generate_installer(ca_name)

    def write_installer(self, ca_name: str) -> Path:
        return self.packager.write_installer(ca_name)

    # Trust store

    def install_ca(self, ca_name: str) -> InstallResult:
        return self.installer.install(ca_name)

    def is_privileged(self) -> bool:
        return self.installer.is_privileged()
