"""PKCS#12 export of leaf certificates with their chain and key."""

from pathlib import Path
import logging

from ..config import PKISettings
from ..crypto_utils import CertificateFormatConverter, CertificateVerifier, X509Utils
from ..errors import CryptoError, NotFoundError, ValidationError
from .store import CertificateStore, is_leaf_identifier, split_leaf_identifier

logger = logging.getLogger(__name__)


class BundleExporter:
    """Produces portable bundles of a leaf certificate, its issuing CA and its key."""

    def __init__(self, store: CertificateStore, settings: PKISettings):
        self.store = store
        self.settings = settings
        self.converter = CertificateFormatConverter()

    def _load_chain(self, identifier: str, operation: str):
        if not is_leaf_identifier(identifier):
            raise ValidationError("only leaf certificates can be exported", entity=identifier, operation=operation)

        leaf = self.store.load_entry(identifier, operation=operation)
        _, ca_name = split_leaf_identifier(identifier)
        try:
            ca_cert = self.store.load_certificate(ca_name, operation=operation)
        except NotFoundError:
            raise NotFoundError(
                f"issuing CA '{ca_name}' not found; the certificate is orphaned",
                entity=identifier, operation=operation
            ) from None
        if not CertificateVerifier.is_issued_by(leaf.certificate, ca_cert):
            raise NotFoundError(
                f"stored CA '{ca_name}' did not sign this certificate; it is orphaned",
                entity=identifier, operation=operation
            )
        return leaf, ca_cert

    def export_bundle(self, identifier: str, password: str = "") -> bytes:
        """
        Export a leaf certificate, its issuing CA and its key as PKCS#12.

        An empty password yields an unencrypted bundle; warning the user
        about that is the caller's job.

        Args:
            identifier: Leaf identifier
            password: Bundle password

        Returns:
            PKCS#12 bytes

        Raises:
            ValidationError: If identifier names a CA
            NotFoundError: If the leaf or its issuing CA is missing
            CorruptError: If stored files cannot be parsed
            CryptoError: If encoding fails
        """
        operation = "export bundle"
        leaf, ca_cert = self._load_chain(identifier, operation)
        friendly_name = X509Utils.get_common_name(leaf.certificate.subject) or identifier

        logger.info(f"Exporting PKCS#12 bundle: {identifier} (encrypted: {bool(password)})")

        try:
            return self.converter.to_pkcs12(
                cert=leaf.certificate,
                key=leaf.private_key,
                ca_chain=[ca_cert],
                password=password.encode("utf-8") if password else None,
                friendly_name=friendly_name.encode("utf-8"),
                legacy=self.settings.export_legacy_encryption
            )
        except (ValueError, TypeError) as e:
            raise CryptoError(f"PKCS#12 encoding failed: {e}", entity=identifier, operation=operation) from e

    def write_bundle(self, identifier: str, password: str = "") -> Path:
        """
        Export and write `<root>/exports/<identifier>.pfx`.

        Nothing is written if the export fails.
        """
        data = self.export_bundle(identifier, password)
        return self.store.write_artifact(f"{identifier}.pfx", data)

    def export_chain_pem(self, identifier: str) -> bytes:
        """Leaf certificate followed by its issuing CA, PEM encoded (no key)."""
        leaf, ca_cert = self._load_chain(identifier, "export chain")
        return self.converter.create_chain_bundle(
            X509Utils.certificate_to_pem(leaf.certificate),
            X509Utils.certificate_to_pem(ca_cert)
        )
