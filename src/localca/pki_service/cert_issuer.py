"""Certificate issuance and management module."""

from typing import Iterable, Optional, Union
import logging

from cryptography import x509

from ..config import PKISettings
from ..crypto_utils import X509Utils, CertificateVerifier, is_san_token, parse_san_list
from ..errors import ConflictError, CorruptError, CryptoError, NotFoundError, ValidationError
from .ca_manager import CAManager, resolve_expiry
from .store import CertificateStore, StoredEntry, is_leaf_identifier, leaf_identifier, split_leaf_identifier

logger = logging.getLogger(__name__)


class CertificateIssuer:
    """Handles leaf certificate issuance and management."""

    def __init__(self, ca_manager: CAManager, store: CertificateStore, settings: PKISettings):
        """
        Initialize Certificate Issuer.

        Args:
            ca_manager: CA Manager instance
            store: Certificate store for issued pairs
            settings: Key sizes, default validity and retry limits
        """
        self.ca_manager = ca_manager
        self.store = store
        self.settings = settings

        logger.info(f"Certificate Issuer initialized with store: {store.root}")

    def create_certificate(
        self,
        common_name: str,
        sans: Union[str, Iterable[str], None],
        issuer_ca_name: str,
        expiry_days: Optional[int] = None
    ) -> str:
        """
        Issue a leaf certificate signed by a stored CA.

        The common name is the first SAN unless it contains whitespace or
        commas; the remaining SANs follow in the order given with duplicates
        dropped.

        Args:
            common_name: Common name for the certificate
            sans: DNS names / IP addresses, comma or whitespace separated
            issuer_ca_name: Name of the signing CA
            expiry_days: Validity in days (defaults to settings)

        Returns:
            Leaf identifier `<CN>_signed-by_<CA>`

        Raises:
            ValidationError: If the CN, CA name, SANs or expiry are invalid
            NotFoundError: If the issuing CA does not exist
            ConflictError: If a certificate with this CN was already issued by this CA
            CryptoError: If key generation or signing fails
        """
        operation = "create certificate"
        common_name = (common_name or "").strip()
        issuer_ca_name = (issuer_ca_name or "").strip()

        if not issuer_ca_name:
            raise ValidationError("an issuing CA must be selected", entity=common_name or None, operation=operation)
        if not common_name:
            raise ValidationError("common name (CN) cannot be empty", operation=operation)

        self.store.validate_ca_name(issuer_ca_name, operation)
        identifier = leaf_identifier(common_name, issuer_ca_name)
        self.store.validate_name(identifier, operation)
        validity_days = resolve_expiry(
            expiry_days, self.settings.default_cert_expiry_days, self.settings.max_expiry_days, identifier, operation
        )
        # a CN with separators is a display name, not a host name
        san_list = parse_san_list(common_name if is_san_token(common_name) else None, sans)

        logger.info(f"Issuing certificate for: {common_name} (issuer: {issuer_ca_name})")

        ca = self.ca_manager.load_ca(issuer_ca_name)

        if self.store.exists(identifier):
            raise ConflictError("certificate already exists for this CA", entity=identifier, operation=operation)

        private_key = X509Utils.generate_private_key(self.settings.leaf_key_size)
        not_before, not_after = X509Utils.validity_window(validity_days)

        for attempt in range(1, self.settings.serial_retry_limit + 1):
            serial = x509.random_serial_number()
            if serial in self.store.serial_numbers(issuer_ca_name):
                logger.warning(f"Serial collision on attempt {attempt} for {identifier}, retrying")
                continue

            cert = X509Utils.create_leaf_certificate(
                common_name=common_name,
                san_list=san_list,
                private_key=private_key,
                ca_private_key=ca.private_key,
                ca_cert=ca.certificate,
                serial_number=serial,
                not_before=not_before,
                not_after=not_after
            )

            with self.store.write_locked():
                # another thread may have committed the same serial meanwhile
                if serial in self.store.serial_numbers(issuer_ca_name):
                    logger.warning(f"Serial collision at commit on attempt {attempt} for {identifier}, retrying")
                    continue
                self.store.save(StoredEntry(identifier=identifier, certificate=cert, private_key=private_key))

            logger.info(f"Certificate issued: {identifier} (serial: {cert.serial_number})")
            return identifier

        raise CryptoError(
            f"no unused serial number after {self.settings.serial_retry_limit} attempts",
            entity=identifier, operation=operation
        )

    def list_certificates(self, issuer_ca_name: Optional[str] = None) -> list[str]:
        return self.store.list_certificates(issuer_name=issuer_ca_name)

    def delete_certificate(self, identifier: str):
        """
        Delete a leaf certificate and its key.

        Raises:
            ValidationError: If the identifier is not a leaf identifier
            NotFoundError: If the certificate does not exist
        """
        if not is_leaf_identifier(identifier):
            raise ValidationError("not a leaf certificate identifier", entity=identifier, operation="delete certificate")
        try:
            self.store.delete(identifier)
        except NotFoundError:
            raise NotFoundError("certificate not found", entity=identifier, operation="delete certificate") from None

    def resolve_issuer(self, identifier: str) -> Optional[x509.Certificate]:
        """
        Look up the issuing CA of a leaf by name.

        Returns:
            The CA certificate if it still exists and signed this leaf, else None
        """
        _, ca_name = split_leaf_identifier(identifier)
        if ca_name not in self.store.list_cas():
            return None

        leaf = self.store.load_certificate(identifier, operation="resolve issuer")
        try:
            ca_cert = self.store.load_certificate(ca_name, operation="resolve issuer")
        except (NotFoundError, CorruptError) as e:
            logger.warning(f"Issuer of {identifier} is unusable: {e}")
            return None

        if not CertificateVerifier.is_issued_by(leaf, ca_cert):
            return None
        return ca_cert

    def is_orphaned(self, identifier: str) -> bool:
        return self.resolve_issuer(identifier) is None

    def list_orphaned_certificates(self) -> list[str]:
        """List leaves whose issuing CA is missing or was replaced."""
        orphans = []
        for identifier in self.list_certificates():
            try:
                if self.is_orphaned(identifier):
                    orphans.append(identifier)
            except CorruptError as e:
                logger.warning(f"Skipping unreadable certificate {identifier}: {e}")
        return orphans
