"""Certificate Authority management module."""

from typing import Optional
import logging

from cryptography import x509

from ..config import PKISettings
from ..crypto_utils import X509Utils
from ..errors import ConflictError, CryptoError, NotFoundError, ValidationError
from .models import CASubject
from .store import CertificateStore, StoredEntry

logger = logging.getLogger(__name__)


def resolve_expiry(expiry_days: Optional[int], default: int, maximum: int, entity: str, operation: str) -> int:
    """Apply the default validity and check bounds."""
    if expiry_days is None:
        return default
    if expiry_days <= 0:
        raise ValidationError(
            f"expiry must be a positive number of days, got {expiry_days}",
            entity=entity, operation=operation
        )
    if expiry_days > maximum:
        raise ValidationError(
            f"expiry of {expiry_days} days exceeds the maximum of {maximum}",
            entity=entity, operation=operation
        )
    return expiry_days


class CAManager:
    """Manages Certificate Authority creation, loading and deletion."""

    def __init__(self, store: CertificateStore, settings: PKISettings):
        """
        Initialize CA Manager.

        Args:
            store: Certificate store holding CA pairs
            settings: Key sizes, default validity and retry limits
        """
        self.store = store
        self.settings = settings

        logger.info(f"CA Manager initialized with store: {store.root}")

    def create_ca(self, subject: CASubject, expiry_days: Optional[int] = None) -> str:
        """
        Create a new self-signed CA.

        Args:
            subject: Subject fields; common_name is required
            expiry_days: Validity in days (defaults to settings)

        Returns:
            Name of the new CA

        Raises:
            ValidationError: If the name, subject or expiry is invalid
            ConflictError: If a CA with this name exists
            CryptoError: If key generation or signing fails
        """
        operation = "create CA"
        name = (subject.common_name or "").strip()
        if not name:
            raise ValidationError("CA common name cannot be empty", operation=operation)
        self.store.validate_ca_name(name, operation)
        validity_days = resolve_expiry(
            expiry_days, self.settings.default_ca_expiry_days, self.settings.max_expiry_days, name, operation
        )

        # save() re-checks under the write lock
        if self.store.exists(name):
            raise ConflictError("a CA with this name already exists", entity=name, operation=operation)

        logger.info(f"Creating CA: {name} (valid for {validity_days} days)")

        x509_subject = X509Utils.build_subject(
            common_name=name,
            organization=subject.organization or self.settings.default_organization,
            country=subject.country,
            state=subject.state,
            locality=subject.locality
        )
        private_key = X509Utils.generate_private_key(self.settings.ca_key_size)
        not_before, not_after = X509Utils.validity_window(validity_days)

        with self.store.write_locked():
            used = self.store.serial_numbers()
            cert = None
            for attempt in range(1, self.settings.serial_retry_limit + 1):
                serial = x509.random_serial_number()
                if serial in used:
                    logger.warning(f"Serial collision on attempt {attempt} for CA {name}, retrying")
                    continue
                cert = X509Utils.create_ca_certificate(private_key, x509_subject, serial, not_before, not_after)
                break

            if cert is None:
                raise CryptoError(
                    f"no unused serial number after {self.settings.serial_retry_limit} attempts",
                    entity=name, operation=operation
                )

            self.store.save(StoredEntry(identifier=name, certificate=cert, private_key=private_key))

        logger.info(f"CA created: {name} (serial: {cert.serial_number})")
        return name

    def load_ca(self, name: str) -> StoredEntry:
        """
        Load a CA certificate and key.

        Raises:
            NotFoundError: If the CA does not exist
            CorruptError: If its files fail to parse
        """
        return self.store.load_ca(name)

    def list_cas(self) -> list[str]:
        return self.store.list_cas()

    def delete_ca(self, name: str):
        """
        Delete a CA's certificate and key.

        Leaves signed by this CA are kept and become orphaned.

        Raises:
            NotFoundError: If the CA does not exist
        """
        self.store.validate_ca_name(name, "delete CA")
        if not self.store.cert_path(name).exists() and not self.store.key_path(name).exists():
            raise NotFoundError("CA not found", entity=name, operation="delete CA")

        orphans = self.store.list_certificates(issuer_name=name)
        self.store.delete(name)

        if orphans:
            logger.warning(f"Deleted CA {name}; {len(orphans)} certificate(s) are now orphaned")
        else:
            logger.info(f"Deleted CA: {name}")

    def get_ca_certificate(self, name: str) -> x509.Certificate:
        """Load only the public CA certificate."""
        self.store.validate_ca_name(name, "load CA certificate")
        return self.store.load_certificate(name, operation="load CA certificate")

    def get_ca_certificate_pem(self, name: str) -> bytes:
        return X509Utils.certificate_to_pem(self.get_ca_certificate(name))
