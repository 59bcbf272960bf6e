"""Read-only certificate inspection."""

import logging

from cryptography import x509
from cryptography.x509.oid import NameOID

from ..crypto_utils import X509Utils, CertificateVerifier
from .cert_issuer import CertificateIssuer
from .models import CertificateDetails
from .store import CertificateStore, is_leaf_identifier, split_leaf_identifier

logger = logging.getLogger(__name__)

_SUBJECT_FIELDS = {
    NameOID.COMMON_NAME: "common_name",
    NameOID.COUNTRY_NAME: "country",
    NameOID.STATE_OR_PROVINCE_NAME: "state",
    NameOID.LOCALITY_NAME: "locality",
    NameOID.ORGANIZATION_NAME: "organization",
}


class CertificateInspector:
    """Extracts structured metadata from stored certificates without touching keys."""

    def __init__(self, store: CertificateStore, cert_issuer: CertificateIssuer):
        self.store = store
        self.cert_issuer = cert_issuer

    def inspect(self, identifier: str) -> CertificateDetails:
        """
        Describe a stored CA or leaf certificate.

        Args:
            identifier: CA name or leaf identifier

        Returns:
            CertificateDetails; leaves whose CA is gone are flagged orphaned

        Raises:
            NotFoundError: If nothing is stored under identifier
            CorruptError: If the certificate cannot be parsed
        """
        cert = self.store.load_certificate(identifier, operation="inspect certificate")

        issuer_name = None
        orphaned = False
        if is_leaf_identifier(identifier):
            _, issuer_name = split_leaf_identifier(identifier)
            orphaned = self.cert_issuer.is_orphaned(identifier)
            if orphaned:
                logger.warning(f"Certificate {identifier} is orphaned: issuer '{issuer_name}' is not available")

        dns_names, ip_addresses = self.get_sans(cert)

        return CertificateDetails(
            identifier=identifier,
            subject_common_name=X509Utils.get_common_name(cert.subject),
            issuer_common_name=X509Utils.get_common_name(cert.issuer),
            subject=self.get_subject_fields(cert.subject),
            not_valid_before=cert.not_valid_before_utc,
            not_valid_after=cert.not_valid_after_utc,
            serial_number=str(cert.serial_number),
            serial_number_hex=format(cert.serial_number, "X"),
            dns_names=dns_names,
            ip_addresses=ip_addresses,
            is_ca=self.is_ca(cert),
            fingerprint_sha256=CertificateVerifier.get_certificate_fingerprint(cert),
            issuer_name=issuer_name,
            orphaned=orphaned,
            valid=CertificateVerifier.is_within_validity(cert),
        )

    @staticmethod
    def get_sans(cert: x509.Certificate) -> tuple[list[str], list[str]]:
        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        except x509.ExtensionNotFound:
            return [], []
        dns_names = san.get_values_for_type(x509.DNSName)
        ip_addresses = [str(ip) for ip in san.get_values_for_type(x509.IPAddress)]
        return dns_names, ip_addresses

    @staticmethod
    def get_subject_fields(name: x509.Name) -> dict[str, str]:
        fields = {}
        for attribute in name:
            label = _SUBJECT_FIELDS.get(attribute.oid)
            if label:
                fields[label] = attribute.value
        return fields

    @staticmethod
    def is_ca(cert: x509.Certificate) -> bool:
        try:
            return cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
        except x509.ExtensionNotFound:
            return False
