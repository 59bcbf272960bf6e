"""X.509 certificate generation and management utilities."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
import logging

from cryptography import x509
from cryptography.x509.oid import NameOID, ExtendedKeyUsageOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..errors import CryptoError, ValidationError
from .san import SANList

logger = logging.getLogger(__name__)


class X509Utils:
    """Utility class for X.509 certificate operations."""

    @staticmethod
    def generate_private_key(key_size: int = 4096) -> rsa.RSAPrivateKey:
        """
        Generate an RSA private key.

        Args:
            key_size: Size of the RSA key in bits (default: 4096)

        Returns:
            RSA private key object

        Raises:
            CryptoError: If key generation fails
        """
        logger.info(f"Generating {key_size}-bit RSA private key")
        try:
            return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        except (ValueError, TypeError) as e:
            raise CryptoError(f"key generation failed: {e}", operation="generate key") from e

    @staticmethod
    def validity_window(validity_days: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        """
        Convert a duration in days into an absolute validity window.

        X.509 times carry whole seconds, so microseconds are dropped to keep
        not_after - not_before exactly validity_days.
        """
        if validity_days <= 0:
            raise ValidationError(f"expiry must be a positive number of days, got {validity_days}")
        not_before = (now or datetime.now(timezone.utc)).replace(microsecond=0)
        return not_before, not_before + timedelta(days=validity_days)

    @staticmethod
    def build_subject(
        common_name: str,
        organization: Optional[str] = None,
        country: Optional[str] = None,
        state: Optional[str] = None,
        locality: Optional[str] = None
    ) -> x509.Name:
        """
        Build a subject name, omitting blank optional fields.

        Raises:
            ValidationError: If a field is rejected by the X.509 encoder
        """
        attributes = []
        for label, oid, value in (
            ("country", NameOID.COUNTRY_NAME, country),
            ("state", NameOID.STATE_OR_PROVINCE_NAME, state),
            ("locality", NameOID.LOCALITY_NAME, locality),
            ("organization", NameOID.ORGANIZATION_NAME, organization),
            ("common name", NameOID.COMMON_NAME, common_name),
        ):
            if value:
                try:
                    attributes.append(x509.NameAttribute(oid, value))
                except ValueError as e:
                    raise ValidationError(f"invalid {label}: {e}", entity=common_name) from e
        return x509.Name(attributes)

    @staticmethod
    def create_ca_certificate(
        private_key: rsa.RSAPrivateKey,
        subject: x509.Name,
        serial_number: int,
        not_before: datetime,
        not_after: datetime
    ) -> x509.Certificate:
        """
        Create a self-signed CA certificate.

        Args:
            private_key: Key the CA signs with
            subject: CA subject (also used as issuer)
            serial_number: Serial number for the certificate
            not_before: Start of validity
            not_after: End of validity

        Returns:
            Signed certificate

        Raises:
            CryptoError: If signing fails
        """
        logger.info(f"Creating self-signed CA: {subject.rfc4514_string()}")

        try:
            cert = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(subject)
                .public_key(private_key.public_key())
                .serial_number(serial_number)
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .add_extension(
                    x509.BasicConstraints(ca=True, path_length=None),
                    critical=True,
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        key_cert_sign=True,
                        crl_sign=True,
                        key_encipherment=False,
                        content_commitment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
                    critical=False,
                )
                .sign(private_key, hashes.SHA256())
            )
        except (ValueError, TypeError) as e:
            raise CryptoError(f"signing failed: {e}", operation="create CA") from e

        return cert

    @staticmethod
    def create_leaf_certificate(
        common_name: str,
        san_list: SANList,
        private_key: rsa.RSAPrivateKey,
        ca_private_key: rsa.RSAPrivateKey,
        ca_cert: x509.Certificate,
        serial_number: int,
        not_before: datetime,
        not_after: datetime
    ) -> x509.Certificate:
        """
        Create a server/device certificate signed by a CA.

        Args:
            common_name: Subject common name
            san_list: Parsed Subject Alternative Names
            private_key: Leaf key pair (public half goes into the certificate)
            ca_private_key: CA private key for signing
            ca_cert: CA certificate
            serial_number: Serial number for the certificate
            not_before: Start of validity
            not_after: End of validity

        Returns:
            Signed certificate

        Raises:
            CryptoError: If signing fails
        """
        logger.info(f"Creating leaf certificate for: {common_name}")

        try:
            ca_ski = ca_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier).value
            authority_key_id = x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ca_ski)
        except x509.ExtensionNotFound:
            authority_key_id = x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_private_key.public_key())

        try:
            builder = (
                x509.CertificateBuilder()
                .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
                .issuer_name(ca_cert.subject)
                .public_key(private_key.public_key())
                .serial_number(serial_number)
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .add_extension(
                    x509.BasicConstraints(ca=False, path_length=None),
                    critical=True,
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        key_encipherment=True,
                        key_cert_sign=False,
                        crl_sign=False,
                        content_commitment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.ExtendedKeyUsage([
                        ExtendedKeyUsageOID.SERVER_AUTH,
                        ExtendedKeyUsageOID.CLIENT_AUTH,
                    ]),
                    critical=False,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
                    critical=False,
                )
                .add_extension(authority_key_id, critical=False)
            )

            if san_list:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName(san_list.to_general_names()),
                    critical=False,
                )
                logger.info(f"Added SANs: DNS={san_list.dns_names}, IP={san_list.ip_addresses}")

            cert = builder.sign(ca_private_key, hashes.SHA256())
        except (ValueError, TypeError) as e:
            raise CryptoError(f"signing failed: {e}", entity=common_name, operation="create certificate") from e

        return cert

    @staticmethod
    def private_key_to_pem(private_key: rsa.RSAPrivateKey) -> bytes:
        """Serialize a private key as unencrypted PKCS#8 PEM."""
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        )

    @staticmethod
    def certificate_to_pem(cert: x509.Certificate) -> bytes:
        return cert.public_bytes(serialization.Encoding.PEM)

    @staticmethod
    def load_private_key(pem_data: bytes) -> rsa.RSAPrivateKey:
        """
        Load a PEM private key.

        Raises:
            ValueError: If the data is not a usable private key
        """
        private_key = serialization.load_pem_private_key(pem_data, password=None)
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise ValueError(f"unsupported key type: {type(private_key).__name__}")
        return private_key

    @staticmethod
    def load_certificate(pem_data: bytes) -> x509.Certificate:
        """
        Load a PEM certificate.

        Raises:
            ValueError: If the data is not a PEM certificate
        """
        return x509.load_pem_x509_certificate(pem_data)

    @staticmethod
    def get_common_name(name: x509.Name) -> Optional[str]:
        attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
        return attrs[0].value if attrs else None
