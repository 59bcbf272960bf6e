"""Certificate signature and key-pair verification utilities."""

from datetime import datetime, timezone
from typing import Optional
import logging

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)


class CertificateVerificationError(Exception):
    """Exception raised when certificate verification fails."""
    pass


class CertificateVerifier:
    """Utility class for certificate verification."""

    @staticmethod
    def verify_signature(cert: x509.Certificate, issuer_cert: x509.Certificate):
        """
        Verify that cert is signed by issuer_cert.

        Args:
            cert: Certificate to verify
            issuer_cert: Issuing certificate

        Raises:
            CertificateVerificationError: If signature verification fails
        """
        if cert.issuer != issuer_cert.subject:
            raise CertificateVerificationError(
                f"Issuer mismatch: {cert.issuer.rfc4514_string()} != {issuer_cert.subject.rfc4514_string()}"
            )

        try:
            issuer_cert.public_key().verify(
                cert.signature,
                cert.tbs_certificate_bytes,
                cert.signature_algorithm_parameters,
                cert.signature_hash_algorithm
            )
        except InvalidSignature:
            raise CertificateVerificationError(
                f"Invalid signature: {cert.subject.rfc4514_string()} not signed by {issuer_cert.subject.rfc4514_string()}"
            )
        except (TypeError, ValueError) as e:
            raise CertificateVerificationError(f"Signature verification error: {str(e)}")

    @staticmethod
    def is_issued_by(cert: x509.Certificate, issuer_cert: x509.Certificate) -> bool:
        """Return True if issuer_cert's key signed cert."""
        try:
            CertificateVerifier.verify_signature(cert, issuer_cert)
        except CertificateVerificationError as e:
            logger.debug(f"Issuer check failed: {e}")
            return False
        return True

    @staticmethod
    def is_self_signed(cert: x509.Certificate) -> bool:
        return CertificateVerifier.is_issued_by(cert, cert)

    @staticmethod
    def key_matches_certificate(private_key: rsa.RSAPrivateKey, cert: x509.Certificate) -> bool:
        """Return True if the certificate carries the private key's public half."""
        spki = serialization.PublicFormat.SubjectPublicKeyInfo
        return (
            private_key.public_key().public_bytes(serialization.Encoding.DER, spki)
            == cert.public_key().public_bytes(serialization.Encoding.DER, spki)
        )

    @staticmethod
    def is_within_validity(cert: x509.Certificate, check_time: Optional[datetime] = None) -> bool:
        now = check_time or datetime.now(timezone.utc)
        return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc

    @staticmethod
    def get_certificate_fingerprint(cert: x509.Certificate, algorithm: str = "sha256") -> str:
        """
        Get certificate fingerprint.

        Args:
            cert: Certificate
            algorithm: Hash algorithm (sha256, sha1)

        Returns:
            Hex-encoded fingerprint
        """
        if algorithm == "sha256":
            digest = cert.fingerprint(hashes.SHA256())
        elif algorithm == "sha1":
            digest = cert.fingerprint(hashes.SHA1())
        else:
            raise ValueError(f"Unsupported algorithm: {algorithm}")

        return digest.hex()
