"""Certificate format conversion utilities."""

import logging
from typing import Optional, Sequence
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

logger = logging.getLogger(__name__)

LEGACY_PKCS12_KDF_ROUNDS = 50000


class CertificateFormatConverter:
    """Convert certificates between different formats."""

    @staticmethod
    def pem_to_der(pem_data: bytes) -> bytes:
        """
        Convert PEM certificate to DER format.

        Args:
            pem_data: PEM-encoded certificate bytes

        Returns:
            DER-encoded certificate bytes
        """
        cert = x509.load_pem_x509_certificate(pem_data)
        return cert.public_bytes(serialization.Encoding.DER)

    @staticmethod
    def to_pkcs12(
        cert: x509.Certificate,
        key: rsa.RSAPrivateKey,
        ca_chain: Optional[Sequence[x509.Certificate]] = None,
        password: Optional[bytes] = None,
        friendly_name: Optional[bytes] = None,
        legacy: bool = False
    ) -> bytes:
        """
        Bundle a certificate, its key and CA chain as PKCS12 (.p12/.pfx).

        Args:
            cert: Leaf certificate
            key: Leaf private key
            ca_chain: CA certificates to include
            password: Password to encrypt the PKCS12 file; empty means no encryption
            friendly_name: Optional friendly name for the certificate
            legacy: Use PBES1/3DES with SHA1 MAC for older importers

        Returns:
            PKCS12-encoded data bytes
        """
        if not password:
            encryption = serialization.NoEncryption()
        elif legacy:
            encryption = (
                serialization.PrivateFormat.PKCS12.encryption_builder()
                .kdf_rounds(LEGACY_PKCS12_KDF_ROUNDS)
                .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
                .hmac_hash(hashes.SHA1())
                .build(password)
            )
        else:
            encryption = serialization.BestAvailableEncryption(password)

        return pkcs12.serialize_key_and_certificates(
            name=friendly_name,
            key=key,
            cert=cert,
            cas=list(ca_chain) if ca_chain else None,
            encryption_algorithm=encryption
        )

    @staticmethod
    def create_chain_bundle(cert_pem: bytes, ca_chain_pem: Optional[bytes] = None) -> bytes:
        """
        Create certificate bundle (cert + chain), as used by nginx and curl --cacert.

        Args:
            cert_pem: PEM-encoded certificate
            ca_chain_pem: Optional PEM-encoded CA certificate chain

        Returns:
            Combined certificate and chain
        """
        bundle = cert_pem
        if ca_chain_pem:
            if not bundle.endswith(b"\n"):
                bundle += b"\n"
            bundle += ca_chain_pem
        return bundle
