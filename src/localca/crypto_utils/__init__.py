"""Cryptographic utilities for PKI operations."""

from .x509_utils import X509Utils
from .verification import CertificateVerifier, CertificateVerificationError
from .cert_formats import CertificateFormatConverter
from .san import SANList, is_san_token, parse_san_list

__all__ = [
    'X509Utils',
    'CertificateVerifier',
    'CertificateVerificationError',
    'CertificateFormatConverter',
    'SANList',
    'parse_san_list',
    'is_san_token',
]
