"""PKI Service - certificate authority, issuance, export and trust-store components."""

from .store import CertificateStore, StoredEntry
from .ca_manager import CAManager
from .cert_issuer import CertificateIssuer
from .inspector import CertificateInspector
from .exporter import BundleExporter
from .trust_store import TrustStore, TrustStoreInstaller, select_trust_store
from .packager import InstallerArtifact, InstallerPackager
from .service import PKIService

__all__ = [
    'CertificateStore',
    'StoredEntry',
    'CAManager',
    'CertificateIssuer',
    'CertificateInspector',
    'BundleExporter',
    'TrustStore',
    'TrustStoreInstaller',
    'select_trust_store',
    'InstallerArtifact',
    'InstallerPackager',
    'PKIService',
]
