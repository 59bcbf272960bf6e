"""Self-contained CA installer archives for third-party machines."""

from dataclasses import dataclass
from pathlib import Path
import io
import logging
import shlex
import zipfile

from jinja2 import Environment, PackageLoader, StrictUndefined

from ..crypto_utils import CertificateVerifier, X509Utils
from .ca_manager import CAManager
from .store import CertificateStore
from .trust_store import safe_label

logger = logging.getLogger(__name__)


def _batch_escape(value: str) -> str:
    return str(value).replace("%", "%%")


@dataclass
class InstallerArtifact:
    """Installer archive bytes with a suggested filename."""

    filename: str
    content: bytes


class InstallerPackager:
    """Builds `<CA>_Installer.zip` with the CA certificate and install scripts."""

    def __init__(self, ca_manager: CAManager, store: CertificateStore):
        self.ca_manager = ca_manager
        self.store = store
        self.env = Environment(
            loader=PackageLoader("localca.pki_service", "templates"),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False
        )
        self.env.filters["shell_quote"] = shlex.quote
        self.env.filters["batch_escape"] = _batch_escape

    def generate_installer(self, ca_name: str) -> InstallerArtifact:
        """
        Build an installer archive for a stored CA.

        The archive holds `<CA>.pem`, `install-ca.bat`, `install-ca.sh` and
        `README.txt`. The CA's private key is never read.

        Args:
            ca_name: Stored CA name

        Returns:
            InstallerArtifact

        Raises:
            NotFoundError: If the CA does not exist
        """
        cert = self.ca_manager.get_ca_certificate(ca_name)
        cert_filename = f"{ca_name}.pem"

        context = {
            "ca_name": ca_name,
            "cert_filename": cert_filename,
            "label": safe_label(ca_name),
            "fingerprint_sha1": CertificateVerifier.get_certificate_fingerprint(cert, "sha1").upper(),
            "fingerprint_sha256": CertificateVerifier.get_certificate_fingerprint(cert).upper(),
            "not_valid_after": cert.not_valid_after_utc.strftime("%Y-%m-%d %H:%M:%S UTC"),
        }

        batch_script = self.env.get_template("install-ca.bat.j2").render(**context).replace("\n", "\r\n")
        shell_script = self.env.get_template("install-ca.sh.j2").render(**context)
        readme = self.env.get_template("README.txt.j2").render(**context)

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(cert_filename, X509Utils.certificate_to_pem(cert))
            archive.writestr("install-ca.bat", batch_script)
            script_info = zipfile.ZipInfo("install-ca.sh")
            script_info.external_attr = 0o755 << 16
            script_info.compress_type = zipfile.ZIP_DEFLATED
            archive.writestr(script_info, shell_script)
            archive.writestr("README.txt", readme)

        filename = f"{ca_name}_Installer.zip"
        logger.info(f"Generated installer {filename}")
        return InstallerArtifact(filename=filename, content=buffer.getvalue())

    def write_installer(self, ca_name: str) -> Path:
        """Generate the installer and write it under `<root>/exports/`."""
        artifact = self.generate_installer(ca_name)
        return self.store.write_artifact(artifact.filename, artifact.content, mode=0o644)
