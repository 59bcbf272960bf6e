"""Operating system trust store installation.

Each supported platform has its own `TrustStore` implementation; the one
matching the host is picked once by `select_trust_store()`. Commands are
executed through a runner so that tests can substitute a fake one.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence
import logging
import os
import platform
import re
import shutil
import subprocess
import tempfile

from cryptography import x509

from ..crypto_utils import CertificateVerifier, X509Utils
from ..errors import (
    CommandFailedError,
    OperationTimeoutError,
    PermissionDeniedError,
    StorageError,
    UnsupportedError,
)
from .ca_manager import CAManager
from .models import InstallResult

logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str], float], subprocess.CompletedProcess]

MACOS_SYSTEM_KEYCHAIN = "/Library/Keychains/System.keychain"
DEBIAN_ANCHORS = Path("/usr/local/share/ca-certificates")
FEDORA_ANCHORS = Path("/etc/pki/ca-trust/source/anchors")


def run_command(args: Sequence[str], timeout: float) -> subprocess.CompletedProcess:
    """
    Run an external command and capture its output.

    Raises:
        OperationTimeoutError: If the command does not finish in time
        UnsupportedError: If the executable does not exist on this host
    """
    logger.debug(f"Running command: {' '.join(args)}")
    try:
        return subprocess.run(list(args), capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise OperationTimeoutError(
            f"'{args[0]}' did not finish within {timeout:g} seconds", operation="run command"
        ) from e
    except FileNotFoundError as e:
        raise UnsupportedError(f"'{args[0]}' is not available on this system", operation="run command") from e


def safe_label(name: str) -> str:
    """File-name friendly label for a CA."""
    return "localca-" + re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")


@contextmanager
def staged_certificate(cert: x509.Certificate) -> Iterator[Path]:
    """Write the public certificate to a temporary PEM file for tools that need a path."""
    with tempfile.TemporaryDirectory(prefix="localca-") as tmp:
        path = Path(tmp) / "ca.pem"
        path.write_bytes(X509Utils.certificate_to_pem(cert))
        yield path


class TrustStore(ABC):
    """Capability interface over a host's trusted-root store."""

    name = "abstract"
    supported = True

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: float = 120.0):
        self.runner = runner or run_command
        self.timeout = timeout

    @abstractmethod
    def is_privileged(self) -> bool:
        """Whether the current process may modify the trust store."""

    @abstractmethod
    def is_installed(self, cert: x509.Certificate) -> bool:
        """Whether a certificate with the same thumbprint is already trusted."""

    @abstractmethod
    def install(self, cert: x509.Certificate, label: str):
        """Add the certificate as a trusted root."""

    def _run(self, args: Sequence[str], operation: str, entity: Optional[str] = None,
             check: bool = True) -> subprocess.CompletedProcess:
        result = self.runner(args, self.timeout)
        if check and result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            raise CommandFailedError(
                f"'{args[0]}' exited with status {result.returncode}: {output}",
                returncode=result.returncode,
                output=output,
                entity=entity,
                operation=operation
            )
        return result


class WindowsTrustStore(TrustStore):
    """Local machine Root store, managed with certutil."""

    name = "windows"

    def is_privileged(self) -> bool:
        try:
            import ctypes
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        except (AttributeError, OSError):
            return False

    def is_installed(self, cert: x509.Certificate) -> bool:
        thumbprint = CertificateVerifier.get_certificate_fingerprint(cert, "sha1")
        result = self._run(["certutil", "-store", "Root", thumbprint], "check trust store", check=False)
        return result.returncode == 0

    def install(self, cert: x509.Certificate, label: str):
        with staged_certificate(cert) as path:
            self._run(["certutil", "-addstore", "-f", "Root", str(path)], "install CA", entity=label)


class MacOSTrustStore(TrustStore):
    """System keychain, managed with the `security` tool."""

    name = "macos"

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: float = 120.0,
                 keychain: str = MACOS_SYSTEM_KEYCHAIN):
        super().__init__(runner, timeout)
        self.keychain = keychain

    def is_privileged(self) -> bool:
        return os.geteuid() == 0

    def is_installed(self, cert: x509.Certificate) -> bool:
        thumbprint = CertificateVerifier.get_certificate_fingerprint(cert, "sha1").upper()
        result = self._run(
            ["security", "find-certificate", "-a", "-Z", self.keychain], "check trust store", check=False
        )
        return result.returncode == 0 and thumbprint in (result.stdout or "").upper()

    def install(self, cert: x509.Certificate, label: str):
        with staged_certificate(cert) as path:
            self._run(
                ["security", "add-trusted-cert", "-d", "-r", "trustRoot", "-k", self.keychain, str(path)],
                "install CA", entity=label
            )


class LinuxTrustStore(TrustStore):
    """
    Distribution anchor directory plus its refresh command.

    Debian-style hosts use /usr/local/share/ca-certificates with
    update-ca-certificates; Fedora-style hosts use
    /etc/pki/ca-trust/source/anchors with `update-ca-trust extract`.
    """

    name = "linux"

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        timeout: float = 120.0,
        anchors_dir: Optional[Path] = None,
        update_command: Optional[Sequence[str]] = None
    ):
        super().__init__(runner, timeout)
        if anchors_dir is None or update_command is None:
            anchors_dir, update_command = self.detect_layout()
        self.anchors_dir = anchors_dir
        self.update_command = list(update_command) if update_command else None
        self.supported = self.anchors_dir is not None

    @staticmethod
    def detect_layout() -> tuple[Optional[Path], Optional[list[str]]]:
        if shutil.which("update-ca-certificates") and DEBIAN_ANCHORS.parent.is_dir():
            return DEBIAN_ANCHORS, ["update-ca-certificates"]
        if shutil.which("update-ca-trust") and FEDORA_ANCHORS.parent.is_dir():
            return FEDORA_ANCHORS, ["update-ca-trust", "extract"]
        logger.warning("No supported CA trust layout found on this Linux host")
        return None, None

    def is_privileged(self) -> bool:
        return os.geteuid() == 0

    def is_installed(self, cert: x509.Certificate) -> bool:
        if self.anchors_dir is None or not self.anchors_dir.is_dir():
            return False

        wanted = CertificateVerifier.get_certificate_fingerprint(cert)
        for path in sorted(self.anchors_dir.iterdir()):
            if path.suffix not in (".crt", ".pem") or not path.is_file():
                continue
            try:
                anchors = x509.load_pem_x509_certificates(path.read_bytes())
            except (OSError, ValueError) as e:
                logger.debug(f"Skipping unreadable anchor {path}: {e}")
                continue
            if any(CertificateVerifier.get_certificate_fingerprint(a) == wanted for a in anchors):
                return True
        return False

    def install(self, cert: x509.Certificate, label: str):
        if self.anchors_dir is None:
            raise UnsupportedError("no CA trust layout on this host", entity=label, operation="install CA")

        target = self.anchors_dir / f"{label}.crt"
        tmp_name = None
        try:
            self.anchors_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{label}.", dir=self.anchors_dir)
            with os.fdopen(fd, "wb") as f:
                f.write(X509Utils.certificate_to_pem(cert))
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, target)
            tmp_name = None
        except PermissionError as e:
            raise PermissionDeniedError(
                f"cannot write {target}: {e}", entity=label, operation="install CA"
            ) from e
        except OSError as e:
            raise StorageError(f"cannot write {target}: {e}", entity=label, operation="install CA") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.debug(f"Wrote trust anchor: {target}")
        self._run(self.update_command, "install CA", entity=label)


class UnsupportedTrustStore(TrustStore):
    """Platforms without a privileged trust store this tool knows how to manage."""

    supported = False

    def __init__(self, system: str = "unknown", **kwargs):
        super().__init__(**kwargs)
        self.name = system.lower() or "unknown"

    def is_privileged(self) -> bool:
        return False

    def is_installed(self, cert: x509.Certificate) -> bool:
        return False

    def install(self, cert: x509.Certificate, label: str):
        raise UnsupportedError(
            f"trust store installation is not supported on {self.name}", entity=label, operation="install CA"
        )


def select_trust_store(
    system: Optional[str] = None,
    runner: Optional[CommandRunner] = None,
    timeout: float = 120.0
) -> TrustStore:
    """
    Pick the trust store implementation for this host.

    Args:
        system: Override for platform.system()
        runner: Command runner (defaults to subprocess)
        timeout: Seconds to wait for each command

    Returns:
        TrustStore instance
    """
    system = system or platform.system()
    if system == "Windows":
        store = WindowsTrustStore(runner=runner, timeout=timeout)
    elif system == "Darwin":
        store = MacOSTrustStore(runner=runner, timeout=timeout)
    elif system == "Linux":
        store = LinuxTrustStore(runner=runner, timeout=timeout)
    else:
        store = UnsupportedTrustStore(system, runner=runner, timeout=timeout)

    logger.info(f"Using trust store: {store.name} (supported: {store.supported})")
    return store


class TrustStoreInstaller:
    """Installs stored CAs into the host trust store."""

    def __init__(self, ca_manager: CAManager, trust_store: TrustStore):
        self.ca_manager = ca_manager
        self.trust_store = trust_store

    def is_privileged(self) -> bool:
        return self.trust_store.supported and self.trust_store.is_privileged()

    def install(self, ca_name: str) -> InstallResult:
        """
        Add a CA's public certificate to the trusted roots.

        Installing a CA whose thumbprint is already present succeeds without
        adding a second entry.

        Args:
            ca_name: Stored CA name

        Returns:
            InstallResult

        Raises:
            NotFoundError: If the CA does not exist
            UnsupportedError: If this platform has no managed trust store
            PermissionDeniedError: If the process is not elevated
            OperationTimeoutError: If a trust-store command hangs
            CommandFailedError: If a trust-store command fails
        """
        operation = "install CA"
        cert = self.ca_manager.get_ca_certificate(ca_name)

        if not self.trust_store.supported:
            raise UnsupportedError(
                f"trust store installation is not supported on {self.trust_store.name}",
                entity=ca_name, operation=operation
            )
        if not self.trust_store.is_privileged():
            raise PermissionDeniedError(
                "administrator/root privileges are required; re-run elevated or use the installer package",
                entity=ca_name, operation=operation
            )

        thumbprint = CertificateVerifier.get_certificate_fingerprint(cert, "sha1")
        if self.trust_store.is_installed(cert):
            logger.info(f"CA {ca_name} already trusted (sha1: {thumbprint})")
            return InstallResult(
                ca_name=ca_name, trust_store=self.trust_store.name,
                fingerprint_sha1=thumbprint, already_installed=True
            )

        logger.info(f"Installing CA {ca_name} into {self.trust_store.name} trust store")
        self.trust_store.install(cert, safe_label(ca_name))
        logger.info(f"CA installed: {ca_name} (sha1: {thumbprint})")

        return InstallResult(
            ca_name=ca_name, trust_store=self.trust_store.name,
            fingerprint_sha1=thumbprint, already_installed=False
        )
