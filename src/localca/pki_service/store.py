"""On-disk store of CA and leaf certificate/key pairs."""

from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional
import logging
import os
import tempfile
import threading

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from ..crypto_utils import X509Utils, CertificateVerifier
from ..errors import ConflictError, CorruptError, NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

CERT_SUFFIX = ".pem"
KEY_SUFFIX = ".key"
SIGNED_BY = "_signed-by_"
EXPORTS_DIR = "exports"
_FORBIDDEN_CHARS = set('/\\<>:"|?*\0')


def leaf_identifier(common_name: str, ca_name: str) -> str:
    """Build the store identifier of a leaf certificate."""
    safe_name = common_name.replace("*", "_wildcard")
    return f"{safe_name}{SIGNED_BY}{ca_name}"


def split_leaf_identifier(identifier: str) -> tuple[str, str]:
    """
    Split a leaf identifier into (file-safe CN, issuer CA name).

    The CA name is whatever follows the last separator, since CA names
    may not themselves contain it.
    """
    if SIGNED_BY not in identifier:
        raise ValidationError(f"not a leaf certificate identifier: {identifier}", entity=identifier)
    cn_part, _, ca_name = identifier.rpartition(SIGNED_BY)
    return cn_part, ca_name


def is_leaf_identifier(identifier: str) -> bool:
    return SIGNED_BY in identifier


@dataclass
class StoredEntry:
    """A certificate with its private key, as persisted in the store."""

    identifier: str
    certificate: x509.Certificate
    private_key: rsa.RSAPrivateKey

    @property
    def is_ca(self) -> bool:
        return not is_leaf_identifier(self.identifier)


class ReadWriteLock:
    """Many readers or one writer; the writing thread may re-enter."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: Optional[int] = None
        self._writer_depth = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            owned = self._writer != me
            if owned:
                while self._writer is not None:
                    self._cond.wait()
                self._readers += 1
        try:
            yield
        finally:
            if owned:
                with self._cond:
                    self._readers -= 1
                    if self._readers == 0:
                        self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
            else:
                while self._writer is not None or self._readers > 0:
                    self._cond.wait()
                self._writer = me
                self._writer_depth = 1
        try:
            yield
        finally:
            with self._cond:
                self._writer_depth -= 1
                if self._writer_depth == 0:
                    self._writer = None
                    self._cond.notify_all()


class CertificateStore:
    """
    Durable mapping of CA names and leaf identifiers to certificate/key pairs.

    Every entity occupies `<root>/<identifier>.pem` and `<root>/<identifier>.key`.
    CAs are named by common name; leaves by `<CN>_signed-by_<CA name>`.
    Only complete pairs are listed or loaded.
    """

    def __init__(self, root: Path):
        """
        Initialize the store.

        Args:
            root: Directory holding all certificate and key files
        """
        self.root = Path(root).expanduser().resolve()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"cannot create store directory: {e}", entity=str(self.root)) from e

        self._lock = ReadWriteLock()
        logger.info(f"Certificate store initialized at: {self.root}")

    def read_locked(self):
        return self._lock.read_locked()

    def write_locked(self):
        return self._lock.write_locked()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def validate_name(self, name: str, operation: str = "resolve name") -> str:
        """
        Reject names that could escape the store root or confuse listing.

        Raises:
            ValidationError: If the name is unusable as a file stem
        """
        if not name or not name.strip():
            raise ValidationError("name cannot be empty", operation=operation)
        if name != name.strip():
            raise ValidationError("name cannot start or end with whitespace", entity=name, operation=operation)
        if name.startswith(".") or ".." in name:
            raise ValidationError("name cannot start with '.' or contain '..'", entity=name, operation=operation)
        bad = sorted(c for c in set(name) if c in _FORBIDDEN_CHARS or ord(c) < 32)
        if bad:
            raise ValidationError(f"name contains forbidden characters: {bad!r}", entity=name, operation=operation)

        for suffix in (CERT_SUFFIX, KEY_SUFFIX):
            path = (self.root / f"{name}{suffix}").resolve()
            if path.parent != self.root:
                raise ValidationError("name resolves outside the store", entity=name, operation=operation)
        return name

    def validate_ca_name(self, name: str, operation: str = "resolve CA") -> str:
        self.validate_name(name, operation)
        if SIGNED_BY in name:
            raise ValidationError(f"CA name cannot contain '{SIGNED_BY}'", entity=name, operation=operation)
        return name

    def cert_path(self, identifier: str) -> Path:
        return self.root / f"{self.validate_name(identifier)}{CERT_SUFFIX}"

    def key_path(self, identifier: str) -> Path:
        return self.root / f"{self.validate_name(identifier)}{KEY_SUFFIX}"

    def exists(self, identifier: str) -> bool:
        """True if a complete certificate/key pair is stored."""
        return self.cert_path(identifier).is_file() and self.key_path(identifier).is_file()

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _list_pairs(self) -> list[str]:
        try:
            names = [
                p.name[:-len(CERT_SUFFIX)] for p in self.root.iterdir()
                if p.is_file() and p.name.endswith(CERT_SUFFIX) and not p.name.startswith(".")
            ]
        except OSError as e:
            raise StorageError(f"cannot read store directory: {e}", entity=str(self.root), operation="list") from e

        return sorted(n for n in names if (self.root / f"{n}{KEY_SUFFIX}").is_file())

    def list_cas(self) -> list[str]:
        """
        List CA names currently persisted.

        Returns:
            Sorted CA names; empty when no CA is configured
        """
        with self.read_locked():
            return [n for n in self._list_pairs() if not is_leaf_identifier(n)]

    def list_certificates(self, issuer_name: Optional[str] = None) -> list[str]:
        """
        List leaf certificate identifiers.

        Args:
            issuer_name: Only return leaves signed by this CA name

        Returns:
            Sorted leaf identifiers
        """
        with self.read_locked():
            leaves = [n for n in self._list_pairs() if is_leaf_identifier(n)]
        if issuer_name is not None:
            leaves = [n for n in leaves if split_leaf_identifier(n)[1] == issuer_name]
        return leaves

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _read(self, path: Path, identifier: str, operation: str) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError("not found in store", entity=identifier, operation=operation) from e
        except OSError as e:
            raise StorageError(f"cannot read {path.name}: {e}", entity=identifier, operation=operation) from e

    def load_certificate(self, identifier: str, operation: str = "load certificate") -> x509.Certificate:
        """
        Load only the public certificate of a stored pair.

        Raises:
            NotFoundError: If the pair is not stored
            CorruptError: If the certificate cannot be parsed
        """
        cert_path = self.cert_path(identifier)
        with self.read_locked():
            if not self.key_path(identifier).is_file():
                raise NotFoundError("not found in store", entity=identifier, operation=operation)
            pem_data = self._read(cert_path, identifier, operation)

        try:
            return X509Utils.load_certificate(pem_data)
        except ValueError as e:
            raise CorruptError(f"certificate file is malformed: {e}", entity=identifier, operation=operation) from e

    def load_entry(self, identifier: str, operation: str = "load entry") -> StoredEntry:
        """
        Load a certificate together with its private key.

        Raises:
            NotFoundError: If the pair is not stored
            CorruptError: If either half cannot be parsed or they do not match
        """
        with self.read_locked():
            cert_data = self._read(self.cert_path(identifier), identifier, operation)
            key_data = self._read(self.key_path(identifier), identifier, operation)

        try:
            cert = X509Utils.load_certificate(cert_data)
        except ValueError as e:
            raise CorruptError(f"certificate file is malformed: {e}", entity=identifier, operation=operation) from e
        try:
            private_key = X509Utils.load_private_key(key_data)
        except (ValueError, TypeError) as e:
            raise CorruptError(f"key file is malformed: {e}", entity=identifier, operation=operation) from e

        if not CertificateVerifier.key_matches_certificate(private_key, cert):
            raise CorruptError("private key does not match certificate", entity=identifier, operation=operation)

        return StoredEntry(identifier=identifier, certificate=cert, private_key=private_key)

    def load_ca(self, name: str) -> StoredEntry:
        """
        Load a CA certificate and key.

        Raises:
            NotFoundError: If the CA does not exist
            CorruptError: If its files fail to parse
        """
        self.validate_ca_name(name, "load CA")
        return self.load_entry(name, operation="load CA")

    def serial_numbers(self, issuer_name: Optional[str] = None) -> set[int]:
        """
        Collect serial numbers of stored certificates.

        Args:
            issuer_name: Restrict to this CA and the leaves it signed

        Returns:
            Set of serial numbers; unreadable files are skipped
        """
        with self.read_locked():
            identifiers = self._list_pairs()
            if issuer_name is not None:
                identifiers = [
                    n for n in identifiers
                    if n == issuer_name or (is_leaf_identifier(n) and split_leaf_identifier(n)[1] == issuer_name)
                ]

            serials = set()
            for identifier in identifiers:
                try:
                    serials.add(self.load_certificate(identifier, operation="collect serials").serial_number)
                except (CorruptError, NotFoundError, StorageError) as e:
                    logger.warning(f"Skipping unreadable certificate while collecting serials: {e}")
        return serials

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def _write_atomic(self, path: Path, data: bytes, mode: int) -> Path:
        """Write data to a temp file beside path; return the temp path for renaming."""
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, mode)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return tmp_path

    def _restore_key(self, key_path: Path, backup_key: Optional[Path], identifier: str):
        """Undo a committed key: put the previous key back, or remove the new one."""
        try:
            if backup_key is not None:
                os.replace(backup_key, key_path)
            else:
                key_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Rollback of {identifier} key failed, stored pair may not match: {e}")
            raise StorageError(
                f"could not restore previous key: {e}", entity=identifier, operation="save"
            ) from e

    def save(self, entry: StoredEntry, overwrite: bool = False):
        """
        Persist a certificate/key pair atomically.

        The key is committed first and the certificate last; listing only
        reports pairs whose certificate exists, so a reader never observes a
        half-written entry. When overwriting, the previous key is copied aside
        and put back if the certificate cannot be committed.

        Args:
            entry: Pair to persist
            overwrite: Replace an existing pair with the same identifier

        Raises:
            ConflictError: If the identifier exists and overwrite is False
            StorageError: On disk failure (nothing is left behind)
        """
        identifier = entry.identifier
        if entry.is_ca:
            self.validate_ca_name(identifier, "save")
        cert_path = self.cert_path(identifier)
        key_path = self.key_path(identifier)

        cert_pem = X509Utils.certificate_to_pem(entry.certificate)
        key_pem = X509Utils.private_key_to_pem(entry.private_key)

        with self.write_locked():
            if not overwrite and (cert_path.exists() or key_path.exists()):
                raise ConflictError("an entry with this name already exists", entity=identifier, operation="save")

            tmp_key = tmp_cert = backup_key = None
            key_committed = False
            try:
                if overwrite and key_path.exists():
                    backup_key = self._write_atomic(key_path, key_path.read_bytes(), 0o600)
                tmp_key = self._write_atomic(key_path, key_pem, 0o600)
                tmp_cert = self._write_atomic(cert_path, cert_pem, 0o644)
                os.replace(tmp_key, key_path)
                key_committed = True
                os.replace(tmp_cert, cert_path)
            except OSError as e:
                for tmp in (tmp_key, tmp_cert):
                    if tmp is not None:
                        tmp.unlink(missing_ok=True)
                if key_committed:
                    previous_key, backup_key = backup_key, None
                    self._restore_key(key_path, previous_key, identifier)
                raise StorageError(f"could not write entry: {e}", entity=identifier, operation="save") from e
            finally:
                if backup_key is not None:
                    backup_key.unlink(missing_ok=True)

        logger.info(f"Saved entry: {identifier}")

    def delete(self, identifier: str):
        """
        Remove a stored pair.

        Raises:
            NotFoundError: If neither file exists
            StorageError: If a file cannot be removed
        """
        cert_path = self.cert_path(identifier)
        key_path = self.key_path(identifier)

        with self.write_locked():
            if not cert_path.exists() and not key_path.exists():
                raise NotFoundError("not found in store", entity=identifier, operation="delete")
            try:
                # certificate first, so a partial failure leaves an unlisted key
                cert_path.unlink(missing_ok=True)
                key_path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"could not delete entry: {e}", entity=identifier, operation="delete") from e

        logger.info(f"Deleted entry: {identifier}")

    def write_artifact(self, filename: str, data: bytes, mode: int = 0o600) -> Path:
        """
        Atomically write an exported artifact under `<root>/exports/`.

        Returns:
            Path of the written file
        """
        self.validate_name(filename, "write artifact")
        exports = self.root / EXPORTS_DIR
        path = exports / filename

        with self.write_locked():
            try:
                exports.mkdir(exist_ok=True)
                tmp_path = self._write_atomic(path, data, mode)
                os.replace(tmp_path, path)
            except OSError as e:
                raise StorageError(f"could not write artifact: {e}", entity=filename, operation="write artifact") from e

        logger.info(f"Wrote artifact: {path}")
        return path
