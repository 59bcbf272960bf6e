"""Error kinds raised by the PKI engine."""

from typing import Optional


class PKIError(RuntimeError):
    """Base error for every engine operation."""

    kind = "error"

    def __init__(
        self,
        message: str,
        *,
        entity: Optional[str] = None,
        operation: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.operation = operation

    def __str__(self) -> str:
        if self.operation and self.entity:
            return f"{self.operation} '{self.entity}': {self.message}"
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "error": str(self),
            "entity": self.entity,
            "operation": self.operation,
        }


class ValidationError(PKIError):
    """Bad or missing input."""

    kind = "validation_error"


class NotFoundError(PKIError):
    """Referenced CA or certificate does not exist."""

    kind = "not_found"


class ConflictError(PKIError):
    """An entity with the same identity already exists."""

    kind = "conflict"


class CorruptError(PKIError):
    """Stored key or certificate could not be parsed."""

    kind = "corrupt"


class CryptoError(PKIError):
    """Key generation, signing or encoding failed."""

    kind = "crypto_error"


class PermissionDeniedError(PKIError):
    """The process lacks the privilege the operation needs."""

    kind = "permission_denied"


class UnsupportedError(PKIError):
    """The platform does not provide the requested capability."""

    kind = "unsupported"


class StorageError(PKIError):
    """Filesystem failure."""

    kind = "io_error"


class CommandFailedError(StorageError):
    """An external trust-store command exited with an error."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, output: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.returncode = returncode
        self.output = output


class OperationTimeoutError(PKIError):
    """An external command did not finish within the configured wait."""

    kind = "operation_timeout"
