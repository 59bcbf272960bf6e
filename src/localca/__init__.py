"""localca - local certificate authority manager."""

__version__ = "1.0.0"

from .config import PKISettings
from .errors import (
    PKIError,
    ValidationError,
    NotFoundError,
    ConflictError,
    CorruptError,
    CryptoError,
    PermissionDeniedError,
    UnsupportedError,
    StorageError,
    CommandFailedError,
    OperationTimeoutError,
)
from .pki_service.service import PKIService

__all__ = [
    'PKISettings',
    'PKIService',
    'PKIError',
    'ValidationError',
    'NotFoundError',
    'ConflictError',
    'CorruptError',
    'CryptoError',
    'PermissionDeniedError',
    'UnsupportedError',
    'StorageError',
    'CommandFailedError',
    'OperationTimeoutError',
]
