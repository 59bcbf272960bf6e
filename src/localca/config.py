"""Runtime settings for the PKI engine."""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "LOCALCA_"
DEFAULT_OUTPUT_DIR = Path.home() / ".localca" / "output"
ALLOWED_KEY_SIZES = (2048, 3072, 4096)


class PKISettings(BaseModel):
    """Settings shared by the store, issuance engine and callers."""

    output_dir: Path = Field(default=DEFAULT_OUTPUT_DIR, description="Directory holding CA and leaf files")
    ca_key_size: int = Field(default=4096, description="RSA key size for new CAs")
    leaf_key_size: int = Field(default=2048, description="RSA key size for new leaf certificates")
    default_ca_expiry_days: int = Field(default=3650, ge=1, description="CA validity when none is requested")
    default_cert_expiry_days: int = Field(default=730, ge=1, description="Leaf validity when none is requested")
    max_expiry_days: int = Field(default=36500, ge=1, description="Upper bound for any requested validity")
    serial_retry_limit: int = Field(default=5, ge=1, le=100, description="Attempts to draw an unused serial number")
    command_timeout: float = Field(default=120.0, gt=0, description="Seconds to wait for trust-store commands")
    default_organization: str = Field(default="Local CA", description="Organization used when a CA request leaves it blank")
    export_legacy_encryption: bool = Field(
        default=False,
        description="Encrypt PKCS#12 exports with PBES1/3DES for older importers"
    )
    api_key: Optional[str] = Field(default=None, description="Required X-API-Key for mutating HTTP endpoints")
    cors_origins: list[str] = Field(default_factory=list, description="Origins allowed to call the HTTP API")
    log_level: str = Field(default="INFO", description="Logging level for entry points")

    @field_validator("ca_key_size", "leaf_key_size")
    @classmethod
    def _check_key_size(cls, value: int) -> int:
        if value not in ALLOWED_KEY_SIZES:
            raise ValueError(f"key size must be one of {ALLOWED_KEY_SIZES}, got {value}")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level

    @field_validator("output_dir")
    @classmethod
    def _expand_output_dir(cls, value: Path) -> Path:
        return Path(value).expanduser()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "PKISettings":
        """
        Build settings from LOCALCA_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Explicit values that win over the environment

        Returns:
            Validated settings

        Raises:
            ValidationError: If a value fails validation
        """
        environ = os.environ if environ is None else environ
        values = {}

        for name, field in cls.model_fields.items():
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            if field.annotation == list[str]:
                values[name] = [item.strip() for item in raw.split(",") if item.strip()]
            elif field.annotation == bool:
                values[name] = raw.strip().lower() in {"1", "true", "yes", "on"}
            else:
                values[name] = raw

        values.update(overrides)

        try:
            settings = cls(**values)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid settings: {e}", operation="load settings") from e

        logger.debug(f"Settings loaded (output_dir={settings.output_dir})")
        return settings
