"""Data models for PKI service."""

from typing import Optional, Union
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class CASubject(BaseModel):
    """Subject fields of a Certificate Authority."""

    common_name: str = Field(..., description="Common name; also the CA's name in the store")
    country: Optional[str] = Field(None, description="Two-letter country code (omitted when blank)")
    state: Optional[str] = Field(None, description="State or province (omitted when blank)")
    locality: Optional[str] = Field(None, description="City or locality (omitted when blank)")
    organization: Optional[str] = Field(None, description="Organization (defaults when blank)")

    @field_validator("common_name")
    @classmethod
    def _strip_common_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("state", "locality", "organization")
    @classmethod
    def _strip_optional(cls, value: Optional[str]) -> Optional[str]:
        return _blank_to_none(value)

    @field_validator("country")
    @classmethod
    def _check_country(cls, value: Optional[str]) -> Optional[str]:
        value = _blank_to_none(value)
        if value is None:
            return None
        if len(value) != 2 or not value.isalpha() or not value.isascii():
            raise ValueError(f"country must be a two-letter code, got {value!r}")
        return value.upper()


class CreateCARequest(CASubject):
    """Request model for CA creation."""

    expiry_days: Optional[int] = Field(None, description="CA validity in days (server default when omitted)")


class CertificateRequest(BaseModel):
    """Request model for leaf certificate issuance."""

    common_name: str = Field(..., description="Common name for the certificate")
    sans: Union[str, list[str]] = Field(
        default="",
        description="Subject Alternative Names: comma/whitespace separated DNS names and IP addresses"
    )
    issuer_ca_name: str = Field(..., description="Name of the CA that signs the certificate")
    expiry_days: Optional[int] = Field(None, description="Certificate validity in days (server default when omitted)")


class ExportRequest(BaseModel):
    """Request model for PKCS#12 export."""

    password: str = Field(default="", description="Bundle password; empty produces an unencrypted bundle")


class CertificateDetails(BaseModel):
    """Read-only metadata of a stored certificate."""

    identifier: str = Field(..., description="Store identifier (CA name or leaf identifier)")
    subject_common_name: Optional[str] = Field(None, description="Subject CN")
    issuer_common_name: Optional[str] = Field(None, description="Issuer CN")
    subject: dict[str, str] = Field(default_factory=dict, description="Subject fields by name")
    not_valid_before: datetime = Field(..., description="Certificate start date")
    not_valid_after: datetime = Field(..., description="Certificate expiration date")
    serial_number: str = Field(..., description="Serial number in decimal")
    serial_number_hex: str = Field(..., description="Serial number in hexadecimal")
    dns_names: list[str] = Field(default_factory=list, description="DNS Subject Alternative Names")
    ip_addresses: list[str] = Field(default_factory=list, description="IP Subject Alternative Names")
    is_ca: bool = Field(..., description="Whether the certificate is a CA")
    fingerprint_sha256: str = Field(..., description="SHA-256 fingerprint")
    issuer_name: Optional[str] = Field(None, description="Store name of the issuing CA (leaves only)")
    orphaned: bool = Field(False, description="Issuing CA is missing or no longer matches")
    valid: bool = Field(..., description="Whether the certificate is currently within its validity period")


class InstallResult(BaseModel):
    """Outcome of a trust-store installation."""

    ca_name: str = Field(..., description="Installed CA")
    trust_store: str = Field(..., description="Trust store implementation used")
    fingerprint_sha1: str = Field(..., description="Thumbprint of the installed certificate")
    already_installed: bool = Field(..., description="True when nothing had to be added")


class OperationResult(BaseModel):
    """Generic success response."""

    success: bool = True
    message: str


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Service status")
    ca_count: int = Field(..., description="Number of stored CAs")
    certificate_count: int = Field(..., description="Number of stored leaf certificates")
    trust_store: str = Field(..., description="Trust store implementation for this platform")
    privileged: bool = Field(..., description="Whether trust-store installation is permitted")
    timestamp: datetime = Field(..., description="Current server time")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    kind: str = Field(..., description="Error kind")
    entity: Optional[str] = Field(None, description="Entity the operation targeted")
    operation: Optional[str] = Field(None, description="Operation that failed")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Error timestamp")
