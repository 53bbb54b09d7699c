"""
Certificate models for SSL certificate management.

Provides the persisted CertificateRecord and the status view
shown by `ssl status`.
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator


class CertificateType(str, Enum):
    """Type of SSL certificate."""
    LETSENCRYPT = "letsencrypt"   # Issued by certbot, renewed by certbot
    SELF_SIGNED = "selfsigned"    # Generated locally, never renewed

    @classmethod
    def parse(cls, value: str) -> "CertificateType":
        """Accept the spellings the CLI has always accepted."""
        normalized = value.strip().lower()
        aliases = {
            "selfsigned": cls.SELF_SIGNED,
            "self-signed": cls.SELF_SIGNED,
            "letsencrypt": cls.LETSENCRYPT,
            "lets-encrypt": cls.LETSENCRYPT,
        }
        if normalized not in aliases:
            raise ValueError(f"Invalid certificate type: {value}. Use 'selfsigned' or 'letsencrypt'")
        return aliases[normalized]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateRecord(BaseModel):
    """
    Represents one domain's certificate in the ssl store.

    `enabled` is a soft flag: a disabled record keeps its files so SSL can
    be switched back on without issuing again.
    """
    model_config = ConfigDict(extra="ignore")

    domain: str = Field(..., description="Domain this certificate belongs to")
    email: str = Field(default="", description="Registration email")
    enabled: bool = Field(default=False, description="Whether the certificate is in use")
    certificate_type: CertificateType = Field(
        default=CertificateType.LETSENCRYPT,
        description="How the certificate was obtained"
    )
    issued_at: Optional[datetime] = Field(None, description="When the certificate was issued")
    expires_at: Optional[datetime] = Field(None, description="Certificate expiry date")
    cert_path: str = Field(default="", description="Path to the certificate (full chain)")
    key_path: str = Field(default="", description="Path to the private key")

    @field_validator("email", "cert_path", "key_path", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("issued_at", "expires_at", mode="after")
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Treat naive timestamps as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def days_until_expiry(self) -> Optional[int]:
        """Whole days until expiry, for display only."""
        if self.expires_at is None:
            return None
        return (self.expires_at - _utcnow()).days

    def is_expiring_soon(self, threshold_days: int = 30) -> bool:
        days = self.days_until_expiry
        return days is not None and days <= threshold_days

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class CertificateStatus(BaseModel):
    """Display view of a certificate for `ssl status`."""

    domain: str
    enabled: bool
    certificate_type: CertificateType
    email: str = ""
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    days_until_expiry: Optional[int] = None
    expiring_soon: bool = False
