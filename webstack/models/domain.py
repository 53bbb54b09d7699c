"""
Domain models for per-site hosting configuration.

Provides the persisted DomainRecord plus the request models used to
validate add/edit input before anything is written.
"""

import re
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator


PHP_VERSIONS = ("5.6", "7.0", "7.1", "7.2", "7.3", "7.4", "8.0", "8.1", "8.2", "8.3", "8.4")

DOMAIN_NAME_PATTERN = re.compile(r"^(?=.{1,253}$)[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$")


class Backend(str, Enum):
    """Which server executes PHP for a domain."""
    NGINX = "nginx"     # nginx talks to PHP-FPM directly
    APACHE = "apache"   # nginx reverse-proxies to Apache


def normalize_php_version(version: str) -> str:
    """
    Reduce a PHP version to the major.minor token used in FPM socket names.

    "8.2" and "8.2.14" both become "8.2".
    """
    parts = version.strip().split(".")
    if len(parts) < 2:
        return version.strip()
    return f"{parts[0]}.{parts[1]}"


def validate_domain_name(value: str) -> str:
    """Lower-case a domain name and reject anything unsafe as a filename."""
    name = value.strip().lower()
    if ".." in name or "/" in name or "\\" in name:
        raise ValueError("Domain name cannot contain path separators or '..'")
    if not DOMAIN_NAME_PATTERN.match(name):
        raise ValueError(f"Invalid domain name: {value}")
    return name


def validate_php_version(value: str) -> str:
    version = value.strip()
    if version not in PHP_VERSIONS:
        raise ValueError(f"Invalid PHP version: {value}. Must be one of {', '.join(PHP_VERSIONS)}")
    return version


class DomainRecord(BaseModel):
    """
    Persisted description of one hosted site.

    Stored as one object in the domains JSON array. Unknown keys are
    ignored and missing optional keys decode to their zero value.
    """
    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    name: str = Field(..., description="Domain name, unique within the store")
    backend: Backend = Field(default=Backend.NGINX, description="nginx (direct PHP-FPM) or apache (proxied)")
    php_version: str = Field(default="", description="PHP version the site targets")
    document_root: str = Field(default="", description="Web root, derived from the domain name")
    ssl_enabled: bool = Field(default=False, description="Whether the site is served over HTTPS")
    ssl_cert_path: str = Field(default="", description="Certificate path while SSL is enabled")
    ssl_key_path: str = Field(default="", description="Private key path while SSL is enabled")
    ssl_email: str = Field(default="", description="Email used for the certificate")

    @field_validator("php_version", "document_root", "ssl_cert_path", "ssl_key_path", "ssl_email", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def is_proxied(self) -> bool:
        return self.backend == Backend.APACHE

    def enable_ssl(self, cert_path: str, key_path: str, email: str) -> None:
        self.ssl_enabled = True
        self.ssl_cert_path = cert_path
        self.ssl_key_path = key_path
        self.ssl_email = email

    def clear_ssl(self) -> None:
        self.ssl_enabled = False
        self.ssl_cert_path = ""
        self.ssl_key_path = ""
        self.ssl_email = ""

    def to_storage(self) -> Dict[str, Any]:
        """Serialize for the JSON store; SSL fields are only written when set."""
        data = self.model_dump(mode="json")
        for key in ("ssl_cert_path", "ssl_key_path", "ssl_email"):
            if not data.get(key):
                data.pop(key, None)
        return data


class DomainCreateRequest(BaseModel):
    """Validated input for adding a domain."""

    name: str = Field(..., min_length=1, max_length=253, description="Domain name")
    backend: Backend = Field(default=Backend.NGINX, description="Backend serving PHP")
    php_version: str = Field(default="8.2", description="PHP version")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_domain_name(v)

    @field_validator("backend", mode="before")
    @classmethod
    def validate_backend(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in {b.value for b in Backend}:
                raise ValueError(f"Invalid backend: {v}. Must be 'nginx' or 'apache'")
        return v

    @field_validator("php_version")
    @classmethod
    def validate_php(cls, v: str) -> str:
        return validate_php_version(v)


class DomainUpdateRequest(BaseModel):
    """Validated input for editing a domain; only supplied fields are applied."""

    backend: Optional[Backend] = Field(None, description="Updated backend")
    php_version: Optional[str] = Field(None, description="Updated PHP version")

    @field_validator("backend", mode="before")
    @classmethod
    def validate_backend(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in {b.value for b in Backend}:
                raise ValueError(f"Invalid backend: {v}. Must be 'nginx' or 'apache'")
        return v

    @field_validator("php_version", mode="before")
    @classmethod
    def validate_php(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return validate_php_version(v)

    @property
    def is_empty(self) -> bool:
        return self.backend is None and self.php_version is None
