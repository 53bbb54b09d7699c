"""
Unit tests for domain, certificate and result models.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from webstack.models.certificate import CertificateRecord, CertificateType
from webstack.models.domain import (
    Backend,
    DomainCreateRequest,
    DomainRecord,
    DomainUpdateRequest,
    normalize_php_version,
)
from webstack.models.operation import RebuildResult


class TestDomainRecord:
    """Test DomainRecord decoding and storage form."""

    def test_missing_optional_fields_decode_to_zero_values(self):
        """Test a minimal stored object decodes with defaults."""
        record = DomainRecord.model_validate({"name": "example.com"})
        assert record.backend == Backend.NGINX
        assert record.php_version == ""
        assert record.ssl_enabled is False
        assert record.ssl_cert_path == ""

    def test_unknown_fields_are_ignored(self):
        """Test extra keys in the store do not fail decoding."""
        record = DomainRecord.model_validate({"name": "example.com", "created_by": "installer", "backend": "apache"})
        assert record.is_proxied
        assert not hasattr(record, "created_by")

    def test_null_ssl_fields_become_empty(self):
        """Test null values decode as empty strings."""
        record = DomainRecord.model_validate({"name": "example.com", "ssl_cert_path": None, "ssl_email": None})
        assert record.ssl_cert_path == ""
        assert record.ssl_email == ""

    def test_to_storage_omits_ssl_fields_when_disabled(self):
        """Test SSL paths are only written while SSL is on."""
        record = DomainRecord(name="example.com", php_version="8.2", document_root="/var/www/example.com/htdocs")
        data = record.to_storage()
        assert data["name"] == "example.com"
        assert data["backend"] == "nginx"
        assert data["ssl_enabled"] is False
        assert "ssl_cert_path" not in data
        assert "ssl_key_path" not in data
        assert "ssl_email" not in data

    def test_enable_and_clear_ssl(self):
        """Test the SSL fields move together."""
        record = DomainRecord(name="example.com")
        record.enable_ssl("/c.pem", "/k.pem", "admin@example.com")
        data = record.to_storage()
        assert data["ssl_enabled"] is True
        assert data["ssl_cert_path"] == "/c.pem"
        assert data["ssl_email"] == "admin@example.com"

        record.clear_ssl()
        assert record.ssl_enabled is False
        assert record.ssl_key_path == ""


class TestDomainRequests:
    """Test add/edit input validation."""

    def test_create_request_normalizes_name(self):
        """Test names are lower-cased and trimmed."""
        request = DomainCreateRequest(name="  Shop.Test ", backend="APACHE", php_version="8.2")
        assert request.name == "shop.test"
        assert request.backend == Backend.APACHE

    @pytest.mark.parametrize("name", ["../etc", "a/b.com", "-bad.com", "bad..com", ""])
    def test_create_request_rejects_unsafe_names(self, name):
        """Test names that are unsafe as file names are rejected."""
        with pytest.raises(ValidationError):
            DomainCreateRequest(name=name)

    def test_create_request_rejects_unknown_backend(self):
        """Test backend must be nginx or apache."""
        with pytest.raises(ValidationError) as exc_info:
            DomainCreateRequest(name="example.com", backend="lighttpd")
        assert "Invalid backend" in str(exc_info.value)

    def test_create_request_rejects_unknown_php(self):
        """Test PHP version must be in the supported set."""
        with pytest.raises(ValidationError) as exc_info:
            DomainCreateRequest(name="example.com", php_version="9.9")
        assert "Invalid PHP version" in str(exc_info.value)

    def test_update_request_empty_values_mean_unchanged(self):
        """Test empty strings are treated as not supplied."""
        update = DomainUpdateRequest(backend="", php_version="")
        assert update.is_empty

    def test_update_request_partial(self):
        """Test only the supplied field is set."""
        update = DomainUpdateRequest(php_version="7.4")
        assert update.backend is None
        assert update.php_version == "7.4"
        assert not update.is_empty

    @pytest.mark.parametrize("version,expected", [("8.2", "8.2"), ("8.2.14", "8.2"), (" 7.4 ", "7.4"), ("8", "8")])
    def test_normalize_php_version(self, version, expected):
        """Test PHP versions reduce to major.minor."""
        assert normalize_php_version(version) == expected


class TestCertificateModels:
    """Test certificate type parsing and expiry helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("selfsigned", CertificateType.SELF_SIGNED),
            ("self-signed", CertificateType.SELF_SIGNED),
            ("LetsEncrypt", CertificateType.LETSENCRYPT),
            ("lets-encrypt", CertificateType.LETSENCRYPT),
        ],
    )
    def test_parse_aliases(self, value, expected):
        """Test every accepted spelling."""
        assert CertificateType.parse(value) == expected

    def test_parse_rejects_unknown(self):
        """Test unknown certificate types raise ValueError."""
        with pytest.raises(ValueError) as exc_info:
            CertificateType.parse("zerossl")
        assert "Invalid certificate type" in str(exc_info.value)

    def test_naive_timestamps_are_utc(self):
        """Test naive datetimes from older stores are treated as UTC."""
        record = CertificateRecord(domain="example.com", expires_at=datetime(2030, 1, 1))
        assert record.expires_at.tzinfo == timezone.utc

    def test_expiring_soon(self):
        """Test the expiry window flag."""
        soon = CertificateRecord(
            domain="example.com", expires_at=datetime.now(timezone.utc) + timedelta(days=10, hours=1)
        )
        later = CertificateRecord(
            domain="example.com", expires_at=datetime.now(timezone.utc) + timedelta(days=60, hours=1)
        )
        assert soon.days_until_expiry == 10
        assert soon.is_expiring_soon(30) is True
        assert later.is_expiring_soon(30) is False

    def test_no_expiry_is_not_expiring(self):
        """Test records without dates never report expiring."""
        record = CertificateRecord(domain="example.com")
        assert record.days_until_expiry is None
        assert record.is_expiring_soon() is False


class TestRebuildResult:
    """Test RebuildResult.success."""

    def test_success_without_failures(self):
        assert RebuildResult(rebuilt=["a.com"]).success is True

    def test_failure_recorded(self):
        assert RebuildResult(failed={"a.com": "boom"}).success is False
