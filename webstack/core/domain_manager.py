"""
Domain lifecycle: add, edit, delete, list and rebuild.

Each mutation validates input, renders the new artifact set, persists the
domain record, installs the artifacts and reloads the web servers once.
Rendering happens before anything is persisted so a missing template
leaves neither a record nor a partial artifact set behind.
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from webstack.config import Settings, get_settings
from webstack.core.activator import BackendActivator
from webstack.core.config_generator import ConfigGenerator
from webstack.core.errors import (
    DomainValidationError,
    RecordConsistencyError,
    RecordNotFoundError,
    WebStackError,
)
from webstack.core.record_store import CertificateStore, DomainStore, get_certificate_store, get_domain_store
from webstack.models.certificate import CertificateRecord
from webstack.models.domain import DomainCreateRequest, DomainRecord, DomainUpdateRequest
from webstack.models.operation import OperationResult, RebuildResult

logger = logging.getLogger(__name__)

SITE_SUBDIRECTORIES = ("htdocs", "logs", "configs", "error")

DEFAULT_INDEX = """<?php
echo "<h1>Welcome to {domain}</h1>";
echo "<p>PHP Version: " . phpversion() . "</p>";
echo "<p>Expected PHP: {php_version}</p>";
echo "<p>Server: " . $_SERVER['SERVER_SOFTWARE'] . "</p>";
phpinfo();
?>
"""


def validation_message(error: ValidationError) -> str:
    """First validation failure as a plain sentence."""
    first = error.errors()[0]
    message = first.get("msg", str(error))
    # pydantic prefixes messages raised from validators
    return message.removeprefix("Value error, ")


def join_certificate(domain: DomainRecord, certificates: CertificateStore) -> Optional[CertificateRecord]:
    """
    The certificate a domain's SSL artifacts must reference, or None when SSL is off.

    Raises:
        RecordConsistencyError: SSL is enabled but there is no usable certificate
    """
    if not domain.ssl_enabled:
        return None

    suggestion = f"Run 'webstack ssl enable {domain.name}' again or 'webstack ssl disable {domain.name}'"
    cert = certificates.get(domain.name)
    if cert is None or not cert.enabled:
        raise RecordConsistencyError(
            f"SSL is enabled for {domain.name} but no enabled certificate record exists",
            domain=domain.name,
            suggestion=suggestion,
        )
    for path in (cert.cert_path, cert.key_path):
        if not path or not Path(path).is_file():
            raise RecordConsistencyError(
                f"Certificate file for {domain.name} is missing: {path or '(empty path)'}",
                domain=domain.name,
                suggestion=suggestion,
            )
    return cert


class DomainManager:
    """Sequences record, artifact and reload changes for domains."""

    def __init__(
        self,
        domains: DomainStore | None = None,
        certificates: CertificateStore | None = None,
        generator: ConfigGenerator | None = None,
        config: Settings | None = None,
    ):
        self.config = config or get_settings()
        self.domains = domains or get_domain_store(self.config)
        self.certificates = certificates or get_certificate_store(self.config)
        self.generator = generator or ConfigGenerator(config=self.config)

    @property
    def activator(self) -> BackendActivator:
        return self.generator.activator

    def reload(self) -> tuple[bool, list[str]]:
        """Reload both web servers; failures come back as warnings."""
        failures = self.activator.reload()
        warnings = [f"Reload failed: {failure.describe_failure()}" for failure in failures]
        return not failures, warnings

    # Queries

    def list_domains(self) -> list[DomainRecord]:
        return self.domains.load()

    def get(self, name: str) -> DomainRecord:
        try:
            return self.domains.find(name.strip().lower())
        except RecordNotFoundError as e:
            e.suggestion = "Run 'webstack domain list' to see configured domains"
            raise

    # Site directories

    def prepare_site_directories(self, record: DomainRecord) -> Path:
        """
        Create {www_root}/{name}/{htdocs,logs,configs,error} and seed index.php.

        An existing index.php is left alone.
        """
        base_dir = self.config.domain_base_dir(record.name)
        for sub in SITE_SUBDIRECTORIES:
            (base_dir / sub).mkdir(parents=True, exist_ok=True)

        document_root = Path(record.document_root)
        document_root.mkdir(parents=True, exist_ok=True)
        index = document_root / "index.php"
        if not index.exists():
            index.write_text(DEFAULT_INDEX.format(domain=record.name, php_version=record.php_version))
            logger.info(f"Created default index.php in {document_root}")
        return document_root

    # Mutations

    def add(self, name: str, backend: str | None = None, php_version: str | None = None) -> OperationResult:
        """
        Register a new domain and bring its site up.

        Raises:
            DomainValidationError: Invalid name/backend/PHP version, or the domain already exists
            TemplateNotFoundError: A required template is missing; nothing is written
        """
        try:
            request = DomainCreateRequest(
                name=name,
                backend=backend or self.config.default_backend,
                php_version=php_version or self.config.default_php_version,
            )
        except ValidationError as e:
            raise DomainValidationError(validation_message(e), domain=name)

        record = DomainRecord(
            name=request.name,
            backend=request.backend,
            php_version=request.php_version,
            document_root=str(self.config.document_root(request.name)),
        )

        if self.domains.exists(record.name):
            raise DomainValidationError(
                f"Domain {record.name} already exists",
                domain=record.name,
                suggestion=f"Use 'webstack domain edit {record.name}' to change it",
            )

        rendered = self.generator.render(record)

        with self.domains.locked() as records:
            if any(r.name == record.name for r in records):
                raise DomainValidationError(f"Domain {record.name} already exists", domain=record.name)
            records.append(record)

        self.prepare_site_directories(record)
        change = self.generator.install(rendered)
        reloaded, reload_warnings = self.reload()

        logger.info(f"Domain {record.name} added ({record.backend.value}, PHP {record.php_version})")
        return OperationResult(
            message=f"Domain {record.name} added successfully",
            domain=record.name,
            files_written=change.files_written,
            reloaded=reloaded,
            warnings=change.warnings + reload_warnings,
            details={
                "backend": record.backend.value,
                "php_version": record.php_version,
                "document_root": record.document_root,
            },
        )

    def edit(self, name: str, backend: str | None = None, php_version: str | None = None) -> OperationResult:
        """
        Change backend and/or PHP version, then regenerate.

        Only the supplied fields are applied. The previous artifact set is
        removed before the new one is installed.

        Raises:
            RecordNotFoundError: No such domain
            DomainValidationError: Invalid values, or nothing to change
        """
        try:
            update = DomainUpdateRequest(backend=backend, php_version=php_version)
        except ValidationError as e:
            raise DomainValidationError(validation_message(e), domain=name)
        if update.is_empty:
            raise DomainValidationError(
                "Nothing to change",
                domain=name,
                suggestion="Pass --backend and/or --php",
            )

        name = name.strip().lower()
        with self.domains.locked() as records:
            previous = self.get(name)
            updated = previous.model_copy()
            if update.backend is not None:
                updated.backend = update.backend
            if update.php_version is not None:
                updated.php_version = update.php_version

            rendered = self.generator.render(updated, join_certificate(updated, self.certificates))
            records[records.index(previous)] = updated

        removed = self.generator.remove(previous)
        change = self.generator.install(rendered)
        reloaded, reload_warnings = self.reload()

        logger.info(f"Domain {name} updated ({updated.backend.value}, PHP {updated.php_version})")
        return OperationResult(
            message=f"Domain {name} updated successfully",
            domain=name,
            files_written=change.files_written,
            files_removed=[f for f in removed.files_removed if f not in change.files_written],
            reloaded=reloaded,
            warnings=removed.warnings + change.warnings + reload_warnings,
            details={"backend": updated.backend.value, "php_version": updated.php_version},
        )

    def delete(self, name: str) -> OperationResult:
        """
        Remove a domain's artifacts and record.

        The document root, certificate files and certificate record are kept.

        Raises:
            RecordNotFoundError: No such domain
        """
        record = self.get(name)
        change = self.generator.remove(record)
        self.domains.remove(record.name)
        reloaded, reload_warnings = self.reload()

        logger.info(f"Domain {record.name} deleted")
        return OperationResult(
            message=f"Domain {record.name} deleted successfully",
            domain=record.name,
            files_removed=change.files_removed,
            reloaded=reloaded,
            warnings=change.warnings + reload_warnings,
            details={"document_root": record.document_root},
        )

    def regenerate(self, record: DomainRecord) -> list[str]:
        """Re-render and install one domain's artifacts without reloading. Returns warnings."""
        change = self.generator.generate(record, join_certificate(record, self.certificates))
        return change.warnings

    def rebuild_configs(self) -> RebuildResult:
        """Regenerate every domain's artifacts, then reload exactly once."""
        result = RebuildResult()
        records = self.domains.load()
        if not records:
            logger.info("No domains to rebuild")
            return result

        for record in records:
            try:
                result.warnings.extend(self.regenerate(record))
                result.rebuilt.append(record.name)
            except (WebStackError, OSError) as e:
                message = e.message if isinstance(e, WebStackError) else str(e)
                logger.error(f"Failed to rebuild {record.name}: {message}")
                result.failed[record.name] = message

        result.reloaded, reload_warnings = self.reload()
        result.warnings.extend(reload_warnings)
        logger.info(f"Rebuilt {len(result.rebuilt)} domain(s), {len(result.failed)} failed")
        return result
