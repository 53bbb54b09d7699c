"""
SSL lifecycle: enable, disable, renew, status and automatic renewal.

Certificate records and domain records are joined here and nowhere else.
A domain only has its SSL fields set once the certificate files exist and
the SSL artifact set has rendered successfully.
"""

import logging
from pathlib import Path
from typing import Optional

from webstack.config import Settings, get_settings
from webstack.core.cert_manager import CertificateManager
from webstack.core.domain_manager import DomainManager
from webstack.core.errors import DomainValidationError, ExternalToolError, RecordNotFoundError
from webstack.core.renewal_scheduler import RenewalScheduler, SchedulingMechanism
from webstack.models.certificate import CertificateRecord, CertificateStatus, CertificateType
from webstack.models.domain import DomainRecord
from webstack.models.operation import OperationResult, RenewalStatusReport

logger = logging.getLogger(__name__)

AUTORENEW_ACTIONS = ("enable", "disable", "status", "trigger")


class SSLManager:
    """Sequences certificate issuance, record updates and artifact regeneration."""

    def __init__(
        self,
        domain_manager: DomainManager | None = None,
        cert_manager: CertificateManager | None = None,
        scheduler: RenewalScheduler | None = None,
        config: Settings | None = None,
    ):
        self.config = config or get_settings()
        self.domain_manager = domain_manager or DomainManager(config=self.config)
        self.cert_manager = cert_manager or CertificateManager(config=self.config)
        self.scheduler = scheduler or RenewalScheduler(config=self.config)

    @property
    def domains(self):
        return self.domain_manager.domains

    @property
    def certificates(self):
        return self.domain_manager.certificates

    @property
    def generator(self):
        return self.domain_manager.generator

    def _find_certificate(self, domain: str) -> CertificateRecord:
        try:
            return self.certificates.find(domain)
        except RecordNotFoundError as e:
            e.message = f"No SSL certificate found for domain {domain}"
            e.suggestion = f"Run 'webstack ssl enable {domain}' first"
            raise

    def resolve_type(self, domain: str, cert_type: str | None) -> CertificateType:
        if not cert_type:
            return self.cert_manager.default_type(domain)
        try:
            return CertificateType.parse(cert_type)
        except ValueError as e:
            raise DomainValidationError(str(e), domain=domain)

    # Enable / disable

    def enable(self, domain: str, email: str | None = None, cert_type: str | None = None) -> OperationResult:
        """
        Obtain (or reuse) a certificate and switch the domain to its SSL artifacts.

        Raises:
            RecordNotFoundError: No such domain
            DomainValidationError: Bad certificate type, or Let's Encrypt without an email
            ExternalValidationError: DNS or clock check failed; no service was stopped
            ExternalToolError: certbot failed; the web servers were restarted first
        """
        record = self.domain_manager.get(domain)
        certificate_type = self.resolve_type(record.name, cert_type)
        warnings: list[str] = []

        if certificate_type == CertificateType.SELF_SIGNED:
            cert = self._self_signed_certificate(record, email)
        else:
            cert = self._letsencrypt_certificate(record, email, warnings)

        # Persisted before rendering so an issued certificate survives a failed render
        self.certificates.upsert(cert)

        with self.domains.locked() as records:
            current = self.domain_manager.get(record.name)
            updated = current.model_copy()
            updated.enable_ssl(cert.cert_path, cert.key_path, cert.email)
            rendered = self.generator.render(updated, cert)
            records[records.index(current)] = updated

        change = self.generator.install(rendered)
        warnings.extend(change.warnings)
        reloaded, reload_warnings = self.domain_manager.reload()
        warnings.extend(reload_warnings)

        if certificate_type == CertificateType.LETSENCRYPT:
            try:
                self.scheduler.setup_auto_renewal(record.name, cert.email)
            except ExternalToolError as e:
                warnings.append(f"Could not setup auto-renewal: {e.message}")
        else:
            # A previous Let's Encrypt certificate may have left a renewal job behind
            try:
                self.scheduler.remove_auto_renewal(record.name)
            except ExternalToolError as e:
                warnings.append(f"Could not remove auto-renewal: {e.message}")

        logger.info(f"SSL enabled for {record.name} ({certificate_type.value})")
        return OperationResult(
            message=f"SSL enabled for {record.name}",
            domain=record.name,
            files_written=change.files_written,
            reloaded=reloaded,
            warnings=warnings,
            details={
                "certificate_type": certificate_type.value,
                "cert_path": cert.cert_path,
                "key_path": cert.key_path,
                "expires_at": cert.expires_at.isoformat() if cert.expires_at else "",
            },
        )

    def _self_signed_certificate(self, record: DomainRecord, email: str | None) -> CertificateRecord:
        cert_path, key_path, _created = self.cert_manager.generate_self_signed(record.name)
        return self.cert_manager.build_record(
            record.name,
            email or self.config.self_signed_email,
            CertificateType.SELF_SIGNED,
            cert_path,
            key_path,
        )

    def _reusable_letsencrypt(self, domain: str) -> Optional[CertificateRecord]:
        """A previously issued, still present Let's Encrypt pair for this domain."""
        existing = self.certificates.get(domain)
        if existing is None or existing.certificate_type != CertificateType.LETSENCRYPT:
            return None
        if not (Path(existing.cert_path).is_file() and Path(existing.key_path).is_file()):
            return None
        if existing.days_until_expiry is not None and existing.days_until_expiry <= 0:
            return None
        return existing

    def _letsencrypt_certificate(
        self, record: DomainRecord, email: str | None, warnings: list[str]
    ) -> CertificateRecord:
        existing = self._reusable_letsencrypt(record.name)
        if existing is not None and (not email or email == existing.email):
            logger.info(f"Re-enabling existing Let's Encrypt certificate for {record.name}")
            return existing.model_copy(update={"enabled": True})

        if not email:
            raise DomainValidationError(
                "An email address is required for Let's Encrypt certificates",
                domain=record.name,
                suggestion=f"Run 'webstack ssl enable {record.name} --email you@example.com'",
            )

        # Everything that can fail without side effects runs before the servers stop
        self.cert_manager.validate_for_letsencrypt(record.name)
        self.cert_manager.ensure_certbot_installed()

        activator = self.domain_manager.activator
        for failure in activator.stop_all():
            warnings.append(f"Stop failed: {failure.describe_failure()}")
        try:
            cert_path, key_path = self.cert_manager.request_certificate(record.name, email)
        finally:
            for failure in activator.start_all():
                warnings.append(f"Start failed: {failure.describe_failure()}")

        return self.cert_manager.build_record(record.name, email, CertificateType.LETSENCRYPT, cert_path, key_path)

    def disable(self, domain: str) -> OperationResult:
        """
        Switch the domain back to plain HTTP.

        The certificate record is soft-disabled and its files are kept so SSL
        can be re-enabled without issuing again.
        """
        record = self.domain_manager.get(domain)
        if not record.ssl_enabled:
            raise DomainValidationError(f"SSL is not enabled for {record.name}", domain=record.name)

        with self.domains.locked() as records:
            current = self.domain_manager.get(record.name)
            updated = current.model_copy()
            updated.clear_ssl()
            rendered = self.generator.render(updated)

            cert = self.certificates.get(record.name)
            if cert is not None:
                self.certificates.upsert(cert.model_copy(update={"enabled": False}))
            records[records.index(current)] = updated

        change = self.generator.install(rendered)
        warnings = list(change.warnings)
        reloaded, reload_warnings = self.domain_manager.reload()
        warnings.extend(reload_warnings)

        try:
            self.scheduler.remove_auto_renewal(record.name)
        except ExternalToolError as e:
            warnings.append(f"Could not remove auto-renewal: {e.message}")

        logger.info(f"SSL disabled for {record.name}")
        return OperationResult(
            message=f"SSL disabled for {record.name}",
            domain=record.name,
            files_written=change.files_written,
            reloaded=reloaded,
            warnings=warnings,
        )

    # Renewal

    def _refresh_dates(self, cert: CertificateRecord) -> CertificateRecord:
        issued_at, expires_at = self.cert_manager.read_validity(cert.cert_path, self.config.letsencrypt_validity_days)
        refreshed = cert.model_copy(update={"issued_at": issued_at, "expires_at": expires_at})
        self.certificates.upsert(refreshed)
        return refreshed

    def renew(self, domain: str) -> OperationResult:
        """
        Force certbot to renew one certificate, then reload.

        Raises:
            RecordNotFoundError: No certificate record for the domain
            DomainValidationError: The certificate is self-signed
            ExternalToolError: certbot failed
        """
        cert = self._find_certificate(domain)
        if cert.certificate_type == CertificateType.SELF_SIGNED:
            raise DomainValidationError(
                f"{domain} uses a self-signed certificate, which certbot cannot renew",
                domain=domain,
                suggestion=f"Run 'webstack ssl disable {domain}' and enable it again with --type letsencrypt",
            )

        logger.info(f"Renewing {domain}, current certificate expires in {cert.days_until_expiry} days")
        result = self.cert_manager.renew(domain)
        if not result.success:
            raise ExternalToolError(
                f"Error renewing certificate for {domain}",
                domain=domain,
                output=result.stderr or result.stdout,
            )

        reloaded, warnings = self.domain_manager.reload()
        refreshed = self._refresh_dates(cert)
        return OperationResult(
            message=f"SSL certificate renewed for {domain}",
            domain=domain,
            reloaded=reloaded,
            warnings=warnings,
            details={"expires_at": refreshed.expires_at.isoformat() if refreshed.expires_at else ""},
        )

    def renew_all(self) -> OperationResult:
        """Let certbot renew whatever is due, then reload once."""
        due = [
            cert
            for cert in self.certificates.load()
            if cert.enabled and cert.certificate_type == CertificateType.LETSENCRYPT
        ]
        if not due:
            return OperationResult(message="No SSL certificates configured", domain="*")

        for cert in due:
            logger.info(f"{cert.domain}: expires in {cert.days_until_expiry} days")

        result = self.cert_manager.renew_all()
        if not result.success:
            raise ExternalToolError("Error renewing certificates", output=result.stderr or result.stdout)

        reloaded, warnings = self.domain_manager.reload()
        for cert in due:
            self._refresh_dates(cert)
        return OperationResult(
            message="All SSL certificates processed (only those expiring soon were renewed)",
            domain="*",
            reloaded=reloaded,
            warnings=warnings,
            details={"certificates": ", ".join(cert.domain for cert in due)},
        )

    # Status

    def _status_view(self, cert: CertificateRecord) -> CertificateStatus:
        return CertificateStatus(
            domain=cert.domain,
            enabled=cert.enabled,
            certificate_type=cert.certificate_type,
            email=cert.email,
            issued_at=cert.issued_at,
            expires_at=cert.expires_at,
            days_until_expiry=cert.days_until_expiry,
            expiring_soon=cert.enabled and cert.is_expiring_soon(self.config.cert_expiry_warning_days),
        )

    def status(self, domain: str) -> CertificateStatus:
        return self._status_view(self._find_certificate(domain))

    def status_all(self) -> list[CertificateStatus]:
        return [self._status_view(cert) for cert in self.certificates.load()]

    # Automatic renewal

    def autorenew(self, action: str) -> RenewalStatusReport:
        """
        enable, disable, status or trigger the global renewal mechanism.

        Raises:
            DomainValidationError: Unknown action
            ExternalToolError: certbot is unavailable, enabling failed, or the triggered run failed
        """
        action = action.strip().lower()
        if action not in AUTORENEW_ACTIONS:
            raise DomainValidationError(
                f"Unknown action: {action}",
                suggestion=f"Usage: webstack ssl autorenew [{'|'.join(AUTORENEW_ACTIONS)}]",
            )

        if action == "enable":
            self.cert_manager.ensure_certbot_installed()
            self.scheduler.enable()
        elif action == "disable":
            disabled = self.scheduler.disable()
            if disabled == SchedulingMechanism.NONE:
                return RenewalStatusReport(
                    mechanism=disabled.value,
                    enabled=False,
                    detail="No automatic renewal found to disable",
                )
        elif action == "trigger":
            self.cert_manager.ensure_certbot_installed()
            result = self.scheduler.trigger()
            if not result.success:
                raise ExternalToolError(
                    "Renewal trigger failed",
                    suggestion=f"Test without making changes: sudo {self.config.certbot_binary} renew --dry-run",
                )

        return self.scheduler.status_report()
