"""
Automatic certificate renewal scheduling.

Two mutually exclusive global mechanisms run `certbot renew` periodically:
a systemd timer (preferred) and a crontab line (fallback). Separately,
each Let's Encrypt domain gets its own renewal script and crontab line
when SSL is first enabled for it.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Protocol

from webstack.config import Settings, get_settings
from webstack.core.errors import ExternalToolError
from webstack.core.system_service import CommandResult, CrontabService, SystemService, system_service
from webstack.models.operation import RenewalStatusReport

logger = logging.getLogger(__name__)

# Any crontab line containing this is the global renewal job
RENEWAL_CRON_MARKER = "certbot renew"

SERVICE_UNIT_TEMPLATE = """[Unit]
Description=WebStack Certbot Renewal
After=network.target

[Service]
Type=oneshot
ExecStart={certbot} renew --quiet --deploy-hook "{deploy_hook}"
StandardOutput=journal
StandardError=journal

[Install]
WantedBy=multi-user.target
"""

TIMER_UNIT_TEMPLATE = """[Unit]
Description=Daily WebStack Certbot Renewal Timer
Requires={service_unit}

[Timer]
OnCalendar={calendar}
Persistent=true
OnBootSec=5min

[Install]
WantedBy=timers.target
"""

DOMAIN_SCRIPT_TEMPLATE = """#!/bin/bash
# WebStack SSL certificate renewal script for {domain}

{certbot} renew --cert-name {domain} --quiet
if [ $? -eq 0 ]; then
    /usr/bin/systemctl reload {nginx_service} 2>/dev/null
    /usr/bin/systemctl reload {apache_service} 2>/dev/null
    echo "$(date): Certificate renewed successfully for {domain}" >> {log_file}
else
    echo "$(date): Certificate renewal FAILED for {domain}" >> {log_file}
    echo "Certificate renewal failed for {domain}. Check {log_file}" | mail -s "WebStack SSL Renewal Failed" "{email}" 2>/dev/null
fi
"""


class SchedulingMechanism(str, Enum):
    """Which facility runs global automatic renewal."""
    NONE = "none"
    TIMER = "systemd-timer"
    CRON = "cron"


class SchedulingProbe(Protocol):
    """Answers which renewal mechanism is currently active."""

    def timer_active(self) -> bool:
        ...

    def cron_active(self) -> bool:
        ...


class SystemSchedulingProbe:
    """Asks systemd and the crontab directly."""

    def __init__(self, system: SystemService, crontab: CrontabService, config: Settings):
        self.system = system
        self.crontab = crontab
        self.config = config

    def timer_active(self) -> bool:
        return self.system.is_unit_active(self.config.timer_unit)

    def cron_active(self) -> bool:
        return self.crontab.contains(RENEWAL_CRON_MARKER)


class RenewalScheduler:
    """
    Keeps at most one global renewal mechanism active and manages
    per-domain renewal jobs.
    """

    def __init__(
        self,
        system: SystemService | None = None,
        crontab: CrontabService | None = None,
        detector: SchedulingProbe | None = None,
        config: Settings | None = None,
    ):
        self.system = system or system_service
        self.crontab = crontab or CrontabService(self.system)
        self.config = config or get_settings()
        self.detector = detector or SystemSchedulingProbe(self.system, self.crontab, self.config)

        unit_dir = Path(self.config.systemd_unit_dir)
        self.service_file = unit_dir / self.config.service_unit
        self.timer_file = unit_dir / self.config.timer_unit

    @property
    def deploy_hook(self) -> str:
        return (
            f"systemctl reload {self.config.nginx_service} || true; "
            f"systemctl reload {self.config.apache_service} || true"
        )

    @property
    def cron_line(self) -> str:
        return (
            f"{self.config.renewal_cron_schedule} {self.config.certbot_path} renew --quiet "
            f'--deploy-hook "{self.deploy_hook}"'
        )

    # Global mechanism

    def status(self) -> SchedulingMechanism:
        """Timer first, then cron; the first active one wins."""
        if self.detector.timer_active():
            return SchedulingMechanism.TIMER
        if self.detector.cron_active():
            return SchedulingMechanism.CRON
        return SchedulingMechanism.NONE

    def status_report(self) -> RenewalStatusReport:
        mechanism = self.status()
        detail = None
        if mechanism == SchedulingMechanism.TIMER:
            detail = f"Timer: {self.config.timer_unit} ({self.config.renewal_timer_calendar})"
        elif mechanism == SchedulingMechanism.CRON:
            lines = [line for line in (self.crontab.read() or "").splitlines() if RENEWAL_CRON_MARKER in line]
            detail = "\n".join(lines)
        return RenewalStatusReport(
            mechanism=mechanism.value,
            enabled=mechanism != SchedulingMechanism.NONE,
            detail=detail,
        )

    def enable(self) -> SchedulingMechanism:
        """
        Turn on automatic renewal. A no-op if either mechanism is already active.

        Returns:
            The mechanism now active

        Raises:
            ExternalToolError: Neither the timer nor the cron job could be installed
        """
        current = self.status()
        if current != SchedulingMechanism.NONE:
            logger.info(f"Automatic renewal already enabled ({current.value})")
            return current

        try:
            self._enable_timer()
            logger.info(f"Automatic renewal enabled (systemd timer {self.config.timer_unit})")
            return SchedulingMechanism.TIMER
        except ExternalToolError as timer_error:
            logger.warning(f"Could not enable systemd timer, falling back to cron: {timer_error.message}")

            try:
                self._enable_cron()
            except ExternalToolError as cron_error:
                raise ExternalToolError(
                    "Failed to enable automatic renewal",
                    suggestion=f"Try enabling the timer manually: sudo systemctl enable --now {self.config.timer_unit}",
                    output=f"{timer_error.message}\n{cron_error.message}",
                )

        logger.info("Automatic renewal enabled (cron)")
        return SchedulingMechanism.CRON

    def disable(self) -> SchedulingMechanism:
        """
        Turn off whichever mechanism is active.

        Returns:
            The mechanism that was disabled, NONE when nothing was active
        """
        current = self.status()
        if current == SchedulingMechanism.TIMER:
            self._disable_timer()
        elif current == SchedulingMechanism.CRON:
            self._disable_cron()
        else:
            logger.info("No automatic renewal found to disable")
            return current

        logger.info(f"Automatic renewal disabled ({current.value})")
        return current

    def trigger(self) -> CommandResult:
        """Run the renewal once, with output going straight to the terminal."""
        args = [self.config.certbot_binary, "renew", "--deploy-hook", self.deploy_hook]
        logger.info(f"Triggering renewal: {' '.join(args)}")
        return self.system.run(args, stream=True)

    def _check(self, result: CommandResult) -> None:
        if not result.success:
            raise ExternalToolError(result.describe_failure(), output=result.stderr)

    def _enable_timer(self) -> None:
        service = SERVICE_UNIT_TEMPLATE.format(certbot=self.config.certbot_path, deploy_hook=self.deploy_hook)
        timer = TIMER_UNIT_TEMPLATE.format(
            service_unit=self.config.service_unit,
            calendar=self.config.renewal_timer_calendar,
        )
        try:
            self.service_file.parent.mkdir(parents=True, exist_ok=True)
            self.service_file.write_text(service)
            self.timer_file.write_text(timer)
        except OSError as e:
            self._remove_unit_files()
            raise ExternalToolError(f"Could not write systemd unit files: {e}")

        try:
            self._check(self.system.systemctl("daemon-reload"))
            self._check(self.system.systemctl("enable", self.config.timer_unit))
            self._check(self.system.systemctl("start", self.config.timer_unit))
        except ExternalToolError:
            self._remove_unit_files()
            self.system.systemctl("daemon-reload")
            raise

    def _disable_timer(self) -> None:
        self._check(self.system.systemctl("stop", self.config.timer_unit))
        self._check(self.system.systemctl("disable", self.config.timer_unit))
        self._remove_unit_files()
        result = self.system.systemctl("daemon-reload")
        if not result.success:
            logger.warning(result.describe_failure())

    def _remove_unit_files(self) -> None:
        for path in (self.service_file, self.timer_file):
            path.unlink(missing_ok=True)

    def _enable_cron(self) -> None:
        result = self.crontab.add_line(self.cron_line, RENEWAL_CRON_MARKER)
        if result is not None:
            self._check(result)

    def _disable_cron(self) -> None:
        result = self.crontab.remove_lines(RENEWAL_CRON_MARKER)
        if result is not None:
            self._check(result)

    # Per-domain jobs

    def domain_script_path(self, domain: str) -> Path:
        return Path(self.config.renewal_bin_dir) / f"webstack-renewal-{domain}.sh"

    def domain_cron_line(self, domain: str) -> str:
        return (
            f"{self.config.domain_renewal_cron_schedule} {self.domain_script_path(domain)} "
            f">> {self.config.renewal_log_file} 2>&1"
        )

    def setup_auto_renewal(self, domain: str, email: str) -> Path:
        """
        Install the per-domain renewal script and its crontab line.

        Idempotent: the crontab is left alone if a line already references
        the script.

        Raises:
            ExternalToolError: The script or crontab line could not be installed
        """
        script_path = self.domain_script_path(domain)
        script = DOMAIN_SCRIPT_TEMPLATE.format(
            domain=domain,
            email=email,
            certbot=self.config.certbot_path,
            nginx_service=self.config.nginx_service,
            apache_service=self.config.apache_service,
            log_file=self.config.renewal_log_file,
        )

        try:
            Path(self.config.renewal_log_file).parent.mkdir(parents=True, exist_ok=True)
            script_path.parent.mkdir(parents=True, exist_ok=True)
            script_path.write_text(script)
            script_path.chmod(0o755)
        except OSError as e:
            raise ExternalToolError(f"Could not create renewal script {script_path}: {e}", domain=domain)

        result = self.crontab.add_line(self.domain_cron_line(domain), str(script_path))
        if result is not None and not result.success:
            raise ExternalToolError(
                f"Could not add renewal cron job: {result.describe_failure()}",
                domain=domain,
                output=result.stderr,
            )

        logger.info(f"Per-domain renewal configured for {domain}: {script_path}")
        return script_path

    def remove_auto_renewal(self, domain: str) -> bool:
        """
        Remove the per-domain crontab line and script.

        Returns:
            True if anything was removed

        Raises:
            ExternalToolError: The crontab could not be rewritten
        """
        script_path = self.domain_script_path(domain)
        removed = False

        result = self.crontab.remove_lines(str(script_path))
        if result is not None:
            if not result.success:
                raise ExternalToolError(
                    f"Could not update crontab: {result.describe_failure()}",
                    domain=domain,
                    output=result.stderr,
                )
            removed = True

        if script_path.exists():
            script_path.unlink()
            removed = True

        if removed:
            logger.info(f"Per-domain renewal removed for {domain}")
        return removed
