"""
Backend activation for generated site configs.

nginx sites are enabled with a symlink from sites-enabled to the file in
sites-available. Apache sites are enabled through a2ensite/a2dissite after
the proxying modules are registered. Reloads ask both servers to re-read
their configuration; none of the command failures here are fatal.
"""

import logging
from pathlib import Path

from webstack.config import Settings, get_settings
from webstack.core.system_service import CommandResult, SystemService, system_service

logger = logging.getLogger(__name__)


class BackendActivator:
    """Makes generated artifacts live and signals the web servers."""

    def __init__(self, system: SystemService | None = None, config: Settings | None = None):
        self.system = system or system_service
        self.config = config or get_settings()
        self.sites_available = Path(self.config.nginx_sites_available)
        self.sites_enabled = Path(self.config.nginx_sites_enabled)

    def enabled_link(self, domain: str) -> Path:
        return self.sites_enabled / f"{domain}.conf"

    # Frontend (nginx)

    def activate(self, domain: str, artifact_path: Path) -> Path:
        """
        Point sites-enabled/{domain}.conf at the artifact, replacing any existing link.

        Raises OSError if the link cannot be created; the caller has just
        written the artifact, so this is a real failure.
        """
        self.sites_enabled.mkdir(parents=True, exist_ok=True)
        link = self.enabled_link(domain)
        if link.is_symlink() or link.exists():
            link.unlink()
        link.symlink_to(Path(artifact_path))
        logger.info(f"Enabled nginx site {domain} -> {artifact_path}")
        return link

    def deactivate(self, domain: str) -> bool:
        """Remove the enablement link. Returns False if there was none."""
        link = self.enabled_link(domain)
        if not (link.is_symlink() or link.exists()):
            return False
        link.unlink()
        logger.info(f"Disabled nginx site {domain}")
        return True

    def is_active(self, domain: str) -> bool:
        return self.enabled_link(domain).is_symlink()

    # Secondary backend (Apache)

    def register_modules(self) -> list[CommandResult]:
        """Enable the proxying modules Apache sites depend on. Idempotent, best-effort."""
        failures = []
        for module in self.config.apache_modules:
            result = self.system.run(["a2enmod", module])
            if not result.success:
                logger.warning(f"Could not enable Apache module {module}: {result.describe_failure()}")
                failures.append(result)
        return failures

    def activate_secondary(self, domain: str) -> list[CommandResult]:
        """
        Register the Apache site for this domain.

        Returns:
            Failed command results (empty when everything succeeded)
        """
        failures = self.register_modules()
        result = self.system.run(["a2ensite", domain])
        if result.success:
            logger.info(f"Enabled Apache site {domain}")
        else:
            logger.warning(f"Could not enable Apache site {domain}: {result.describe_failure()}")
            failures.append(result)
        return failures

    def deactivate_secondary(self, domain: str) -> CommandResult:
        result = self.system.run(["a2dissite", domain])
        if result.success:
            logger.info(f"Disabled Apache site {domain}")
        else:
            logger.warning(f"Could not disable Apache site {domain}: {result.describe_failure()}")
        return result

    # Service control

    def _services(self) -> list[str]:
        return [self.config.nginx_service, self.config.apache_service]

    def _for_each_service(self, action: str) -> list[CommandResult]:
        failures = []
        for service in self._services():
            result = self.system.systemctl(action, service)
            if result.success:
                logger.info(f"{service}: {action} ok")
            else:
                logger.warning(f"Could not {action} {service}: {result.describe_failure()}")
                failures.append(result)
        return failures

    def reload(self) -> list[CommandResult]:
        """Gracefully reload both web servers. Returns the failures."""
        return self._for_each_service("reload")

    def stop_all(self) -> list[CommandResult]:
        return self._for_each_service("stop")

    def start_all(self) -> list[CommandResult]:
        return self._for_each_service("start")
