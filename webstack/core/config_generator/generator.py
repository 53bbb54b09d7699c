"""
Site configuration generator.

Turns a domain record (plus its certificate when SSL is on) into the
nginx config, the optional Apache vhost and their enablement. Rendering
is pure and happens before anything touches the disk, so a missing
template never leaves a partial artifact set behind.
"""

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from webstack.config import Settings, get_settings
from webstack.core.activator import BackendActivator
from webstack.core.config_generator.resolver import (
    ConfigGeneratorError,
    ServerKind,
    TemplateResolver,
)
from webstack.models.certificate import CertificateRecord
from webstack.models.domain import Backend, DomainRecord, normalize_php_version

logger = logging.getLogger(__name__)

# (backend, ssl_enabled) -> (frontend template, secondary template)
TEMPLATE_TABLE: dict[tuple[Backend, bool], tuple[str, Optional[str]]] = {
    (Backend.NGINX, False): ("direct", None),
    (Backend.NGINX, True): ("direct-ssl", None),
    (Backend.APACHE, False): ("proxy", "domain"),
    (Backend.APACHE, True): ("proxy-ssl", "domain"),  # TLS terminates at nginx
}


class RenderedSite(BaseModel):
    """Rendered, not yet installed, artifacts for one domain."""

    domain: str
    frontend_template: str
    frontend_content: str
    secondary_template: Optional[str] = None
    secondary_content: Optional[str] = None


class ArtifactChange(BaseModel):
    """Files touched by an install or removal, plus advisory warnings."""

    domain: str
    files_written: list[str] = Field(default_factory=list)
    files_removed: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ConfigGenerator:
    """
    Generates and installs per-domain server configs.

    Does not reload anything; callers reload once after all their changes.
    """

    def __init__(
        self,
        resolver: TemplateResolver | None = None,
        activator: BackendActivator | None = None,
        config: Settings | None = None,
    ):
        self.config = config or get_settings()
        self.resolver = resolver or TemplateResolver(config=self.config)
        self.activator = activator or BackendActivator(config=self.config)

    def frontend_path(self, domain: str) -> Path:
        return Path(self.config.nginx_sites_available) / f"{domain}.conf"

    def secondary_path(self, domain: str) -> Path:
        return Path(self.config.apache_sites_available) / f"{domain}.conf"

    @staticmethod
    def select_templates(backend: Backend, ssl_enabled: bool) -> tuple[str, Optional[str]]:
        """Template names for a backend/SSL combination."""
        return TEMPLATE_TABLE[(Backend(backend), bool(ssl_enabled))]

    def template_variables(self, domain: DomainRecord, cert: Optional[CertificateRecord] = None) -> dict:
        """Everything a template may reference, derived from the record pair."""
        php_version = normalize_php_version(domain.php_version or self.config.default_php_version)
        base_dir = self.config.domain_base_dir(domain.name)
        variables = {
            "domain": domain.name,
            "document_root": domain.document_root or str(self.config.document_root(domain.name)),
            "php_version": php_version,
            "php_socket": self.config.php_socket(php_version),
            "apache_port": self.config.apache_port,
            "log_dir": str(base_dir / "logs"),
            "config_dir": str(base_dir / "configs"),
        }
        if domain.ssl_enabled:
            if cert is None or not cert.cert_path or not cert.key_path:
                raise ConfigGeneratorError(
                    f"SSL is enabled for {domain.name} but no certificate paths were supplied",
                    domain=domain.name,
                    suggestion=f"Run 'webstack ssl enable {domain.name}' or 'webstack ssl disable {domain.name}'",
                )
            variables["ssl_cert"] = cert.cert_path
            variables["ssl_key"] = cert.key_path
        return variables

    def render(self, domain: DomainRecord, cert: Optional[CertificateRecord] = None) -> RenderedSite:
        """
        Render every artifact for a domain without writing anything.

        Raises:
            TemplateNotFoundError: A required template is missing from every search path
            ConfigGeneratorError: SSL is enabled without certificate paths, or rendering failed
        """
        frontend_template, secondary_template = self.select_templates(domain.backend, domain.ssl_enabled)
        variables = self.template_variables(domain, cert)

        frontend = self.resolver.render(ServerKind.FRONTEND, frontend_template, variables, domain=domain.name)
        secondary = None
        if secondary_template:
            secondary = self.resolver.render(ServerKind.SECONDARY, secondary_template, variables, domain=domain.name)

        logger.debug(f"Rendered {frontend_template} config for {domain.name}")
        return RenderedSite(
            domain=domain.name,
            frontend_template=frontend_template,
            frontend_content=frontend,
            secondary_template=secondary_template,
            secondary_content=secondary,
        )

    def install(self, rendered: RenderedSite) -> ArtifactChange:
        """Write rendered artifacts and enable them."""
        change = ArtifactChange(domain=rendered.domain)

        frontend_path = self.frontend_path(rendered.domain)
        frontend_path.parent.mkdir(parents=True, exist_ok=True)
        frontend_path.write_text(rendered.frontend_content)
        change.files_written.append(str(frontend_path))
        self.activator.activate(rendered.domain, frontend_path)
        logger.info(f"Nginx configuration created: {frontend_path} ({rendered.frontend_template})")

        if rendered.secondary_content is not None:
            secondary_path = self.secondary_path(rendered.domain)
            secondary_path.parent.mkdir(parents=True, exist_ok=True)
            secondary_path.write_text(rendered.secondary_content)
            change.files_written.append(str(secondary_path))
            for failure in self.activator.activate_secondary(rendered.domain):
                change.warnings.append(failure.describe_failure())
            logger.info(f"Apache configuration created: {secondary_path}")

        return change

    def generate(self, domain: DomainRecord, cert: Optional[CertificateRecord] = None) -> ArtifactChange:
        """Render then install; nothing is written if rendering fails."""
        return self.install(self.render(domain, cert))

    def remove(self, domain: DomainRecord) -> ArtifactChange:
        """
        Delete a domain's generated artifacts. Tolerates files that are already gone.

        Never touches the document root or certificate files.
        """
        change = ArtifactChange(domain=domain.name)

        link = self.activator.enabled_link(domain.name)
        if self.activator.deactivate(domain.name):
            change.files_removed.append(str(link))

        frontend_path = self.frontend_path(domain.name)
        if frontend_path.exists():
            frontend_path.unlink()
            change.files_removed.append(str(frontend_path))

        if domain.is_proxied:
            result = self.activator.deactivate_secondary(domain.name)
            if not result.success:
                change.warnings.append(result.describe_failure())
            secondary_path = self.secondary_path(domain.name)
            if secondary_path.exists():
                secondary_path.unlink()
                change.files_removed.append(str(secondary_path))

        logger.info(f"Removed configuration for {domain.name}")
        return change
