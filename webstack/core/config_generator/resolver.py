"""
Template resolution and rendering for generated site configs.

Templates are looked up across an ordered list of root directories; the
first root holding `{server_kind}/{template_name}.conf.j2` wins. Rendered
nginx configs are post-processed to drop FastCGI cache lines when the
global nginx.conf declares no cache zone.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Protocol

import crossplane
from crossplane.errors import NgxParserBaseException
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from jinja2 import TemplateNotFound as JinjaTemplateNotFound
from jinja2.exceptions import TemplateError

from webstack.config import Settings, get_settings
from webstack.core.errors import WebStackError

logger = logging.getLogger(__name__)

CACHE_ZONE_DIRECTIVE = "fastcgi_cache_path"

# Lines carrying any of these markers implement response caching
CACHE_LINE_MARKERS = (
    "# FastCGI cache settings",
    "fastcgi_cache ",
    "fastcgi_cache_valid",
    "fastcgi_cache_bypass",
    "fastcgi_no_cache",
    "$no_cache",
)


class ServerKind(str, Enum):
    """Which server a template configures."""
    FRONTEND = "nginx"
    SECONDARY = "apache"


FRONTEND_TEMPLATES = ("direct", "direct-ssl", "proxy", "proxy-ssl")
SECONDARY_TEMPLATES = ("domain",)


class ConfigGeneratorError(WebStackError):
    """Base exception for config generator errors."""
    pass


class TemplateNotFoundError(ConfigGeneratorError):
    """Template file not found in any search path."""
    pass


class GlobalConfigInspector(Protocol):
    """Answers questions about the global frontend configuration."""

    def declares_cache_zone(self) -> bool | None:
        """True/False when known, None when the global config cannot be read."""
        ...


class NginxGlobalConfigInspector:
    """Looks for a fastcgi_cache_path directive in nginx.conf and its includes."""

    def __init__(self, main_conf: Path | str):
        self.main_conf = Path(main_conf)

    def declares_cache_zone(self) -> bool | None:
        if not self.main_conf.is_file():
            logger.debug(f"Global nginx config not found: {self.main_conf}")
            return None

        try:
            payload = crossplane.parse(
                str(self.main_conf),
                catch_errors=True,
                check_ctx=False,
                check_args=False,
            )
        except (OSError, NgxParserBaseException) as e:
            logger.warning(f"Could not parse {self.main_conf}: {e}")
            return None

        configs = payload.get("config", [])
        if not configs or (configs[0].get("status") == "failed" and not configs[0].get("parsed")):
            logger.warning(f"Could not parse {self.main_conf}: {payload.get('errors')}")
            return None

        for config in configs:
            if self._contains_directive(config.get("parsed", []), CACHE_ZONE_DIRECTIVE):
                return True
        return False

    def _contains_directive(self, directives: list[dict], name: str) -> bool:
        for directive in directives:
            if directive.get("directive") == name:
                return True
            if self._contains_directive(directive.get("block", []), name):
                return True
        return False


class StaticConfigInspector:
    """Inspector with a fixed answer, for tests and dry runs."""

    def __init__(self, declares_cache_zone: bool | None):
        self._answer = declares_cache_zone

    def declares_cache_zone(self) -> bool | None:
        return self._answer


def strip_cache_lines(rendered: str) -> str:
    """Remove every caching line, keeping all other lines in order."""
    kept = [line for line in rendered.split("\n") if not any(marker in line for marker in CACHE_LINE_MARKERS)]
    return "\n".join(kept)


class TemplateResolver:
    """
    Locates and renders config templates from an ordered search path.

    Rendering is plain variable substitution; the nginx/Apache syntax in
    the templates is never interpreted.
    """

    def __init__(
        self,
        search_paths: list[Path | str] | None = None,
        inspector: GlobalConfigInspector | None = None,
        config: Settings | None = None,
    ):
        config = config or get_settings()
        paths = search_paths if search_paths is not None else config.template_search_paths
        self.search_paths = [Path(p) for p in paths]
        self.inspector = inspector or NginxGlobalConfigInspector(config.nginx_main_conf)

        # FileSystemLoader already returns the first path containing the file
        self.env = Environment(
            loader=FileSystemLoader([str(p) for p in self.search_paths]),
            autoescape=False,  # server configs don't need HTML escaping
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

        logger.debug(f"TemplateResolver search path: {', '.join(str(p) for p in self.search_paths)}")

    @staticmethod
    def template_file(server_kind: ServerKind, template_name: str) -> str:
        return f"{ServerKind(server_kind).value}/{template_name}.conf.j2"

    def locate(self, server_kind: ServerKind, template_name: str) -> Path:
        """Return the file that would be used for this template."""
        relative = self.template_file(server_kind, template_name)
        for root in self.search_paths:
            candidate = root / relative
            if candidate.is_file():
                return candidate
        raise TemplateNotFoundError(
            f"Template {relative} not found in any template directory",
            suggestion="Searched: " + ", ".join(str(p) for p in self.search_paths),
        )

    def resolve(self, server_kind: ServerKind, template_name: str) -> bytes:
        """Raw template content from the first matching root."""
        return self.locate(server_kind, template_name).read_bytes()

    def available_templates(self) -> dict[str, str]:
        """Map of every known template to the file that satisfies it."""
        found = {}
        for kind, names in ((ServerKind.FRONTEND, FRONTEND_TEMPLATES), (ServerKind.SECONDARY, SECONDARY_TEMPLATES)):
            for name in names:
                try:
                    found[self.template_file(kind, name)] = str(self.locate(kind, name))
                except TemplateNotFoundError:
                    continue
        return found

    def render(self, server_kind: ServerKind, template_name: str, variables: dict, domain: str | None = None) -> str:
        """
        Render a template with the given variables.

        Raises:
            TemplateNotFoundError: No search path holds the template
            ConfigGeneratorError: The template references an unknown variable or is malformed
        """
        relative = self.template_file(server_kind, template_name)
        try:
            template = self.env.get_template(relative)
        except JinjaTemplateNotFound:
            raise TemplateNotFoundError(
                f"Template {relative} not found in any template directory",
                domain=domain,
                suggestion="Searched: " + ", ".join(str(p) for p in self.search_paths),
            )

        try:
            rendered = template.render(**variables)
        except TemplateError as e:
            raise ConfigGeneratorError(f"Could not render {relative}: {e}", domain=domain)

        if ServerKind(server_kind) == ServerKind.FRONTEND:
            rendered = self.suppress_cache(rendered)
        return rendered

    def suppress_cache(self, rendered: str) -> str:
        """Drop cache lines unless the global config declares a cache zone (or can't be read)."""
        if "fastcgi_cache" not in rendered:
            return rendered
        declared = self.inspector.declares_cache_zone()
        if declared is None or declared:
            return rendered
        logger.info("Global nginx config declares no FastCGI cache zone; stripping cache directives")
        return strip_cache_lines(rendered)
