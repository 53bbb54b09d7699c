"""
Site configuration generator.

Renders nginx and Apache configs for a domain from Jinja2 templates
found on an ordered search path, and installs them.
"""

from .generator import ArtifactChange, ConfigGenerator, RenderedSite
from .resolver import (
    ConfigGeneratorError,
    GlobalConfigInspector,
    NginxGlobalConfigInspector,
    ServerKind,
    StaticConfigInspector,
    TemplateNotFoundError,
    TemplateResolver,
)

__all__ = [
    "ArtifactChange",
    "ConfigGenerator",
    "ConfigGeneratorError",
    "GlobalConfigInspector",
    "NginxGlobalConfigInspector",
    "RenderedSite",
    "ServerKind",
    "StaticConfigInspector",
    "TemplateNotFoundError",
    "TemplateResolver",
]
