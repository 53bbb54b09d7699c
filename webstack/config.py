"""
Configuration utilities and settings management.

Handles environment variables, path resolution, and application settings.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

PACKAGE_TEMPLATE_DIR = Path(__file__).parent / "templates"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Persisted state
    domains_file: str = Field(default="/etc/webstack/domains.json", alias="WEBSTACK_DOMAINS_FILE")
    ssl_file: str = Field(default="/etc/webstack/ssl.json", alias="WEBSTACK_SSL_FILE")

    # Site layout
    www_root: str = Field(
        default="/var/www", alias="WEBSTACK_WWW_ROOT", description="Parent of every per-domain directory"
    )
    default_backend: str = Field(default="nginx", alias="WEBSTACK_DEFAULT_BACKEND")
    default_php_version: str = Field(default="8.2", alias="WEBSTACK_DEFAULT_PHP_VERSION")
    php_socket_pattern: str = Field(
        default="unix:/run/php/php{version}-fpm.sock",
        alias="WEBSTACK_PHP_SOCKET_PATTERN",
        description="PHP-FPM socket path, {version} is the normalized PHP version",
    )

    # NGINX (frontend)
    nginx_main_conf: str = Field(default="/etc/nginx/nginx.conf", alias="WEBSTACK_NGINX_MAIN_CONF")
    nginx_sites_available: str = Field(
        default="/etc/nginx/sites-available", alias="WEBSTACK_NGINX_SITES_AVAILABLE"
    )
    nginx_sites_enabled: str = Field(default="/etc/nginx/sites-enabled", alias="WEBSTACK_NGINX_SITES_ENABLED")
    nginx_service: str = Field(default="nginx", alias="WEBSTACK_NGINX_SERVICE")

    # Apache (secondary backend)
    apache_sites_available: str = Field(
        default="/etc/apache2/sites-available", alias="WEBSTACK_APACHE_SITES_AVAILABLE"
    )
    apache_service: str = Field(default="apache2", alias="WEBSTACK_APACHE_SERVICE")
    apache_port: int = Field(
        default=8080, alias="WEBSTACK_APACHE_PORT", description="Port Apache listens on behind nginx"
    )
    apache_modules: list[str] = Field(
        default=["proxy_fcgi", "proxy", "setenvif", "remoteip"],
        alias="WEBSTACK_APACHE_MODULES",
        description="Modules registered before the first Apache site is enabled",
    )

    # Templates
    template_search_paths: list[str] = Field(
        default=[
            "/etc/webstack/templates",
            str(PACKAGE_TEMPLATE_DIR),
            "/usr/share/webstack/templates",
            "/usr/local/share/webstack/templates",
            "/opt/webstack/templates",
        ],
        alias="WEBSTACK_TEMPLATE_SEARCH_PATHS",
        description="Ordered template roots, first directory containing the file wins",
    )

    # SSL Configuration
    ssl_dir: str = Field(default="/etc/ssl/webstack", alias="WEBSTACK_SSL_DIR")
    letsencrypt_live_dir: str = Field(default="/etc/letsencrypt/live", alias="WEBSTACK_LETSENCRYPT_LIVE_DIR")
    certbot_binary: str = Field(default="certbot", alias="WEBSTACK_CERTBOT_BINARY")
    certbot_path: str = Field(
        default="/usr/bin/certbot",
        alias="WEBSTACK_CERTBOT_PATH",
        description="Absolute certbot path used in unit files, cron lines and renewal scripts",
    )
    self_signed_days: int = Field(default=365, alias="WEBSTACK_SELF_SIGNED_DAYS")
    self_signed_email: str = Field(default="self-signed@localhost", alias="WEBSTACK_SELF_SIGNED_EMAIL")
    letsencrypt_validity_days: int = Field(
        default=90,
        alias="WEBSTACK_LETSENCRYPT_VALIDITY_DAYS",
        description="Assumed lifetime when the issued certificate cannot be parsed",
    )
    cert_expiry_warning_days: int = Field(
        default=30, alias="WEBSTACK_CERT_EXPIRY_WARNING_DAYS", description="Days before expiry to flag a certificate"
    )
    local_domain_suffixes: list[str] = Field(
        default=[".local", ".test", ".dev"],
        alias="WEBSTACK_LOCAL_DOMAIN_SUFFIXES",
        description="Domains with these suffixes default to self-signed certificates",
    )

    # Renewal scheduling
    renewal_unit_name: str = Field(default="webstack-certbot-renew", alias="WEBSTACK_RENEWAL_UNIT_NAME")
    systemd_unit_dir: str = Field(default="/etc/systemd/system", alias="WEBSTACK_SYSTEMD_UNIT_DIR")
    renewal_timer_calendar: str = Field(default="*-*-* 03:15:00", alias="WEBSTACK_RENEWAL_TIMER_CALENDAR")
    renewal_cron_schedule: str = Field(default="0 3,15 * * *", alias="WEBSTACK_RENEWAL_CRON_SCHEDULE")
    domain_renewal_cron_schedule: str = Field(default="0 2 * * *", alias="WEBSTACK_DOMAIN_RENEWAL_CRON_SCHEDULE")
    renewal_bin_dir: str = Field(default="/usr/local/bin", alias="WEBSTACK_RENEWAL_BIN_DIR")
    renewal_log_file: str = Field(default="/var/log/webstack/ssl-renewal.log", alias="WEBSTACK_RENEWAL_LOG_FILE")

    # Logging
    log_level: str = Field(default="INFO", alias="WEBSTACK_LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False
        populate_by_name = True
        extra = "ignore"  # Ignore extra fields in .env file

    @property
    def timer_unit(self) -> str:
        return f"{self.renewal_unit_name}.timer"

    @property
    def service_unit(self) -> str:
        return f"{self.renewal_unit_name}.service"

    def php_socket(self, version: str) -> str:
        """Build the PHP-FPM socket path for a normalized PHP version."""
        return self.php_socket_pattern.format(version=version)

    def domain_base_dir(self, name: str) -> Path:
        return Path(self.www_root) / name

    def document_root(self, name: str) -> Path:
        """Document root is always {www_root}/{domain}/htdocs."""
        return self.domain_base_dir(name) / "htdocs"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return settings
