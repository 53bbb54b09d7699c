"""
Unit tests for the site configuration generator.
"""

from pathlib import Path

import pytest

from webstack.core.config_generator import (
    ConfigGenerator,
    ConfigGeneratorError,
    StaticConfigInspector,
    TemplateNotFoundError,
    TemplateResolver,
)
from webstack.models.certificate import CertificateRecord, CertificateType
from webstack.models.domain import Backend, DomainRecord


def make_domain(settings, name="example.com", backend=Backend.NGINX, php_version="8.2", ssl=False):
    record = DomainRecord(
        name=name,
        backend=backend,
        php_version=php_version,
        document_root=str(settings.document_root(name)),
    )
    if ssl:
        record.enable_ssl(f"/certs/{name}.crt", f"/certs/{name}.key", "admin@example.com")
    return record


def make_cert(name="example.com"):
    return CertificateRecord(
        domain=name,
        enabled=True,
        certificate_type=CertificateType.SELF_SIGNED,
        cert_path=f"/certs/{name}.crt",
        key_path=f"/certs/{name}.key",
    )


class TestSelectTemplates:
    """Test the backend/SSL selection table."""

    @pytest.mark.parametrize(
        "backend,ssl,expected",
        [
            (Backend.NGINX, False, ("direct", None)),
            (Backend.NGINX, True, ("direct-ssl", None)),
            (Backend.APACHE, False, ("proxy", "domain")),
            (Backend.APACHE, True, ("proxy-ssl", "domain")),
        ],
    )
    def test_table(self, backend, ssl, expected):
        """Test all four combinations."""
        assert ConfigGenerator.select_templates(backend, ssl) == expected

    def test_accepts_string_backend(self):
        """Test stored string values select the same templates."""
        assert ConfigGenerator.select_templates("apache", True) == ("proxy-ssl", "domain")


class TestTemplateVariables:
    """Test the variables derived from the record pair."""

    def test_plain_variables(self, generator, settings):
        """Test socket path and directories derive from the record."""
        variables = generator.template_variables(make_domain(settings, php_version="7.4"))

        assert variables["php_version"] == "7.4"
        assert variables["php_socket"] == "unix:/run/php/php7.4-fpm.sock"
        assert variables["document_root"] == str(settings.document_root("example.com"))
        assert variables["log_dir"].endswith("example.com/logs")
        assert "ssl_cert" not in variables

    def test_ssl_variables_come_from_certificate(self, generator, settings):
        """Test the certificate record supplies the paths."""
        variables = generator.template_variables(make_domain(settings, ssl=True), make_cert())
        assert variables["ssl_cert"] == "/certs/example.com.crt"
        assert variables["ssl_key"] == "/certs/example.com.key"

    def test_ssl_without_certificate_fails(self, generator, settings):
        """Test SSL on without a certificate is refused."""
        with pytest.raises(ConfigGeneratorError) as exc_info:
            generator.template_variables(make_domain(settings, ssl=True))
        assert exc_info.value.suggestion


class TestRender:
    """Test pure rendering."""

    def test_direct_has_no_secondary(self, generator, settings):
        """Test nginx-only domains render one artifact."""
        rendered = generator.render(make_domain(settings))
        assert rendered.frontend_template == "direct"
        assert rendered.secondary_content is None

    def test_proxied_renders_both(self, generator, settings):
        """Test apache domains render nginx proxy + Apache vhost."""
        rendered = generator.render(make_domain(settings, backend=Backend.APACHE))
        assert rendered.frontend_template == "proxy"
        assert "proxy_pass http://127.0.0.1:8080;" in rendered.frontend_content
        assert rendered.secondary_template == "domain"
        assert "ServerName example.com" in rendered.secondary_content

    def test_proxied_ssl_secondary_stays_plaintext(self, generator, settings):
        """Test TLS terminates at nginx."""
        rendered = generator.render(make_domain(settings, backend=Backend.APACHE, ssl=True), make_cert())
        assert rendered.frontend_template == "proxy-ssl"
        assert "ssl_certificate /certs/example.com.crt;" in rendered.frontend_content
        assert "SSLEngine" not in rendered.secondary_content
        assert "443" not in rendered.secondary_content

    def test_render_is_pure(self, generator, settings):
        """Test rendering twice with the same inputs is byte-identical and writes nothing."""
        domain = make_domain(settings, backend=Backend.APACHE, ssl=True)
        first = generator.render(domain, make_cert())
        second = generator.render(domain, make_cert())

        assert first == second
        assert not generator.frontend_path("example.com").exists()


class TestInstallRemove:
    """Test writing and removing artifacts."""

    def test_install_direct(self, generator, settings, fake_system):
        """Test the nginx file is written and symlinked."""
        change = generator.generate(make_domain(settings))

        available = Path(settings.nginx_sites_available) / "example.com.conf"
        enabled = Path(settings.nginx_sites_enabled) / "example.com.conf"
        assert change.files_written == [str(available)]
        assert enabled.is_symlink()
        assert enabled.resolve() == available.resolve()
        assert not fake_system.ran("a2ensite")
        assert not fake_system.ran("systemctl reload")

    def test_install_proxied_registers_apache_site(self, generator, settings, fake_system):
        """Test the Apache vhost is written, modules registered and site enabled."""
        change = generator.generate(make_domain(settings, backend=Backend.APACHE))

        apache = Path(settings.apache_sites_available) / "example.com.conf"
        assert str(apache) in change.files_written
        assert apache.exists()
        assert "a2enmod proxy_fcgi" in fake_system.commands
        assert "a2enmod remoteip" in fake_system.commands
        assert "a2ensite example.com" in fake_system.commands
        assert change.warnings == []

    def test_apache_registration_failure_is_a_warning(self, generator, settings, fake_system):
        """Test a2ensite/a2enmod failures do not abort the install."""
        fake_system.fail("a2enmod setenvif")
        fake_system.fail("a2ensite")

        change = generator.generate(make_domain(settings, backend=Backend.APACHE))

        assert len(change.warnings) == 2
        assert (Path(settings.apache_sites_available) / "example.com.conf").exists()

    def test_regenerate_replaces_previous_artifact(self, generator, settings):
        """Test installing again overwrites the file and relinks."""
        generator.generate(make_domain(settings, php_version="8.1"))
        generator.generate(make_domain(settings, php_version="8.3"))

        content = generator.frontend_path("example.com").read_text()
        assert "php8.3-fpm.sock" in content
        assert "php8.1-fpm.sock" not in content

    def test_remove_proxied(self, generator, settings, fake_system):
        """Test removal deletes both nginx paths and the Apache site."""
        domain = make_domain(settings, backend=Backend.APACHE)
        generator.generate(domain)

        change = generator.remove(domain)

        assert not generator.frontend_path("example.com").exists()
        assert not (Path(settings.nginx_sites_enabled) / "example.com.conf").is_symlink()
        assert not generator.secondary_path("example.com").exists()
        assert "a2dissite example.com" in fake_system.commands
        assert len(change.files_removed) == 3

    def test_remove_is_idempotent(self, generator, settings):
        """Test removing twice tolerates missing files."""
        domain = make_domain(settings)
        generator.generate(domain)
        generator.remove(domain)

        change = generator.remove(domain)
        assert change.files_removed == []

    def test_remove_keeps_document_root(self, generator, settings):
        """Test removal never touches site content."""
        domain = make_domain(settings)
        Path(domain.document_root).mkdir(parents=True)
        generator.generate(domain)
        generator.remove(domain)
        assert Path(domain.document_root).is_dir()

    def test_missing_template_writes_nothing(self, tmp_path, settings, activator):
        """Test a missing frontend template aborts before any file is written."""
        empty = tmp_path / "empty-templates"
        empty.mkdir()
        resolver = TemplateResolver([empty], inspector=StaticConfigInspector(True), config=settings)
        generator = ConfigGenerator(resolver=resolver, activator=activator, config=settings)

        with pytest.raises(TemplateNotFoundError):
            generator.generate(make_domain(settings, backend=Backend.APACHE))

        assert not generator.frontend_path("example.com").exists()
        assert not generator.secondary_path("example.com").exists()

    def test_missing_secondary_template_writes_nothing(self, tmp_path, settings, activator):
        """Test a missing Apache template also leaves the nginx file unwritten."""
        root = tmp_path / "partial"
        (root / "nginx").mkdir(parents=True)
        (root / "nginx" / "proxy.conf.j2").write_text("proxy {{ domain }}\n")
        resolver = TemplateResolver([root], inspector=StaticConfigInspector(True), config=settings)
        generator = ConfigGenerator(resolver=resolver, activator=activator, config=settings)

        with pytest.raises(TemplateNotFoundError):
            generator.generate(make_domain(settings, backend=Backend.APACHE))

        assert not generator.frontend_path("example.com").exists()
