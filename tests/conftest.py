"""
Global test fixtures.

Every path is redirected into tmp_path and every external command goes
through FakeSystemService, so no test touches the host's web servers,
crontab or systemd.
"""

from collections.abc import Callable

import pytest

from webstack.config import PACKAGE_TEMPLATE_DIR, Settings
from webstack.core.activator import BackendActivator
from webstack.core.cert_manager import CertificateManager
from webstack.core.config_generator import ConfigGenerator, StaticConfigInspector, TemplateResolver
from webstack.core.domain_manager import DomainManager
from webstack.core.record_store import CertificateStore, DomainStore
from webstack.core.renewal_scheduler import RenewalScheduler
from webstack.core.ssl_manager import SSLManager
from webstack.core.system_service import CommandResult, CrontabService, SystemService


class FakeSystemService(SystemService):
    """
    In-memory stand-in for systemctl, crontab, a2ensite/a2enmod, which and certbot.

    Commands succeed by default. `fail(prefix)` makes every command whose
    text starts with prefix fail; `handlers[name]` overrides a whole binary.
    """

    def __init__(self):
        self.calls: list[list[str]] = []
        self.streamed: list[list[str]] = []
        self.crontab_text: str | None = None
        self.active_units: set[str] = set()
        self.installed: set[str] = {"certbot"}
        self.failures: dict[str, tuple[int, str]] = {}
        self.handlers: dict[str, Callable[[list[str]], CommandResult]] = {}

    def fail(self, prefix: str, returncode: int = 1, stderr: str = "simulated failure"):
        self.failures[prefix] = (returncode, stderr)

    @property
    def commands(self) -> list[str]:
        return [" ".join(args) for args in self.calls]

    def ran(self, prefix: str) -> bool:
        return any(command.startswith(prefix) for command in self.commands)

    def run(self, args, input=None, stream=False):
        args = list(args)
        self.calls.append(args)
        if stream:
            self.streamed.append(args)
        command = " ".join(args)

        for prefix, (returncode, stderr) in self.failures.items():
            if command.startswith(prefix):
                return CommandResult(args=args, returncode=returncode, stderr=stderr)

        name = args[0]
        if name in self.handlers:
            return self.handlers[name](args)

        if name == "crontab":
            if args[1:] == ["-l"]:
                if self.crontab_text is None:
                    return CommandResult(args=args, returncode=1, stderr="no crontab for root")
                return CommandResult(args=args, returncode=0, stdout=self.crontab_text)
            self.crontab_text = input or ""
            return CommandResult(args=args, returncode=0)

        if name == "systemctl":
            action, units = args[1], args[2:]
            if action == "is-active":
                active = units[0] in self.active_units
                return CommandResult(args=args, returncode=0 if active else 3, stdout="active" if active else "inactive")
            if action == "start":
                self.active_units.update(units)
            elif action == "stop":
                self.active_units.difference_update(units)
            return CommandResult(args=args, returncode=0)

        if name == "which":
            return CommandResult(args=args, returncode=0 if args[1] in self.installed else 1)

        return CommandResult(args=args, returncode=0)


def make_settings(tmp_path, **overrides) -> Settings:
    """Settings with every path under tmp_path."""
    values = {
        "WEBSTACK_DOMAINS_FILE": str(tmp_path / "etc/webstack/domains.json"),
        "WEBSTACK_SSL_FILE": str(tmp_path / "etc/webstack/ssl.json"),
        "WEBSTACK_WWW_ROOT": str(tmp_path / "var/www"),
        "WEBSTACK_NGINX_MAIN_CONF": str(tmp_path / "etc/nginx/nginx.conf"),
        "WEBSTACK_NGINX_SITES_AVAILABLE": str(tmp_path / "etc/nginx/sites-available"),
        "WEBSTACK_NGINX_SITES_ENABLED": str(tmp_path / "etc/nginx/sites-enabled"),
        "WEBSTACK_APACHE_SITES_AVAILABLE": str(tmp_path / "etc/apache2/sites-available"),
        "WEBSTACK_TEMPLATE_SEARCH_PATHS": [str(PACKAGE_TEMPLATE_DIR)],
        "WEBSTACK_SSL_DIR": str(tmp_path / "etc/ssl/webstack"),
        "WEBSTACK_LETSENCRYPT_LIVE_DIR": str(tmp_path / "etc/letsencrypt/live"),
        "WEBSTACK_SYSTEMD_UNIT_DIR": str(tmp_path / "etc/systemd/system"),
        "WEBSTACK_RENEWAL_BIN_DIR": str(tmp_path / "usr/local/bin"),
        "WEBSTACK_RENEWAL_LOG_FILE": str(tmp_path / "var/log/webstack/ssl-renewal.log"),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def settings_factory(tmp_path):
    """Build Settings under tmp_path with some values overridden (by env alias)."""
    return lambda **overrides: make_settings(tmp_path, **overrides)


@pytest.fixture
def fake_system():
    return FakeSystemService()


@pytest.fixture
def resolver(settings):
    """Resolver over the packaged templates; the global config declares a cache zone."""
    return TemplateResolver(config=settings, inspector=StaticConfigInspector(True))


@pytest.fixture
def activator(fake_system, settings):
    return BackendActivator(system=fake_system, config=settings)


@pytest.fixture
def generator(resolver, activator, settings):
    return ConfigGenerator(resolver=resolver, activator=activator, config=settings)


@pytest.fixture
def domain_store(settings):
    return DomainStore(settings.domains_file)


@pytest.fixture
def certificate_store(settings):
    return CertificateStore(settings.ssl_file)


@pytest.fixture
def domain_manager(domain_store, certificate_store, generator, settings):
    return DomainManager(
        domains=domain_store,
        certificates=certificate_store,
        generator=generator,
        config=settings,
    )


@pytest.fixture
def cert_manager(fake_system, settings):
    return CertificateManager(system=fake_system, config=settings)


@pytest.fixture
def scheduler(fake_system, settings):
    return RenewalScheduler(system=fake_system, crontab=CrontabService(fake_system), config=settings)


@pytest.fixture
def ssl_manager(domain_manager, cert_manager, scheduler, settings):
    return SSLManager(
        domain_manager=domain_manager,
        cert_manager=cert_manager,
        scheduler=scheduler,
        config=settings,
    )
