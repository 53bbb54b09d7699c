"""
Command line entry point.

    webstack domain add|edit|delete|list|rebuild-configs
    webstack ssl enable|disable|renew|status|autorenew
    webstack templates
"""

import argparse
import logging
import sys

from webstack import __version__
from webstack.config import Settings, get_settings
from webstack.core.config_generator import TemplateResolver
from webstack.core.domain_manager import DomainManager
from webstack.core.errors import ExternalToolError, WebStackError
from webstack.core.ssl_manager import AUTORENEW_ACTIONS, SSLManager
from webstack.models.domain import PHP_VERSIONS, Backend
from webstack.models.operation import OperationResult

logger = logging.getLogger(__name__)


def print_result(result: OperationResult) -> None:
    print(f"✅ {result.message}")
    for key, value in result.details.items():
        if value:
            print(f"   {key}: {value}")
    for warning in result.warnings:
        print(f"⚠️  Warning: {warning}")
    if not result.reloaded and (result.files_written or result.files_removed):
        print("   Web servers were not reloaded cleanly; run 'systemctl reload nginx apache2' manually")


# Domain commands


def cmd_domain_add(args, domains: DomainManager, ssl: SSLManager) -> int:
    print_result(domains.add(args.name, backend=args.backend, php_version=args.php))
    return 0


def cmd_domain_edit(args, domains: DomainManager, ssl: SSLManager) -> int:
    print_result(domains.edit(args.name, backend=args.backend, php_version=args.php))
    return 0


def cmd_domain_delete(args, domains: DomainManager, ssl: SSLManager) -> int:
    result = domains.delete(args.name)
    print_result(result)
    print("   Document root preserved (contains htdocs/, logs/, configs/, error/)")
    return 0


def cmd_domain_list(args, domains: DomainManager, ssl: SSLManager) -> int:
    records = domains.list_domains()
    if not records:
        print("No domains configured")
        return 0

    print(f"{'DOMAIN':<40} {'BACKEND':<8} {'PHP':<5} SSL")
    for record in records:
        print(f"{record.name:<40} {record.backend.value:<8} {record.php_version:<5} {'yes' if record.ssl_enabled else 'no'}")
    return 0


def cmd_domain_rebuild(args, domains: DomainManager, ssl: SSLManager) -> int:
    result = domains.rebuild_configs()
    print(f"Rebuilt {len(result.rebuilt)} domain(s), {len(result.failed)} failed")
    for name, error in result.failed.items():
        print(f"❌ {name}: {error}")
    for warning in result.warnings:
        print(f"⚠️  Warning: {warning}")
    return 0 if result.success else 1


# SSL commands


def cmd_ssl_enable(args, domains: DomainManager, ssl: SSLManager) -> int:
    print_result(ssl.enable(args.domain, email=args.email, cert_type=args.type))
    return 0


def cmd_ssl_disable(args, domains: DomainManager, ssl: SSLManager) -> int:
    print_result(ssl.disable(args.domain))
    return 0


def cmd_ssl_renew(args, domains: DomainManager, ssl: SSLManager) -> int:
    if args.all or not args.domain:
        print_result(ssl.renew_all())
    else:
        print_result(ssl.renew(args.domain))
    return 0


def cmd_ssl_status(args, domains: DomainManager, ssl: SSLManager) -> int:
    statuses = [ssl.status(args.domain)] if args.domain else ssl.status_all()
    if not statuses:
        print("No SSL certificates configured")
        return 0

    for status in statuses:
        state = "enabled" if status.enabled else "disabled"
        print(f"{status.domain}: {state} ({status.certificate_type.value})")
        if status.email:
            print(f"   Email: {status.email}")
        if status.expires_at:
            print(f"   Expires: {status.expires_at:%Y-%m-%d} ({status.days_until_expiry} days)")
        if status.expiring_soon:
            print("   ⚠️  Certificate expires soon")
    return 0


def cmd_ssl_autorenew(args, domains: DomainManager, ssl: SSLManager) -> int:
    report = ssl.autorenew(args.action)
    state = f"ENABLED ({report.mechanism})" if report.enabled else "DISABLED"
    print(f"Automatic renewal: {state}")
    if report.detail:
        print(f"   {report.detail}")
    return 0


def cmd_templates(args, domains: DomainManager, ssl: SSLManager) -> int:
    resolver: TemplateResolver = domains.generator.resolver
    found = resolver.available_templates()
    for template, path in found.items():
        print(f"{template:<28} {path}")
    if not found:
        print("No templates found in: " + ", ".join(str(p) for p in resolver.search_paths))
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="webstack", description="Per-domain web server and SSL configuration")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    commands = parser.add_subparsers(dest="command", required=True)

    # domain
    domain = commands.add_parser("domain", help="Manage domains").add_subparsers(dest="domain_command", required=True)

    add = domain.add_parser("add", help="Add a domain")
    add.add_argument("name")
    add.add_argument("--backend", choices=[b.value for b in Backend], help="nginx or apache (default: nginx)")
    add.add_argument("--php", choices=PHP_VERSIONS, help="PHP version (default: 8.2)")
    add.set_defaults(handler=cmd_domain_add)

    edit = domain.add_parser("edit", help="Change a domain's backend or PHP version")
    edit.add_argument("name")
    edit.add_argument("--backend", choices=[b.value for b in Backend])
    edit.add_argument("--php", choices=PHP_VERSIONS)
    edit.set_defaults(handler=cmd_domain_edit)

    delete = domain.add_parser("delete", help="Delete a domain (document root is kept)")
    delete.add_argument("name")
    delete.set_defaults(handler=cmd_domain_delete)

    domain.add_parser("list", help="List domains").set_defaults(handler=cmd_domain_list)
    domain.add_parser("rebuild-configs", help="Regenerate every domain's configs").set_defaults(
        handler=cmd_domain_rebuild
    )

    # ssl
    ssl = commands.add_parser("ssl", help="Manage SSL certificates").add_subparsers(dest="ssl_command", required=True)

    enable = ssl.add_parser("enable", help="Enable SSL for a domain")
    enable.add_argument("domain")
    enable.add_argument("--email", help="Registration email (required for Let's Encrypt)")
    enable.add_argument(
        "--type",
        help="selfsigned or letsencrypt (default: selfsigned for .local/.test/.dev, letsencrypt otherwise)",
    )
    enable.set_defaults(handler=cmd_ssl_enable)

    disable = ssl.add_parser("disable", help="Disable SSL for a domain (certificate files are kept)")
    disable.add_argument("domain")
    disable.set_defaults(handler=cmd_ssl_disable)

    renew = ssl.add_parser("renew", help="Renew one certificate, or all of them")
    renew.add_argument("domain", nargs="?")
    renew.add_argument("--all", action="store_true", help="Renew every certificate that is due")
    renew.set_defaults(handler=cmd_ssl_renew)

    status = ssl.add_parser("status", help="Show certificate status")
    status.add_argument("domain", nargs="?")
    status.set_defaults(handler=cmd_ssl_status)

    autorenew = ssl.add_parser("autorenew", help="Manage automatic renewal")
    autorenew.add_argument("action", choices=AUTORENEW_ACTIONS)
    autorenew.set_defaults(handler=cmd_ssl_autorenew)

    commands.add_parser("templates", help="Show which template files are in use").set_defaults(handler=cmd_templates)

    return parser


def main(argv: list[str] | None = None, config: Settings | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = config or get_settings()

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    domains = DomainManager(config=config)
    ssl = SSLManager(domain_manager=domains, config=config)

    try:
        return args.handler(args, domains, ssl)
    except WebStackError as e:
        logger.debug(f"{type(e).__name__}: {e.message}")
        print(f"❌ Error: {e.message}", file=sys.stderr)
        if isinstance(e, ExternalToolError) and e.output:
            print(e.output.rstrip(), file=sys.stderr)
        if e.suggestion:
            print(f"   {e.suggestion}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
