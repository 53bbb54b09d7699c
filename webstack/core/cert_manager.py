"""
Certificate issuance for SSL-enabled domains.

Self-signed pairs are generated in-process. Let's Encrypt certificates are
obtained from certbot in standalone mode, which needs port 80, so the
caller is responsible for stopping the web servers around `request_certificate`.
"""

import logging
import socket
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from webstack.config import Settings, get_settings
from webstack.core.errors import ExternalToolError, ExternalValidationError
from webstack.core.system_service import CommandResult, SystemService, system_service
from webstack.models.certificate import CertificateRecord, CertificateType

logger = logging.getLogger(__name__)

# Let's Encrypt refuses requests from hosts whose clock is this far off
MIN_SANE_YEAR = 2020


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_certificate(cert_pem: bytes) -> dict:
    """
    Read the validity window of a PEM certificate.

    Args:
        cert_pem: PEM-encoded certificate (a full chain is fine, the first block is used)

    Returns:
        Dictionary with `not_before` and `not_after` as aware UTC datetimes
    """
    cert = x509.load_pem_x509_certificate(cert_pem)
    return {
        "not_before": cert.not_valid_before_utc,
        "not_after": cert.not_valid_after_utc,
    }


class CertificateManager:
    """
    Obtains certificate/key pairs and drives certbot.

    Does not touch the record stores; the SSL orchestrator persists what
    this class returns.
    """

    def __init__(self, system: SystemService | None = None, config: Settings | None = None):
        self.system = system or system_service
        self.config = config or get_settings()

    # Paths

    def self_signed_paths(self, domain: str) -> tuple[Path, Path]:
        ssl_dir = Path(self.config.ssl_dir)
        return ssl_dir / f"{domain}.crt", ssl_dir / f"{domain}.key"

    def letsencrypt_paths(self, domain: str) -> tuple[Path, Path]:
        live = Path(self.config.letsencrypt_live_dir) / domain
        return live / "fullchain.pem", live / "privkey.pem"

    # Certificate type

    def default_type(self, domain: str) -> CertificateType:
        """Local development names cannot pass an ACME challenge, so they get self-signed."""
        if domain == "localhost" or domain.endswith(tuple(self.config.local_domain_suffixes)):
            return CertificateType.SELF_SIGNED
        return CertificateType.LETSENCRYPT

    # Self-signed

    def generate_self_signed(self, domain: str) -> tuple[Path, Path, bool]:
        """
        Create a self-signed pair for the domain, or reuse the existing one.

        Returns:
            (cert_path, key_path, created)
        """
        cert_path, key_path = self.self_signed_paths(domain)
        if cert_path.is_file() and key_path.is_file():
            logger.info(f"Using existing self-signed certificate for {domain}")
            return cert_path, key_path, False

        cert_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Generating self-signed certificate for {domain}")

        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
        now = _utcnow()
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=self.config.self_signed_days))
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .sign(private_key, hashes.SHA256())
        )

        key_path.write_bytes(
            private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.TraditionalOpenSSL,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        # Restrict permissions on private key
        key_path.chmod(0o600)
        cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
        cert_path.chmod(0o644)

        return cert_path, key_path, True

    # Let's Encrypt

    def check_domain_dns(self, domain: str) -> tuple[bool, list[str]]:
        """
        Check if domain resolves in DNS.

        Returns (resolves, ip_addresses)
        """
        try:
            result = socket.getaddrinfo(domain, None)
            ips = sorted(set(addr[4][0] for addr in result))
            return bool(ips), ips
        except (socket.gaierror, UnicodeError):
            return False, []

    def validate_for_letsencrypt(self, domain: str) -> list[str]:
        """
        Checks that must pass before any web server is stopped.

        Returns:
            The addresses the domain resolves to

        Raises:
            ExternalValidationError: DNS does not resolve or the system clock is implausible
        """
        resolves, ips = self.check_domain_dns(domain)
        if not resolves:
            raise ExternalValidationError(
                f"Domain '{domain}' does not resolve in DNS",
                domain=domain,
                suggestion=(
                    f"Point an A/AAAA record for {domain} at this server and wait for it to propagate, "
                    "or use --type selfsigned for local domains"
                ),
            )
        logger.info(f"{domain} resolves to {', '.join(ips)}")

        year = _utcnow().year
        if year < MIN_SANE_YEAR:
            raise ExternalValidationError(
                f"System time is too far in the past (year {year})",
                domain=domain,
                suggestion="Let's Encrypt requires accurate system time. Run: sudo ntpdate -s time.nist.gov",
            )
        return ips

    def ensure_certbot_installed(self) -> None:
        """
        Install certbot through apt if it is not on PATH.

        Raises:
            ExternalToolError: certbot is still unavailable afterwards
        """
        if self.system.which(self.config.certbot_binary):
            return

        logger.info("certbot not found, installing via apt")
        for args in (["apt", "update"], ["apt", "install", "-y", "certbot", "python3-certbot-nginx"]):
            result = self.system.run(args)
            if not result.success:
                raise ExternalToolError(
                    f"Could not install certbot: {result.describe_failure()}",
                    suggestion="Install certbot manually: sudo apt install certbot python3-certbot-nginx",
                    output=result.stderr,
                )

        if not self.system.which(self.config.certbot_binary):
            raise ExternalToolError(
                "certbot is still not available after installation",
                suggestion="Install certbot manually and make sure it is on PATH",
            )

    def request_certificate(self, domain: str, email: str) -> tuple[Path, Path]:
        """
        Ask certbot for a certificate in standalone mode.

        Port 80 must be free while this runs.

        Raises:
            ExternalToolError: certbot failed or did not produce the expected files
        """
        result = self.system.run(
            [
                self.config.certbot_binary,
                "certonly",
                "--standalone",
                "--non-interactive",
                "--agree-tos",
                "--email",
                email,
                "-d",
                domain,
            ]
        )
        if not result.success:
            raise ExternalToolError(
                f"certbot certificate request failed for {domain}",
                domain=domain,
                suggestion="Make sure port 80 is reachable from the internet and not in use",
                output=result.stderr or result.stdout,
            )

        cert_path, key_path = self.letsencrypt_paths(domain)
        for path in (cert_path, key_path):
            if not path.is_file():
                raise ExternalToolError(
                    f"certbot reported success but {path} does not exist",
                    domain=domain,
                    output=result.stdout,
                )

        logger.info(f"Obtained Let's Encrypt certificate for {domain}")
        return cert_path, key_path

    def renew(self, domain: str) -> CommandResult:
        """Force renewal of one certificate."""
        return self.system.run([self.config.certbot_binary, "renew", "--cert-name", domain, "--force-renewal"])

    def renew_all(self) -> CommandResult:
        """Let certbot renew whatever is inside its renewal window."""
        return self.system.run([self.config.certbot_binary, "renew", "--quiet"])

    # Records

    def read_validity(self, cert_path: Path | str, fallback_days: int) -> tuple[datetime, datetime]:
        """Issued/expiry dates from the certificate file, or now + fallback_days if unreadable."""
        try:
            details = parse_certificate(Path(cert_path).read_bytes())
            return details["not_before"], details["not_after"]
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read certificate dates from {cert_path}: {e}")
            now = _utcnow()
            return now, now + timedelta(days=fallback_days)

    def build_record(
        self,
        domain: str,
        email: str,
        certificate_type: CertificateType,
        cert_path: Path | str,
        key_path: Path | str,
    ) -> CertificateRecord:
        """An enabled certificate record with dates taken from the file itself."""
        fallback = (
            self.config.self_signed_days
            if certificate_type == CertificateType.SELF_SIGNED
            else self.config.letsencrypt_validity_days
        )
        issued_at, expires_at = self.read_validity(cert_path, fallback)
        return CertificateRecord(
            domain=domain,
            email=email,
            enabled=True,
            certificate_type=certificate_type,
            issued_at=issued_at,
            expires_at=expires_at,
            cert_path=str(cert_path),
            key_path=str(key_path),
        )
