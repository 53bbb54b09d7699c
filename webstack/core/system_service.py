"""
System command service.

Thin wrapper around subprocess for systemctl, crontab, a2ensite/a2enmod,
certbot and apt. Every call returns a CommandResult; callers decide whether
a failure is fatal or only worth a warning.
"""

import logging
import subprocess
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return " ".join(self.args)

    def describe_failure(self) -> str:
        """Short one-line reason for warnings."""
        reason = self.stderr.strip() or self.stdout.strip() or f"exit status {self.returncode}"
        return f"'{self.command}' failed: {reason.splitlines()[-1]}"


class SystemService:
    """Runs external commands synchronously, without timeouts."""

    def run(self, args: list[str], input: str | None = None, stream: bool = False) -> CommandResult:
        """
        Run a command to completion.

        Args:
            args: Command and arguments
            input: Text fed to stdin
            stream: Let output go straight to the terminal instead of capturing it

        Returns:
            CommandResult; a missing executable is reported as exit status 127
        """
        logger.debug(f"Running: {' '.join(args)}")
        try:
            if stream:
                completed = subprocess.run(args, input=input, text=True, check=False)
                return CommandResult(args=list(args), returncode=completed.returncode)
            completed = subprocess.run(args, input=input, capture_output=True, text=True, check=False)
        except FileNotFoundError:
            logger.warning(f"Command not found: {args[0]}")
            return CommandResult(args=list(args), returncode=127, stderr=f"{args[0]}: command not found")
        except OSError as e:
            logger.warning(f"Could not execute {args[0]}: {e}")
            return CommandResult(args=list(args), returncode=126, stderr=str(e))

        return CommandResult(
            args=list(args),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def systemctl(self, action: str, *units: str) -> CommandResult:
        return self.run(["systemctl", action, *units])

    def is_unit_active(self, unit: str) -> bool:
        return self.run(["systemctl", "is-active", unit]).success

    def which(self, binary: str) -> bool:
        return self.run(["which", binary]).success


@dataclass
class CrontabService:
    """Reads and replaces the invoking user's crontab."""

    system: SystemService = field(default_factory=SystemService)

    def read(self) -> str | None:
        """Current crontab text, or None when there is none or it cannot be read."""
        result = self.system.run(["crontab", "-l"])
        if not result.success:
            return None
        return result.stdout

    def write(self, content: str) -> CommandResult:
        if content and not content.endswith("\n"):
            content += "\n"
        return self.system.run(["crontab", "-"], input=content)

    def contains(self, marker: str) -> bool:
        current = self.read()
        return current is not None and marker in current

    def add_line(self, line: str, marker: str) -> CommandResult | None:
        """
        Append a line unless one containing `marker` already exists.

        Returns None when nothing needed to change.
        """
        current = self.read() or ""
        if marker in current:
            return None
        if current and not current.endswith("\n"):
            current += "\n"
        return self.write(current + line + "\n")

    def remove_lines(self, marker: str) -> CommandResult | None:
        """
        Drop every line containing `marker`.

        Returns None when there is no crontab or no matching line.
        """
        current = self.read()
        if current is None or marker not in current:
            return None
        kept = [line for line in current.splitlines() if marker not in line]
        return self.write("\n".join(kept))


# Singleton instance
system_service = SystemService()
