"""Subprocess command runner with logging."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

import structlog

from pspack.exceptions import CommandError

logger = structlog.get_logger()


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        returncode: Exit code of the process.
        stdout: Captured standard output.
        stderr: Captured standard error.
        command: The command that was run.
        cwd: Working directory where command ran.
    """

    returncode: int
    stdout: str
    stderr: str
    command: list[str]
    cwd: Path | None

    @property
    def ok(self) -> bool:
        """Check if the command exited with status 0."""
        return self.returncode == 0

    def output_tail(self, lines: int = 5) -> str:
        """Last lines of stderr, falling back to stdout."""
        text = self.stderr.strip() or self.stdout.strip()
        return "\n".join(text.splitlines()[-lines:])


class CommandRunner:
    """Runs subprocess commands with consistent logging.

    All subprocess calls in pspack go through this class.

    Example:
        >>> runner = CommandRunner()
        >>> result = runner.run(["echo", "hello"], cwd=Path("/tmp"))
        >>> result.stdout
        'hello\\n'
    """

    def run(
        self,
        command: list[str],
        *,
        cwd: Path | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run a command and capture stdout/stderr in memory.

        Args:
            command: Command and arguments to run.
            cwd: Working directory for the command.
            timeout: Timeout in seconds.

        Returns:
            CommandResult with exit code and output.

        Raises:
            CommandError: If the command cannot be started or times out. A
                non-zero exit is reported in the result, not raised.
        """
        log = logger.bind(command=command, cwd=str(cwd) if cwd else None)
        log.info("Running command")

        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            log.error("Command timed out", timeout=timeout)
            msg = f"Command timed out after {timeout}s: {' '.join(command)}"
            raise CommandError(msg, command=command, cwd=cwd) from e
        except FileNotFoundError as e:
            log.error("Command not found", command=command[0])
            msg = f"Command not found: {command[0]}"
            raise CommandError(msg, command=command, cwd=cwd) from e
        except OSError as e:
            log.error("Command could not start", error=str(e))
            msg = f"Command could not start: {' '.join(command)}: {e}"
            raise CommandError(msg, command=command, cwd=cwd) from e

        log.info("Command completed", returncode=result.returncode)

        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            command=command,
            cwd=cwd,
        )
