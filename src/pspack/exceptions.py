"""Custom exceptions for pspack."""

from pathlib import Path


class PspackError(Exception):
    """Base exception for all pspack errors."""

    pass


class InputError(PspackError):
    """Raised when a caller precondition is violated (empty input, missing file)."""

    def __init__(
        self,
        message: str,
        *,
        argument: str = "",
        path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.argument = argument
        self.path = path


class ConfigParseError(InputError):
    """Raised when a package configuration cannot be parsed at all."""

    def __init__(
        self,
        message: str,
        *,
        config_path: Path | None = None,
        line: int | None = None,
    ) -> None:
        super().__init__(message, argument="config", path=config_path)
        self.config_path = config_path
        self.line = line


class ManifestError(InputError):
    """Raised when an existing package manifest cannot be read back."""

    def __init__(
        self,
        message: str,
        *,
        manifest_path: Path | None = None,
    ) -> None:
        super().__init__(message, argument="manifest", path=manifest_path)
        self.manifest_path = manifest_path


class ConfigValidationError(PspackError):
    """Raised when a configuration parses but is semantically invalid."""

    def __init__(
        self,
        message: str,
        *,
        config_path: Path | None = None,
        field: str = "",
        group: str = "",
    ) -> None:
        super().__init__(message)
        self.config_path = config_path
        self.field = field
        self.group = group


class ConflictError(PspackError):
    """Raised when the output root is already populated and force is not set."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path


class CommandError(PspackError):
    """Raised when a subprocess command fails."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        cwd: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.cwd = cwd
