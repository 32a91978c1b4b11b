"""Tool settings schema for pspack (pspack.yaml)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

SETTINGS_FILENAME = "pspack.yaml"


class PspackSettings(BaseModel):
    """Settings threaded through analysis, packaging and rewriting.

    Attributes:
        version: Settings schema version.
        search_paths: Roots tried, in order, when a reference is not
            origin-relative.
        max_depth: Default traversal bound for dependency analysis.
        script_extensions: File extensions treated as PowerShell scripts.
        powershell: Interpreter used for ``run_script`` actions on .ps1 files.
        script_timeout: Timeout in seconds for ``run_script`` actions.
        manifest_name: File name of the manifest written into the output root.
        backup_suffix: Suffix appended to backups made by the rewriter.

    Example:
        >>> settings = PspackSettings(max_depth=3)
        >>> settings.is_script(Path("Main.PS1"))
        True
    """

    version: str = "1.0"
    search_paths: list[str] = Field(default_factory=lambda: ["."])
    max_depth: int = Field(default=10, ge=0)
    script_extensions: list[str] = Field(
        default_factory=lambda: [".ps1", ".psm1", ".psd1"]
    )
    powershell: str = "pwsh"
    script_timeout: int = Field(default=300, ge=1)
    manifest_name: str = Field(default="package-manifest.json", min_length=1)
    backup_suffix: str = Field(default=".bak", min_length=1)

    @field_validator("script_extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Lower-case extensions and ensure a leading dot."""
        normalized: list[str] = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            if ext not in normalized:
                normalized.append(ext)
        return normalized

    @field_validator("manifest_name")
    @classmethod
    def validate_manifest_name(cls, v: str) -> str:
        """The manifest must live directly in the output root."""
        if "/" in v or "\\" in v:
            msg = "manifest_name must be a bare file name"
            raise ValueError(msg)
        return v

    def is_script(self, path: Path) -> bool:
        """Check whether a path has one of the configured script extensions."""
        return path.suffix.lower() in self.script_extensions

    def resolve_search_paths(self, base_dir: Path) -> list[Path]:
        """Make the configured search paths absolute against ``base_dir``."""
        return [(base_dir / p).absolute() for p in self.search_paths]

    def to_yaml(self) -> str:
        """Serialize the settings to YAML.

        Returns:
            YAML string representation.
        """
        data = self.model_dump(mode="json")
        return yaml.dump(data, default_flow_style=False, sort_keys=False)

    def save(self, path: Path) -> None:
        """Save the settings to a YAML file.

        Args:
            path: Path to save the file.
        """
        path.write_text(self.to_yaml(), encoding="utf-8")

    @classmethod
    def from_yaml(cls, yaml_content: str) -> PspackSettings:
        """Parse settings from YAML content.

        Args:
            yaml_content: YAML string to parse.

        Returns:
            Parsed PspackSettings instance.

        Raises:
            ValueError: If the YAML is invalid.
        """
        try:
            data: Any = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            msg = f"Invalid YAML: {e}"
            raise ValueError(msg) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            msg = "Settings YAML must be a mapping"
            raise ValueError(msg)

        return cls.model_validate(data)

    @classmethod
    def load(cls, path: Path) -> PspackSettings:
        """Load settings from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ValueError: If the YAML is invalid.
        """
        if not path.exists():
            msg = f"Settings file not found: {path}"
            raise FileNotFoundError(msg)
        return cls.from_yaml(path.read_text(encoding="utf-8"))

    @classmethod
    def discover(cls, base_dir: Path, explicit: Path | None = None) -> PspackSettings:
        """Load explicit settings, else ``base_dir/pspack.yaml``, else defaults."""
        if explicit is not None:
            return cls.load(explicit)
        candidate = base_dir / SETTINGS_FILENAME
        if candidate.exists():
            return cls.load(candidate)
        return cls.default()

    @classmethod
    def default(cls) -> PspackSettings:
        """Create default settings."""
        return cls()
