"""Package manifest: the record of one materialization."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pspack.bundle.config import PackageConfig
from pspack.exceptions import ConfigValidationError, ManifestError


class Outcome(str, Enum):
    """Outcome of processing one file or action."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class FileOutcome:
    """Result for one processed file.

    Attributes:
        source: Absolute source path.
        destination: Destination relative to the output root (POSIX form).
        group: Name of the file group that selected the file.
        outcome: Success, skipped or failed.
        reason: Why the file was skipped or failed.
    """

    source: str
    destination: str
    group: str
    outcome: Outcome
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "source": self.source,
            "destination": self.destination,
            "group": self.group,
            "outcome": self.outcome.value,
        }
        if self.reason:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileOutcome:
        """Create from dictionary."""
        return cls(
            source=data["source"],
            destination=data["destination"],
            group=data["group"],
            outcome=Outcome(data["outcome"]),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class ActionOutcome:
    """Result for one post-package action."""

    type: str
    path: str
    outcome: Outcome
    returncode: int | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "type": self.type,
            "path": self.path,
            "outcome": self.outcome.value,
        }
        if self.returncode is not None:
            data["returncode"] = self.returncode
        if self.reason:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionOutcome:
        """Create from dictionary."""
        return cls(
            type=data["type"],
            path=data["path"],
            outcome=Outcome(data["outcome"]),
            returncode=data.get("returncode"),
            reason=data.get("reason"),
        )


@dataclass
class PackageManifest:
    """What a materialization produced.

    The configuration is mirrored under its own keys, except that the
    configuration's ``files`` (groups) is stored as ``file_groups`` because
    ``files`` holds the per-file outcomes.
    """

    config: PackageConfig
    output_root: Path
    project_root: Path
    dry_run: bool = False
    files: list[FileOutcome] = field(default_factory=list)
    post_package_results: list[ActionOutcome] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now(tz=UTC).isoformat())

    def count(self, outcome: Outcome) -> int:
        """Number of files with the given outcome."""
        return sum(1 for f in self.files if f.outcome == outcome)

    @property
    def has_failures(self) -> bool:
        """Check if any file failed."""
        return any(f.outcome == Outcome.FAILED for f in self.files)

    @property
    def failed_actions(self) -> list[ActionOutcome]:
        """Post-package actions that failed."""
        return [a for a in self.post_package_results if a.outcome == Outcome.FAILED]

    def successful_files(self) -> list[FileOutcome]:
        """Files that were materialized."""
        return [f for f in self.files if f.outcome == Outcome.SUCCESS]

    def summary(self) -> dict[str, int]:
        """Counts per outcome."""
        return {
            "total": len(self.files),
            "success": self.count(Outcome.SUCCESS),
            "skipped": self.count(Outcome.SKIPPED),
            "failed": self.count(Outcome.FAILED),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        config = self.config.to_dict()
        data: dict[str, Any] = {
            "package": config["package"],
            "directories": config.get("directories", []),
            "file_groups": config.get("files", []),
            "post_package": config.get("post_package", []),
        }
        if "dependency_metadata" in config:
            data["dependency_metadata"] = config["dependency_metadata"]
        data.update(
            {
                "output_root": str(self.output_root),
                "project_root": str(self.project_root),
                "dry_run": self.dry_run,
                "created_at": self.created_at,
                "summary": self.summary(),
                "files": [f.to_dict() for f in self.files],
                "post_package_results": [a.to_dict() for a in self.post_package_results],
            }
        )
        return data

    def to_json(self) -> str:
        """Serialize to indented JSON."""
        return json.dumps(self.to_dict(), indent=2) + "\n"

    def write(self, path: Path) -> None:
        """Write the manifest to ``path``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PackageManifest:
        """Create from dictionary."""
        config_data: dict[str, Any] = {
            "package": data["package"],
            "directories": data.get("directories", []),
            "files": data.get("file_groups", []),
            "post_package": data.get("post_package", []),
        }
        if "dependency_metadata" in data:
            config_data["dependency_metadata"] = data["dependency_metadata"]
        return cls(
            config=PackageConfig.model_validate(config_data),
            output_root=Path(data["output_root"]),
            project_root=Path(data["project_root"]),
            dry_run=data.get("dry_run", False),
            files=[FileOutcome.from_dict(f) for f in data.get("files", [])],
            post_package_results=[
                ActionOutcome.from_dict(a) for a in data.get("post_package_results", [])
            ],
            created_at=data.get("created_at", datetime.now(tz=UTC).isoformat()),
        )

    @classmethod
    def load(cls, path: Path) -> PackageManifest:
        """Load a manifest from disk.

        Raises:
            FileNotFoundError: If the manifest doesn't exist.
            ManifestError: If the manifest is unreadable, not valid JSON, or
                does not describe a package.
        """
        if not path.exists():
            msg = f"Manifest not found: {path}"
            raise FileNotFoundError(msg)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            msg = f"Could not read manifest {path}: {e}"
            raise ManifestError(msg, manifest_path=path) from e
        except json.JSONDecodeError as e:
            msg = f"Invalid manifest JSON in {path}: {e}"
            raise ManifestError(msg, manifest_path=path) from e
        if not isinstance(data, dict):
            msg = f"Invalid manifest {path}: expected a JSON object"
            raise ManifestError(msg, manifest_path=path)
        try:
            return cls.from_dict(data)
        except (ConfigValidationError, KeyError, TypeError, ValueError) as e:
            msg = f"Invalid manifest {path}: {e!r}"
            raise ManifestError(msg, manifest_path=path) from e
