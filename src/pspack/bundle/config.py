"""Package configuration schema, parsing and validation.

A package configuration is pure data (JSON, or YAML for hand-written files);
it is never evaluated as code. Parsing failures raise ConfigParseError and
semantic problems raise ConfigValidationError, so callers can tell
"could not parse" from "parsed but invalid".
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from pspack.exceptions import ConfigParseError, ConfigValidationError, InputError
from pspack.paths import escapes_root, is_absolute_text


class StructureMode(str, Enum):
    """How a file group lays matched files out under its destination."""

    PRESERVE = "preserve"
    FLATTEN = "flatten"


class FileAction(str, Enum):
    """What happens to each matched file."""

    COPY = "copy"
    MOVE = "move"
    WRITE = "write"


class _StrictModel(BaseModel):
    """Base model that rejects unknown fields."""

    model_config = ConfigDict(extra="forbid")


class PackageMetadata(_StrictModel):
    """Package identity.

    Attributes:
        name: Package name.
        version: Package version string.
        description: Free-form description.
        auto_generated: Whether the configuration was synthesized.
    """

    name: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    description: str = ""
    auto_generated: bool = False


class FileGroup(_StrictModel):
    """A named file-selection rule.

    Attributes:
        name: Unique name within the configuration.
        source: Glob (``**`` allowed) or list of globs/literal paths,
            relative to the project root or absolute.
        destination: Directory relative to the package root.
        preserve_structure: Mirror source layout below the pattern base.
        flatten: Place every match directly in ``destination``.
        exclude: Globs subtracted from the matches.
        action: copy, move or write.

    Example:
        >>> group = FileGroup(name="scripts", source="src/**/*.ps1", destination="scripts")
        >>> group.structure_mode
        <StructureMode.PRESERVE: 'preserve'>
    """

    name: str = Field(..., min_length=1)
    source: str | list[str]
    destination: str = "."
    preserve_structure: bool = True
    flatten: bool = False
    exclude: list[str] = Field(default_factory=list)
    action: FileAction = FileAction.COPY

    @model_validator(mode="before")
    @classmethod
    def reconcile_structure_flags(cls, data: Any) -> Any:
        """Keep ``preserve_structure`` and ``flatten`` consistent.

        Setting only one of them implies the other; setting both to true is
        contradictory.
        """
        if not isinstance(data, dict):
            return data
        preserve = data.get("preserve_structure")
        flatten = data.get("flatten")
        if preserve is True and flatten is True:
            name = data.get("name", "")
            msg = f"File group '{name}' sets both preserve_structure and flatten"
            raise ConfigValidationError(msg, field="flatten", group=str(name))
        data = dict(data)
        if flatten is True and preserve is None:
            data["preserve_structure"] = False
        elif preserve is False and flatten is None:
            data["flatten"] = True
        return data

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Group names must contain something besides whitespace."""
        if not v.strip():
            msg = "File group name must not be blank"
            raise ValueError(msg)
        return v

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str | list[str]) -> str | list[str]:
        """Sources must name at least one non-empty pattern."""
        patterns = [v] if isinstance(v, str) else v
        if not patterns or any(not p.strip() for p in patterns):
            msg = "source must be a non-empty pattern or list of patterns"
            raise ValueError(msg)
        return v

    @property
    def structure_mode(self) -> StructureMode:
        """Effective layout policy."""
        if self.flatten or not self.preserve_structure:
            return StructureMode.FLATTEN
        return StructureMode.PRESERVE

    @property
    def source_patterns(self) -> list[str]:
        """Sources as a list."""
        return [self.source] if isinstance(self.source, str) else list(self.source)


class CreateFileAction(_StrictModel):
    """Post-package action that writes literal content under the output root."""

    type: Literal["create_file"] = "create_file"
    path: str = Field(..., min_length=1)
    content: str | dict[str, Any] | list[Any]


class RunScriptAction(_StrictModel):
    """Post-package action that runs a script from the output root."""

    type: Literal["run_script"] = "run_script"
    path: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)


PostPackageAction = Annotated[
    CreateFileAction | RunScriptAction,
    Field(discriminator="type"),
]


class UnresolvedDependency(_StrictModel):
    """A reference the analyzer could not turn into a file."""

    file: str
    dependency: str
    line: int = Field(..., ge=0)
    status: str | None = None


class DependencyMetadata(_StrictModel):
    """Analysis details carried by synthesized configurations."""

    total_files_analyzed: int = Field(..., ge=0)
    starting_files: list[str] = Field(default_factory=list)
    unresolved_dependencies: list[UnresolvedDependency] = Field(default_factory=list)


class PackageConfig(_StrictModel):
    """Complete declarative package description.

    ``files`` is required but may be empty when ``directories`` alone
    describe the package; a configuration with neither is rejected.
    """

    package: PackageMetadata
    directories: list[str] = Field(default_factory=list)
    files: list[FileGroup]
    post_package: list[PostPackageAction] = Field(default_factory=list)
    dependency_metadata: DependencyMetadata | None = None

    @model_validator(mode="after")
    def validate_semantics(self) -> PackageConfig:
        """Check names, relative paths and that the package is not empty.

        Raises ConfigValidationError directly so the offending group or field
        travels with the error.
        """
        if not self.files and not self.directories:
            msg = "Configuration defines neither file groups nor directories"
            raise ConfigValidationError(msg, field="files")

        first_index: dict[str, int] = {}
        for index, group in enumerate(self.files):
            if group.name in first_index:
                msg = (
                    f"Duplicate file group name '{group.name}' "
                    f"(files[{first_index[group.name]}] and files[{index}])"
                )
                raise ConfigValidationError(msg, field="files", group=group.name)
            first_index[group.name] = index

            _check_relative(
                group.destination,
                field=f"files[{index}].destination",
                group=group.name,
            )

        for index, directory in enumerate(self.directories):
            _check_relative(directory, field=f"directories[{index}]")
        for index, action in enumerate(self.post_package):
            _check_relative(action.path, field=f"post_package[{index}].path")
        return self

    def group(self, name: str) -> FileGroup | None:
        """Look up a file group by name."""
        for group in self.files:
            if group.name == name:
                return group
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json", exclude_none=True)

    def to_json(self) -> str:
        """Serialize to indented JSON with a trailing newline."""
        return json.dumps(self.to_dict(), indent=2) + "\n"

    def save(self, path: Path) -> None:
        """Write the configuration as JSON."""
        path.write_text(self.to_json(), encoding="utf-8")


def _check_relative(value: str, *, field: str, group: str = "") -> None:
    """Reject absolute paths and paths that climb out of the package root."""
    where = f"file group '{group}'" if group else field
    if is_absolute_text(value):
        msg = f"Path '{value}' in {where} must be relative to the package root"
        raise ConfigValidationError(msg, field=field, group=group)
    if escapes_root(value):
        msg = f"Path '{value}' in {where} escapes the package root"
        raise ConfigValidationError(msg, field=field, group=group)


def _format_location(loc: tuple[int | str, ...]) -> str:
    parts: list[str] = []
    for item in loc:
        if isinstance(item, int):
            parts.append(f"[{item}]")
        else:
            parts.append(f".{item}" if parts else str(item))
    return "".join(parts)


def _group_name_at(data: Any, loc: tuple[int | str, ...]) -> str:
    if len(loc) >= 2 and loc[0] == "files" and isinstance(loc[1], int):
        files = data.get("files") if isinstance(data, dict) else None
        if isinstance(files, list) and loc[1] < len(files):
            entry = files[loc[1]]
            if isinstance(entry, dict) and isinstance(entry.get("name"), str):
                return entry["name"]
    return ""


def validate_package_config(data: Any, *, config_path: Path | None = None) -> PackageConfig:
    """Validate already-parsed data into a PackageConfig.

    Raises:
        ConfigValidationError: If the data does not describe a valid package.
    """
    if not isinstance(data, dict):
        msg = "Package configuration must be a mapping at the root"
        raise ConfigValidationError(msg, config_path=config_path, field="<root>")

    try:
        return PackageConfig.model_validate(data)
    except ConfigValidationError as e:
        e.config_path = config_path
        raise
    except ValidationError as e:
        first = e.errors()[0]
        loc = tuple(first["loc"])
        field = _format_location(loc)
        message = f"Invalid package configuration at '{field}': {first['msg']}"
        if e.error_count() > 1:
            message += f" (and {e.error_count() - 1} more)"
        raise ConfigValidationError(
            message,
            config_path=config_path,
            field=field,
            group=_group_name_at(data, loc),
        ) from e


def parse_package_config(
    text: str,
    *,
    fmt: Literal["json", "yaml"] = "json",
    config_path: Path | None = None,
) -> PackageConfig:
    """Parse configuration text.

    Raises:
        ConfigParseError: If the text is not valid JSON/YAML.
        ConfigValidationError: If it parses but is invalid.
    """
    try:
        if fmt == "yaml":
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except json.JSONDecodeError as e:
        msg = f"Could not parse package configuration: {e}"
        raise ConfigParseError(msg, config_path=config_path, line=e.lineno) from e
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        msg = f"Could not parse package configuration: {e}"
        raise ConfigParseError(
            msg,
            config_path=config_path,
            line=mark.line + 1 if mark is not None else None,
        ) from e
    return validate_package_config(data, config_path=config_path)


def load_package_config(path: Path) -> PackageConfig:
    """Load a package configuration file (.json, .yaml or .yml).

    Raises:
        InputError: If the file does not exist or cannot be read.
        ConfigParseError: If the file cannot be parsed.
        ConfigValidationError: If the content is invalid.
    """
    if not path.is_file():
        msg = f"Config file not found: {path}"
        raise InputError(msg, argument="config", path=path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as e:
        msg = f"Could not read config file {path}: {e}"
        raise InputError(msg, argument="config", path=path) from e
    except UnicodeDecodeError as e:
        msg = f"Could not parse package configuration: not valid UTF-8 ({e})"
        raise ConfigParseError(msg, config_path=path) from e
    fmt: Literal["json", "yaml"] = (
        "yaml" if path.suffix.lower() in (".yaml", ".yml") else "json"
    )
    return parse_package_config(text, fmt=fmt, config_path=path)
