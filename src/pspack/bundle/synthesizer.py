"""Build a package configuration from a dependency graph (auto-package mode)."""

from __future__ import annotations

import os
from pathlib import Path

import structlog

from pspack.analysis.models import DependencyGraphResult
from pspack.bundle.config import (
    DependencyMetadata,
    FileGroup,
    PackageConfig,
    PackageMetadata,
    UnresolvedDependency,
)
from pspack.paths import normalize_path, path_key

logger = structlog.get_logger()

ROOT_GROUP_NAME = "root"
AUTO_VERSION = "1.0.0"


def _common_root(directories: list[Path]) -> Path | None:
    try:
        return Path(os.path.commonpath([str(d) for d in directories]))
    except ValueError:
        # Different drives have no common root.
        return None


def _destination_for(directory: Path, common: Path | None) -> str:
    if common is None:
        return Path(*directory.parts[1:]).as_posix() if len(directory.parts) > 1 else "."
    relative = directory.relative_to(common).as_posix()
    return relative or "."


def synthesize(graph_result: DependencyGraphResult, package_name: str) -> PackageConfig:
    """Turn an analysis result into a package configuration.

    One structure-preserving group is produced per distinct parent directory,
    in lexicographic order. Each group lists its files literally instead of
    using a glob, so unrelated files in the same directory are never picked
    up. Nothing time-dependent is included: identical graphs give
    byte-identical configurations.

    Args:
        graph_result: Output of a dependency analysis.
        package_name: Name for the package metadata.

    Returns:
        The synthesized PackageConfig.
    """
    by_directory: dict[str, tuple[Path, dict[str, Path]]] = {}
    for file_path in graph_result.all_files:
        normalized = normalize_path(file_path)
        directory = normalized.parent
        entry = by_directory.setdefault(path_key(directory), (directory, {}))
        entry[1].setdefault(path_key(normalized), normalized)

    directories = [entry[0] for entry in by_directory.values()]
    common = _common_root(directories) if directories else None

    groups: list[FileGroup] = []
    used_names: set[str] = set()
    for key in sorted(by_directory):
        directory, files = by_directory[key]
        destination = _destination_for(directory, common)
        name = ROOT_GROUP_NAME if destination == "." else destination
        candidate, suffix = name, 2
        while candidate in used_names:
            candidate = f"{name}-{suffix}"
            suffix += 1
        used_names.add(candidate)
        groups.append(
            FileGroup(
                name=candidate,
                source=[str(files[k]) for k in sorted(files)],
                destination=destination,
                preserve_structure=True,
            )
        )

    unresolved = sorted(
        (
            UnresolvedDependency(
                file=str(ref.origin_path),
                dependency=ref.raw_text,
                line=ref.line_number,
                status=ref.status.value,
            )
            for ref in graph_result.unresolved_references()
        ),
        key=lambda u: (u.file.casefold(), u.line, u.dependency),
    )

    file_count = len(graph_result.all_files)
    config = PackageConfig(
        package=PackageMetadata(
            name=package_name,
            version=AUTO_VERSION,
            description=f"Auto-generated package of {file_count} dependency-analyzed files",
            auto_generated=True,
        ),
        files=groups,
        dependency_metadata=DependencyMetadata(
            total_files_analyzed=len(graph_result.nodes_by_path),
            starting_files=[str(p) for p in graph_result.starting_files],
            unresolved_dependencies=unresolved,
        ),
    )
    logger.info(
        "Synthesized package configuration",
        package=package_name,
        groups=len(groups),
        unresolved=len(unresolved),
    )
    return config
