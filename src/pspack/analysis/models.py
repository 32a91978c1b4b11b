"""Data model for dependency analysis results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pspack.paths import path_key


class ReferenceKind(str, Enum):
    """Syntactic form of an outbound reference."""

    DOT_SOURCE = "dot_source"
    MODULE_IMPORT = "module_import"


class ResolutionStatus(str, Enum):
    """Outcome of resolving a reference to a file.

    PENDING only exists between extraction and resolution; every reference
    stored on a graph node carries one of the other three values.
    """

    PENDING = "pending"
    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    VARIABLE = "variable"


@dataclass(frozen=True)
class SourceReference:
    """One outbound reference found in a file.

    Attributes:
        origin_path: Absolute path of the file containing the reference.
        raw_text: The path expression as written, without quotes.
        kind: Dot-source or module import.
        line_number: 1-based line of occurrence (0 for synthetic references).
        column: 0-based start of ``raw_text`` within the line.
        end_column: 0-based exclusive end of ``raw_text`` within the line.
        status: Resolution status.
        resolved_path: Target file, present only when status is RESOLVED.
    """

    origin_path: Path
    raw_text: str
    kind: ReferenceKind
    line_number: int
    column: int = 0
    end_column: int = 0
    status: ResolutionStatus = ResolutionStatus.PENDING
    resolved_path: Path | None = None

    @property
    def is_resolved(self) -> bool:
        """Check if the reference points at a located file."""
        return self.status == ResolutionStatus.RESOLVED

    @property
    def is_unresolved(self) -> bool:
        """Check if the reference needs manual attention."""
        return self.status in (ResolutionStatus.NOT_FOUND, ResolutionStatus.VARIABLE)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "origin_path": str(self.origin_path),
            "raw_text": self.raw_text,
            "kind": self.kind.value,
            "line_number": self.line_number,
            "column": self.column,
            "end_column": self.end_column,
            "status": self.status.value,
            "resolved_path": str(self.resolved_path) if self.resolved_path else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SourceReference:
        """Create from dictionary."""
        resolved = data.get("resolved_path")
        return cls(
            origin_path=Path(data["origin_path"]),
            raw_text=data["raw_text"],
            kind=ReferenceKind(data["kind"]),
            line_number=data["line_number"],
            column=data.get("column", 0),
            end_column=data.get("end_column", 0),
            status=ResolutionStatus(data.get("status", "pending")),
            resolved_path=Path(resolved) if resolved else None,
        )


@dataclass(frozen=True)
class DependencyGraphNode:
    """One analyzed file.

    Attributes:
        file_path: Absolute path, the node's key.
        references: Outbound references in source order.
        analyzed_depth: Distance from the nearest starting file.
        error: Read error, if the file could not be analyzed.
    """

    file_path: Path
    references: tuple[SourceReference, ...]
    analyzed_depth: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "file_path": str(self.file_path),
            "analyzed_depth": self.analyzed_depth,
            "error": self.error,
            "references": [ref.to_dict() for ref in self.references],
        }


@dataclass
class DependencyGraphResult:
    """Output of one analysis run.

    ``all_files`` keeps discovery order. ``nodes_by_path`` is keyed by
    :func:`pspack.paths.path_key`, so lookups are case-insensitive.
    """

    starting_files: list[Path]
    search_paths: list[Path]
    max_depth: int
    all_files: list[Path] = field(default_factory=list)
    nodes_by_path: dict[str, DependencyGraphNode] = field(default_factory=dict)
    truncated_files: list[Path] = field(default_factory=list)
    analysis_timestamp: str = field(
        default_factory=lambda: datetime.now(tz=UTC).isoformat()
    )

    def node_for(self, path: Path | str) -> DependencyGraphNode | None:
        """Look up the node for a path, if it was analyzed."""
        return self.nodes_by_path.get(path_key(path))

    @property
    def nodes(self) -> list[DependencyGraphNode]:
        """Nodes in analysis order."""
        return list(self.nodes_by_path.values())

    def references(self) -> list[SourceReference]:
        """All references across nodes, in analysis order."""
        return [ref for node in self.nodes_by_path.values() for ref in node.references]

    def unresolved_references(self) -> list[SourceReference]:
        """References whose status is NOT_FOUND or VARIABLE."""
        return [ref for ref in self.references() if ref.is_unresolved]

    def edges(self) -> list[tuple[Path, Path]]:
        """Resolved (origin, target) pairs, deduplicated, in analysis order."""
        seen: set[tuple[str, str]] = set()
        result: list[tuple[Path, Path]] = []
        for ref in self.references():
            if not ref.is_resolved or ref.resolved_path is None:
                continue
            key = (path_key(ref.origin_path), path_key(ref.resolved_path))
            if key in seen:
                continue
            seen.add(key)
            result.append((ref.origin_path, ref.resolved_path))
        return result

    def find_cycles(self) -> list[list[Path]]:
        """Find dependency cycles among analyzed files.

        Uses an iterative Tarjan strongly-connected-components pass. Each cycle
        is a component with more than one file, or a file that references
        itself, reported as a path list sorted case-insensitively.

        Returns:
            Cycles sorted by their first path.
        """
        adjacency: dict[str, list[str]] = {key: [] for key in self.nodes_by_path}
        display: dict[str, Path] = {
            key: node.file_path for key, node in self.nodes_by_path.items()
        }
        self_loops: set[str] = set()
        for origin, target in self.edges():
            src, dst = path_key(origin), path_key(target)
            if dst not in adjacency:
                continue
            adjacency[src].append(dst)
            if src == dst:
                self_loops.add(src)

        index_of: dict[str, int] = {}
        lowlink: dict[str, int] = {}
        on_stack: set[str] = set()
        stack: list[str] = []
        components: list[list[str]] = []
        counter = 0

        for root in adjacency:
            if root in index_of:
                continue
            work: list[tuple[str, int]] = [(root, 0)]
            while work:
                vertex, child_idx = work.pop()
                if child_idx == 0:
                    index_of[vertex] = lowlink[vertex] = counter
                    counter += 1
                    stack.append(vertex)
                    on_stack.add(vertex)
                recurse = False
                children = adjacency[vertex]
                while child_idx < len(children):
                    child = children[child_idx]
                    child_idx += 1
                    if child not in index_of:
                        work.append((vertex, child_idx))
                        work.append((child, 0))
                        recurse = True
                        break
                    if child in on_stack:
                        lowlink[vertex] = min(lowlink[vertex], index_of[child])
                if recurse:
                    continue
                if lowlink[vertex] == index_of[vertex]:
                    component: list[str] = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == vertex:
                            break
                    components.append(component)
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[vertex])

        cycles = [
            sorted(component)
            for component in components
            if len(component) > 1 or component[0] in self_loops
        ]
        cycles.sort()
        return [[display[key] for key in cycle] for cycle in cycles]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "starting_files": [str(p) for p in self.starting_files],
            "search_paths": [str(p) for p in self.search_paths],
            "max_depth": self.max_depth,
            "analysis_timestamp": self.analysis_timestamp,
            "all_files": [str(p) for p in self.all_files],
            "truncated_files": [str(p) for p in self.truncated_files],
            "nodes": [node.to_dict() for node in self.nodes_by_path.values()],
            "unresolved": [ref.to_dict() for ref in self.unresolved_references()],
            "cycles": [[str(p) for p in cycle] for cycle in self.find_cycles()],
        }
