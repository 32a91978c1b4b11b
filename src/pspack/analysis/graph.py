"""Bounded breadth-first dependency graph construction."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Sequence
from pathlib import Path

import structlog

from pspack.analysis.extractor import extract_references
from pspack.analysis.models import (
    DependencyGraphNode,
    DependencyGraphResult,
    SourceReference,
)
from pspack.analysis.resolver import PathResolver
from pspack.exceptions import InputError
from pspack.paths import normalize_path, path_key

logger = structlog.get_logger()


class GraphBuilder:
    """Builds a dependency graph from a set of starting scripts.

    Every :meth:`build` call owns its own queue and visited set, so one
    builder can serve independent analyses.

    Example:
        >>> builder = GraphBuilder()
        >>> result = builder.build([Path("Main.ps1")], [Path(".")], max_depth=5)
        >>> [p.name for p in result.all_files]
        ['Main.ps1', 'Config.ps1']
    """

    def __init__(self, resolver: PathResolver | None = None) -> None:
        """Initialize the builder.

        Args:
            resolver: Resolver used for every reference (default: PathResolver()).
        """
        self.resolver = resolver or PathResolver()

    def build(
        self,
        starting_files: Iterable[Path],
        search_roots: Sequence[Path],
        max_depth: int,
    ) -> DependencyGraphResult:
        """Run the traversal.

        A file is analyzed at most once, which is what keeps cycles from
        looping. Files first reached beyond ``max_depth`` are recorded as
        discovered but are neither analyzed nor expanded.

        Args:
            starting_files: Files analyzed at depth 0.
            search_roots: Ordered fallback roots for reference resolution.
            max_depth: Deepest level that is analyzed.

        Returns:
            The populated DependencyGraphResult.

        Raises:
            InputError: If no starting files are given or max_depth is negative.
        """
        starts = self._dedupe(normalize_path(p) for p in starting_files)
        if not starts:
            msg = "At least one starting file is required"
            raise InputError(msg, argument="starting_files")
        if max_depth < 0:
            msg = f"max_depth must be >= 0, got {max_depth}"
            raise InputError(msg, argument="max_depth")

        roots = [normalize_path(r) for r in search_roots]
        result = DependencyGraphResult(
            starting_files=starts,
            search_paths=roots,
            max_depth=max_depth,
        )
        log = logger.bind(starting_files=len(starts), max_depth=max_depth)
        log.info("Building dependency graph")

        discovered: set[str] = set()
        visited: set[str] = set()
        truncated: set[str] = set()
        queue: deque[tuple[Path, int]] = deque()

        for start in starts:
            queue.append((start, 0))
            discovered.add(path_key(start))
            result.all_files.append(start)

        while queue:
            path, depth = queue.popleft()
            key = path_key(path)
            if key in visited:
                continue
            if depth > max_depth:
                if key not in truncated:
                    truncated.add(key)
                    result.truncated_files.append(path)
                log.debug("Depth limit reached", file=str(path), depth=depth)
                continue

            visited.add(key)
            node = self._analyze(path, depth, roots)
            result.nodes_by_path[key] = node

            for ref in node.references:
                if not ref.is_resolved or ref.resolved_path is None:
                    continue
                target_key = path_key(ref.resolved_path)
                if target_key in visited:
                    continue
                if target_key not in discovered:
                    discovered.add(target_key)
                    result.all_files.append(ref.resolved_path)
                queue.append((ref.resolved_path, depth + 1))

        log.info(
            "Dependency graph built",
            files=len(result.all_files),
            analyzed=len(result.nodes_by_path),
            unresolved=len(result.unresolved_references()),
            truncated=len(result.truncated_files),
        )
        return result

    def _analyze(self, path: Path, depth: int, roots: Sequence[Path]) -> DependencyGraphNode:
        """Read, extract and resolve one file."""
        try:
            contents = path.read_text(encoding="utf-8-sig", errors="replace")
        except OSError as e:
            logger.warning("Failed to read script", file=str(path), error=str(e))
            return DependencyGraphNode(
                file_path=path,
                references=(),
                analyzed_depth=depth,
                error=str(e),
            )

        references: list[SourceReference] = [
            self.resolver.resolve_reference(ref, roots)
            for ref in extract_references(contents, path)
        ]
        return DependencyGraphNode(
            file_path=path,
            references=tuple(references),
            analyzed_depth=depth,
        )

    @staticmethod
    def _dedupe(paths: Iterable[Path]) -> list[Path]:
        seen: set[str] = set()
        unique: list[Path] = []
        for path in paths:
            key = path_key(path)
            if key not in seen:
                seen.add(key)
                unique.append(path)
        return unique


def build_graph(
    starting_files: Iterable[Path],
    search_roots: Sequence[Path],
    max_depth: int,
) -> DependencyGraphResult:
    """Build a dependency graph with a fresh :class:`GraphBuilder`."""
    return GraphBuilder().build(starting_files, search_roots, max_depth)
