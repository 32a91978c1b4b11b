"""Resolution of reference text to concrete files."""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from pathlib import Path

import structlog

from pspack.analysis.extractor import SCRIPT_ROOT_ANCHOR_RE, reference_path_text
from pspack.analysis.models import ResolutionStatus, SourceReference
from pspack.paths import (
    find_case_insensitive,
    is_absolute_text,
    normalize_path,
    split_segments,
)

logger = structlog.get_logger()


def strip_anchor(text: str) -> tuple[bool, str]:
    """Remove a leading ``$PSScriptRoot`` and separator.

    Returns:
        Tuple of (had_anchor, remainder).
    """
    match = SCRIPT_ROOT_ANCHOR_RE.match(text)
    if match is None:
        return False, text
    return True, text[match.end() :].lstrip("\\/")


class PathResolver:
    """Maps reference text to an existing file.

    Resolution order, first match wins:

    1. an absolute path that exists;
    2. relative to the referencing file's directory (``$PSScriptRoot``
       expanded, or a plain relative path);
    3. each search root, in the order given.

    Each candidate is a single bounded existence check; nothing is cached,
    so resolving the same tuple twice gives the same answer.

    Example:
        >>> resolver = PathResolver()
        >>> resolver.resolve(Path("/p/Main.ps1"), "$PSScriptRoot\\\\missing.ps1", [])
    """

    def resolve(
        self,
        origin_path: Path,
        raw_reference: str,
        search_roots: Sequence[Path],
    ) -> Path | None:
        """Resolve reference text to an absolute file path.

        Args:
            origin_path: File containing the reference.
            raw_reference: Path expression, quotes removed.
            search_roots: Ordered fallback roots.

        Returns:
            The resolved file, or None when nothing matched.
        """
        for candidate in self.candidates(origin_path, raw_reference, search_roots):
            found = self._check(candidate)
            if found is not None:
                return found
        return None

    @staticmethod
    def candidates(
        origin_path: Path,
        raw_reference: str,
        search_roots: Sequence[Path],
    ) -> list[Path]:
        """Lexical candidate locations for a reference, in resolution order.

        Nothing is checked on disk. An absolute reference has exactly one
        candidate; otherwise the origin directory comes first, then each
        search root.
        """
        text = raw_reference.strip().strip("'\"")
        if not text:
            return []

        anchored, remainder = strip_anchor(text)
        if not anchored and is_absolute_text(text):
            return [normalize_path(text)]
        if not remainder:
            return []

        segments = split_segments(remainder)
        origin_dir = normalize_path(origin_path).parent
        return [origin_dir.joinpath(*segments)] + [
            normalize_path(root).joinpath(*segments) for root in search_roots
        ]

    def resolve_reference(
        self,
        ref: SourceReference,
        search_roots: Sequence[Path],
    ) -> SourceReference:
        """Return a copy of ``ref`` with its resolution status filled in.

        VARIABLE and already-decided references are returned unchanged.
        """
        if ref.status != ResolutionStatus.PENDING:
            return ref
        target = self.resolve(ref.origin_path, reference_path_text(ref), search_roots)
        if target is None:
            logger.debug(
                "Reference not found",
                file=str(ref.origin_path),
                line=ref.line_number,
                reference=ref.raw_text,
            )
            return dataclasses.replace(ref, status=ResolutionStatus.NOT_FOUND)
        return dataclasses.replace(
            ref, status=ResolutionStatus.RESOLVED, resolved_path=target
        )

    def _check(self, candidate: Path) -> Path | None:
        """Existence check for one candidate, file or module directory."""
        found = find_case_insensitive(normalize_path(candidate))
        if found is None:
            return None
        if found.is_file():
            return found
        if found.is_dir():
            return self._module_manifest(found)
        return None

    @staticmethod
    def _module_manifest(directory: Path) -> Path | None:
        """``Import-Module .\\Tools`` loads Tools/Tools.psd1 or Tools/Tools.psm1."""
        for suffix in (".psd1", ".psm1"):
            found = find_case_insensitive(directory / f"{directory.name}{suffix}")
            if found is not None and found.is_file():
                return found
        return None
