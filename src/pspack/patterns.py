"""Glob expansion and matching for file-group sources and exclusions."""

from __future__ import annotations

import fnmatch
import glob
import os
import re
from pathlib import Path

from pspack.paths import is_absolute_text, normalize_path, split_segments

_MAGIC_CHARS = set("*?[")


def has_magic(text: str) -> bool:
    """Check whether a pattern segment contains glob wildcards."""
    return any(ch in _MAGIC_CHARS for ch in text)


def pattern_base(pattern: str, root: Path) -> Path:
    """Return the base directory of a pattern.

    The base is made of the leading wildcard-free segments. A pattern with no
    wildcards names a single file, so its base is the file's parent.

    Example:
        >>> pattern_base("src/**/*.ps1", Path("/p")).as_posix()
        '/p/src'
        >>> pattern_base("lib/Config.ps1", Path("/p")).as_posix()
        '/p/lib'
    """
    normalized = pattern.replace("\\", "/")
    literal = normalize_path(normalized if is_absolute_text(normalized) else root / normalized)
    if literal.is_file():
        return literal.parent

    segments = split_segments(normalized)
    static: list[str] = []
    for segment in segments:
        if has_magic(segment):
            break
        static.append(segment)
    if len(static) == len(segments):
        static = static[:-1]

    anchor = "/" if normalized.startswith("/") else ""
    joined = anchor + "/".join(static)
    if is_absolute_text(normalized):
        return normalize_path(joined or anchor)
    return normalize_path(root / joined) if joined else normalize_path(root)


def expand_pattern(pattern: str, root: Path) -> list[Path]:
    """Expand a glob (``**`` allowed) against ``root`` to a sorted file list.

    Absolute patterns are expanded as-is. Directories are never returned.
    """
    normalized = pattern.replace("\\", "/")
    absolute = is_absolute_text(normalized)

    # A literal file wins even when its name contains glob characters.
    candidate = normalize_path(normalized if absolute else root / normalized)
    if candidate.is_file():
        return [candidate]
    if not has_magic(normalized):
        return []

    full = normalized if absolute else os.path.join(glob.escape(str(root)), normalized)

    found = {
        normalize_path(match)
        for match in glob.glob(full, recursive=True)
        if os.path.isfile(match)
    }
    return sorted(found)


def matches_pattern(file_path: str, pattern: str) -> bool:
    """Check if a file path matches a glob pattern.

    Supports patterns like:
    - lib/**/*.ps1 (matches any .ps1 file under lib/ or lib/subdir/)
    - *.Tests.ps1 (matches by base name anywhere)
    - lib/Config.ps1 (exact match)

    Matching is case-insensitive, as PowerShell paths are.

    Args:
        file_path: The file path to check (relative or absolute).
        pattern: The glob pattern.

    Returns:
        True if the path matches the pattern.
    """
    normalized_path = file_path.replace("\\", "/").casefold()
    normalized_pattern = pattern.replace("\\", "/").casefold()

    if "**" in normalized_pattern:
        # lib/**/*.ps1 -> lib/(.*/)?[^/]*\.ps1
        regex_pattern = re.escape(normalized_pattern)
        regex_pattern = regex_pattern.replace(r"\*\*/", "(.*/)?")
        regex_pattern = regex_pattern.replace(r"/\*\*", "(/.*)?")
        regex_pattern = regex_pattern.replace(r"\*", "[^/]*")
        regex_pattern = regex_pattern.replace(r"\?", "[^/]")
        if re.match(f"^{regex_pattern}$", normalized_path):
            return True

    if fnmatch.fnmatchcase(normalized_path, normalized_pattern):
        return True

    if "/" not in normalized_pattern:
        basename = normalized_path.rsplit("/", 1)[-1]
        return fnmatch.fnmatchcase(basename, normalized_pattern)

    return False


def is_excluded(path: Path, root: Path, patterns: list[str]) -> bool:
    """Check a file against exclusion globs.

    Each pattern is tried against the path relative to ``root`` (when the file
    lives under it) and against the absolute path.
    """
    if not patterns:
        return False
    absolute = normalize_path(path)
    candidates = [absolute.as_posix()]
    try:
        candidates.insert(0, absolute.relative_to(normalize_path(root)).as_posix())
    except ValueError:
        pass
    return any(
        matches_pattern(candidate, pattern)
        for pattern in patterns
        for candidate in candidates
    )
