"""Path helpers shared by analysis, packaging and rewriting.

PowerShell sources are usually authored on Windows, so reference text may use
either separator, drive letters and any letter case. These helpers keep the
comparison rules in one place.
"""

from __future__ import annotations

import os
import re
from pathlib import Path, PurePosixPath, PureWindowsPath

_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")


def split_segments(text: str) -> list[str]:
    """Split a path expression on both separator styles, dropping empties.

    Example:
        >>> split_segments("lib\\\\sub/Config.ps1")
        ['lib', 'sub', 'Config.ps1']
    """
    return [part for part in re.split(r"[\\/]+", text) if part]


def is_absolute_text(text: str) -> bool:
    """Check whether path text is absolute in POSIX or Windows form."""
    return (
        text.startswith(("/", "\\"))
        or bool(_DRIVE_RE.match(text))
        or PureWindowsPath(text).is_absolute()
    )


def to_native(text: str) -> Path:
    """Convert path text with mixed separators into a native Path."""
    if _DRIVE_RE.match(text) and os.sep == "/":
        # Drive paths cannot exist on POSIX; keep the text recognisable.
        return Path(text.replace("\\", "/"))
    prefix = os.sep if text.startswith(("/", "\\")) else ""
    return Path(prefix + os.sep.join(split_segments(text))) if text else Path()


def normalize_path(path: Path | str) -> Path:
    """Return an absolute, lexically normalized path.

    Trailing separators are stripped and ``..`` segments collapsed without
    touching the filesystem, so symlinks are never followed.
    """
    raw = to_native(path) if isinstance(path, str) else path
    return Path(os.path.normpath(os.path.abspath(raw)))


def path_key(path: Path | str) -> str:
    """Case-insensitive identity key for a path."""
    return normalize_path(path).as_posix().casefold()


def find_case_insensitive(path: Path) -> Path | None:
    """Locate ``path`` on disk, tolerating letter-case differences.

    Each missing segment is looked up with a single directory listing of its
    parent, so the check is bounded by the number of segments.

    Returns:
        The on-disk path, or None if no match exists.
    """
    path = normalize_path(path)
    if path.exists():
        return path

    current = Path(path.anchor)
    for part in path.parts[1:]:
        candidate = current / part
        if candidate.exists():
            current = candidate
            continue
        if not current.is_dir():
            return None
        folded = part.casefold()
        try:
            matches = sorted(
                child for child in current.iterdir() if child.name.casefold() == folded
            )
        except OSError:
            return None
        if not matches:
            return None
        current = matches[0]
    return current


def escapes_root(relative: str) -> bool:
    """Check whether a relative path climbs above its root via ``..``."""
    depth = 0
    for part in split_segments(relative):
        if part == "..":
            depth -= 1
            if depth < 0:
                return True
        elif part != ".":
            depth += 1
    return False


def clean_relative(relative: str) -> str:
    """Normalize a root-relative path to POSIX form (``.`` for the root)."""
    parts: list[str] = []
    for part in split_segments(relative):
        if part == ".":
            continue
        if part == ".." and parts:
            parts.pop()
            continue
        parts.append(part)
    return str(PurePosixPath(*parts)) if parts else "."


def relative_to_dir(target: Path, start_dir: Path) -> str:
    """POSIX relative path from ``start_dir`` to ``target``."""
    rel = os.path.relpath(normalize_path(target), normalize_path(start_dir))
    return Path(rel).as_posix()
