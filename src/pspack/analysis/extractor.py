"""Static extraction of dot-source and module-import references.

Extraction is line-oriented and regex-driven; script text is never executed.
Recognized forms::

    . $PSScriptRoot\\lib\\Config.ps1
    . ".\\lib\\Helpers.ps1"
    . (Join-Path $PSScriptRoot 'lib\\Logging.ps1')
    Import-Module -Name "$PSScriptRoot\\Modules\\Tools.psm1" -Force
    Import-Module .\\Modules\\Tools
    using module .\\Modules\\Tools.psm1
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

import structlog

from pspack.analysis.models import ReferenceKind, ResolutionStatus, SourceReference

logger = structlog.get_logger()

SCRIPT_ROOT_ANCHOR = "$PSScriptRoot"
# Leading $PSScriptRoot or ${PSScriptRoot}, as written.
SCRIPT_ROOT_ANCHOR_RE = re.compile(r"^\$(?:\{PSScriptRoot\}|PSScriptRoot\b)", re.IGNORECASE)

MODULE_FILE_EXTENSIONS = (".ps1", ".psm1", ".psd1", ".dll")

# ". <expr>" where the dot is the first token on the line.
_DOT_SOURCE_RE = re.compile(r"^(?P<indent>\s*)\.\s+(?=\S)")
_IMPORT_MODULE_RE = re.compile(r"^\s*Import-Module\b", re.IGNORECASE)
_USING_MODULE_RE = re.compile(r"^\s*using\s+module\s+", re.IGNORECASE)
_JOIN_PATH_RE = re.compile(
    r"\(\s*Join-Path\s+(?:-Path\s+)?(?P<base>\S+)\s+(?:-ChildPath\s+)?(?P<child>[^)]+?)\s*\)",
    re.IGNORECASE,
)
_VARIABLE_RE = re.compile(r"\$(?:\{(?P<braced>[^}]*)\}|(?P<plain>[A-Za-z_][\w:]*))?")
_PATH_PARAMS = ("-name", "-path", "-literalpath")
_VALUED_PARAMS = (
    "-prefix",
    "-scope",
    "-minimumversion",
    "-maximumversion",
    "-requiredversion",
    "-argumentlist",
    "-function",
    "-cmdlet",
    "-variable",
    "-alias",
)
_UNQUOTED_STOP = re.compile(r"[\s;|#]")


@dataclass(frozen=True)
class _Span:
    text: str
    start: int
    end: int


def is_anchor_variable(name: str) -> bool:
    """Check whether a variable name is the script-directory anchor."""
    return name.casefold() == "psscriptroot"


def contains_foreign_variable(text: str) -> bool:
    """Check for a ``$`` token other than the script-directory anchor.

    ``$name``, ``${name}`` and subexpressions such as ``$(Get-Location)`` all
    count; only ``$PSScriptRoot`` is resolved statically.
    """
    for match in _VARIABLE_RE.finditer(text):
        name = match.group("braced") or match.group("plain") or ""
        if not is_anchor_variable(name):
            return True
    return False


def _read_token(line: str, start: int) -> _Span | None:
    """Read one path expression starting at ``start``.

    Quoted expressions return the text between the quotes. Unquoted ones stop
    at whitespace, a statement separator, a pipe or a comment.
    """
    while start < len(line) and line[start].isspace():
        start += 1
    if start >= len(line):
        return None

    quote = line[start]
    if quote in ("'", '"'):
        end = line.find(quote, start + 1)
        if end == -1:
            return None
        if end == start + 1:
            return None
        return _Span(line[start + 1 : end], start + 1, end)

    if quote == "(":
        join = _JOIN_PATH_RE.match(line, start)
        if join is None:
            return None
        return _Span(join.group(0), join.start(), join.end())

    stop = _UNQUOTED_STOP.search(line, start)
    end = stop.start() if stop else len(line)
    if end == start:
        return None
    return _Span(line[start:end], start, end)


def unwrap_join_path(text: str) -> str:
    """Turn ``(Join-Path <base> <child>)`` into ``<base>\\<child>``."""
    match = _JOIN_PATH_RE.fullmatch(text.strip())
    if match is None:
        return text
    base = match.group("base").strip("'\"")
    child = match.group("child").strip().strip("'\"")
    return f"{base}\\{child}"


def _import_module_span(line: str, start: int) -> _Span | None:
    """Find the path argument of an ``Import-Module`` call.

    A ``-Name``/``-Path``/``-LiteralPath`` argument wins; otherwise the first
    positional argument is used. Other switches and their values are skipped.
    """
    position = start
    positional: _Span | None = None
    skip_value = False
    while position < len(line):
        token = _read_token(line, position)
        if token is None:
            break
        quoted = token.end < len(line) and line[token.end] in "'\""
        position = token.end + (1 if quoted else 0)
        lowered = token.text.casefold()
        if skip_value:
            skip_value = False
            continue
        if lowered.startswith("-") and not quoted:
            if lowered in _PATH_PARAMS:
                return _read_token(line, position)
            skip_value = lowered in _VALUED_PARAMS
            continue
        if positional is None:
            positional = token
    return positional


def _looks_like_file(text: str) -> bool:
    """Registered module names carry no separator and no script extension."""
    if "/" in text or "\\" in text or text.startswith(("$", "(")):
        return True
    return text.casefold().endswith(MODULE_FILE_EXTENSIONS)


def _build_reference(
    file_path: Path,
    span: _Span,
    kind: ReferenceKind,
    line_number: int,
) -> SourceReference:
    raw = span.text
    status = ResolutionStatus.PENDING
    if contains_foreign_variable(unwrap_join_path(raw)):
        status = ResolutionStatus.VARIABLE
    return SourceReference(
        origin_path=file_path,
        raw_text=raw,
        kind=kind,
        line_number=line_number,
        column=span.start,
        end_column=span.end,
        status=status,
    )


def reference_path_text(ref: SourceReference) -> str:
    """The path expression of a reference with ``Join-Path`` unwrapped."""
    return unwrap_join_path(ref.raw_text)


def extract_references(contents: str, file_path: Path) -> list[SourceReference]:
    """Extract outbound references from script text.

    Args:
        contents: Full text of the script.
        file_path: Absolute path of the script (recorded as origin).

    Returns:
        References in source order. Those containing a variable other than
        ``$PSScriptRoot`` are already marked VARIABLE; the rest are PENDING.
    """
    references: list[SourceReference] = []
    in_block_comment = False

    for line_number, line in enumerate(contents.splitlines(), start=1):
        if in_block_comment:
            if "#>" in line:
                in_block_comment = False
            continue
        stripped = line.lstrip()
        if stripped.startswith("<#"):
            in_block_comment = "#>" not in stripped[2:]
            continue
        if stripped.startswith("#") or not stripped:
            continue

        dot = _DOT_SOURCE_RE.match(line)
        if dot is not None:
            span = _read_token(line, dot.end())
            # ". { ... }" dot-invokes a script block, not a file.
            if span is not None and not span.text.startswith(("{", "&")):
                references.append(
                    _build_reference(file_path, span, ReferenceKind.DOT_SOURCE, line_number)
                )
            continue

        using = _USING_MODULE_RE.match(line)
        if using is not None:
            span = _read_token(line, using.end())
            if span is not None and _looks_like_file(span.text):
                references.append(
                    _build_reference(file_path, span, ReferenceKind.MODULE_IMPORT, line_number)
                )
            continue

        imported = _IMPORT_MODULE_RE.match(line)
        if imported is not None:
            span = _import_module_span(line, imported.end())
            if span is None:
                continue
            if not _looks_like_file(span.text):
                logger.debug(
                    "Skipping import by module name",
                    file=str(file_path),
                    line=line_number,
                    module=span.text,
                )
                continue
            references.append(
                _build_reference(file_path, span, ReferenceKind.MODULE_IMPORT, line_number)
            )

    return references


def extract_file_references(file_path: Path) -> list[SourceReference]:
    """Read a file and extract its references.

    Never raises: an unreadable file yields a single synthetic NOT_FOUND
    reference with empty raw text on line 0.
    """
    try:
        contents = file_path.read_text(encoding="utf-8-sig", errors="replace")
    except OSError as e:
        logger.warning("Failed to read script", file=str(file_path), error=str(e))
        return [
            SourceReference(
                origin_path=file_path,
                raw_text="",
                kind=ReferenceKind.DOT_SOURCE,
                line_number=0,
                status=ResolutionStatus.NOT_FOUND,
            )
        ]
    return extract_references(contents, file_path)
