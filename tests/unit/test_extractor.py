"""Unit tests for reference extraction."""

from __future__ import annotations

from pathlib import Path

from pspack.analysis.extractor import (
    contains_foreign_variable,
    extract_file_references,
    extract_references,
    reference_path_text,
)
from pspack.analysis.models import ReferenceKind, ResolutionStatus

ORIGIN = Path("/project/Main.ps1")


def test_dot_source_unquoted() -> None:
    """A bare dot-source path is extracted with its column span."""
    line = ". $PSScriptRoot\\lib\\Config.ps1"
    refs = extract_references(line, ORIGIN)

    assert len(refs) == 1
    ref = refs[0]
    assert ref.kind == ReferenceKind.DOT_SOURCE
    assert ref.raw_text == "$PSScriptRoot\\lib\\Config.ps1"
    assert ref.line_number == 1
    assert line[ref.column : ref.end_column] == ref.raw_text
    assert ref.status == ResolutionStatus.PENDING


def test_dot_source_quoted_excludes_quotes() -> None:
    """Quotes are not part of the recorded span."""
    line = '    . ".\\lib\\Helpers.ps1"  # helpers'
    ref = extract_references(line, ORIGIN)[0]

    assert ref.raw_text == ".\\lib\\Helpers.ps1"
    assert line[ref.column - 1] == '"'
    assert line[ref.end_column] == '"'


def test_dot_source_join_path() -> None:
    """Join-Path expressions are unwrapped into a single path."""
    line = ". (Join-Path $PSScriptRoot 'lib\\Logging.ps1')"
    ref = extract_references(line, ORIGIN)[0]

    assert ref.raw_text.startswith("(Join-Path")
    assert reference_path_text(ref) == "$PSScriptRoot\\lib\\Logging.ps1"
    assert ref.status == ResolutionStatus.PENDING


def test_script_block_dot_invocation_is_ignored() -> None:
    """``. { ... }`` runs a script block, not a file."""
    assert extract_references(". { Write-Host hi }", ORIGIN) == []
    assert extract_references(". & $cmd", ORIGIN) == []


def test_comments_are_ignored() -> None:
    """Line and block comments never produce references."""
    contents = "\n".join(
        [
            "# . .\\commented.ps1",
            "<#",
            ". .\\in-block.ps1",
            "#>",
            "<# single line #>",
            ". .\\real.ps1",
        ]
    )
    refs = extract_references(contents, ORIGIN)

    assert [r.raw_text for r in refs] == [".\\real.ps1"]
    assert refs[0].line_number == 6


def test_import_module_named_parameter() -> None:
    """-Name, -Path and -LiteralPath carry the module path."""
    contents = "\n".join(
        [
            'Import-Module -Name "$PSScriptRoot\\Modules\\Tools.psm1" -Force',
            "import-module -Path .\\Modules\\Db.psd1",
            "Import-Module -Force -LiteralPath 'C:\\Shared\\Util.psm1'",
        ]
    )
    refs = extract_references(contents, ORIGIN)

    assert [r.raw_text for r in refs] == [
        "$PSScriptRoot\\Modules\\Tools.psm1",
        ".\\Modules\\Db.psd1",
        "C:\\Shared\\Util.psm1",
    ]
    assert all(r.kind == ReferenceKind.MODULE_IMPORT for r in refs)


def test_import_module_positional_and_valued_switches() -> None:
    """Values of switches such as -Prefix are not mistaken for the path."""
    refs = extract_references("Import-Module -Prefix Tl .\\Tools\\Tools.psm1", ORIGIN)

    assert [r.raw_text for r in refs] == [".\\Tools\\Tools.psm1"]


def test_import_by_registered_name_is_skipped() -> None:
    """Module names without separators or script extensions are not files."""
    contents = "Import-Module PSReadLine\nImport-Module -Name Pester -MinimumVersion 5.0"

    assert extract_references(contents, ORIGIN) == []


def test_using_module() -> None:
    """``using module`` with a path is a module import."""
    refs = extract_references("using module .\\Modules\\Tools.psm1", ORIGIN)

    assert len(refs) == 1
    assert refs[0].kind == ReferenceKind.MODULE_IMPORT


def test_variable_classification() -> None:
    """Any variable other than $PSScriptRoot makes a reference VARIABLE."""
    contents = "\n".join(
        [
            ". $SomeUnknownVar\\file.ps1",
            ". ${PSScriptRoot}\\ok.ps1",
            ". (Join-Path $env:ROOT 'x.ps1')",
            ". $psscriptroot\\lower.ps1",
        ]
    )
    statuses = [r.status for r in extract_references(contents, ORIGIN)]

    assert statuses == [
        ResolutionStatus.VARIABLE,
        ResolutionStatus.PENDING,
        ResolutionStatus.VARIABLE,
        ResolutionStatus.PENDING,
    ]


def test_contains_foreign_variable() -> None:
    """Only the script-root anchor is a known variable."""
    assert not contains_foreign_variable("$PSScriptRoot\\a.ps1")
    assert not contains_foreign_variable("lib\\a.ps1")
    assert contains_foreign_variable("$Root\\a.ps1")
    assert contains_foreign_variable("$(Get-Location)\\a.ps1")
    assert contains_foreign_variable("${env:ROOT}\\a.ps1")


def test_subexpression_is_variable() -> None:
    """``$(...)`` is evaluated at run time, so it cannot be resolved."""
    contents = "\n".join(
        [
            '. "$(Get-Location)\\lib\\x.ps1"',
            ". $(Split-Path $PSScriptRoot)\\shared\\y.ps1",
            "Import-Module \"$($PSScriptRoot)\\Modules\\Tools\"",
        ]
    )

    refs = extract_references(contents, ORIGIN)

    assert [r.status for r in refs] == [ResolutionStatus.VARIABLE] * 3
    assert refs[0].raw_text == "$(Get-Location)\\lib\\x.ps1"


def test_extract_file_references_unreadable(tmp_path: Path) -> None:
    """A missing file yields one synthetic NOT_FOUND reference."""
    missing = tmp_path / "missing.ps1"

    refs = extract_file_references(missing)

    assert len(refs) == 1
    assert refs[0].status == ResolutionStatus.NOT_FOUND
    assert refs[0].raw_text == ""
    assert refs[0].line_number == 0


def test_extract_file_references_reads_bom(tmp_path: Path) -> None:
    """A UTF-8 byte order mark does not hide the first line."""
    script = tmp_path / "Main.ps1"
    script.write_bytes(b"\xef\xbb\xbf. .\\lib.ps1\n")

    refs = extract_file_references(script)

    assert [r.raw_text for r in refs] == [".\\lib.ps1"]
