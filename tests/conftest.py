"""Pytest fixtures for pspack tests."""

from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

import pytest

from pspack.config import PspackSettings


def write_script(path: Path, *lines: str) -> Path:
    """Write script lines to a file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create an empty temporary project directory."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def ps_project(tmp_project: Path) -> Path:
    """Create a small PowerShell project.

    Layout::

        Main.ps1            dot-sources lib/Config.ps1, imports Modules/Tools
        lib/Config.ps1      dot-sources lib/Helpers.ps1
        lib/Helpers.ps1     dot-sources Config.ps1 (cycle)
        Modules/Tools/Tools.psm1
        README.md
    """
    write_script(
        tmp_project / "Main.ps1",
        "# Entry point",
        ". $PSScriptRoot\\lib\\Config.ps1",
        "Import-Module -Name \"$PSScriptRoot\\Modules\\Tools\" -Force",
        "Import-Module PSReadLine",
        "Write-Host 'ready'",
    )
    write_script(
        tmp_project / "lib" / "Config.ps1",
        ". \"$PSScriptRoot\\Helpers.ps1\"",
        "$Config = @{ Name = 'demo' }",
    )
    write_script(
        tmp_project / "lib" / "Helpers.ps1",
        ". $PSScriptRoot\\Config.ps1",
        "function Get-Greeting { 'hi' }",
    )
    write_script(
        tmp_project / "Modules" / "Tools" / "Tools.psm1",
        "function Invoke-Tool { }",
    )
    (tmp_project / "README.md").write_text("# demo\n", encoding="utf-8")
    return tmp_project


@pytest.fixture
def make_script():
    """Return the script writer helper."""
    return write_script


@pytest.fixture
def settings() -> PspackSettings:
    """Default tool settings."""
    return PspackSettings.default()
