"""Unit tests for tool settings and their YAML serialization."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from pspack.config import SETTINGS_FILENAME, PspackSettings


def test_defaults() -> None:
    """Default settings match the documented values."""
    settings = PspackSettings.default()

    assert settings.search_paths == ["."]
    assert settings.max_depth == 10
    assert settings.script_extensions == [".ps1", ".psm1", ".psd1"]
    assert settings.powershell == "pwsh"
    assert settings.script_timeout == 300
    assert settings.manifest_name == "package-manifest.json"
    assert settings.backup_suffix == ".bak"


def test_yaml_round_trip() -> None:
    """Settings survive to_yaml/from_yaml."""
    settings = PspackSettings(search_paths=["shared", "vendor"], max_depth=3)

    yaml_content = settings.to_yaml()

    assert "search_paths:" in yaml_content
    assert "- shared" in yaml_content
    assert PspackSettings.from_yaml(yaml_content) == settings


def test_from_yaml_empty_and_partial() -> None:
    """Empty files give defaults; missing keys are backfilled."""
    assert PspackSettings.from_yaml("") == PspackSettings()

    settings = PspackSettings.from_yaml("max_depth: 2\n")

    assert settings.max_depth == 2
    assert settings.search_paths == ["."]


def test_from_yaml_invalid() -> None:
    """Non-mapping and malformed YAML are rejected."""
    with pytest.raises(ValueError):
        PspackSettings.from_yaml("- a\n- b\n")
    with pytest.raises(ValueError):
        PspackSettings.from_yaml("max_depth: [1\n")


def test_extensions_normalized() -> None:
    """Extensions are lower-cased, dotted and deduplicated."""
    settings = PspackSettings(script_extensions=["PS1", ".ps1", "psm1", ""])

    assert settings.script_extensions == [".ps1", ".psm1"]
    assert settings.is_script(Path("Main.PS1"))
    assert not settings.is_script(Path("data.psd1"))


def test_validation() -> None:
    """Negative depth and nested manifest names are rejected."""
    with pytest.raises(ValidationError):
        PspackSettings(max_depth=-1)
    with pytest.raises(ValidationError):
        PspackSettings(manifest_name="out/manifest.json")


def test_discover(tmp_path: Path) -> None:
    """pspack.yaml in the base directory is picked up; explicit paths win."""
    assert PspackSettings.discover(tmp_path) == PspackSettings()

    PspackSettings(max_depth=4).save(tmp_path / SETTINGS_FILENAME)
    assert PspackSettings.discover(tmp_path).max_depth == 4

    explicit = tmp_path / "other.yaml"
    PspackSettings(max_depth=7).save(explicit)
    assert PspackSettings.discover(tmp_path, explicit).max_depth == 7


def test_load_missing(tmp_path: Path) -> None:
    """Loading a missing file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        PspackSettings.load(tmp_path / "missing.yaml")


def test_resolve_search_paths(tmp_path: Path) -> None:
    """Search paths become absolute against the base directory."""
    settings = PspackSettings(search_paths=[".", "shared"])

    assert settings.resolve_search_paths(tmp_path) == [tmp_path / ".", tmp_path / "shared"]
