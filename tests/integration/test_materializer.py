"""Integration tests: materializing packages on a real filesystem."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from pspack.bundle.config import parse_package_config
from pspack.bundle.manifest import Outcome, PackageManifest
from pspack.bundle.materializer import Materializer
from pspack.config import PspackSettings
from pspack.exceptions import ConflictError


def make_config(**overrides):
    """Build a config from raw data."""
    data = {"package": {"name": "demo", "version": "1.0.0"}, "files": []}
    data.update(overrides)
    return parse_package_config(json.dumps(data))


def listing(root: Path) -> list[str]:
    """All files under root, POSIX relative, sorted."""
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


class TestMaterializer:
    """Tests for Materializer.materialize."""

    def test_preserve_structure(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """Preserve mode mirrors layout below the pattern base."""
        config = make_config(
            files=[{"name": "scripts", "source": "**/*.ps1", "destination": "scripts"}],
        )
        out = tmp_path / "dist"

        manifest = Materializer(settings).materialize(config, out, project_root=ps_project)

        assert not manifest.has_failures
        assert listing(out) == [
            "package-manifest.json",
            "scripts/Main.ps1",
            "scripts/lib/Config.ps1",
            "scripts/lib/Helpers.ps1",
        ]
        assert [f.group for f in manifest.files] == ["scripts"] * 3

    def test_flatten_and_exclude(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """Flatten drops directories; excluded files are never selected."""
        config = make_config(
            files=[
                {
                    "name": "libs",
                    "source": "**/*.ps*1",
                    "destination": "flat",
                    "flatten": True,
                    "exclude": ["Main.ps1", "**/*.psm1"],
                }
            ],
        )
        out = tmp_path / "dist"

        Materializer(settings).materialize(config, out, project_root=ps_project)

        assert listing(out) == ["flat/Config.ps1", "flat/Helpers.ps1", "package-manifest.json"]

    def test_flatten_collision(self, tmp_project: Path, tmp_path: Path, make_script, settings: PspackSettings) -> None:
        """Two X.ps1 files flattened together: one Success, one Failed."""
        make_script(tmp_project / "a" / "X.ps1", "'from a'")
        make_script(tmp_project / "b" / "X.ps1", "'from b'")
        config = make_config(
            files=[{"name": "flat", "source": "**/X.ps1", "destination": "scripts", "flatten": True}],
        )
        out = tmp_path / "dist"

        manifest = Materializer(settings).materialize(config, out, project_root=tmp_project)

        outcomes = [f.outcome for f in manifest.files]
        assert outcomes == [Outcome.SUCCESS, Outcome.FAILED]
        assert "destination collision" in manifest.files[1].reason
        assert (out / "scripts" / "X.ps1").read_text(encoding="utf-8") == "'from a'\n"

    def test_same_source_twice_is_skipped(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """A file claimed again for the same destination is Skipped."""
        config = make_config(
            files=[
                {"name": "first", "source": "Main.ps1"},
                {"name": "second", "source": "*.ps1"},
            ],
        )

        manifest = Materializer(settings).materialize(config, tmp_path / "dist", project_root=ps_project)

        assert [(f.group, f.outcome) for f in manifest.files] == [
            ("first", Outcome.SUCCESS),
            ("second", Outcome.SKIPPED),
        ]
        assert not manifest.has_failures

    def test_list_source_shares_common_base(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """Literal lists keep structure relative to their common base."""
        config = make_config(
            files=[{"name": "pick", "source": ["Main.ps1", "lib/Config.ps1"], "destination": "app"}],
        )
        out = tmp_path / "dist"

        Materializer(settings).materialize(config, out, project_root=ps_project)

        assert listing(out) == ["app/Main.ps1", "app/lib/Config.ps1", "package-manifest.json"]

    def test_dry_run_parity(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """Dry-run reports the same files as a real run and writes nothing."""
        config = make_config(
            directories=["logs"],
            files=[
                {"name": "scripts", "source": "**/*.ps1", "destination": "scripts", "flatten": True},
                {"name": "modules", "source": "Modules/**/*.psm1", "destination": "Modules"},
            ],
            post_package=[{"type": "create_file", "path": "VERSION", "content": "1.0.0"}],
        )
        dry_out = tmp_path / "dry"
        real_out = tmp_path / "real"
        materializer = Materializer(settings)

        dry = materializer.materialize(config, dry_out, project_root=ps_project, dry_run=True)
        real = materializer.materialize(config, real_out, project_root=ps_project)

        def shape(manifest: PackageManifest) -> list[tuple[str, str, str, Outcome]]:
            return [(f.source, f.destination, f.group, f.outcome) for f in manifest.files]

        assert shape(dry) == shape(real)
        assert dry.dry_run is True
        assert not dry_out.exists()
        assert (real_out / "logs").is_dir()
        assert (real_out / "VERSION").read_text(encoding="utf-8") == "1.0.0"

    def test_conflict_without_force(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """A populated output root is refused before any change, even in dry-run."""
        out = tmp_path / "dist"
        out.mkdir()
        (out / "old.txt").write_text("old", encoding="utf-8")
        config = make_config(files=[{"name": "main", "source": "Main.ps1"}])

        for dry_run in (False, True):
            with pytest.raises(ConflictError) as exc_info:
                Materializer(settings).materialize(config, out, project_root=ps_project, dry_run=dry_run)
            assert exc_info.value.path == out
        assert listing(out) == ["old.txt"]

    def test_force_overwrites(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """force allows packaging into a populated root."""
        out = tmp_path / "dist"
        out.mkdir()
        (out / "old.txt").write_text("old", encoding="utf-8")
        config = make_config(files=[{"name": "main", "source": "Main.ps1"}])

        manifest = Materializer(settings).materialize(config, out, project_root=ps_project, force=True)

        assert not manifest.has_failures
        assert (out / "Main.ps1").exists()

    def test_file_in_place_of_destination_directory(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """Even with force, a file where a group directory belongs is a conflict."""
        out = tmp_path / "dist"
        out.mkdir()
        (out / "scripts").write_text("not a directory", encoding="utf-8")
        config = make_config(files=[{"name": "main", "source": "Main.ps1", "destination": "scripts"}])

        with pytest.raises(ConflictError) as exc_info:
            Materializer(settings).materialize(config, out, project_root=ps_project, force=True)

        assert exc_info.value.path == out / "scripts"
        assert (out / "scripts").read_text(encoding="utf-8") == "not a directory"

    def test_output_inside_project_is_not_repackaged(self, ps_project: Path, settings: PspackSettings) -> None:
        """Files already in the output root are never selected."""
        config = make_config(files=[{"name": "all", "source": "**/*.ps1", "destination": "."}])
        out = ps_project / "dist"
        materializer = Materializer(settings)

        materializer.materialize(config, out, project_root=ps_project)
        second = materializer.materialize(config, out, project_root=ps_project, force=True)

        assert all("dist" not in Path(f.source).parts for f in second.files)
        assert len(second.files) == 3

    def test_move_and_write_actions(self, tmp_project: Path, tmp_path: Path, make_script, settings: PspackSettings) -> None:
        """move removes the source; write copies bytes."""
        make_script(tmp_project / "move" / "A.ps1", "'a'")
        make_script(tmp_project / "write" / "B.ps1", "'b'")
        config = make_config(
            files=[
                {"name": "moved", "source": "move/*.ps1", "destination": "m", "action": "move"},
                {"name": "written", "source": "write/*.ps1", "destination": "w", "action": "write"},
            ],
        )
        out = tmp_path / "dist"

        manifest = Materializer(settings).materialize(config, out, project_root=tmp_project)

        assert not manifest.has_failures
        assert not (tmp_project / "move" / "A.ps1").exists()
        assert (out / "m" / "A.ps1").read_text(encoding="utf-8") == "'a'\n"
        assert (out / "w" / "B.ps1").read_text(encoding="utf-8") == "'b'\n"
        assert (tmp_project / "write" / "B.ps1").exists()

    def test_moved_source_claimed_again_fails(self, tmp_project: Path, tmp_path: Path, make_script, settings: PspackSettings) -> None:
        """A source moved by an earlier group cannot be packaged again."""
        make_script(tmp_project / "A.ps1", "'a'")
        config = make_config(
            files=[
                {"name": "moved", "source": "A.ps1", "destination": "m", "action": "move"},
                {"name": "copy", "source": "A.ps1", "destination": "c"},
            ],
        )

        manifest = Materializer(settings).materialize(config, tmp_path / "dist", project_root=tmp_project)

        assert [f.outcome for f in manifest.files] == [Outcome.SUCCESS, Outcome.FAILED]
        assert "moved" in manifest.files[1].reason

    def test_manifest_written(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """The manifest lands in the output root and loads back."""
        config = make_config(files=[{"name": "main", "source": "Main.ps1"}])
        out = tmp_path / "dist"

        Materializer(settings).materialize(config, out, project_root=ps_project)
        loaded = PackageManifest.load(out / settings.manifest_name)

        assert [f.destination for f in loaded.files] == ["Main.ps1"]
        assert loaded.project_root == ps_project

    def test_create_file_json_content(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """Non-string content is written as indented JSON."""
        config = make_config(
            files=[{"name": "main", "source": "Main.ps1"}],
            post_package=[{"type": "create_file", "path": "meta/info.json", "content": {"a": 1}}],
        )
        out = tmp_path / "dist"

        manifest = Materializer(settings).materialize(config, out, project_root=ps_project)

        assert json.loads((out / "meta" / "info.json").read_text(encoding="utf-8")) == {"a": 1}
        assert manifest.post_package_results[0].outcome == Outcome.SUCCESS

    def test_run_script(self, tmp_project: Path, tmp_path: Path, make_script, settings: PspackSettings) -> None:
        """Scripts run from the output root; failures are recorded, not raised."""
        make_script(
            tmp_project / "setup.py",
            "from pathlib import Path",
            "Path('ran.txt').write_text('yes')",
        )
        make_script(tmp_project / "broken.py", "raise SystemExit(4)")
        config = make_config(
            files=[{"name": "tools", "source": "*.py"}],
            post_package=[
                {"type": "run_script", "path": "setup.py"},
                {"type": "run_script", "path": "broken.py"},
                {"type": "run_script", "path": "absent.py"},
            ],
        )
        out = tmp_path / "dist"

        manifest = Materializer(settings).materialize(config, out, project_root=tmp_project)

        results = manifest.post_package_results
        assert [r.outcome for r in results] == [Outcome.SUCCESS, Outcome.FAILED, Outcome.FAILED]
        assert results[1].returncode == 4
        assert (out / "ran.txt").read_text() == "yes"
        assert not manifest.has_failures

    def test_run_script_skipped_in_dry_run(self, ps_project: Path, tmp_path: Path, settings: PspackSettings) -> None:
        """Scripts never run in dry-run."""
        config = make_config(
            files=[{"name": "main", "source": "Main.ps1"}],
            post_package=[{"type": "run_script", "path": "Main.ps1"}],
        )

        manifest = Materializer(settings).materialize(
            config, tmp_path / "dist", project_root=ps_project, dry_run=True
        )

        assert manifest.post_package_results[0].outcome == Outcome.SKIPPED

    def test_ps1_command_line(self, settings: PspackSettings) -> None:
        """.ps1 scripts run through the configured PowerShell."""
        materializer = Materializer(settings.model_copy(update={"powershell": "powershell.exe"}))

        command = materializer.script_command(Path("/out/Setup.PS1"), ["-Quiet"])

        assert command == ["powershell.exe", "-NoProfile", "-File", "/out/Setup.PS1", "-Quiet"]
        assert materializer.script_command(Path("/out/tool.py"), [])[0] == sys.executable
