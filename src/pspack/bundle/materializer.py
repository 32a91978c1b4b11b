"""Execute a package configuration into an output tree."""

from __future__ import annotations

import json
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

import structlog

from pspack.bundle.config import (
    CreateFileAction,
    FileAction,
    FileGroup,
    PackageConfig,
    RunScriptAction,
    StructureMode,
)
from pspack.bundle.manifest import ActionOutcome, FileOutcome, Outcome, PackageManifest
from pspack.config import PspackSettings
from pspack.exceptions import CommandError, ConflictError
from pspack.infra.command import CommandRunner
from pspack.paths import clean_relative, normalize_path, path_key, split_segments
from pspack.patterns import expand_pattern, is_excluded, pattern_base

logger = structlog.get_logger()


@dataclass
class PlannedFile:
    """One file routed to a destination by a group.

    ``outcome`` is already set when planning decided the result (collision,
    duplicate); otherwise the apply phase decides it.
    """

    source: Path
    destination: Path
    relative_destination: str
    group: FileGroup
    outcome: Outcome | None = None
    reason: str | None = None


def _relative_destination(group: FileGroup, source: Path, base: Path) -> str:
    subpath = clean_relative(group.destination)
    if group.structure_mode == StructureMode.FLATTEN:
        relative = source.name
    else:
        try:
            relative = source.relative_to(base).as_posix()
        except ValueError:
            relative = source.name
    return clean_relative(f"{subpath}/{relative}")


def _group_bases(group: FileGroup, project_root: Path) -> dict[str, Path]:
    """Base directory per pattern; a list of patterns shares its common base."""
    bases = {p: pattern_base(p, project_root) for p in group.source_patterns}
    if len(bases) < 2:
        return bases
    try:
        common = Path(os.path.commonpath([str(b) for b in bases.values()]))
    except ValueError:
        # Different drives.
        return bases
    return dict.fromkeys(bases, common)


def plan_files(
    config: PackageConfig,
    output_root: Path,
    project_root: Path,
    *,
    reserved: tuple[str, ...] = (),
) -> list[PlannedFile]:
    """Expand every group and compute destinations without touching disk.

    Groups are processed in declared order. A destination claimed by an
    earlier item with a different source fails the later item; the same
    source claimed again is skipped. Files already inside ``output_root``
    are never selected.

    Args:
        config: Package configuration.
        output_root: Package output directory.
        project_root: Root that relative patterns expand against.
        reserved: Root-relative destinations nothing may be written to.

    Returns:
        Planned files in processing order.
    """
    output_root = normalize_path(output_root)
    project_root = normalize_path(project_root)
    output_key = path_key(output_root)

    claims: dict[str, tuple[str, Path, str]] = {
        path_key(output_root / name): ("", output_root / name, "<reserved>")
        for name in reserved
    }
    moved: dict[str, str] = {}
    planned: list[PlannedFile] = []

    for group in config.files:
        log = logger.bind(group=group.name)
        seen_in_group: set[str] = set()
        matched = 0
        bases = _group_bases(group, project_root)
        for pattern in group.source_patterns:
            base = bases[pattern]
            for source in expand_pattern(pattern, project_root):
                source_key = path_key(source)
                if source_key in seen_in_group:
                    continue
                seen_in_group.add(source_key)
                if source_key.startswith(output_key + "/"):
                    log.debug("Ignoring file inside output root", file=str(source))
                    continue
                if is_excluded(source, project_root, group.exclude):
                    log.debug("Excluded", file=str(source))
                    continue

                matched += 1
                relative = _relative_destination(group, source, base)
                destination = output_root.joinpath(*split_segments(relative))
                item = PlannedFile(
                    source=source,
                    destination=destination,
                    relative_destination=relative,
                    group=group,
                )

                dest_key = path_key(destination)
                claim = claims.get(dest_key)
                if claim is not None:
                    claim_source_key, claim_source, claim_group = claim
                    if claim_source_key == source_key:
                        item.outcome = Outcome.SKIPPED
                        item.reason = f"already packaged by group '{claim_group}'"
                    elif claim_group == "<reserved>":
                        item.outcome = Outcome.FAILED
                        item.reason = f"destination '{relative}' is reserved"
                    else:
                        item.outcome = Outcome.FAILED
                        item.reason = (
                            f"destination collision with {claim_source} "
                            f"(group '{claim_group}')"
                        )
                elif source_key in moved:
                    item.outcome = Outcome.FAILED
                    item.reason = f"source already moved by group '{moved[source_key]}'"
                else:
                    claims[dest_key] = (source_key, source, group.name)
                    if group.action == FileAction.MOVE:
                        moved[source_key] = group.name
                planned.append(item)

        if matched == 0:
            log.warning("File group matched no files", source=group.source)
    return planned


class Materializer:
    """Runs a PackageConfiguration against the filesystem.

    Example:
        >>> materializer = Materializer(PspackSettings())
        >>> manifest = materializer.materialize(config, Path("dist"), dry_run=True)
        >>> manifest.summary()["failed"]
        0
    """

    def __init__(
        self,
        settings: PspackSettings,
        runner: CommandRunner | None = None,
    ) -> None:
        """Initialize the materializer.

        Args:
            settings: Tool settings (manifest name, interpreter, timeouts).
            runner: Command runner for run_script actions.
        """
        self.settings = settings
        self.runner = runner or CommandRunner()

    def materialize(
        self,
        config: PackageConfig,
        output_root: Path,
        *,
        project_root: Path | None = None,
        dry_run: bool = False,
        force: bool = False,
    ) -> PackageManifest:
        """Materialize a package.

        With ``dry_run`` every computation happens and the manifest reports
        the same files, groups and order as a real run, but nothing on disk
        changes and the manifest is not written.

        Args:
            config: Package configuration.
            output_root: Directory to build the package in.
            project_root: Root for relative source patterns (default: cwd).
            dry_run: Compute without mutating the filesystem.
            force: Allow a non-empty existing output root.

        Returns:
            The PackageManifest.

        Raises:
            ConflictError: If ``output_root`` is populated and force is False,
                or exists as a file, or a file sits where a package
                directory must be created.
        """
        output_root = normalize_path(output_root)
        project_root = normalize_path(project_root or Path.cwd())
        log = logger.bind(
            package=config.package.name,
            output_root=str(output_root),
            dry_run=dry_run,
        )
        log.info("Materializing package")

        self._check_output_root(output_root, force)

        manifest = PackageManifest(
            config=config,
            output_root=output_root,
            project_root=project_root,
            dry_run=dry_run,
        )

        self._create_directories(config, output_root, dry_run)

        planned = plan_files(
            config,
            output_root,
            project_root,
            reserved=(self.settings.manifest_name,),
        )
        for item in planned:
            manifest.files.append(self._process(item, dry_run))

        for action in config.post_package:
            manifest.post_package_results.append(
                self._run_action(action, output_root, dry_run)
            )

        if not dry_run:
            manifest.write(output_root / self.settings.manifest_name)

        summary = manifest.summary()
        log.info("Package materialized", **summary)
        for failed in manifest.failed_actions:
            log.warning("Post-package action failed", path=failed.path, reason=failed.reason)
        return manifest

    @staticmethod
    def _check_output_root(output_root: Path, force: bool) -> None:
        if not output_root.exists():
            return
        if not output_root.is_dir():
            msg = f"Output path exists and is not a directory: {output_root}"
            raise ConflictError(msg, path=output_root)
        if force:
            return
        if any(output_root.iterdir()):
            msg = f"Output directory is not empty: {output_root} (use --force to overwrite)"
            raise ConflictError(msg, path=output_root)

    @staticmethod
    def _create_directories(config: PackageConfig, output_root: Path, dry_run: bool) -> None:
        relatives = [clean_relative(g.destination) for g in config.files]
        relatives += [clean_relative(d) for d in config.directories]
        targets = [output_root] + [
            output_root.joinpath(*split_segments(rel)) for rel in relatives if rel != "."
        ]
        for target in targets:
            if dry_run:
                logger.debug("Would create directory", path=str(target))
                continue
            try:
                target.mkdir(parents=True, exist_ok=True)
            except (FileExistsError, NotADirectoryError) as e:
                msg = f"Cannot create directory {target}: a file is in the way"
                raise ConflictError(msg, path=target) from e

    def _process(self, item: PlannedFile, dry_run: bool) -> FileOutcome:
        """Apply one planned file and record its outcome."""
        log = logger.bind(
            group=item.group.name,
            source=str(item.source),
            destination=item.relative_destination,
        )

        def outcome(result: Outcome, reason: str | None = None) -> FileOutcome:
            return FileOutcome(
                source=str(item.source),
                destination=item.relative_destination,
                group=item.group.name,
                outcome=result,
                reason=reason,
            )

        if item.outcome is not None:
            log.warning("File not packaged", outcome=item.outcome.value, reason=item.reason)
            return outcome(item.outcome, item.reason)

        if not item.source.is_file() or not os.access(item.source, os.R_OK):
            log.warning("Source not readable")
            return outcome(Outcome.FAILED, "source file is missing or unreadable")

        if dry_run:
            log.debug("Would package file", action=item.group.action.value)
            return outcome(Outcome.SUCCESS)

        try:
            item.destination.parent.mkdir(parents=True, exist_ok=True)
            if item.group.action == FileAction.MOVE:
                shutil.move(str(item.source), str(item.destination))
            elif item.group.action == FileAction.WRITE:
                item.destination.write_bytes(item.source.read_bytes())
            else:
                shutil.copy2(item.source, item.destination)
        except (OSError, shutil.Error) as e:
            log.warning("File operation failed", error=str(e))
            return outcome(Outcome.FAILED, f"{item.group.action.value} failed: {e}")

        log.debug("Packaged file", action=item.group.action.value)
        return outcome(Outcome.SUCCESS)

    def _run_action(
        self,
        action: CreateFileAction | RunScriptAction,
        output_root: Path,
        dry_run: bool,
    ) -> ActionOutcome:
        relative = clean_relative(action.path)
        target = output_root.joinpath(*split_segments(relative))

        if isinstance(action, CreateFileAction):
            if dry_run:
                return ActionOutcome(type=action.type, path=relative, outcome=Outcome.SUCCESS)
            content = (
                action.content
                if isinstance(action.content, str)
                else json.dumps(action.content, indent=2) + "\n"
            )
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
            except OSError as e:
                return ActionOutcome(
                    type=action.type, path=relative, outcome=Outcome.FAILED, reason=str(e)
                )
            logger.info("Created file", path=relative)
            return ActionOutcome(type=action.type, path=relative, outcome=Outcome.SUCCESS)

        if dry_run:
            return ActionOutcome(
                type=action.type, path=relative, outcome=Outcome.SKIPPED, reason="dry run"
            )
        if not target.is_file():
            return ActionOutcome(
                type=action.type,
                path=relative,
                outcome=Outcome.FAILED,
                reason="script not found in package",
            )
        try:
            result = self.runner.run(
                self.script_command(target, action.args),
                cwd=output_root,
                timeout=self.settings.script_timeout,
            )
        except CommandError as e:
            return ActionOutcome(
                type=action.type, path=relative, outcome=Outcome.FAILED, reason=str(e)
            )
        if not result.ok:
            return ActionOutcome(
                type=action.type,
                path=relative,
                outcome=Outcome.FAILED,
                returncode=result.returncode,
                reason=result.output_tail() or f"exit code {result.returncode}",
            )
        return ActionOutcome(
            type=action.type,
            path=relative,
            outcome=Outcome.SUCCESS,
            returncode=result.returncode,
        )

    def script_command(self, script: Path, args: list[str]) -> list[str]:
        """Build the command line for a run_script action."""
        suffix = script.suffix.lower()
        if suffix == ".ps1":
            return [self.settings.powershell, "-NoProfile", "-File", str(script), *args]
        if suffix == ".py":
            return [sys.executable, str(script), *args]
        return [str(script), *args]
