"""Rewrite references inside packaged scripts to match the package layout."""

from __future__ import annotations

import codecs
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from pspack.analysis.extractor import (
    SCRIPT_ROOT_ANCHOR,
    SCRIPT_ROOT_ANCHOR_RE,
    extract_references,
    reference_path_text,
    unwrap_join_path,
)
from pspack.analysis.models import ResolutionStatus, SourceReference
from pspack.analysis.resolver import PathResolver, strip_anchor
from pspack.bundle.config import PackageConfig
from pspack.bundle.manifest import PackageManifest
from pspack.bundle.materializer import plan_files
from pspack.config import PspackSettings
from pspack.paths import is_absolute_text, normalize_path, path_key, relative_to_dir, split_segments

logger = structlog.get_logger()


@dataclass
class RewriteFailure:
    """A packaged script that could not be rewritten."""

    path: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return {"path": self.path, "reason": self.reason}


@dataclass
class RewriteResult:
    """Totals of one rewrite pass.

    Attributes:
        paths_updated: References substituted (or that would be, in dry-run).
        scripts_updated: Scripts with at least one substitution.
        failures: Scripts that could not be read or written.
        dry_run: Whether anything was written.
    """

    paths_updated: int = 0
    scripts_updated: int = 0
    failures: list[RewriteFailure] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        """Check that no script failed."""
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "paths_updated": self.paths_updated,
            "scripts_updated": self.scripts_updated,
            "success": self.success,
            "dry_run": self.dry_run,
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass(frozen=True)
class _Edit:
    line_index: int
    start: int
    end: int
    text: str


def _separator_of(text: str) -> str:
    return "/" if "/" in text and "\\" not in text else "\\"


def format_reference(original: str, new_relative: str) -> str:
    """Render ``new_relative`` in the style of the original reference text.

    The ``$PSScriptRoot`` anchor as written, the separator and a leading
    ``.\\`` are kept. Absolute originals become anchor-relative.

    Args:
        original: Raw reference text as written (quotes removed).
        new_relative: POSIX path from the script's directory to the target.

    Example:
        >>> format_reference("$PSScriptRoot\\\\lib\\\\Config.ps1", "Config.ps1")
        '$PSScriptRoot\\\\Config.ps1'
    """
    path_text = unwrap_join_path(original)
    anchored, remainder = strip_anchor(path_text)
    sep = _separator_of(remainder if anchored else path_text)
    rendered = sep.join(split_segments(new_relative))

    if original.lstrip().startswith("("):
        # Join-Path expression: keep the call, replace the child path.
        base = SCRIPT_ROOT_ANCHOR
        if anchored:
            base = SCRIPT_ROOT_ANCHOR_RE.match(path_text).group(0)  # type: ignore[union-attr]
        return f"(Join-Path {base} '{rendered}')"

    if anchored:
        anchor = SCRIPT_ROOT_ANCHOR_RE.match(path_text).group(0)  # type: ignore[union-attr]
        return f"{anchor}{sep}{rendered}"
    if is_absolute_text(path_text):
        return f"{SCRIPT_ROOT_ANCHOR}{sep}{rendered}"
    if path_text.startswith((".\\", "./")) and not rendered.startswith(".."):
        return f".{sep}{rendered}"
    return rendered


def _names_module_folder(raw_text: str, resolved: Path) -> bool:
    """``Import-Module .\\Tools`` resolved to Tools/Tools.psm1."""
    segments = split_segments(unwrap_join_path(raw_text))
    if not segments:
        return False
    last = segments[-1].casefold()
    return last != resolved.name.casefold() and last == resolved.parent.name.casefold()


def _quote_if_needed(line: str, edit: _Edit) -> str:
    quoted = edit.start > 0 and line[edit.start - 1] in "'\""
    if quoted or edit.text.startswith("(") or not any(c.isspace() for c in edit.text):
        return edit.text
    return f'"{edit.text}"'


def _apply_edits(text: str, edits: list[_Edit]) -> str:
    lines = text.splitlines(keepends=True)
    for edit in sorted(edits, key=lambda e: (e.line_index, e.start), reverse=True):
        line = lines[edit.line_index]
        replacement = _quote_if_needed(line, edit)
        lines[edit.line_index] = line[: edit.start] + replacement + line[edit.end :]
    return "".join(lines)


class ReferenceRewriter:
    """Fixes dot-source and import paths after files were relocated.

    The source-to-destination mapping comes from the package manifest. When
    no manifest exists the mapping is recomputed from the configuration's
    plan, which is what a dry-run materialization would report.

    Example:
        >>> rewriter = ReferenceRewriter(PspackSettings())
        >>> result = rewriter.rewrite(config, Path("dist"), dry_run=True)
        >>> result.success
        True
    """

    def __init__(
        self,
        settings: PspackSettings,
        resolver: PathResolver | None = None,
    ) -> None:
        """Initialize the rewriter.

        Args:
            settings: Tool settings (extensions, manifest name, backup suffix).
            resolver: Path resolver used for the original references.
        """
        self.settings = settings
        self.resolver = resolver or PathResolver()

    def rewrite(
        self,
        config: PackageConfig,
        package_path: Path,
        *,
        create_backups: bool = False,
        dry_run: bool = False,
        project_root: Path | None = None,
        search_paths: list[Path] | None = None,
    ) -> RewriteResult:
        """Rewrite references in every packaged script.

        References whose target was not packaged, or that did not resolve,
        are left exactly as written.

        Args:
            config: Configuration the package was built from.
            package_path: Output root of the package.
            create_backups: Copy each modified script to a backup first.
            dry_run: Count the changes without writing.
            project_root: Root for relative source patterns and search paths.
            search_paths: Search roots for resolving original references.

        Returns:
            RewriteResult with totals and per-script failures.
        """
        package_path = normalize_path(package_path)
        result = RewriteResult(dry_run=dry_run)
        log = logger.bind(package_path=str(package_path), dry_run=dry_run)

        mapping, root = self._load_mapping(config, package_path, project_root)
        roots = search_paths if search_paths is not None else self.settings.resolve_search_paths(root)
        log.info("Rewriting references", files=len(mapping))

        for source, destination in mapping.values():
            if not self.settings.is_script(destination):
                continue
            updated = self._rewrite_script(
                source, destination, mapping, roots, result, create_backups, dry_run
            )
            if updated:
                result.scripts_updated += 1
                result.paths_updated += updated

        log.info(
            "References rewritten",
            paths_updated=result.paths_updated,
            scripts_updated=result.scripts_updated,
            failures=len(result.failures),
        )
        return result

    def _load_mapping(
        self,
        config: PackageConfig,
        package_path: Path,
        project_root: Path | None,
    ) -> tuple[dict[str, tuple[Path, Path]], Path]:
        """Map source path keys to (source, packaged destination)."""
        mapping: dict[str, tuple[Path, Path]] = {}
        manifest_path = package_path / self.settings.manifest_name
        if manifest_path.is_file():
            manifest = PackageManifest.load(manifest_path)
            root = normalize_path(project_root or manifest.project_root)
            for entry in manifest.successful_files():
                source = normalize_path(entry.source)
                destination = package_path.joinpath(*split_segments(entry.destination))
                mapping[path_key(source)] = (source, destination)
            return mapping, root

        root = normalize_path(project_root or Path.cwd())
        logger.info("No manifest found, using planned layout", manifest=str(manifest_path))
        for item in plan_files(
            config, package_path, root, reserved=(self.settings.manifest_name,)
        ):
            if item.outcome is None:
                mapping[path_key(item.source)] = (item.source, item.destination)
        return mapping, root

    def _locate(
        self,
        ref: SourceReference,
        roots: list[Path],
        mapping: dict[str, tuple[Path, Path]],
    ) -> Path | None:
        """Original location of a reference's target.

        Files packaged with ``move`` no longer exist at their source, so when
        the on-disk lookup fails the lexical candidates are matched against
        the recorded sources instead.
        """
        resolved = self.resolver.resolve_reference(ref, roots)
        if resolved.status == ResolutionStatus.RESOLVED and resolved.resolved_path is not None:
            return resolved.resolved_path

        for candidate in self.resolver.candidates(ref.origin_path, reference_path_text(ref), roots):
            options = (
                candidate,
                candidate / f"{candidate.name}.psd1",
                candidate / f"{candidate.name}.psm1",
            )
            for option in options:
                recorded = mapping.get(path_key(option))
                if recorded is not None:
                    return recorded[0]
        return None

    def _rewrite_script(
        self,
        source: Path,
        destination: Path,
        mapping: dict[str, tuple[Path, Path]],
        roots: list[Path],
        result: RewriteResult,
        create_backups: bool,
        dry_run: bool,
    ) -> int:
        """Rewrite one script; return the number of substituted references."""
        log = logger.bind(script=str(destination))
        read_from = destination
        if not destination.is_file():
            if not dry_run:
                result.failures.append(
                    RewriteFailure(str(destination), "packaged file is missing")
                )
                return 0
            read_from = source

        try:
            data = read_from.read_bytes()
            has_bom = data.startswith(codecs.BOM_UTF8)
            text = data.decode("utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            log.warning("Could not read script", error=str(e))
            result.failures.append(RewriteFailure(str(destination), f"read failed: {e}"))
            return 0

        edits: list[_Edit] = []
        for ref in extract_references(text, source):
            if ref.status == ResolutionStatus.VARIABLE:
                continue
            original = self._locate(ref, roots, mapping)
            if original is None:
                continue
            target = mapping.get(path_key(original))
            if target is None:
                continue
            new_target = target[1]
            if _names_module_folder(ref.raw_text, original) and (
                new_target.parent.name.casefold() == new_target.stem.casefold()
            ):
                new_target = new_target.parent
            new_relative = relative_to_dir(new_target, destination.parent)
            new_text = format_reference(ref.raw_text, new_relative)
            if new_text == ref.raw_text:
                continue
            log.debug(
                "Rewriting reference",
                line=ref.line_number,
                old=ref.raw_text,
                new=new_text,
            )
            edits.append(_Edit(ref.line_number - 1, ref.column, ref.end_column, new_text))

        if not edits or dry_run:
            return len(edits)

        new_text_content = _apply_edits(text, edits)
        try:
            if create_backups:
                backup = destination.with_name(destination.name + self.settings.backup_suffix)
                shutil.copy2(destination, backup)
            destination.write_text(
                new_text_content,
                encoding="utf-8-sig" if has_bom else "utf-8",
                newline="",
            )
        except OSError as e:
            log.warning("Could not write script", error=str(e))
            result.failures.append(RewriteFailure(str(destination), f"write failed: {e}"))
            return 0
        return len(edits)
