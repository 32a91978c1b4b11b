"""CLI interface for pspack."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Any, NoReturn

import structlog
import typer

from pspack import __version__
from pspack.analysis import DependencyGraphResult, build_graph
from pspack.bundle import (
    Materializer,
    PackageConfig,
    PackageManifest,
    ReferenceRewriter,
    RewriteResult,
    load_package_config,
    synthesize,
)
from pspack.config import SETTINGS_FILENAME, PspackSettings
from pspack.exceptions import (
    ConfigParseError,
    ConfigValidationError,
    ConflictError,
    InputError,
    ManifestError,
)
from pspack.paths import normalize_path

EXIT_FAILURES = 1
EXIT_INVALID = 2


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # Looked up per logger so a replaced sys.stderr is honoured.
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(verbose: bool = False) -> None:
    """Configure structlog console output on stderr.

    Args:
        verbose: Emit DEBUG events as well as INFO and above.
    """
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
        context_class=dict,
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


configure_logging()

logger = structlog.get_logger()

app = typer.Typer(
    name="pspack",
    help="Dependency analysis and packaging for PowerShell projects",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"pspack version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Show debug logging.",
        ),
    ] = False,
    settings: Annotated[
        Path | None,
        typer.Option(
            "--settings",
            help=f"Path to {SETTINGS_FILENAME} (default: ./{SETTINGS_FILENAME} if present)",
            resolve_path=True,
        ),
    ] = None,
) -> None:
    """pspack - package PowerShell scripts with their dependencies."""
    configure_logging(verbose)
    ctx.obj = {"settings_path": settings}


def _fail(message: str, code: int = EXIT_INVALID) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code)


def _load_settings(ctx: typer.Context) -> PspackSettings:
    explicit = (ctx.obj or {}).get("settings_path")
    try:
        return PspackSettings.discover(Path.cwd(), explicit)
    except (FileNotFoundError, ValueError) as e:
        _fail(f"Invalid settings: {e}")


def _describe_config_error(e: ConfigValidationError | ConfigParseError) -> str:
    where = f" ({e.config_path})" if e.config_path else ""
    if isinstance(e, ConfigParseError):
        line = f" line {e.line}" if e.line else ""
        return f"Could not parse configuration{where}{line}: {e}"
    details = []
    if e.group:
        details.append(f"group '{e.group}'")
    if e.field:
        details.append(f"field '{e.field}'")
    suffix = f" [{', '.join(details)}]" if details else ""
    return f"Invalid configuration{where}: {e}{suffix}"


def _search_roots(
    settings: PspackSettings,
    search_paths: list[Path] | None,
) -> list[Path]:
    if search_paths:
        return [normalize_path(p) for p in search_paths]
    return settings.resolve_search_paths(Path.cwd())


def _print_graph(result: DependencyGraphResult) -> None:
    typer.echo(f"Files discovered: {len(result.all_files)}")
    for path in result.all_files:
        node = result.node_for(path)
        depth = node.analyzed_depth if node else "-"
        typer.echo(f"  [{depth}] {path}")

    unresolved = result.unresolved_references()
    if unresolved:
        typer.echo("")
        typer.echo(typer.style(f"Unresolved references: {len(unresolved)}", fg=typer.colors.YELLOW))
        for ref in unresolved:
            typer.echo(f"  {ref.origin_path}:{ref.line_number}  {ref.raw_text}  ({ref.status.value})")

    if result.truncated_files:
        typer.echo("")
        typer.echo(f"Not analyzed (beyond max depth {result.max_depth}):")
        for path in result.truncated_files:
            typer.echo(f"  {path}")

    cycles = result.find_cycles()
    if cycles:
        typer.echo("")
        typer.echo(f"Cycles: {len(cycles)}")
        for cycle in cycles:
            typer.echo("  " + " <-> ".join(p.name for p in cycle))


def _print_manifest(manifest: PackageManifest) -> None:
    summary = manifest.summary()
    prefix = "[dry-run] " if manifest.dry_run else ""
    typer.echo(f"{prefix}Package: {manifest.config.package.name} {manifest.config.package.version}")
    typer.echo(f"{prefix}Output: {manifest.output_root}")
    typer.echo(
        f"Files: {summary['success']} packaged, {summary['skipped']} skipped, "
        f"{summary['failed']} failed"
    )
    for entry in manifest.files:
        if entry.reason:
            typer.echo(f"  {entry.outcome.value}: {entry.source} -> {entry.destination} ({entry.reason})")
    for action in manifest.post_package_results:
        detail = f" ({action.reason})" if action.reason else ""
        typer.echo(f"  {action.type} {action.path}: {action.outcome.value}{detail}")

    if manifest.has_failures:
        typer.echo(typer.style("Packaging finished with failures.", fg=typer.colors.RED))
    else:
        typer.echo(typer.style("Packaging completed successfully!", fg=typer.colors.GREEN))


def _print_rewrite(result: RewriteResult) -> None:
    prefix = "[dry-run] " if result.dry_run else ""
    typer.echo(
        f"{prefix}References rewritten: {result.paths_updated} "
        f"in {result.scripts_updated} script(s)"
    )
    for failure in result.failures:
        typer.echo(f"  failed: {failure.path} ({failure.reason})", err=True)


def _materialize(
    settings: PspackSettings,
    config: PackageConfig,
    output: Path,
    project_root: Path,
    *,
    force: bool,
    dry_run: bool,
) -> PackageManifest:
    try:
        return Materializer(settings).materialize(
            config,
            output,
            project_root=project_root,
            dry_run=dry_run,
            force=force,
        )
    except ConflictError as e:
        _fail(str(e))


def _rewrite(
    settings: PspackSettings,
    config: PackageConfig,
    package_path: Path,
    **options: Any,
) -> RewriteResult:
    try:
        return ReferenceRewriter(settings).rewrite(config, package_path, **options)
    except ManifestError as e:
        _fail(str(e))


@app.command()
def analyze(
    ctx: typer.Context,
    starting_files: Annotated[
        list[Path] | None,
        typer.Option(
            "--starting-files",
            "-s",
            help="Script to start from (repeat for several)",
        ),
    ] = None,
    search_paths: Annotated[
        list[Path] | None,
        typer.Option(
            "--search-paths",
            "-p",
            help="Fallback root for references (repeat for several, in order)",
        ),
    ] = None,
    max_depth: Annotated[
        int | None,
        typer.Option(
            "--max-depth",
            help="Deepest level to analyze (default from settings)",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON",
        ),
    ] = False,
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Write the JSON result to a file",
        ),
    ] = None,
) -> None:
    """Discover the dot-source and module-import dependencies of scripts."""
    settings = _load_settings(ctx)
    log = logger.bind(command="analyze")

    try:
        result = build_graph(
            starting_files or [],
            _search_roots(settings, search_paths),
            settings.max_depth if max_depth is None else max_depth,
        )
    except InputError as e:
        _fail(str(e))

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(result.to_dict(), indent=2) + "\n", encoding="utf-8")
        log.info("Analysis written", path=str(output))

    if json_output:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_graph(result)


@app.command()
def package(
    ctx: typer.Context,
    config: Annotated[
        Path,
        typer.Option(
            "--config",
            "-c",
            help="Package configuration (.json, .yaml or .yml)",
            resolve_path=True,
        ),
    ],
    output: Annotated[
        Path,
        typer.Option(
            "--output",
            "-o",
            help="Output directory for the package",
            resolve_path=True,
        ),
    ],
    project_root: Annotated[
        Path | None,
        typer.Option(
            "--project-root",
            help="Root that relative source patterns are expanded against (default: cwd)",
            resolve_path=True,
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Package into a non-empty output directory",
        ),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Report what would be packaged without writing anything",
        ),
    ] = False,
    rewrite_refs: Annotated[
        bool,
        typer.Option(
            "--rewrite-refs",
            help="Rewrite script references to the packaged layout afterwards",
        ),
    ] = False,
) -> None:
    """Materialize a package from a configuration file."""
    settings = _load_settings(ctx)
    project_root = project_root or Path.cwd()
    log = logger.bind(command="package")

    try:
        package_config = load_package_config(config)
    except (ConfigParseError, ConfigValidationError) as e:
        _fail(_describe_config_error(e))
    except InputError as e:
        _fail(str(e))

    manifest = _materialize(
        settings, package_config, output, project_root, force=force, dry_run=dry_run
    )
    _print_manifest(manifest)

    failed = manifest.has_failures
    if rewrite_refs:
        result = _rewrite(
            settings,
            package_config,
            output,
            dry_run=dry_run,
            project_root=project_root,
        )
        _print_rewrite(result)
        failed = failed or not result.success

    if failed:
        log.warning("Package finished with failures")
        raise typer.Exit(EXIT_FAILURES)


@app.command("auto-package")
def auto_package(
    ctx: typer.Context,
    output: Annotated[
        Path,
        typer.Option(
            "--output",
            "-o",
            help="Output directory for the package",
            resolve_path=True,
        ),
    ],
    starting_files: Annotated[
        list[Path] | None,
        typer.Option(
            "--starting-files",
            "-s",
            help="Script to start from (repeat for several)",
        ),
    ] = None,
    search_paths: Annotated[
        list[Path] | None,
        typer.Option(
            "--search-paths",
            "-p",
            help="Fallback root for references (repeat for several, in order)",
        ),
    ] = None,
    max_depth: Annotated[
        int | None,
        typer.Option(
            "--max-depth",
            help="Deepest level to analyze (default from settings)",
        ),
    ] = None,
    name: Annotated[
        str | None,
        typer.Option(
            "--name",
            "-n",
            help="Package name (default: output directory name)",
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Package into a non-empty output directory",
        ),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Print the synthesized configuration and planned files only",
        ),
    ] = False,
) -> None:
    """Analyze starting scripts, synthesize a configuration and package it.

    The synthesized configuration is saved next to the output directory as
    <output>.config.json for inspection.
    """
    settings = _load_settings(ctx)
    log = logger.bind(command="auto-package")

    try:
        result = build_graph(
            starting_files or [],
            _search_roots(settings, search_paths),
            settings.max_depth if max_depth is None else max_depth,
        )
    except InputError as e:
        _fail(str(e))

    package_config = synthesize(result, name or output.name)
    config_path = output.with_name(f"{output.name}.config.json")

    manifest = _materialize(
        settings, package_config, output, Path.cwd(), force=force, dry_run=dry_run
    )

    if dry_run:
        typer.echo(package_config.to_json(), nl=False)
    else:
        package_config.save(config_path)
        log.info("Configuration saved", path=str(config_path))
        typer.echo(f"Configuration: {config_path}")
    _print_manifest(manifest)

    if manifest.has_failures:
        raise typer.Exit(EXIT_FAILURES)


@app.command("rewrite-refs")
def rewrite_refs(
    ctx: typer.Context,
    config: Annotated[
        Path,
        typer.Option(
            "--config",
            "-c",
            help="Package configuration the package was built from",
            resolve_path=True,
        ),
    ],
    package_path: Annotated[
        Path,
        typer.Option(
            "--package-path",
            help="Output directory of the package",
            resolve_path=True,
        ),
    ],
    project_root: Annotated[
        Path | None,
        typer.Option(
            "--project-root",
            help="Project root (default: recorded in the manifest, else cwd)",
            resolve_path=True,
        ),
    ] = None,
    search_paths: Annotated[
        list[Path] | None,
        typer.Option(
            "--search-paths",
            "-p",
            help="Fallback root for references (repeat for several, in order)",
        ),
    ] = None,
    backup: Annotated[
        bool,
        typer.Option(
            "--backup",
            help="Keep a copy of each modified script",
        ),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Count changes without writing",
        ),
    ] = False,
) -> None:
    """Rewrite script references inside a package to match its layout."""
    settings = _load_settings(ctx)

    try:
        package_config = load_package_config(config)
    except (ConfigParseError, ConfigValidationError) as e:
        _fail(_describe_config_error(e))
    except InputError as e:
        _fail(str(e))

    if not package_path.is_dir() and not dry_run:
        _fail(f"Package directory not found: {package_path}")

    result = _rewrite(
        settings,
        package_config,
        package_path,
        create_backups=backup,
        dry_run=dry_run,
        project_root=project_root,
        search_paths=[normalize_path(p) for p in search_paths] if search_paths else None,
    )
    _print_rewrite(result)
    if not result.success:
        raise typer.Exit(EXIT_FAILURES)


@app.command()
def init(
    base_dir: Annotated[
        Path | None,
        typer.Option(
            "--dir",
            "-d",
            help="Directory to initialize (default: cwd)",
            resolve_path=True,
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Overwrite existing settings",
        ),
    ] = False,
) -> None:
    """Write a default pspack.yaml settings file."""
    base_dir = base_dir or Path.cwd()
    settings_path = base_dir / SETTINGS_FILENAME

    if settings_path.exists() and not force:
        typer.echo(f"Settings already exist: {settings_path}")
        typer.echo("Use --force to overwrite.")
        raise typer.Exit(1)

    base_dir.mkdir(parents=True, exist_ok=True)
    PspackSettings.default().save(settings_path)

    typer.echo(f"Created settings: {settings_path}")
    typer.echo("")
    typer.echo(f"Edit {SETTINGS_FILENAME} to customize search paths and limits.")


if __name__ == "__main__":
    app()
