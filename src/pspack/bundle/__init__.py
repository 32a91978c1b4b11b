"""Packaging: configuration model, synthesis, materialization and rewriting.

Key components:
- PackageConfig: Declarative package description (JSON or YAML)
- synthesize: Builds a PackageConfig from a dependency graph
- Materializer: Plans and applies a PackageConfig into an output tree
- PackageManifest: Record of what a materialization produced
- ReferenceRewriter: Fixes script references after relocation
"""

from pspack.bundle.config import (
    CreateFileAction,
    DependencyMetadata,
    FileAction,
    FileGroup,
    PackageConfig,
    PackageMetadata,
    RunScriptAction,
    StructureMode,
    UnresolvedDependency,
    load_package_config,
    parse_package_config,
    validate_package_config,
)
from pspack.bundle.manifest import ActionOutcome, FileOutcome, Outcome, PackageManifest
from pspack.bundle.materializer import Materializer, PlannedFile, plan_files
from pspack.bundle.rewriter import ReferenceRewriter, RewriteFailure, RewriteResult
from pspack.bundle.synthesizer import synthesize

__all__ = [
    "ActionOutcome",
    "CreateFileAction",
    "DependencyMetadata",
    "FileAction",
    "FileGroup",
    "FileOutcome",
    "Materializer",
    "Outcome",
    "PackageConfig",
    "PackageManifest",
    "PackageMetadata",
    "PlannedFile",
    "ReferenceRewriter",
    "RewriteFailure",
    "RewriteResult",
    "RunScriptAction",
    "StructureMode",
    "UnresolvedDependency",
    "load_package_config",
    "parse_package_config",
    "plan_files",
    "synthesize",
    "validate_package_config",
]
