"""Static dependency analysis for PowerShell scripts.

Key components:
- extract_references: Finds dot-source and module-import references in text
- PathResolver: Maps reference text to files (origin-relative, then search roots)
- GraphBuilder: Bounded breadth-first traversal with a visited set
- DependencyGraphResult: Nodes, discovered files, unresolved references, cycles
"""

from pspack.analysis.extractor import extract_file_references, extract_references
from pspack.analysis.graph import GraphBuilder, build_graph
from pspack.analysis.models import (
    DependencyGraphNode,
    DependencyGraphResult,
    ReferenceKind,
    ResolutionStatus,
    SourceReference,
)
from pspack.analysis.resolver import PathResolver

__all__ = [
    "DependencyGraphNode",
    "DependencyGraphResult",
    "GraphBuilder",
    "PathResolver",
    "ReferenceKind",
    "ResolutionStatus",
    "SourceReference",
    "build_graph",
    "extract_file_references",
    "extract_references",
]
