"""pspack - dependency-aware packager for PowerShell projects."""

__version__ = "0.1.0"
