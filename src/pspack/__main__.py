"""Entry point for running pspack as a module.

Usage:
    python -m pspack analyze -s Main.ps1
    python -m pspack package --config package.json --output dist
"""

from pspack.cli import app

if __name__ == "__main__":
    app(prog_name="pspack")
