"""CLI package for nebulactl.

This package contains the Typer application and all subcommands.
"""

from nebulactl.cli.main import app

__all__ = ["app"]
