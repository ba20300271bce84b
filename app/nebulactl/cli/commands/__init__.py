"""CLI commands for nebulactl.

This package contains all subcommand implementations.
"""

from nebulactl.cli.commands import cache, config, history, holds, packages, query, update

__all__ = ["cache", "config", "history", "holds", "packages", "query", "update"]
