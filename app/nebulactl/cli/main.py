"""Main CLI application entry point.

Defines the Typer application and global options.
"""

import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from nebulactl import __version__
from nebulactl.cli.commands import cache, config, history, holds, packages, query, update
from nebulactl.utils.formatting import err_console

app = typer.Typer(
    name="nebulactl",
    help="Package operations for Void Linux (xbps).",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"nebulactl version {__version__}")
        raise typer.Exit()


def setup_logging(verbose: bool) -> None:
    """Route log records through Rich on stderr.

    Verbose mode logs everything from DEBUG, otherwise only warnings.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=verbose, markup=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress package manager output.",
        ),
    ] = False,
) -> None:
    """nebulactl - browse, install, remove, hold and update xbps packages.

    Destructive operations ask for confirmation according to your
    preferences; updates can be preceded by a filesystem snapshot.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    setup_logging(verbose)


# Register commands
app.command("install")(packages.install)
app.command("remove")(packages.remove)
app.command("hold")(packages.hold)
app.command("unhold")(packages.unhold)
app.command("search")(query.search)
app.command("list")(query.list_installed)
app.command("info")(query.info)
app.add_typer(update.app, name="update")
app.add_typer(holds.app, name="holds")
app.add_typer(cache.app, name="clean-cache")
app.add_typer(history.app, name="history")
app.add_typer(config.app, name="config")


if __name__ == "__main__":
    app()
