"""Holds command for listing held packages."""

import json
from typing import Annotated

import typer

from nebulactl.cli.display import create_holds_table
from nebulactl.cli.session import build_controller
from nebulactl.utils.formatting import console, print_error, print_info

app = typer.Typer(
    name="holds",
    help="List held packages.",
    invoke_without_command=True,
)


@app.callback(invoke_without_command=True)
def holds(
    ctx: typer.Context,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON."),
    ] = False,
    refresh: Annotated[
        bool,
        typer.Option("--refresh", "-r", help="Drop the cached hold list and query xbps again."),
    ] = False,
) -> None:
    """List packages held back from updates."""
    if ctx.invoked_subcommand is not None:
        return

    controller = build_controller()
    try:
        current = controller.holds.refresh() if refresh else controller.holds.held()
        held = sorted(current, key=lambda ref: ref.name)
    except RuntimeError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e
    finally:
        controller.shutdown()

    if json_output:
        data = [{"name": ref.name, "version": ref.version} for ref in held]
        console.print_json(json.dumps(data))
        return

    if not held:
        print_info("No packages are held.")
        return

    console.print(create_holds_table(held))
