"""History command for viewing and clearing past operations.

This module provides the `nebulactl history` command group.
"""

import json
from typing import Annotated

import typer

from nebulactl.cli.display import create_history_table
from nebulactl.cli.session import build_controller
from nebulactl.core.history import OperationHistory
from nebulactl.core.paths import get_history_path
from nebulactl.models.operation import OutcomeClass
from nebulactl.utils.formatting import console, print_info, print_success

app = typer.Typer(
    name="history",
    help="View and clear the history of package operations.",
    invoke_without_command=True,
)


@app.callback(invoke_without_command=True)
def history(
    ctx: typer.Context,
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            min=1,
            help="Maximum number of entries to show.",
        ),
    ] = 20,
    failed_only: Annotated[
        bool,
        typer.Option(
            "--failed",
            help="Only show operations with failed packages.",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON.",
        ),
    ] = False,
) -> None:
    """Show completed package operations, newest first.

    Examples:
        nebulactl history              # Show last 20 entries
        nebulactl history -n 50        # Show last 50 entries
        nebulactl history --failed     # Only operations with failures
        nebulactl history --json       # JSON output for scripting
    """
    if ctx.invoked_subcommand is not None:
        return

    entries = OperationHistory(get_history_path()).entries()
    if failed_only:
        entries = [
            e
            for e in entries
            if e.outcome.classification
            in (OutcomeClass.PARTIAL_FAILURE, OutcomeClass.ALL_FAILED)
        ]
    entries = entries[:limit]

    if not entries:
        print_info("No history entries found.")
        return

    if json_output:
        console.print(json.dumps([entry.to_dict() for entry in entries], indent=2))
    else:
        console.print(create_history_table(entries))


@app.command()
def clear(
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Clear the operation history.

    Asks for confirmation unless confirm_remove is disabled or --yes is given.
    """
    controller = build_controller(require_operator=False)
    try:
        count = len(controller.history)
        if count == 0:
            print_info("History is already empty.")
            return

        if controller.request_history_clear():
            removed = count
        else:
            prompt = next(
                (e.message for e in controller.events.drain() if e.message),
                "Clear the history?",
            )
            if not yes and not typer.confirm(prompt, default=False):
                controller.cancel_history_clear()
                print_info("Aborted.")
                return
            removed = controller.confirm_history_clear()
    finally:
        controller.shutdown()

    print_success(f"Cleared {removed} history entries.")
