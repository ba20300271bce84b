"""Clean-cache command implementation."""

from typing import Annotated

import typer

from nebulactl.cli.display import print_outcome_summary
from nebulactl.cli.session import (
    build_controller,
    exit_code_for,
    load_preferences_or_exit,
    options,
    run_operation,
)
from nebulactl.models.operation import CACHE_TARGET, OperationKind
from nebulactl.utils.formatting import print_error

app = typer.Typer(
    name="clean-cache",
    help="Remove old package files from the xbps cache.",
    invoke_without_command=True,
)


@app.callback(invoke_without_command=True)
def clean_cache(
    ctx: typer.Context,
    keep: Annotated[
        int | None,
        typer.Option(
            "--keep",
            "-k",
            min=0,
            max=5,
            help="Versions to keep per package (defaults to the preference).",
        ),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Prune the package cache, keeping the newest versions of each package.

    Examples:
        nebulactl clean-cache            # Keep the configured number of versions
        nebulactl clean-cache --keep 0   # Remove every cached file
    """
    if ctx.invoked_subcommand is not None:
        return

    verbose, quiet = options(ctx)
    preferences = load_preferences_or_exit()
    if keep is not None:
        preferences = preferences.model_copy(update={"cache_versions_to_keep": keep})

    controller = build_controller(preferences)
    try:
        record = run_operation(
            controller,
            OperationKind.CACHE_CLEANUP,
            [CACHE_TARGET],
            yes=yes,
            verbose=verbose,
            quiet=quiet,
        )
    finally:
        controller.shutdown()

    if record.outcome is not None:
        result = record.outcome.result_for(CACHE_TARGET)
        if result is not None and result.failed:
            print_error(result.reason or "Cache cleanup failed")
        else:
            print_outcome_summary(record.outcome)

    code = exit_code_for(record)
    if code:
        raise typer.Exit(code=code)
