"""Per-package commands: install, remove, hold and unhold.

Each command submits one operation covering every named package and
waits for it to finish. Batches pass through the same confirmation gate
as single packages.
"""

from typing import Annotated

import typer

from nebulactl.cli.display import create_outcome_table, print_outcome_summary
from nebulactl.cli.session import build_controller, exit_code_for, options, run_operation
from nebulactl.models.operation import OperationKind, OutcomeClass
from nebulactl.models.package import PackageRef
from nebulactl.utils.formatting import console

PackagesArg = Annotated[list[str], typer.Argument(help="Package names.", show_default=False)]
YesOption = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Skip confirmation prompt."),
]


def install(ctx: typer.Context, packages: PackagesArg, yes: YesOption = False) -> None:
    """Install packages from the repositories.

    Examples:
        nebulactl install firefox
        nebulactl install -y gimp inkscape
    """
    _run(ctx, OperationKind.INSTALL, packages, yes)


def remove(ctx: typer.Context, packages: PackagesArg, yes: YesOption = False) -> None:
    """Remove installed packages."""
    _run(ctx, OperationKind.REMOVE, packages, yes)


def hold(ctx: typer.Context, packages: PackagesArg) -> None:
    """Hold packages so updates skip them."""
    _run(ctx, OperationKind.HOLD, packages, yes=False)


def unhold(ctx: typer.Context, packages: PackagesArg) -> None:
    """Release held packages."""
    _run(ctx, OperationKind.UNHOLD, packages, yes=False)


def _run(ctx: typer.Context, kind: OperationKind, names: list[str], yes: bool) -> None:
    verbose, quiet = options(ctx)
    targets = [PackageRef.parse(name) for name in names]

    controller = build_controller()
    try:
        record = run_operation(controller, kind, targets, yes=yes, verbose=verbose, quiet=quiet)
    finally:
        controller.shutdown()

    outcome = record.outcome
    if outcome is not None:
        if outcome.classification != OutcomeClass.CANCELLED and not quiet:
            console.print(create_outcome_table(kind, outcome))
        print_outcome_summary(outcome)

    code = exit_code_for(record)
    if code:
        raise typer.Exit(code=code)
