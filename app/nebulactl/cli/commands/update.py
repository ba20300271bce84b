"""Update command implementation.

Computes the update changeset with a dry run, shows it, and applies it
as one aggregate transaction after a single confirmation. Updating
everything runs a full system upgrade; --package names the packages.
"""

from typing import Annotated

import typer

from nebulactl.cli.display import create_outcome_table, create_plan_table, print_outcome_summary
from nebulactl.cli.session import build_controller, exit_code_for, options, run_operation
from nebulactl.core.controller import OperationController
from nebulactl.core.events import EventType
from nebulactl.models.operation import OperationKind, OutcomeClass
from nebulactl.models.package import PlannedUpdate, update_targets
from nebulactl.utils.formatting import console, print_error, print_info, print_success

app = typer.Typer(
    name="update",
    help="Update installed packages.",
    invoke_without_command=True,
)


@app.callback(invoke_without_command=True)
def update(
    ctx: typer.Context,
    packages: Annotated[
        list[str] | None,
        typer.Option(
            "--package",
            "-p",
            help="Only update these packages (repeatable).",
        ),
    ] = None,
    check: Annotated[
        bool,
        typer.Option(
            "--check",
            "-c",
            help="Show available updates without applying them.",
        ),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Update packages after showing the changeset.

    Without --package every available update is applied.

    Examples:
        nebulactl update             # Show plan, confirm, update everything
        nebulactl update --check     # Only show what would be updated
        nebulactl update -p firefox  # Update a single package
    """
    if ctx.invoked_subcommand is not None:
        return

    verbose, quiet = options(ctx)
    controller = build_controller()
    try:
        plan = _compute_plan(controller)
        if plan is None:
            raise typer.Exit(code=1)

        if packages:
            wanted = set(packages)
            unknown = sorted(wanted - {u.name for u in plan if u.is_update})
            if unknown:
                print_error(f"No update available for: {', '.join(unknown)}")
                raise typer.Exit(code=1)
            plan = [u for u in plan if u.is_update and u.name in wanted]

        targets = update_targets(plan)
        if not targets:
            print_success("System is up to date.")
            return

        console.print(create_plan_table(plan))
        if check:
            print_info(f"{len(targets)} update(s) available.")
            return

        # Installs, removals and held packages in the plan are left to xbps
        record = run_operation(
            controller,
            OperationKind.UPDATE,
            targets,
            yes=yes,
            verbose=verbose,
            quiet=quiet,
            full_upgrade=not packages,
        )
    finally:
        controller.shutdown()

    outcome = record.outcome
    if outcome is not None:
        if record.snapshot is not None and record.snapshot.snapshot_name:
            print_info(f"Snapshot created: {record.snapshot.snapshot_name}")
        if outcome.classification != OutcomeClass.CANCELLED and outcome.failed:
            console.print(create_outcome_table(OperationKind.UPDATE, outcome))
        print_outcome_summary(outcome)

    code = exit_code_for(record)
    if code:
        raise typer.Exit(code=code)


def _compute_plan(controller: OperationController) -> list[PlannedUpdate] | None:
    """Run the dry run and wait for the plan, or print the error."""
    with console.status("Checking for updates..."):
        controller.plan_update()
        controller.run_until_idle()

    for event in controller.events.drain():
        if event.type != EventType.PLAN_READY:
            continue
        if event.plan is None:
            print_error(event.message or "Failed to check for updates")
            return None
        return list(event.plan)

    print_error("Failed to check for updates")
    return None
