"""Synchronous driver that runs controller operations from the terminal.

The CLI plays the UI role: it submits a request, pumps the controller
until the operation reaches a terminal state, and answers confirmation
and snapshot prompts with ``typer.confirm``.
"""

import logging

import typer

from nebulactl.core.controller import OperationController
from nebulactl.core.events import EventType, OperationEvent
from nebulactl.core.history import OperationHistory
from nebulactl.core.paths import get_history_path
from nebulactl.core.preferences import (
    PreferencesError,
    UserPreferences,
    load_preferences_or_default,
)
from nebulactl.core.store import PackageBusyError
from nebulactl.models.operation import OperationKind, OperationRecord, OutcomeClass
from nebulactl.models.package import PackageRef
from nebulactl.operators.base import Operator
from nebulactl.operators.xbps import XbpsOperator
from nebulactl.utils.formatting import console, format_state, print_error, print_info

logger = logging.getLogger(__name__)


def load_preferences_or_exit() -> UserPreferences:
    """Load preferences, exiting with code 1 when the file is invalid."""
    try:
        return load_preferences_or_default()
    except PreferencesError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e


def build_operator(preferences: UserPreferences, *, required: bool = True) -> Operator:
    """Create the xbps operator, exiting with code 1 when xbps is missing."""
    operator = XbpsOperator(remove_recursive=preferences.remove_recursive)
    if required and not operator.is_available():
        print_error("xbps package manager is not available on this system.")
        raise typer.Exit(code=1)
    return operator


def build_controller(
    preferences: UserPreferences | None = None,
    *,
    require_operator: bool = True,
) -> OperationController:
    """Create a controller wired to xbps and the persistent history log.

    Args:
        preferences: Preferences to use; loaded from disk if None.
        require_operator: Exit with code 1 when xbps is not installed.
    """
    prefs = preferences or load_preferences_or_exit()
    operator = build_operator(prefs, required=require_operator)
    return OperationController(
        operator,
        prefs,
        history=OperationHistory(get_history_path()),
    )


def options(ctx: typer.Context) -> tuple[bool, bool]:
    """Return the global (verbose, quiet) flags."""
    obj = ctx.obj or {}
    return bool(obj.get("verbose", False)), bool(obj.get("quiet", False))


def run_operation(
    controller: OperationController,
    kind: OperationKind,
    targets: list[PackageRef],
    *,
    yes: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    full_upgrade: bool = False,
) -> OperationRecord:
    """Submit an operation and drive it to a terminal state.

    Args:
        controller: Controller to submit to.
        kind: Kind of operation.
        targets: Packages to act upon.
        yes: Answer every confirmation prompt with yes.
        verbose: Print every state transition.
        quiet: Suppress package manager output.
        full_upgrade: Run an update as a system-wide upgrade.

    Returns:
        The terminal record.

    Raises:
        typer.Exit: With code 1 when the request is rejected.
    """
    try:
        record = controller.submit(kind, targets, full_upgrade=full_upgrade)
    except PackageBusyError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    return drive(controller, record.id, yes=yes, verbose=verbose, quiet=quiet)


def drive(
    controller: OperationController,
    op_id: str,
    *,
    yes: bool = False,
    verbose: bool = False,
    quiet: bool = False,
) -> OperationRecord:
    """Pump the controller until the operation is terminal."""
    while True:
        controller.run_until_idle()
        for event in controller.events.drain():
            _handle_event(controller, event, yes=yes, verbose=verbose, quiet=quiet)

        record = controller.store.get(op_id)
        if record.is_terminal and controller.events.empty():
            return record


def _handle_event(
    controller: OperationController,
    event: OperationEvent,
    *,
    yes: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    record = event.record
    match event.type:
        case EventType.STATE_CHANGED if verbose and record is not None:
            console.print(f"[muted]{record.id}[/] {format_state(record.state)}")
        case EventType.OUTPUT if not quiet:
            console.print(f"[muted]{event.message}[/]", highlight=False)
        case EventType.CONFIRMATION_REQUESTED if record is not None:
            if yes or typer.confirm(event.message or "Proceed?", default=False):
                controller.confirm(record.id)
            else:
                controller.cancel(record.id, "Aborted by user")
        case EventType.SNAPSHOT_DECISION_REQUESTED if record is not None:
            console.print(f"[warning]Snapshot not created:[/] {event.message}")
            proceed = typer.confirm("Update anyway?", default=False)
            # The answer may have arrived after the prompt expired
            controller.process_pending()
            if controller.store.get(record.id).is_terminal:
                print_info("Snapshot prompt expired, update cancelled.")
                return
            controller.resolve_snapshot(record.id, proceed)
        case _:
            logger.debug("Event %s", event.type.value)


def exit_code_for(record: OperationRecord) -> int:
    """Exit code for a terminal record: 1 on any failed target."""
    if record.outcome is None:
        return 1
    if record.outcome.classification in (OutcomeClass.ALL_FAILED, OutcomeClass.PARTIAL_FAILURE):
        return 1
    return 0
