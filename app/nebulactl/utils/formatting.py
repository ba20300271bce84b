"""Rich console formatting utilities.

Provides consistent formatting for CLI output using Rich.
"""

import sys

from rich.console import Console

from nebulactl.core.theme import get_theme
from nebulactl.models.operation import OperationState

_STATE_STYLES: dict[OperationState, str] = {
    OperationState.CREATED: "state.pending",
    OperationState.AWAITING_CONFIRMATION: "state.pending",
    OperationState.SNAPSHOT_PENDING: "state.pending",
    OperationState.RUNNING: "state.running",
    OperationState.SUCCEEDED: "success",
    OperationState.PARTIAL_FAILURE: "warning",
    OperationState.FAILED: "error",
    OperationState.CANCELLED: "state.cancelled",
}


def _detect_color_system() -> str | None:
    """Use truecolor on interactive terminals, otherwise let Rich decide."""
    if sys.stdout.isatty():
        return "truecolor"
    return None


# Shared console instances (theme loaded once at import)
console = Console(theme=get_theme(), color_system=_detect_color_system())
err_console = Console(theme=get_theme(), stderr=True, color_system=_detect_color_system())


def format_state(state: OperationState) -> str:
    """Format an operation state with color markup."""
    style = _STATE_STYLES[state]
    return f"[{style}]{state.value.replace('_', ' ')}[/]"


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[info]{message}[/]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    err_console.print(f"[warning]Warning:[/] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    err_console.print(f"[error]Error:[/] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[success]{message}[/]")
