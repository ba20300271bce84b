"""Shared Rich display functions for plans, outcomes and history.

Provides reusable table builders and summary printers used by several
CLI commands.
"""

from datetime import datetime

from rich.markup import escape
from rich.table import Table

from nebulactl.models.history import HistoryEntry
from nebulactl.models.operation import (
    CACHE_TARGET,
    BatchOutcome,
    OperationKind,
    OutcomeClass,
)
from nebulactl.models.package import PackageDetails, PackageInfo, PackageRef, PlannedUpdate
from nebulactl.utils.formatting import console, print_error, print_success, print_warning

_PLAN_STYLES = {
    "update": "plan.update",
    "install": "plan.install",
    "remove": "plan.remove",
}

_OUTCOME_LABELS = {
    OutcomeClass.ALL_SUCCEEDED: "[success]succeeded[/]",
    OutcomeClass.PARTIAL_FAILURE: "[warning]partial[/]",
    OutcomeClass.ALL_FAILED: "[error]failed[/]",
    OutcomeClass.CANCELLED: "[state.cancelled]cancelled[/]",
}


def create_plan_table(plan: list[PlannedUpdate] | tuple[PlannedUpdate, ...]) -> Table:
    """Create a table showing the update changeset.

    Args:
        plan: Planned updates, one per package.

    Returns:
        Rich Table with Action, Package and Version columns.
    """
    table = Table(
        title="Available Updates",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("Action", width=10)
    table.add_column("Package", no_wrap=True)
    table.add_column("Version", style="package.version")

    for update in plan:
        style = _PLAN_STYLES.get(update.action, "info")
        version = update.new_version
        if update.previous_version:
            version = f"{update.previous_version} -> {update.new_version}"
        table.add_row(f"[{style}]{update.action}[/]", f"[package.name]{update.name}[/]", version)

    return table


def create_outcome_table(kind: OperationKind, outcome: BatchOutcome) -> Table:
    """Create a table with one row per target of an outcome.

    Successful targets show "OK"; failed ones show "FAIL" with the reason
    reported by the package manager.
    """
    table = Table(
        title="Results",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("Status", width=8, justify="center")
    table.add_column("Action", width=10)
    table.add_column("Package", no_wrap=True)
    table.add_column("Message")

    for result in outcome.results:
        if result.success:
            status = "[success]OK[/success]"
            message = result.message or ""
        else:
            status = "[error]FAIL[/error]"
            message = result.reason or "Unknown error"
        name = "package cache" if result.package == CACHE_TARGET else result.package.name
        table.add_row(status, kind.label, name, f"[muted]{message}[/muted]")

    return table


def print_outcome_summary(outcome: BatchOutcome) -> None:
    """Print a one-line summary of an outcome."""
    match outcome.classification:
        case OutcomeClass.ALL_SUCCEEDED:
            print_success(outcome.message or f"All {len(outcome.results)} target(s) succeeded.")
        case OutcomeClass.CANCELLED:
            print_warning(outcome.message or "Operation cancelled.")
        case OutcomeClass.ALL_FAILED:
            print_error(f"All {len(outcome.results)} target(s) failed.")
        case OutcomeClass.PARTIAL_FAILURE:
            console.print(
                f"\n[success]{len(outcome.succeeded)} succeeded[/success], "
                f"[error]{len(outcome.failed)} failed[/error]"
            )


def create_history_table(entries: list[HistoryEntry]) -> Table:
    """Create a table listing history entries, newest first."""
    table = Table(
        title="Operation History",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("ID", style="dim")
    table.add_column("Completed", style="info")
    table.add_column("Action")
    table.add_column("Packages")
    table.add_column("Outcome")

    for entry in entries:
        table.add_row(
            entry.id[:8],
            format_timestamp(entry.completed_at),
            entry.kind.label,
            format_targets(entry.targets),
            _OUTCOME_LABELS[entry.outcome.classification],
        )

    return table


def create_holds_table(held: list[PackageRef]) -> Table:
    """Create a table listing held packages."""
    table = Table(
        title="Held Packages",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("Package", no_wrap=True)
    table.add_column("Version", style="package.version")
    for ref in held:
        table.add_row(f"[package.held]{ref.name}[/]", ref.version or "-")
    return table


def create_package_table(packages: list[PackageInfo], title: str) -> Table:
    """Create a table of search results or installed packages.

    Installed packages are marked in the first column.
    """
    table = Table(
        title=title,
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("", width=1)
    table.add_column("Package", no_wrap=True)
    table.add_column("Version", style="package.version")
    table.add_column("Description", style="muted")
    for package in packages:
        marker = "[success]*[/]" if package.installed else ""
        table.add_row(
            marker,
            f"[package.name]{package.name}[/]",
            package.version or "-",
            escape(package.description),
        )
    return table


def create_details_table(details: PackageDetails, held: bool) -> Table:
    """Create a two-column overview of one package."""
    table = Table(
        title=details.name,
        show_header=False,
        border_style="border",
    )
    table.add_column("Field", style="header", no_wrap=True)
    table.add_column("Value")

    table.add_row("Version", details.version or "-")
    table.add_row("Description", escape(details.description or "-"))
    for label, value in (
        ("Homepage", details.homepage),
        ("License", details.license),
        ("Maintainer", details.maintainer),
    ):
        if value:
            table.add_row(label, escape(value))
    if held:
        table.add_row("Held", "[package.held]yes[/]")
    table.add_row("Depends on", ", ".join(details.dependencies) or "[muted]nothing[/]")
    table.add_row(
        "Required by",
        f"[warning]{', '.join(details.required_by)}[/]"
        if details.required_by
        else "[muted]nothing[/]",
    )
    return table


def format_targets(targets: tuple[PackageRef, ...], shown: int = 3) -> str:
    """Join target names, truncating long lists."""
    if targets == (CACHE_TARGET,):
        return "package cache"
    names = ", ".join(t.name for t in targets[:shown])
    if len(targets) > shown:
        names += f" (+{len(targets) - shown} more)"
    return names


def format_timestamp(iso_timestamp: str) -> str:
    """Format an ISO 8601 timestamp as YYYY-MM-DD HH:MM."""
    dt = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    return dt.strftime("%Y-%m-%d %H:%M")
