"""Read-only package queries: search, list and info.

These commands never submit an operation, so they bypass the controller
and ask the operator directly.
"""

import json
from dataclasses import asdict
from typing import Annotated

import typer

from nebulactl.cli.display import create_details_table, create_package_table
from nebulactl.cli.session import build_operator, load_preferences_or_exit
from nebulactl.core.holds import HoldCache
from nebulactl.models.package import PackageInfo, PackageRef
from nebulactl.utils.formatting import console, print_error, print_info

JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON.")]


def search(
    query: Annotated[str, typer.Argument(help="Regular expression to search for.")],
    installed_only: Annotated[
        bool,
        typer.Option("--installed", "-i", help="Only show installed matches."),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Search repository packages by name and description.

    Examples:
        nebulactl search firefox
        nebulactl search '^python3-' --installed
    """
    operator = build_operator(load_preferences_or_exit())
    try:
        with console.status(f"Searching for {query}..."):
            found = operator.search(query)
    except (RuntimeError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    if installed_only:
        found = [p for p in found if p.installed]
    _print_packages(found, f"Packages matching '{query}'", json_output)


def list_installed(
    pattern: Annotated[
        str | None,
        typer.Argument(help="Only show packages whose name contains this text."),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """List installed packages."""
    operator = build_operator(load_preferences_or_exit())
    try:
        packages = operator.list_installed()
    except RuntimeError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    if pattern:
        needle = pattern.lower()
        packages = [p for p in packages if needle in p.name.lower()]
    _print_packages(packages, "Installed Packages", json_output)


def info(
    name: Annotated[str, typer.Argument(help="Package name.")],
    json_output: JsonOption = False,
) -> None:
    """Show package details, dependencies and the packages requiring it.

    Check "Required by" before removing a package: those packages depend
    on it.
    """
    operator = build_operator(load_preferences_or_exit())
    try:
        details = operator.package_details(name)
        held = HoldCache(operator).is_held(PackageRef(name))
    except RuntimeError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    if json_output:
        data = asdict(details)
        data["held"] = held
        console.print_json(json.dumps(data))
        return

    console.print(create_details_table(details, held))


def _print_packages(packages: list[PackageInfo], title: str, json_output: bool) -> None:
    if json_output:
        console.print_json(json.dumps([asdict(p) for p in packages]))
        return

    if not packages:
        print_info("No packages found.")
        return

    console.print(create_package_table(packages, title))
    console.print(f"\n[muted]{len(packages)} package(s)[/]")
