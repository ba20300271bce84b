"""Config commands for viewing and changing user preferences.

Preferences are stored in ~/.config/nebulactl/preferences.toml.
"""

import json
from typing import Annotated

import typer
from rich.table import Table

from nebulactl.cli.session import load_preferences_or_exit
from nebulactl.core.paths import get_preferences_path
from nebulactl.core.preferences import (
    PreferencesError,
    UserPreferences,
    save_preferences,
    update_preference,
)
from nebulactl.utils.formatting import console, print_error, print_success

app = typer.Typer(
    help="View and change preferences.",
    no_args_is_help=True,
)


@app.command()
def show(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON."),
    ] = False,
) -> None:
    """Show the effective preferences."""
    preferences = load_preferences_or_exit()
    data = preferences.model_dump(mode="json")

    if json_output:
        console.print_json(json.dumps(data))
        return

    defaults = UserPreferences()
    table = Table(
        title=f"Preferences ({get_preferences_path()})",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("Key", no_wrap=True)
    table.add_column("Value")
    table.add_column("", style="muted")

    for key, value in data.items():
        shown = " ".join(value) if isinstance(value, list) else str(value)
        marker = "" if getattr(preferences, key) == getattr(defaults, key) else "changed"
        table.add_row(f"[package.name]{key}[/]", shown, marker)

    console.print(table)


@app.command("set")
def set_value(
    key: Annotated[str, typer.Argument(help="Preference name.")],
    value: Annotated[str, typer.Argument(help="New value.")],
) -> None:
    """Change one preference.

    Examples:
        nebulactl config set confirm_remove false
        nebulactl config set cache_versions_to_keep 2
        nebulactl config set snapshot_enabled true
    """
    preferences = load_preferences_or_exit()
    try:
        updated = update_preference(preferences, key, value)
        path = save_preferences(updated)
    except PreferencesError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    print_success(f"Set {key} in {path}")
