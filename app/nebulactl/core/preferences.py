"""User preferences consumed by the operation controller.

This module provides the preferences model and I/O functions. The
controller only ever reads preferences; the CLI `config` command is the
one place that writes them.

Preferences are stored in ~/.config/nebulactl/preferences.toml
"""

import logging
import os
import tomllib
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated, Any

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nebulactl.core.paths import get_preferences_path

logger = logging.getLogger(__name__)

DEFAULT_CACHE_VERSIONS_TO_KEEP = 1

DEFAULT_SNAPSHOT_COMMAND: tuple[str, ...] = (
    "pkexec",
    "waypoint-cli",
    "create",
    "--name",
    "{name}",
    "--description",
    "{description}",
    "/",
)


class UserPreferences(BaseModel):
    """Preferences that shape confirmation, snapshot, and cleanup behaviour.

    Attributes:
        confirm_install: Ask before installing packages.
        confirm_remove: Ask before removing packages or clearing history.
        cache_versions_to_keep: Cached versions kept per package (0-5).
        snapshot_enabled: Take a filesystem snapshot before updates.
        snapshot_timeout: Seconds to wait for the snapshot tool.
        snapshot_prompt_timeout: Seconds to wait for the user after a
            snapshot failure before the update is cancelled.
        snapshot_command: Snapshot tool argv with {name}/{description}
            placeholders.
        max_concurrency: Parallel invocations for per-package operations.
        remove_recursive: Also remove dependencies no longer needed on removal.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    confirm_install: bool = True
    confirm_remove: bool = True
    cache_versions_to_keep: Annotated[
        int,
        Field(ge=0, le=5, description="Cached versions kept per package (0-5)"),
    ] = DEFAULT_CACHE_VERSIONS_TO_KEEP
    snapshot_enabled: bool = False
    snapshot_timeout: Annotated[
        float,
        Field(gt=0, le=600, description="Snapshot timeout in seconds"),
    ] = 30.0
    snapshot_prompt_timeout: Annotated[
        float,
        Field(gt=0, le=3600, description="Seconds to wait for an 'Update Anyway' answer"),
    ] = 120.0
    snapshot_command: Annotated[
        tuple[str, ...],
        Field(min_length=1, description="Snapshot command template"),
    ] = DEFAULT_SNAPSHOT_COMMAND
    max_concurrency: Annotated[
        int,
        Field(ge=1, le=8, description="Parallel package-manager invocations"),
    ] = 3
    remove_recursive: bool = False


class PreferencesError(Exception):
    """Base exception for preferences errors."""


class PreferencesNotFoundError(PreferencesError):
    """Raised when the preferences file is not found."""


class PreferencesParseError(PreferencesError):
    """Raised when the preferences file cannot be parsed."""


def load_preferences(path: Path | None = None) -> UserPreferences:
    """Load preferences from a TOML file.

    Args:
        path: Path to the preferences file. If None, uses the default path.

    Returns:
        Validated UserPreferences object.

    Raises:
        PreferencesNotFoundError: If the file doesn't exist.
        PreferencesParseError: If the TOML syntax is invalid.
        PreferencesError: If the content doesn't match the schema.
    """
    prefs_path = path or get_preferences_path()

    if not prefs_path.exists():
        raise PreferencesNotFoundError(f"Preferences not found: {prefs_path}")

    try:
        with open(prefs_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise PreferencesParseError(f"Invalid TOML syntax: {e}") from e
    except OSError as e:
        raise PreferencesError(f"Failed to read preferences: {e}") from e

    try:
        return UserPreferences.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise PreferencesError(f"Invalid preferences content: {e}") from e


def load_preferences_or_default(path: Path | None = None) -> UserPreferences:
    """Load preferences, falling back to defaults when no file exists.

    Invalid files are still reported as errors.

    Raises:
        PreferencesParseError: If the TOML syntax is invalid.
        PreferencesError: If the content doesn't match the schema.
    """
    try:
        return load_preferences(path)
    except PreferencesNotFoundError:
        logger.debug("No preferences file found, using defaults")
        return UserPreferences()


def save_preferences(preferences: UserPreferences, path: Path | None = None) -> Path:
    """Save preferences to a TOML file.

    The file is written atomically by first writing to a temporary file
    and then using os.replace() for atomic rename. Only values that differ
    from the defaults are written.

    Args:
        preferences: The preferences to save.
        path: Path to save to. If None, uses the default path.

    Returns:
        Path where the preferences were saved.

    Raises:
        PreferencesError: If the file cannot be written.
    """
    prefs_path = path or get_preferences_path()
    data = _preferences_to_dict(preferences)

    tmp_path: Path | None = None
    try:
        prefs_path.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile(
            mode="wb",
            dir=prefs_path.parent,
            delete=False,
            suffix=".tmp",
        ) as f:
            tmp_path = Path(f.name)
            tomli_w.dump(data, f)
        os.replace(str(tmp_path), str(prefs_path))
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise PreferencesError(f"Failed to write preferences: {e}") from e

    return prefs_path


def update_preference(
    preferences: UserPreferences, key: str, raw_value: str
) -> UserPreferences:
    """Return a copy of preferences with one field set from a string.

    Args:
        preferences: Current preferences.
        key: Field name to change.
        raw_value: Value as typed by the user; booleans accept
            true/false/yes/no/1/0, the snapshot command is split on spaces.

    Returns:
        New validated UserPreferences.

    Raises:
        PreferencesError: If the key is unknown or the value is invalid.
    """
    if key not in UserPreferences.model_fields:
        raise PreferencesError(f"Unknown preference: {key}")

    value: Any = raw_value
    if key == "snapshot_command":
        value = tuple(raw_value.split())
    elif UserPreferences.model_fields[key].annotation is bool:
        lowered = raw_value.strip().lower()
        if lowered in ("true", "yes", "1", "on"):
            value = True
        elif lowered in ("false", "no", "0", "off"):
            value = False
        else:
            raise PreferencesError(f"Invalid boolean for {key}: {raw_value}")

    data = preferences.model_dump()
    data[key] = value
    try:
        return UserPreferences.model_validate(data)
    except ValidationError as e:
        raise PreferencesError(f"Invalid value for {key}: {e}") from e


def _preferences_to_dict(preferences: UserPreferences) -> dict[str, object]:
    """Convert preferences to a dictionary for TOML serialization.

    Only includes values that differ from the defaults to keep the file clean.
    """
    defaults = UserPreferences()
    result: dict[str, object] = {}
    for name in UserPreferences.model_fields:
        value = getattr(preferences, name)
        if value != getattr(defaults, name):
            result[name] = list(value) if isinstance(value, tuple) else value
    return result
