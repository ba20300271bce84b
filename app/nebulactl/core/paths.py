"""Filesystem locations used by nebulactl.

Preferences and the theme override live in the XDG config directory,
the operation history in the XDG state directory:

- Config: ~/.config/nebulactl/ (or $NEBULACTL_CONFIG_DIR)
- State: ~/.local/state/nebulactl/
"""

import os
from pathlib import Path

APP_NAME = "nebulactl"

# Replaces the whole config directory when set
CONFIG_DIR_ENV = "NEBULACTL_CONFIG_DIR"


def _env_path(name: str) -> Path | None:
    value = os.environ.get(name, "").strip()
    return Path(value) if value else None


def _xdg_app_dir(env_var: str, fallback: str) -> Path:
    """Application directory below an XDG base, or below ``~/<fallback>``."""
    base = _env_path(env_var) or Path.home() / fallback
    return base / APP_NAME


def get_config_dir() -> Path:
    """Directory holding preferences.toml and theme.toml."""
    return _env_path(CONFIG_DIR_ENV) or _xdg_app_dir("XDG_CONFIG_HOME", ".config")


def get_state_dir() -> Path:
    """Directory holding data kept between runs that is not configuration."""
    return _xdg_app_dir("XDG_STATE_HOME", ".local/state")


def get_preferences_path() -> Path:
    return get_config_dir() / "preferences.toml"


def get_theme_path() -> Path:
    return get_config_dir() / "theme.toml"


def get_history_path() -> Path:
    return get_state_dir() / "history.jsonl"


def ensure_dir(path: Path, name: str) -> Path:
    """Create a directory and its parents if missing.

    Args:
        path: Directory to create.
        name: What the directory is for, used in the error message.

    Returns:
        The directory path.

    Raises:
        RuntimeError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        reason = "Permission denied" if isinstance(e, PermissionError) else str(e)
        msg = f"Cannot create {name} directory {path}: {reason}"
        raise RuntimeError(msg) from e
    return path
