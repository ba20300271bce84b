"""Console color theme.

Colors ship in the bundled ``nebulactl/data/theme.toml``; a user file in
the config directory may override any subset of them.
"""

import functools
import logging
import re
import tomllib
from importlib import resources
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator
from rich.theme import Theme

from nebulactl.core.paths import get_theme_path

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"#(?:[0-9a-fA-F]{3}){1,2}")


class ThemeColors(BaseModel):
    """Palette used by every console style.

    Each value is a ``#RGB`` or ``#RRGGBB`` hex code.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    text: str = "#ffffff"
    muted: str = "#b2bec3"
    header: str = "#69B9A1"
    border: str = "#29526d"

    success: str = "#03b971"
    warning: str = "#f5b332"
    error: str = "#f53263"
    info: str = "#0ec1c8"

    state_pending: str = "#faf870"
    state_running: str = "#0e8ac8"
    state_cancelled: str = "#b2bec3"

    plan_update: str = "#0e8ac8"
    plan_install: str = "#c1ff62"
    plan_remove: str = "#f53263"

    package_held: str = "#d44ebc"

    @field_validator("*", mode="before")
    @classmethod
    def check_hex(cls, value: object, info: ValidationInfo) -> str:
        """Reject anything that is not a hex color code."""
        if not isinstance(value, str) or not _HEX_COLOR.fullmatch(value.strip()):
            msg = f"{info.field_name}: expected #RGB or #RRGGBB, got {value!r}"
            raise ValueError(msg)
        return value.strip()


# Rich style name -> (palette field, bold)
_STYLES: dict[str, tuple[str, bool]] = {
    "text": ("text", False),
    "muted": ("muted", False),
    "dim": ("muted", False),
    "header": ("header", False),
    "bold_header": ("header", True),
    "border": ("border", False),
    "success": ("success", False),
    "warning": ("warning", False),
    "error": ("error", True),
    "info": ("info", False),
    "state.pending": ("state_pending", False),
    "state.running": ("state_running", True),
    "state.cancelled": ("state_cancelled", False),
    "plan.update": ("plan_update", False),
    "plan.install": ("plan_install", False),
    "plan.remove": ("plan_remove", False),
    "package.name": ("text", True),
    "package.version": ("muted", False),
    "package.held": ("package_held", True),
}


def get_bundled_theme_path() -> Path:
    """Path of the theme file shipped with the package."""
    return Path(str(resources.files("nebulactl.data").joinpath("theme.toml")))


def _read_colors(path: Path) -> dict[str, str]:
    """Read the ``[colors]`` table of a theme file.

    Missing or unreadable files yield an empty mapping; parse errors are
    logged.
    """
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Ignoring theme file %s: %s", path, e)
        return {}

    colors = data.get("colors")
    if not isinstance(colors, dict):
        logger.warning("Theme file %s has no [colors] table", path)
        return {}
    return {str(k): v for k, v in colors.items() if isinstance(v, str)}


def load_theme(user_path: Path | None = None) -> ThemeColors:
    """Build the palette from the bundled theme and the user override.

    An invalid palette falls back to the built-in defaults.

    Args:
        user_path: Override file; defaults to ``theme.toml`` in the config dir.
    """
    bundled = _read_colors(get_bundled_theme_path())
    if not bundled:
        logger.error("Bundled theme is missing, installation may be corrupted")

    override_path = user_path or get_theme_path()
    overrides = _read_colors(override_path)
    if overrides:
        logger.debug("Applying %d theme override(s) from %s", len(overrides), override_path)

    try:
        return ThemeColors(**{**bundled, **overrides})
    except ValidationError as e:
        logger.warning("Invalid theme, using defaults: %s", e)
        return ThemeColors()


def get_rich_theme(colors: ThemeColors | None = None) -> Theme:
    """Map a palette onto the named Rich styles used by the CLI."""
    palette = colors or load_theme()
    styles = {}
    for style, (field, bold) in _STYLES.items():
        color = getattr(palette, field)
        styles[style] = f"bold {color}" if bold else color
    return Theme(styles)


@functools.cache
def get_theme() -> Theme:
    """Rich theme for the consoles, loaded once per process."""
    return get_rich_theme()
