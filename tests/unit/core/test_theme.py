"""Unit tests for theme loading."""

from pathlib import Path

import pytest
from nebulactl.core.theme import ThemeColors, get_rich_theme, load_theme
from pydantic import ValidationError


class TestThemeColors:
    """Tests for ThemeColors validation."""

    @pytest.mark.parametrize("color", ["#fff", "#03b971"])
    def test_accepts_hex(self, color: str) -> None:
        """Short and long hex codes are valid."""
        assert ThemeColors(success=color).success == color

    @pytest.mark.parametrize("color", ["green", "#12345", "#zzzzzz"])
    def test_rejects_invalid(self, color: str) -> None:
        """Non-hex values are rejected."""
        with pytest.raises(ValidationError):
            ThemeColors(success=color)


class TestLoadTheme:
    """Tests for load_theme."""

    def test_bundled_theme_without_override(self, tmp_path: Path) -> None:
        """Without a user file the bundled colors are used."""
        assert load_theme(tmp_path / "missing.toml") == ThemeColors()

    def test_partial_override(self, tmp_path: Path) -> None:
        """User colors override only the keys they set."""
        user = tmp_path / "theme.toml"
        user.write_text('[colors]\nerror = "#ff0000"\n', encoding="utf-8")

        colors = load_theme(user)

        assert colors.error == "#ff0000"
        assert colors.success == ThemeColors().success

    def test_invalid_override_falls_back(self, tmp_path: Path) -> None:
        """An invalid user theme falls back to defaults."""
        user = tmp_path / "theme.toml"
        user.write_text('[colors]\nerror = "red"\n', encoding="utf-8")

        assert load_theme(user) == ThemeColors()

    def test_rich_theme_styles(self) -> None:
        """The Rich theme defines the state and package styles."""
        theme = get_rich_theme(ThemeColors())
        for style in ("state.running", "state.pending", "package.held", "plan.update"):
            assert style in theme.styles
