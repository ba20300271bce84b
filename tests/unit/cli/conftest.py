"""Fixtures shared by the CLI tests."""

from collections.abc import Callable, Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
from fakes import FakeOperator


@pytest.fixture(autouse=True)
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point config and state directories into the temp directory."""
    config_dir = tmp_path / "config"
    monkeypatch.setenv("NEBULACTL_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    return config_dir


@pytest.fixture
def operator() -> Iterator[FakeOperator]:
    """FakeOperator handed to every controller the CLI builds."""
    fake = FakeOperator()
    with patch("nebulactl.cli.session.XbpsOperator", return_value=fake):
        yield fake


@pytest.fixture
def write_preferences(cli_env: Path) -> Callable[[str], Path]:
    """Write a preferences.toml into the config directory."""

    def _write(text: str) -> Path:
        cli_env.mkdir(parents=True, exist_ok=True)
        path = cli_env / "preferences.toml"
        path.write_text(text)
        return path

    return _write
