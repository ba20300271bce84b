"""Pytest configuration and shared fixtures.

This module contains fixtures used across all test modules.
"""

from collections.abc import Callable
from pathlib import Path

import pytest
from fakes import FakeGate, FakeOperator
from nebulactl.core.preferences import UserPreferences
from nebulactl.models.operation import SnapshotDecision, SnapshotStatus
from nebulactl.models.package import PackageRef


@pytest.fixture
def fake_operator() -> FakeOperator:
    """Operator where every invocation succeeds."""
    return FakeOperator()


@pytest.fixture
def preferences() -> UserPreferences:
    """Default preferences (confirmations on, snapshots off)."""
    return UserPreferences()


@pytest.fixture
def created_gate() -> FakeGate:
    """Gate that always reports a created snapshot."""
    return FakeGate(
        SnapshotDecision(status=SnapshotStatus.CREATED, snapshot_name="nebula-pre-upgrade-x")
    )


@pytest.fixture
def history_path(tmp_path: Path) -> Path:
    """Path for a JSONL history file inside a temp directory."""
    return tmp_path / "state" / "history.jsonl"


@pytest.fixture
def refs() -> Callable[..., list[PackageRef]]:
    """Build package references from names."""

    def _refs(*names: str) -> list[PackageRef]:
        return [PackageRef(name=n) for n in names]

    return _refs


@pytest.fixture
def mock_update_plan_output() -> str:
    """Sample ``xbps-install -Sun`` output."""
    return """firefox-128.0_1 update x86_64 https://repo-default.voidlinux.org/current 70000000 60000000
linux6.6-6.6.40_1 install x86_64 https://repo-default.voidlinux.org/current 140000000 130000000
mesa-24.1.3_1 update x86_64 https://repo-default.voidlinux.org/current 20000000 18000000"""


@pytest.fixture
def mock_held_output() -> str:
    """Sample ``xbps-query -H`` output."""
    return """linux6.6-6.6.38_1
mesa-24.1.2_1"""


@pytest.fixture
def mock_search_output() -> str:
    """Sample ``xbps-query -R --regex -s`` output."""
    return """[*] firefox-128.0_1          Mozilla Firefox web browser
[-] firefox-esr-115.13.0_1   Mozilla Firefox web browser [ESR]
[-] firefox-i18n-de-128.0_1  Firefox German language pack"""


@pytest.fixture
def mock_installed_output() -> str:
    """Sample ``xbps-query -l`` output."""
    return """ii zlib-1.3.1_1                     Compression/decompression Library
ii bash-5.2.026_1                   GNU Bourne Again Shell
ii NetworkManager-1.50.0_1          Network Management daemon"""


@pytest.fixture
def mock_show_output() -> str:
    """Sample ``xbps-query -R --show firefox`` output."""
    return """architecture: x86_64
homepage: https://www.mozilla.org/firefox/
license: MPL-2.0, GPL-2.0-or-later, LGPL-2.1-or-later
maintainer: Void Linux <void@example.org>
pkgver: firefox-128.0_1
run_depends:
	alsa-lib>=1.0.20_1
	dbus-glib>=0.60_1
	gtk+3>=3.24_1
	nss>=3.101_1
	alsa-lib>=1.2_1
short_desc: Mozilla Firefox web browser"""
