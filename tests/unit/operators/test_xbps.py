"""Unit tests for XbpsOperator.

Tests for the xbps package operator implementation.
"""

import subprocess
from collections.abc import Iterator
from unittest.mock import patch

import pytest
from nebulactl.models.package import PackageRef, update_targets
from nebulactl.operators.xbps import (
    XbpsOperator,
    map_update_results,
    parse_held_output,
    parse_required_by_output,
    parse_show_output,
    parse_update_plan,
)
from nebulactl.utils.shell import CommandResult

OK = CommandResult(stdout="", stderr="", returncode=0)


class TestXbpsOperator:
    """Tests for XbpsOperator class."""

    @pytest.fixture
    def operator(self) -> XbpsOperator:
        """Create XbpsOperator instance."""
        return XbpsOperator()

    def test_name_is_xbps(self, operator: XbpsOperator) -> None:
        """Operator reports xbps as its name."""
        assert operator.name == "xbps"

    def test_is_available_when_xbps_exists(self, operator: XbpsOperator) -> None:
        """is_available returns True when xbps-install exists."""
        with patch("nebulactl.operators.xbps.command_exists", return_value=True):
            assert operator.is_available() is True

    def test_is_available_when_xbps_missing(self, operator: XbpsOperator) -> None:
        """is_available returns False when xbps-install is missing."""
        with patch("nebulactl.operators.xbps.command_exists", return_value=False):
            assert operator.is_available() is False

    def test_install_one_call_per_package(self, operator: XbpsOperator) -> None:
        """install() runs xbps-install -y once per package."""
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_privileged", return_value=OK) as mock_run,
        ):
            results = operator.install([PackageRef("htop"), PackageRef("neovim")])

        assert [r.package.name for r in results] == ["htop", "neovim"]
        assert all(r.success for r in results)
        assert mock_run.call_count == 2
        assert mock_run.call_args_list[0].args == ("xbps-install", ["-y", "htop"])

    def test_install_failure(self, operator: XbpsOperator) -> None:
        """install() reports the tool's error output as the reason."""
        failed = CommandResult(
            stdout="", stderr="Package 'htopp' not found in repository pool.", returncode=2
        )
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_privileged", return_value=failed),
        ):
            results = operator.install([PackageRef("htopp")])

        assert results[0].success is False
        assert results[0].reason == "Package 'htopp' not found in repository pool."

    def test_install_launch_error(self, operator: XbpsOperator) -> None:
        """A helper that cannot be started yields a failed result."""
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch(
                "nebulactl.operators.xbps.run_privileged",
                side_effect=FileNotFoundError("pkexec"),
            ),
        ):
            results = operator.install([PackageRef("htop")])

        assert results[0].success is False
        assert results[0].reason is not None
        assert "Failed to run xbps-install" in results[0].reason

    def test_install_timeout(self, operator: XbpsOperator) -> None:
        """A timed out call yields a failed result."""
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch(
                "nebulactl.operators.xbps.run_privileged",
                side_effect=subprocess.TimeoutExpired("xbps-install", 300),
            ),
        ):
            results = operator.install([PackageRef("htop")])

        assert results[0].success is False

    @pytest.mark.parametrize(
        ("recursive", "flags"),
        [(False, ["-y"]), (True, ["-y", "-R"])],
    )
    def test_remove_flags(self, recursive: bool, flags: list[str]) -> None:
        """remove() adds -R only when recursive removal is enabled."""
        operator = XbpsOperator(remove_recursive=recursive)
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_privileged", return_value=OK) as mock_run,
        ):
            operator.remove([PackageRef("htop")])

        mock_run.assert_called_once_with("xbps-remove", [*flags, "htop"], timeout=300.0)

    @pytest.mark.parametrize("mode", ["hold", "unhold"])
    def test_hold_modes(self, operator: XbpsOperator, mode: str) -> None:
        """hold()/unhold() use xbps-pkgdb -m."""
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_privileged", return_value=OK) as mock_run,
        ):
            getattr(operator, mode)([PackageRef("linux")])

        mock_run.assert_called_once_with("xbps-pkgdb", ["-m", mode, "linux"], timeout=300.0)

    def test_unavailable_raises(self, operator: XbpsOperator) -> None:
        """Operations raise RuntimeError when xbps is missing."""
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=False),
            pytest.raises(RuntimeError, match="not available"),
        ):
            operator.install([PackageRef("htop")])

    def test_update_single_transaction(self, operator: XbpsOperator) -> None:
        """update() runs one xbps-install -y -u call for the changeset."""
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_privileged", return_value=OK) as mock_run,
        ):
            results = operator.update([PackageRef("firefox"), PackageRef("mesa")])

        assert all(r.success for r in results)
        mock_run.assert_called_once()
        assert mock_run.call_args.args == ("xbps-install", ["-y", "-u", "firefox", "mesa"])

    def test_full_upgrade_runs_system_upgrade(self, operator: XbpsOperator) -> None:
        """A full upgrade names no packages and maps success lines back."""
        result = CommandResult(
            stdout="firefox-128.0_1: updated successfully\n",
            stderr="ERROR: mesa: failed to unpack",
            returncode=1,
        )
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_privileged", return_value=result) as mock_run,
        ):
            results = operator.update(
                [PackageRef("firefox"), PackageRef("mesa")], full_upgrade=True
            )

        assert mock_run.call_args.args == ("xbps-install", ["-y", "-Su"])
        assert [(r.package.name, r.success) for r in results] == [
            ("firefox", True),
            ("mesa", False),
        ]

    def test_update_from_plan_skips_new_and_held_packages(
        self, operator: XbpsOperator
    ) -> None:
        """Packages the plan installs or holds are never passed to -u."""
        plan = parse_update_plan(
            "firefox-128.0_1 update x86_64 repo 1 1\n"
            "linux6.6-6.6.40_1 install x86_64 repo 1 1\n"
            "vim-9.1_1 hold x86_64 repo 1 1\n"
        )
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_privileged", return_value=OK) as mock_run,
        ):
            operator.update(update_targets(plan))

        assert mock_run.call_args.args == ("xbps-install", ["-y", "-u", "firefox"])

    def test_update_strips_ansi_from_output(self, operator: XbpsOperator) -> None:
        """Streamed lines reach the callback without escape codes."""
        lines: list[str] = []

        def fake_run(*args: object, on_line: object = None, **kwargs: object) -> CommandResult:
            assert callable(on_line)
            on_line("\x1b[32mfirefox-128.0_1: updated successfully\x1b[0m")
            return OK

        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_privileged", side_effect=fake_run),
        ):
            operator.update([PackageRef("firefox")], on_line=lines.append)

        assert lines == ["firefox-128.0_1: updated successfully"]

    def test_update_empty_changeset(self, operator: XbpsOperator) -> None:
        """An empty changeset runs nothing."""
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_privileged") as mock_run,
        ):
            assert operator.update([]) == []
        mock_run.assert_not_called()

    def test_plan_update(self, operator: XbpsOperator, mock_update_plan_output: str) -> None:
        """plan_update() parses the dry run."""
        result = CommandResult(stdout=mock_update_plan_output, stderr="", returncode=0)
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_command", return_value=result) as mock_run,
        ):
            plan = operator.plan_update()

        assert [u.name for u in plan] == ["firefox", "linux6.6", "mesa"]
        assert mock_run.call_args.args[0] == ["xbps-install", "-Sun"]

    def test_plan_update_failure(self, operator: XbpsOperator) -> None:
        """A failed dry run raises RuntimeError."""
        result = CommandResult(stdout="", stderr="Failed to sync repositories", returncode=1)
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_command", return_value=result),
            pytest.raises(RuntimeError, match="Failed to sync repositories"),
        ):
            operator.plan_update()

    def test_list_held(self, operator: XbpsOperator, mock_held_output: str) -> None:
        """list_held() returns the held packages."""
        result = CommandResult(stdout=mock_held_output, stderr="", returncode=0)
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_command", return_value=result),
        ):
            held = operator.list_held()

        assert [r.name for r in held] == ["linux6.6", "mesa"]

    def test_list_held_failure(self, operator: XbpsOperator) -> None:
        """A failed hold query raises RuntimeError."""
        result = CommandResult(stdout="", stderr="pkgdb locked", returncode=1)
        with (
            patch("nebulactl.operators.xbps.command_exists", return_value=True),
            patch("nebulactl.operators.xbps.run_command", return_value=result),
            pytest.raises(RuntimeError, match="held packages"),
        ):
            operator.list_held()

    def test_clean_cache_delegates(self, operator: XbpsOperator) -> None:
        """clean_cache() delegates to the cache pruner."""
        with patch("nebulactl.operators.xbps.clean_cache_keep_n") as mock_clean:
            operator.clean_cache(2)
        mock_clean.assert_called_once_with(2)


class TestXbpsQueries:
    """Tests for the read-only queries."""

    @pytest.fixture
    def operator(self) -> XbpsOperator:
        return XbpsOperator()

    @pytest.fixture(autouse=True)
    def xbps_installed(self) -> Iterator[None]:
        with patch("nebulactl.operators.xbps.command_exists", return_value=True):
            yield

    def test_search(self, operator: XbpsOperator, mock_search_output: str) -> None:
        """search() queries the repositories and parses the markers."""
        result = CommandResult(stdout=mock_search_output, stderr="", returncode=0)
        with patch("nebulactl.operators.xbps.run_command", return_value=result) as mock_run:
            found = operator.search("firefox")

        assert mock_run.call_args.args[0] == ["xbps-query", "-R", "--regex", "-s", "firefox"]
        assert [(p.name, p.installed) for p in found] == [
            ("firefox", True),
            ("firefox-esr", False),
            ("firefox-i18n-de", False),
        ]
        assert found[1].description == "Mozilla Firefox web browser [ESR]"

    def test_search_empty_query(self, operator: XbpsOperator) -> None:
        """An empty query is rejected before running anything."""
        with (
            patch("nebulactl.operators.xbps.run_command") as mock_run,
            pytest.raises(ValueError, match="cannot be empty"),
        ):
            operator.search("  ")
        mock_run.assert_not_called()

    def test_list_installed(self, operator: XbpsOperator, mock_installed_output: str) -> None:
        """list_installed() parses xbps-query -l sorted by name."""
        result = CommandResult(stdout=mock_installed_output, stderr="", returncode=0)
        with patch("nebulactl.operators.xbps.run_command", return_value=result) as mock_run:
            packages = operator.list_installed()

        assert mock_run.call_args.args[0] == ["xbps-query", "-l"]
        assert [(p.name, p.version) for p in packages] == [
            ("NetworkManager", "1.50.0_1"),
            ("bash", "5.2.026_1"),
            ("zlib", "1.3.1_1"),
        ]
        assert all(p.installed for p in packages)
        assert packages[1].description == "GNU Bourne Again Shell"

    def test_package_details(self, operator: XbpsOperator, mock_show_output: str) -> None:
        """package_details() combines metadata with reverse dependencies."""
        show = CommandResult(stdout=mock_show_output, stderr="", returncode=0)
        revdeps = CommandResult(
            stdout="firefox-i18n-de-128.0_1\nfirefox-i18n-fr-128.0_1\n", stderr="", returncode=0
        )
        with patch(
            "nebulactl.operators.xbps.run_command", side_effect=[show, revdeps]
        ) as mock_run:
            details = operator.package_details("firefox")

        assert [c.args[0] for c in mock_run.call_args_list] == [
            ["xbps-query", "-R", "--show", "firefox"],
            ["xbps-query", "-X", "firefox"],
        ]
        assert details.version == "128.0_1"
        assert details.description == "Mozilla Firefox web browser"
        assert details.license == "MPL-2.0, GPL-2.0-or-later, LGPL-2.1-or-later"
        assert details.dependencies == ("alsa-lib", "dbus-glib", "gtk+3", "nss")
        assert details.required_by == ("firefox-i18n-de", "firefox-i18n-fr")

    def test_package_details_unknown(self, operator: XbpsOperator) -> None:
        """An empty --show answer means the package does not exist."""
        empty = CommandResult(stdout="", stderr="", returncode=0)
        with (
            patch("nebulactl.operators.xbps.run_command", return_value=empty),
            pytest.raises(RuntimeError, match="Package not found: nope"),
        ):
            operator.package_details("nope")

    def test_query_failure(self, operator: XbpsOperator) -> None:
        """A failing query raises with the tool's error output."""
        failed = CommandResult(stdout="", stderr="ERROR: repository unreachable", returncode=1)
        with (
            patch("nebulactl.operators.xbps.run_command", return_value=failed),
            pytest.raises(RuntimeError, match="Failed to list packages: ERROR: repository"),
        ):
            operator.list_installed()


class TestMapUpdateResults:
    """Tests for mapping aggregate update output to packages."""

    def test_success_marks_everything(self) -> None:
        """Exit status 0 succeeds every package."""
        results = map_update_results([PackageRef("a"), PackageRef("b")], OK)
        assert all(r.success for r in results)

    def test_partial_success_from_output(self) -> None:
        """Packages the output confirms succeed, the rest fail."""
        result = CommandResult(
            stdout="firefox-128.0_1: updated successfully\n",
            stderr="ERROR: mesa: failed to unpack",
            returncode=1,
        )

        results = map_update_results([PackageRef("firefox"), PackageRef("mesa")], result)

        assert results[0].success is True
        assert results[1].success is False
        assert results[1].reason == "ERROR: mesa: failed to unpack"


class TestParsers:
    """Tests for the output parsers."""

    def test_parse_update_plan_table(self, mock_update_plan_output: str) -> None:
        """The dry-run table gives name, version and action."""
        plan = parse_update_plan(mock_update_plan_output)

        assert [(u.name, u.new_version, u.action) for u in plan] == [
            ("firefox", "128.0_1", "update"),
            ("linux6.6", "6.6.40_1", "install"),
            ("mesa", "24.1.3_1", "update"),
        ]
        assert [r.name for r in update_targets(plan)] == ["firefox", "mesa"]

    def test_parse_update_plan_arrow_format(self) -> None:
        """Arrow lines carry the previous version."""
        plan = parse_update_plan("firefox-127.0_1 -> firefox-128.0_1\n")

        assert len(plan) == 1
        assert plan[0].name == "firefox"
        assert plan[0].previous_version == "127.0_1"
        assert plan[0].new_version == "128.0_1"

    def test_parse_update_plan_ignores_noise(self) -> None:
        """Unrecognised lines are skipped."""
        assert parse_update_plan("[*] Updating repository index\n\n") == []

    def test_parse_held_output(self) -> None:
        """Held output is parsed into sorted, deduplicated references."""
        held = parse_held_output("mesa-24.1.2_1\n\nlinux-6.6_1\nmesa-24.1.2_1\n")
        assert [r.name for r in held] == ["linux", "mesa"]

    def test_parse_show_output_stops_at_next_field(self) -> None:
        """Dependency lists end at the next top-level field."""
        fields, deps = parse_show_output(
            "pkgver: foo-1.0_1\nrun_depends: 'bar>=2_1'\n\tbaz?\nshort_desc: Foo tool\n"
        )
        assert deps == ["bar", "baz"]
        assert fields == {"pkgver": "foo-1.0_1", "short_desc": "Foo tool"}

    def test_parse_required_by_output(self) -> None:
        """Reverse dependencies are reduced to sorted unique names."""
        assert parse_required_by_output("gimp-2.10.38_1\ngtk4-devel\ngimp-2.10.38_1\n") == [
            "gimp",
            "gtk4-devel",
        ]
