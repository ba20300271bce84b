"""Unit tests for the clean-cache command."""

from fakes import FakeOperator
from nebulactl.cli.main import app
from nebulactl.operators.base import CacheCleanupReport
from typer.testing import CliRunner

runner = CliRunner()


class TestCleanCacheCommand:
    """Tests for nebulactl clean-cache."""

    def test_default_retention_runs_without_prompt(self, operator: FakeOperator) -> None:
        """Default retention cleans right away."""
        result = runner.invoke(app, ["clean-cache"])

        assert result.exit_code == 0
        assert "Removed 2 cached files" in result.output
        assert operator.cache_calls == [1]

    def test_keep_zero_asks_first(self, operator: FakeOperator) -> None:
        """Removing everything asks for confirmation."""
        result = runner.invoke(app, ["clean-cache", "--keep", "0"], input="n\n")

        assert result.exit_code == 0
        assert "Remove every cached package file?" in result.output
        assert operator.cache_calls == []

    def test_keep_zero_with_yes(self, operator: FakeOperator) -> None:
        """--yes answers the prompt."""
        result = runner.invoke(app, ["clean-cache", "-k", "0", "-y"])

        assert result.exit_code == 0
        assert operator.cache_calls == [0]

    def test_keep_out_of_range(self, operator: FakeOperator) -> None:
        """Retention above 5 is rejected by the option."""
        result = runner.invoke(app, ["clean-cache", "--keep", "9"])

        assert result.exit_code != 0
        assert operator.cache_calls == []

    def test_failure_exits_with_error(self, operator: FakeOperator) -> None:
        """A failed cleanup prints the reason and exits with code 1."""
        operator.cache_report = CacheCleanupReport(success=False, reason="cache in use")

        result = runner.invoke(app, ["clean-cache"])

        assert result.exit_code == 1
        assert "cache in use" in result.output
