"""Tests for the top-level CLI group."""

from __future__ import annotations

from click.testing import CliRunner

from tchantrace import __version__
from tchantrace.cli import cli
from tchantrace.plugins import get_all_plugins


class TestCli:
    """Test cases for the tchantrace command group."""

    def test_help_lists_commands_and_examples(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "trace" in result.output
        assert "replay" in result.output
        assert "Commands:" in result.output
        assert "Examples:" in result.output
        assert result.output.index("Usage:") < result.output.index("Examples:")

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_plugins_registered_once(self) -> None:
        names = [plugin().name for plugin in get_all_plugins()]

        assert sorted(names) == ["replay", "trace"]

    def test_unknown_command(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["sniff"])

        assert result.exit_code != 0
