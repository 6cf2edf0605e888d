"""CLI tests for admin commands (init, doctor) and the top-level group."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from formulary import __version__, embedded
from formulary.cli import cli
from formulary.core import FORMULARY_DIR_NAME, LOG_FILENAME, WORKSPACE_MARKER
from tests._workspace import write_formula

Invoker = tuple[CliRunner, dict[str, Any]]


class TestInit:
    def test_creates_workspace(self, cli_runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        result = cli_runner.invoke(cli, ["init", "--name", "hq"])
        assert result.exit_code == 0, result.output
        assert "Initialized .formulary/ in" in result.output
        marker = tmp_path / FORMULARY_DIR_NAME / WORKSPACE_MARKER
        assert json.loads(marker.read_text())["name"] == "hq"

    def test_later_commands_find_it(
        self, cli_runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        cli_runner.invoke(cli, ["init"])
        result = cli_runner.invoke(cli, ["modify", "release"])
        assert result.exit_code == 0, result.output
        assert (tmp_path / FORMULARY_DIR_NAME / "formulas" / "release.formula.toml").is_file()
        assert (tmp_path / FORMULARY_DIR_NAME / LOG_FILENAME).exists()


class TestDoctor:
    def test_healthy(self, cli_in_project: Invoker) -> None:
        runner, obj = cli_in_project
        result = runner.invoke(cli, ["doctor"], obj=obj)
        assert result.exit_code == 0
        assert "0 issues" in result.output
        assert "All checks passed." in result.output
        assert "  OK  workspace" not in result.output

    def test_verbose_shows_passing(self, cli_in_project: Invoker) -> None:
        runner, obj = cli_in_project
        result = runner.invoke(cli, ["doctor", "-v"], obj=obj)
        assert "  OK  workspace: Found at" in result.output

    def test_legacy_reported_and_fixed(self, cli_in_project: Invoker, project: Path) -> None:
        runner, obj = cli_in_project
        legacy = write_formula(project, "release", embedded.get_builtin("release"))

        result = runner.invoke(cli, ["doctor"], obj=obj)
        assert "  !!  legacy-formulas:" in result.output
        assert "-> Run: formulary doctor --fix" in result.output
        assert legacy.exists()

        result = runner.invoke(cli, ["doctor", "--fix"], obj=obj)
        assert "Removed 1 redundant formula copies:" in result.output
        assert not legacy.exists()

    def test_no_workspace(self, cli_runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        result = cli_runner.invoke(cli, ["doctor"], obj={"workspace_root": None})
        assert result.exit_code == 0
        assert "!!  workspace:" in result.output


def test_version(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help_lists_commands(cli_runner: CliRunner) -> None:
    result = cli_runner.invoke(cli, ["--help"])
    for command in ("list", "show", "run", "create", "modify", "diff", "reset", "update", "init", "doctor"):
        assert command in result.output
