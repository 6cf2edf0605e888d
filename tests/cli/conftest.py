"""Fixtures for CLI interface tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from tests._fakes import FakeDispatcher, FakePullRequestSource, FakeStore


@pytest.fixture
def cli_obj(
    workspace: Path,
    project: Path,
    store: FakeStore,
    dispatcher: FakeDispatcher,
    pr_source: FakePullRequestSource,
    monkeypatch: pytest.MonkeyPatch,
) -> dict[str, Any]:
    """Context object with fake collaborators; cwd is the ``alpha`` project."""
    monkeypatch.chdir(project)
    return {"workspace_root": workspace, "store": store, "dispatcher": dispatcher, "pr_source": pr_source}


@pytest.fixture
def cli_in_project(cli_runner: CliRunner, cli_obj: dict[str, Any]) -> tuple[CliRunner, dict[str, Any]]:
    return cli_runner, cli_obj
