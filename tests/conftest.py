"""Shared pytest fixtures for formulary tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest
from click.testing import CliRunner

from formulary.agents import AGENT_ENV_VAR
from formulary.core import ROOT_ENV_VAR, init_workspace
from formulary.document import FormulaDocument, Leg, Synthesis
from tests._fakes import FakeDispatcher, FakePullRequestSource, FakeStore
from tests._workspace import register_project


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of workspace and agent discovery."""
    monkeypatch.delenv(ROOT_ENV_VAR, raising=False)
    monkeypatch.delenv(AGENT_ENV_VAR, raising=False)


@pytest.fixture(autouse=True)
def _drop_log_files() -> Iterator[None]:
    """Close file handlers CLI invocations attach to the package logger."""
    yield
    logger = logging.getLogger("formulary")
    for h in logger.handlers[:]:
        if isinstance(h, RotatingFileHandler):
            logger.removeHandler(h)
            h.close()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A tmp directory set up as a workspace root (.formulary/ with marker + empty registry)."""
    root = tmp_path / "town"
    root.mkdir()
    init_workspace(root)
    return root


@pytest.fixture
def project(workspace: Path) -> Path:
    """A registered project directory named ``alpha`` inside the workspace."""
    return register_project(workspace, "alpha")


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def pr_source() -> FakePullRequestSource:
    return FakePullRequestSource()


@pytest.fixture
def two_leg_convoy() -> FormulaDocument:
    """Convoy with two legs, no synthesis, no prompts."""
    return FormulaDocument(
        name="pair-review",
        description="Two-angle review",
        type="convoy",
        legs=[
            Leg(id="logic", title="Logic pass", focus="correctness", description="Check the logic."),
            Leg(id="style", title="Style pass", focus="readability", description="Check the style."),
        ],
    )


@pytest.fixture
def convoy_with_synthesis(two_leg_convoy: FormulaDocument) -> FormulaDocument:
    two_leg_convoy.synthesis = Synthesis(title="Merge findings", description="", depends_on=("logic",))
    return two_leg_convoy


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
