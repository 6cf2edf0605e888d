"""Tests for merge-agent detection and invocation."""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from formulary.agents import AGENT_ENV_VAR, AgentSpec, detect_agent, invoke_agent, resolve_agent
from formulary.core import write_config
from formulary.errors import AgentError


def fake_which(*available: str) -> Callable[[str], str | None]:
    def which(cmd: str) -> str | None:
        return f"/usr/bin/{cmd}" if cmd in available else None

    return which


class TestResolveAgent:
    def test_preset_with_flag(self) -> None:
        spec = resolve_agent("claude", fake_which("claude"))
        assert spec.argv("hello") == ["claude", "-p", "hello"]

    def test_preset_with_subcommand(self) -> None:
        assert resolve_agent("codex", fake_which("codex")).argv("x") == ["codex", "exec", "x"]
        assert resolve_agent("opencode", fake_which("opencode")).argv("x") == ["opencode", "run", "x"]

    def test_unknown_agent_on_path(self) -> None:
        spec = resolve_agent("myagent", fake_which("myagent"))
        assert spec == AgentSpec(name="myagent", command="myagent", args=("-p",))

    def test_missing(self) -> None:
        with pytest.raises(AgentError, match="not found on PATH"):
            resolve_agent("claude", fake_which())


class TestDetectAgent:
    def test_env_var_first(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(AGENT_ENV_VAR, "gemini")
        write_config(workspace, {"default_agent": "codex"})
        assert detect_agent(workspace, which=fake_which("gemini", "codex", "claude")).name == "gemini"

    def test_env_var_unusable_is_fatal(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(AGENT_ENV_VAR, "gemini")
        with pytest.raises(AgentError):
            detect_agent(workspace, which=fake_which("claude"))

    def test_config_then_path(self, workspace: Path) -> None:
        write_config(workspace, {"default_agent": "codex"})
        assert detect_agent(workspace, which=fake_which("codex", "claude")).name == "codex"

    def test_project_config_overrides_workspace(self, workspace: Path, project: Path) -> None:
        write_config(workspace, {"default_agent": "codex"})
        write_config(project, {"default_agent": "gemini"})
        assert detect_agent(workspace, project, which=fake_which("codex", "gemini")).name == "gemini"

    def test_unusable_config_falls_through_to_path(self, workspace: Path) -> None:
        write_config(workspace, {"default_agent": "codex"})
        assert detect_agent(workspace, which=fake_which("opencode")).name == "opencode"

    def test_path_order(self, workspace: Path) -> None:
        assert detect_agent(workspace, which=fake_which("gemini", "opencode")).name == "opencode"

    def test_nothing_found(self, workspace: Path) -> None:
        with pytest.raises(AgentError, match="no AI agent found"):
            detect_agent(workspace, which=fake_which())


class TestInvokeAgent:
    def test_returns_stdout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen: dict[str, Any] = {}

        def fake_run(argv: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            seen["argv"] = argv
            seen["kwargs"] = kwargs
            return subprocess.CompletedProcess(argv, 0, stdout="merged text")

        monkeypatch.setattr(subprocess, "run", fake_run)
        out = invoke_agent(AgentSpec(name="claude", command="claude", args=("-p",)), "prompt")
        assert out == "merged text"
        assert seen["argv"] == ["claude", "-p", "prompt"]
        assert seen["kwargs"]["check"] is True

    def test_nonzero_exit(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_run(argv: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            raise subprocess.CalledProcessError(2, argv)

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(AgentError, match="exited with status 2"):
            invoke_agent(AgentSpec(name="claude", command="claude"), "prompt")

    def test_cannot_start(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_run(argv: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            raise FileNotFoundError(argv[0])

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(AgentError, match="could not be started"):
            invoke_agent(AgentSpec(name="claude", command="claude"), "prompt")
