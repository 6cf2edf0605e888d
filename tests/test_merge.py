"""Tests for agent-assisted override updates."""

from __future__ import annotations

from pathlib import Path

import pytest

from formulary import embedded
from formulary.errors import AgentError, FormularyError, FormulaNotFoundError, OverrideNotFoundError
from formulary.merge import UpdateOptions, build_merge_prompt, find_update_target, update_override
from formulary.resolver import OverrideLevel
from tests._fakes import FakeAgent
from tests._workspace import current_override, stale_override, write_formula

MERGED = 'formula = "code-review"\ntype = "convoy"\n# merged\n'


class Capture:
    def __init__(self) -> None:
        self.lines: list[str] = []

    def __call__(self, text: str) -> None:
        self.lines.append(text)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class TestPrompt:
    def test_with_hashes(self) -> None:
        prompt = build_merge_prompt("code-review", "a" * 64, "b" * 64, "BUILTIN", "OVERRIDE")
        assert "FORMULA: code-review" in prompt
        assert "sha256:aaaaaaaaaaaa" in prompt
        assert "updated to sha256:bbbbbbbbbbbb" in prompt
        assert "=== CURRENT BUILT-IN VERSION (new upstream) ===\nBUILTIN\n" in prompt
        assert "=== USER'S OVERRIDE (preserve their customizations) ===\nOVERRIDE\n" in prompt
        assert prompt.rstrip().endswith("managed automatically")

    def test_without_base(self) -> None:
        prompt = build_merge_prompt("x", "", "b" * 64, "B", "O")
        assert "no recorded base version" in prompt


class TestFindTarget:
    def test_project_beats_user(self, workspace: Path, project: Path) -> None:
        write_formula(workspace, "code-review", "u")
        write_formula(project, "code-review", "p")
        assert find_update_target(workspace, "code-review").level is OverrideLevel.PROJECT

    def test_not_builtin(self, workspace: Path) -> None:
        with pytest.raises(FormulaNotFoundError):
            find_update_target(workspace, "my-own")

    def test_no_override(self, workspace: Path) -> None:
        with pytest.raises(OverrideNotFoundError, match="Nothing to update"):
            find_update_target(workspace, "code-review")


class TestUpdateOverride:
    def test_up_to_date_skips_agent(self, workspace: Path) -> None:
        write_formula(workspace, "code-review", current_override("code-review"))
        agent = FakeAgent(reply=MERGED)
        echo = Capture()
        result = update_override(workspace, "code-review", UpdateOptions(), run_agent=agent, echo=echo)
        assert result.up_to_date
        assert agent.prompts == []
        assert "No update needed" in echo.text

    def test_preview_leaves_file(self, workspace: Path) -> None:
        path = write_formula(workspace, "code-review", stale_override("code-review"))
        before = path.read_text()
        agent = FakeAgent(reply=MERGED)
        echo = Capture()
        result = update_override(workspace, "code-review", UpdateOptions(), run_agent=agent, echo=echo)
        assert not result.applied
        assert result.merged == MERGED.strip()
        assert path.read_text() == before
        assert "PROPOSED MERGE" in echo.text
        assert "formulary update code-review --apply" in echo.text
        assert "# local tweak" in agent.prompts[0]
        assert "sha256:000000000000" in agent.prompts[0]

    def test_apply_backs_up_and_rewrites_header(self, workspace: Path) -> None:
        path = write_formula(workspace, "code-review", stale_override("code-review"))
        before = path.read_text()
        reply = embedded.override_header("code-review", "f" * 64) + MERGED
        result = update_override(
            workspace, "code-review", UpdateOptions(apply=True), run_agent=FakeAgent(reply=reply), echo=Capture()
        )
        assert result.applied
        assert result.backup_path == path.with_name("code-review.formula.toml.bak")
        assert result.backup_path.read_text() == before
        written = path.read_text()
        assert written == embedded.override_header("code-review", embedded.builtin_hash("code-review")) + MERGED.strip()
        assert embedded.extract_base_hash(written) == embedded.builtin_hash("code-review")

    def test_headerless_override_is_updated(self, workspace: Path) -> None:
        write_formula(workspace, "code-review", "hand written\n")
        agent = FakeAgent(reply=MERGED)
        echo = Capture()
        result = update_override(workspace, "code-review", UpdateOptions(), run_agent=agent, echo=echo)
        assert not result.up_to_date
        assert "(unknown - no base version recorded)" in echo.text
        assert "no recorded base version" in agent.prompts[0]

    def test_agent_failure_has_guidance(self, workspace: Path) -> None:
        write_formula(workspace, "code-review", stale_override("code-review"))
        with pytest.raises(AgentError, match="agent merge failed: boom") as excinfo:
            update_override(
                workspace, "code-review", UpdateOptions(), run_agent=FakeAgent(error="boom"), echo=Capture()
            )
        assert "formulary show code-review" in str(excinfo.value)

    def test_empty_output(self, workspace: Path) -> None:
        path = write_formula(workspace, "code-review", stale_override("code-review"))
        before = path.read_text()
        with pytest.raises(AgentError, match="empty output"):
            update_override(
                workspace, "code-review", UpdateOptions(apply=True), run_agent=FakeAgent(reply="  \n"), echo=Capture()
            )
        assert path.read_text() == before
        assert not path.with_name(path.name + ".bak").exists()

    def test_backup_failure_leaves_override(self, workspace: Path) -> None:
        path = write_formula(workspace, "code-review", stale_override("code-review"))
        before = path.read_text()
        # A directory in the way makes the backup copy fail.
        path.with_name(path.name + ".bak").mkdir()
        with pytest.raises(FormularyError, match="creating backup"):
            update_override(
                workspace, "code-review", UpdateOptions(apply=True), run_agent=FakeAgent(reply=MERGED), echo=Capture()
            )
        assert path.read_text() == before

    def test_write_failure_names_backup(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = write_formula(workspace, "code-review", stale_override("code-review"))
        before = path.read_text()
        real_write_text = Path.write_text

        def refuse_override(self: Path, data: str, *args: object, **kwargs: object) -> int:
            if self.name == path.name:
                raise PermissionError(13, "Permission denied", str(self))
            return real_write_text(self, data, *args, **kwargs)  # type: ignore[arg-type]

        monkeypatch.setattr(Path, "write_text", refuse_override)
        with pytest.raises(FormularyError, match="writing merged result") as excinfo:
            update_override(
                workspace, "code-review", UpdateOptions(apply=True), run_agent=FakeAgent(reply=MERGED), echo=Capture()
            )
        backup = path.with_name(path.name + ".bak")
        assert str(backup) in str(excinfo.value)
        assert backup.read_text() == before
        assert path.read_text() == before
