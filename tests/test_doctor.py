"""Tests for formulary doctor health checks."""

from __future__ import annotations

from pathlib import Path

import pytest

from formulary import embedded
from formulary.core import write_config
from formulary.doctor import (
    CheckResult,
    check_builtin_formulas,
    check_formula_syntax,
    check_legacy_formulas,
    find_legacy_formulas,
    fix_legacy_formulas,
    run_doctor,
)
from tests._workspace import current_override, write_formula


def test_check_result_icon() -> None:
    assert CheckResult("x", True, "fine").icon == "OK"
    assert CheckResult("x", False, "bad").icon == "!!"


def test_builtins_present() -> None:
    result = check_builtin_formulas()
    assert result.passed
    assert result.message == f"{len(embedded.builtin_names())} built-in formulas available"


class TestLegacyFormulas:
    def test_identical_copy_is_legacy(self, workspace: Path, project: Path) -> None:
        legacy = write_formula(project, "release", embedded.get_builtin("release"))
        write_formula(workspace, "code-review", current_override("code-review"))
        assert find_legacy_formulas(workspace) == [legacy]

        result = check_legacy_formulas(workspace)
        assert not result.passed
        assert result.fix_hint == "Run: formulary doctor --fix"

    def test_fix_removes_only_identical(self, workspace: Path) -> None:
        legacy = write_formula(workspace, "release", embedded.get_builtin("release"))
        kept = write_formula(workspace, "code-review", current_override("code-review"))
        assert fix_legacy_formulas(workspace) == [legacy]
        assert not legacy.exists()
        assert kept.exists()
        assert check_legacy_formulas(workspace).passed


class TestFormulaSyntax:
    def test_clean(self, workspace: Path) -> None:
        write_formula(workspace, "code-review", current_override("code-review"))
        results = check_formula_syntax(workspace)
        assert [r.passed for r in results] == [True]
        assert results[0].message == "1 local formulas parse cleanly"

    def test_broken_file_reported(self, workspace: Path) -> None:
        write_formula(workspace, "release", 'formula = "release\n')
        results = check_formula_syntax(workspace)
        assert len(results) == 1
        assert not results[0].passed
        assert "release.formula.toml" in results[0].message
        assert results[0].fix_hint == "Fix the file or run: formulary reset release"


class TestRunDoctor:
    def test_no_workspace(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        results = run_doctor()
        assert [r.name for r in results] == ["formulas", "workspace"]
        assert not results[1].passed

    def test_all_checks(self, workspace: Path) -> None:
        write_config(workspace, {"record_prefix": "gt"})
        results = run_doctor(workspace)
        assert [r.name for r in results] == ["formulas", "workspace", "config.json", "legacy-formulas", "formula-syntax"]
        assert results[2].message == "Record prefix: gt"
        assert all(r.passed for r in results)
