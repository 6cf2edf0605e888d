"""Tests for the shipped built-in formula set and override headers."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from formulary import embedded
from formulary.document import parse_formula
from formulary.errors import ConflictError, FormularyError, FormulaNotFoundError


class TestBuiltins:
    def test_names_sorted_without_suffix(self) -> None:
        names = embedded.builtin_names()
        assert names == sorted(names)
        assert "code-review" in names
        assert not any(n.endswith(".toml") for n in names)

    def test_every_builtin_names_itself(self) -> None:
        for name in embedded.builtin_names():
            assert parse_formula(embedded.get_builtin(name)).name == name

    def test_suffix_optional(self) -> None:
        assert embedded.get_builtin("release") == embedded.get_builtin("release.formula.toml")
        assert embedded.builtin_exists("release.formula.toml")

    def test_unknown(self) -> None:
        assert not embedded.builtin_exists("no-such-formula")
        with pytest.raises(FormulaNotFoundError) as excinfo:
            embedded.get_builtin("no-such-formula")
        assert excinfo.value.name == "no-such-formula"

    def test_hash_is_sha256_of_exact_bytes(self) -> None:
        expected = hashlib.sha256(embedded.get_builtin("quick-fix")).hexdigest()
        assert embedded.builtin_hash("quick-fix") == expected
        assert len(expected) == 64

    def test_truncate_hash(self) -> None:
        assert embedded.truncate_hash("a" * 64) == "a" * 12
        assert embedded.truncate_hash("abc") == "abc"


class TestHeaders:
    def test_header_lines(self) -> None:
        header = embedded.override_header("release", "f" * 64)
        assert header.splitlines() == [
            "# Formula override created by formulary modify",
            "# Based on embedded version: sha256:" + "f" * 64,
            "# To update: formulary update release",
        ]
        assert header.endswith("\n\n")

    def test_extract_base_hash(self) -> None:
        text = embedded.override_header("release", "abc123") + 'formula = "release"\n'
        assert embedded.extract_base_hash(text) == "abc123"
        assert embedded.extract_base_hash(text.encode()) == "abc123"

    def test_extract_base_hash_missing(self) -> None:
        assert embedded.extract_base_hash('formula = "x"\n') == ""

    def test_strip_header(self) -> None:
        body = 'formula = "release"\n# keep me\n'
        assert embedded.strip_override_header(embedded.override_header("release", "abc") + body) == body

    def test_strip_header_leaves_plain_content(self) -> None:
        body = '# a user comment\nformula = "x"\n'
        assert embedded.strip_override_header(body) == body

    def test_strip_header_only_header(self) -> None:
        only = embedded.override_header("release", "abc")
        assert embedded.strip_override_header(only) == only


class TestCopyBuiltin:
    def test_copy_writes_header_and_exact_bytes(self, tmp_path: Path) -> None:
        dest = embedded.copy_builtin_to("release", tmp_path / "out")
        assert dest == tmp_path / "out" / "release.formula.toml"
        data = dest.read_bytes()
        original = embedded.get_builtin("release")
        header = embedded.override_header("release", embedded.builtin_hash("release"))
        assert data == header.encode() + original

    def test_copy_refuses_to_clobber(self, tmp_path: Path) -> None:
        embedded.copy_builtin_to("release", tmp_path)
        with pytest.raises(ConflictError, match="formulary reset release"):
            embedded.copy_builtin_to("release", tmp_path)

    def test_copy_unknown(self, tmp_path: Path) -> None:
        with pytest.raises(FormulaNotFoundError):
            embedded.copy_builtin_to("nope", tmp_path)
        assert not (tmp_path / "nope.formula.toml").exists()

    def test_copy_cannot_create_directory(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(FormularyError, match="creating directory"):
            embedded.copy_builtin_to("release", blocker / "formulas")

    def test_copy_write_failure(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def refuse(self: Path, data: bytes) -> int:
            raise PermissionError(13, "Permission denied", str(self))

        monkeypatch.setattr(Path, "write_bytes", refuse)
        with pytest.raises(FormularyError, match="writing .*release.formula.toml: .*Permission denied"):
            embedded.copy_builtin_to("release", tmp_path)
