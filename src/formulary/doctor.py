"""Health checks (``formulary doctor``)."""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path

from formulary import embedded
from formulary.core import CONFIG_FILENAME, FORMULARY_DIR_NAME, find_workspace_root, read_config
from formulary.errors import FormularyError, WorkspaceNotFoundError
from formulary.resolver import scan_all_overrides, scan_local_formulas

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Result of a single doctor check."""

    name: str
    passed: bool
    message: str
    fix_hint: str = ""

    @property
    def icon(self) -> str:
        return "OK" if self.passed else "!!"


def check_builtin_formulas() -> CheckResult:
    try:
        names = embedded.builtin_names()
    except OSError as exc:
        return CheckResult("formulas", False, f"Could not read built-in formulas: {exc}")
    if not names:
        return CheckResult("formulas", False, "No built-in formulas found", "Reinstall formulary")
    return CheckResult("formulas", True, f"{len(names)} built-in formulas available")


def find_legacy_formulas(workspace_root: Path) -> list[Path]:
    """Local formula files byte-identical to their built-in counterpart."""
    found: list[Path] = []
    for o in scan_all_overrides(workspace_root):
        try:
            if o.path.read_bytes() == embedded.get_builtin(o.name):
                found.append(o.path)
        except OSError as exc:
            logger.debug("Skipping unreadable formula %s: %s", o.path, exc)
    return found


def check_legacy_formulas(workspace_root: Path) -> CheckResult:
    legacy = find_legacy_formulas(workspace_root)
    if not legacy:
        return CheckResult("legacy-formulas", True, "No redundant copies of built-in formulas")
    listing = ", ".join(str(p) for p in legacy)
    return CheckResult(
        "legacy-formulas",
        False,
        f"Found {len(legacy)} local formulas identical to the built-in version: {listing}",
        "Run: formulary doctor --fix",
    )


def fix_legacy_formulas(workspace_root: Path) -> list[Path]:
    """Remove redundant copies. Returns the removed paths.

    Raises FormularyError listing any file that could not be removed.
    """
    removed: list[Path] = []
    failures: list[str] = []
    for path in find_legacy_formulas(workspace_root):
        try:
            path.unlink()
        except OSError as exc:
            failures.append(f"  {path}: {exc}")
            continue
        removed.append(path)
        logger.info("Removed redundant formula copy %s", path)
    if failures:
        msg = "failed to remove some formulas:\n" + "\n".join(failures)
        raise FormularyError(msg)
    return removed


def check_formula_syntax(workspace_root: Path) -> list[CheckResult]:
    """Strict TOML parse of every local ``.formula.toml``; one result per broken file."""
    results: list[CheckResult] = []
    checked = 0
    for o in scan_local_formulas(workspace_root):
        checked += 1
        try:
            tomllib.loads(o.path.read_text())
        except (tomllib.TOMLDecodeError, OSError, UnicodeDecodeError) as exc:
            results.append(
                CheckResult(
                    "formula-syntax",
                    False,
                    f"{o.path}: {exc}",
                    f"Fix the file or run: formulary reset {o.name}",
                )
            )
    if not results:
        results.append(CheckResult("formula-syntax", True, f"{checked} local formulas parse cleanly"))
    return results


def run_doctor(workspace_root: Path | None = None) -> list[CheckResult]:
    """Run all health checks. Returns list of CheckResult."""
    results = [check_builtin_formulas()]

    if workspace_root is None:
        try:
            workspace_root = find_workspace_root()
        except WorkspaceNotFoundError:
            results.append(
                CheckResult(
                    "workspace",
                    False,
                    "No formulary workspace found; user and project tiers are unavailable",
                    "Create .formulary/workspace.json at the workspace root or set FORMULARY_ROOT",
                )
            )
            return results
    results.append(CheckResult("workspace", True, f"Found at {workspace_root}"))

    config_path = workspace_root / FORMULARY_DIR_NAME / CONFIG_FILENAME
    if config_path.exists():
        prefix = read_config(workspace_root).get("record_prefix", "")
        results.append(CheckResult(CONFIG_FILENAME, True, f"Record prefix: {prefix}"))

    results.append(check_legacy_formulas(workspace_root))
    results.extend(check_formula_syntax(workspace_root))
    return results
