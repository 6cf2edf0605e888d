"""Tiered formula resolution and override discovery.

Resolution order, first match wins:
  1. Project:   <cwd>/.formulary/formulas/
  2. User:      <workspace>/.formulary/formulas/   (skipped without a workspace)
  3. Built-in:  shipped with the package

Within each filesystem tier the extensions in ``FORMULA_EXTENSIONS`` are
tried in order.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from formulary import embedded
from formulary.core import (
    FORMULA_EXTENSIONS,
    FORMULARY_DIR_NAME,
    PRIMARY_EXTENSION,
    PROJECTS_FILENAME,
    find_workspace_root,
    formulas_dir,
)
from formulary.errors import FormulaNotFoundError, SetupError, WorkspaceNotFoundError

logger = logging.getLogger(__name__)


class FormulaSource(str, Enum):
    FILE = "file"
    BUILT_IN = "built-in"


class OverrideLevel(str, Enum):
    PROJECT = "project"
    USER = "user"


@dataclass(frozen=True)
class FormulaLocation:
    """Where a formula was found.

    ``path`` is a filesystem path for file sources and the bare formula
    name for built-ins.
    """

    path: str
    source: FormulaSource

    def is_built_in(self) -> bool:
        return self.source is FormulaSource.BUILT_IN


@dataclass(frozen=True)
class Override:
    """A local formula file at the project or user tier."""

    name: str
    path: Path
    level: OverrideLevel
    project_name: str = ""
    shadows_built_in: bool = True

    @property
    def is_custom(self) -> bool:
        return not self.shadows_built_in


def search_paths(cwd: Path | None = None, workspace_root: Path | None = None) -> list[Path]:
    """Filesystem tiers in resolution order.

    Without an explicit workspace_root the workspace is discovered from
    cwd; failure to find one drops the user tier.
    """
    cwd = cwd or Path.cwd()
    paths = [formulas_dir(cwd)]
    if workspace_root is None:
        try:
            workspace_root = find_workspace_root(cwd)
        except WorkspaceNotFoundError:
            logger.debug("No workspace above %s; user tier skipped", cwd)
    if workspace_root is not None:
        paths.append(formulas_dir(workspace_root))
    return paths


def resolve_formula(name: str, cwd: Path | None = None, workspace_root: Path | None = None) -> FormulaLocation:
    """Locate a formula by name. Raises FormulaNotFoundError if every tier misses."""
    for base in search_paths(cwd, workspace_root):
        for ext in FORMULA_EXTENSIONS:
            candidate = base / f"{name}{ext}"
            if candidate.is_file():
                return FormulaLocation(path=str(candidate), source=FormulaSource.FILE)

    if embedded.builtin_exists(name):
        return FormulaLocation(path=name, source=FormulaSource.BUILT_IN)

    raise FormulaNotFoundError(name, "Use 'formulary list' to see available formulas.")


def read_formula(location: FormulaLocation) -> bytes:
    """Raw bytes behind a resolved location."""
    if location.is_built_in():
        return embedded.get_builtin(location.path)
    try:
        return Path(location.path).read_bytes()
    except OSError as exc:
        msg = f"reading formula {location.path}: {exc}"
        raise SetupError(msg) from exc


# ---------------------------------------------------------------------------
# Project registry
# ---------------------------------------------------------------------------


def discover_project_dirs(workspace_root: Path) -> list[Path]:
    """Registered project directories that exist on disk.

    Reads ``<root>/.formulary/projects.json``. A missing, unreadable or
    malformed registry yields no projects.
    """
    registry = workspace_root / FORMULARY_DIR_NAME / PROJECTS_FILENAME
    try:
        data = json.loads(registry.read_text())
    except FileNotFoundError:
        return []
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Corrupt project registry %s, ignoring: %s", registry, exc)
        return []

    projects = data.get("projects") if isinstance(data, dict) else None
    if not isinstance(projects, dict):
        logger.warning("Project registry %s has no 'projects' mapping, ignoring", registry)
        return []

    dirs: list[Path] = []
    for project_name in projects:
        if not isinstance(project_name, str) or not project_name or project_name.startswith("."):
            continue
        project_dir = workspace_root / project_name
        if project_dir.is_dir():
            dirs.append(project_dir)
        else:
            logger.debug("Skipping registered project with no directory: %s", project_dir)
    return dirs


def current_project(workspace_root: Path, cwd: Path | None = None) -> Path | None:
    """The registered project directory containing cwd, if any."""
    here = (cwd or Path.cwd()).resolve()
    for project_dir in discover_project_dirs(workspace_root):
        resolved = project_dir.resolve()
        if here == resolved or resolved in here.parents:
            return project_dir
    return None


# ---------------------------------------------------------------------------
# Override scanning
# ---------------------------------------------------------------------------


def _formula_files(directory: Path) -> list[tuple[str, Path]]:
    try:
        entries = sorted(directory.iterdir())
    except OSError:
        return []
    found = []
    for entry in entries:
        if entry.is_file() and entry.name.endswith(PRIMARY_EXTENSION):
            found.append((entry.name[: -len(PRIMARY_EXTENSION)], entry))
    return found


def _tier_dirs(workspace_root: Path) -> list[tuple[OverrideLevel, str, Path]]:
    tiers = [(OverrideLevel.USER, "", formulas_dir(workspace_root))]
    for project_dir in discover_project_dirs(workspace_root):
        tiers.append((OverrideLevel.PROJECT, project_dir.name, formulas_dir(project_dir)))
    return tiers


def scan_local_formulas(workspace_root: Path) -> list[Override]:
    """Every local formula file at the user tier and in every registered project."""
    builtins = set(embedded.builtin_names())
    found: list[Override] = []
    for level, project_name, directory in _tier_dirs(workspace_root):
        for name, path in _formula_files(directory):
            found.append(
                Override(
                    name=name,
                    path=path,
                    level=level,
                    project_name=project_name,
                    shadows_built_in=name in builtins,
                )
            )
    return found


def scan_all_overrides(workspace_root: Path) -> list[Override]:
    """Local files that shadow a built-in formula of the same name."""
    return [o for o in scan_local_formulas(workspace_root) if o.shadows_built_in]


def find_custom_formulas(workspace_root: Path) -> list[Override]:
    """Local files with no built-in counterpart."""
    return [o for o in scan_local_formulas(workspace_root) if o.is_custom]


def scan_overrides_for_name(workspace_root: Path, name: str) -> list[Override]:
    """Local files for one formula name, user tier first."""
    shadows = embedded.builtin_exists(name)
    filename = name + PRIMARY_EXTENSION
    found: list[Override] = []
    for level, project_name, directory in _tier_dirs(workspace_root):
        path = directory / filename
        if path.is_file():
            found.append(
                Override(
                    name=name,
                    path=path,
                    level=level,
                    project_name=project_name,
                    shadows_built_in=shadows,
                )
            )
    return found


def active_override(overrides: list[Override]) -> Override | None:
    """The override that wins resolution: project tier beats user tier."""
    for o in overrides:
        if o.level is OverrideLevel.PROJECT:
            return o
    return overrides[0] if overrides else None
