"""Workspace discovery, directory conventions and config files.

Convention-based: the workspace root is the nearest ancestor holding
``.formulary/workspace.json``. Every tier (project, workspace) keeps its
formula files in ``<dir>/.formulary/formulas/``.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from formulary.errors import WorkspaceNotFoundError
from formulary.types.core import WorkspaceConfig

logger = logging.getLogger(__name__)

FORMULARY_DIR_NAME = ".formulary"
FORMULAS_DIR_NAME = "formulas"
WORKSPACE_MARKER = "workspace.json"
CONFIG_FILENAME = "config.json"
PROJECTS_FILENAME = "projects.json"
LOG_FILENAME = "formulary.log"
ROOT_ENV_VAR = "FORMULARY_ROOT"

# Tried in this order within each filesystem tier.
FORMULA_EXTENSIONS: tuple[str, ...] = (".formula.toml", ".formula.json")
PRIMARY_EXTENSION = FORMULA_EXTENSIONS[0]

DEFAULT_RECORD_PREFIX = "hq"


def formulas_dir(base: Path) -> Path:
    """Return ``<base>/.formulary/formulas``."""
    return base / FORMULARY_DIR_NAME / FORMULAS_DIR_NAME


def find_workspace_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for the workspace marker.

    ``$FORMULARY_ROOT`` wins when it names an existing directory.
    Returns the workspace root (the parent of ``.formulary/``).
    """
    env_root = os.environ.get(ROOT_ENV_VAR, "")
    if env_root:
        candidate = Path(env_root).expanduser()
        if candidate.is_dir():
            return candidate.resolve()
        logger.warning("%s=%s is not a directory, falling back to discovery", ROOT_ENV_VAR, env_root)

    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        if (parent / FORMULARY_DIR_NAME / WORKSPACE_MARKER).is_file():
            return parent
    msg = f"No workspace ({FORMULARY_DIR_NAME}/{WORKSPACE_MARKER}) found in {current} or any parent"
    raise WorkspaceNotFoundError(msg)


def init_workspace(root: Path, name: str | None = None) -> Path:
    """Create the workspace marker and an empty project registry under root."""
    fdir = root / FORMULARY_DIR_NAME
    fdir.mkdir(parents=True, exist_ok=True)
    marker = fdir / WORKSPACE_MARKER
    if not marker.exists():
        marker.write_text(json.dumps({"name": name or root.name, "version": 1}, indent=2) + "\n")
    registry = fdir / PROJECTS_FILENAME
    if not registry.exists():
        registry.write_text(json.dumps({"projects": {}}, indent=2) + "\n")
    return fdir


def read_config(base: Path) -> WorkspaceConfig:
    """Read ``<base>/.formulary/config.json``. Returns defaults if missing or corrupt."""
    defaults = WorkspaceConfig(record_prefix=DEFAULT_RECORD_PREFIX)
    config_path = base / FORMULARY_DIR_NAME / CONFIG_FILENAME
    if not config_path.exists():
        return defaults
    try:
        data = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return defaults
    if not isinstance(data, dict):
        logger.warning("Config file %s contains non-dict JSON, using defaults", config_path)
        return defaults
    merged: dict[str, Any] = dict(defaults)
    merged.update(data)
    result: WorkspaceConfig = merged  # type: ignore[assignment]
    return result


def write_config(base: Path, config: dict[str, Any] | WorkspaceConfig) -> None:
    """Write ``<base>/.formulary/config.json``."""
    fdir = base / FORMULARY_DIR_NAME
    fdir.mkdir(parents=True, exist_ok=True)
    (fdir / CONFIG_FILENAME).write_text(json.dumps(config, indent=2) + "\n")


def effective_config(root: Path | None, project_dir: Path | None = None) -> WorkspaceConfig:
    """Workspace config with project-level keys layered on top."""
    merged: dict[str, Any] = {}
    if root is not None:
        merged.update(read_config(root))
    else:
        merged.update(WorkspaceConfig(record_prefix=DEFAULT_RECORD_PREFIX))
    if project_dir is not None and project_dir != root:
        project_cfg = project_dir / FORMULARY_DIR_NAME / CONFIG_FILENAME
        if project_cfg.exists():
            merged.update(read_config(project_dir))
    result: WorkspaceConfig = merged  # type: ignore[assignment]
    return result
