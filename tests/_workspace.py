"""Workspace builders shared by fixtures and tests."""

from __future__ import annotations

import json
from pathlib import Path

from formulary import embedded
from formulary.core import FORMULARY_DIR_NAME, PROJECTS_FILENAME, formulas_dir


def register_project(root: Path, name: str) -> Path:
    """Create ``<root>/<name>`` and add it to the project registry."""
    project_dir = root / name
    project_dir.mkdir(parents=True, exist_ok=True)
    registry = root / FORMULARY_DIR_NAME / PROJECTS_FILENAME
    data = json.loads(registry.read_text())
    data["projects"][name] = {"path": name}
    registry.write_text(json.dumps(data, indent=2) + "\n")
    return project_dir


def write_formula(base: Path, name: str, content: str | bytes) -> Path:
    """Write ``<base>/.formulary/formulas/<name>.formula.toml``."""
    target = formulas_dir(base)
    target.mkdir(parents=True, exist_ok=True)
    path = target / f"{name}.formula.toml"
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content)
    return path


def stale_override(name: str) -> str:
    """Override text whose recorded baseline no longer matches the built-in."""
    body = embedded.get_builtin(name).decode()
    return embedded.override_header(name, "0" * 64) + body + "\n# local tweak\n"


def current_override(name: str) -> str:
    """Override text recorded against the current built-in."""
    body = embedded.get_builtin(name).decode()
    return embedded.override_header(name, embedded.builtin_hash(name)) + body
