"""Override lifecycle: copy-for-edit, summary and detailed diff, reset.

Agent-assisted update lives in :mod:`formulary.merge`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from formulary import embedded
from formulary.core import PRIMARY_EXTENSION, formulas_dir
from formulary.errors import (
    ConflictError,
    FormularyError,
    FormulaNotFoundError,
    OverrideNotFoundError,
    WorkspaceNotFoundError,
)
from formulary.linediff import render_differences
from formulary.resolver import (
    Override,
    OverrideLevel,
    active_override,
    discover_project_dirs,
    find_custom_formulas,
    scan_all_overrides,
    scan_overrides_for_name,
)

logger = logging.getLogger(__name__)

MODIFICATION_GUIDE = """\
== Formula Modification Guide ==

Formula Structure:
  formula = "name"           # Formula identifier
  type = "workflow"          # task | workflow | convoy | patrol
  version = 1                # Increment when making breaking changes
  description = "..."        # What this formula does

Legs (for convoy type):
  [[legs]]
  id = "leg-id"              # Unique identifier
  title = "Leg Title"        # Human-readable name
  focus = "..."              # What this leg concentrates on
  description = \"\"\"          # Assignment sent to the worker
  What to do in this leg...
  \"\"\"

Prompts and output:
  [prompts]
  base = \"\"\"...\"\"\"            # Jinja2 template appended to every leg
  [output]
  directory = ".reviews/{{ review_id }}"

Resolution Order:
  1. Project:  <project>/.formulary/formulas/    (most specific)
  2. User:     <workspace>/.formulary/formulas/  (user customizations)
  3. Built-in: shipped with formulary           (defaults)

Commands:
  formulary diff <name>     # See your changes vs built-in
  formulary reset <name>    # Remove override, restore built-in
  formulary show <name>     # View formula details
"""


def _require_root(workspace_root: Path | None) -> Path:
    if workspace_root is None:
        raise WorkspaceNotFoundError("no formulary workspace found (run inside one or set FORMULARY_ROOT)")
    return workspace_root


# ---------------------------------------------------------------------------
# Copy-for-edit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModifyOptions:
    """Destination tier for a copy: a named project, else an explicit root, else the workspace."""

    project: str = ""
    user_root: Path | None = None


def modify_destination(workspace_root: Path | None, options: ModifyOptions) -> Path:
    if options.project:
        return formulas_dir(_require_root(workspace_root) / options.project)
    if options.user_root is not None:
        return formulas_dir(options.user_root)
    return formulas_dir(_require_root(workspace_root))


def copy_for_edit(name: str, workspace_root: Path | None, options: ModifyOptions) -> Path:
    """Copy a built-in formula into an override location and return the new path."""
    if not embedded.builtin_exists(name):
        raise FormulaNotFoundError(name, "Only built-in formulas can be modified. Use 'formulary list' to see them.")

    dest_dir = modify_destination(workspace_root, options)
    dest_path = dest_dir / f"{name}{PRIMARY_EXTENSION}"
    if dest_path.exists():
        msg = f"Override already exists at {dest_path}. Use 'formulary reset {name}' to remove it first."
        raise ConflictError(msg)
    return embedded.copy_builtin_to(name, dest_dir)


# ---------------------------------------------------------------------------
# Summary diff
# ---------------------------------------------------------------------------


@dataclass
class OverrideStatus:
    name: str
    user: Override | None = None
    projects: list[Override] = field(default_factory=list)

    @property
    def active(self) -> Override | None:
        if self.projects:
            return self.projects[0]
        return self.user


@dataclass
class OverrideSummary:
    builtin_count: int
    overridden: list[OverrideStatus] = field(default_factory=list)
    custom: list[Override] = field(default_factory=list)

    @property
    def using_builtin(self) -> int:
        return self.builtin_count - len(self.overridden)

    @property
    def is_empty(self) -> bool:
        return not self.overridden and not self.custom


def summarize_overrides(workspace_root: Path) -> OverrideSummary:
    """Which built-ins are overridden where, plus local-only formulas."""
    names = embedded.builtin_names()
    by_name: dict[str, OverrideStatus] = {}
    for o in scan_all_overrides(workspace_root):
        status = by_name.setdefault(o.name, OverrideStatus(o.name))
        if o.level is OverrideLevel.USER:
            status.user = o
        else:
            status.projects.append(o)

    summary = OverrideSummary(builtin_count=len(names), custom=find_custom_formulas(workspace_root))
    summary.overridden = [by_name[name] for name in names if name in by_name]
    return summary


def render_summary(summary: OverrideSummary) -> list[str]:
    if summary.is_empty:
        return [
            "No formula overrides found.",
            f"All formulas using built-in defaults ({summary.builtin_count} formulas available).",
            "",
            "Run 'formulary modify <name>' to customize a formula.",
        ]

    out = [
        "Formula Override Map",
        "====================",
        "",
        "  Resolution order: project override -> user override -> built-in",
        "",
    ]
    for status in summary.overridden:
        active = status.active
        out.append(status.name)
        if status.user is not None:
            marker = "  [active]" if active is status.user else ""
            out.append(f"    built-in -> user override{marker}")
            out.append(f"        {status.user.path}")
        for o in status.projects:
            marker = "  [active]" if active is o else ""
            out.append(f"    built-in -> project override ({o.project_name}){marker}")
            out.append(f"        {o.path}")
        out.append("")

    for o in summary.custom:
        tier = f"project ({o.project_name})" if o.level is OverrideLevel.PROJECT else "user"
        out.append(o.name)
        out.append(f"    (not built-in) -> {tier}  custom")
        out.append(f"        {o.path}")
        out.append("")

    out.append("-" * 60)
    out.append(
        f"Summary: {summary.using_builtin} using built-in, "
        f"{len(summary.overridden)} with override, {len(summary.custom)} custom"
    )
    out.append("Run 'formulary diff <name>' for detailed diff")
    return out


# ---------------------------------------------------------------------------
# Detailed diff
# ---------------------------------------------------------------------------


def staleness_notice(name: str, override: Override) -> list[str]:
    """Update-available lines when the override's recorded baseline is out of date."""
    try:
        content = override.path.read_bytes()
    except OSError as exc:
        logger.warning("Cannot read override %s: %s", override.path, exc, extra={"formula": name})
        return []
    base_hash = embedded.extract_base_hash(content)
    if not base_hash:
        return []
    current_hash = embedded.builtin_hash(name)
    if base_hash == current_hash:
        return []
    return [
        "Update available: built-in version has changed since this override was created.",
        f"  Base:    sha256:{embedded.truncate_hash(base_hash)}",
        f"  Current: sha256:{embedded.truncate_hash(current_hash)}",
        f"  Run 'formulary update {name}' to merge changes.",
        "",
    ]


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text()
    except OSError as exc:
        logger.warning("Cannot read %s: %s", path, exc)
        return None


def diff_detailed(workspace_root: Path, name: str) -> list[str]:
    """Resolution chain for one formula, then tier-to-tier diffs."""
    has_builtin = embedded.builtin_exists(name)
    builtin_text = embedded.get_builtin(name).decode() if has_builtin else ""
    overrides = scan_overrides_for_name(workspace_root, name)
    if not has_builtin and not overrides:
        raise FormulaNotFoundError(name, "Use 'formulary list' to see available formulas.")

    user = next((o for o in overrides if o.level is OverrideLevel.USER), None)
    project = active_override([o for o in overrides if o.level is OverrideLevel.PROJECT])

    out = [name]
    if has_builtin:
        out.append("    |- built-in: (shipped with formulary)")
    if user is not None:
        out.append(f"    |- user:     {user.path}")
    if project is not None:
        out.append(f"    `- project:  {project.path}  <- active")
    elif user is not None:
        # The user tier is active here but is not marked on its own line.
        out.append("    (user is active)")
    elif has_builtin:
        out.append("    (built-in is active - no overrides)")
    out.append("")

    if not overrides:
        out.append("No overrides found for this formula.")
        out.append(f"Use 'formulary modify {name}' to create an override.")
        return out

    active = active_override(overrides)
    if has_builtin and active is not None:
        out.extend(staleness_notice(name, active))

    if has_builtin and user is not None:
        out.append("[Built-in -> User]")
        user_text = _read_text(user.path)
        if user_text is not None:
            out.extend(render_differences(builtin_text, user_text, "built-in", "user override"))
        out.append("")

    if user is not None and project is not None:
        out.append("[User -> Project (active)]")
        user_text = _read_text(user.path)
        project_text = _read_text(project.path)
        if user_text is not None and project_text is not None:
            out.extend(render_differences(user_text, project_text, "user override", "project override"))
    elif has_builtin and project is not None:
        out.append("[Built-in -> Project (active)]")
        project_text = _read_text(project.path)
        if project_text is not None:
            out.extend(render_differences(builtin_text, project_text, "built-in", "project override"))
    elif not has_builtin:
        out.append("Custom formula (not built-in).")
        text = _read_text(overrides[0].path)
        if text is not None:
            out.append(f"  {text.count(chr(10))} lines at {overrides[0].path}")
    return out


# ---------------------------------------------------------------------------
# Reset
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResetOptions:
    """Tier to reset: a named project, or the user tier when empty."""

    project: str = ""


@dataclass(frozen=True)
class ResetOutcome:
    path: Path
    level: str
    builtin_exists: bool


def reset_override(workspace_root: Path, name: str, options: ResetOptions) -> ResetOutcome:
    """Delete one override file. Refuses when the tier is ambiguous."""
    filename = f"{name}{PRIMARY_EXTENSION}"
    has_builtin = embedded.builtin_exists(name)

    if options.project:
        target = formulas_dir(workspace_root / options.project) / filename
        level = f"project '{options.project}'"
    else:
        target = formulas_dir(workspace_root) / filename
        level = "user"
        if target.is_file():
            for project_dir in discover_project_dirs(workspace_root):
                if (formulas_dir(project_dir) / filename).is_file():
                    msg = (
                        f"Both user and project ({project_dir.name}) overrides exist for '{name}'.\n\n"
                        f"Use --project={project_dir.name} to remove the project override, "
                        "or remove the user override first."
                    )
                    raise ConflictError(msg)

    if not target.is_file():
        msg = f"No override found for '{name}' at {level} level."
        if has_builtin:
            msg += " Already using built-in version."
        raise OverrideNotFoundError(msg)

    try:
        target.unlink()
    except OSError as exc:
        msg = f"removing override {target}: {exc}"
        raise FormularyError(msg) from exc
    logger.info("Removed override %s", target, extra={"formula": name})
    return ResetOutcome(path=target, level=level, builtin_exists=has_builtin)
