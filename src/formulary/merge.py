"""Agent-assisted merge of an updated built-in into a local override.

Only the baseline *hash* is recorded in an override, so the merge prompt
carries the recorded and current hashes, the current built-in text, and
the override text. The agent is trusted to return plain formula content.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter

from formulary import embedded
from formulary.agents import detect_agent, invoke_agent
from formulary.errors import AgentError, FormularyError, FormulaNotFoundError, OverrideNotFoundError
from formulary.resolver import Override, active_override, current_project, scan_overrides_for_name

logger = logging.getLogger(__name__)

AgentRunner = Callable[[str], str]
Echo = Callable[[str], None]

BACKUP_SUFFIX = ".bak"

MERGE_RULES = (
    "RULES:\n"
    "1. Preserve all user customizations from the override\n"
    "2. Incorporate new additions/improvements from the built-in version\n"
    "3. If there are conflicts, prefer the user's override version\n"
    "4. Output ONLY the merged TOML content, no explanation or markdown fences\n"
    "5. Do NOT include the '# Based on embedded version' header comments - those are managed automatically\n"
)


@dataclass(frozen=True)
class UpdateOptions:
    """Without ``apply`` the merge is only printed for review."""

    apply: bool = False


@dataclass
class UpdateResult:
    override: Override
    base_hash: str
    current_hash: str
    merged: str = ""
    applied: bool = False
    backup_path: Path | None = None

    @property
    def up_to_date(self) -> bool:
        return bool(self.base_hash) and self.base_hash == self.current_hash


def build_merge_prompt(name: str, base_hash: str, current_hash: str, builtin_content: str, override_content: str) -> str:
    parts = [
        "You are merging a formula override with an updated built-in version.\n\n",
        "TASK: Produce a merged formula that incorporates the upstream changes from the new built-in "
        "version while preserving the user's customizations from their override.\n\n",
        f"FORMULA: {name}\n\n",
    ]
    if base_hash:
        parts.append(
            f"The override was originally based on built-in version sha256:{embedded.truncate_hash(base_hash)}\n"
        )
        parts.append(f"The built-in version has been updated to sha256:{embedded.truncate_hash(current_hash)}\n\n")
    else:
        parts.append(
            "The override has no recorded base version. Compare it directly against the current built-in version.\n\n"
        )
    parts.append(f"=== CURRENT BUILT-IN VERSION (new upstream) ===\n{builtin_content}\n=== END BUILT-IN ===\n\n")
    parts.append(
        f"=== USER'S OVERRIDE (preserve their customizations) ===\n{override_content}\n=== END OVERRIDE ===\n\n"
    )
    parts.append(MERGE_RULES)
    return "".join(parts)


def find_update_target(workspace_root: Path, name: str) -> Override:
    """The effective override for name (project beats user)."""
    if not embedded.builtin_exists(name):
        raise FormulaNotFoundError(name, "Only overrides of built-in formulas can be updated.")
    override = active_override(scan_overrides_for_name(workspace_root, name))
    if override is None:
        msg = (
            f"No override found for '{name}'. Nothing to update.\n\n"
            f"Use 'formulary modify {name}' to create an override first."
        )
        raise OverrideNotFoundError(msg)
    return override


def _default_runner(workspace_root: Path, echo: Echo) -> AgentRunner:
    agent = detect_agent(workspace_root, current_project(workspace_root))
    echo(f"Invoking {agent.name} to merge changes...\n")

    def run(prompt: str) -> str:
        return invoke_agent(agent, prompt)

    return run


def update_override(
    workspace_root: Path,
    name: str,
    options: UpdateOptions,
    run_agent: AgentRunner | None = None,
    echo: Echo = print,
) -> UpdateResult:
    """Merge the current built-in into the active override.

    Returns early with ``up_to_date`` set when the recorded baseline
    matches. Raises AgentError, with manual-merge guidance, when the agent
    fails or returns nothing.
    """
    override = find_update_target(workspace_root, name)
    try:
        override_content = override.path.read_text()
    except OSError as exc:
        msg = f"reading override file {override.path}: {exc}"
        raise FormularyError(msg) from exc

    result = UpdateResult(
        override=override,
        base_hash=embedded.extract_base_hash(override_content),
        current_hash=embedded.builtin_hash(name),
    )
    if result.up_to_date:
        echo("Override is based on the current built-in version. No update needed.")
        return result

    echo(f"Your override: {override.path}")
    if result.base_hash:
        echo(f"Based on:      sha256:{embedded.truncate_hash(result.base_hash)}")
    else:
        echo("Based on:      (unknown - no base version recorded)")
    echo(f"Current:       sha256:{embedded.truncate_hash(result.current_hash)}\n")

    if run_agent is None:
        run_agent = _default_runner(workspace_root, echo)

    guidance = f"\n\nCompare manually:\n  Built-in: formulary show {name}\n  Override: {override.path}"
    prompt = build_merge_prompt(
        name,
        result.base_hash,
        result.current_hash,
        embedded.get_builtin(name).decode(),
        override_content,
    )
    started = perf_counter()
    try:
        output = run_agent(prompt)
    except AgentError as exc:
        msg = f"agent merge failed: {exc}{guidance}"
        raise AgentError(msg) from exc
    logger.info(
        "Agent merge finished",
        extra={"formula": name, "duration_ms": round((perf_counter() - started) * 1000, 1)},
    )

    result.merged = output.strip()
    if not result.merged:
        msg = f"agent returned empty output. Manual merge may be required.{guidance}"
        raise AgentError(msg)

    if not options.apply:
        echo("=" * 60)
        echo("PROPOSED MERGE")
        echo("=" * 60 + "\n")
        echo(result.merged)
        echo("\n" + "=" * 60 + "\n")
        echo("Review the proposed merge above.")
        echo(f"Run 'formulary update {name} --apply' to apply it.")
        return result

    backup = override.path.with_name(override.path.name + BACKUP_SUFFIX)
    try:
        shutil.copyfile(override.path, backup)
    except OSError as exc:
        msg = f"creating backup: {exc}"
        raise FormularyError(msg) from exc
    result.backup_path = backup
    echo(f"Backup created: {backup}")

    header = embedded.override_header(name, result.current_hash)
    try:
        override.path.write_text(header + embedded.strip_override_header(result.merged))
    except OSError as exc:
        msg = f"writing merged result: {exc}. The original is preserved at {backup}"
        raise FormularyError(msg) from exc
    result.applied = True
    logger.info("Override updated from merge: %s", override.path, extra={"formula": name})
    echo(f"Override updated: {override.path}")
    echo(f"\nBase version updated to current built-in (sha256:{embedded.truncate_hash(result.current_hash)}).")
    return result
