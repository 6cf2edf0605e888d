"""One-shot AI agent resolution and invocation.

The agent is chosen from, in order:
  1. ``$FORMULARY_DEFAULT_AGENT``
  2. ``default_agent`` in project config, then workspace config
  3. the first of ``AGENT_CANDIDATES`` found on PATH
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from formulary.core import effective_config
from formulary.errors import AgentError

logger = logging.getLogger(__name__)

AGENT_ENV_VAR = "FORMULARY_DEFAULT_AGENT"
AGENT_CANDIDATES: tuple[str, ...] = ("claude", "opencode", "gemini", "codex")


@dataclass(frozen=True)
class AgentPreset:
    command: str
    subcommand: str = ""
    prompt_flag: str = ""

    def one_shot_args(self) -> list[str]:
        args = []
        if self.subcommand:
            args.append(self.subcommand)
        if self.prompt_flag:
            args.append(self.prompt_flag)
        return args


AGENT_PRESETS: dict[str, AgentPreset] = {
    "claude": AgentPreset(command="claude", prompt_flag="-p"),
    "opencode": AgentPreset(command="opencode", subcommand="run"),
    "gemini": AgentPreset(command="gemini", prompt_flag="-p"),
    "codex": AgentPreset(command="codex", subcommand="exec"),
}


@dataclass(frozen=True)
class AgentSpec:
    """A resolved agent: the prompt is appended after ``args``."""

    name: str
    command: str
    args: tuple[str, ...] = ()

    def argv(self, prompt: str) -> list[str]:
        return [self.command, *self.args, prompt]


Which = Callable[[str], str | None]


def resolve_agent(name: str, which: Which = shutil.which) -> AgentSpec:
    """Turn an agent name into a one-shot invocation. Raises AgentError if not on PATH."""
    preset = AGENT_PRESETS.get(name)
    if preset is None:
        if which(name) is None:
            msg = f"agent '{name}' not found on PATH"
            raise AgentError(msg)
        return AgentSpec(name=name, command=name, args=("-p",))
    if which(preset.command) is None:
        msg = f"agent '{name}' command '{preset.command}' not found on PATH"
        raise AgentError(msg)
    return AgentSpec(name=name, command=preset.command, args=tuple(preset.one_shot_args()))


def detect_agent(
    workspace_root: Path | None,
    project_dir: Path | None = None,
    which: Which = shutil.which,
) -> AgentSpec:
    """Pick the merge agent. Raises AgentError when nothing usable is found."""
    env_agent = os.environ.get(AGENT_ENV_VAR, "")
    if env_agent:
        return resolve_agent(env_agent, which)

    configured = effective_config(workspace_root, project_dir).get("default_agent", "")
    if configured:
        try:
            return resolve_agent(configured, which)
        except AgentError as exc:
            logger.warning("Configured default_agent unusable, trying PATH: %s", exc)

    for candidate in AGENT_CANDIDATES:
        if which(candidate) is not None:
            return resolve_agent(candidate, which)

    msg = (
        "no AI agent found.\n\n"
        f"Install one of: {', '.join(AGENT_CANDIDATES)}\n"
        f"Or set ${AGENT_ENV_VAR} to your preferred agent."
    )
    raise AgentError(msg)


def invoke_agent(agent: AgentSpec, prompt: str) -> str:
    """Run the agent once and return its captured stdout.

    stderr passes through to the terminal. Raises AgentError on failure.
    """
    logger.info("Invoking agent %s", agent.name)
    try:
        proc = subprocess.run(
            agent.argv(prompt),
            check=True,
            text=True,
            stdout=subprocess.PIPE,
        )
    except subprocess.CalledProcessError as exc:
        msg = f"agent {agent.name} exited with status {exc.returncode}"
        raise AgentError(msg) from exc
    except OSError as exc:
        msg = f"agent {agent.name} could not be started: {exc}"
        raise AgentError(msg) from exc
    return proc.stdout
