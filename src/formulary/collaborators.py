"""Boundaries to the external tools a convoy run drives.

Each collaborator is a Protocol plus a subprocess adapter:

- WorkStore           tracked work items (``bd``)
- Dispatcher          hands a record to a worker (``gt sling``)
- PullRequestSource   PR metadata (``gh pr view``), best effort

Every call blocks until the subprocess exits; there is no timeout.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from formulary.errors import CommentError, DispatchError, LinkError, RecordCreationError
from formulary.types.core import ChangedFile

logger = logging.getLogger(__name__)

STORE_COMMAND = "bd"
DISPATCH_COMMAND = "gt"
GH_COMMAND = "gh"


class WorkStore(Protocol):
    def create(self, kind: str, record_id: str, title: str, description: str, *, force: bool = False) -> None: ...

    def add_dependency(self, parent_id: str, child_id: str, kind: str | None = None) -> None: ...

    def comment(self, record_id: str, text: str) -> None: ...


class Dispatcher(Protocol):
    def dispatch(self, record_id: str, target: str, summary: str, body: str) -> None: ...


@dataclass(frozen=True)
class PullRequestInfo:
    title: str = ""
    changed_files: list[ChangedFile] = field(default_factory=list)


class PullRequestSource(Protocol):
    def fetch(self, number: int) -> PullRequestInfo: ...


def needs_force_for_id(record_id: str) -> bool:
    """True when the id carries a namespaced prefix (``hq-cv-abcde``).

    The store infers a record's prefix from the text before the first
    hyphen; ids with further hyphenated segments must be forced through.
    """
    return record_id.count("-") > 1


def _run(cmd: Sequence[str], *, cwd: Path | None = None, capture: bool = False) -> subprocess.CompletedProcess[str]:
    logger.debug("exec: %s", shlex.join(cmd))
    return subprocess.run(
        list(cmd),
        cwd=str(cwd) if cwd is not None else None,
        check=True,
        text=True,
        stdout=subprocess.PIPE if capture else None,
        stderr=subprocess.PIPE,
    )


def _describe(exc: subprocess.CalledProcessError | OSError) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        stderr = (exc.stderr or "").strip()
        return f"exit status {exc.returncode}" + (f": {stderr}" if stderr else "")
    return str(exc)


class BeadsStore:
    """WorkStore backed by the ``bd`` command-line tool."""

    def __init__(self, workdir: Path | None = None, command: str = STORE_COMMAND) -> None:
        self.workdir = workdir
        self.command = command

    def create(self, kind: str, record_id: str, title: str, description: str, *, force: bool = False) -> None:
        args = [
            self.command,
            "create",
            f"--type={kind}",
            f"--id={record_id}",
            f"--title={title}",
            f"--description={description}",
        ]
        if force:
            args.append("--force")
        try:
            _run(args, cwd=self.workdir)
        except (subprocess.CalledProcessError, OSError) as exc:
            msg = f"creating {kind} record {record_id}: {_describe(exc)}"
            raise RecordCreationError(msg) from exc

    def add_dependency(self, parent_id: str, child_id: str, kind: str | None = None) -> None:
        args = [self.command, "dep", "add", parent_id, child_id]
        if kind:
            args.append(f"--type={kind}")
        try:
            _run(args, cwd=self.workdir)
        except (subprocess.CalledProcessError, OSError) as exc:
            msg = f"linking {parent_id} -> {child_id}: {_describe(exc)}"
            raise LinkError(msg) from exc

    def comment(self, record_id: str, text: str) -> None:
        try:
            _run([self.command, "comment", record_id, text], cwd=self.workdir)
        except (subprocess.CalledProcessError, OSError) as exc:
            msg = f"commenting on {record_id}: {_describe(exc)}"
            raise CommentError(msg) from exc


class SlingDispatcher:
    """Dispatcher backed by ``gt sling``."""

    def __init__(self, command: str = DISPATCH_COMMAND) -> None:
        self.command = command

    def dispatch(self, record_id: str, target: str, summary: str, body: str) -> None:
        args = [self.command, "sling", record_id, target, "-a", body, "-s", summary]
        try:
            _run(args)
        except (subprocess.CalledProcessError, OSError) as exc:
            msg = f"dispatching {record_id} to {target}: {_describe(exc)}"
            raise DispatchError(msg) from exc


class GhPullRequestSource:
    """PR metadata through the GitHub CLI. Failures yield empty data."""

    def __init__(self, command: str = GH_COMMAND) -> None:
        self.command = command

    def fetch(self, number: int) -> PullRequestInfo:
        title = ""
        try:
            proc = _run(
                [self.command, "pr", "view", str(number), "--json", "title", "--jq", ".title"],
                capture=True,
            )
            title = proc.stdout.strip()
        except (subprocess.CalledProcessError, OSError) as exc:
            logger.warning("Could not fetch title for PR #%d: %s", number, _describe(exc))

        files: list[ChangedFile] = []
        jq = '.files[] | "\\(.path) \\(.additions) \\(.deletions)"'
        try:
            proc = _run(
                [self.command, "pr", "view", str(number), "--json", "files", "--jq", jq],
                capture=True,
            )
        except (subprocess.CalledProcessError, OSError) as exc:
            logger.warning("Could not fetch changed files for PR #%d: %s", number, _describe(exc))
        else:
            files = parse_changed_files(proc.stdout)

        return PullRequestInfo(title=title, changed_files=files)


def parse_changed_files(output: str) -> list[ChangedFile]:
    """Parse ``<path> <additions> <deletions>`` lines; malformed lines are skipped."""
    files: list[ChangedFile] = []
    for line in output.strip().splitlines():
        parts = line.split()
        if len(parts) < 3:
            continue
        try:
            additions, deletions = int(parts[1]), int(parts[2])
        except ValueError:
            continue
        files.append(ChangedFile(path=parts[0], additions=additions, deletions=deletions))
    return files
