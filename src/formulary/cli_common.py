"""Shared CLI helpers.

Commands find the workspace root and collaborators on ``ctx.obj`` so tests
can inject fakes through ``CliRunner.invoke(..., obj={...})``.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click

from formulary.collaborators import (
    BeadsStore,
    Dispatcher,
    GhPullRequestSource,
    PullRequestSource,
    SlingDispatcher,
    WorkStore,
)
from formulary.core import FORMULARY_DIR_NAME, ROOT_ENV_VAR, WORKSPACE_MARKER
from formulary.errors import FormularyError


@contextmanager
def cli_errors() -> Iterator[None]:
    """Turn a FormularyError into ``Error: ...`` on stderr and exit status 1."""
    try:
        yield
    except FormularyError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def workspace_root(ctx: click.Context) -> Path | None:
    root: Path | None = ctx.obj.get("workspace_root")
    return root


def require_workspace(ctx: click.Context) -> Path:
    """The workspace root, or exit with guidance."""
    root = workspace_root(ctx)
    if root is None:
        click.echo(
            f"Error: no workspace found. Create {FORMULARY_DIR_NAME}/{WORKSPACE_MARKER} "
            f"at the workspace root or set {ROOT_ENV_VAR}.",
            err=True,
        )
        sys.exit(1)
    return root


def _injected(ctx: click.Context, key: str) -> Any:
    return ctx.obj.get(key)


def get_store(ctx: click.Context, root: Path | None) -> WorkStore:
    store: WorkStore | None = _injected(ctx, "store")
    return store if store is not None else BeadsStore(workdir=root)


def get_dispatcher(ctx: click.Context) -> Dispatcher:
    dispatcher: Dispatcher | None = _injected(ctx, "dispatcher")
    return dispatcher if dispatcher is not None else SlingDispatcher()


def get_pr_source(ctx: click.Context) -> PullRequestSource:
    source: PullRequestSource | None = _injected(ctx, "pr_source")
    return source if source is not None else GhPullRequestSource()
