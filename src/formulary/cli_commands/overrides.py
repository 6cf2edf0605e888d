"""CLI commands for overrides: modify, diff, reset, update."""

from __future__ import annotations

from pathlib import Path

import click

from formulary.cli_common import cli_errors, require_workspace, workspace_root
from formulary.merge import UpdateOptions, update_override
from formulary.overrides import (
    MODIFICATION_GUIDE,
    ModifyOptions,
    ResetOptions,
    copy_for_edit,
    diff_detailed,
    render_summary,
    reset_override,
    summarize_overrides,
)


@click.command()
@click.argument("name")
@click.option("--project", default="", help="Copy into this project instead of the user tier")
@click.option(
    "--user-root",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Explicit user-tier root (default: workspace root)",
)
@click.pass_context
def modify(ctx: click.Context, name: str, project: str, user_root: Path | None) -> None:
    """Copy a built-in formula into an override for editing."""
    with cli_errors():
        path = copy_for_edit(name, workspace_root(ctx), ModifyOptions(project=project, user_root=user_root))
    click.echo(f"Formula copied to: {path}\n")
    click.echo(MODIFICATION_GUIDE, nl=False)


@click.command()
@click.argument("name", required=False)
@click.pass_context
def diff(ctx: click.Context, name: str | None) -> None:
    """Show the override map, or tier-by-tier diffs for one formula."""
    root = require_workspace(ctx)
    with cli_errors():
        lines = diff_detailed(root, name) if name else render_summary(summarize_overrides(root))
    for line in lines:
        click.echo(line)


@click.command()
@click.argument("name")
@click.option("--project", default="", help="Remove the override from this project")
@click.pass_context
def reset(ctx: click.Context, name: str, project: str) -> None:
    """Remove an override and fall back to the next tier."""
    root = require_workspace(ctx)
    with cli_errors():
        outcome = reset_override(root, name, ResetOptions(project=project))
    click.echo(f"Removed override from {outcome.level} level.")
    if outcome.builtin_exists:
        click.echo(f"Now using built-in version of '{name}'.")
    else:
        click.echo(f"Formula '{name}' is no longer available (was custom, not built-in).")


@click.command()
@click.argument("name")
@click.option("--apply", "apply_merge", is_flag=True, help="Write the merge (keeps a .bak copy)")
@click.pass_context
def update(ctx: click.Context, name: str, apply_merge: bool) -> None:
    """Merge built-in changes into an override with an AI agent."""
    root = require_workspace(ctx)
    click.echo(f"Checking for updates to {name}...\n")
    with cli_errors():
        update_override(
            root,
            name,
            UpdateOptions(apply=apply_merge),
            run_agent=ctx.obj.get("agent_runner"),
            echo=click.echo,
        )


def register(cli: click.Group) -> None:
    """Register override commands with the CLI group."""
    cli.add_command(modify)
    cli.add_command(diff)
    cli.add_command(reset)
    cli.add_command(update)
