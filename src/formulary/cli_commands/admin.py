"""CLI commands for admin: init, doctor."""

from __future__ import annotations

from pathlib import Path

import click

from formulary.cli_common import cli_errors, workspace_root
from formulary.core import FORMULARY_DIR_NAME, init_workspace
from formulary.doctor import fix_legacy_formulas, run_doctor


@click.command()
@click.option("--name", default=None, help="Workspace name (default: directory name)")
def init(name: str | None) -> None:
    """Mark the current directory as a formulary workspace root."""
    cwd = Path.cwd()
    fdir = init_workspace(cwd, name)
    click.echo(f"Initialized {FORMULARY_DIR_NAME}/ in {cwd}")
    click.echo(f"  User formulas: {fdir / 'formulas'}")
    click.echo(f"  Project registry: {fdir / 'projects.json'}")


@click.command()
@click.option("--fix", is_flag=True, help="Remove local copies identical to the built-in version")
@click.option("--verbose", "-v", "show_all", is_flag=True, help="Show passing checks too")
@click.pass_context
def doctor(ctx: click.Context, fix: bool, show_all: bool) -> None:
    """Run health checks on the formula tiers."""
    root = workspace_root(ctx)
    results = run_doctor(root)

    passed = sum(1 for r in results if r.passed)
    failed = sum(1 for r in results if not r.passed)

    click.echo(f"formulary doctor  --  {passed} passed  {failed} issues")
    click.echo()

    for r in results:
        if r.passed and not show_all:
            continue
        click.echo(f"  {r.icon}  {r.name}: {r.message}")
        if not r.passed and r.fix_hint:
            click.echo(f"       -> {r.fix_hint}")

    if fix and root is not None:
        with cli_errors():
            removed = fix_legacy_formulas(root)
        if removed:
            click.echo(f"\nRemoved {len(removed)} redundant formula copies:")
            for path in removed:
                click.echo(f"  - {path}")

    if failed == 0:
        click.echo("\nAll checks passed.")


def register(cli: click.Group) -> None:
    """Register admin commands with the CLI group."""
    cli.add_command(init)
    cli.add_command(doctor)
