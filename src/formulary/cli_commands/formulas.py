"""CLI commands for formulas: list, show, run, create."""

from __future__ import annotations

import json as json_mod
from pathlib import Path

import click

from formulary import embedded
from formulary.cli_common import cli_errors, get_dispatcher, get_pr_source, get_store, workspace_root
from formulary.convoy import ConvoyExecutor, RunOptions, choose_target
from formulary.core import DEFAULT_RECORD_PREFIX, effective_config
from formulary.document import parse_formula
from formulary.errors import SetupError
from formulary.resolver import (
    Override,
    OverrideLevel,
    active_override,
    current_project,
    find_custom_formulas,
    read_formula,
    resolve_formula,
    scan_all_overrides,
)
from formulary.scaffold import SCAFFOLD_TYPES, create_formula


def _override_label(level: OverrideLevel, project_name: str) -> str:
    if level is OverrideLevel.PROJECT:
        return f"project override ({project_name})"
    return "user override"


@click.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_formulas(ctx: click.Context, as_json: bool) -> None:
    """List built-in formulas, their overrides and custom formulas."""
    root = workspace_root(ctx)
    names = embedded.builtin_names()
    overrides = scan_all_overrides(root) if root is not None else []
    custom = find_custom_formulas(root) if root is not None else []

    active: dict[str, Override] = {}
    for name in names:
        winner = active_override([o for o in overrides if o.name == name])
        if winner is not None:
            active[name] = winner

    if as_json:
        data = {
            "builtin": [
                {
                    "name": name,
                    "override": active[name].level.value if name in active else None,
                    "project": active[name].project_name if name in active else "",
                }
                for name in names
            ],
            "custom": [
                {"name": o.name, "level": o.level.value, "project": o.project_name, "path": str(o.path)}
                for o in custom
            ],
        }
        click.echo(json_mod.dumps(data, indent=2))
        return

    click.echo(f"Built-in Formulas ({len(names)})")
    click.echo("-" * 22)
    for name in names:
        if name in active:
            o = active[name]
            click.echo(f"  {name:<28} <- {_override_label(o.level, o.project_name)}")
        else:
            click.echo(f"  {name}")

    if custom:
        click.echo(f"\nCustom Formulas ({len(custom)})")
        click.echo("-" * 19)
        for o in custom:
            location = f"(project: {o.project_name})" if o.level is OverrideLevel.PROJECT else "(user)"
            click.echo(f"  {o.name:<28} {location}")

    click.echo("\nRun 'formulary diff' to see differences.")
    click.echo("Run 'formulary modify <name>' to customize a formula.")


@click.command()
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, name: str, as_json: bool) -> None:
    """Show formula details."""
    with cli_errors():
        location = resolve_formula(name, workspace_root=workspace_root(ctx))
        doc = parse_formula(read_formula(location))

    source = "built-in" if location.is_built_in() else location.path
    if as_json:
        data = doc.to_dict()
        data["source"] = source
        click.echo(json_mod.dumps(data, indent=2))
        return

    click.echo(doc.name or name)
    click.echo(f"  Source: {source}")
    if doc.type:
        click.echo(f"  Type: {doc.type}")
    if doc.description:
        click.echo(f"\n{doc.description}")
    if doc.legs:
        click.echo("\nLegs:")
        for leg in doc.legs:
            click.echo(f"  - {leg.id}: {leg.title}")
            if leg.focus:
                click.echo(f"    Focus: {leg.focus}")
    if doc.synthesis is not None:
        click.echo("\nSynthesis:")
        click.echo(f"  {doc.synthesis.title}")


@click.command()
@click.argument("name", required=False)
@click.option("--pr", "pr_number", default=0, type=click.IntRange(min=0), help="Pull request number to review")
@click.option("--target", default="", help="Dispatch target (default: current project)")
@click.option("--dry-run", is_flag=True, help="Show what would happen without creating or dispatching anything")
@click.pass_context
def run(ctx: click.Context, name: str | None, pr_number: int, target: str, dry_run: bool) -> None:
    """Run a convoy formula: create tracked records and dispatch every leg."""
    root = workspace_root(ctx)
    project_dir = current_project(root) if root is not None else None
    config = effective_config(root, project_dir)

    with cli_errors():
        if not name:
            name = config.get("default_formula", "")
            if not name:
                msg = (
                    "no formula specified and no default formula configured\n\n"
                    'To set one, add "default_formula": "<formula-name>" to .formulary/config.json'
                )
                raise SetupError(msg)
            click.echo(f"Note: Using default formula: {name}")

        resolved_target = choose_target(target, root, project_dir, config)
        if not resolved_target:
            msg = "no dispatch target; pass --target or run inside a workspace"
            raise SetupError(msg)

        location = resolve_formula(name, workspace_root=root)
        doc = parse_formula(read_formula(location))

        options = RunOptions(
            target=resolved_target,
            pr_number=pr_number,
            dry_run=dry_run,
            record_prefix=config.get("record_prefix", "") or DEFAULT_RECORD_PREFIX,
        )
        executor = ConvoyExecutor(
            get_store(ctx, root),
            get_dispatcher(ctx),
            get_pr_source(ctx),
            echo=click.echo,
        )
        executor.execute(doc, name, options)


@click.command()
@click.argument("name")
@click.option(
    "--type",
    "formula_type",
    default="task",
    type=click.Choice(list(SCAFFOLD_TYPES)),
    help="Formula type (default: task)",
)
def create(name: str, formula_type: str) -> None:
    """Create a starter formula file."""
    with cli_errors():
        path = create_formula(name, formula_type, cwd=Path.cwd())
    click.echo(f"Created formula: {path}")
    click.echo("\nNext steps:")
    click.echo(f"  1. Edit the formula: {path}")
    click.echo(f"  2. View it:          formulary show {name}")
    click.echo(f"  3. Run it:           formulary run {name}")


def register(cli: click.Group) -> None:
    """Register formula commands with the CLI group."""
    cli.add_command(list_formulas)
    cli.add_command(show)
    cli.add_command(run)
    cli.add_command(create)
