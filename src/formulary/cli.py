"""CLI for formulary.

Convention-based: discovers the workspace by walking up from cwd to
``.formulary/workspace.json`` (or ``$FORMULARY_ROOT``).

Usage:
    formulary init                          # Mark cwd as the workspace root
    formulary list                          # Built-in, overridden and custom formulas
    formulary show code-review              # Formula details
    formulary run code-review --pr 42       # Create convoy records and dispatch legs
    formulary run code-review --dry-run     # Preview without side effects
    formulary create my-task --type task    # Scaffold a new formula
    formulary modify code-review            # Copy a built-in for editing
    formulary diff [code-review]            # Override map or detailed diff
    formulary reset code-review             # Remove an override
    formulary update code-review --apply    # Agent-assisted merge of built-in changes
    formulary doctor [--fix]                # Health checks
"""

from __future__ import annotations

import click

from formulary import __version__
from formulary.cli_commands import admin, formulas, overrides
from formulary.core import FORMULARY_DIR_NAME, find_workspace_root
from formulary.errors import WorkspaceNotFoundError
from formulary.logging import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="formulary")
@click.option("--verbose", is_flag=True, help="Debug-level entries in the log file")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Formulary: layered workflow formulas and convoy dispatch."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("verbose", verbose)
    if "workspace_root" not in ctx.obj:
        try:
            ctx.obj["workspace_root"] = find_workspace_root()
        except WorkspaceNotFoundError:
            ctx.obj["workspace_root"] = None
    root = ctx.obj["workspace_root"]
    if root is not None:
        setup_logging(root / FORMULARY_DIR_NAME, verbose=verbose)


admin.register(cli)
formulas.register(cli)
overrides.register(cli)


if __name__ == "__main__":
    cli()
