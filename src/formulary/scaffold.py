"""Starter formula files for ``formulary create``."""

from __future__ import annotations

import logging
from pathlib import Path

from formulary.core import FORMULARY_DIR_NAME, PRIMARY_EXTENSION, formulas_dir
from formulary.errors import ConflictError, FormularyError

logger = logging.getLogger(__name__)

SCAFFOLD_TYPES: tuple[str, ...] = ("task", "workflow", "patrol")


def _title(name: str) -> str:
    return name.replace("-", " ").title()


def task_template(name: str) -> str:
    return f'''# Formula: {name}
# Type: task
# Created by: formulary create

description = """{_title(name)} task.

Add a detailed description here."""
formula = "{name}"
type = "task"
version = 1

# Single step task
[[steps]]
id = "do-task"
title = "Execute task"
description = """
Perform the main task work.

**Steps:**
1. Understand the requirements
2. Implement the changes
3. Verify the work
"""

# Variables that can be passed when running the formula
# [vars]
# [vars.issue]
# description = "Issue ID to work on"
# required = true
'''


def workflow_template(name: str) -> str:
    return f'''# Formula: {name}
# Type: workflow
# Created by: formulary create

description = """{_title(name)} workflow.

A multi-step workflow with dependencies between steps."""
formula = "{name}"
type = "workflow"
version = 1

[[steps]]
id = "setup"
title = "Setup environment"
description = """
Prepare the environment for the workflow.
"""

[[steps]]
id = "implement"
title = "Implement changes"
needs = ["setup"]
description = """
Make the necessary code changes.
"""

[[steps]]
id = "test"
title = "Run tests"
needs = ["implement"]
description = """
Verify the changes work correctly.
"""

[[steps]]
id = "complete"
title = "Complete workflow"
needs = ["test"]
description = """
Finalize and clean up.
"""

[vars]
[vars.issue]
description = "Issue ID to work on"
required = true
'''


def patrol_template(name: str) -> str:
    return f'''# Formula: {name}
# Type: patrol
# Created by: formulary create
#
# Patrol formulas describe repeating inspection cycles.

description = """{_title(name)} patrol.

A patrol formula for periodic checks."""
formula = "{name}"
type = "patrol"
version = 1

[[steps]]
id = "check"
title = "Run patrol check"
description = """
Perform the patrol inspection.

**Check for:**
1. Health indicators
2. Warning signs
3. Items needing attention
"""

# Optional: remediation step
# [[steps]]
# id = "remediate"
# title = "Fix issues"
# needs = ["check"]
'''


_TEMPLATES = {
    "task": task_template,
    "workflow": workflow_template,
    "patrol": patrol_template,
}


def scaffold_dir(cwd: Path | None = None, home: Path | None = None) -> Path:
    """Project formulas dir when cwd has ``.formulary/``, else the home one."""
    cwd = cwd or Path.cwd()
    if (cwd / FORMULARY_DIR_NAME).is_dir():
        return formulas_dir(cwd)
    return formulas_dir(home or Path.home())


def create_formula(name: str, formula_type: str = "task", cwd: Path | None = None, home: Path | None = None) -> Path:
    """Write a starter formula and return its path. Never overwrites."""
    render = _TEMPLATES.get(formula_type)
    if render is None:
        msg = f"unknown formula type: {formula_type} (use: {', '.join(SCAFFOLD_TYPES)})"
        raise FormularyError(msg)

    target_dir = scaffold_dir(cwd, home)
    path = target_dir / f"{name}{PRIMARY_EXTENSION}"
    if path.exists():
        msg = f"formula already exists: {path}"
        raise ConflictError(msg)

    target_dir.mkdir(parents=True, exist_ok=True)
    path.write_text(render(name))
    logger.info("Created %s formula at %s", formula_type, path, extra={"formula": name})
    return path
