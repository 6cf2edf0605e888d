"""Foundational TypedDicts for config files and template contexts."""

from __future__ import annotations

from typing import TypedDict


class WorkspaceConfig(TypedDict, total=False):
    """Shape of .formulary/config.json (workspace or project level)."""

    default_agent: str
    default_formula: str
    default_target: str
    record_prefix: str


class ChangedFile(TypedDict):
    path: str
    additions: int
    deletions: int


class LegContext(TypedDict):
    id: str
    title: str
    focus: str
    description: str


class OutputContext(TypedDict):
    directory: str
    synthesis: str


class TemplateContext(TypedDict, total=False):
    """Variables visible to prompt and path templates."""

    formula_name: str
    target_description: str
    review_id: str
    pr_number: int
    pr_title: str
    leg: LegContext
    changed_files: list[ChangedFile]
    files: list[str]
    output_path: str
    output: OutputContext
