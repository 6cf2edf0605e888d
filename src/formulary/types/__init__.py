"""TypedDict contracts shared across formulary modules."""

from formulary.types.core import (
    ChangedFile,
    LegContext,
    OutputContext,
    TemplateContext,
    WorkspaceConfig,
)

__all__ = [
    "ChangedFile",
    "LegContext",
    "OutputContext",
    "TemplateContext",
    "WorkspaceConfig",
]
