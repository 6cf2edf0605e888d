"""Exception hierarchy for formulary.

Library code raises these; the CLI layer turns them into ``Error: ...``
lines and exit status 1. Per-unit failures during a convoy run
(link, comment, dispatch, render) are caught by the executor and reported
as warnings instead of propagating.
"""

from __future__ import annotations


class FormularyError(Exception):
    """Base class for all formulary errors."""


class SetupError(FormularyError):
    """Workspace or formula could not be located. Always fatal."""


class WorkspaceNotFoundError(SetupError):
    """No workspace root above the working directory."""


class FormulaNotFoundError(SetupError):
    """Formula is missing from every resolution tier."""

    def __init__(self, name: str, detail: str = "") -> None:
        self.name = name
        msg = f"formula '{name}' not found in search paths or built-in set"
        if detail:
            msg = f"{msg}\n\n{detail}"
        super().__init__(msg)


class RecordCreationError(FormularyError):
    """The work-item store refused to create a record."""


class LinkError(FormularyError):
    """A dependency link between two records could not be added."""


class CommentError(FormularyError):
    """A comment could not be attached to a record."""


class DispatchError(FormularyError):
    """A leg could not be handed to a worker."""


class RenderError(FormularyError):
    """A prompt or path template failed to parse or render."""


class AgentError(FormularyError):
    """The merge agent is missing, failed, or produced nothing."""


class ConflictError(FormularyError):
    """An override operation would clobber or ambiguously target a file."""


class OverrideNotFoundError(FormularyError):
    """The requested override file does not exist."""
