"""Prompt and path template rendering (Jinja2).

Undefined variables render as empty strings. Any error raised while
compiling or rendering, syntax or runtime, becomes a RenderError; callers
that must not fail use :func:`render_or_default`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from jinja2 import Environment, TemplateError

from formulary.errors import RenderError

logger = logging.getLogger(__name__)

_env = Environment(autoescape=False, keep_trailing_newline=True)


def render_template(text: str, context: Mapping[str, Any]) -> str:
    """Render text against context. Raises RenderError on failure."""
    try:
        return _env.from_string(text).render(**context)
    except (TemplateError, Exception) as exc:
        msg = f"rendering template: {exc}"
        raise RenderError(msg) from exc


def render_or_default(text: str, context: Mapping[str, Any], default: str) -> str:
    """Render text, returning default when text is empty or fails to render."""
    if not text:
        return default
    try:
        return render_template(text, context)
    except RenderError as exc:
        logger.debug("Template fell back to default %r: %s", default, exc)
        return default
