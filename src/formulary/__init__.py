"""Formulary: layered formula resolution, convoy dispatch and override management."""

import logging
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("formulary")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

logging.getLogger(__name__).addHandler(logging.NullHandler())

from formulary.document import FormulaDocument, parse_formula  # noqa: E402
from formulary.resolver import FormulaLocation, resolve_formula  # noqa: E402

__all__ = ["FormulaDocument", "FormulaLocation", "__version__", "parse_formula", "resolve_formula"]
