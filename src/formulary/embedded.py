"""Built-in formula set shipped inside the package.

``formulary/formulas/*.formula.toml`` is the source of truth for defaults.
Local copies under ``.formulary/formulas/`` are overrides only.

Resolution order (most specific wins):
  1. Project:   <project>/.formulary/formulas/
  2. User:      <workspace>/.formulary/formulas/
  3. Built-in:  formulary/formulas/ (this set)
"""

from __future__ import annotations

import hashlib
import importlib.resources
import logging
from pathlib import Path

from formulary.core import PRIMARY_EXTENSION
from formulary.errors import ConflictError, FormularyError, FormulaNotFoundError

logger = logging.getLogger(__name__)

_PACKAGE = "formulary.formulas"

HEADER_CREATED = "# Formula override created by formulary modify"
HEADER_BASE_PREFIX = "# Based on embedded version: sha256:"
HEADER_UPDATE_PREFIX = "# To update: formulary update"


def _to_filename(name: str) -> str:
    if len(name) > len(PRIMARY_EXTENSION) and name.endswith(PRIMARY_EXTENSION):
        return name
    return name + PRIMARY_EXTENSION


def _to_name(filename: str) -> str:
    if len(filename) > len(PRIMARY_EXTENSION) and filename.endswith(PRIMARY_EXTENSION):
        return filename[: -len(PRIMARY_EXTENSION)]
    return filename


def get_builtin(name: str) -> bytes:
    """Return the exact bytes of a built-in formula.

    The name may carry the ``.formula.toml`` suffix or not.
    Raises FormulaNotFoundError when there is no such built-in.
    """
    ref = importlib.resources.files(_PACKAGE).joinpath(_to_filename(name))
    try:
        return ref.read_bytes()
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
        raise FormulaNotFoundError(_to_name(name), "not a built-in formula") from exc


def builtin_names() -> list[str]:
    """Sorted built-in formula names, suffix stripped."""
    names = [
        _to_name(entry.name)
        for entry in importlib.resources.files(_PACKAGE).iterdir()
        if entry.is_file() and entry.name.endswith(PRIMARY_EXTENSION)
    ]
    return sorted(names)


def builtin_exists(name: str) -> bool:
    return importlib.resources.files(_PACKAGE).joinpath(_to_filename(name)).is_file()


def content_hash(content: bytes) -> str:
    """SHA-256 hex digest of raw content."""
    return hashlib.sha256(content).hexdigest()


def builtin_hash(name: str) -> str:
    """SHA-256 hex digest of the built-in formula's exact bytes."""
    return content_hash(get_builtin(name))


def truncate_hash(value: str) -> str:
    """Short form of a hash for display."""
    return value[:12] if len(value) > 12 else value


def extract_base_hash(content: bytes | str) -> str:
    """Return the hash recorded by the override header, or '' if absent."""
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    for line in text.split("\n"):
        line = line.strip()
        if line.startswith(HEADER_BASE_PREFIX):
            return line[len(HEADER_BASE_PREFIX) :].strip()
    return ""


def override_header(name: str, base_hash: str) -> str:
    """The three managed comment lines (plus a blank separator) for an override."""
    return f"{HEADER_CREATED}\n{HEADER_BASE_PREFIX}{base_hash}\n{HEADER_UPDATE_PREFIX} {name}\n\n"


def strip_override_header(content: str) -> str:
    """Drop leading managed header lines and the blank lines after them."""
    lines = content.split("\n")
    start = 0
    for i, line in enumerate(lines):
        trimmed = line.strip()
        if not trimmed:
            continue
        if trimmed.startswith(("# Formula override created by", HEADER_BASE_PREFIX, HEADER_UPDATE_PREFIX)):
            start = i + 1
            continue
        break

    while start < len(lines) and not lines[start].strip():
        start += 1

    if start >= len(lines):
        return content
    return "\n".join(lines[start:])


def copy_builtin_to(name: str, dest_dir: Path) -> Path:
    """Copy a built-in formula into dest_dir with the managed header prepended.

    Returns the path written. Raises ConflictError if a file is already there.
    """
    content = get_builtin(name)
    header = override_header(_to_name(name), content_hash(content))

    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        msg = f"creating directory {dest_dir}: {exc}"
        raise FormularyError(msg) from exc
    dest_path = dest_dir / _to_filename(name)
    if dest_path.exists():
        msg = f"Override already exists at {dest_path}. Use 'formulary reset {_to_name(name)}' to remove it first."
        raise ConflictError(msg)

    try:
        dest_path.write_bytes(header.encode() + content)
    except OSError as exc:
        msg = f"writing {dest_path}: {exc}"
        raise FormularyError(msg) from exc
    logger.info("Copied built-in formula to %s", dest_path, extra={"formula": _to_name(name)})
    return dest_path
