"""Typed formula documents built from raw formula bytes.

:func:`parse_formula` is a field-extraction layer, not a validator: it
never raises on malformed input, missing fields stay empty, and unknown
sections are ignored. Only ``convoy`` documents are executable.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from formulary import extract

logger = logging.getLogger(__name__)


class FormulaType(str, Enum):
    TASK = "task"
    WORKFLOW = "workflow"
    CONVOY = "convoy"
    PATROL = "patrol"
    ASPECT = "aspect"
    EXPANSION = "expansion"

    @classmethod
    def parse(cls, raw: str) -> FormulaType | None:
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Leg:
    """One parallel unit of a convoy."""

    id: str
    title: str = ""
    focus: str = ""
    description: str = ""


@dataclass(frozen=True)
class Synthesis:
    """Convergence step. ``depends_on`` is informational only."""

    title: str = ""
    description: str = ""
    depends_on: tuple[str, ...] = ()


@dataclass(frozen=True)
class Output:
    """Where legs and synthesis write results. All fields are templates or literals."""

    directory: str = ""
    leg_pattern: str = ""
    synthesis: str = ""


@dataclass
class FormulaDocument:
    name: str = ""
    description: str = ""
    type: str = ""
    legs: list[Leg] = field(default_factory=list)
    synthesis: Synthesis | None = None
    prompts: dict[str, str] = field(default_factory=dict)
    output: Output | None = None

    @property
    def formula_type(self) -> FormulaType | None:
        return FormulaType.parse(self.type)

    @property
    def is_convoy(self) -> bool:
        return self.formula_type is FormulaType.CONVOY

    @property
    def base_prompt(self) -> str | None:
        return self.prompts.get("base")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "legs": [
                {"id": leg.id, "title": leg.title, "focus": leg.focus, "description": leg.description}
                for leg in self.legs
            ],
            "synthesis": (
                {
                    "title": self.synthesis.title,
                    "description": self.synthesis.description,
                    "depends_on": list(self.synthesis.depends_on),
                }
                if self.synthesis
                else None
            ),
            "prompts": dict(self.prompts),
            "output": (
                {
                    "directory": self.output.directory,
                    "leg_pattern": self.output.leg_pattern,
                    "synthesis": self.output.synthesis,
                }
                if self.output
                else None
            ),
        }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_formula(raw: bytes | str) -> FormulaDocument:
    """Build a FormulaDocument from raw formula content.

    Content that looks like a JSON object is read as the plain-object
    variant; everything else goes through the structured-text reader.
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if text.lstrip().startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.debug("Formula content starts with '{' but is not JSON: %s", exc)
        else:
            if isinstance(data, dict):
                return _from_mapping(data)
    return _from_text(text)


def _from_text(text: str) -> FormulaDocument:
    sections = extract.read_sections(text)
    root = extract.root_section(sections)

    doc = FormulaDocument(
        name=extract.scalar_field(root, "formula"),
        description=extract.scalar_field(root, "description"),
        type=extract.scalar_field(root, "type"),
    )

    for block in extract.repeated_blocks(sections, "legs"):
        leg = Leg(
            id=extract.scalar_field(block, "id"),
            title=extract.scalar_field(block, "title"),
            focus=extract.scalar_field(block, "focus"),
            description=extract.scalar_field(block, "description"),
        )
        if leg.id:
            doc.legs.append(leg)

    syn = extract.singleton_section(sections, "synthesis")
    if syn is not None:
        synthesis = Synthesis(
            title=extract.scalar_field(syn, "title"),
            description=extract.scalar_field(syn, "description"),
            depends_on=tuple(extract.list_field(syn, "depends_on")),
        )
        if synthesis.title or synthesis.description:
            doc.synthesis = synthesis

    prompts = extract.singleton_section(sections, "prompts")
    base = extract.scalar_field(prompts, "base")
    if base:
        doc.prompts["base"] = base

    out = extract.singleton_section(sections, "output")
    if out is not None:
        output = Output(
            directory=extract.scalar_field(out, "directory"),
            leg_pattern=extract.scalar_field(out, "leg_pattern"),
            synthesis=extract.scalar_field(out, "synthesis"),
        )
        if output.directory or output.leg_pattern or output.synthesis:
            doc.output = output

    return doc


def _str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


def _from_mapping(data: dict[str, Any]) -> FormulaDocument:
    doc = FormulaDocument(
        name=_str(data, "formula") or _str(data, "name"),
        description=_str(data, "description"),
        type=_str(data, "type"),
    )

    legs = data.get("legs")
    if isinstance(legs, list):
        for item in legs:
            if not isinstance(item, dict):
                continue
            leg = Leg(
                id=_str(item, "id"),
                title=_str(item, "title"),
                focus=_str(item, "focus"),
                description=_str(item, "description"),
            )
            if leg.id:
                doc.legs.append(leg)

    syn = data.get("synthesis")
    if isinstance(syn, dict):
        deps = syn.get("depends_on")
        synthesis = Synthesis(
            title=_str(syn, "title"),
            description=_str(syn, "description"),
            depends_on=tuple(d for d in deps if isinstance(d, str) and d) if isinstance(deps, list) else (),
        )
        if synthesis.title or synthesis.description:
            doc.synthesis = synthesis

    prompts = data.get("prompts")
    if isinstance(prompts, dict) and _str(prompts, "base"):
        doc.prompts["base"] = _str(prompts, "base")

    out = data.get("output")
    if isinstance(out, dict):
        output = Output(
            directory=_str(out, "directory"),
            leg_pattern=_str(out, "leg_pattern"),
            synthesis=_str(out, "synthesis"),
        )
        if output.directory or output.leg_pattern or output.synthesis:
            doc.output = output

    return doc


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _quote(value: str) -> str:
    """Render a string so parse_formula reads back exactly ``value``."""
    if "\n" in value and value == value.strip() and '"""' not in value and "\\" not in value:
        return f'"""\n{value}\n"""'
    escaped = (
        value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\t", "\\t").replace("\r", "\\r")
    )
    return f'"{escaped}"'


def dumps(doc: FormulaDocument) -> str:
    """Serialize a document to the structured-text formula format."""
    lines: list[str] = []
    if doc.name:
        lines.append(f"formula = {_quote(doc.name)}")
    if doc.type:
        lines.append(f"type = {_quote(doc.type)}")
    if doc.description:
        lines.append(f"description = {_quote(doc.description)}")

    for leg in doc.legs:
        lines += ["", "[[legs]]", f"id = {_quote(leg.id)}"]
        if leg.title:
            lines.append(f"title = {_quote(leg.title)}")
        if leg.focus:
            lines.append(f"focus = {_quote(leg.focus)}")
        if leg.description:
            lines.append(f"description = {_quote(leg.description)}")

    if doc.synthesis is not None:
        lines += ["", "[synthesis]"]
        if doc.synthesis.title:
            lines.append(f"title = {_quote(doc.synthesis.title)}")
        if doc.synthesis.description:
            lines.append(f"description = {_quote(doc.synthesis.description)}")
        if doc.synthesis.depends_on:
            deps = ", ".join(_quote(d) for d in doc.synthesis.depends_on)
            lines.append(f"depends_on = [{deps}]")

    if doc.prompts.get("base"):
        lines += ["", "[prompts]", f"base = {_quote(doc.prompts['base'])}"]

    if doc.output is not None:
        lines += ["", "[output]"]
        if doc.output.directory:
            lines.append(f"directory = {_quote(doc.output.directory)}")
        if doc.output.leg_pattern:
            lines.append(f"leg_pattern = {_quote(doc.output.leg_pattern)}")
        if doc.output.synthesis:
            lines.append(f"synthesis = {_quote(doc.output.synthesis)}")

    return "\n".join(lines) + "\n"
