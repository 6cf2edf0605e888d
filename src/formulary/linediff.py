"""Positional line comparison for override diffs.

Lines are compared index for index, so an insertion near the top shows
every later line as changed. Good enough for small, mostly aligned
formula files; it is not a general diff.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

MAX_REPORTED = 20
COLUMN_WIDTH = 36
_RULE = "-" * 78


class DiffKind(str, Enum):
    CHANGED = "changed"
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class LineDiff:
    kind: DiffKind
    left: str = ""
    right: str = ""


def find_line_differences(left: list[str], right: list[str]) -> list[LineDiff]:
    """Index-aligned differences; lines equal after trimming are skipped."""
    diffs: list[LineDiff] = []
    for i in range(max(len(left), len(right))):
        lhs = left[i] if i < len(left) else ""
        rhs = right[i] if i < len(right) else ""
        if lhs.strip() == rhs.strip():
            continue
        if i >= len(left):
            diffs.append(LineDiff(DiffKind.ADDED, right=rhs))
        elif i >= len(right):
            diffs.append(LineDiff(DiffKind.REMOVED, left=lhs))
        else:
            diffs.append(LineDiff(DiffKind.CHANGED, left=lhs, right=rhs))
    return diffs


def truncate_line(line: str, width: int = COLUMN_WIDTH) -> str:
    line = line.strip()
    if len(line) <= width:
        return line
    return line[: width - 3] + "..."


def render_differences(
    left_text: str,
    right_text: str,
    left_label: str,
    right_label: str,
    limit: int = MAX_REPORTED,
) -> list[str]:
    """Two-column report of the differences, at most ``limit`` rows."""
    diffs = find_line_differences(left_text.split("\n"), right_text.split("\n"))
    if not diffs:
        return ["  (no differences)"]

    col = COLUMN_WIDTH + 2
    out = [_RULE, f"{left_label:<{col}} | {right_label}", _RULE]
    for shown, d in enumerate(diffs):
        if shown >= limit:
            out.append(f"  ... ({len(diffs) - shown} more differences)")
            break
        if d.kind is DiffKind.CHANGED:
            left, right = truncate_line(d.left), truncate_line(d.right)
        elif d.kind is DiffKind.REMOVED:
            left, right = truncate_line(d.left), "(removed)"
        else:
            left, right = "(added)", truncate_line(d.right)
        out.append(f"{left:<{col}} | {right}")
    out.append(_RULE)
    return out
