"""Tolerant structural reader for formula source text.

Reads the small TOML subset formulas use without validating the whole
file. The grammar, one statement per line::

    statement  := header | assignment | comment | <anything else: skipped>
    header     := "[" name "]" | "[[" name "]]"
    assignment := key "=" value [comment]
    value      := ml-basic | ml-literal | basic | literal | array | bare
    array      := "[" { value [","] } "]"        (may span lines)

Multiline strings are returned verbatim and trimmed. Basic strings honour
backslash escapes; literal strings do not. A bare value is the rest of the
line up to a comment, trimmed. A statement that does not fit the grammar
(unterminated string, missing ``=``) is skipped and reading resumes on the
next line, so :func:`read_statements` never raises.

Sections are bounded by the next header of any kind. Keys before the
first header belong to the root section (name ``""``). Within a section
the first assignment of a key wins.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Union

Value = Union[str, list["Value"]]

_BARE_KEY_CHARS = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789_-.")
_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
}
# Nested arrays deeper than this are treated as malformed.
_MAX_ARRAY_DEPTH = 16


@dataclass(frozen=True)
class Header:
    name: str
    array: bool
    line: int


@dataclass(frozen=True)
class Assignment:
    key: str
    value: Value
    line: int


Statement = Union[Header, Assignment]


@dataclass
class Section:
    """A header and the assignments that follow it up to the next header."""

    name: str
    array: bool = False
    fields: dict[str, Value] = field(default_factory=dict)

    def get(self, key: str) -> Value | None:
        return self.fields.get(key)


class _Malformed(Exception):
    """Internal: the current statement does not fit the grammar."""


class _Reader:
    def __init__(self, text: str) -> None:
        self.text = text.replace("\r\n", "\n")
        self.pos = 0
        self.line = 1

    # -- cursor helpers -------------------------------------------------

    def _peek(self, n: int = 1) -> str:
        return self.text[self.pos : self.pos + n]

    def _at_end(self) -> bool:
        return self.pos >= len(self.text)

    def _advance(self, n: int = 1) -> str:
        chunk = self.text[self.pos : self.pos + n]
        self.line += chunk.count("\n")
        self.pos += n
        return chunk

    def _skip_inline_ws(self) -> None:
        while not self._at_end() and self.text[self.pos] in " \t":
            self.pos += 1

    def _skip_to_eol(self) -> None:
        end = self.text.find("\n", self.pos)
        self.pos = len(self.text) if end == -1 else end

    def _consume_eol(self) -> None:
        if self._peek() == "\n":
            self._advance()

    def _expect_line_end(self) -> None:
        """After a statement only whitespace or a comment may remain."""
        self._skip_inline_ws()
        if self._peek() == "#":
            self._skip_to_eol()
        if not self._at_end() and self._peek() != "\n":
            raise _Malformed

    # -- statements -----------------------------------------------------

    def statements(self) -> Iterator[Statement]:
        while not self._at_end():
            start_pos, start_line = self.pos, self.line
            try:
                stmt = self._statement()
            except _Malformed:
                self.pos, self.line = start_pos, start_line
                self._skip_to_eol()
                stmt = None
            self._consume_eol()
            if stmt is not None:
                yield stmt

    def _statement(self) -> Statement | None:
        self._skip_inline_ws()
        ch = self._peek()
        if ch in ("", "\n"):
            return None
        if ch == "#":
            self._skip_to_eol()
            return None
        if ch == "[":
            return self._header()
        return self._assignment()

    def _header(self) -> Header:
        line = self.line
        array = self._peek(2) == "[["
        self._advance(2 if array else 1)
        close = "]]" if array else "]"
        end = self.text.find(close, self.pos)
        eol = self.text.find("\n", self.pos)
        if end == -1 or (eol != -1 and end > eol):
            raise _Malformed
        name = self.text[self.pos : end].strip()
        if not name or "[" in name or "]" in name:
            raise _Malformed
        self._advance(end - self.pos + len(close))
        self._expect_line_end()
        return Header(name=name, array=array, line=line)

    def _assignment(self) -> Assignment:
        line = self.line
        key = self._key()
        self._skip_inline_ws()
        if self._peek() != "=":
            raise _Malformed
        self._advance()
        self._skip_inline_ws()
        value = self._value(depth=0, in_array=False)
        self._expect_line_end()
        return Assignment(key=key, value=value, line=line)

    def _key(self) -> str:
        ch = self._peek()
        if ch in ('"', "'"):
            return self._single_line_string(ch)
        start = self.pos
        while not self._at_end() and self.text[self.pos] in _BARE_KEY_CHARS:
            self.pos += 1
        if self.pos == start:
            raise _Malformed
        return self.text[start : self.pos]

    # -- values ---------------------------------------------------------

    def _value(self, *, depth: int, in_array: bool) -> Value:
        if self._peek(3) in ('"""', "'''"):
            return self._multiline_string(self._peek(3))
        ch = self._peek()
        if ch in ('"', "'"):
            return self._single_line_string(ch)
        if ch == "[":
            return self._array(depth + 1)
        return self._bare(in_array=in_array)

    def _multiline_string(self, delim: str) -> str:
        self._advance(3)
        start = self.pos
        i = start
        while True:
            end = self.text.find(delim, i)
            if end == -1:
                raise _Malformed
            # An escaped quote run does not close a basic multiline string.
            if delim == '"""' and _is_escaped(self.text, end):
                i = end + 1
                continue
            break
        # Up to two extra quotes belong to the content (TOML allows """"x"""").
        extra = 0
        while extra < 2 and self.text[end + 3 + extra : end + 4 + extra] == delim[0]:
            extra += 1
        content = self.text[start : end + extra]
        self._advance(end + extra + 3 - self.pos)
        return content.strip()

    def _single_line_string(self, quote: str) -> str:
        self._advance()
        out: list[str] = []
        while True:
            if self._at_end():
                raise _Malformed
            ch = self.text[self.pos]
            if ch == "\n":
                raise _Malformed
            if ch == quote:
                self._advance()
                return "".join(out)
            if ch == "\\" and quote == '"':
                out.append(self._escape())
                continue
            out.append(ch)
            self.pos += 1

    def _escape(self) -> str:
        self.pos += 1  # backslash
        if self._at_end():
            raise _Malformed
        ch = self.text[self.pos]
        if ch in _ESCAPES:
            self.pos += 1
            return _ESCAPES[ch]
        if ch in ("u", "U"):
            width = 4 if ch == "u" else 8
            digits = self.text[self.pos + 1 : self.pos + 1 + width]
            try:
                decoded = chr(int(digits, 16)) if len(digits) == width else None
            except ValueError:
                decoded = None
            if decoded is not None:
                self.pos += 1 + width
                return decoded
        # Unknown escape: keep it literally.
        return "\\"

    def _array(self, depth: int) -> list[Value]:
        if depth > _MAX_ARRAY_DEPTH:
            raise _Malformed
        self._advance()  # [
        items: list[Value] = []
        while True:
            self._skip_array_filler()
            if self._at_end():
                raise _Malformed
            if self._peek() == "]":
                self._advance()
                return items
            items.append(self._value(depth=depth, in_array=True))
            self._skip_array_filler()
            if self._peek() == ",":
                self._advance()
            elif self._peek() != "]":
                raise _Malformed

    def _skip_array_filler(self) -> None:
        while not self._at_end():
            ch = self.text[self.pos]
            if ch in " \t\n":
                self._advance()
            elif ch == "#":
                self._skip_to_eol()
            else:
                return

    def _bare(self, *, in_array: bool) -> str:
        start = self.pos
        stops = "#\n,]" if in_array else "#\n"
        while not self._at_end() and self.text[self.pos] not in stops:
            self.pos += 1
        value = self.text[start : self.pos].strip()
        if not value:
            raise _Malformed
        return value


def _is_escaped(text: str, idx: int) -> bool:
    backslashes = 0
    j = idx - 1
    while j >= 0 and text[j] == "\\":
        backslashes += 1
        j -= 1
    return backslashes % 2 == 1


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def read_statements(text: str) -> list[Statement]:
    """Tokenize text into headers and assignments, skipping anything malformed."""
    return list(_Reader(text).statements())


def split_sections(statements: Iterable[Statement]) -> list[Section]:
    """Group statements into sections. The first section is always the root."""
    sections = [Section(name="")]
    for stmt in statements:
        if isinstance(stmt, Header):
            sections.append(Section(name=stmt.name, array=stmt.array))
        else:
            sections[-1].fields.setdefault(stmt.key, stmt.value)
    return sections


def read_sections(text: str) -> list[Section]:
    return split_sections(read_statements(text))


def root_section(sections: list[Section]) -> Section:
    return sections[0]


def repeated_blocks(sections: list[Section], name: str) -> list[Section]:
    """All ``[[name]]`` blocks in document order."""
    return [s for s in sections if s.array and s.name == name]


def singleton_section(sections: list[Section], name: str) -> Section | None:
    """The first ``[name]`` section, or None."""
    for s in sections:
        if not s.array and s.name == name:
            return s
    return None


def scalar_field(section: Section | None, key: str) -> str:
    """String form of a field; '' when missing or not a scalar."""
    if section is None:
        return ""
    value = section.get(key)
    if isinstance(value, str):
        return value
    return ""


def list_field(section: Section | None, key: str) -> list[str]:
    """A list of non-empty strings. A scalar is split on commas."""
    if section is None:
        return []
    value = section.get(key)
    if value is None:
        return []
    raw: list[Value] = value if isinstance(value, list) else value.strip("[]").split(",")
    result: list[str] = []
    for item in raw:
        if not isinstance(item, str):
            continue
        item = item.strip().strip("\"'")
        if item:
            result.append(item)
    return result
