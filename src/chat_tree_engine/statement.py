"""
Statement parser.

Statements configure providers, chats and contexts::

    \\new-provider "fast" :host "anthropic" :max-tokens 1000 :temperature 0.2
    \\new-chat "ideas" :provider "fast"
    \\chat "ideas" :hash "94df98"
    \\new-ctx "docs" :dir "./docs" :description "Project notes"
    \\list-chat

A statement is a backslash keyword, a quoted name (except for singleton
commands), and ``:property value`` pairs.  Values are quoted strings,
integers, or reals, checked against the command's property table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from chat_tree_engine.errors import StatementError


class PropertyType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    REAL = "real"


PropertyValue = str | int | float


@dataclass(frozen=True)
class CommandFrame:
    """Grammar entry for one keyword."""

    keyword: str
    required: dict[str, PropertyType] = field(default_factory=dict)
    optional: dict[str, PropertyType] = field(default_factory=dict)
    singleton: bool = False

    def property_type(self, name: str) -> PropertyType | None:
        return self.required.get(name) or self.optional.get(name)


COMMANDS: dict[str, CommandFrame] = {
    "new-provider": CommandFrame(
        keyword="new-provider",
        required={"host": PropertyType.STRING},
        optional={
            "base-url": PropertyType.STRING,
            "system-prompt": PropertyType.STRING,
            "max-tokens": PropertyType.INTEGER,
            "temperature": PropertyType.REAL,
        },
    ),
    "new-chat": CommandFrame(
        keyword="new-chat",
        required={"provider": PropertyType.STRING},
    ),
    "chat": CommandFrame(
        keyword="chat",
        optional={"hash": PropertyType.STRING},
    ),
    "new-ctx": CommandFrame(
        keyword="new-ctx",
        optional={
            "dir": PropertyType.STRING,
            "description": PropertyType.STRING,
        },
    ),
    "list-chat": CommandFrame(keyword="list-chat", singleton=True),
    "list-ctx": CommandFrame(keyword="list-ctx", singleton=True),
}


@dataclass
class Statement:
    """A parsed statement."""

    keyword: str
    name: str = ""
    properties: dict[str, PropertyValue] = field(default_factory=dict)

    def get(self, key: str, default: PropertyValue | None = None) -> PropertyValue | None:
        return self.properties.get(key, default)


_IDENTIFIER_RE = re.compile(r"[A-Za-z0-9_-]+")
_INTEGER_RE = re.compile(r"-?\d+(?=\s|$)")
_REAL_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)(?=\s|$)")


class _Parser:
    """Single-pass recursive-descent parser over one statement."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.idx = 0

    def error(self, message: str) -> StatementError:
        return StatementError(f"{message} at position {self.idx}")

    def at_end(self) -> bool:
        return self.idx >= len(self.text)

    def skip_whitespace(self) -> None:
        while not self.at_end() and self.text[self.idx] in " \t\r\n":
            self.idx += 1

    def parse(self) -> Statement:
        self.skip_whitespace()
        if self.at_end() or self.text[self.idx] != "\\":
            raise self.error("expected a command starting with '\\'")

        frame = self.parse_keyword()
        statement = Statement(keyword=frame.keyword)

        self.skip_whitespace()
        if frame.singleton:
            if not self.at_end():
                raise self.error(f"\\{frame.keyword} takes no arguments")
            return statement

        if self.at_end() or self.text[self.idx] != '"':
            raise self.error("missing command name")
        statement.name = self.parse_string()
        if not statement.name:
            raise self.error("command name must not be empty")

        self.parse_properties(frame, statement)
        return statement

    def parse_keyword(self) -> CommandFrame:
        self.idx += 1  # backslash
        start = self.idx
        while not self.at_end() and not self.text[self.idx].isspace():
            self.idx += 1
        keyword = self.text[start : self.idx]
        frame = COMMANDS.get(keyword)
        if frame is None:
            raise StatementError(f"unknown command: \\{keyword}")
        return frame

    def parse_properties(self, frame: CommandFrame, statement: Statement) -> None:
        while True:
            self.skip_whitespace()
            if self.at_end():
                break
            if self.text[self.idx] != ":":
                raise self.error(f"expected ':' but found {self.text[self.idx]!r}")
            self.idx += 1

            match = _IDENTIFIER_RE.match(self.text, self.idx)
            if match is None:
                raise self.error("missing property name")
            prop = match.group(0)
            self.idx = match.end()

            prop_type = frame.property_type(prop)
            if prop_type is None:
                raise StatementError(f"invalid, unknown property for \\{frame.keyword}: {prop}")

            self.skip_whitespace()
            statement.properties[prop] = self.parse_value(prop, prop_type)

        for prop in frame.required:
            if prop not in statement.properties:
                raise StatementError(f"missing required property: {prop}")

    def parse_value(self, prop: str, prop_type: PropertyType) -> PropertyValue:
        if prop_type is PropertyType.STRING:
            if self.at_end() or self.text[self.idx] != '"':
                raise self.error(f"{prop} must be a string")
            return self.parse_string()

        pattern = _INTEGER_RE if prop_type is PropertyType.INTEGER else _REAL_RE
        match = pattern.match(self.text, self.idx)
        if match is None:
            kind = "an integer" if prop_type is PropertyType.INTEGER else "a real number"
            raise self.error(f"{prop} must be {kind}")
        self.idx = match.end()
        if prop_type is PropertyType.INTEGER:
            return int(match.group(0))
        return float(match.group(0))

    def parse_string(self) -> str:
        self.idx += 1  # opening quote
        chars: list[str] = []
        while not self.at_end():
            ch = self.text[self.idx]
            if ch == "\\" and self.idx + 1 < len(self.text) and self.text[self.idx + 1] == '"':
                chars.append('"')
                self.idx += 2
                continue
            if ch == '"':
                self.idx += 1
                return "".join(chars)
            chars.append(ch)
            self.idx += 1
        raise self.error("unterminated string")


def parse_statement(text: str) -> Statement:
    """
    Parse one statement.

    Raises:
        StatementError: For unknown commands or properties, mistyped values,
            a missing name, or a missing required property.
    """
    return _Parser(text).parse()


def is_statement(text: str) -> bool:
    """True if *text* starts with a known statement keyword."""
    stripped = text.lstrip()
    if not stripped.startswith("\\"):
        return False
    parts = stripped[1:].split(None, 1)
    return bool(parts) and parts[0] in COMMANDS
