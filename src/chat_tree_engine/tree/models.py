"""
Conversation tree data models.

A conversation is a tree: a single :class:`RootNode` carrying the provider
configuration, and :class:`MessagePairNode` children holding one user message
and one response each.  Children are owned through the ``children`` lists;
``parent`` is a weak back-reference so the tree has no strong cycles.

Node identity is content-derived: :meth:`RootNode.hash` and
:meth:`MessagePairNode.hash` return SHA-256 hex digests of the node's fields.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from chat_tree_engine.errors import DecodeError


class NodeType(str, Enum):
    """Discriminant for the two node variants."""

    ROOT = "root"
    MESSAGE_PAIR = "message_pair"


ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_float(value: float) -> str:
    """
    Shortest round-trippable decimal form of *value*, without exponent.

    ``0.7 -> "0.7"``, ``1.0 -> "1"``, ``1e-07 -> "0.0000001"``.
    """
    text = repr(float(value))
    if "e" in text or "E" in text:
        text = format(Decimal(text), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_rfc3339(value: datetime) -> str:
    """Second-precision RFC 3339 (``Z`` for UTC), the form used in pair hashes."""
    value = _as_aware(value)
    if value.utcoffset() == timezone.utc.utcoffset(None):
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value.isoformat(timespec="seconds")


def format_timestamp(value: datetime) -> str:
    """Microsecond-precision RFC 3339 used on the wire."""
    value = _as_aware(value)
    text = value.isoformat(timespec="microseconds")
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


_TIMESTAMP_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>Z|z|[+-]\d{2}:\d{2})$"
)


def parse_timestamp(text: str) -> datetime:
    """
    Parse an RFC 3339 timestamp.

    Accepts any number of fractional digits (nanosecond timestamps are
    truncated to microseconds) and ``Z`` or numeric offsets.

    Raises:
        ValueError: If *text* is not RFC 3339.
    """
    match = _TIMESTAMP_RE.match(text.strip())
    if match is None:
        raise ValueError(f"invalid RFC 3339 timestamp: {text!r}")
    frac = (match.group("frac") or "")[:6].ljust(6, "0")
    tz = match.group("tz")
    if tz in ("Z", "z"):
        tz = "+00:00"
    return datetime.fromisoformat(f"{match.group('base')}.{frac}{tz}")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class Message:
    """
    One side of an exchange.

    The payload is kept base64-encoded so arbitrary text survives any JSON
    round-trip unchanged; :attr:`text` decodes it on demand.
    """

    role: str = ""
    b64_encoded_content: str = ""
    images: list[str] = field(default_factory=list)

    @classmethod
    def create(cls, role: str, text: str, images: list[str] | None = None) -> Message:
        """Build a message from unencoded *text*."""
        message = cls(role=role, images=list(images or []))
        message.update_content(text)
        return message

    @property
    def text(self) -> str:
        """
        The decoded payload.

        Raises:
            DecodeError: If the stored payload is not valid base64.
        """
        try:
            raw = base64.b64decode(self.b64_encoded_content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"invalid base64 content for {self.role!r} message: {e}") from e
        return raw.decode("utf-8", errors="replace")

    def update_content(self, text: str) -> None:
        """Replace the payload with the encoding of *text*."""
        self.b64_encoded_content = base64.b64encode(text.encode("utf-8")).decode("ascii")

    def render(self) -> str:
        """Single transcript line: ``role: text`` plus any image paths."""
        if self.images:
            return f"{self.role}: {self.text} [{len(self.images)} images]: {', '.join(self.images)}"
        return f"{self.role}: {self.text}"


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class _NodeOps:
    """Behaviour shared by both node variants."""

    children: list[MessagePairNode]

    def add_child(self, child: MessagePairNode) -> None:
        """Append *child* and point its parent back at this node."""
        self.children.append(child)
        child.parent = self  # type: ignore[assignment]

    def history(self) -> list[str]:
        """
        Transcript lines from the root down to this node.

        Complete ancestor pairs contribute user then response lines in
        root-to-self order; a pair node then appends whichever of its own
        messages are set.
        """
        ancestors: list[MessagePairNode] = []
        node = self.parent  # type: ignore[attr-defined]
        while node is not None:
            if isinstance(node, MessagePairNode) and node.is_complete:
                ancestors.append(node)
            node = node.parent

        messages: list[Message] = []
        for pair in reversed(ancestors):
            messages.append(pair.user)  # type: ignore[arg-type]
            messages.append(pair.assistant)  # type: ignore[arg-type]

        if isinstance(self, MessagePairNode):
            if self.user is not None:
                messages.append(self.user)
            if self.assistant is not None:
                messages.append(self.assistant)

        return [m.render() for m in messages]


@dataclass(eq=False)
class RootNode(_NodeOps):
    """Conversation parameters; the single entry point of a tree."""

    type: NodeType = field(default=NodeType.ROOT, init=False)
    provider: str = ""
    model: str = ""
    prompt: str = ""
    temperature: float = 0.0
    max_tokens: int = 0
    children: list[MessagePairNode] = field(default_factory=list, repr=False)

    @property
    def parent(self) -> None:
        """Roots never have a parent."""
        return None

    def hash(self) -> str:
        digest = hashlib.sha256(
            (
                self.provider
                + self.model
                + self.prompt
                + format_float(self.temperature)
                + str(int(self.max_tokens))
            ).encode("utf-8")
        )
        return digest.hexdigest()

    def to_string(self) -> str:
        return f"Root: {self.prompt}"


@dataclass(eq=False)
class MessagePairNode(_NodeOps):
    """One user message and its response, with forks as children."""

    type: NodeType = field(default=NodeType.MESSAGE_PAIR, init=False)
    user: Message | None = None
    assistant: Message | None = None
    time: datetime = field(default_factory=_utcnow)
    children: list[MessagePairNode] = field(default_factory=list, repr=False)
    _parent: weakref.ReferenceType | None = field(
        default=None, init=False, repr=False
    )

    @property
    def parent(self) -> Node | None:
        if self._parent is None:
            return None
        return self._parent()

    @parent.setter
    def parent(self, node: Node | None) -> None:
        self._parent = weakref.ref(node) if node is not None else None

    @property
    def is_complete(self) -> bool:
        """Both messages are set, so the pair is addressable by hash."""
        return self.user is not None and self.assistant is not None

    def hash(self) -> str:
        """Digest of response, user payload and timestamp; ``""`` until complete."""
        if self.user is None or self.assistant is None:
            return ""
        digest = hashlib.sha256(
            (
                self.assistant.b64_encoded_content
                + self.user.b64_encoded_content
                + format_rfc3339(self.time)
            ).encode("utf-8")
        )
        return digest.hexdigest()

    def to_string(self) -> str:
        user = self.user.text if self.user is not None else ""
        assistant = self.assistant.text if self.assistant is not None else ""
        return f"User: {user}\nAssistant: {assistant}"


# Union of both node variants
Node = RootNode | MessagePairNode


def new_message_pair_node(parent: Node | None = None) -> MessagePairNode:
    """
    Create an empty pair stamped with the current time.

    *parent* is recorded as the back-reference only; the pair is not appended
    to the parent's children until :meth:`add_child` is called.
    """
    pair = MessagePairNode()
    pair.parent = parent
    return pair
