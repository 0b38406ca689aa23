"""
JSON encoding of conversation trees.

A tree is written as nested documents::

    {"node_data": {"type": "root", ...}, "children": {"<hash>": {...}, ...}}

Every child is embedded in full under its hash.  Decoding builds each node
without a parent and then attaches the decoded children with
:meth:`add_child`, which restores the parent back-references.

A single branch may be thousands of exchanges long, so every pass over a
tree or a tree document uses an explicit stack rather than recursion.
:func:`dumps_document` and :func:`loads_document` do the same for the JSON
text; :mod:`json` only handles the scalars in between.
"""

from __future__ import annotations

import json
import re
from typing import Any

from chat_tree_engine.errors import DecodeError
from chat_tree_engine.logging import get_logger
from chat_tree_engine.tree.models import (
    Message,
    MessagePairNode,
    Node,
    NodeType,
    RootNode,
    format_timestamp,
    parse_timestamp,
)

logger = get_logger("tree.codec")

_WHITESPACE = re.compile(r"[ \t\n\r]*")
_DECODER = json.JSONDecoder()


# ---------------------------------------------------------------------------
# JSON text
# ---------------------------------------------------------------------------


class _Token(str):
    """Literal output text, as opposed to a string value still to encode."""


def dumps_document(doc: Any) -> str:
    """
    Serialize a JSON-compatible value of any nesting depth.

    The output matches ``json.dumps(doc, ensure_ascii=False)``.
    """
    parts: list[str] = []
    stack: list[Any] = [doc]
    while stack:
        item = stack.pop()
        if isinstance(item, _Token):
            parts.append(item)
        elif isinstance(item, dict) and item:
            sequence: list[Any] = []
            for i, (key, value) in enumerate(item.items()):
                opener = "{" if i == 0 else ", "
                sequence.append(_Token(f"{opener}{json.dumps(str(key), ensure_ascii=False)}: "))
                sequence.append(value)
            sequence.append(_Token("}"))
            stack.extend(reversed(sequence))
        elif isinstance(item, (list, tuple)) and item:
            sequence = []
            for i, value in enumerate(item):
                sequence.append(_Token("[" if i == 0 else ", "))
                sequence.append(value)
            sequence.append(_Token("]"))
            stack.extend(reversed(sequence))
        else:
            parts.append(json.dumps(item, ensure_ascii=False))
    return "".join(parts)


class _DocumentReader:
    """Reads JSON text, tracking open containers on an explicit stack."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def error(self, message: str) -> DecodeError:
        return DecodeError(f"Invalid JSON: {message} at position {self.pos}")

    def peek(self) -> str:
        self.pos = _WHITESPACE.match(self.text, self.pos).end()  # type: ignore[union-attr]
        return self.text[self.pos : self.pos + 1]

    def value(self) -> tuple[Any, bool]:
        """Read a scalar, or open a container and flag it as open."""
        char = self.peek()
        if char == "{":
            self.pos += 1
            return {}, True
        if char == "[":
            self.pos += 1
            return [], True
        try:
            value, self.pos = _DECODER.raw_decode(self.text, self.pos)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Invalid JSON: {e}") from e
        return value, False

    def read(self) -> Any:
        root, is_open = self.value()
        # Each frame: [container, has_members]
        stack: list[list[Any]] = [[root, False]] if is_open else []
        while stack:
            frame = stack[-1]
            container = frame[0]
            closer = "}" if isinstance(container, dict) else "]"
            char = self.peek()
            if char == closer:
                self.pos += 1
                stack.pop()
                continue
            if frame[1]:
                if char != ",":
                    raise self.error(f"expected ',' or {closer!r}")
                self.pos += 1
            frame[1] = True

            if isinstance(container, dict):
                if self.peek() != '"':
                    raise self.error("expected property name")
                key, _ = self.value()
                if self.peek() != ":":
                    raise self.error("expected ':'")
                self.pos += 1
                value, is_open = self.value()
                container[key] = value
            else:
                value, is_open = self.value()
                container.append(value)
            if is_open:
                stack.append([value, False])

        if self.peek():
            raise self.error("extra data")
        return root


def loads_document(text: str | bytes) -> Any:
    """
    Parse JSON text of any nesting depth.

    Raises:
        DecodeError: If *text* is not valid JSON.
    """
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode(json.detect_encoding(text), "surrogatepass")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Invalid JSON: {e}") from e
    return _DocumentReader(text).read()


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _message_to_dict(message: Message | None) -> dict[str, Any] | None:
    if message is None:
        return None
    data: dict[str, Any] = {
        "role": message.role,
        "b64_encoded_content": message.b64_encoded_content,
    }
    if message.images:
        data["images"] = list(message.images)
    return data


def _node_data(node: Node) -> dict[str, Any]:
    if isinstance(node, RootNode):
        return {
            "type": NodeType.ROOT.value,
            "provider": node.provider,
            "model": node.model,
            "prompt": node.prompt,
            "temperature": node.temperature,
            "max_tokens": node.max_tokens,
        }
    if isinstance(node, MessagePairNode):
        return {
            "type": NodeType.MESSAGE_PAIR.value,
            "assistant": _message_to_dict(node.assistant),
            "user": _message_to_dict(node.user),
            "time": format_timestamp(node.time),
        }
    raise DecodeError(f"Unknown node type: {type(node).__name__}")


def marshal_node(node: Node) -> dict[str, Any]:
    """Encode *node* and its whole subtree as a JSON-compatible dict."""
    doc: dict[str, Any] = {"node_data": _node_data(node), "children": {}}
    stack = [(node, doc)]
    while stack:
        current, current_doc = stack.pop()
        children = current_doc["children"]
        for child in current.children:
            key = child.hash()
            if key in children:
                logger.warning("Duplicate child hash %s under %s", key, current.hash())
            child_doc: dict[str, Any] = {"node_data": _node_data(child), "children": {}}
            children[key] = child_doc
            stack.append((child, child_doc))
    return doc


def dumps_tree(node: Node) -> str:
    """Serialize *node* and its subtree to a JSON string."""
    return dumps_document(marshal_node(node))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _require(data: dict[str, Any], key: str, kind: type | tuple[type, ...], what: str) -> Any:
    if key not in data:
        raise DecodeError(f"Missing {key!r} field in {what}")
    value = data[key]
    # bool is an int subclass; never accept it for numeric fields
    if isinstance(value, bool) or not isinstance(value, kind):
        raise DecodeError(f"Field {key!r} in {what} has invalid type {type(value).__name__}")
    return value


def _message_from_dict(data: Any, what: str) -> Message | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise DecodeError(f"{what} message must be an object")

    role = _require(data, "role", str, f"{what} message")
    content = _require(data, "b64_encoded_content", str, f"{what} message")
    images = data.get("images") or []
    if not isinstance(images, list) or not all(isinstance(i, str) for i in images):
        raise DecodeError(f"{what} message images must be a list of strings")

    message = Message(role=role, b64_encoded_content=content, images=list(images))
    # Validates the payload; raises DecodeError on bad base64
    _ = message.text
    return message


def _node_from_data(data: Any) -> Node:
    if not isinstance(data, dict):
        raise DecodeError("'node_data' must be an object")

    node_type = data.get("type")
    if node_type is None:
        raise DecodeError("Missing 'type' field in node data")

    if node_type == NodeType.ROOT.value:
        return RootNode(
            provider=_require(data, "provider", str, "root node"),
            model=_require(data, "model", str, "root node"),
            prompt=_require(data, "prompt", str, "root node"),
            temperature=float(_require(data, "temperature", (int, float), "root node")),
            max_tokens=_require(data, "max_tokens", int, "root node"),
        )

    if node_type == NodeType.MESSAGE_PAIR.value:
        raw_time = _require(data, "time", str, "message pair node")
        try:
            timestamp = parse_timestamp(raw_time)
        except ValueError as e:
            raise DecodeError(str(e)) from e
        return MessagePairNode(
            user=_message_from_dict(data.get("user"), "user"),
            assistant=_message_from_dict(data.get("assistant"), "assistant"),
            time=timestamp,
        )

    raise DecodeError(f"Unknown node type: {node_type!r}")


def _node_from_doc(doc: Any) -> Node:
    if not isinstance(doc, dict):
        raise DecodeError("Tree document must be an object")
    if "node_data" not in doc:
        raise DecodeError("Missing 'node_data' in tree document")
    return _node_from_data(doc["node_data"])


def _child_docs(doc: dict[str, Any]) -> dict[str, Any]:
    children = doc.get("children") or {}
    if not isinstance(children, dict):
        raise DecodeError("'children' must be an object keyed by hash")
    return children


def unmarshal_node(doc: Any) -> Node:
    """
    Rebuild a node and its subtree from a decoded document.

    Children are attached in document key order.

    Raises:
        DecodeError: If any part of the document is malformed.
    """
    node = _node_from_doc(doc)
    stack = [(node, doc)]
    while stack:
        parent, parent_doc = stack.pop()
        for child_doc in _child_docs(parent_doc).values():
            child = _node_from_doc(child_doc)
            if not isinstance(child, MessagePairNode):
                raise DecodeError("Only message pair nodes may appear as children")
            parent.add_child(child)
            stack.append((child, child_doc))
    return node


def loads_tree(text: str | bytes) -> Node:
    """
    Parse a JSON tree document.

    Raises:
        DecodeError: If *text* is not valid JSON or not a valid tree.
    """
    node = unmarshal_node(loads_document(text))
    logger.debug("Decoded tree rooted at %s", node.hash())
    return node
