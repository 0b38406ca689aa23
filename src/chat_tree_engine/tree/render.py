"""Plain-text tree diagrams."""

from __future__ import annotations

from chat_tree_engine.tree.models import Message, MessagePairNode, Node, RootNode

PREVIEW_LENGTH = 25


def content_preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    """Truncate *text* to *length* characters, marking the cut with ``...``."""
    if len(text) > length:
        return text[:length] + "..."
    return text


def _message_lines(label: str, message: Message, indent: str) -> list[str]:
    lines = [f"{indent}    ├── {label} ({message.role}): {content_preview(message.text)}"]
    if message.images:
        lines.append(f"{indent}    ├── {label} Images: {', '.join(message.images)}")
    return lines


def _render_node(node: Node, node_indent: str, is_last: bool, lines: list[str]) -> None:
    if isinstance(node, RootNode):
        lines.append(f"{node_indent}[ROOT] Provider: {node.provider}, Model: {node.model}")
        lines.append(f"{node_indent}├── Temperature: {node.temperature:.2f}")
        lines.append(f"{node_indent}├── MaxTokens: {node.max_tokens}")
        lines.append(f"{node_indent}└── Hash: {node.hash()}")
    elif isinstance(node, MessagePairNode):
        prefix = "└──" if is_last else "├──"
        stamp = node.time.strftime("%Y-%m-%d %H:%M:%S")
        lines.append(f"{node_indent}{prefix} [MESSAGE_PAIR] Time: {stamp}")
        if node.user is not None:
            lines.extend(_message_lines("User", node.user, node_indent))
        if node.assistant is not None:
            lines.extend(_message_lines("Assistant", node.assistant, node_indent))
        lines.append(f"{node_indent}    └── Hash: {node.hash()}")


def render_tree(node: Node) -> str:
    """
    Draw *node* and its subtree as an indented diagram.

    Each node's full hash is shown so it can be typed (or prefixed) back
    into navigation commands.
    """
    lines: list[str] = []
    stack: list[tuple[Node, str, bool]] = [(node, "", True)]
    while stack:
        current, indent, is_last = stack.pop()
        node_indent = indent if is_last else indent + "│"
        _render_node(current, node_indent, is_last, lines)
        last = len(current.children) - 1
        for i in range(last, -1, -1):
            stack.append((current.children[i], node_indent + "    ", i == last))
    return "\n".join(lines) + "\n"
