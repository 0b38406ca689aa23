"""
Tree traversal helpers.

Nodes form a tree through ``children`` lists with ``parent`` back-links.
These helpers build hash indexes, resolve (prefix) hashes, and walk paths.
"""

from __future__ import annotations

from collections.abc import Iterator

from chat_tree_engine.errors import NodeNotFoundError
from chat_tree_engine.tree.models import Node, RootNode


def iter_nodes(node: Node) -> Iterator[Node]:
    """Yield *node* and all of its descendants in pre-order."""
    # Iterative to avoid recursion limits on long conversations
    stack: list[Node] = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def map_tree(node: Node) -> dict[str, Node]:
    """
    Build a ``hash -> node`` index of *node*'s subtree.

    Incomplete pairs (empty hash) are not indexed.  When two nodes share a
    hash the later one in pre-order wins.
    """
    index: dict[str, Node] = {}
    for current in iter_nodes(node):
        key = current.hash()
        if key:
            index[key] = current
    return index


def resolve_hash(index: dict[str, Node], ref: str) -> Node:
    """
    Look up *ref* as a full hash, falling back to a hash prefix.

    An ambiguous prefix resolves to the first matching key in index order;
    which of the candidates that is should not be relied upon.

    Raises:
        NodeNotFoundError: If *ref* is empty or matches nothing.
    """
    ref = ref.strip()
    if not ref:
        raise NodeNotFoundError("empty hash reference")

    node = index.get(ref)
    if node is not None:
        return node

    for key, candidate in index.items():
        if key.startswith(ref):
            return candidate

    raise NodeNotFoundError(f"no node matches hash {ref!r}")


def walk_to_root(node: Node) -> list[Node]:
    """
    Walk from *node* up to the root following ``parent`` links.

    Returns nodes ordered leaf-to-root (*node* first, root last); reverse the
    result for chronological order.
    """
    path: list[Node] = []
    current: Node | None = node
    while current is not None:
        path.append(current)
        current = current.parent
    return path


def find_root(node: Node) -> RootNode | None:
    """Return the root above *node*, or ``None`` for a detached subtree."""
    top = walk_to_root(node)[-1]
    return top if isinstance(top, RootNode) else None
