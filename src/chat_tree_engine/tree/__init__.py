"""
Conversation tree core: node models, JSON codec, and traversal helpers.
"""

from chat_tree_engine.tree.codec import (
    dumps_document,
    dumps_tree,
    loads_document,
    loads_tree,
    marshal_node,
    unmarshal_node,
)
from chat_tree_engine.tree.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    Message,
    MessagePairNode,
    Node,
    NodeType,
    RootNode,
    format_float,
    format_rfc3339,
    format_timestamp,
    new_message_pair_node,
    parse_timestamp,
)
from chat_tree_engine.tree.render import content_preview, render_tree
from chat_tree_engine.tree.walk import (
    find_root,
    iter_nodes,
    map_tree,
    resolve_hash,
    walk_to_root,
)

__all__ = [
    # Models
    "Message",
    "MessagePairNode",
    "Node",
    "NodeType",
    "RootNode",
    "ROLE_ASSISTANT",
    "ROLE_USER",
    "new_message_pair_node",
    "format_float",
    "format_rfc3339",
    "format_timestamp",
    "parse_timestamp",
    # Codec
    "dumps_document",
    "dumps_tree",
    "loads_document",
    "loads_tree",
    "marshal_node",
    "unmarshal_node",
    # Traversal
    "find_root",
    "iter_nodes",
    "map_tree",
    "resolve_hash",
    "walk_to_root",
    # Rendering
    "content_preview",
    "render_tree",
]
