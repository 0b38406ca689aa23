"""
Conversation - a cursor over one conversation tree.

The conversation owns the tree's root and tracks the *current node*.
Submitting a message extends the tree from the current node and moves the
cursor to the new pair; navigation moves the cursor without changing the
tree, so rewinding and submitting again creates a new branch.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from chat_tree_engine.artifacts import Artifact, parse_artifacts_from
from chat_tree_engine.errors import ChildIndexError, InvalidStateError
from chat_tree_engine.logging import get_logger
from chat_tree_engine.providers.base import KnowledgeContext, Provider
from chat_tree_engine.tree.models import MessagePairNode, Node, RootNode
from chat_tree_engine.tree.render import render_tree
from chat_tree_engine.tree.walk import map_tree, resolve_hash

if TYPE_CHECKING:
    from chat_tree_engine.snapshot import Snapshot

logger = get_logger("conversation")


class Conversation:
    """
    A conversation tree plus its cursor.

    A tree belongs to one conversation at a time; nothing here is safe for
    concurrent mutation.
    """

    def __init__(
        self,
        provider: Provider,
        root: RootNode | None = None,
        provider_name: str | None = None,
    ) -> None:
        """
        Args:
            provider: Provider used to extend the tree
            root: Existing tree root; a new one is built from the provider
                settings when omitted
            provider_name: Registry name recorded in snapshots (defaults to
                the provider's settings name)
        """
        self.provider = provider
        self.provider_name = provider_name or provider.settings.name
        self.root = root if root is not None else provider.new_conversation_root()
        self.current_node: Node = self.root
        self.chat_enabled = True
        self.queued_images: list[str] = []
        self.contexts: dict[str, KnowledgeContext] = {}

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def goto(self, ref: str) -> Node:
        """
        Move to the node whose hash is *ref* or starts with *ref*.

        Raises:
            NodeNotFoundError: If no node matches.
        """
        node = resolve_hash(map_tree(self.root), ref)
        self.current_node = node
        logger.debug("Cursor moved to %s", node.hash())
        return node

    def to_parent(self) -> Node:
        """
        Move up one level; a no-op at the root.

        Raises:
            InvalidStateError: If the current pair is detached.
        """
        if isinstance(self.current_node, RootNode):
            return self.current_node
        parent = self.current_node.parent
        if parent is None:
            raise InvalidStateError("current node has no parent")
        self.current_node = parent
        return parent

    def to_child(self, index: int) -> Node:
        """
        Move to the child at *index*.

        Raises:
            ChildIndexError: If *index* is negative or past the last child.
        """
        children = self.current_node.children
        if index < 0 or index >= len(children):
            raise ChildIndexError(index, len(children))
        self.current_node = children[index]
        return self.current_node

    def to_root(self) -> RootNode:
        self.current_node = self.root
        return self.root

    def list_children(self) -> list[str]:
        """Hashes of the current node's children, in order."""
        return [child.hash() for child in self.current_node.children]

    def has_parent(self) -> bool:
        return self.current_node.parent is not None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def toggle_chat(self, enabled: bool) -> None:
        """Enable or disable submissions without touching the tree."""
        self.chat_enabled = enabled

    def info(self) -> str:
        return f"current node: {self.current_node.hash()}"

    def print_tree(self) -> str:
        return render_tree(self.root)

    def print_history(self) -> str:
        return "\n".join(self.current_node.history())

    def queue_images(self, paths: list[str]) -> None:
        """Queue images to send with the next message."""
        self.queued_images.extend(paths)

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def attach_context(self, context: KnowledgeContext) -> None:
        self.provider.attach_knowledge_context(context)
        self.contexts[context.name] = context

    def list_knowledge_contexts(self) -> list[str]:
        return list(self.contexts)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def submit_message(self, text: str) -> str:
        """
        Send *text* and move the cursor to the resulting pair.

        Returns the response text, or ``""`` when chat is disabled.

        Raises:
            ProviderError: If the provider fails; the tree and cursor are
                left as they were.
        """
        if not self.chat_enabled:
            return ""

        if self.queued_images:
            self.provider.queue_images(self.queued_images)
            self.queued_images = []

        creator = self.provider.extend_from(self.current_node)
        pair = await creator(text)
        self.current_node = pair
        return pair.assistant.text if pair.assistant is not None else ""

    def artifacts(self) -> list[Artifact]:
        """Artifacts in the current pair's response; empty at the root."""
        if isinstance(self.current_node, MessagePairNode):
            return parse_artifacts_from(self.current_node.assistant)
        return []

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """Capture the whole tree and cursor position."""
        from chat_tree_engine.snapshot import take_snapshot

        return take_snapshot(self)
