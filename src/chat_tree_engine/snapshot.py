"""
Conversation snapshots.

A snapshot captures a whole conversation as one persistable unit: the
provider it talks to, the serialized tree, the cursor's hash, and the names
of attached knowledge contexts.  Where the snapshot is stored is up to the
caller (see :mod:`chat_tree_engine.store`).

Wire form::

    {
      "provider_name": "claude",
      "active_branch": "94df98...",
      "contents": "<base64 of the tree JSON>",
      "contexts": ["docs"]
    }
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from chat_tree_engine.conversation import Conversation
from chat_tree_engine.errors import DecodeError, NodeNotFoundError
from chat_tree_engine.logging import get_logger
from chat_tree_engine.providers.base import KnowledgeContext, Provider
from chat_tree_engine.tree.codec import dumps_document, dumps_tree, loads_document, loads_tree
from chat_tree_engine.tree.models import RootNode
from chat_tree_engine.tree.walk import map_tree, resolve_hash

logger = get_logger("snapshot")


@dataclass
class Snapshot:
    """Persistable capture of a conversation."""

    provider_name: str
    active_branch: str
    contents: str
    contexts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider_name": self.provider_name,
            "active_branch": self.active_branch,
            "contents": base64.b64encode(self.contents.encode("utf-8")).decode("ascii"),
            "contexts": list(self.contexts),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> Snapshot:
        """
        Build a snapshot from its decoded wire form.

        ``contents`` may be base64 text or an embedded tree document.

        Raises:
            DecodeError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise DecodeError("Snapshot must be an object")

        provider_name = data.get("provider_name")
        if not isinstance(provider_name, str):
            raise DecodeError("Snapshot 'provider_name' must be a string")

        active_branch = data.get("active_branch") or ""
        if not isinstance(active_branch, str):
            raise DecodeError("Snapshot 'active_branch' must be a string")

        contexts = data.get("contexts") or []
        if not isinstance(contexts, list) or not all(isinstance(c, str) for c in contexts):
            raise DecodeError("Snapshot 'contexts' must be a list of strings")

        raw = data.get("contents")
        if isinstance(raw, dict):
            contents = dumps_document(raw)
        elif isinstance(raw, str):
            try:
                contents = base64.b64decode(raw, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as e:
                raise DecodeError(f"Snapshot 'contents' is not valid base64: {e}") from e
        else:
            raise DecodeError("Snapshot 'contents' is missing")

        return cls(
            provider_name=provider_name,
            active_branch=active_branch,
            contents=contents,
            contexts=list(contexts),
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> Snapshot:
        try:
            data = loads_document(text)
        except DecodeError as e:
            raise DecodeError(f"Failed to unmarshal snapshot: {e}") from e
        return cls.from_dict(data)


def take_snapshot(conversation: Conversation) -> Snapshot:
    """Serialize the whole tree and record the cursor's hash."""
    snapshot = Snapshot(
        provider_name=conversation.provider_name,
        active_branch=conversation.current_node.hash(),
        contents=dumps_tree(conversation.root),
        contexts=conversation.list_knowledge_contexts(),
    )
    logger.debug(
        "Snapshot of %s at %s (contexts=%d)",
        snapshot.provider_name,
        snapshot.active_branch or "<root>",
        len(snapshot.contexts),
    )
    return snapshot


def restore(
    snapshot: Snapshot,
    providers: Mapping[str, Provider],
    contexts: Mapping[str, KnowledgeContext] | None = None,
) -> Conversation:
    """
    Rebuild a conversation from *snapshot*.

    The named provider is cloned so the conversation's queued images and
    contexts stay private to it.  The cursor is re-seated by exact hash,
    then by prefix; an empty active branch leaves it at the root.

    Raises:
        DecodeError: If the tree is malformed or not rooted at a root node
        NodeNotFoundError: If the provider, a context, or the active branch
            cannot be found
    """
    root = loads_tree(snapshot.contents)
    if not isinstance(root, RootNode):
        raise DecodeError("Snapshot does not contain a valid root node")

    try:
        base = providers[snapshot.provider_name]
    except LookupError as e:
        raise NodeNotFoundError(f"Provider {snapshot.provider_name} not found") from e

    provider = base.clone_with_settings(base.settings)
    conversation = Conversation(provider, root=root, provider_name=snapshot.provider_name)

    for name in snapshot.contexts:
        if contexts is None or name not in contexts:
            raise NodeNotFoundError(f"Context {name} not found in available contexts")
        conversation.attach_context(contexts[name])

    if snapshot.active_branch:
        try:
            conversation.current_node = resolve_hash(map_tree(root), snapshot.active_branch)
        except NodeNotFoundError as e:
            raise NodeNotFoundError(
                f"Could not find active branch {snapshot.active_branch} in snapshot"
            ) from e

    logger.debug("Restored conversation at %s", conversation.current_node.hash() or "<root>")
    return conversation
