"""
Base provider interface.

A provider turns a question plus conversation history into a response, and
knows how to grow a conversation tree with the result.
"""

from __future__ import annotations

import base64
import dataclasses
import mimetypes
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from chat_tree_engine.errors import ProviderError
from chat_tree_engine.logging import get_logger
from chat_tree_engine.tree.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    Message,
    MessagePairNode,
    Node,
    RootNode,
    new_message_pair_node,
)
from chat_tree_engine.tree.walk import find_root, walk_to_root

logger = get_logger("providers")

# Async callable that answers a question and returns the attached pair
MessageCreator = Callable[[str], Awaitable[MessagePairNode]]

# {"role": ..., "content": ...}
HistoryEntry = dict[str, str]

# Upper bound on the text read from a single context file
MAX_CONTEXT_FILE_BYTES = 64 * 1024


@dataclass
class ProviderSettings:
    """Settings a provider instance is built from; persisted as JSON."""

    name: str = ""
    host: str = ""
    base_url: str = ""
    model: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    system_prompt: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderSettings:
        """Create settings from a dictionary, ignoring unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class KnowledgeContext:
    """
    Reference material attached to a conversation.

    Text files under ``directory`` are read when the context is attached and
    appended to the provider's system prompt.
    """

    name: str
    description: str = ""
    directory: str | None = None
    files: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KnowledgeContext:
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    def _paths(self) -> list[Path]:
        paths = [Path(p) for p in self.files]
        if self.directory:
            root = Path(self.directory)
            if root.is_dir():
                paths.extend(sorted(p for p in root.rglob("*") if p.is_file()))
        return paths

    def render(self) -> str:
        """Render the context as a system prompt section."""
        lines = [f"## Context: {self.name}"]
        if self.description:
            lines.append(self.description)
        for path in self._paths():
            try:
                raw = path.read_bytes()[:MAX_CONTEXT_FILE_BYTES]
            except OSError as e:
                raise ProviderError(f"Cannot read context file {path}: {e}") from e
            if b"\x00" in raw:
                logger.debug("Skipping binary context file %s", path)
                continue
            lines.append("")
            lines.append(f"### {path.name}")
            lines.append("```")
            lines.append(raw.decode("utf-8", errors="replace"))
            lines.append("```")
        return "\n".join(lines)


def encode_image(path: str) -> tuple[str, str]:
    """
    Read an image file for an API request.

    Returns:
        ``(media_type, base64_data)``

    Raises:
        ProviderError: If the file cannot be read.
    """
    media_type, _ = mimetypes.guess_type(path)
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise ProviderError(f"Cannot read image {path}: {e}") from e
    return media_type or "image/png", base64.b64encode(data).decode("ascii")


class Provider(ABC):
    """
    Abstract base class for generative providers.

    Subclasses implement :meth:`complete`; tree growth, history ordering and
    image bookkeeping live here.

    Example implementation:

        class EchoProvider(Provider):
            host = "echo"

            async def complete(self, question, history, images):
                return question
    """

    # Host family used by the registry to clone providers from settings
    host: str = ""

    def __init__(self, settings: ProviderSettings) -> None:
        self.settings = settings
        self._pending_images: list[str] = []
        self._contexts: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Tree helpers
    # ------------------------------------------------------------------

    def new_conversation_root(self) -> RootNode:
        """Create a root node from this provider's settings."""
        return RootNode(
            provider=self.settings.name,
            model=self.settings.model,
            prompt=self.settings.system_prompt,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )

    def get_root(self, node: Node) -> RootNode:
        """Root above *node*; a bare root for this host if it is detached."""
        root = find_root(node)
        if root is None:
            return RootNode(provider=self.settings.host)
        return root

    def get_history(self, node: Node) -> list[HistoryEntry]:
        """
        Provider-facing history ending at *node*, oldest exchange first.

        Only complete pairs contribute.
        """
        collected: list[HistoryEntry] = []
        for current in walk_to_root(node):
            if not isinstance(current, MessagePairNode):
                continue
            user, assistant = current.user, current.assistant
            if user is None or assistant is None:
                continue
            collected.append({"role": assistant.role, "content": assistant.text})
            collected.append({"role": user.role, "content": user.text})
        # Collected leaf-to-root; providers expect chronological order
        collected.reverse()
        return collected

    # ------------------------------------------------------------------
    # Images and contexts
    # ------------------------------------------------------------------

    def queue_images(self, paths: list[str]) -> None:
        """Queue image paths for the next request."""
        self._pending_images.extend(paths)

    @property
    def pending_images(self) -> list[str]:
        return list(self._pending_images)

    def attach_knowledge_context(self, context: KnowledgeContext) -> None:
        """Attach *context*; its files are read now."""
        self._contexts[context.name] = context.render()
        logger.debug("Attached context %s to provider %s", context.name, self.settings.name)

    @property
    def knowledge_contexts(self) -> list[str]:
        return list(self._contexts)

    def build_system_prompt(self) -> str:
        """Configured system prompt followed by any attached contexts."""
        parts = [self.settings.system_prompt] if self.settings.system_prompt else []
        parts.extend(self._contexts.values())
        return "\n\n".join(parts)

    # ------------------------------------------------------------------
    # Extension
    # ------------------------------------------------------------------

    def extend_from(self, node: Node) -> MessageCreator:
        """
        Return a creator that answers a question as a new child of *node*.

        Nothing is attached to the tree until :meth:`complete` returns; a
        failed call leaves *node* and the pending images untouched.
        """

        async def create(question: str) -> MessagePairNode:
            history = self.get_history(node)
            images = list(self._pending_images)
            logger.debug(
                "Requesting completion from %s (history=%d, images=%d)",
                self.settings.name,
                len(history),
                len(images),
            )

            response = await self.complete(question, history, images)

            pair = new_message_pair_node(node)
            pair.user = Message.create(ROLE_USER, question, images)
            pair.assistant = Message.create(ROLE_ASSISTANT, response)
            node.add_child(pair)
            del self._pending_images[: len(images)]
            logger.debug("Attached pair %s under %s", pair.hash(), node.hash())
            return pair

        return create

    @abstractmethod
    async def complete(
        self,
        question: str,
        history: list[HistoryEntry],
        images: list[str],
    ) -> str:
        """
        Produce a response to *question*.

        Args:
            question: The new user message
            history: Prior exchanges, oldest first
            images: Image paths to send with the question

        Returns:
            Response text

        Raises:
            ProviderError: If the backend fails
        """
        pass

    def clone_with_settings(self, settings: ProviderSettings) -> Provider:
        """Create a provider of the same kind with different settings."""
        return type(self)(settings)
