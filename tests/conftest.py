"""Shared pytest fixtures for chat-tree-engine tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from chat_tree_engine.conversation import Conversation
from chat_tree_engine.providers.base import HistoryEntry, Provider, ProviderSettings
from chat_tree_engine.providers.registry import ProviderRegistry
from chat_tree_engine.tree.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    Message,
    MessagePairNode,
    RootNode,
)

FIXED_TIME = datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)


class ScriptedProvider(Provider):
    """
    Provider that replays scripted responses.

    Items in ``responses`` are returned in order; an exception item is raised
    instead.  Once the script runs out, the question is echoed back.  Clones
    share the script and the call log.
    """

    host = "scripted"

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        responses: list[str | Exception] | None = None,
    ) -> None:
        settings = replace(settings) if settings is not None else ProviderSettings(name="scripted")
        settings.host = settings.host or self.host
        settings.model = settings.model or "test-model"
        settings.max_tokens = settings.max_tokens or 1000
        settings.temperature = settings.temperature or 0.5
        super().__init__(settings)
        self.responses: list[str | Exception] = responses if responses is not None else []
        self.calls: list[tuple[str, list[HistoryEntry], list[str]]] = []

    async def complete(
        self,
        question: str,
        history: list[HistoryEntry],
        images: list[str],
    ) -> str:
        self.calls.append((question, history, list(images)))
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return f"echo: {question}"

    def clone_with_settings(self, settings: ProviderSettings) -> ScriptedProvider:
        clone = ScriptedProvider(settings, self.responses)
        clone.calls = self.calls
        return clone


def make_pair(
    user: str,
    assistant: str,
    time: datetime = FIXED_TIME,
    images: list[str] | None = None,
) -> MessagePairNode:
    """Build a complete pair with a fixed timestamp."""
    return MessagePairNode(
        user=Message.create(ROLE_USER, user, images),
        assistant=Message.create(ROLE_ASSISTANT, assistant),
        time=time,
    )


def make_chain(depth: int, root: RootNode | None = None) -> tuple[RootNode, MessagePairNode]:
    """Build a single branch *depth* pairs long; returns the root and the leaf."""
    root = root if root is not None else RootNode(provider="scripted", model="test-model")
    node: RootNode | MessagePairNode = root
    for i in range(depth):
        child = make_pair(f"q{i}", f"a{i}")
        node.add_child(child)
        node = child
    assert isinstance(node, MessagePairNode)
    return root, node


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider(ProviderSettings(name="scripted", system_prompt="Be brief"))


@pytest.fixture
def conversation(provider: ScriptedProvider) -> Conversation:
    return Conversation(provider)


@pytest.fixture
def registry() -> ProviderRegistry:
    """Registry whose only host is the scripted provider."""
    registry = ProviderRegistry()
    registry.register_factory("scripted", lambda settings: ScriptedProvider(settings))
    return registry


@pytest.fixture
def sample_tree() -> RootNode:
    """
    A small tree::

        root
        ├── a (q1/a1)
        │   └── c (q3/a3)
        └── b (q2/a2)
    """
    root = RootNode(
        provider="scripted",
        model="test-model",
        prompt="Be brief",
        temperature=0.7,
        max_tokens=4000,
    )
    a = make_pair("q1", "a1")
    b = make_pair("q2", "a2")
    c = make_pair("q3", "a3", images=["diagram.png"])
    root.add_child(a)
    root.add_child(b)
    a.add_child(c)
    return root
