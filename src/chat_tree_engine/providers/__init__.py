"""
Generative providers.

Providers answer questions and grow conversation trees with the results.
The SDK-backed providers are optional extras.
"""

from chat_tree_engine.providers.base import (
    HistoryEntry,
    KnowledgeContext,
    MessageCreator,
    Provider,
    ProviderSettings,
)
from chat_tree_engine.providers.registry import ProviderRegistry

__all__ = [
    "HistoryEntry",
    "KnowledgeContext",
    "MessageCreator",
    "Provider",
    "ProviderRegistry",
    "ProviderSettings",
]

# Optional imports for specific providers
try:
    from chat_tree_engine.providers.anthropic import AnthropicProvider  # noqa: F401

    __all__.append("AnthropicProvider")
except ImportError:
    pass

try:
    from chat_tree_engine.providers.openai import OpenAIProvider  # noqa: F401

    __all__.append("OpenAIProvider")
except ImportError:
    pass
