"""
Exception types raised by the conversation tree engine.

Every engine error derives from :class:`ChatTreeError` so callers can catch
the whole family, while the secondary bases (``LookupError``, ``ValueError``,
``IndexError``) keep them usable with ordinary Python handlers.
"""

from __future__ import annotations


class ChatTreeError(Exception):
    """Base class for all engine errors."""

    pass


class NodeNotFoundError(ChatTreeError, LookupError):
    """Raised when a hash, name, or key cannot be resolved."""

    pass


class ChildIndexError(NodeNotFoundError, IndexError):
    """Raised when a child index is outside the current node's children."""

    def __init__(self, index: int, count: int) -> None:
        super().__init__(f"child index {index} out of bounds (node has {count} children)")
        self.index = index
        self.count = count


class InvalidStateError(ChatTreeError):
    """Raised when an operation does not apply to the node or object state."""

    pass


class DecodeError(ChatTreeError, ValueError):
    """Raised for malformed serialized trees, snapshots, or payloads."""

    pass


class ArtifactParseError(DecodeError):
    """Raised when a response payload has an unterminated code fence."""

    pass


class ProviderError(ChatTreeError):
    """Raised when the generative provider fails to produce a response."""

    pass


class AlreadyExistsError(ChatTreeError):
    """Raised when creating a provider, chat, or context whose name is taken."""

    pass


class StatementError(ChatTreeError, ValueError):
    """Raised for statements that fail to parse or validate."""

    pass
