"""
Chat Tree Engine - branching conversations with generative providers.

Every exchange is a node in a tree whose identity is a content hash.  A
cursor moves anywhere in the tree; asking a question from any node grows a
new branch.  Trees are saved as snapshots, and fenced code blocks in the
answers can be extracted as artifacts.

Example:
    from chat_tree_engine import Conversation
    from chat_tree_engine.providers import ProviderRegistry, ProviderSettings

    registry = ProviderRegistry.with_builtin_hosts()
    provider = registry.create(ProviderSettings(name="claude", host="anthropic"))

    chat = Conversation(provider, provider_name="claude")
    answer = await chat.submit_message("Sketch a CLI in Python")

    chat.to_root()
    await chat.submit_message("Sketch it in Go instead")  # a second branch
    print(chat.print_tree())
"""

from chat_tree_engine.artifacts import (
    Artifact,
    ArtifactType,
    FileArtifact,
    NonFileArtifact,
    parse_artifacts,
    parse_artifacts_from,
)
from chat_tree_engine.commands import ChatCommandRegistry, CommandResult
from chat_tree_engine.config import EngineConfig
from chat_tree_engine.conversation import Conversation
from chat_tree_engine.core import Core
from chat_tree_engine.errors import (
    AlreadyExistsError,
    ArtifactParseError,
    ChatTreeError,
    ChildIndexError,
    DecodeError,
    InvalidStateError,
    NodeNotFoundError,
    ProviderError,
    StatementError,
)
from chat_tree_engine.providers import KnowledgeContext, Provider, ProviderRegistry, ProviderSettings
from chat_tree_engine.session import CommandSession, OperationalCallbacks, StatementResult
from chat_tree_engine.snapshot import Snapshot, restore, take_snapshot
from chat_tree_engine.statement import Statement, is_statement, parse_statement
from chat_tree_engine.store import DirectoryStore, KeyValueStore, MemoryStore, SqliteStore
from chat_tree_engine.tree import (
    Message,
    MessagePairNode,
    Node,
    NodeType,
    RootNode,
    dumps_tree,
    loads_tree,
    marshal_node,
    unmarshal_node,
)

__version__ = "0.1.0"

__all__ = [
    # Tree
    "Message",
    "MessagePairNode",
    "Node",
    "NodeType",
    "RootNode",
    "dumps_tree",
    "loads_tree",
    "marshal_node",
    "unmarshal_node",
    # Conversation
    "Conversation",
    "Snapshot",
    "restore",
    "take_snapshot",
    # Artifacts
    "Artifact",
    "ArtifactType",
    "FileArtifact",
    "NonFileArtifact",
    "parse_artifacts",
    "parse_artifacts_from",
    # Providers
    "KnowledgeContext",
    "Provider",
    "ProviderRegistry",
    "ProviderSettings",
    # Statements and sessions
    "Statement",
    "parse_statement",
    "is_statement",
    "CommandSession",
    "OperationalCallbacks",
    "StatementResult",
    "ChatCommandRegistry",
    "CommandResult",
    # Core and storage
    "Core",
    "EngineConfig",
    "KeyValueStore",
    "DirectoryStore",
    "SqliteStore",
    "MemoryStore",
    # Errors
    "ChatTreeError",
    "NodeNotFoundError",
    "ChildIndexError",
    "InvalidStateError",
    "DecodeError",
    "ArtifactParseError",
    "ProviderError",
    "AlreadyExistsError",
    "StatementError",
]
