"""
Core - install layout, registries, and statement execution.

The core owns everything a front-end needs to manage conversations: the
install directory and its stores, the named providers, the command sessions,
the loaded (active) chats, and the knowledge contexts.  Each registry is
guarded by its own lock; no lock is held while a provider is working.

The core is not a chat.  Loading a chat hands back a
:class:`~chat_tree_engine.conversation.Conversation` for the caller to drive.

Layout::

    <install_dir>/
        data-store/       knowledge contexts (and the SQLite database)
        chat-store/       one snapshot per chat
        provider-store/   one settings document per named provider
"""

from __future__ import annotations

import json
import threading
from pathlib import Path

from chat_tree_engine.config import StorageBackend
from chat_tree_engine.conversation import Conversation
from chat_tree_engine.errors import (
    AlreadyExistsError,
    DecodeError,
    InvalidStateError,
    NodeNotFoundError,
)
from chat_tree_engine.logging import get_logger
from chat_tree_engine.providers.base import KnowledgeContext, Provider, ProviderSettings
from chat_tree_engine.providers.registry import ProviderRegistry
from chat_tree_engine.session import (
    CommandSession,
    NewContextCommand,
    NewProviderCommand,
    OperationalCallbacks,
    StatementResult,
)
from chat_tree_engine.snapshot import Snapshot, restore
from chat_tree_engine.statement import Statement
from chat_tree_engine.store import DirectoryStore, KeyValueStore, SqliteStore

logger = get_logger("core")

DATA_STORE_DIRECTORY = "data-store"
CHAT_STORE_DIRECTORY = "chat-store"
PROVIDER_STORE_DIRECTORY = "provider-store"

SQLITE_FILENAME = "chat-tree.db"


def _json_key(name: str) -> str:
    return name if name.endswith(".json") else f"{name}.json"


class Core:
    """
    Service object behind the CLI and REPL.

    Example:
        core = Core("~/.chat-tree")
        if not core.is_installed():
            core.install()
        core.load_providers()

        result = core.execute_statement(session_id, '\\chat "ideas"')
        answer = await result.chat.submit_message("Hello")
        core.save_active_chat(session_id)
    """

    def __init__(
        self,
        install_dir: str | Path,
        providers: ProviderRegistry | None = None,
        storage: StorageBackend = "directory",
    ) -> None:
        self.install_dir = Path(install_dir).expanduser()
        self.providers = providers if providers is not None else ProviderRegistry.with_builtin_hosts()
        self.storage = storage

        self._sessions: dict[str, CommandSession] = {}
        self._ses_lock = threading.Lock()

        self._active_chats: dict[str, Conversation] = {}
        self._chat_lock = threading.Lock()

        self._contexts: dict[str, KnowledgeContext] = {}
        self._ctx_lock = threading.Lock()

        self._stores: dict[str, KeyValueStore] = {}
        self._store_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Install layout
    # ------------------------------------------------------------------

    def install(self) -> None:
        """
        Create the install directory and its stores.

        Raises:
            AlreadyExistsError: If the install directory already exists.
        """
        if self.is_installed():
            raise AlreadyExistsError(f"Target dir already exists: {self.install_dir}")
        for name in (DATA_STORE_DIRECTORY, CHAT_STORE_DIRECTORY, PROVIDER_STORE_DIRECTORY):
            (self.install_dir / name).mkdir(parents=True, exist_ok=True)
        logger.debug("Installed to %s", self.install_dir)

    def is_installed(self) -> bool:
        return self.install_dir.exists()

    def _store(self, directory: str) -> KeyValueStore:
        with self._store_lock:
            store = self._stores.get(directory)
            if store is None:
                if not self.is_installed():
                    raise InvalidStateError(f"Not installed: {self.install_dir}")
                if self.storage == "sqlite":
                    db_path = self.install_dir / DATA_STORE_DIRECTORY / SQLITE_FILENAME
                    db_path.parent.mkdir(parents=True, exist_ok=True)
                    store = SqliteStore(db_path, namespace=directory)
                else:
                    store = DirectoryStore(self.install_dir / directory)
                self._stores[directory] = store
            return store

    @property
    def chat_store(self) -> KeyValueStore:
        return self._store(CHAT_STORE_DIRECTORY)

    @property
    def provider_store(self) -> KeyValueStore:
        return self._store(PROVIDER_STORE_DIRECTORY)

    @property
    def data_store(self) -> KeyValueStore:
        return self._store(DATA_STORE_DIRECTORY)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def new_session(self) -> CommandSession:
        session = CommandSession()
        with self._ses_lock:
            self._sessions[session.id] = session
        logger.debug("Started session %s", session.id)
        return session

    def end_session(self, session_id: str) -> None:
        with self._ses_lock:
            if self._sessions.pop(session_id, None) is None:
                raise NodeNotFoundError(f"Session {session_id} not found")

    def session_list(self) -> list[str]:
        with self._ses_lock:
            return list(self._sessions)

    def _get_or_create_session(self, session_id: str) -> CommandSession:
        with self._ses_lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = CommandSession(id=session_id)
                self._sessions[session_id] = session
            return session

    def execute_statement(self, session_id: str, statement: Statement | str) -> StatementResult:
        """
        Execute *statement* in the named session, creating the session on
        first use.

        Raises:
            ValueError: If *session_id* is blank
            StatementError: If the statement is invalid
            ChatTreeError: Whatever the dispatched operation raises
        """
        session_id = session_id.strip()
        if not session_id:
            raise ValueError("Session id is required")

        session = self._get_or_create_session(session_id)
        callbacks = OperationalCallbacks(
            on_new_provider=self.new_provider_from_statement,
            on_new_chat=self.new_chat,
            on_load_chat=self.load_chat,
            on_new_context=self.new_context,
            on_list_chats=self.list_chats,
            on_list_contexts=self.list_contexts,
        )
        return session.execute(statement, callbacks)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def _base_provider(self, host: str) -> Provider:
        if host in self.providers:
            return self.providers.get(host)
        try:
            return self.providers.create(ProviderSettings(name=host, host=host))
        except NodeNotFoundError as e:
            raise NodeNotFoundError(f"Host provider (base provider) [{host}] does not exist") from e

    def new_provider_from_statement(self, command: NewProviderCommand) -> Provider:
        """
        Create and persist a named provider based on a host provider.

        A ``max_tokens`` of zero or above the host's value, and a
        ``temperature`` of zero or above 1, fall back to the host's settings.

        Raises:
            AlreadyExistsError: If the name is taken
            NodeNotFoundError: If the host is unknown
        """
        if command.name in self.providers:
            raise AlreadyExistsError(f"Provider [{command.name}] already exists")

        base = self._base_provider(command.host)

        max_tokens = command.max_tokens
        if max_tokens == 0 or max_tokens > base.settings.max_tokens:
            logger.debug("max_tokens out of range, using host default %d", base.settings.max_tokens)
            max_tokens = base.settings.max_tokens

        temperature = command.temperature
        if temperature == 0.0 or temperature > 1.0:
            logger.debug("temperature out of range, using host default %s", base.settings.temperature)
            temperature = base.settings.temperature

        settings = ProviderSettings(
            name=command.name,
            host=base.settings.host or command.host,
            base_url=command.base_url,
            model=base.settings.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system_prompt=command.system_prompt,
        )
        provider = base.clone_with_settings(settings)
        self.add_provider(command.name, provider)
        return provider

    def add_provider(self, name: str, provider: Provider) -> None:
        """
        Register *provider* under *name* and save its settings.

        Raises:
            AlreadyExistsError: If the name is taken.
        """
        self.providers.register(name, provider)
        key = _json_key(name.replace(" ", "_"))
        self.provider_store.put(key, json.dumps(provider.settings.to_dict()).encode("utf-8"))
        logger.debug("Added provider %s", name)

    def load_providers(self) -> list[str]:
        """
        Register every saved provider, built by its host's factory.

        Raises:
            AlreadyExistsError: If a saved name is already registered
            DecodeError: If a settings document is malformed
        """
        loaded: list[str] = []
        store = self.provider_store
        for key in store.keys():
            if not key.endswith(".json"):
                continue
            try:
                data = json.loads(store.get(key))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise DecodeError(f"Failed to unmarshal provider settings from {key}: {e}") from e
            if not isinstance(data, dict):
                raise DecodeError(f"Provider settings in {key} must be an object")
            settings = ProviderSettings.from_dict(data)
            if not settings.name:
                settings.name = key[: -len(".json")]
            self.providers.register(settings.name, self.providers.create(settings))
            loaded.append(settings.name)
        logger.debug("Loaded %d providers", len(loaded))
        return loaded

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def new_chat(self, name: str, provider_name: str) -> Conversation:
        """
        Define a chat and save its empty snapshot; it is not loaded.

        Raises:
            NodeNotFoundError: If the provider is unknown
            AlreadyExistsError: If the chat already exists
        """
        provider = self.providers.get(provider_name)
        key = _json_key(name)
        if self.chat_store.exists(key):
            raise AlreadyExistsError(f"Chat [{name}] already exists")

        chat = Conversation(
            provider.clone_with_settings(provider.settings),
            provider_name=provider_name,
        )
        self.write_snapshot(name, chat)
        logger.debug("Created chat %s with provider %s", name, provider_name)
        return chat

    def load_chat(self, name: str, ref: str | None = None) -> Conversation:
        """
        Return the active chat *name*, restoring it from the chat store if
        needed, and move its cursor to *ref* when given.

        Raises:
            NodeNotFoundError: If the chat, its provider, a context, or
                *ref* cannot be found
            DecodeError: If the stored snapshot is malformed
        """
        if name.endswith(".json"):
            name = name[: -len(".json")]

        with self._chat_lock:
            chat = self._active_chats.get(name)

        if chat is None:
            snapshot = Snapshot.from_json(self.chat_store.get(_json_key(name)))
            with self._ctx_lock:
                contexts = dict(self._contexts)
            chat = restore(snapshot, self.providers, contexts)
            with self._chat_lock:
                # Another caller may have loaded it meanwhile
                chat = self._active_chats.setdefault(name, chat)
            logger.debug("Loaded chat %s", name)

        if ref:
            chat.goto(ref)
        return chat

    def get_active_chat(self, name: str) -> Conversation:
        with self._chat_lock:
            chat = self._active_chats.get(name)
        if chat is None:
            raise NodeNotFoundError(f"Chat {name} not found")
        return chat

    def save_active_chat(self, session_id: str) -> None:
        """
        Save the chat most recently loaded by the session.

        Raises:
            NodeNotFoundError: If the session does not exist
            InvalidStateError: If the session has no active chat
        """
        with self._ses_lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise NodeNotFoundError(f"Session [{session_id}] does not exist")
        if session.active_chat is None:
            raise InvalidStateError(f"Session [{session_id}] has no active chat")

        with self._chat_lock:
            chat = self._active_chats.get(session.active_chat)
        if chat is None:
            raise InvalidStateError(f"Chat [{session.active_chat}] is not active")
        self.write_snapshot(session.active_chat, chat)

    def write_snapshot(self, name: str, chat: Conversation) -> None:
        snapshot = chat.snapshot()
        self.chat_store.put(_json_key(name), snapshot.to_json().encode("utf-8"))
        logger.debug("Saved chat %s", name)

    def list_chats(self) -> list[str]:
        return [k[: -len(".json")] for k in self.chat_store.keys() if k.endswith(".json")]

    # ------------------------------------------------------------------
    # Knowledge contexts
    # ------------------------------------------------------------------

    def new_context(self, command: NewContextCommand) -> KnowledgeContext:
        """
        Define and save a knowledge context.

        Raises:
            AlreadyExistsError: If the name is taken
            NodeNotFoundError: If the directory does not exist
        """
        if command.directory and not Path(command.directory).expanduser().is_dir():
            raise NodeNotFoundError(f"Context directory not found: {command.directory}")

        context = KnowledgeContext(
            name=command.name,
            description=command.description,
            directory=str(Path(command.directory).expanduser()) if command.directory else None,
        )
        with self._ctx_lock:
            if context.name in self._contexts:
                raise AlreadyExistsError(f"Context [{context.name}] already exists")
            self._contexts[context.name] = context

        self.data_store.put(_json_key(context.name), json.dumps(context.to_dict()).encode("utf-8"))
        logger.debug("Created context %s", context.name)
        return context

    def load_contexts(self) -> list[str]:
        """
        Load saved knowledge contexts.

        Raises:
            DecodeError: If a context document is malformed.
        """
        store = self.data_store
        loaded: dict[str, KnowledgeContext] = {}
        for key in store.keys():
            if not key.endswith(".json"):
                continue
            try:
                data = json.loads(store.get(key))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise DecodeError(f"Failed to unmarshal context from {key}: {e}") from e
            if not isinstance(data, dict) or "name" not in data:
                raise DecodeError(f"Context document {key} must be an object with a name")
            context = KnowledgeContext.from_dict(data)
            loaded[context.name] = context
        with self._ctx_lock:
            self._contexts.update(loaded)
        return list(loaded)

    def get_context(self, name: str) -> KnowledgeContext:
        with self._ctx_lock:
            context = self._contexts.get(name)
        if context is None:
            raise NodeNotFoundError(f"Context {name} not found")
        return context

    def list_contexts(self) -> list[str]:
        with self._ctx_lock:
            return sorted(self._contexts)
