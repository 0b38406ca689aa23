"""
Command sessions.

A command session is a workspace in which statements are executed; it is
not a chat.  Parsed statements become typed commands, which the session
dispatches to :class:`OperationalCallbacks` supplied by the owner (normally
:class:`chat_tree_engine.core.Core`).  The session remembers which chat it
last loaded so that chat can be saved later.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from chat_tree_engine.errors import InvalidStateError, StatementError
from chat_tree_engine.logging import get_logger
from chat_tree_engine.statement import Statement, parse_statement

if TYPE_CHECKING:
    from chat_tree_engine.conversation import Conversation

logger = get_logger("session")


# ---------------------------------------------------------------------------
# Typed commands
# ---------------------------------------------------------------------------


@dataclass
class NewProviderCommand:
    name: str
    host: str
    base_url: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    system_prompt: str = ""


@dataclass
class NewChatCommand:
    name: str
    provider: str


@dataclass
class LoadChatCommand:
    name: str
    hash: str | None = None


@dataclass
class NewContextCommand:
    name: str
    directory: str | None = None
    description: str = ""


@dataclass
class ListChatsCommand:
    pass


@dataclass
class ListContextsCommand:
    pass


Command = (
    NewProviderCommand
    | NewChatCommand
    | LoadChatCommand
    | NewContextCommand
    | ListChatsCommand
    | ListContextsCommand
)


def _string(statement: Statement, key: str) -> str:
    value = statement.get(key, "")
    return str(value)


def build_command(statement: Statement) -> Command:
    """
    Convert a parsed statement into its typed command.

    Raises:
        StatementError: If the statement is missing its name.
    """
    keyword = statement.keyword

    if keyword == "list-chat":
        return ListChatsCommand()
    if keyword == "list-ctx":
        return ListContextsCommand()

    if not statement.name:
        raise StatementError(f"\\{keyword}: name must be specified")

    if keyword == "new-provider":
        return NewProviderCommand(
            name=statement.name,
            host=_string(statement, "host"),
            base_url=_string(statement, "base-url"),
            max_tokens=int(statement.get("max-tokens", 0) or 0),
            temperature=float(statement.get("temperature", 0.0) or 0.0),
            system_prompt=_string(statement, "system-prompt"),
        )
    if keyword == "new-chat":
        return NewChatCommand(name=statement.name, provider=_string(statement, "provider"))
    if keyword == "chat":
        ref = statement.get("hash")
        return LoadChatCommand(name=statement.name, hash=str(ref) if ref else None)
    if keyword == "new-ctx":
        directory = statement.get("dir")
        return NewContextCommand(
            name=statement.name,
            directory=str(directory) if directory else None,
            description=_string(statement, "description"),
        )

    raise StatementError(f"unsupported command: \\{keyword}")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


@dataclass
class OperationalCallbacks:
    """Operations a session needs from its owner."""

    on_new_provider: Callable[[NewProviderCommand], Any]
    on_new_chat: Callable[[str, str], Any]
    on_load_chat: Callable[[str, str | None], Conversation]
    on_new_context: Callable[[NewContextCommand], Any] | None = None
    on_list_chats: Callable[[], list[str]] | None = None
    on_list_contexts: Callable[[], list[str]] | None = None


@dataclass
class StatementResult:
    """Outcome of one executed statement."""

    chat: Conversation | None = None
    chat_name: str | None = None
    listing: list[str] = field(default_factory=list)


@dataclass
class CommandSession:
    """A workspace for executing statements."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    active_chat: str | None = None

    def execute(self, statement: Statement | str, callbacks: OperationalCallbacks) -> StatementResult:
        """
        Parse (if needed), type, and dispatch *statement*.

        Raises:
            StatementError: If the statement is invalid
            InvalidStateError: If the owner does not support the command
        """
        if isinstance(statement, str):
            statement = parse_statement(statement)
        command = build_command(statement)
        logger.debug("Session %s executing %s", self.id, type(command).__name__)

        if isinstance(command, NewProviderCommand):
            callbacks.on_new_provider(command)
            return StatementResult()

        if isinstance(command, NewChatCommand):
            callbacks.on_new_chat(command.name, command.provider)
            return StatementResult()

        if isinstance(command, LoadChatCommand):
            chat = callbacks.on_load_chat(command.name, command.hash)
            self.active_chat = command.name
            return StatementResult(chat=chat, chat_name=command.name)

        if isinstance(command, NewContextCommand):
            if callbacks.on_new_context is None:
                raise InvalidStateError("contexts are not supported here")
            callbacks.on_new_context(command)
            return StatementResult()

        if isinstance(command, ListChatsCommand):
            if callbacks.on_list_chats is None:
                raise InvalidStateError("listing chats is not supported here")
            return StatementResult(listing=callbacks.on_list_chats())

        if callbacks.on_list_contexts is None:
            raise InvalidStateError("listing contexts is not supported here")
        return StatementResult(listing=callbacks.on_list_contexts())
