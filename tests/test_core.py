"""Tests for Core."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from chat_tree_engine.core import (
    CHAT_STORE_DIRECTORY,
    DATA_STORE_DIRECTORY,
    PROVIDER_STORE_DIRECTORY,
    Core,
)
from chat_tree_engine.errors import (
    AlreadyExistsError,
    InvalidStateError,
    NodeNotFoundError,
    StatementError,
)
from chat_tree_engine.providers.registry import ProviderRegistry
from chat_tree_engine.session import NewContextCommand, NewProviderCommand

from conftest import ScriptedProvider


def _make_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register_factory("scripted", lambda settings: ScriptedProvider(settings))
    return registry


@pytest.fixture(params=["directory", "sqlite"])
def core(request: pytest.FixtureRequest, tmp_path: Path) -> Core:
    core = Core(tmp_path / "home", providers=_make_registry(), storage=request.param)
    core.install()
    return core


def _reopen(core: Core) -> Core:
    """A fresh core over the same install, as after a restart."""
    fresh = Core(core.install_dir, providers=_make_registry(), storage=core.storage)
    fresh.load_providers()
    fresh.load_contexts()
    return fresh


class TestInstall:
    def test_creates_layout(self, tmp_path: Path) -> None:
        core = Core(tmp_path / "home")
        assert not core.is_installed()
        core.install()
        for name in (DATA_STORE_DIRECTORY, CHAT_STORE_DIRECTORY, PROVIDER_STORE_DIRECTORY):
            assert (tmp_path / "home" / name).is_dir()

    def test_install_twice(self, core: Core) -> None:
        with pytest.raises(AlreadyExistsError):
            core.install()

    def test_stores_require_install(self, tmp_path: Path) -> None:
        core = Core(tmp_path / "missing")
        with pytest.raises(InvalidStateError):
            _ = core.chat_store


class TestProviders:
    """Tests for named providers."""

    @pytest.mark.parametrize(
        ("max_tokens", "temperature", "expected_tokens", "expected_temperature"),
        [
            (500, 0.2, 500, 0.2),
            (0, 0.0, 1000, 0.5),
            (5000, 1.5, 1000, 0.5),
            (1000, 1.0, 1000, 1.0),
        ],
    )
    def test_clamping(
        self,
        core: Core,
        max_tokens: int,
        temperature: float,
        expected_tokens: int,
        expected_temperature: float,
    ) -> None:
        """Should fall back to the host's settings for out-of-range values."""
        provider = core.new_provider_from_statement(
            NewProviderCommand(
                name="fast", host="scripted", max_tokens=max_tokens, temperature=temperature
            )
        )
        assert provider.settings.max_tokens == expected_tokens
        assert provider.settings.temperature == expected_temperature
        assert provider.settings.model == "test-model"
        assert core.providers.get("fast") is provider

    def test_persisted_with_underscored_name(self, core: Core) -> None:
        core.new_provider_from_statement(
            NewProviderCommand(name="my fast", host="scripted", system_prompt="Be brief")
        )
        data = json.loads(core.provider_store.get("my_fast.json"))
        assert data["name"] == "my fast"
        assert data["host"] == "scripted"
        assert data["system_prompt"] == "Be brief"

    def test_duplicate_name(self, core: Core) -> None:
        core.new_provider_from_statement(NewProviderCommand(name="fast", host="scripted"))
        with pytest.raises(AlreadyExistsError):
            core.new_provider_from_statement(NewProviderCommand(name="fast", host="scripted"))

    def test_unknown_host(self, core: Core) -> None:
        with pytest.raises(NodeNotFoundError, match="does not exist"):
            core.new_provider_from_statement(NewProviderCommand(name="x", host="nowhere"))

    def test_named_provider_as_base(self, core: Core) -> None:
        core.new_provider_from_statement(
            NewProviderCommand(name="base", host="scripted", max_tokens=300)
        )
        derived = core.new_provider_from_statement(
            NewProviderCommand(name="derived", host="base", max_tokens=900)
        )
        assert derived.settings.max_tokens == 300
        assert derived.settings.host == "scripted"

        fresh = Core(core.install_dir, providers=_make_registry(), storage=core.storage)
        assert sorted(fresh.load_providers()) == ["base", "derived"]

    def test_load_providers(self, core: Core) -> None:
        core.new_provider_from_statement(
            NewProviderCommand(name="fast", host="scripted", max_tokens=200)
        )
        fresh = Core(core.install_dir, providers=_make_registry(), storage=core.storage)
        assert fresh.load_providers() == ["fast"]
        assert fresh.providers.get("fast").settings.max_tokens == 200


class TestChats:
    """Tests for chat creation, loading and saving."""

    @pytest.fixture
    def with_provider(self, core: Core) -> Core:
        core.new_provider_from_statement(NewProviderCommand(name="fast", host="scripted"))
        return core

    def test_new_chat_is_saved(self, with_provider: Core) -> None:
        with_provider.new_chat("ideas", "fast")
        assert with_provider.list_chats() == ["ideas"]
        assert with_provider.chat_store.exists("ideas.json")

    def test_new_chat_duplicate(self, with_provider: Core) -> None:
        with_provider.new_chat("ideas", "fast")
        with pytest.raises(AlreadyExistsError):
            with_provider.new_chat("ideas", "fast")

    def test_new_chat_unknown_provider(self, core: Core) -> None:
        with pytest.raises(NodeNotFoundError):
            core.new_chat("ideas", "missing")

    def test_load_chat_missing(self, core: Core) -> None:
        with pytest.raises(NodeNotFoundError):
            core.load_chat("missing")

    def test_load_chat_is_cached(self, with_provider: Core) -> None:
        with_provider.new_chat("ideas", "fast")
        first = with_provider.load_chat("ideas")
        assert with_provider.load_chat("ideas.json") is first
        assert with_provider.get_active_chat("ideas") is first

    def test_get_active_chat_missing(self, core: Core) -> None:
        with pytest.raises(NodeNotFoundError):
            core.get_active_chat("ideas")

    @pytest.mark.asyncio
    async def test_save_and_reload(self, with_provider: Core) -> None:
        """Should restore the tree and cursor after a restart."""
        core = with_provider
        session = core.new_session()
        core.execute_statement(session.id, '\\new-chat "ideas" :provider "fast"')

        result = core.execute_statement(session.id, '\\chat "ideas"')
        chat = result.chat
        await chat.submit_message("first question")
        await chat.submit_message("second question")
        core.save_active_chat(session.id)

        fresh = _reopen(core)
        restored = fresh.load_chat("ideas")
        assert restored.root.hash() == chat.root.hash()
        assert restored.current_node.hash() == chat.current_node.hash()
        assert restored.provider_name == "fast"

    @pytest.mark.asyncio
    async def test_load_with_ref(self, with_provider: Core) -> None:
        core = with_provider
        session = core.new_session()
        core.new_chat("ideas", "fast")
        chat = core.execute_statement(session.id, '\\chat "ideas"').chat
        await chat.submit_message("question")
        target = chat.current_node.hash()
        chat.to_root()

        again = core.execute_statement(session.id, f'\\chat "ideas" :hash "{target[:8]}"').chat
        assert again is chat
        assert chat.current_node.hash() == target

    def test_chats_have_private_providers(self, with_provider: Core) -> None:
        with_provider.new_chat("one", "fast")
        with_provider.new_chat("two", "fast")
        one = with_provider.load_chat("one")
        two = with_provider.load_chat("two")
        one.provider.queue_images(["a.png"])
        assert two.provider.pending_images == []

    def test_save_unknown_session(self, core: Core) -> None:
        with pytest.raises(NodeNotFoundError):
            core.save_active_chat("nope")

    def test_save_without_active_chat(self, core: Core) -> None:
        session = core.new_session()
        with pytest.raises(InvalidStateError):
            core.save_active_chat(session.id)


class TestSessions:
    def test_lifecycle(self, core: Core) -> None:
        session = core.new_session()
        assert session.id in core.session_list()
        core.end_session(session.id)
        assert session.id not in core.session_list()

    def test_end_unknown(self, core: Core) -> None:
        with pytest.raises(NodeNotFoundError):
            core.end_session("nope")

    def test_blank_session_id(self, core: Core) -> None:
        with pytest.raises(ValueError):
            core.execute_statement("  ", "\\list-chat")

    def test_session_created_on_first_use(self, core: Core) -> None:
        core.execute_statement("web-1", "\\list-chat")
        assert "web-1" in core.session_list()

    def test_invalid_statement(self, core: Core) -> None:
        with pytest.raises(StatementError):
            core.execute_statement("s", '\\chat "x" :bogus "y"')

    def test_list_statements(self, core: Core, tmp_path: Path) -> None:
        core.execute_statement("s", '\\new-provider "fast" :host "scripted"')
        core.execute_statement("s", '\\new-chat "ideas" :provider "fast"')
        core.execute_statement("s", f'\\new-ctx "docs" :dir "{tmp_path}"')
        assert core.execute_statement("s", "\\list-chat").listing == ["ideas"]
        assert core.execute_statement("s", "\\list-ctx").listing == ["docs"]


class TestContexts:
    """Tests for knowledge contexts."""

    def test_new_context(self, core: Core, tmp_path: Path) -> None:
        context = core.new_context(
            NewContextCommand(name="docs", directory=str(tmp_path), description="Notes")
        )
        assert core.get_context("docs") is context
        assert core.list_contexts() == ["docs"]
        assert core.data_store.exists("docs.json")

    def test_missing_directory(self, core: Core, tmp_path: Path) -> None:
        with pytest.raises(NodeNotFoundError):
            core.new_context(NewContextCommand(name="docs", directory=str(tmp_path / "nope")))

    def test_duplicate(self, core: Core) -> None:
        core.new_context(NewContextCommand(name="docs"))
        with pytest.raises(AlreadyExistsError):
            core.new_context(NewContextCommand(name="docs"))

    def test_unknown_context(self, core: Core) -> None:
        with pytest.raises(NodeNotFoundError):
            core.get_context("docs")

    def test_load_contexts(self, core: Core, tmp_path: Path) -> None:
        core.new_context(NewContextCommand(name="docs", directory=str(tmp_path)))
        fresh = Core(core.install_dir, providers=_make_registry(), storage=core.storage)
        assert fresh.load_contexts() == ["docs"]
        assert fresh.get_context("docs").directory == str(tmp_path)

    def test_chat_context_survives_reload(self, core: Core, tmp_path: Path) -> None:
        core.new_provider_from_statement(NewProviderCommand(name="fast", host="scripted"))
        core.new_context(NewContextCommand(name="docs", directory=str(tmp_path)))
        core.new_chat("ideas", "fast")

        session = core.new_session()
        chat = core.execute_statement(session.id, '\\chat "ideas"').chat
        chat.attach_context(core.get_context("docs"))
        core.save_active_chat(session.id)

        restored = _reopen(core).load_chat("ideas")
        assert restored.list_knowledge_contexts() == ["docs"]
