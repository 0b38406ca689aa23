"""Tests for CLI commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from chat_tree_engine import cli
from chat_tree_engine import config as config_module
from chat_tree_engine.core import Core
from chat_tree_engine.providers.registry import ProviderRegistry

from conftest import ScriptedProvider


def _scripted_registry(config) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register_factory("scripted", lambda settings: ScriptedProvider(settings))
    return registry


@pytest.fixture(autouse=True)
def isolated(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests away from real config files and SDK providers."""
    monkeypatch.setattr(config_module, "CONFIG_SEARCH_PATHS", [])
    monkeypatch.delenv(config_module.HOME_ENV, raising=False)
    monkeypatch.setattr(cli, "build_registry", _scripted_registry)


@pytest.fixture
def home(tmp_path: Path) -> Path:
    return tmp_path / "home"


def run(home: Path, *args: str) -> None:
    cli.main(["--home", str(home), *args])


@pytest.fixture
def chat_home(home: Path) -> Path:
    """An install with provider ``fast`` and chat ``ideas``."""
    run(home, "install")
    run(home, "new-provider", "fast", "--host", "scripted")
    run(home, "new-chat", "ideas", "-p", "fast")
    return home


def _reload(home: Path) -> Core:
    core = Core(home, providers=_scripted_registry(None))
    core.load_providers()
    return core


class TestParser:
    def test_chat_args(self) -> None:
        args = cli.build_parser().parse_args(["chat", "ideas", "--hash", "abc"])
        assert args.command == "chat"
        assert args.name == "ideas"
        assert args.ref == "abc"

    def test_new_provider_args(self) -> None:
        args = cli.build_parser().parse_args(
            ["new-provider", "fast", "--host", "openai", "--max-tokens", "10", "--temperature", "0.5"]
        )
        assert (args.host, args.max_tokens, args.temperature) == ("openai", 10, 0.5)


class TestInstall:
    def test_install(self, home: Path, capsys) -> None:
        run(home, "install")
        assert (home / "chat-store").is_dir()
        assert "Installed" in capsys.readouterr().out

    def test_install_twice(self, home: Path, capsys) -> None:
        run(home, "install")
        with pytest.raises(SystemExit) as exc_info:
            run(home, "install")
        assert exc_info.value.code == 1
        assert "already exists" in capsys.readouterr().out

    def test_requires_install(self, home: Path, capsys) -> None:
        with pytest.raises(SystemExit):
            run(home, "list")
        assert "Not installed" in capsys.readouterr().out


class TestManagement:
    """Tests for provider and chat management commands."""

    def test_list_and_providers(self, chat_home: Path, capsys) -> None:
        capsys.readouterr()
        run(chat_home, "list")
        assert "ideas" in capsys.readouterr().out

        run(chat_home, "providers")
        output = capsys.readouterr().out
        assert "fast" in output
        assert "scripted" in output

    def test_tree_and_history(self, chat_home: Path, capsys) -> None:
        capsys.readouterr()
        run(chat_home, "tree", "ideas")
        assert "[ROOT] Provider: fast" in capsys.readouterr().out

        run(chat_home, "history", "ideas")
        assert capsys.readouterr().out.strip() == ""

    def test_unknown_chat(self, chat_home: Path, capsys) -> None:
        with pytest.raises(SystemExit):
            run(chat_home, "tree", "missing")
        assert "Error" in capsys.readouterr().out

    def test_new_chat_with_path_name(self, chat_home: Path, capsys) -> None:
        """Should report a chat name containing a path separator as an error."""
        capsys.readouterr()
        with pytest.raises(SystemExit) as exc_info:
            run(chat_home, "new-chat", "a/b", "-p", "fast")
        assert exc_info.value.code == 1
        assert "Invalid store key" in capsys.readouterr().out

    def test_new_chat_uses_default_provider(self, home: Path, tmp_path: Path) -> None:
        config_file = tmp_path / "chat-tree.yaml"
        config_file.write_text("default_provider: fast\n")
        run(home, "install")
        run(home, "new-provider", "fast", "--host", "scripted")
        cli.main(["--home", str(home), "-c", str(config_file), "new-chat", "ideas"])
        assert _reload(home).list_chats() == ["ideas"]

    def test_new_ctx(self, home: Path, tmp_path: Path, capsys) -> None:
        run(home, "install")
        run(home, "new-ctx", "docs", "--dir", str(tmp_path))
        assert "Created context docs" in capsys.readouterr().out


class TestChatLoop:
    """Tests for the interactive chat loop."""

    def test_message_and_quit(self, chat_home: Path, capsys) -> None:
        with patch.object(cli.console, "input", side_effect=["hello", "\\q"]):
            run(chat_home, "chat", "ideas")

        assert "echo: hello" in capsys.readouterr().out
        chat = _reload(chat_home).load_chat("ideas")
        assert chat.print_history() == "user: hello\nassistant: echo: hello"

    def test_commands_in_loop(self, chat_home: Path, capsys) -> None:
        inputs = ["first", "\\r", "\\.", "\\c 9", "\\x", "ignored", "\\q"]
        with patch.object(cli.console, "input", side_effect=inputs):
            run(chat_home, "chat", "ideas")

        output = capsys.readouterr().out
        assert "current node has children" in output
        assert "out of bounds" in output
        assert "Chat is disabled" in output

        chat = _reload(chat_home).load_chat("ideas")
        assert len(chat.root.children) == 1

    def test_eof_does_not_save(self, chat_home: Path) -> None:
        with patch.object(cli.console, "input", side_effect=["unsaved", EOFError]):
            run(chat_home, "chat", "ideas")

        chat = _reload(chat_home).load_chat("ideas")
        assert chat.root.children == []

    def test_repl(self, chat_home: Path, capsys) -> None:
        inputs = ["\\list-chat", "\\bogus", '\\chat "ideas"', "hi", "\\q", EOFError]
        with patch.object(cli.console, "input", side_effect=inputs):
            run(chat_home, "repl")

        output = capsys.readouterr().out
        assert "ideas" in output
        assert "unknown command" in output
        chat = _reload(chat_home).load_chat("ideas")
        assert chat.current_node.user.text == "hi"


class TestConfigCommands:
    def test_init(self, tmp_path: Path) -> None:
        output = tmp_path / "chat-tree.yaml"
        cli.main(["config", "init", "-o", str(output)])
        assert "providers:" in output.read_text()

        with pytest.raises(SystemExit):
            cli.main(["config", "init", "-o", str(output)])

    def test_show(self, tmp_path: Path, capsys) -> None:
        config_file = tmp_path / "chat-tree.yaml"
        config_file.write_text("log_level: ERROR\n")
        cli.main(["-c", str(config_file), "config", "show"])
        output = capsys.readouterr().out
        assert "Loaded from" in output
        assert "log_level: ERROR" in output

    def test_show_defaults(self, capsys) -> None:
        cli.main(["config", "show"])
        assert "No config file found" in capsys.readouterr().out

    def test_path(self, capsys) -> None:
        cli.main(["config", "path"])
        assert "CHAT_TREE_HOME" in capsys.readouterr().out
