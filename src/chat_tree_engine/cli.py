"""
Command-line interface for the conversation tree engine.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from chat_tree_engine.commands import ChatCommandRegistry, CommandResult
from chat_tree_engine.config import CONFIG_SEARCH_PATHS, HOME_ENV, EngineConfig, find_config_file
from chat_tree_engine.conversation import Conversation
from chat_tree_engine.core import Core
from chat_tree_engine.errors import ChatTreeError
from chat_tree_engine.logging import get_logger, setup_logging
from chat_tree_engine.providers.registry import ProviderRegistry
from chat_tree_engine.session import NewContextCommand, NewProviderCommand

console = Console()
logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Branching conversation tree CLI",
        prog="chat-tree",
    )

    # Global options
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output (debug logging)",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        help="Config file (default: search path)",
    )
    parser.add_argument(
        "--home",
        type=Path,
        help=f"Install directory (overrides config and ${HOME_ENV})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("install", help="Create the install directory")
    subparsers.add_parser("providers", help="List named providers")

    # new-provider
    provider_parser = subparsers.add_parser("new-provider", help="Define a named provider")
    provider_parser.add_argument("name", help="Provider name")
    provider_parser.add_argument("--host", required=True, help="Host provider (anthropic, openai)")
    provider_parser.add_argument("--base-url", default="", help="API base URL")
    provider_parser.add_argument("--max-tokens", type=int, default=0, help="Max tokens")
    provider_parser.add_argument("--temperature", type=float, default=0.0, help="Temperature")
    provider_parser.add_argument("--system-prompt", default="", help="System prompt")

    # new-chat
    new_chat_parser = subparsers.add_parser("new-chat", help="Create a chat")
    new_chat_parser.add_argument("name", help="Chat name")
    new_chat_parser.add_argument("-p", "--provider", help="Provider name (default: config default_provider)")

    # new-ctx
    ctx_parser = subparsers.add_parser("new-ctx", help="Define a knowledge context")
    ctx_parser.add_argument("name", help="Context name")
    ctx_parser.add_argument("-d", "--dir", dest="directory", help="Directory of context files")
    ctx_parser.add_argument("--description", default="", help="Description")

    subparsers.add_parser("list", help="List chats")

    # Read-only views of a stored chat
    for name, help_text in (
        ("tree", "Show the whole tree of a chat"),
        ("history", "Show the history of the current branch"),
        ("artifacts", "List code artifacts of a node"),
    ):
        view_parser = subparsers.add_parser(name, help=help_text)
        view_parser.add_argument("name", help="Chat name")
        view_parser.add_argument("--hash", dest="ref", help="Node hash or prefix")

    # chat
    chat_parser = subparsers.add_parser("chat", help="Open a chat")
    chat_parser.add_argument("name", help="Chat name")
    chat_parser.add_argument("--hash", dest="ref", help="Node hash or prefix to start from")

    subparsers.add_parser("repl", help="Execute statements interactively")

    # config with subcommands
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_init_parser = config_subparsers.add_parser("init", help="Initialize a new config file")
    config_init_parser.add_argument(
        "-o",
        "--output",
        default="chat-tree.yaml",
        help="Output file path",
    )
    config_subparsers.add_parser("path", help="Show config file paths")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "config":
        setup_logging("DEBUG" if args.verbose else "WARNING")
        cmd_config(args)
        return

    try:
        config = EngineConfig.load(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Failed to load config: {e}[/red]")
        sys.exit(1)
    if args.home:
        config.install_dir = args.home.expanduser()
    if args.command == "new-chat" and not args.provider:
        args.provider = config.default_provider

    setup_logging("DEBUG" if args.verbose else config.log_level, file=config.log_file)

    handlers = {
        "install": cmd_install,
        "providers": cmd_providers,
        "new-provider": cmd_new_provider,
        "new-chat": cmd_new_chat,
        "new-ctx": cmd_new_ctx,
        "list": cmd_list,
        "tree": cmd_tree,
        "history": cmd_history,
        "artifacts": cmd_artifacts,
        "chat": cmd_chat,
        "repl": cmd_repl,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return

    try:
        core = create_core(config, load=args.command != "install")
        handler(core, args)
    except ChatTreeError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def build_registry(config: EngineConfig) -> ProviderRegistry:
    """Registry with the built-in hosts plus the configured host providers."""
    registry = ProviderRegistry.with_builtin_hosts()
    for host, settings in config.providers.items():
        try:
            registry.register(host, registry.create(settings))
        except ImportError as e:
            logger.warning("Skipping provider %s: %s", host, e)
    return registry


def create_core(config: EngineConfig, load: bool = True) -> Core:
    """Create a core from config, loading saved providers and contexts."""
    core = Core(config.install_dir, providers=build_registry(config), storage=config.storage)
    if load:
        if not core.is_installed():
            console.print(f"[red]Not installed: {core.install_dir}[/red]")
            console.print("[dim]Run 'chat-tree install' first.[/dim]")
            sys.exit(1)
        core.load_providers()
        core.load_contexts()
    return core


def cmd_install(core: Core, args: argparse.Namespace) -> None:
    """Create the install directory."""
    core.install()
    console.print(f"[green]Installed to {core.install_dir}[/green]")


def cmd_providers(core: Core, args: argparse.Namespace) -> None:
    """List named providers."""
    table = Table(title="Providers")
    table.add_column("Name", style="cyan")
    table.add_column("Host")
    table.add_column("Model")
    table.add_column("Max tokens", justify="right")
    table.add_column("Temperature", justify="right")

    for name in core.providers.names():
        settings = core.providers.get(name).settings
        table.add_row(
            name,
            settings.host,
            settings.model,
            str(settings.max_tokens),
            f"{settings.temperature:.2f}",
        )

    console.print(table)
    console.print(f"\n[dim]Available hosts: {', '.join(core.providers.hosts)}[/dim]")


def cmd_new_provider(core: Core, args: argparse.Namespace) -> None:
    """Define a named provider."""
    provider = core.new_provider_from_statement(
        NewProviderCommand(
            name=args.name,
            host=args.host,
            base_url=args.base_url,
            max_tokens=args.max_tokens,
            temperature=args.temperature,
            system_prompt=args.system_prompt,
        )
    )
    settings = provider.settings
    console.print(
        f"[green]Created provider {args.name}[/green] "
        f"[dim]({settings.host}, {settings.model}, max_tokens={settings.max_tokens}, "
        f"temperature={settings.temperature:.2f})[/dim]"
    )


def cmd_new_chat(core: Core, args: argparse.Namespace) -> None:
    """Create a chat."""
    core.new_chat(args.name, args.provider)
    console.print(f"[green]Created chat {args.name}[/green]")


def cmd_new_ctx(core: Core, args: argparse.Namespace) -> None:
    """Define a knowledge context."""
    core.new_context(
        NewContextCommand(name=args.name, directory=args.directory, description=args.description)
    )
    console.print(f"[green]Created context {args.name}[/green]")


def cmd_list(core: Core, args: argparse.Namespace) -> None:
    """List chats."""
    chats = sorted(core.list_chats())
    for name in chats:
        console.print(f"  {name}")
    console.print(f"\n[dim]Total: {len(chats)} chats[/dim]")


def _open_chat(core: Core, args: argparse.Namespace) -> Conversation:
    return core.load_chat(args.name, args.ref)


def cmd_tree(core: Core, args: argparse.Namespace) -> None:
    """Show the whole tree of a chat."""
    console.print(_open_chat(core, args).print_tree(), markup=False, highlight=False)


def cmd_history(core: Core, args: argparse.Namespace) -> None:
    """Show the history of the current branch."""
    console.print(_open_chat(core, args).print_history(), markup=False, highlight=False)


def cmd_artifacts(core: Core, args: argparse.Namespace) -> None:
    """List code artifacts of a node."""
    commands = ChatCommandRegistry(_open_chat(core, args))
    _print_result(commands.dispatch("\\a"))


def cmd_chat(core: Core, args: argparse.Namespace) -> None:
    """Open a chat and run the chat loop."""
    session = core.new_session()
    statement = f'\\chat "{_quote(args.name)}"'
    if args.ref:
        statement += f' :hash "{_quote(args.ref)}"'
    result = core.execute_statement(session.id, statement)
    asyncio.run(run_chat(core, session.id, result.chat_name or args.name, result.chat))


def cmd_repl(core: Core, args: argparse.Namespace) -> None:
    """Execute statements until a chat is loaded, then run the chat loop."""
    session = core.new_session()
    console.print(
        Panel(
            "[bold]chat-tree[/bold] - statements\n"
            '\\new-provider "name" :host "anthropic"\n'
            '\\new-chat "name" :provider "name"\n'
            '\\chat "name" [:hash "prefix"]\n'
            '\\new-ctx "name" :dir "path"\n'
            "\\list-chat, \\list-ctx\n"
            "Ctrl+D to exit",
            border_style="blue",
        )
    )

    while True:
        try:
            line = console.input("[bold green]>[/bold green] ").strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Goodbye![/dim]")
            return

        if not line:
            continue

        try:
            result = core.execute_statement(session.id, line)
        except ChatTreeError as e:
            console.print(f"[red]Error:[/red] {e}")
            continue

        for item in result.listing:
            console.print(f"  {item}")
        if result.chat is not None:
            asyncio.run(run_chat(core, session.id, result.chat_name or "", result.chat))


async def run_chat(core: Core, session_id: str, name: str, chat: Conversation) -> None:
    """Read messages and commands until ``\\q`` or end of input."""
    commands = ChatCommandRegistry(chat, save=lambda: core.save_active_chat(session_id))
    console.print(
        Panel(
            f"[bold]{name}[/bold]\n"
            f"Provider: {chat.provider_name}\n"
            "Type \\? for commands, \\q to save and quit",
            border_style="blue",
        )
    )

    while True:
        prompt = f"[bold green]{chat.current_node.hash()[:8]} >[/bold green] "
        try:
            line = console.input(prompt).strip()
        except (EOFError, KeyboardInterrupt):
            console.print("\n[dim]Goodbye! (unsaved changes are kept in memory only)[/dim]")
            return

        if not line:
            continue

        if commands.is_command(line):
            result = commands.dispatch(line)
            _print_result(result)
            if result.should_quit:
                return
            continue

        if not chat.chat_enabled:
            console.print("[yellow]Chat is disabled; use \\x to enable it[/yellow]")
            continue

        try:
            with console.status("[dim]Thinking...[/dim]"):
                answer = await chat.submit_message(line)
        except ChatTreeError as e:
            console.print(f"[red]Error:[/red] {e}")
            continue

        console.print(answer, markup=False, highlight=False)


def _print_result(result: CommandResult) -> None:
    if result.error:
        console.print(f"[red]Error:[/red] {result.error}")
    if result.output:
        console.print(result.output, markup=False, highlight=False)


def _quote(value: str) -> str:
    return value.replace('"', '\\"')


def cmd_config(args: argparse.Namespace) -> None:
    """Configuration management commands."""
    if args.config_command == "show":
        _config_show(args.config)
    elif args.config_command == "init":
        _config_init(args.output)
    elif args.config_command == "path":
        _config_path()
    else:
        console.print("[yellow]Usage: chat-tree config <show|init|path>[/yellow]")


def _config_show(path: Path | None) -> None:
    """Show current configuration."""
    loaded_from = path or find_config_file()
    try:
        config = EngineConfig.load(loaded_from)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Failed to load {loaded_from}: {e}[/red]")
        sys.exit(1)

    if loaded_from is None:
        console.print("[dim]No config file found. Using defaults.[/dim]")
    else:
        console.print(f"[dim]Loaded from: {loaded_from}[/dim]\n")

    console.print("[bold]Current Configuration:[/bold]\n")
    console.print(config.to_yaml(), markup=False)


def _config_init(output: str) -> None:
    """Initialize a new config file."""
    output_path = Path(output)

    if output_path.exists():
        console.print(f"[red]File already exists: {output_path}[/red]")
        sys.exit(1)

    default_config = {
        "install_dir": "~/.chat-tree",
        "storage": "directory",
        "default_provider": "anthropic",
        "log_level": "WARNING",
        "providers": {
            "anthropic": {
                "model": "claude-3-5-sonnet-20241022",
                "max_tokens": 4000,
                "temperature": 0.7,
            },
        },
    }

    with open(output_path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]Created config file: {output_path}[/green]")


def _config_path() -> None:
    """Show config file search paths."""
    console.print("[bold]Config file search paths:[/bold]\n")
    for path in CONFIG_SEARCH_PATHS:
        status = "[green]exists[/green]" if path.exists() else "[dim]not found[/dim]"
        console.print(f"  {path} ({status})")
    console.print(f"\n[dim]Install directory override: ${HOME_ENV}[/dim]")


if __name__ == "__main__":
    main()
