"""
In-chat command registry.

Inside a loaded chat, lines starting with a backslash are commands that
navigate the tree, show history, queue images, handle artifacts, or save
and quit.  Everything else is a message for the provider.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from chat_tree_engine.artifacts import FileArtifact, NonFileArtifact
from chat_tree_engine.conversation import Conversation
from chat_tree_engine.errors import ChatTreeError
from chat_tree_engine.tree.render import content_preview

ARTIFACT_PREVIEW_LENGTH = 50


@dataclass
class CommandResult:
    """Result of executing a command."""

    output: str = ""
    error: str = ""
    should_quit: bool = False


@dataclass
class ChatCommand:
    """A registered command."""

    name: str
    handler: Callable[[str], CommandResult]
    description: str = ""
    usage: str = ""


class ChatCommandRegistry:
    """
    Dispatcher for backslash commands in a chat.

    Args:
        chat: The conversation the commands act on
        save: Persists the chat; used by ``\\s`` and ``\\q``
    """

    def __init__(self, chat: Conversation, save: Callable[[], None] | None = None) -> None:
        self.chat = chat
        self._save = save
        self._commands: dict[str, ChatCommand] = {}
        self._register_builtins()

    def _register_builtins(self) -> None:
        self.register("\\?", self._cmd_help, "Show commands")
        self.register("\\l", self._cmd_history, "List chat history [current branch]")
        self.register("\\t", self._cmd_tree, "List chat tree [all branches]")
        self.register("\\i", self._cmd_image, "Queue image for the next message", "\\i <path>")
        self.register("\\s", self._cmd_save, "Save snapshot")
        self.register("\\p", self._cmd_parent, "Go to parent")
        self.register("\\c", self._cmd_child, "Go to the nth child", "\\c <index>")
        self.register("\\r", self._cmd_root, "Go to root")
        self.register("\\g", self._cmd_goto, "Go to node by hash or prefix", "\\g <hash>")
        self.register("\\.", self._cmd_children, "List children of the current node")
        self.register("\\x", self._cmd_toggle, "Toggle chat on/off")
        self.register("\\a", self._cmd_artifacts, "List artifacts of the current node")
        self.register("\\w", self._cmd_write, "Write artifacts to a directory", "\\w <dir>")
        self.register("\\q", self._cmd_quit, "Save and quit")

    def register(
        self,
        name: str,
        handler: Callable[[str], CommandResult],
        description: str = "",
        usage: str = "",
    ) -> None:
        """Register a command; a later registration replaces an earlier one."""
        if not name.startswith("\\"):
            name = f"\\{name}"
        self._commands[name] = ChatCommand(
            name=name, handler=handler, description=description, usage=usage or name
        )

    def get(self, name: str) -> ChatCommand | None:
        return self._commands.get(name)

    def list_commands(self) -> list[ChatCommand]:
        return list(self._commands.values())

    @staticmethod
    def is_command(line: str) -> bool:
        return line.lstrip().startswith("\\")

    def dispatch(self, line: str) -> CommandResult:
        """
        Run the command on *line*.

        Engine and filesystem errors are reported in ``error``.
        """
        parts = line.strip().split(None, 1)
        if not parts:
            return CommandResult(error="empty command")
        name = parts[0]
        args = parts[1] if len(parts) > 1 else ""

        cmd = self.get(name)
        if cmd is None:
            return CommandResult(error=f"unknown command: {name} (try \\?)")

        try:
            return cmd.handler(args)
        except (ChatTreeError, OSError) as e:
            return CommandResult(error=str(e))

    # Built-in command handlers

    def _cmd_help(self, args: str = "") -> CommandResult:
        lines = ["Commands:"]
        for cmd in self._commands.values():
            lines.append(f"  {cmd.usage:<12} {cmd.description}")
        return CommandResult(output="\n".join(lines))

    def _cmd_history(self, args: str = "") -> CommandResult:
        return CommandResult(output=self.chat.print_history())

    def _cmd_tree(self, args: str = "") -> CommandResult:
        return CommandResult(output=self.chat.print_tree())

    def _cmd_image(self, args: str = "") -> CommandResult:
        path = args.strip()
        if not path:
            return CommandResult(error="usage: \\i <path>")
        self.chat.queue_images([path])
        return CommandResult(output=f"queued image: {path}")

    def _cmd_save(self, args: str = "") -> CommandResult:
        if self._save is None:
            return CommandResult(error="saving is not available")
        self._save()
        return CommandResult(output="snapshot saved")

    def _cmd_parent(self, args: str = "") -> CommandResult:
        self.chat.to_parent()
        return CommandResult(output=self.chat.info())

    def _cmd_child(self, args: str = "") -> CommandResult:
        if not args.strip():
            return CommandResult(error="usage: \\c <index>")
        try:
            index = int(args.strip())
        except ValueError:
            return CommandResult(error=f"invalid index: {args.strip()}")
        self.chat.to_child(index)
        return CommandResult(output=self.chat.info())

    def _cmd_root(self, args: str = "") -> CommandResult:
        self.chat.to_root()
        return CommandResult(output=self.chat.info())

    def _cmd_goto(self, args: str = "") -> CommandResult:
        if not args.strip():
            return CommandResult(error="usage: \\g <node_hash>")
        self.chat.goto(args.strip())
        return CommandResult(output=self.chat.info())

    def _cmd_children(self, args: str = "") -> CommandResult:
        lines = []
        if self.chat.has_parent():
            lines.append("current node has parent; use \\p to access")
        children = self.chat.list_children()
        if not children:
            lines.append("current node has no children")
            return CommandResult(output="\n".join(lines))
        lines.append("current node has children\n\tidx:\thash")
        for idx, child in enumerate(children):
            lines.append(f"\t{idx}:\t{child}")
        lines.append("\nuse \\c <idx> to go to child")
        return CommandResult(output="\n".join(lines))

    def _cmd_toggle(self, args: str = "") -> CommandResult:
        self.chat.toggle_chat(not self.chat.chat_enabled)
        state = "true" if self.chat.chat_enabled else "false"
        return CommandResult(output=f"chat enabled: {state}")

    def _cmd_artifacts(self, args: str = "") -> CommandResult:
        artifacts = self.chat.artifacts()
        if not artifacts:
            return CommandResult(output="No artifacts in current node")
        lines = ["Artifacts in current node:"]
        for i, artifact in enumerate(artifacts):
            preview = content_preview(artifact.data, ARTIFACT_PREVIEW_LENGTH)
            if isinstance(artifact, FileArtifact):
                file_type = artifact.file_type or "unknown"
                name = artifact.name or "(no name given)"
                lines.append(f"\t{i}: File [{file_type}] Name: {name}\n\t   Preview: {preview}")
            else:
                lines.append(f"\t{i}: Text: {preview}")
        return CommandResult(output="\n".join(lines))

    def _cmd_write(self, args: str = "") -> CommandResult:
        directory = args.strip()
        if not directory:
            return CommandResult(error="usage: \\w <dir>")
        artifacts = self.chat.artifacts()
        if not artifacts:
            return CommandResult(output="No artifacts in current node")
        written = []
        for i, artifact in enumerate(artifacts):
            if isinstance(artifact, NonFileArtifact):
                path = artifact.write(directory, f"text_{i}")
            else:
                path = artifact.write(directory)
            written.append(str(path))
        return CommandResult(output="Wrote:\n" + "\n".join(f"\t{p}" for p in written))

    def _cmd_quit(self, args: str = "") -> CommandResult:
        if self._save is not None:
            self._save()
            return CommandResult(output="saved", should_quit=True)
        return CommandResult(should_quit=True)
