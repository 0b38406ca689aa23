"""
Artifact extraction from response text.

Responses often embed fenced code blocks.  :func:`parse_artifacts` splits a
payload into :class:`FileArtifact` blocks (one per fence) and
:class:`NonFileArtifact` runs of prose between them, so generated files can
be written to disk.

A fence's info string is either ``type`` or ``type:filename``::

    ```python:hello.py
    print("hello")
    ```

A fence with an empty info string still yields a :class:`FileArtifact`,
with an empty name and no file type.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from chat_tree_engine.errors import ArtifactParseError, InvalidStateError
from chat_tree_engine.logging import get_logger
from chat_tree_engine.tree.models import Message

logger = get_logger("artifacts")

FENCE = "```"


def _target_path(directory: Path, file_name: str) -> Path:
    """Path of *file_name* under *directory*, with its parent directories created."""
    path = directory / file_name
    target, base = path.resolve(), directory.resolve()
    if Path(file_name).is_absolute() or target == base or not target.is_relative_to(base):
        raise InvalidStateError(f"Artifact file name {file_name!r} is outside {directory}")
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


class ArtifactType(str, Enum):
    FILE = "file"
    NON_FILE = "non_file"


@dataclass
class FileArtifact:
    """Contents of one fenced block."""

    id: str
    data: str
    name: str = ""
    file_type: str | None = None

    @property
    def type(self) -> ArtifactType:
        return ArtifactType.FILE

    def file_name(self, name: str = "") -> str:
        """
        Resolve the on-disk file name.

        Uses the artifact's own name, else *name*, else ``file_<id>``; the
        file type is appended as an extension when the name has none.
        """
        file_name = self.name or name or f"file_{self.id}"
        if self.file_type and not Path(file_name).suffix:
            file_name = f"{file_name}.{self.file_type.lstrip('.')}"
        return file_name

    def write(self, directory: str | Path, name: str = "") -> Path:
        """
        Write the block to *directory*, creating it if needed.

        Raises:
            InvalidStateError: If the file name points outside *directory*.
        """
        path = _target_path(Path(directory), self.file_name(name))
        path.write_text(self.data, encoding="utf-8")
        logger.debug("Wrote file artifact %s to %s", self.id, path)
        return path


@dataclass
class NonFileArtifact:
    """Prose found outside any fence, whitespace-trimmed."""

    data: str

    @property
    def type(self) -> ArtifactType:
        return ArtifactType.NON_FILE

    def write(self, directory: str | Path, name: str = "") -> Path:
        """
        Write the text to *directory* under *name*.

        ``.txt`` is appended when *name* has no extension.

        Raises:
            InvalidStateError: If *name* is empty or points outside
                *directory*.
        """
        if not name:
            raise InvalidStateError("name is required for writing non-file artifacts")
        if "." not in name:
            name = name + ".txt"
        path = _target_path(Path(directory), name)
        path.write_text(self.data, encoding="utf-8")
        logger.debug("Wrote text artifact to %s", path)
        return path


Artifact = FileArtifact | NonFileArtifact


def _append_text(result: list[Artifact], text: str) -> None:
    text = text.strip()
    if text:
        result.append(NonFileArtifact(data=text))


def _file_artifact(info: str, start: int, data: str) -> FileArtifact:
    if not info:
        return FileArtifact(id=str(start), data=data)
    parts = info.split(":")
    if len(parts) != 2:
        return FileArtifact(id=str(start), data=data, file_type=info)
    return FileArtifact(id=str(start), data=data, name=parts[1], file_type=parts[0])


def parse_artifacts(text: str) -> list[Artifact]:
    """
    Split *text* into artifacts in order of appearance.

    A :class:`FileArtifact`'s ``id`` is the offset at which its data begins.

    Raises:
        ArtifactParseError: If a fence has no line break after its info
            string, or is never closed.  No partial result is returned.
    """
    result: list[Artifact] = []
    text_start = 0

    while True:
        fence = text.find(FENCE, text_start)
        if fence == -1:
            break
        _append_text(result, text[text_start:fence])

        eol = text.find("\n", fence + len(FENCE))
        if eol == -1 or eol + 1 >= len(text):
            raise ArtifactParseError(f"no line break after code fence at offset {fence}")
        info = text[fence + len(FENCE) : eol].strip()

        start = eol + 1
        close = text.find(FENCE, start)
        if close == -1:
            raise ArtifactParseError(f"unterminated code fence at offset {fence}")

        result.append(_file_artifact(info, start, text[start:close]))
        text_start = close + len(FENCE)

    _append_text(result, text[text_start:])
    return result


def parse_artifacts_from(message: Message | None) -> list[Artifact]:
    """Parse the artifacts of *message*; ``None`` yields an empty list."""
    if message is None:
        return []
    return parse_artifacts(message.text)
