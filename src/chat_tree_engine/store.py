"""
Byte-oriented key-value stores for snapshots and settings documents.

The engine treats a store as a flat namespace of string keys.  Three
implementations are provided: one file per key in a directory, namespaced
rows in a SQLite database, and an in-process dict for tests.
"""

from __future__ import annotations

import os
import sqlite3
import tempfile
import threading
import time
from collections.abc import Iterator
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

from chat_tree_engine.errors import InvalidStateError, NodeNotFoundError
from chat_tree_engine.logging import get_logger

logger = get_logger("store")


@runtime_checkable
class KeyValueStore(Protocol):
    """Flat key -> bytes store."""

    def get(self, key: str) -> bytes:
        """Raises NodeNotFoundError when *key* is missing."""
        ...

    def put(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self) -> list[str]: ...

    def exists(self, key: str) -> bool: ...


def _check_key(key: str) -> str:
    if not key or key in (".", "..") or "/" in key or "\\" in key or "\x00" in key:
        raise InvalidStateError(f"Invalid store key: {key!r}")
    return key


class DirectoryStore:
    """
    One file per key under a directory.

    Writes go to a temporary file in the same directory which then replaces
    the target, so readers never see a partial document.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.mkdir(parents=True, exist_ok=True)

    def _file(self, key: str) -> Path:
        return self.path / _check_key(key)

    def get(self, key: str) -> bytes:
        path = self._file(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NodeNotFoundError(f"No entry {key!r} in {self.path}") from e

    def put(self, key: str, value: bytes) -> None:
        path = self._file(key)
        fd, tmp = tempfile.mkstemp(dir=self.path, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("Wrote %d bytes to %s", len(value), path)

    def delete(self, key: str) -> bool:
        path = self._file(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def keys(self) -> list[str]:
        return sorted(
            p.name for p in self.path.iterdir() if p.is_file() and not p.name.startswith(".")
        )

    def exists(self, key: str) -> bool:
        return self._file(key).is_file()


class SqliteStore:
    """Namespaced rows in a single SQLite table."""

    def __init__(self, db_path: str | Path, namespace: str = "default") -> None:
        self._db_path = str(db_path)
        self.namespace = namespace
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            with conn:
                yield conn

    def _init_db(self) -> None:
        """Initialize database tables."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value BLOB NOT NULL,
                    updated_at REAL,
                    PRIMARY KEY (namespace, key)
                )
            """)

    def get(self, key: str) -> bytes:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            ).fetchone()
        if row is None:
            raise NodeNotFoundError(f"No entry {key!r} in namespace {self.namespace!r}")
        return bytes(row[0])

    def put(self, key: str, value: bytes) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO entries (namespace, key, value, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(namespace, key) DO UPDATE SET
                   value=excluded.value, updated_at=excluded.updated_at""",
                (self.namespace, key, sqlite3.Binary(value), time.time()),
            )
        logger.debug("Stored %d bytes under %s/%s", len(value), self.namespace, key)

    def delete(self, key: str) -> bool:
        """Delete an entry. Returns True if it existed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )
            return cursor.rowcount > 0

    def keys(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM entries WHERE namespace = ? ORDER BY key",
                (self.namespace,),
            ).fetchall()
        return [r[0] for r in rows]

    def exists(self, key: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            ).fetchone()
        return row is not None


class MemoryStore:
    """In-process store."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._data[key]
            except KeyError as e:
                raise NodeNotFoundError(f"No entry {key!r}") from e

    def put(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._data
