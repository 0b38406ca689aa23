"""Tests for key-value stores."""

from __future__ import annotations

from pathlib import Path

import pytest

from chat_tree_engine.errors import InvalidStateError, NodeNotFoundError
from chat_tree_engine.store import DirectoryStore, KeyValueStore, MemoryStore, SqliteStore


@pytest.fixture(params=["directory", "sqlite", "memory"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> KeyValueStore:
    if request.param == "directory":
        return DirectoryStore(tmp_path / "store")
    if request.param == "sqlite":
        return SqliteStore(tmp_path / "store.db", namespace="chats")
    return MemoryStore()


class TestKeyValueStore:
    """Behaviour shared by every store."""

    def test_satisfies_protocol(self, store: KeyValueStore) -> None:
        assert isinstance(store, KeyValueStore)

    def test_put_get(self, store: KeyValueStore) -> None:
        store.put("ideas.json", b'{"a": 1}')
        assert store.get("ideas.json") == b'{"a": 1}'
        assert store.exists("ideas.json")

    def test_overwrite(self, store: KeyValueStore) -> None:
        store.put("k", b"one")
        store.put("k", b"two")
        assert store.get("k") == b"two"
        assert store.keys() == ["k"]

    def test_missing_key(self, store: KeyValueStore) -> None:
        assert not store.exists("nope")
        with pytest.raises(NodeNotFoundError):
            store.get("nope")

    def test_keys_sorted(self, store: KeyValueStore) -> None:
        for key in ("b", "a", "c"):
            store.put(key, b"")
        assert store.keys() == ["a", "b", "c"]

    def test_delete(self, store: KeyValueStore) -> None:
        store.put("k", b"v")
        assert store.delete("k") is True
        assert store.delete("k") is False
        assert store.keys() == []

    def test_binary_values(self, store: KeyValueStore) -> None:
        store.put("bin", bytes(range(256)))
        assert store.get("bin") == bytes(range(256))


class TestDirectoryStore:
    def test_one_file_per_key(self, tmp_path: Path) -> None:
        store = DirectoryStore(tmp_path)
        store.put("ideas.json", b"{}")
        assert (tmp_path / "ideas.json").read_bytes() == b"{}"

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        store = DirectoryStore(tmp_path)
        store.put("k", b"v")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["k"]

    @pytest.mark.parametrize("key", ["", "..", "../escape", "a/b"])
    def test_rejects_path_keys(self, tmp_path: Path, key: str) -> None:
        store = DirectoryStore(tmp_path)
        with pytest.raises(InvalidStateError):
            store.put(key, b"v")


class TestSqliteStore:
    def test_namespaces_are_isolated(self, tmp_path: Path) -> None:
        db = tmp_path / "shared.db"
        chats = SqliteStore(db, namespace="chats")
        providers = SqliteStore(db, namespace="providers")

        chats.put("x", b"chat")
        providers.put("x", b"provider")

        assert chats.get("x") == b"chat"
        assert providers.get("x") == b"provider"
        assert providers.delete("x")
        assert chats.exists("x")

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        db = tmp_path / "shared.db"
        SqliteStore(db).put("k", b"v")
        assert SqliteStore(db).get("k") == b"v"
