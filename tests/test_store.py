from __future__ import annotations

import json
from pathlib import Path

import pytest

from auraquest.store import ConcurrentWriteError, JsonFileStore, MemoryStore


@pytest.fixture(params=["memory", "json"])
def store(request, tmp_path: Path):  # type: ignore[no-untyped-def]
    if request.param == "memory":
        return MemoryStore()
    return JsonFileStore(tmp_path / "store", locks_root=tmp_path / "locks")


def test_put_then_get_returns_version(store) -> None:  # type: ignore[no-untyped-def]
    assert store.get("users", "u1") is None

    version = store.put("users", "u1", {"name": "Ada"}, expected_version=None)

    assert version == 1
    assert store.get("users", "u1") == ({"name": "Ada"}, 1)


def test_conditional_put_detects_stale_version(store) -> None:  # type: ignore[no-untyped-def]
    store.put("users", "u1", {"count": 1}, expected_version=None)
    store.put("users", "u1", {"count": 2}, expected_version=1)

    with pytest.raises(ConcurrentWriteError) as excinfo:
        store.put("users", "u1", {"count": 99}, expected_version=1)
    assert excinfo.value.expected == 1
    assert excinfo.value.actual == 2

    with pytest.raises(ConcurrentWriteError):
        store.put("users", "u1", {"count": 99}, expected_version=None)

    assert store.get("users", "u1") == ({"count": 2}, 2)


def test_put_with_version_on_missing_doc_conflicts(store) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ConcurrentWriteError):
        store.put("users", "ghost", {}, expected_version=3)


def test_delete_and_list(store) -> None:  # type: ignore[no-untyped-def]
    store.put("quests", "a", {"id": "a"}, expected_version=None)
    store.put("quests", "b", {"id": "b"}, expected_version=None)

    assert sorted(doc["id"] for doc, _ in store.list("quests")) == ["a", "b"]
    assert store.delete("quests", "a") is True
    assert store.delete("quests", "a") is False
    assert [doc["id"] for doc, _ in store.list("quests")] == ["b"]
    assert store.list("empty") == []


def test_returned_documents_are_copies(store) -> None:  # type: ignore[no-untyped-def]
    store.put("users", "u1", {"tags": ["a"]}, expected_version=None)
    doc, _ = store.get("users", "u1")
    doc["tags"].append("b")
    assert store.get("users", "u1")[0] == {"tags": ["a"]}


@pytest.mark.parametrize("key", ["", "../escape", "a/b", "x" * 129, ".."])
def test_rejects_unsafe_keys(store, key: str) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValueError):
        store.put("users", key, {}, expected_version=None)


def test_json_store_layout(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "store", locks_root=tmp_path / "locks")
    store.put("users", "u1", {"name": "Ada"}, expected_version=None)

    payload = json.loads((tmp_path / "store" / "users" / "u1.json").read_text(encoding="utf-8"))
    assert payload == {"version": 1, "doc": {"name": "Ada"}}
    assert (tmp_path / "locks" / "users" / "u1.lock").exists()
    assert not list((tmp_path / "store" / "users").glob(".*.tmp"))
