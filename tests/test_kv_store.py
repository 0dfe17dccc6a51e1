from __future__ import annotations

import json
from pathlib import Path

import pytest

from memoria_core.memory.kv import (
    FileLockTimeoutError,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    acquire_file_lock,
    clean_stale_locks,
    release_file_lock,
)


def test_lock_timeout_when_held(tmp_path: Path) -> None:
    target = str(tmp_path / "longTermMemory.json")
    handle = acquire_file_lock(target)
    try:
        with pytest.raises(FileLockTimeoutError) as exc:
            acquire_file_lock(target, timeout_seconds=1, stale_after_seconds=9999)
        assert exc.value.error["code"] == "lock_timeout"
        assert str(tmp_path / "longTermMemory.json.lock") in exc.value.error["lock_path"]
    finally:
        release_file_lock(handle)


def test_stale_lock_reclaimed(tmp_path: Path) -> None:
    target = tmp_path / "actionHistory.json"
    lock_path = Path(f"{target}.lock")
    lock_path.write_text(json.dumps({"created_at": "2000-01-01T00:00:00+00:00"}), encoding="utf-8")
    handle = acquire_file_lock(str(target), timeout_seconds=1, stale_after_seconds=1)
    release_file_lock(handle)
    assert not lock_path.exists()


def test_clean_stale_locks(tmp_path: Path) -> None:
    lock_path = tmp_path / "behaviorPatterns.json.lock"
    lock_path.write_text("{}", encoding="utf-8")
    result = clean_stale_locks(str(tmp_path), stale_after_seconds=1)
    assert result.scanned >= 1
    assert result.removed >= 1
    assert not lock_path.exists()


def test_json_store_round_trip(tmp_path: Path) -> None:
    store = JsonFileKeyValueStore(tmp_path)
    payload = [{"id": "m-1", "title": "学習メモ", "tags": ["study"]}]

    store.set("longTermMemory", payload)

    assert store.get("longTermMemory") == payload
    raw = json.loads((tmp_path / "longTermMemory.json").read_text(encoding="utf-8"))
    assert raw == payload
    assert not (tmp_path / "longTermMemory.json.lock").exists()


def test_json_store_missing_key_returns_default_copy(tmp_path: Path) -> None:
    store = JsonFileKeyValueStore(tmp_path)
    default: list[str] = []

    value = store.get("actionHistory", default)
    value.append("x")

    assert default == []
    assert not (tmp_path / "actionHistory.json").exists()


def test_json_store_recovers_corrupt_file(tmp_path: Path) -> None:
    store = JsonFileKeyValueStore(tmp_path)
    corrupt_path = tmp_path / "longTermMemory.json"
    corrupt_path.write_text("{not-json", encoding="utf-8")

    value = store.get("longTermMemory", [])

    assert value == []
    assert (tmp_path / "longTermMemory.json.bak").exists()
    assert json.loads(corrupt_path.read_text(encoding="utf-8")) == []


def test_json_store_rejects_path_like_keys(tmp_path: Path) -> None:
    store = JsonFileKeyValueStore(tmp_path)
    with pytest.raises(ValueError):
        store.set("../escape", {})


def test_json_store_delete(tmp_path: Path) -> None:
    store = JsonFileKeyValueStore(tmp_path)
    store.set("memoryMeta", {"a": 1})
    store.delete("memoryMeta")
    store.delete("memoryMeta")
    assert store.get("memoryMeta") is None


def test_in_memory_store_isolates_documents() -> None:
    store = InMemoryKeyValueStore()
    doc = {"tags": ["a"]}
    store.set("memorySettings", doc)
    doc["tags"].append("b")

    loaded = store.get("memorySettings")
    loaded["tags"].append("c")

    assert store.get("memorySettings") == {"tags": ["a"]}
    assert store.keys() == ["memorySettings"]
