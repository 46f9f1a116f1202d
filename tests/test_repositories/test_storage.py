"""Tests for the durable key-value media."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from pymongo.errors import PyMongoError

import src.repositories.storage as storage_module
from src.repositories.annotations import STORAGE_KEY, AnnotationStore
from src.repositories.storage import (
    KV_COLLECTION,
    InMemoryKeyValueMedium,
    JsonFileKeyValueMedium,
    MongoKeyValueMedium,
    PersistenceError,
    ensure_indexes,
    is_valid_storage_key,
)


@pytest.mark.asyncio
async def test_in_memory_medium_get_set_remove() -> None:
    medium = InMemoryKeyValueMedium()

    assert await medium.get_item("k") is None
    await medium.set_item("k", "v")
    assert await medium.get_item("k") == "v"
    await medium.remove_item("k")
    await medium.remove_item("k")
    assert await medium.get_item("k") is None


@pytest.mark.asyncio
async def test_file_medium_persists_across_instances(tmp_path: Path) -> None:
    first = JsonFileKeyValueMedium(tmp_path / "store")
    await first.set_item(STORAGE_KEY, '{"F-1": {}}')

    second = JsonFileKeyValueMedium(tmp_path / "store")

    assert await second.get_item(STORAGE_KEY) == '{"F-1": {}}'
    assert (tmp_path / "store" / f"{STORAGE_KEY}.json").exists()
    assert not list((tmp_path / "store").glob("*.tmp"))


@pytest.mark.asyncio
async def test_file_medium_overwrites_and_removes(tmp_path: Path) -> None:
    medium = JsonFileKeyValueMedium(tmp_path)
    await medium.set_item("key", "one")
    await medium.set_item("key", "two")

    assert await medium.get_item("key") == "two"

    await medium.remove_item("key")
    await medium.remove_item("key")
    assert await medium.get_item("key") is None


@pytest.mark.asyncio
async def test_file_medium_rejects_path_like_keys(tmp_path: Path) -> None:
    medium = JsonFileKeyValueMedium(tmp_path)

    with pytest.raises(ValueError, match="Unsupported storage key"):
        await medium.set_item("../escape", "x")


@pytest.mark.asyncio
async def test_file_medium_removes_temp_file_when_replace_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    medium = JsonFileKeyValueMedium(tmp_path)
    await medium.set_item("key", "original")

    def _fail_replace(src: str, dst: Path) -> None:
        del src, dst
        raise OSError("disk full")

    monkeypatch.setattr(storage_module.os, "replace", _fail_replace)

    with pytest.raises(PersistenceError, match="disk full"):
        await medium.set_item("key", "updated")

    assert sorted(path.name for path in tmp_path.iterdir()) == ["key.json"]
    assert (tmp_path / "key.json").read_text(encoding="utf-8") == "original"


def test_storage_key_validation() -> None:
    assert is_valid_storage_key(STORAGE_KEY) is True
    assert is_valid_storage_key("blumira:annotations") is False
    assert is_valid_storage_key("nested/key") is False
    assert is_valid_storage_key("") is False


@pytest.mark.asyncio
async def test_file_medium_wraps_undecodable_file(tmp_path: Path) -> None:
    (tmp_path / "key.json").write_bytes(b"\xff\xfe\xfa")
    medium = JsonFileKeyValueMedium(tmp_path)

    with pytest.raises(PersistenceError):
        await medium.get_item("key")


@pytest.mark.asyncio
async def test_store_over_file_medium_survives_restart(tmp_path: Path) -> None:
    await AnnotationStore(JsonFileKeyValueMedium(tmp_path)).add_note("F-1", "kept", "You")

    reloaded = AnnotationStore(JsonFileKeyValueMedium(tmp_path))

    annotation = await reloaded.get("F-1")
    assert [note.text for note in annotation.notes] == ["kept"]


@pytest.mark.asyncio
async def test_store_treats_unreadable_file_as_empty(tmp_path: Path) -> None:
    (tmp_path / f"{STORAGE_KEY}.json").write_bytes(b"\xff\xfe\xfa")
    store = AnnotationStore(JsonFileKeyValueMedium(tmp_path))

    assert await store.get_all() == {}


@pytest.mark.asyncio
async def test_mongo_medium_upserts_single_document(mongo_db) -> None:
    medium = MongoKeyValueMedium(mongo_db)

    assert await medium.get_item(STORAGE_KEY) is None
    await medium.set_item(STORAGE_KEY, "{}")
    await medium.set_item(STORAGE_KEY, '{"F-1": {}}')

    assert await medium.get_item(STORAGE_KEY) == '{"F-1": {}}'
    assert await mongo_db[KV_COLLECTION].count_documents({"key": STORAGE_KEY}) == 1
    document = await mongo_db[KV_COLLECTION].find_one({"key": STORAGE_KEY})
    assert document["updated_at"] is not None


@pytest.mark.asyncio
async def test_mongo_medium_remove_and_non_text_value(mongo_db) -> None:
    medium = MongoKeyValueMedium(mongo_db)
    await mongo_db[KV_COLLECTION].insert_one({"key": "broken", "value": 42})

    with pytest.raises(PersistenceError):
        await medium.get_item("broken")

    await medium.remove_item("broken")
    assert await medium.get_item("broken") is None


class _FakeCollection:
    def __init__(self, error: Exception | None = None) -> None:
        self.index_calls: list[dict[str, Any]] = []
        self.error = error

    async def create_index(self, keys: list[tuple[str, int]], **kwargs: Any) -> None:
        if self.error is not None:
            raise self.error
        self.index_calls.append({"keys": keys, **kwargs})


@pytest.mark.asyncio
async def test_ensure_indexes_creates_unique_key_index() -> None:
    collection = _FakeCollection()
    await ensure_indexes({KV_COLLECTION: collection})  # type: ignore[arg-type]

    assert collection.index_calls == [{"keys": [("key", 1)], "unique": True, "name": "uq_kv_key"}]


@pytest.mark.asyncio
async def test_ensure_indexes_wraps_driver_errors() -> None:
    collection = _FakeCollection(error=PyMongoError("boom"))

    with pytest.raises(RuntimeError, match="Failed to ensure MongoDB indexes"):
        await ensure_indexes({KV_COLLECTION: collection})  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_store_over_mongo_medium(mongo_db) -> None:
    store = AnnotationStore(MongoKeyValueMedium(mongo_db))

    await store.bulk_set_assignee(["F-1", "F-2"], "Bob")

    reloaded = AnnotationStore(MongoKeyValueMedium(mongo_db))
    snapshot = await reloaded.get_all()
    assert {key: value.assignee for key, value in snapshot.items()} == {"F-1": "Bob", "F-2": "Bob"}
