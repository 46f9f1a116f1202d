"""Durable key-value media backing the annotation store.

Each medium holds opaque string values under string keys, mirroring a
browser's ``localStorage``: the caller owns serialization, the medium only
persists and returns the raw text.
"""

from __future__ import annotations

import contextlib
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

KV_COLLECTION = "kv_store"

_SAFE_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


def is_valid_storage_key(key: str) -> bool:
    """Return True when ``key`` can be used as a file name under the data directory."""
    return bool(_SAFE_KEY_PATTERN.match(key))


class PersistenceError(RuntimeError):
    """Stored data is unreadable or the medium could not be written."""


async def create_mongo_client(mongodb_uri: str) -> AsyncIOMotorClient:
    """Create and validate an async MongoDB client connection."""
    try:
        client = AsyncIOMotorClient(mongodb_uri)
        await client.admin.command("ping")
        return client
    except PyMongoError as exc:
        raise RuntimeError(f"Failed to connect to MongoDB at {mongodb_uri}: {exc}") from exc


def get_database(client: AsyncIOMotorClient, database_name: str) -> AsyncIOMotorDatabase:
    """Return configured MongoDB database handle."""
    return client[database_name]


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the unique key index for the key-value collection."""
    try:
        await db[KV_COLLECTION].create_index([("key", ASCENDING)], unique=True, name="uq_kv_key")
    except PyMongoError as exc:
        raise RuntimeError(f"Failed to ensure MongoDB indexes: {exc}") from exc


class InMemoryKeyValueMedium:
    """Process-local medium; contents vanish on restart."""

    name = "memory"

    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileKeyValueMedium:
    """One file per key under a data directory, replaced atomically on write."""

    name = "file"

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)

    def _path_for(self, key: str) -> Path:
        if not is_valid_storage_key(key):
            raise ValueError(f"Unsupported storage key: {key!r}")
        return self.data_dir / f"{key}.json"

    async def get_item(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Failed to read {path}: {exc}") from exc

    async def set_item(self, key: str, value: str) -> None:
        path = self._path_for(key)
        tmp_name: str | None = None
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{key}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            raise PersistenceError(f"Failed to write {path}: {exc}") from exc

    async def remove_item(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to remove {path}: {exc}") from exc


class MongoKeyValueMedium:
    """MongoDB-backed medium storing ``{key, value, updated_at}`` documents."""

    name = "mongo"

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db[KV_COLLECTION]

    async def get_item(self, key: str) -> str | None:
        try:
            document = await self.collection.find_one({"key": key})
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to read key '{key}': {exc}") from exc
        if document is None:
            return None
        value = document.get("value")
        if not isinstance(value, str):
            raise PersistenceError(f"Stored value for key '{key}' is not text")
        return value

    async def set_item(self, key: str, value: str) -> None:
        try:
            await self.collection.update_one(
                {"key": key},
                {"$set": {"value": value, "updated_at": datetime.now(timezone.utc)}},
                upsert=True,
            )
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to write key '{key}': {exc}") from exc

    async def remove_item(self, key: str) -> None:
        try:
            await self.collection.delete_one({"key": key})
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to remove key '{key}': {exc}") from exc
