"""Repository interfaces and concrete data access helpers."""

from src.repositories.annotations import STORAGE_KEY, AnnotationStore
from src.repositories.base import AnnotationRepository, KeyValueMedium
from src.repositories.storage import (
    InMemoryKeyValueMedium,
    JsonFileKeyValueMedium,
    MongoKeyValueMedium,
    PersistenceError,
    create_mongo_client,
    ensure_indexes,
    get_database,
)

__all__ = [
    "AnnotationRepository",
    "AnnotationStore",
    "InMemoryKeyValueMedium",
    "JsonFileKeyValueMedium",
    "KeyValueMedium",
    "MongoKeyValueMedium",
    "PersistenceError",
    "STORAGE_KEY",
    "create_mongo_client",
    "ensure_indexes",
    "get_database",
]
