"""Shared test fixtures for the MSP security dashboard."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from src.repositories.annotations import AnnotationStore
from src.repositories.storage import InMemoryKeyValueMedium, ensure_indexes


class StepClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.current = start or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


class CountingMedium(InMemoryKeyValueMedium):
    """In-memory medium that records how many reads and writes hit it."""

    def __init__(self, initial: dict[str, str] | None = None):
        super().__init__(initial)
        self.reads = 0
        self.writes = 0

    async def get_item(self, key: str) -> str | None:
        self.reads += 1
        return await super().get_item(key)

    async def set_item(self, key: str, value: str) -> None:
        self.writes += 1
        await super().set_item(key, value)


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def medium() -> CountingMedium:
    return CountingMedium()


@pytest.fixture
def store(medium: CountingMedium, clock: StepClock) -> AnnotationStore:
    """Annotation store over a counting in-memory medium and a stepping clock."""
    return AnnotationStore(medium, clock=clock)


@pytest.fixture
def mongo_client() -> AsyncMongoMockClient:
    """Return an isolated async Mongo mock client per test."""
    return AsyncMongoMockClient()


@pytest_asyncio.fixture
async def mongo_db(mongo_client: AsyncMongoMockClient):
    """Return indexed test database instance."""
    db = mongo_client["blumira_dashboard_test"]
    await ensure_indexes(db)
    return db


@pytest.fixture
def make_finding():
    """Factory for upstream finding payloads."""

    def _create(
        finding_id: str = "f-1",
        *,
        name: str = "Suspicious login",
        priority: int = 3,
        status_name: str = "Open",
        org_name: str = "Acme",
        org_id: str = "acct-1",
        created: str = "2026-03-01T08:00:00Z",
        **extra,
    ) -> dict:
        return {
            "finding_id": finding_id,
            "name": name,
            "priority": priority,
            "status_name": status_name,
            "type_name": "Threat",
            "created": created,
            "modified": created,
            "org_name": org_name,
            "org_id": org_id,
            **extra,
        }

    return _create
