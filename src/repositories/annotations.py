"""Durable annotation store keyed by upstream finding id.

The whole collection lives under a single key of a key-value medium as one
JSON object. Every mutation is a read-modify-write of the full snapshot under
an ``asyncio.Lock``, so batches are applied against one consistent snapshot
and persisted in a single write.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from src.models.annotation import (
    DEFAULT_NOTE_AUTHOR,
    SYSTEM_NOTE_AUTHOR,
    AnnotationChange,
    ChangeKind,
    FindingAnnotation,
    LocalStatus,
    NoteEntry,
    utc_now,
)
from src.repositories.base import KeyValueMedium
from src.repositories.storage import PersistenceError

STORAGE_KEY = "blumira-finding-annotations"
BULK_CLOSE_NOTE = "Marked as closed (bulk action)"

logger = logging.getLogger(__name__)

Mutation = Callable[[FindingAnnotation, datetime], FindingAnnotation]
ChangeListener = Callable[[AnnotationChange], None]


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _coerce_status(value: Any) -> LocalStatus:
    try:
        return LocalStatus(value)
    except ValueError:
        return LocalStatus.NONE


def _parse_note(item: Any, fallback: datetime) -> NoteEntry | None:
    if not isinstance(item, dict) or not isinstance(item.get("text"), str):
        return None
    author = item.get("author")
    return NoteEntry(
        text=item["text"],
        author=author if isinstance(author, str) else DEFAULT_NOTE_AUTHOR,
        timestamp=_parse_timestamp(item.get("timestamp")) or fallback,
    )


def upgrade_record(data: Any, now: datetime) -> FindingAnnotation | None:
    """Normalize one stored record, upgrading legacy shapes.

    Older snapshots kept ``notes`` as a single string and could lack
    ``localStatus`` or ``updatedAt``; all are filled in here at read time.
    """
    if not isinstance(data, dict):
        return None

    updated_at = _parse_timestamp(data.get("updatedAt"))
    raw_notes = data.get("notes")
    notes: list[NoteEntry] = []
    if isinstance(raw_notes, str):
        if raw_notes:
            notes.append(NoteEntry(text=raw_notes, author=DEFAULT_NOTE_AUTHOR, timestamp=updated_at or now))
    elif isinstance(raw_notes, list):
        for item in raw_notes:
            entry = _parse_note(item, updated_at or now)
            if entry is not None:
                notes.append(entry)

    assignee = data.get("assignee")
    try:
        return FindingAnnotation(
            assignee=assignee if isinstance(assignee, str) else "",
            notes=notes,
            local_status=_coerce_status(data.get("localStatus")),
            updated_at=updated_at or now,
        )
    except ValidationError:
        return None


def decode_snapshot(raw: str, now: datetime) -> dict[str, FindingAnnotation]:
    """Parse a persisted snapshot; raise PersistenceError when unreadable."""
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise PersistenceError(f"Annotation snapshot is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise PersistenceError(f"Annotation snapshot must be a JSON object, got {type(parsed).__name__}")

    snapshot: dict[str, FindingAnnotation] = {}
    for finding_id, data in parsed.items():
        record = upgrade_record(data, now)
        if record is None:
            logger.warning("Dropping malformed annotation record: finding_id=%s", finding_id)
            continue
        snapshot[str(finding_id)] = record
    return snapshot


def encode_snapshot(snapshot: dict[str, FindingAnnotation]) -> str:
    return json.dumps({finding_id: record.to_storage() for finding_id, record in snapshot.items()})


def _unique(finding_ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for finding_id in finding_ids:
        if finding_id in seen:
            continue
        seen.add(finding_id)
        ordered.append(finding_id)
    return ordered


def _advance(previous: datetime | None, now: datetime) -> datetime:
    if previous is not None and previous > now:
        return previous
    return now


class AnnotationStore:
    """Versioned finding-id to annotation map persisted in a key-value medium."""

    def __init__(
        self,
        medium: KeyValueMedium,
        *,
        storage_key: str = STORAGE_KEY,
        clock: Callable[[], datetime] | None = None,
    ):
        self.medium = medium
        self.storage_key = storage_key
        self._clock = clock or utc_now
        self._lock = asyncio.Lock()
        self._version = 0
        self._listeners: list[ChangeListener] = []

    @property
    def version(self) -> int:
        """Monotonic counter bumped once per persisted write."""
        return self._version

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener and return its unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def get(self, finding_id: str) -> FindingAnnotation | None:
        async with self._lock:
            snapshot = await self._read_all()
        return snapshot.get(finding_id)

    async def get_all(self) -> dict[str, FindingAnnotation]:
        async with self._lock:
            return await self._read_all()

    async def add_note(self, finding_id: str, text: str, author: str) -> FindingAnnotation:
        """Append a note, creating the record when absent."""
        results = await self._mutate([finding_id], self._append_note(text, author))
        return results[0]

    async def set_assignee(self, finding_id: str, assignee: str) -> FindingAnnotation:
        """Replace the assignee; an empty string clears it."""
        results = await self._mutate([finding_id], self._replace_assignee(assignee))
        return results[0]

    async def set_local_status(self, finding_id: str, status: LocalStatus | str) -> FindingAnnotation:
        results = await self._mutate([finding_id], self._replace_status(LocalStatus(status)))
        return results[0]

    async def save(self, finding_id: str, annotation: FindingAnnotation) -> FindingAnnotation | None:
        """Replace the whole record.

        Saving a record with no assignee, no notes and no local status removes
        it instead, so the finding reads back as absent.
        """
        if annotation.is_empty:
            await self.delete_annotation(finding_id)
            return None

        def _replace(record: FindingAnnotation, now: datetime) -> FindingAnnotation:
            del record, now
            return annotation.model_copy(update={"notes": list(annotation.notes)})

        results = await self._mutate([finding_id], _replace)
        return results[0]

    async def delete_annotation(self, finding_id: str) -> bool:
        """Remove a record. Returns False (and writes nothing) when absent."""
        async with self._lock:
            snapshot = await self._read_all()
            if finding_id not in snapshot:
                return False
            del snapshot[finding_id]
            await self._write_all(snapshot)
            change = self._record_change([finding_id], ChangeKind.DELETED)
        self._notify(change)
        return True

    async def bulk_set_assignee(self, finding_ids: Iterable[str], assignee: str) -> list[FindingAnnotation]:
        return await self._mutate(finding_ids, self._replace_assignee(assignee))

    async def bulk_add_note(self, finding_ids: Iterable[str], text: str, author: str) -> list[FindingAnnotation]:
        """Append one note per finding, all stamped with the same timestamp."""
        return await self._mutate(finding_ids, self._append_note(text, author))

    async def bulk_set_local_status(
        self, finding_ids: Iterable[str], status: LocalStatus | str
    ) -> list[FindingAnnotation]:
        return await self._mutate(finding_ids, self._replace_status(LocalStatus(status)))

    async def bulk_close(
        self,
        finding_ids: Iterable[str],
        author: str = SYSTEM_NOTE_AUTHOR,
        note: str = BULK_CLOSE_NOTE,
    ) -> list[FindingAnnotation]:
        """Close locally and log a note on every finding in one write."""
        close = self._replace_status(LocalStatus.CLOSED)
        append = self._append_note(note, author)
        return await self._mutate(finding_ids, lambda record, now: append(close(record, now), now))

    @staticmethod
    def _append_note(text: str, author: str) -> Mutation:
        def _apply(record: FindingAnnotation, now: datetime) -> FindingAnnotation:
            entry = NoteEntry(text=text, author=author, timestamp=now)
            return record.model_copy(update={"notes": [*record.notes, entry]})

        return _apply

    @staticmethod
    def _replace_assignee(assignee: str) -> Mutation:
        def _apply(record: FindingAnnotation, now: datetime) -> FindingAnnotation:
            del now
            return record.model_copy(update={"assignee": assignee})

        return _apply

    @staticmethod
    def _replace_status(status: LocalStatus) -> Mutation:
        def _apply(record: FindingAnnotation, now: datetime) -> FindingAnnotation:
            del now
            return record.model_copy(update={"local_status": status.value})

        return _apply

    async def _mutate(self, finding_ids: Iterable[str], mutation: Mutation) -> list[FindingAnnotation]:
        ids = _unique(finding_ids)
        if not ids:
            return []

        async with self._lock:
            snapshot = await self._read_all()
            now = self._clock()
            results: list[FindingAnnotation] = []
            created = 0
            for finding_id in ids:
                existing = snapshot.get(finding_id)
                if existing is None:
                    created += 1
                    existing = FindingAnnotation()
                updated = mutation(existing, now)
                updated = updated.model_copy(update={"updated_at": _advance(existing.updated_at, now)})
                snapshot[finding_id] = updated
                results.append(updated)
            await self._write_all(snapshot)
            kind = ChangeKind.CREATED if created == len(ids) else ChangeKind.UPDATED
            change = self._record_change(ids, kind)
        self._notify(change)
        return results

    async def _read_all(self) -> dict[str, FindingAnnotation]:
        try:
            raw = await self.medium.get_item(self.storage_key)
            if not raw:
                return {}
            return decode_snapshot(raw, self._clock())
        except PersistenceError as exc:
            logger.warning("Treating annotation store as empty: key=%s error=%s", self.storage_key, exc)
            return {}

    async def _write_all(self, snapshot: dict[str, FindingAnnotation]) -> None:
        await self.medium.set_item(self.storage_key, encode_snapshot(snapshot))

    def _record_change(self, finding_ids: list[str], kind: ChangeKind) -> AnnotationChange:
        self._version += 1
        return AnnotationChange(version=self._version, finding_ids=finding_ids, kind=kind)

    def _notify(self, change: AnnotationChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:  # noqa: BLE001
                logger.exception("Annotation change listener failed: version=%s", change.version)
