"""Repository protocol definitions for the data access layer."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Protocol

from src.models.annotation import AnnotationChange, FindingAnnotation, LocalStatus


class KeyValueMedium(Protocol):
    """Durable string-to-string storage shared by every store instance."""

    name: str

    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class AnnotationRepository(Protocol):
    """Data access contract for operator-local finding annotations."""

    @property
    def version(self) -> int: ...

    def subscribe(self, listener: Callable[[AnnotationChange], None]) -> Callable[[], None]: ...

    async def get(self, finding_id: str) -> FindingAnnotation | None: ...

    async def get_all(self) -> dict[str, FindingAnnotation]: ...

    async def add_note(self, finding_id: str, text: str, author: str) -> FindingAnnotation: ...

    async def set_assignee(self, finding_id: str, assignee: str) -> FindingAnnotation: ...

    async def set_local_status(self, finding_id: str, status: LocalStatus | str) -> FindingAnnotation: ...

    async def save(self, finding_id: str, annotation: FindingAnnotation) -> FindingAnnotation | None: ...

    async def delete_annotation(self, finding_id: str) -> bool: ...

    async def bulk_set_assignee(self, finding_ids: Iterable[str], assignee: str) -> list[FindingAnnotation]: ...

    async def bulk_add_note(self, finding_ids: Iterable[str], text: str, author: str) -> list[FindingAnnotation]: ...

    async def bulk_set_local_status(
        self, finding_ids: Iterable[str], status: LocalStatus | str
    ) -> list[FindingAnnotation]: ...

    async def bulk_close(self, finding_ids: Iterable[str], author: str = ..., note: str = ...) -> list[FindingAnnotation]: ...
