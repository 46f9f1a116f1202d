"""Operator-local annotation overlay for upstream findings."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_NOTE_AUTHOR = "You"
SYSTEM_NOTE_AUTHOR = "System"


def utc_now() -> datetime:
    """Return timezone-aware current UTC timestamp."""
    return datetime.now(timezone.utc)


class LocalStatus(str, Enum):
    NONE = "none"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class NoteEntry(BaseModel):
    """A single appended note. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    text: str
    author: str = DEFAULT_NOTE_AUTHOR
    timestamp: datetime = Field(default_factory=utc_now)


class FindingAnnotation(BaseModel):
    """Assignee, note log and local workflow marker for one finding id."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True)

    assignee: str = ""
    notes: list[NoteEntry] = Field(default_factory=list)
    local_status: LocalStatus = Field(default=LocalStatus.NONE, alias="localStatus")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @property
    def is_empty(self) -> bool:
        """True when the record carries nothing beyond the defaults."""
        return not self.assignee and not self.notes and self.local_status == LocalStatus.NONE.value

    @property
    def is_closed_locally(self) -> bool:
        return self.local_status == LocalStatus.CLOSED.value

    def to_storage(self) -> dict:
        """Serialize into the persisted camelCase JSON shape."""
        return self.model_dump(by_alias=True, mode="json")


class AnnotationChange(BaseModel):
    """Notification emitted after every persisted store write."""

    version: int
    finding_ids: list[str]
    kind: ChangeKind
