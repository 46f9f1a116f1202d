"""Upstream finding records (read-only)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

PRIORITY_LABELS: dict[int, str] = {
    1: "Critical",
    2: "High",
    3: "Medium",
    4: "Low",
    5: "Info",
}

OPEN_STATUS_NAME = "Open"


class Finding(BaseModel):
    """A security finding as returned by the upstream API."""

    model_config = ConfigDict(extra="allow", frozen=True)

    finding_id: str
    name: str = ""
    priority: int = 5
    status_name: str = ""
    status: int | None = None
    type_name: str = ""
    type: int | None = None
    created: str = ""
    modified: str = ""
    org_name: str = ""
    org_id: str = ""
    resolution_name: str | None = None
    resolution: int | None = None
    assigned_to: str | None = None
    assigned_to_name: str | None = None
    description: str | None = None
    summary: str | None = None
    source: str | None = None
    category: str | None = None
    subcategory: str | None = None
    evidence: str | None = None
    notes: str | None = None
    ip_address: str | None = None
    hostname: str | None = None
    url: str | None = None
    user: str | None = None
    workflow_name: str | None = None
    rule_name: str | None = None
    detector_name: str | None = None

    @field_validator(
        "name", "priority", "status_name", "type_name", "created", "modified", "org_name", "org_id", mode="before"
    )
    @classmethod
    def _null_means_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @property
    def is_critical(self) -> bool:
        return self.priority == 1

    @property
    def is_open(self) -> bool:
        return self.status_name == OPEN_STATUS_NAME


class FindingUpdate(BaseModel):
    """Patch body for upstream write-back."""

    status: int | None = None
    priority: int | None = None
    assigned_to: str | None = None
    resolution: int | None = None
    notes: str | None = None

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)
