"""Agent devices and installation keys."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class AgentDevice(BaseModel):
    """An endpoint running the agent."""

    model_config = ConfigDict(extra="allow", frozen=True)

    device_id: str
    hostname: str = ""
    alive: str = ""
    arch: str = ""
    created: str = ""
    is_excluded: bool = False
    is_isolated: bool = False
    is_sleeping: bool = False
    isolation_requested: bool = False
    key_id: str = ""
    keyname: str = ""
    modified: str = ""
    org_id: str = ""
    plat: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _null_means_default(cls, value: Any, info: ValidationInfo) -> Any:
        field = cls.model_fields[info.field_name]
        if value is None and not field.is_required():
            return field.default
        return value

    @property
    def is_online(self) -> bool:
        return not self.is_sleeping and not self.is_isolated and not self.is_excluded


class AgentKey(BaseModel):
    """An agent installation key."""

    model_config = ConfigDict(extra="allow", frozen=True)

    key_id: str
    key_name: str | None = None
    name: str | None = None
    status: str | None = None
    created_at: str | None = None


class DeviceListing(BaseModel):
    """Devices for one account plus the paging metadata the API returned."""

    devices: list[AgentDevice] = Field(default_factory=list)
    meta: dict[str, Any] | None = None
