"""MSP accounts and the enriched per-account aggregate."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from src.models.device import AgentDevice, AgentKey
from src.models.finding import Finding


class MspAccount(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    account_id: str
    name: str = ""
    open_findings: int | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _null_name(cls, value: Any) -> Any:
        return "" if value is None else value


class AccountDetails(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    agent_count_available: int = 0
    agent_count_used: int = 0
    license: str = ""
    user_count: int = 0

    @field_validator("*", mode="before")
    @classmethod
    def _null_means_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


class AccountUser(BaseModel):
    """A user belonging to an MSP client account."""

    model_config = ConfigDict(extra="allow")

    user_id: str | None = None
    email: str = ""
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    org_name: str | None = None
    org_id: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def _null_email(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or self.email


class AccountStats(BaseModel):
    total_findings: int = 0
    critical_findings: int = 0
    open_findings: int = 0
    total_devices: int = 0
    online_devices: int = 0
    sleeping_devices: int = 0
    isolated_devices: int = 0
    excluded_devices: int = 0
    agent_keys_count: int = 0


class EnrichedAccount(BaseModel):
    """Account composed with its findings, devices, keys and derived counts."""

    account_id: str
    name: str = ""
    open_findings: int | None = None
    details: AccountDetails | None = None
    findings: list[Finding] = Field(default_factory=list)
    agent_devices: list[AgentDevice] = Field(default_factory=list)
    agent_keys: list[AgentKey] = Field(default_factory=list)
    device_meta: dict | None = None
    stats: AccountStats = Field(default_factory=AccountStats)


class DashboardTotals(BaseModel):
    total_findings: int = 0
    critical_findings: int = 0
    open_findings: int = 0
    total_devices: int = 0
    online_devices: int = 0
    sleeping_devices: int = 0
    isolated_devices: int = 0
    excluded_devices: int = 0
    total_agent_keys: int = 0
    total_users: int = 0
    total_agent_capacity: int = 0
    total_agent_used: int = 0
