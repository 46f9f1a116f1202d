"""Shared data models for the MSP security dashboard."""

from src.models.account import (
    AccountDetails,
    AccountStats,
    AccountUser,
    DashboardTotals,
    EnrichedAccount,
    MspAccount,
)
from src.models.annotation import (
    AnnotationChange,
    ChangeKind,
    FindingAnnotation,
    LocalStatus,
    NoteEntry,
)
from src.models.device import AgentDevice, AgentKey, DeviceListing
from src.models.finding import Finding, FindingUpdate

__all__ = [
    "AccountDetails",
    "AccountStats",
    "AccountUser",
    "AgentDevice",
    "AgentKey",
    "AnnotationChange",
    "ChangeKind",
    "DashboardTotals",
    "DeviceListing",
    "EnrichedAccount",
    "Finding",
    "FindingAnnotation",
    "FindingUpdate",
    "LocalStatus",
    "MspAccount",
    "NoteEntry",
]
