"""Compose per-account upstream calls into dashboard aggregates."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import ValidationError

from src.clients.blumira import BlumiraClient
from src.clients.errors import UpstreamError
from src.models.account import (
    AccountStats,
    AccountUser,
    DashboardTotals,
    EnrichedAccount,
    MspAccount,
)
from src.models.device import AgentDevice, AgentKey, DeviceListing
from src.models.finding import Finding

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def compute_account_stats(
    findings: list[Finding],
    devices: list[AgentDevice],
    keys: list[AgentKey],
) -> AccountStats:
    """Derive severity and device-status counts for one account."""
    return AccountStats(
        total_findings=len(findings),
        critical_findings=sum(1 for finding in findings if finding.is_critical),
        open_findings=sum(1 for finding in findings if finding.is_open),
        total_devices=len(devices),
        online_devices=sum(1 for device in devices if device.is_online),
        sleeping_devices=sum(1 for device in devices if device.is_sleeping),
        isolated_devices=sum(1 for device in devices if device.is_isolated),
        excluded_devices=sum(1 for device in devices if device.is_excluded),
        agent_keys_count=len(keys),
    )


def compute_totals(organizations: list[EnrichedAccount]) -> DashboardTotals:
    """Sum per-account stats and license details across all organizations."""
    totals = DashboardTotals()
    for org in organizations:
        stats = org.stats
        details = org.details
        totals.total_findings += stats.total_findings
        totals.critical_findings += stats.critical_findings
        totals.open_findings += stats.open_findings
        totals.total_devices += stats.total_devices
        totals.online_devices += stats.online_devices
        totals.sleeping_devices += stats.sleeping_devices
        totals.isolated_devices += stats.isolated_devices
        totals.excluded_devices += stats.excluded_devices
        totals.total_agent_keys += stats.agent_keys_count
        if details is not None:
            totals.total_users += details.user_count
            totals.total_agent_capacity += details.agent_count_available
            totals.total_agent_used += details.agent_count_used
    return totals


class DashboardAggregator:
    """Thin composition over the API client.

    Top-level listers propagate failures. Per-account sub-fetches are isolated:
    a failing sub-fetch is logged and treated as empty for that account only.
    """

    def __init__(self, client: BlumiraClient):
        self.client = client

    async def list_accounts(self) -> list[MspAccount]:
        return await self.client.list_accounts()

    async def list_all_findings(self) -> list[Finding]:
        return await self.client.list_all_findings()

    async def list_account_users(self, account_id: str) -> list[AccountUser]:
        return await self._tolerate(self.client.list_account_users(account_id), [], account_id, "users")

    async def enrich_account(self, account: MspAccount) -> EnrichedAccount:
        """Fan out to detail, findings, devices and keys concurrently."""
        account_id = account.account_id
        details, findings, listing, keys = await asyncio.gather(
            self._tolerate(self.client.get_account_detail(account_id), None, account_id, "details"),
            self._tolerate(self.client.list_account_findings(account_id), [], account_id, "findings"),
            self._tolerate(self.client.list_account_devices(account_id), DeviceListing(), account_id, "devices"),
            self._tolerate(self.client.list_account_keys(account_id), [], account_id, "agent_keys"),
        )
        return EnrichedAccount(
            account_id=account_id,
            name=account.name,
            open_findings=account.open_findings,
            details=details,
            findings=findings,
            agent_devices=listing.devices,
            agent_keys=keys,
            device_meta=listing.meta,
            stats=compute_account_stats(findings, listing.devices, keys),
        )

    async def enrich_all(self) -> dict[str, Any]:
        """Return every enriched organization plus cross-account totals."""
        accounts = await self.list_accounts()
        organizations = list(await asyncio.gather(*(self.enrich_account(account) for account in accounts)))
        return {
            "organizations": organizations,
            "totals": compute_totals(organizations),
            "timestamp": datetime.now(timezone.utc),
        }

    async def collect_users(self, accounts: list[MspAccount]) -> list[AccountUser]:
        """Merge users from every account, first account wins on duplicates."""
        per_account = await asyncio.gather(*(self.list_account_users(account.account_id) for account in accounts))
        merged: dict[str, AccountUser] = {}
        for account, users in zip(accounts, per_account):
            for user in users:
                key = user.user_id or user.email
                if not key or key in merged:
                    continue
                merged[key] = user.model_copy(update={"org_name": account.name, "org_id": account.account_id})
        return sorted(merged.values(), key=lambda user: user.display_name.lower())

    async def load_dashboard(self) -> dict[str, Any]:
        """Accounts, all findings and the user directory for the main views."""
        accounts, findings = await asyncio.gather(self.list_accounts(), self.list_all_findings())
        users = await self.collect_users(accounts)
        return {
            "accounts": accounts,
            "findings": findings,
            "users": users,
            "meta": {
                "accounts_count": len(accounts),
                "findings_count": len(findings),
                "users_count": len(users),
                "timestamp": datetime.now(timezone.utc),
            },
        }

    @staticmethod
    async def _tolerate(operation: Awaitable[T], fallback: T, account_id: str, fetch: str) -> T:
        try:
            return await operation
        except (UpstreamError, httpx.HTTPError, ValidationError) as exc:
            logger.warning(
                "account_subfetch_failed",
                account_id=account_id,
                fetch=fetch,
                status_code=getattr(exc, "status_code", None),
                error=str(exc),
            )
            return fallback
