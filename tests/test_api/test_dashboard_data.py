"""API tests for the aggregated dashboard, organizations and finding detail endpoints."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api import dashboard, findings, organizations
from src.clients.errors import AuthenticationError, ConfigurationError, UpstreamError
from src.models.account import DashboardTotals, EnrichedAccount, MspAccount
from src.models.finding import Finding, FindingUpdate
from src.repositories.annotations import AnnotationStore
from src.repositories.storage import InMemoryKeyValueMedium

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _FakeClient:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.has_client_id = error is None
        self.has_client_secret = error is None
        self.patches: list[dict[str, Any]] = []

    async def get_finding(self, account_id: str, finding_id: str) -> Finding | None:
        if self.error is not None:
            raise self.error
        if finding_id == "missing":
            return None
        return Finding(finding_id=finding_id, org_id=account_id, name="Brute force", assigned_to_name="Ops")

    async def update_finding(self, account_id: str, finding_id: str, patch: FindingUpdate) -> Finding:
        self.patches.append(patch.to_payload())
        return Finding(finding_id=finding_id, org_id=account_id, **patch.to_payload())

    def finding_url(self, finding: Finding) -> str:
        return f"https://app.test/{finding.org_id}/reporting/findings/{finding.finding_id}"


class _FakeAggregator:
    def __init__(self, error: Exception | None = None):
        self.error = error

    async def load_dashboard(self) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        return {
            "accounts": [MspAccount(account_id="a1", name="Acme")],
            "findings": [Finding(finding_id="f1", org_id="a1", priority=1)],
            "users": [],
            "meta": {"accounts_count": 1, "findings_count": 1, "users_count": 0, "timestamp": NOW},
        }

    async def enrich_all(self) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        return {
            "organizations": [EnrichedAccount(account_id="a1", name="Acme")],
            "totals": DashboardTotals(total_findings=0),
            "timestamp": NOW,
        }


def _build_app(
    *,
    client_error: Exception | None = None,
    aggregator_error: Exception | None = None,
    allow_writes: bool = False,
) -> FastAPI:
    app = FastAPI()
    app.include_router(dashboard.router)
    app.include_router(organizations.router)
    app.include_router(findings.router)
    app.state.blumira_client = _FakeClient(client_error)
    app.state.aggregator = _FakeAggregator(aggregator_error)
    app.state.annotation_store = AnnotationStore(InMemoryKeyValueMedium())
    app.state.allow_upstream_writes = allow_writes
    return app


def test_dashboard_returns_serialized_payload() -> None:
    response = TestClient(_build_app()).get("/api/v1/dashboard")

    assert response.status_code == 200
    payload = response.json()
    assert payload["accounts"][0]["account_id"] == "a1"
    assert payload["findings"][0]["priority"] == 1
    assert payload["meta"]["findings_count"] == 1
    assert payload["meta"]["timestamp"].startswith("2026-03-01T12:00:00")


def test_missing_credentials_map_to_503_with_code() -> None:
    app = _build_app(client_error=ConfigurationError("no creds"), aggregator_error=ConfigurationError("no creds"))

    response = TestClient(app).get("/api/v1/dashboard")

    assert response.status_code == 503
    detail = response.json()["detail"]
    assert detail["code"] == "credentials_missing"
    assert detail["has_credentials"] is False


def test_rejected_credentials_map_to_401() -> None:
    app = _build_app(aggregator_error=AuthenticationError("bad", status_code=401, body="denied"))

    response = TestClient(app).get("/api/v1/organizations")

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "authentication_failed"


def test_upstream_failure_maps_to_502_with_status_and_body() -> None:
    app = _build_app(aggregator_error=UpstreamError("down", status_code=500, body="oops"))

    response = TestClient(app).get("/api/v1/organizations")

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["upstream_status"] == 500
    assert detail["upstream_body"] == "oops"


def test_organizations_returns_totals() -> None:
    response = TestClient(_build_app()).get("/api/v1/organizations")

    payload = response.json()
    assert payload["organizations"][0]["name"] == "Acme"
    assert payload["organizations"][0]["stats"]["total_devices"] == 0
    assert payload["totals"]["total_agent_keys"] == 0


def test_finding_detail_merges_annotation_and_link() -> None:
    app = _build_app()
    asyncio.run(app.state.annotation_store.set_assignee("f1", "Alice"))

    response = TestClient(app).get("/api/v1/findings/a1/f1")

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["assigned_to_name"] == "Ops"
    assert payload["annotation"]["assignee"] == "Alice"
    assert payload["url"] == "https://app.test/a1/reporting/findings/f1"


def test_finding_detail_404_when_upstream_has_no_record() -> None:
    response = TestClient(_build_app()).get("/api/v1/findings/a1/missing")

    assert response.status_code == 404


def test_finding_patch_is_forbidden_unless_enabled() -> None:
    response = TestClient(_build_app()).patch("/api/v1/findings/a1/f1", json={"status": 30})

    assert response.status_code == 403


def test_finding_patch_forwards_only_set_fields() -> None:
    app = _build_app(allow_writes=True)
    client = TestClient(app)

    empty = client.patch("/api/v1/findings/a1/f1", json={})
    updated = client.patch("/api/v1/findings/a1/f1", json={"priority": 2, "assigned_to": "u-9"})

    assert empty.status_code == 400
    assert updated.status_code == 200
    assert updated.json()["priority"] == 2
    assert app.state.blumira_client.patches == [{"priority": 2, "assigned_to": "u-9"}]
