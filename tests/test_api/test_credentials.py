"""API tests for credential status and entry."""

from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.credentials import router
from src.clients.blumira import AUTH_URL, BlumiraClient


def _build_app(client_id: str | None, client_secret: str | None, token_status: int = 200) -> FastAPI:
    def _handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == AUTH_URL
        if token_status != 200:
            return httpx.Response(token_status, text="invalid_client")
        return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})

    app = FastAPI()
    app.include_router(router)
    app.state.blumira_client = BlumiraClient(
        client_id,
        client_secret,
        session=httpx.AsyncClient(transport=httpx.MockTransport(_handler)),
    )
    return app


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BLUMIRA_CLIENT_ID", raising=False)
    monkeypatch.delenv("BLUMIRA_CLIENT_SECRET", raising=False)


def test_status_reports_presence_flags_only() -> None:
    client = TestClient(_build_app("cid", None))

    response = client.get("/api/v1/credentials")

    assert response.status_code == 200
    assert response.json() == {"has_credentials": False, "has_client_id": True, "has_client_secret": False}


def test_status_without_client_reports_missing() -> None:
    app = FastAPI()
    app.include_router(router)

    response = TestClient(app).get("/api/v1/credentials")

    assert response.json()["has_credentials"] is False


def test_post_validates_then_applies_credentials() -> None:
    app = _build_app(None, None)
    client = TestClient(app)

    response = client.post("/api/v1/credentials", json={"client_id": " new-id ", "client_secret": "new-secret"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert app.state.blumira_client.client_id == "new-id"
    assert client.get("/api/v1/credentials").json()["has_credentials"] is True


def test_post_with_blank_values_returns_400() -> None:
    client = TestClient(_build_app(None, None))

    response = client.post("/api/v1/credentials", json={"client_id": "id", "client_secret": "  "})

    assert response.status_code == 400


def test_post_with_rejected_credentials_returns_401_and_keeps_old_values() -> None:
    app = _build_app("old-id", "old-secret", token_status=401)
    client = TestClient(app)

    response = client.post("/api/v1/credentials", json={"client_id": "bad", "client_secret": "bad"})

    assert response.status_code == 401
    assert response.json()["detail"] == {"error": "Invalid credentials", "details": "invalid_client"}
    assert app.state.blumira_client.client_id == "old-id"
