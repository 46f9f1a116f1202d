"""Async client for the Blumira public API (MSP endpoints)."""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx
from pydantic import ValidationError

from src.clients.errors import AuthenticationError, ConfigurationError, UpstreamError
from src.clients.token_cache import TokenCache
from src.config import Settings
from src.models.account import AccountDetails, AccountUser, MspAccount
from src.models.device import AgentDevice, AgentKey, DeviceListing
from src.models.finding import Finding, FindingUpdate

AUTH_URL = "https://auth.blumira.com/oauth/token"
API_BASE_URL = "https://api.blumira.com/public-api/v1"
APP_BASE_URL = "https://app.blumira.com"
TOKEN_AUDIENCE = "public-api"

CLIENT_ID_ENV = "BLUMIRA_CLIENT_ID"
CLIENT_SECRET_ENV = "BLUMIRA_CLIENT_SECRET"

logger = logging.getLogger(__name__)


def _unwrap_list(payload: Any) -> list[dict[str, Any]]:
    rows = payload.get("data") if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, dict)]


def _unwrap_object(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict):
        return data
    return payload


def _parse_rows(model: type, rows: list[dict[str, Any]], kind: str) -> list:
    items = []
    for row in rows:
        try:
            items.append(model.model_validate(row))
        except ValidationError as exc:
            logger.warning("Skipping malformed upstream %s record: %s", kind, exc.errors()[:1])
    return items


class BlumiraClient:
    """Fetch accounts, findings, devices and keys with a cached bearer token."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        *,
        auth_url: str = AUTH_URL,
        api_base_url: str = API_BASE_URL,
        app_base_url: str = APP_BASE_URL,
        timeout_seconds: float = 30.0,
        token_cache: TokenCache | None = None,
        session: httpx.AsyncClient | None = None,
    ):
        self.client_id = client_id or None
        self.client_secret = client_secret or None
        self.auth_url = auth_url
        self.api_base_url = api_base_url.rstrip("/")
        self.app_base_url = app_base_url.rstrip("/")
        self.token_cache = token_cache or TokenCache()
        self.session = session or httpx.AsyncClient(timeout=timeout_seconds)

    @classmethod
    def from_settings(cls, settings: Settings, *, session: httpx.AsyncClient | None = None) -> BlumiraClient:
        return cls(
            settings.client_id,
            settings.client_secret,
            auth_url=settings.auth_url,
            api_base_url=settings.api_base_url,
            app_base_url=settings.app_base_url,
            timeout_seconds=settings.http_timeout_seconds,
            token_cache=TokenCache(expiry_margin_seconds=settings.token_expiry_margin_seconds),
            session=session,
        )

    @property
    def has_client_id(self) -> bool:
        return bool(self.client_id)

    @property
    def has_client_secret(self) -> bool:
        return bool(self.client_secret)

    @property
    def has_credentials(self) -> bool:
        return self.has_client_id and self.has_client_secret

    def set_credentials(self, client_id: str, client_secret: str, *, export_env: bool = True) -> None:
        """Swap credentials for this process and drop any cached token."""
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_cache.invalidate()
        if export_env:
            os.environ[CLIENT_ID_ENV] = client_id
            os.environ[CLIENT_SECRET_ENV] = client_secret

    async def close(self) -> None:
        """Close underlying HTTP client."""
        await self.session.aclose()

    async def get_access_token(self) -> str:
        """Return a valid bearer token, exchanging credentials only when needed."""
        token = self.token_cache.get()
        if token:
            return token
        if not self.has_credentials:
            raise ConfigurationError(f"{CLIENT_ID_ENV} and {CLIENT_SECRET_ENV} environment variables are required")

        async with self.token_cache.refresh_lock:
            token = self.token_cache.get()
            if token:
                return token
            token, expires_in = await self._exchange_token(self.client_id or "", self.client_secret or "")
            self.token_cache.store(token, expires_in)
            logger.info("Obtained upstream access token (expires_in=%ss).", expires_in)
            return token

    async def validate_credentials(self, client_id: str, client_secret: str) -> None:
        """Check a credential pair against the token endpoint without caching the token."""
        if not client_id or not client_secret:
            raise ConfigurationError("Client ID and Client Secret are required")
        await self._exchange_token(client_id, client_secret)

    async def _exchange_token(self, client_id: str, client_secret: str) -> tuple[str, float | None]:
        try:
            response = await self.session.post(
                self.auth_url,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                json={
                    "grant_type": "client_credentials",
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "audience": TOKEN_AUDIENCE,
                },
            )
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Authentication request failed: {exc}") from exc

        if not response.is_success:
            raise AuthenticationError(
                f"Authentication failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthenticationError("Invalid response from authentication server") from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AuthenticationError("No access token received from authentication endpoint")
        expires_in = payload.get("expires_in")
        return str(token), float(expires_in) if isinstance(expires_in, (int, float)) else None

    async def _request(self, method: str, path: str, *, json_body: dict[str, Any] | None = None) -> Any:
        token = await self.get_access_token()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        if json_body is not None:
            headers["Content-Type"] = "application/json"
        try:
            response = await self.session.request(
                method,
                f"{self.api_base_url}{path}",
                headers=headers,
                json=json_body,
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"API {method} {path} failed: {exc}") from exc

        if response.status_code == 401:
            self.token_cache.invalidate()
            raise AuthenticationError(
                f"API {method} {path} rejected the access token (401): {response.text}",
                status_code=401,
                body=response.text,
            )
        if not response.is_success:
            raise UpstreamError(
                f"API request failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"API {method} {path} returned non-JSON body",
                status_code=response.status_code,
                body=response.text[:1000],
            ) from exc

    async def list_accounts(self) -> list[MspAccount]:
        payload = await self._request("GET", "/msp/accounts")
        return _parse_rows(MspAccount, _unwrap_list(payload), "account")

    async def get_account_detail(self, account_id: str) -> AccountDetails | None:
        payload = await self._request("GET", f"/msp/accounts/{account_id}")
        data = _unwrap_object(payload)
        return AccountDetails.model_validate(data) if data is not None else None

    async def list_all_findings(self) -> list[Finding]:
        payload = await self._request("GET", "/msp/accounts/findings")
        return _parse_rows(Finding, _unwrap_list(payload), "finding")

    async def list_account_findings(self, account_id: str) -> list[Finding]:
        payload = await self._request("GET", f"/msp/accounts/{account_id}/findings")
        return _parse_rows(Finding, _unwrap_list(payload), "finding")

    async def list_account_devices(self, account_id: str) -> DeviceListing:
        payload = await self._request("GET", f"/msp/accounts/{account_id}/agents/devices")
        meta = payload.get("meta") if isinstance(payload, dict) else None
        return DeviceListing(
            devices=_parse_rows(AgentDevice, _unwrap_list(payload), "device"),
            meta=meta if isinstance(meta, dict) else None,
        )

    async def list_account_keys(self, account_id: str) -> list[AgentKey]:
        payload = await self._request("GET", f"/msp/accounts/{account_id}/agents/keys")
        return _parse_rows(AgentKey, _unwrap_list(payload), "agent key")

    async def list_account_users(self, account_id: str) -> list[AccountUser]:
        payload = await self._request("GET", f"/msp/accounts/{account_id}/users")
        return _parse_rows(AccountUser, _unwrap_list(payload), "user")

    async def get_finding(self, account_id: str, finding_id: str) -> Finding | None:
        """Return one finding, or None when the upstream reports it missing."""
        try:
            payload = await self._request("GET", f"/msp/accounts/{account_id}/findings/{finding_id}")
        except UpstreamError as exc:
            if exc.status_code == 404:
                return None
            raise
        data = _unwrap_object(payload)
        return Finding.model_validate(data) if data is not None else None

    async def update_finding(self, account_id: str, finding_id: str, patch: FindingUpdate) -> Finding:
        """Write status/priority/assignee/resolution/notes back upstream."""
        payload = await self._request(
            "PATCH",
            f"/msp/accounts/{account_id}/findings/{finding_id}",
            json_body=patch.to_payload(),
        )
        data = _unwrap_object(payload)
        if data is None:
            raise UpstreamError(f"API PATCH for finding {finding_id} returned an empty body")
        return Finding.model_validate(data)

    def finding_url(self, finding: Finding) -> str:
        """Deep link to the finding in the upstream web app."""
        return f"{self.app_base_url}/{finding.org_id}/reporting/findings/{finding.finding_id}"
