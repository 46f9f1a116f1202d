"""Credential status and credential entry endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from src.api._common import credential_flags, get_client
from src.clients.errors import AuthenticationError, ConfigurationError

router = APIRouter(prefix="/api/v1/credentials", tags=["credentials"])


class CredentialStatus(BaseModel):
    has_credentials: bool
    has_client_id: bool
    has_client_secret: bool


class CredentialUpdateRequest(BaseModel):
    client_id: str = ""
    client_secret: str = ""


class CredentialUpdateResponse(BaseModel):
    success: bool
    message: str


@router.get("", response_model=CredentialStatus)
async def credential_status(request: Request) -> CredentialStatus:
    """Report which credential values are present, never the values."""
    client = getattr(request.app.state, "blumira_client", None)
    return CredentialStatus(**credential_flags(client))


@router.post("", response_model=CredentialUpdateResponse)
async def update_credentials(request: Request, payload: CredentialUpdateRequest) -> CredentialUpdateResponse:
    """Validate a credential pair upstream, then use it for this process."""
    client_id = payload.client_id.strip()
    client_secret = payload.client_secret.strip()
    if not client_id or not client_secret:
        raise HTTPException(status_code=400, detail="Client ID and Client Secret are required")

    client = get_client(request)
    try:
        await client.validate_credentials(client_id, client_secret)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=401,
            detail={"error": "Invalid credentials", "details": exc.body or str(exc)},
        ) from exc

    client.set_credentials(client_id, client_secret)
    return CredentialUpdateResponse(success=True, message="Credentials validated and set for this session")
