"""Health and lightweight operational status endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from src.api._common import credential_flags

router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("")
async def health_check(request: Request) -> dict[str, Any]:
    """Report storage backend, credential presence and annotation version."""
    store = getattr(request.app.state, "annotation_store", None)
    client = getattr(request.app.state, "blumira_client", None)
    storage_status = "not_initialized"
    if store is not None:
        storage_status = getattr(store.medium, "name", "unknown")

    flags = credential_flags(client)
    return {
        "status": "healthy" if store is not None else "unhealthy",
        "annotation_storage": storage_status,
        "annotation_version": store.version if store is not None else None,
        "credentials": "configured" if flags["has_credentials"] else "missing",
        "upstream_writes": bool(getattr(request.app.state, "allow_upstream_writes", False)),
    }
