"""Aggregated dashboard data for the overview, findings and analytics views."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder

from src.api._common import get_aggregator, get_client, upstream_http_exception
from src.clients.errors import BlumiraError

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


@router.get("")
async def dashboard_data(request: Request) -> dict[str, Any]:
    """Return accounts, all findings and the merged user directory."""
    client = get_client(request)
    try:
        payload = await get_aggregator(request).load_dashboard()
    except BlumiraError as exc:
        raise upstream_http_exception(exc, client) from exc
    return jsonable_encoder(payload)
