"""Enriched per-organization data for the organizations and agents views."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder

from src.api._common import get_aggregator, get_client, upstream_http_exception
from src.clients.errors import BlumiraError

router = APIRouter(prefix="/api/v1/organizations", tags=["organizations"])


@router.get("")
async def list_organizations(request: Request) -> dict[str, Any]:
    """Return every account enriched with findings, devices, keys and totals."""
    client = get_client(request)
    try:
        payload = await get_aggregator(request).enrich_all()
    except BlumiraError as exc:
        raise upstream_http_exception(exc, client) from exc
    return jsonable_encoder(payload)
