"""Request-scoped dependencies and upstream error translation."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request

from src.clients.blumira import BlumiraClient
from src.clients.errors import AuthenticationError, BlumiraError, ConfigurationError, UpstreamError
from src.repositories.base import AnnotationRepository
from src.services.aggregation import DashboardAggregator

logger = logging.getLogger(__name__)


def get_client(request: Request) -> BlumiraClient:
    client = getattr(request.app.state, "blumira_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Upstream client is not configured")
    return client


def get_aggregator(request: Request) -> DashboardAggregator:
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        aggregator = DashboardAggregator(get_client(request))
        request.app.state.aggregator = aggregator
    return aggregator


def get_store(request: Request) -> AnnotationRepository:
    store = getattr(request.app.state, "annotation_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Annotation store is not configured")
    return store


def credential_flags(client: BlumiraClient | None) -> dict[str, bool]:
    has_client_id = bool(client and client.has_client_id)
    has_client_secret = bool(client and client.has_client_secret)
    return {
        "has_credentials": has_client_id and has_client_secret,
        "has_client_id": has_client_id,
        "has_client_secret": has_client_secret,
    }


def upstream_http_exception(exc: BlumiraError, client: BlumiraClient | None = None) -> HTTPException:
    """Map the upstream error taxonomy onto HTTP responses the views can route on."""
    detail: dict[str, Any] = {"error": str(exc)}
    if isinstance(exc, ConfigurationError):
        detail.update(code="credentials_missing", **credential_flags(client))
        return HTTPException(status_code=503, detail=detail)
    if isinstance(exc, AuthenticationError):
        detail.update(code="authentication_failed", **credential_flags(client))
        return HTTPException(status_code=401, detail=detail)
    if isinstance(exc, UpstreamError):
        logger.warning("Upstream request failed: status=%s error=%s", exc.status_code, exc)
        detail.update(code="upstream_error", upstream_status=exc.status_code, upstream_body=exc.body)
        return HTTPException(status_code=502, detail=detail)
    detail.update(code="upstream_error")
    return HTTPException(status_code=502, detail=detail)
