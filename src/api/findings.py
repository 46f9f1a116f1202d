"""Single finding detail, merged with its local annotation."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from src.api._common import get_client, get_store, upstream_http_exception
from src.clients.errors import BlumiraError
from src.models.annotation import FindingAnnotation
from src.models.finding import Finding, FindingUpdate

router = APIRouter(prefix="/api/v1/findings", tags=["findings"])


class FindingDetailResponse(BaseModel):
    data: Finding
    annotation: FindingAnnotation | None = None
    url: str


@router.get("/{account_id}/{finding_id}", response_model=FindingDetailResponse)
async def get_finding(account_id: str, finding_id: str, request: Request) -> FindingDetailResponse:
    """Fetch a finding upstream and attach the operator's annotation."""
    client = get_client(request)
    try:
        finding = await client.get_finding(account_id, finding_id)
    except BlumiraError as exc:
        raise upstream_http_exception(exc, client) from exc
    if finding is None:
        raise HTTPException(status_code=404, detail="Finding not found")

    annotation = await get_store(request).get(finding_id)
    return FindingDetailResponse(data=finding, annotation=annotation, url=client.finding_url(finding))


@router.patch("/{account_id}/{finding_id}", response_model=Finding)
async def update_finding(account_id: str, finding_id: str, request: Request, payload: FindingUpdate) -> Finding:
    """Write changes back upstream where the deployment allows it."""
    if not getattr(request.app.state, "allow_upstream_writes", False):
        raise HTTPException(status_code=403, detail="Upstream write-back is disabled")
    if not payload.to_payload():
        raise HTTPException(status_code=400, detail="At least one field must be provided")

    client = get_client(request)
    try:
        return await client.update_finding(account_id, finding_id, payload)
    except BlumiraError as exc:
        raise upstream_http_exception(exc, client) from exc
