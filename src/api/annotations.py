"""Operator-local annotations: assignee, note log and local status."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, Field

from src.api._common import get_store
from src.models.annotation import DEFAULT_NOTE_AUTHOR, SYSTEM_NOTE_AUTHOR, FindingAnnotation, LocalStatus
from src.repositories.annotations import BULK_CLOSE_NOTE
from src.repositories.base import AnnotationRepository

router = APIRouter(prefix="/api/v1/annotations", tags=["annotations"])
# Batch routes live under their own prefix so no finding id can shadow them.
batch_router = APIRouter(prefix="/api/v1/annotation-batches", tags=["annotations"])

VERSION_HEADER = "X-Annotations-Version"


class AnnotationListResponse(BaseModel):
    items: dict[str, FindingAnnotation]
    total: int
    version: int


class AnnotationResponse(BaseModel):
    finding_id: str
    annotation: FindingAnnotation | None
    version: int


class AnnotationDeleteResponse(BaseModel):
    finding_id: str
    deleted: bool
    version: int


class BulkResponse(BaseModel):
    finding_ids: list[str]
    updated: int
    version: int


class NoteCreateRequest(BaseModel):
    text: str
    author: str | None = None


class AssigneeRequest(BaseModel):
    assignee: str = ""


class StatusRequest(BaseModel):
    status: LocalStatus


class BulkAssigneeRequest(AssigneeRequest):
    finding_ids: list[str] = Field(default_factory=list)


class BulkNoteRequest(NoteCreateRequest):
    finding_ids: list[str] = Field(default_factory=list)


class BulkStatusRequest(StatusRequest):
    finding_ids: list[str] = Field(default_factory=list)


class BulkCloseRequest(BaseModel):
    finding_ids: list[str] = Field(default_factory=list)
    note: str = BULK_CLOSE_NOTE
    author: str = SYSTEM_NOTE_AUTHOR


def _normalize_text(value: str) -> str:
    normalized = (value or "").strip()
    if not normalized:
        raise HTTPException(status_code=400, detail="text is required")
    return normalized


def _normalize_author(value: str | None) -> str:
    normalized = (value or "").strip()
    return normalized or DEFAULT_NOTE_AUTHOR


def _normalize_ids(values: list[str]) -> list[str]:
    ids = [value.strip() for value in values if value and value.strip()]
    if not ids:
        raise HTTPException(status_code=400, detail="finding_ids is required")
    return ids


def _respond(response: Response, store: AnnotationRepository, finding_id: str, annotation: FindingAnnotation | None):
    response.headers[VERSION_HEADER] = str(store.version)
    return AnnotationResponse(finding_id=finding_id, annotation=annotation, version=store.version)


def _respond_bulk(response: Response, store: AnnotationRepository, ids: list[str], updated: int) -> BulkResponse:
    response.headers[VERSION_HEADER] = str(store.version)
    return BulkResponse(finding_ids=ids, updated=updated, version=store.version)


@router.get("", response_model=AnnotationListResponse)
async def list_annotations(request: Request, response: Response) -> AnnotationListResponse:
    """Return every stored annotation for a view to merge in one pass."""
    store = get_store(request)
    items = await store.get_all()
    response.headers[VERSION_HEADER] = str(store.version)
    return AnnotationListResponse(items=items, total=len(items), version=store.version)


@batch_router.post("/assignee", response_model=BulkResponse)
async def bulk_set_assignee(request: Request, response: Response, payload: BulkAssigneeRequest) -> BulkResponse:
    store = get_store(request)
    ids = _normalize_ids(payload.finding_ids)
    results = await store.bulk_set_assignee(ids, payload.assignee.strip())
    return _respond_bulk(response, store, ids, len(results))


@batch_router.post("/notes", response_model=BulkResponse)
async def bulk_add_note(request: Request, response: Response, payload: BulkNoteRequest) -> BulkResponse:
    store = get_store(request)
    ids = _normalize_ids(payload.finding_ids)
    results = await store.bulk_add_note(ids, _normalize_text(payload.text), _normalize_author(payload.author))
    return _respond_bulk(response, store, ids, len(results))


@batch_router.post("/status", response_model=BulkResponse)
async def bulk_set_status(request: Request, response: Response, payload: BulkStatusRequest) -> BulkResponse:
    store = get_store(request)
    ids = _normalize_ids(payload.finding_ids)
    results = await store.bulk_set_local_status(ids, payload.status)
    return _respond_bulk(response, store, ids, len(results))


@batch_router.post("/close", response_model=BulkResponse)
async def bulk_close(request: Request, response: Response, payload: BulkCloseRequest) -> BulkResponse:
    """Close locally and log a system note on every selected finding."""
    store = get_store(request)
    ids = _normalize_ids(payload.finding_ids)
    results = await store.bulk_close(ids, author=_normalize_author(payload.author), note=_normalize_text(payload.note))
    return _respond_bulk(response, store, ids, len(results))


@router.get("/{finding_id}", response_model=AnnotationResponse)
async def get_annotation(finding_id: str, request: Request, response: Response) -> AnnotationResponse:
    """Return the annotation, or ``annotation: null`` when none exists."""
    store = get_store(request)
    return _respond(response, store, finding_id, await store.get(finding_id))


@router.put("/{finding_id}", response_model=AnnotationResponse)
async def save_annotation(
    finding_id: str,
    request: Request,
    response: Response,
    payload: FindingAnnotation,
) -> AnnotationResponse:
    """Replace the whole record; an all-empty record is removed."""
    store = get_store(request)
    return _respond(response, store, finding_id, await store.save(finding_id, payload))


@router.delete("/{finding_id}", response_model=AnnotationDeleteResponse)
async def delete_annotation(finding_id: str, request: Request, response: Response) -> AnnotationDeleteResponse:
    store = get_store(request)
    deleted = await store.delete_annotation(finding_id)
    response.headers[VERSION_HEADER] = str(store.version)
    return AnnotationDeleteResponse(finding_id=finding_id, deleted=deleted, version=store.version)


@router.post("/{finding_id}/notes", response_model=AnnotationResponse, status_code=201)
async def add_note(finding_id: str, request: Request, response: Response, payload: NoteCreateRequest):
    store = get_store(request)
    annotation = await store.add_note(finding_id, _normalize_text(payload.text), _normalize_author(payload.author))
    return _respond(response, store, finding_id, annotation)


@router.put("/{finding_id}/assignee", response_model=AnnotationResponse)
async def set_assignee(finding_id: str, request: Request, response: Response, payload: AssigneeRequest):
    store = get_store(request)
    annotation = await store.set_assignee(finding_id, payload.assignee.strip())
    return _respond(response, store, finding_id, annotation)


@router.put("/{finding_id}/status", response_model=AnnotationResponse)
async def set_local_status(finding_id: str, request: Request, response: Response, payload: StatusRequest):
    store = get_store(request)
    annotation = await store.set_local_status(finding_id, payload.status)
    return _respond(response, store, finding_id, annotation)
