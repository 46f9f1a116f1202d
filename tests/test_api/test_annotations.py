"""API tests for the annotation endpoints."""

from __future__ import annotations

import json

from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.annotations import VERSION_HEADER, batch_router, router
from src.repositories.annotations import BULK_CLOSE_NOTE, STORAGE_KEY, AnnotationStore
from src.repositories.storage import InMemoryKeyValueMedium


def _build_app(with_store: bool = True) -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    app.include_router(batch_router)
    app.state.annotation_store = AnnotationStore(InMemoryKeyValueMedium()) if with_store else None
    return app


def test_add_note_creates_record_and_reports_version() -> None:
    client = TestClient(_build_app())

    response = client.post("/api/v1/annotations/F-100/notes", json={"text": "  Investigating  "})

    assert response.status_code == 201
    assert response.headers[VERSION_HEADER] == "1"
    payload = response.json()
    assert payload["finding_id"] == "F-100"
    assert payload["version"] == 1
    annotation = payload["annotation"]
    assert annotation["assignee"] == ""
    assert annotation["localStatus"] == "none"
    assert annotation["notes"][0]["text"] == "Investigating"
    assert annotation["notes"][0]["author"] == "You"
    assert annotation["updatedAt"] == annotation["notes"][0]["timestamp"]


def test_blank_note_is_rejected() -> None:
    client = TestClient(_build_app())

    response = client.post("/api/v1/annotations/F-1/notes", json={"text": "   "})

    assert response.status_code == 400
    assert client.get("/api/v1/annotations").json()["total"] == 0


def test_get_missing_annotation_returns_null() -> None:
    client = TestClient(_build_app())

    response = client.get("/api/v1/annotations/F-404")

    assert response.status_code == 200
    assert response.json() == {"finding_id": "F-404", "annotation": None, "version": 0}


def test_assignee_and_status_round_trip() -> None:
    client = TestClient(_build_app())

    client.put("/api/v1/annotations/F-1/assignee", json={"assignee": "Alice"})
    client.put("/api/v1/annotations/F-1/status", json={"status": "closed"})
    reopened = client.put("/api/v1/annotations/F-1/status", json={"status": "none"})
    cleared = client.put("/api/v1/annotations/F-1/assignee", json={"assignee": ""})

    assert reopened.json()["annotation"]["localStatus"] == "none"
    assert cleared.json()["annotation"]["assignee"] == ""
    assert cleared.json()["version"] == 4


def test_unknown_status_is_rejected_by_validation() -> None:
    client = TestClient(_build_app())

    response = client.put("/api/v1/annotations/F-1/status", json={"status": "archived"})

    assert response.status_code == 422


def test_delete_is_idempotent() -> None:
    client = TestClient(_build_app())
    client.put("/api/v1/annotations/F-1/assignee", json={"assignee": "Alice"})

    first = client.delete("/api/v1/annotations/F-1")
    second = client.delete("/api/v1/annotations/F-1")

    assert first.json() == {"finding_id": "F-1", "deleted": True, "version": 2}
    assert second.json() == {"finding_id": "F-1", "deleted": False, "version": 2}
    assert client.get("/api/v1/annotations/F-1").json()["annotation"] is None


def test_save_replaces_record_and_prunes_when_empty() -> None:
    client = TestClient(_build_app())
    client.post("/api/v1/annotations/F-1/notes", json={"text": "first"})

    saved = client.put(
        "/api/v1/annotations/F-1",
        json={"assignee": "Eve", "notes": [], "localStatus": "in_progress"},
    )
    pruned = client.put("/api/v1/annotations/F-1", json={"assignee": "", "notes": [], "localStatus": "none"})

    assert saved.json()["annotation"]["assignee"] == "Eve"
    assert saved.json()["annotation"]["notes"] == []
    assert pruned.json()["annotation"] is None
    assert client.get("/api/v1/annotations").json()["items"] == {}


def test_bulk_endpoints_apply_to_every_id() -> None:
    app = _build_app()
    client = TestClient(app)

    assigned = client.post(
        "/api/v1/annotation-batches/assignee", json={"finding_ids": ["f1", "f2"], "assignee": "Bob"}
    )
    noted = client.post("/api/v1/annotation-batches/notes", json={"finding_ids": ["f1", "f2"], "text": "Escalated"})
    closed = client.post("/api/v1/annotation-batches/close", json={"finding_ids": ["f1", "f2", "f3"]})

    assert assigned.json() == {"finding_ids": ["f1", "f2"], "updated": 2, "version": 1}
    assert noted.json()["version"] == 2
    assert closed.json()["updated"] == 3
    assert closed.headers[VERSION_HEADER] == "3"

    listing = client.get("/api/v1/annotations").json()
    assert listing["total"] == 3
    f1 = listing["items"]["f1"]
    assert f1["assignee"] == "Bob"
    assert f1["localStatus"] == "closed"
    assert [note["text"] for note in f1["notes"]] == ["Escalated", BULK_CLOSE_NOTE]
    assert f1["notes"][-1]["author"] == "System"
    assert listing["items"]["f3"]["assignee"] == ""


def test_bulk_status_persists_single_snapshot() -> None:
    app = _build_app()
    client = TestClient(app)

    client.post("/api/v1/annotation-batches/status", json={"finding_ids": ["a", "b"], "status": "in_progress"})

    medium = app.state.annotation_store.medium
    stored = json.loads(medium._items[STORAGE_KEY])
    assert {key: value["localStatus"] for key, value in stored.items()} == {"a": "in_progress", "b": "in_progress"}


def test_bulk_without_ids_is_rejected() -> None:
    client = TestClient(_build_app())

    response = client.post("/api/v1/annotation-batches/assignee", json={"finding_ids": [" "], "assignee": "Bob"})

    assert response.status_code == 400


def test_missing_store_returns_503() -> None:
    client = TestClient(_build_app(with_store=False))

    response = client.get("/api/v1/annotations")

    assert response.status_code == 503


def test_finding_named_bulk_is_reachable_through_single_routes() -> None:
    client = TestClient(_build_app())

    noted = client.post("/api/v1/annotations/bulk/notes", json={"text": "Looks odd"})
    assigned = client.put("/api/v1/annotations/bulk/assignee", json={"assignee": "Dana"})
    status = client.put("/api/v1/annotations/bulk/status", json={"status": "in_progress"})

    assert noted.status_code == 201
    assert assigned.status_code == 200
    assert status.json()["finding_id"] == "bulk"
    annotation = client.get("/api/v1/annotations/bulk").json()["annotation"]
    assert annotation["assignee"] == "Dana"
    assert annotation["localStatus"] == "in_progress"
    assert [note["text"] for note in annotation["notes"]] == ["Looks odd"]
