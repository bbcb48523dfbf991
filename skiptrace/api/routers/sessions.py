"""Session graph endpoints.

Routes
------
GET    /sessions                                  List sessions (most recent first)
POST   /sessions                                  Create a session with its root node
GET    /sessions/{id}                             Full session with nodes
PATCH  /sessions/{id}                             Rename a session
DELETE /sessions/{id}                             Delete a session (nodes cascade)
GET    /sessions/{id}/nodes/{node_id}             Single node
PATCH  /sessions/{id}/nodes/{node_id}             Set a node's display title
DELETE /sessions/{id}/nodes/{node_id}             Remove one node (children are kept)
GET    /sessions/{id}/nodes/{node_id}/children    Direct children
GET    /sessions/{id}/nodes/{node_id}/lineage     Node → root provenance chain
POST   /sessions/{id}/nodes/{node_id}/rerun       Repeat a finished lookup
GET    /sessions/{id}/entities                    Deduplicated entities (?kind= filter)
GET    /sessions/{id}/counts                      Per-kind and actionable counts
POST   /sessions/{id}/lookups                     Run an upstream lookup
POST   /sessions/{id}/entities/{stable_id}/trace  Trace a clicked entity
POST   /sessions/{id}/location/start              Acquire the live location root
PUT    /sessions/{id}/location                    Append a location fix
POST   /sessions/{id}/location/stop               Release the live location root
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel

from skiptrace.api.errors import http_error
from skiptrace.errors import SkipTraceError
from skiptrace.service import LookupResult, TraceService

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class SessionCreate(BaseModel):
    name: Optional[str] = None


class SessionRename(BaseModel):
    name: str


class NodeTitle(BaseModel):
    title: str


class LookupRequest(BaseModel):
    kind: str
    params: dict[str, Any]
    parent_node_id: Optional[str] = None


class LocationFix(BaseModel):
    latitude: float
    longitude: float
    address: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _service(request: Request) -> TraceService:
    return request.app.state.service


def _summary(session: Any) -> dict[str, Any]:
    return {
        "id": session.id,
        "name": session.name,
        "createdAt": session.created_at,
        "lastAccessed": session.last_accessed,
        "nodeCount": len(session.nodes),
        "locationTrackingActive": session.location_tracking_active,
    }


def _lookup_response(result: LookupResult) -> dict[str, Any]:
    return {
        "node": result.node.to_dict(),
        "synced": result.synced,
        "syncErrors": [str(e) for e in result.sync_errors],
    }


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@router.get("")
def list_all(request: Request) -> list[dict[str, Any]]:
    return [_summary(s) for s in _service(request).store.list_sessions()]


@router.post("", status_code=201)
def create(body: SessionCreate, request: Request) -> dict[str, Any]:
    """Create a session; its root node is created with it."""
    try:
        session = _service(request).store.create_session(body.name)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return session.to_dict()


@router.get("/{session_id}")
def get_one(session_id: str, request: Request) -> dict[str, Any]:
    try:
        return _service(request).store.get_session(session_id).to_dict()
    except SkipTraceError as exc:
        raise http_error(exc) from exc


@router.patch("/{session_id}")
def rename(session_id: str, body: SessionRename, request: Request) -> dict[str, Any]:
    try:
        session = _service(request).store.rename_session(session_id, body.name)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return _summary(session)


@router.delete("/{session_id}")
def remove(session_id: str, request: Request) -> Response:
    try:
        _service(request).store.delete_session(session_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@router.get("/{session_id}/nodes/{node_id}")
def get_node(session_id: str, node_id: str, request: Request) -> dict[str, Any]:
    try:
        session = _service(request).store.get_session(session_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    node = session.find_node(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id!r}")
    return node.to_dict()


@router.patch("/{session_id}/nodes/{node_id}")
def set_title(session_id: str, node_id: str, body: NodeTitle, request: Request) -> dict[str, Any]:
    try:
        node = _service(request).store.set_node_title(session_id, node_id, body.title)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return node.to_dict()


@router.delete("/{session_id}/nodes/{node_id}")
def remove_node(session_id: str, node_id: str, request: Request) -> Response:
    """Delete one node; children keep their dangling parent reference."""
    try:
        _service(request).store.delete_node(session_id, node_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@router.get("/{session_id}/nodes/{node_id}/children")
def children(session_id: str, node_id: str, request: Request) -> list[dict[str, Any]]:
    try:
        nodes = _service(request).store.get_children(session_id, node_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return [n.to_dict() for n in nodes]


@router.get("/{session_id}/nodes/{node_id}/lineage")
def lineage(session_id: str, node_id: str, request: Request) -> list[dict[str, Any]]:
    """Return the node followed by its ancestors, nearest first."""
    try:
        nodes = _service(request).store.get_lineage(session_id, node_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return [
        {"id": n.id, "kind": n.kind, "status": n.status, "title": n.title,
         "sourceEntitySnapshot": n.source_entity_snapshot}
        for n in nodes
    ]


@router.post("/{session_id}/nodes/{node_id}/rerun", status_code=201)
def rerun(session_id: str, node_id: str, request: Request) -> dict[str, Any]:
    try:
        result = _service(request).rerun(session_id, node_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _lookup_response(result)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@router.get("/{session_id}/entities")
def entities(session_id: str, request: Request, kind: Optional[str] = None) -> list[dict[str, Any]]:
    """Deduplicated entities of the session, optionally of one ``kind``."""
    try:
        found = _service(request).store.get_entities(session_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return [e.to_dict() for e in found if kind is None or e.kind == kind]


@router.get("/{session_id}/counts")
def counts(session_id: str, request: Request) -> dict[str, Any]:
    store = _service(request).store
    try:
        return {
            "counts": store.get_entity_counts(session_id),
            "actionable": store.get_actionable_counts(session_id),
        }
    except SkipTraceError as exc:
        raise http_error(exc) from exc


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

@router.post("/{session_id}/lookups", status_code=201)
def lookup(session_id: str, body: LookupRequest, request: Request) -> dict[str, Any]:
    """Charge the quota and run one upstream search into a new node."""
    try:
        result = _service(request).lookup(
            session_id, body.kind, body.params, parent_node_id=body.parent_node_id
        )
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _lookup_response(result)


@router.post("/{session_id}/entities/{stable_id}/trace", status_code=201)
def trace(session_id: str, stable_id: str, request: Request) -> dict[str, Any]:
    try:
        result = _service(request).on_entity_click(session_id, stable_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _lookup_response(result)


# ---------------------------------------------------------------------------
# Live location root
# ---------------------------------------------------------------------------

@router.post("/{session_id}/location/start", status_code=201)
def start_location(session_id: str, request: Request) -> dict[str, Any]:
    try:
        node = _service(request).store.start_location_tracking(session_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return node.to_dict()


@router.put("/{session_id}/location")
def update_location(session_id: str, body: LocationFix, request: Request) -> dict[str, Any]:
    coords = {"latitude": body.latitude, "longitude": body.longitude}
    try:
        node = _service(request).store.update_location(session_id, coords, body.address)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return node.to_dict()


@router.post("/{session_id}/location/stop")
def stop_location(session_id: str, request: Request) -> Optional[dict[str, Any]]:
    try:
        node = _service(request).store.stop_location_tracking(session_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return node.to_dict() if node is not None else None
