"""Identity endpoints.

Routes
------
GET  /auth                  Current identity, caller class and unsynced sessions
POST /auth/identity         Sign in (``user_id``) or out (``null``)
POST /auth/local-sessions   Keep, discard or migrate stranded anonymous sessions
POST /auth/sync             Retry remote writes that previously failed
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from skiptrace.api.errors import http_error
from skiptrace.errors import SkipTraceError
from skiptrace.sync import LocalSessionPolicy

router = APIRouter()


class IdentityChange(BaseModel):
    user_id: Optional[str] = None


class LocalSessionsRequest(BaseModel):
    policy: LocalSessionPolicy
    session_ids: Optional[list[str]] = None


def _summary(session: Any) -> dict[str, Any]:
    return {"id": session.id, "name": session.name, "nodeCount": len(session.nodes)}


@router.get("")
def whoami(request: Request) -> dict[str, Any]:
    service = request.app.state.service
    adapter = service.adapter
    return {
        "user_id": adapter.user_id if adapter else None,
        "caller_class": service.caller_class,
        "unsynced": sorted(adapter.unsynced) if adapter else [],
    }


@router.post("/identity")
def change_identity(body: IdentityChange, request: Request) -> dict[str, Any]:
    """Switch identity; anonymous sessions left on the device are reported."""
    try:
        report = request.app.state.service.change_identity(body.user_id)
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return {
        "previous_user_id": report.previous_user_id,
        "user_id": report.user_id,
        "stranded": [_summary(s) for s in report.stranded],
        "cleared_local": report.cleared_local,
        "load_error": str(report.load_error) if report.load_error else None,
    }


@router.post("/local-sessions")
def resolve_local_sessions(body: LocalSessionsRequest, request: Request) -> dict[str, Any]:
    try:
        migrated = request.app.state.service.resolve_local_sessions(
            body.policy, body.session_ids
        )
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return {"policy": body.policy.value, "migrated": [_summary(s) for s in migrated]}


@router.post("/sync")
def retry_sync(request: Request) -> dict[str, Any]:
    try:
        failed = request.app.state.service.retry_unsynced()
    except SkipTraceError as exc:
        raise http_error(exc) from exc
    return {"unsynced": failed}
