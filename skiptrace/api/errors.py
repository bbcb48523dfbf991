"""Translate core failures into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException

from skiptrace.errors import (
    EntityNotFoundError,
    GraphError,
    NodeNotFoundError,
    PersistenceError,
    QuotaExhaustedError,
    RemoteSyncError,
    SessionNotFoundError,
    SkipTraceError,
    UpstreamError,
)

_NOT_FOUND = (SessionNotFoundError, NodeNotFoundError, EntityNotFoundError)


def http_error(exc: SkipTraceError) -> HTTPException:
    """Return the ``HTTPException`` matching a typed core error."""
    if isinstance(exc, _NOT_FOUND):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, GraphError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, QuotaExhaustedError):
        return HTTPException(status_code=429, detail=str(exc))
    if isinstance(exc, UpstreamError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, RemoteSyncError):
        return HTTPException(
            status_code=503,
            detail={"message": str(exc), "session_id": exc.session_id, "retryable": exc.retryable},
        )
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
