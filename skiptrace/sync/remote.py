"""Durable remote session store over a PostgREST-style HTTP API.

Tables::

    /rest/v1/sessions   one row per session (session fields + ``userId``)
    /rest/v1/nodes      one row per node (node fields + ``sessionId``, ``userId``, ``seq``)

Every transport or HTTP failure, and every unreadable table read, is raised
as a retryable :class:`~skiptrace.errors.RemoteSyncError`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from skiptrace.config import settings
from skiptrace.errors import RemoteSyncError
from skiptrace.graph.models import Node, Session

logger = logging.getLogger(__name__)

_SESSION_FIELDS = (
    "id",
    "name",
    "createdAt",
    "lastAccessed",
    "activeRootNodeId",
    "locationTrackingActive",
)


def _session_row(user_id: str, session: Session) -> dict[str, Any]:
    payload = session.to_dict()
    row = {key: payload[key] for key in _SESSION_FIELDS}
    row["userId"] = user_id
    return row


def _node_rows(user_id: str, session: Session) -> list[dict[str, Any]]:
    rows = []
    for seq, node in enumerate(session.nodes):
        row = node.to_dict()
        row.update({"sessionId": session.id, "userId": user_id, "seq": seq})
        rows.append(row)
    return rows


def _rows(response: httpx.Response, table: str) -> list[dict[str, Any]]:
    """Decode a table read; anything but a JSON list of objects is a sync failure."""
    try:
        rows = response.json()
    except ValueError as exc:
        raise RemoteSyncError(f"Remote {table} read returned a non-JSON body") from exc
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        raise RemoteSyncError(f"Remote {table} read returned {type(rows).__name__}, not rows")
    return rows


class RemoteSessionStore:
    """Thin client for the remote ``sessions`` / ``nodes`` tables."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = (base_url or settings.remote_store_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.remote_store_key
        self.timeout = timeout if timeout is not None else settings.request_timeout

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _headers(self, upsert: bool = False) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if upsert:
            headers["Prefer"] = "resolution=merge-duplicates,return=minimal"
        return headers

    def _request(
        self,
        method: str,
        table: str,
        session_id: Optional[str] = None,
        upsert: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, headers=self._headers(upsert), **kwargs)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as exc:
            raise RemoteSyncError(
                f"Remote {method} {table} failed with {exc.response.status_code}",
                session_id=session_id,
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteSyncError(
                f"Remote {method} {table} failed: {exc}", session_id=session_id
            ) from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_sessions(self, user_id: str) -> list[Session]:
        """Fetch every session of *user_id* with its nodes in order."""
        session_rows = _rows(
            self._request(
                "GET",
                "sessions",
                params={"userId": f"eq.{user_id}", "order": "lastAccessed.desc"},
            ),
            "sessions",
        )
        node_rows = _rows(
            self._request(
                "GET",
                "nodes",
                params={"userId": f"eq.{user_id}", "order": "seq.asc"},
            ),
            "nodes",
        )

        try:
            nodes_by_session: dict[str, list[Node]] = {}
            for row in node_rows:
                nodes_by_session.setdefault(row.get("sessionId"), []).append(Node.from_dict(row))

            sessions = []
            for row in session_rows:
                session = Session.from_dict(row)
                session.nodes = nodes_by_session.get(session.id, [])
                sessions.append(session)
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteSyncError(f"Remote rows for {user_id} are malformed: {exc}") from exc
        logger.debug("Fetched %d remote session(s) for %s", len(sessions), user_id)
        return sessions

    def put_session(self, user_id: str, session: Session) -> None:
        """Upsert the session row and all of its node rows."""
        self._request(
            "POST", "sessions", session_id=session.id, upsert=True,
            json=[_session_row(user_id, session)],
        )
        rows = _node_rows(user_id, session)
        if rows:
            self._request("POST", "nodes", session_id=session.id, upsert=True, json=rows)

    def delete_session(self, user_id: str, session_id: str) -> None:
        self._request(
            "DELETE", "nodes", session_id=session_id,
            params={"sessionId": f"eq.{session_id}", "userId": f"eq.{user_id}"},
        )
        self._request(
            "DELETE", "sessions", session_id=session_id,
            params={"id": f"eq.{session_id}", "userId": f"eq.{user_id}"},
        )

    def delete_node(self, user_id: str, session_id: str, node_id: str) -> None:
        self._request(
            "DELETE", "nodes", session_id=session_id,
            params={
                "id": f"eq.{node_id}",
                "sessionId": f"eq.{session_id}",
                "userId": f"eq.{user_id}",
            },
        )
