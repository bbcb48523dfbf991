"""Local cache operations for the ``sessions`` and ``nodes`` tables.

Sessions are scoped by ``owner``: ``ANONYMOUS_OWNER`` for the device's
signed-out scope, otherwise the authenticated user id.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Iterable, Optional

from skiptrace.graph.models import Node, Session

ANONYMOUS_OWNER = ""


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _load_nodes(conn: sqlite3.Connection, session_id: str) -> list[Node]:
    rows = conn.execute(
        "SELECT payload FROM nodes WHERE session_id = ? ORDER BY seq",
        (session_id,),
    ).fetchall()
    return [Node.from_dict(json.loads(r["payload"])) for r in rows]


def _row_to_session(conn: sqlite3.Connection, row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        name=row["name"],
        created_at=row["created_at"],
        last_accessed=row["last_accessed"],
        nodes=_load_nodes(conn, row["id"]),
        active_root_node_id=row["active_root_node_id"],
        location_tracking_active=bool(row["location_tracking_active"]),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def put_session(
    conn: sqlite3.Connection, session: Session, owner: str = ANONYMOUS_OWNER
) -> None:
    """Insert or replace *session* and all of its nodes, preserving node order."""
    with conn:
        conn.execute(
            """
            INSERT INTO sessions (id, owner, name, created_at, last_accessed,
                                  active_root_node_id, location_tracking_active)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                owner = excluded.owner,
                name = excluded.name,
                last_accessed = excluded.last_accessed,
                active_root_node_id = excluded.active_root_node_id,
                location_tracking_active = excluded.location_tracking_active
            """,
            (
                session.id,
                owner,
                session.name,
                session.created_at,
                session.last_accessed,
                session.active_root_node_id,
                int(session.location_tracking_active),
            ),
        )
        conn.execute("DELETE FROM nodes WHERE session_id = ?", (session.id,))
        conn.executemany(
            """
            INSERT INTO nodes (session_id, id, seq, kind, status, parent_node_id, payload)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    session.id,
                    node.id,
                    seq,
                    node.kind,
                    node.status,
                    node.parent_node_id,
                    json.dumps(node.to_dict()),
                )
                for seq, node in enumerate(session.nodes)
            ],
        )


def get_session(
    conn: sqlite3.Connection, session_id: str, owner: Optional[str] = None
) -> Optional[Session]:
    """Fetch one session; ``owner`` restricts the lookup to that scope."""
    if owner is None:
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
    else:
        row = conn.execute(
            "SELECT * FROM sessions WHERE id = ? AND owner = ?", (session_id, owner)
        ).fetchone()
    return _row_to_session(conn, row) if row else None


def list_sessions(conn: sqlite3.Connection, owner: str = ANONYMOUS_OWNER) -> list[Session]:
    """Return every session of *owner*, most recently accessed first."""
    rows = conn.execute(
        "SELECT * FROM sessions WHERE owner = ? ORDER BY last_accessed DESC",
        (owner,),
    ).fetchall()
    return [_row_to_session(conn, r) for r in rows]


def delete_session(conn: sqlite3.Connection, session_id: str) -> None:
    """Delete a session (its nodes go via CASCADE).  No-op when missing."""
    with conn:
        conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))


def clear_owner(conn: sqlite3.Connection, owner: str) -> int:
    """Delete every cached session of *owner*; return how many were removed."""
    with conn:
        cursor = conn.execute("DELETE FROM sessions WHERE owner = ?", (owner,))
    return cursor.rowcount


def reassign_owner(
    conn: sqlite3.Connection, session_ids: Iterable[str], owner: str
) -> None:
    """Move sessions into another owner's scope."""
    with conn:
        conn.executemany(
            "UPDATE sessions SET owner = ? WHERE id = ?",
            [(owner, sid) for sid in session_ids],
        )


# ---------------------------------------------------------------------------
# Remote sync markers
# ---------------------------------------------------------------------------

def set_dirty(conn: sqlite3.Connection, session_id: str, dirty: bool = True) -> None:
    """Flag (or clear) a session whose latest change is not yet remote."""
    with conn:
        conn.execute(
            "UPDATE sessions SET dirty = ? WHERE id = ?", (int(dirty), session_id)
        )


def dirty_session_ids(conn: sqlite3.Connection, owner: str) -> set[str]:
    rows = conn.execute(
        "SELECT id FROM sessions WHERE owner = ? AND dirty = 1", (owner,)
    ).fetchall()
    return {r["id"] for r in rows}


def add_pending_delete(
    conn: sqlite3.Connection, owner: str, session_id: str, node_id: Optional[str] = None
) -> None:
    """Remember a remote delete that still has to be sent."""
    with conn:
        conn.execute(
            "INSERT OR IGNORE INTO pending_deletes (owner, session_id, node_id) VALUES (?, ?, ?)",
            (owner, session_id, node_id or ""),
        )


def remove_pending_delete(
    conn: sqlite3.Connection, owner: str, session_id: str, node_id: Optional[str] = None
) -> None:
    with conn:
        conn.execute(
            "DELETE FROM pending_deletes WHERE owner = ? AND session_id = ? AND node_id = ?",
            (owner, session_id, node_id or ""),
        )


def pending_deletes(
    conn: sqlite3.Connection, owner: str
) -> list[tuple[str, Optional[str]]]:
    """Return ``(session_id, node_id)`` pairs; ``node_id`` is ``None`` for a session."""
    rows = conn.execute(
        "SELECT session_id, node_id FROM pending_deletes WHERE owner = ? ORDER BY rowid",
        (owner,),
    ).fetchall()
    return [(r["session_id"], r["node_id"] or None) for r in rows]


def clear_pending_deletes(conn: sqlite3.Connection, owner: str) -> int:
    with conn:
        cursor = conn.execute("DELETE FROM pending_deletes WHERE owner = ?", (owner,))
    return cursor.rowcount
