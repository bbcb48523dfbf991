"""Database initialisation and migration helpers.

``init_db(conn)`` is idempotent and safe to call on an existing database.
``migrate(conn)`` runs incremental schema changes tracked in a version table.
"""

from __future__ import annotations

import sqlite3

from skiptrace.config import settings

# (version, sql) pairs applied in order by migrate()
MIGRATIONS: list[tuple[int, str]] = [
    (1, "CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes (session_id, parent_node_id)"),
    # Sessions whose latest local change has not reached the remote store
    (2, "ALTER TABLE sessions ADD COLUMN dirty INTEGER NOT NULL DEFAULT 0"),
    # Remote deletes still owed; node_id is '' for a whole-session delete
    (
        3,
        """
        CREATE TABLE IF NOT EXISTS pending_deletes (
            owner      TEXT NOT NULL,
            session_id TEXT NOT NULL,
            node_id    TEXT NOT NULL DEFAULT '',
            PRIMARY KEY (owner, session_id, node_id)
        )
        """,
    ),
]


def init_db(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes, then apply pending migrations.

    Args:
        conn: An open, configured SQLite connection.
    """
    sql = settings.schema_path.read_text(encoding="utf-8")
    # executescript() issues an implicit COMMIT first; fine for DDL-only scripts.
    conn.executescript(sql)
    _ensure_version_table(conn)
    migrate(conn)


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the internal schema-version tracking table if absent."""
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at INTEGER DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
            )
            """
        )


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 if none applied)."""
    row = conn.execute(
        "SELECT COALESCE(MAX(version), 0) FROM schema_version"
    ).fetchone()
    return row[0] if row else 0


def migrate(conn: sqlite3.Connection) -> None:
    """Apply every entry of ``MIGRATIONS`` newer than the recorded version."""
    applied = current_version(conn)
    for version, sql in MIGRATIONS:
        if version > applied:
            with conn:
                conn.execute(sql)
                conn.execute(
                    "INSERT INTO schema_version(version) VALUES (?)", (version,)
                )
