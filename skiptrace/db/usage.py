"""SQLite-backed usage ledger for the quota engine."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from typing import Optional

from skiptrace.quota import UsageDay, UsageRecord


class SqliteUsageLedger:
    """Persist the current day's usage per caller class in ``api_usage``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def load_usage(self, caller_class: str) -> Optional[UsageDay]:
        row = self._conn.execute(
            "SELECT date, credits_used, history FROM api_usage WHERE caller_class = ?",
            (caller_class,),
        ).fetchone()
        if row is None:
            return None
        try:
            history = [UsageRecord(**r) for r in json.loads(row["history"] or "[]")]
        except (json.JSONDecodeError, TypeError):
            history = []
        return UsageDay(date=row["date"], credits_used=row["credits_used"], history=history)

    def save_usage(self, caller_class: str, day: UsageDay) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO api_usage (caller_class, date, credits_used, history)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(caller_class) DO UPDATE SET
                    date = excluded.date,
                    credits_used = excluded.credits_used,
                    history = excluded.history
                """,
                (
                    caller_class,
                    day.date,
                    day.credits_used,
                    json.dumps([asdict(r) for r in day.history]),
                ),
            )
