from __future__ import annotations

import sqlite3
from typing import Iterable, List, Optional

from domain.models import EventType, LedgerEvent
from domain.repositories import EventRepository


def _to_text(value: Optional[int]) -> Optional[str]:
    return None if value is None else str(value)


def _to_int(value: Optional[str]) -> Optional[int]:
    return None if value is None else int(value)


class SqliteEventRepository(EventRepository):
    """
    SQLite-backed implementation of `EventRepository`.

    Owns the append-only `ledger_events` table, keyed by the vault's event
    sequence number.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_events (
                    sequence INTEGER PRIMARY KEY,
                    type TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    user_id TEXT,
                    amount TEXT,
                    table_id TEXT,
                    delta TEXT
                )
                """
            )
            conn.commit()

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> LedgerEvent:
        return LedgerEvent(
            sequence=int(row[0]),
            type=EventType(row[1]),
            actor=row[2],
            user=row[3],
            amount=_to_int(row[4]),
            table_id=row[5],
            delta=_to_int(row[6]),
        )

    def append_events(self, events: Iterable[LedgerEvent]) -> None:
        rows = [
            (
                e.sequence,
                e.type.value,
                e.actor,
                e.user,
                _to_text(e.amount),
                e.table_id,
                _to_text(e.delta),
            )
            for e in events
        ]
        if not rows:
            return

        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.executemany(
                """
                INSERT INTO ledger_events (sequence, type, actor, user_id, amount, table_id, delta)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()

    def get_events(self, user_id: Optional[str] = None) -> List[LedgerEvent]:
        query = "SELECT sequence, type, actor, user_id, amount, table_id, delta FROM ledger_events"
        params: tuple = ()
        if user_id is not None:
            query += " WHERE actor = ? OR user_id = ?"
            params = (user_id, user_id)
        query += " ORDER BY sequence"

        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(query, params)
            return [self._to_domain(row) for row in cur.fetchall()]
