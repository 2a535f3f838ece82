from __future__ import annotations

from typing import Iterable, List, Optional

import psycopg2

from domain.models import EventType, LedgerEvent
from domain.repositories import EventRepository


class PostgresEventRepository(EventRepository):
    """Postgres-backed implementation of `EventRepository`."""

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        self._ensure_table()

    def _get_connection(self):
        return psycopg2.connect(**self._db_params)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ledger_events (
                        sequence BIGINT PRIMARY KEY,
                        type TEXT NOT NULL,
                        actor TEXT NOT NULL,
                        user_id TEXT,
                        amount NUMERIC(78, 0),
                        table_id TEXT,
                        delta NUMERIC(78, 0)
                    )
                    """
                )
                conn.commit()

    @staticmethod
    def _to_domain(row: tuple) -> LedgerEvent:
        return LedgerEvent(
            sequence=int(row[0]),
            type=EventType(row[1]),
            actor=row[2],
            user=row[3],
            amount=None if row[4] is None else int(row[4]),
            table_id=row[5],
            delta=None if row[6] is None else int(row[6]),
        )

    def append_events(self, events: Iterable[LedgerEvent]) -> None:
        rows = [
            (e.sequence, e.type.value, e.actor, e.user, e.amount, e.table_id, e.delta)
            for e in events
        ]
        if not rows:
            return

        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    """
                    INSERT INTO ledger_events (sequence, type, actor, user_id, amount, table_id, delta)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    rows,
                )
                conn.commit()

    def get_events(self, user_id: Optional[str] = None) -> List[LedgerEvent]:
        query = "SELECT sequence, type, actor, user_id, amount, table_id, delta FROM ledger_events"
        params: tuple = ()
        if user_id is not None:
            query += " WHERE actor = %s OR user_id = %s"
            params = (user_id, user_id)
        query += " ORDER BY sequence"

        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return [self._to_domain(row) for row in cur.fetchall()]
