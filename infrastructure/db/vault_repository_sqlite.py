from __future__ import annotations

import sqlite3
from typing import Optional

from domain.models import VaultState
from domain.repositories import VaultStateRepository


class SqliteVaultStateRepository(VaultStateRepository):
    """
    SQLite-backed implementation of `VaultStateRepository`.

    The vault is spread over four tables (`vault_meta`, `vault_balances`,
    `vault_table_locks`, `vault_servers`) and always written as a whole in
    one transaction. Chip and collateral amounts are stored as decimal text
    because they may exceed SQLite's 64-bit integers.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_tables()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_tables(self) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS vault_meta (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    owner TEXT NOT NULL,
                    chip_rate INTEGER NOT NULL,
                    min_deposit TEXT NOT NULL,
                    paused INTEGER NOT NULL DEFAULT 0,
                    total_collateral TEXT NOT NULL,
                    total_chips TEXT NOT NULL,
                    next_sequence INTEGER NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS vault_balances (
                    user_id TEXT PRIMARY KEY,
                    available TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS vault_table_locks (
                    table_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    PRIMARY KEY (table_id, user_id)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS vault_servers (
                    server_id TEXT PRIMARY KEY
                )
                """
            )
            conn.commit()

    def load_state(self) -> Optional[VaultState]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT owner, chip_rate, min_deposit, paused,
                       total_collateral, total_chips, next_sequence
                FROM vault_meta WHERE id = 1
                """
            )
            row = cur.fetchone()
            if not row:
                return None

            state = VaultState(
                owner=row[0],
                chip_rate=int(row[1]),
                min_deposit=int(row[2]),
                paused=bool(row[3]),
                total_collateral=int(row[4]),
                total_chips=int(row[5]),
                next_sequence=int(row[6]),
            )

            cur.execute("SELECT user_id, available FROM vault_balances")
            state.balances = {str(r[0]): int(r[1]) for r in cur.fetchall()}

            cur.execute("SELECT table_id, user_id, amount FROM vault_table_locks")
            for table_id, user_id, amount in cur.fetchall():
                state.table_locks.setdefault(table_id, {})[user_id] = int(amount)

            cur.execute("SELECT server_id FROM vault_servers")
            state.authorized_servers = {str(r[0]) for r in cur.fetchall()}
            return state

    def save_state(self, state: VaultState) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO vault_meta (
                    id, owner, chip_rate, min_deposit, paused,
                    total_collateral, total_chips, next_sequence
                )
                VALUES (1, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    owner = excluded.owner,
                    chip_rate = excluded.chip_rate,
                    min_deposit = excluded.min_deposit,
                    paused = excluded.paused,
                    total_collateral = excluded.total_collateral,
                    total_chips = excluded.total_chips,
                    next_sequence = excluded.next_sequence
                """,
                (
                    state.owner,
                    state.chip_rate,
                    str(state.min_deposit),
                    int(state.paused),
                    str(state.total_collateral),
                    str(state.total_chips),
                    state.next_sequence,
                ),
            )

            cur.execute("DELETE FROM vault_balances")
            cur.executemany(
                "INSERT INTO vault_balances (user_id, available) VALUES (?, ?)",
                [(user_id, str(amount)) for user_id, amount in state.balances.items()],
            )

            cur.execute("DELETE FROM vault_table_locks")
            cur.executemany(
                "INSERT INTO vault_table_locks (table_id, user_id, amount) VALUES (?, ?, ?)",
                [
                    (table_id, user_id, str(amount))
                    for table_id, locks in state.table_locks.items()
                    for user_id, amount in locks.items()
                ],
            )

            cur.execute("DELETE FROM vault_servers")
            cur.executemany(
                "INSERT INTO vault_servers (server_id) VALUES (?)",
                [(server,) for server in sorted(state.authorized_servers)],
            )
            conn.commit()
