from __future__ import annotations

from typing import Optional

import psycopg2

from domain.models import VaultState
from domain.repositories import VaultStateRepository


class PostgresVaultStateRepository(VaultStateRepository):
    """
    Postgres-backed implementation of `VaultStateRepository`.

    Same table layout as the SQLite repository; amounts use NUMERIC(78, 0)
    so any unsigned 256-bit value fits.
    """

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        self._ensure_tables()

    def _get_connection(self):
        return psycopg2.connect(**self._db_params)

    def _ensure_tables(self) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS vault_meta (
                        id SMALLINT PRIMARY KEY CHECK (id = 1),
                        owner TEXT NOT NULL,
                        chip_rate INTEGER NOT NULL,
                        min_deposit NUMERIC(78, 0) NOT NULL,
                        paused BOOLEAN NOT NULL DEFAULT FALSE,
                        total_collateral NUMERIC(78, 0) NOT NULL,
                        total_chips NUMERIC(78, 0) NOT NULL,
                        next_sequence BIGINT NOT NULL
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS vault_balances (
                        user_id TEXT PRIMARY KEY,
                        available NUMERIC(78, 0) NOT NULL
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS vault_table_locks (
                        table_id TEXT NOT NULL,
                        user_id TEXT NOT NULL,
                        amount NUMERIC(78, 0) NOT NULL,
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
            with conn.cursor() as cur:
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

                # NUMERIC columns come back as Decimal.
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
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO vault_meta (
                        id, owner, chip_rate, min_deposit, paused,
                        total_collateral, total_chips, next_sequence
                    )
                    VALUES (1, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        owner = EXCLUDED.owner,
                        chip_rate = EXCLUDED.chip_rate,
                        min_deposit = EXCLUDED.min_deposit,
                        paused = EXCLUDED.paused,
                        total_collateral = EXCLUDED.total_collateral,
                        total_chips = EXCLUDED.total_chips,
                        next_sequence = EXCLUDED.next_sequence
                    """,
                    (
                        state.owner,
                        state.chip_rate,
                        state.min_deposit,
                        state.paused,
                        state.total_collateral,
                        state.total_chips,
                        state.next_sequence,
                    ),
                )

                cur.execute("DELETE FROM vault_balances")
                cur.executemany(
                    "INSERT INTO vault_balances (user_id, available) VALUES (%s, %s)",
                    list(state.balances.items()),
                )

                cur.execute("DELETE FROM vault_table_locks")
                cur.executemany(
                    "INSERT INTO vault_table_locks (table_id, user_id, amount) VALUES (%s, %s, %s)",
                    [
                        (table_id, user_id, amount)
                        for table_id, locks in state.table_locks.items()
                        for user_id, amount in locks.items()
                    ],
                )

                cur.execute("DELETE FROM vault_servers")
                cur.executemany(
                    "INSERT INTO vault_servers (server_id) VALUES (%s)",
                    [(server,) for server in sorted(state.authorized_servers)],
                )
                conn.commit()
