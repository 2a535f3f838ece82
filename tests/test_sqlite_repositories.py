import os
import tempfile
import unittest

from application.services import ExternalContext, deposit_chips, lock_table_chips, open_vault
from domain.models import EventType, LedgerEvent, VaultState
from infrastructure.collateral.in_memory import InMemoryCollateralBank
from infrastructure.db.event_repository_sqlite import SqliteEventRepository
from infrastructure.db.vault_repository_sqlite import SqliteVaultStateRepository


class SqliteRepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmp.name, "vault.db")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_empty_database_has_no_state(self):
        repo = SqliteVaultStateRepository(self.db_path)
        self.assertIsNone(repo.load_state())

    def test_state_round_trip_keeps_large_amounts(self):
        repo = SqliteVaultStateRepository(self.db_path)
        big = 2**200
        state = VaultState(
            owner="owner",
            chip_rate=3,
            min_deposit=5,
            paused=True,
            total_collateral=big,
            total_chips=big,
            balances={"alice": big - 10, "bob": 0},
            table_locks={"t1": {"alice": 10}},
            authorized_servers={"server-a", "server-b"},
            next_sequence=42,
        )

        repo.save_state(state)
        loaded = repo.load_state()

        self.assertEqual(loaded, state)

    def test_save_replaces_previous_state(self):
        repo = SqliteVaultStateRepository(self.db_path)
        repo.save_state(
            VaultState(
                owner="owner",
                balances={"alice": 10},
                table_locks={"t1": {"alice": 1}},
                authorized_servers={"server"},
            )
        )
        repo.save_state(VaultState(owner="new-owner", balances={"bob": 5}))

        loaded = repo.load_state()
        self.assertEqual(loaded.owner, "new-owner")
        self.assertEqual(loaded.balances, {"bob": 5})
        self.assertEqual(loaded.table_locks, {})
        self.assertEqual(loaded.authorized_servers, set())

    def test_events_are_appended_and_filtered(self):
        repo = SqliteEventRepository(self.db_path)
        repo.append_events(
            [
                LedgerEvent(sequence=1, type=EventType.SERVER_AUTHORIZED, actor="owner", user="server"),
                LedgerEvent(sequence=2, type=EventType.DEPOSIT, actor="alice", user="alice", amount=100),
                LedgerEvent(
                    sequence=3,
                    type=EventType.TABLE_SETTLED,
                    actor="server",
                    user="bob",
                    amount=50,
                    table_id="t1",
                    delta=-20,
                ),
            ]
        )
        repo.append_events([])

        self.assertEqual([e.sequence for e in repo.get_events()], [1, 2, 3])
        self.assertEqual([e.sequence for e in repo.get_events("server")], [1, 3])
        settled = repo.get_events("bob")[0]
        self.assertEqual((settled.type, settled.table_id, settled.delta), (EventType.TABLE_SETTLED, "t1", -20))

    def test_vault_survives_restart(self):
        player = ExternalContext("discord", "7", "Ann", "")
        server = ExternalContext("discord", "8", "Dealer", "")

        state_repo = SqliteVaultStateRepository(self.db_path)
        event_repo = SqliteEventRepository(self.db_path)
        vault = open_vault("discord:1", InMemoryCollateralBank(opening_balance=1000), state_repo, event_repo, initial_server=server.identity)
        deposit_chips(player, 100, vault, state_repo, event_repo)
        lock_table_chips(server, player.identity, 30, "t1", vault, state_repo, event_repo)

        state_repo = SqliteVaultStateRepository(self.db_path)
        event_repo = SqliteEventRepository(self.db_path)
        reopened = open_vault("discord:1", InMemoryCollateralBank(opening_balance=1000), state_repo, event_repo)

        self.assertEqual(reopened.balance_of(player.identity), 70)
        self.assertEqual(reopened.table_locked_amount("t1", player.identity), 30)
        self.assertEqual(reopened.total_chips, 100)
        self.assertTrue(reopened.is_authorized(server.identity))

        result = deposit_chips(player, 10, reopened, state_repo, event_repo)
        self.assertEqual(result.events[0].sequence, 4)
        self.assertEqual([e.sequence for e in event_repo.get_events()], [1, 2, 3, 4])


if __name__ == "__main__":
    unittest.main()
