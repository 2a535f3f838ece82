"""
Property-based tests for the vault's solvency and access rules.

Random sequences of deposits, withdrawals and server chip moves are run
from a mix of authorized and unauthorized callers; after every call the
vault must stay fully collateralized and its chip total must match the sum
of user balances, while collateral only moves between wallets and the vault.
"""

import unittest

from hypothesis import given, settings
from hypothesis import strategies as st

from domain.errors import LedgerError, Unauthorized
from domain.vault import ChipVault
from infrastructure.collateral.in_memory import InMemoryCollateralBank

OWNER = "owner"
SERVER = "server"
USERS = ["alice", "bob", "carol"]
CALLERS = [OWNER, SERVER] + USERS
WALLET = 10_000

operation_strategy = st.tuples(
    st.sampled_from(["deposit", "withdraw", "move", "debit", "credit_unauthorized"]),
    st.sampled_from(CALLERS),
    st.sampled_from(USERS),
    st.sampled_from(USERS),
    st.integers(min_value=-5, max_value=500),
)


def _observe(vault: ChipVault):
    return (
        {who: vault.balance_of(who) for who in CALLERS},
        vault.total_chips,
        vault.total_collateral,
        vault.events(),
    )


class SolvencyPropertyTests(unittest.TestCase):
    @settings(max_examples=150, deadline=None)
    @given(st.lists(operation_strategy, max_size=40), st.integers(min_value=1, max_value=5))
    def test_invariants_hold_after_every_call(self, operations, chip_rate):
        bank = InMemoryCollateralBank()
        for who in CALLERS:
            bank.fund(who, WALLET)
        vault = ChipVault.create(OWNER, bank, chip_rate=chip_rate, initial_server=SERVER)

        for op, caller, source, target, amount in operations:
            before = _observe(vault)
            try:
                if op == "deposit":
                    vault.deposit(caller, amount)
                elif op == "withdraw":
                    vault.withdraw(caller, amount * chip_rate)
                elif op == "debit":
                    vault.debit(caller, source, amount)
                elif op == "move":
                    # A game transfer: the credit only happens if the
                    # matching debit went through.
                    vault.debit(caller, source, amount)
                    vault.credit(caller, target, amount)
                else:
                    with self.assertRaises(Unauthorized):
                        vault.credit(source, target, abs(amount) + 1)
            except Unauthorized:
                self.assertNotEqual(caller, SERVER)
                self.assertEqual(_observe(vault), before)
            except LedgerError:
                self.assertEqual(_observe(vault), before)

            balances, total_chips, total_collateral, _ = _observe(vault)
            self.assertTrue(vault.is_solvent())
            self.assertLessEqual(total_chips, total_collateral * chip_rate)
            self.assertEqual(total_chips, sum(balances.values()))
            self.assertTrue(all(balance >= 0 for balance in balances.values()))
            # Collateral only moves between wallets and the vault.
            wallets = sum(bank.wallet_balance(who) for who in CALLERS)
            self.assertEqual(wallets + total_collateral, WALLET * len(CALLERS))

    @settings(max_examples=100, deadline=None)
    @given(st.sampled_from([OWNER] + USERS), st.integers(min_value=1, max_value=1000))
    def test_non_servers_never_move_chips(self, caller, amount):
        bank = InMemoryCollateralBank()
        bank.fund("alice", 1000)
        vault = ChipVault.create(OWNER, bank, initial_server=SERVER)
        vault.deposit("alice", 1000)
        before = _observe(vault)

        with self.assertRaises(Unauthorized):
            vault.credit(caller, "bob", amount)
        with self.assertRaises(Unauthorized):
            vault.debit(caller, "alice", amount)
        self.assertEqual(_observe(vault), before)


if __name__ == "__main__":
    unittest.main()
