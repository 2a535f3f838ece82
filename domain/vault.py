from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Mapping, Optional, Set

from .errors import (
    EnforcedPause,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    InvalidSettlement,
    LedgerError,
    TransferFailed,
    Unauthorized,
)
from .models import (
    MAX_UINT256,
    EventType,
    LedgerEvent,
    Role,
    UserAccount,
    VaultState,
    is_null_identity,
)
from .repositories import CollateralTransfer

logger = logging.getLogger(__name__)


@dataclass
class _Snapshot:
    owner: str
    paused: bool
    total_collateral: int
    total_chips: int
    balances: Dict[str, int]
    table_locks: Dict[str, Dict[str, int]]
    authorized_servers: Set[str]
    event_count: int
    next_sequence: int


class _Transaction:
    """
    One atomic vault operation.

    Holds the vault lock for its whole duration and restores the state
    captured on entry if the body raises. `events` holds what the body
    emitted once the block exits cleanly, including events from calls that
    re-entered the vault while the body was running.
    """

    def __init__(self, vault: ChipVault, operation: str) -> None:
        self._vault = vault
        self._operation = operation
        self._snapshot: Optional[_Snapshot] = None
        self.events: List[LedgerEvent] = []

    def __enter__(self) -> _Transaction:
        self._vault._lock.acquire()
        self._vault._depth += 1
        self._snapshot = self._vault._take_snapshot()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                self.events = self._vault._state.events[self._snapshot.event_count:]
                return False

            self._vault._restore(self._snapshot)
            if isinstance(exc, LedgerError):
                logger.warning("%s rejected: %s: %s", self._operation, exc.kind, exc.message)
            else:
                logger.error("%s aborted by unexpected error", self._operation, exc_info=exc)
            return False
        finally:
            self._vault._depth -= 1
            self._vault._lock.release()


class ChipVault:
    """
    Custodial chip ledger with two-tier access control.

    Users deposit collateral and receive chips at a fixed integer rate.
    Authorized servers move chips between users to reflect game outcomes.
    The owner manages the server set and can pause the vault.

    Every mutating method either commits completely and returns the events
    it emitted, or raises a `LedgerError` and leaves the vault untouched.

    Trust assumption: `credit` is not checked against any matching debit.
    A server that credits more than it debits makes the vault insolvent;
    the ledger only guarantees that such credits come from authorized
    servers, and logs a warning when one leaves chips under-collateralized.
    """

    def __init__(self, state: VaultState, transfer: CollateralTransfer) -> None:
        if is_null_identity(state.owner):
            raise InvalidAddress("vault owner must be a real identity")
        if not _is_int(state.chip_rate) or state.chip_rate < 1:
            raise InvalidAmount("chip rate must be a positive integer")
        if not _is_int(state.min_deposit) or state.min_deposit < 1:
            raise InvalidAmount("minimum deposit must be a positive integer")

        self._state = state
        self._transfer = transfer
        # Re-entrant so the collateral transfer may call back into the vault.
        self._lock = threading.RLock()
        # Open transactions on the lock-holding thread.
        self._depth = 0

    @classmethod
    def create(
        cls,
        owner: str,
        transfer: CollateralTransfer,
        chip_rate: int = 1,
        min_deposit: int = 1,
        initial_server: Optional[str] = None,
    ) -> ChipVault:
        """
        Create a fresh vault owned by `owner`.

        `initial_server` is pre-authorized unless it is empty or a sentinel
        such as the zero address.
        """

        vault = cls(
            VaultState(owner=owner, chip_rate=chip_rate, min_deposit=min_deposit),
            transfer,
        )
        if not is_null_identity(initial_server):
            vault.authorize_server(owner, initial_server)
        return vault

    # ── collateral ────────────────────────────────────────────────────────

    def deposit(self, caller: str, amount: int) -> List[LedgerEvent]:
        """Take `amount` collateral from `caller` and credit chips for it."""

        with _Transaction(self, "deposit") as txn:
            s = self._state
            self._require_not_paused()
            self._check_identity(caller)
            self._check_amount(amount)
            if amount < s.min_deposit:
                raise InvalidAmount(f"deposit must be at least {s.min_deposit}")

            chips = self._checked_add(0, amount * s.chip_rate)
            s.balances[caller] = self._checked_add(s.balances.get(caller, 0), chips)
            s.total_collateral = self._checked_add(s.total_collateral, amount)
            s.total_chips = self._checked_add(s.total_chips, chips)
            self._emit(EventType.DEPOSIT, caller, user=caller, amount=amount)

            self._receive_collateral(caller, amount)

        logger.info("deposit: %s +%d chips", caller, amount * self._state.chip_rate)
        return txn.events

    def withdraw(self, caller: str, amount: int) -> List[LedgerEvent]:
        """
        Redeem `amount` chips for collateral.

        Bookkeeping is settled before the transfer is attempted, so a call
        that re-enters the vault from inside the transfer already sees the
        reduced balance.
        """

        with _Transaction(self, "withdraw") as txn:
            s = self._state
            self._require_not_paused()
            self._check_identity(caller)
            self._check_amount(amount)
            if amount % s.chip_rate:
                raise InvalidAmount(f"withdrawals must be a multiple of {s.chip_rate} chips")

            available = s.balances.get(caller, 0)
            if available < amount:
                raise InsufficientBalance(
                    f"{caller} has {available} chips available, {amount} requested"
                )

            collateral = amount // s.chip_rate
            if collateral > s.total_collateral:
                # Only reachable after credits outran debits (see the trust
                # assumption on the class). The payout cannot be made in full,
                # so it is refused as a failed transfer before anything moves.
                raise TransferFailed(f"vault holds {s.total_collateral} collateral, {collateral} needed")
            s.balances[caller] = available - amount
            s.total_chips -= amount
            s.total_collateral -= collateral
            self._emit(EventType.WITHDRAW, caller, user=caller, amount=amount)

            self._send_collateral(caller, collateral)

        logger.info("withdraw: %s -%d chips", caller, amount)
        return txn.events

    def sweep_surplus(self, caller: str, recipient: str, amount: int) -> List[LedgerEvent]:
        """Send collateral that no outstanding chip depends on to `recipient`."""

        with _Transaction(self, "sweep_surplus") as txn:
            self._require(caller, Role.OWNER)
            self._check_identity(recipient)
            self._check_amount(amount)

            surplus = self._surplus()
            if amount > surplus:
                raise InsufficientBalance(f"surplus is {surplus}, {amount} requested")

            self._state.total_collateral -= amount
            self._emit(EventType.SURPLUS_SWEPT, caller, user=recipient, amount=amount)
            self._send_collateral(recipient, amount)

        logger.info("sweep: %d collateral to %s", amount, recipient)
        return txn.events

    # ── settlement authority ──────────────────────────────────────────────

    def credit(self, caller: str, user: str, amount: int) -> List[LedgerEvent]:
        with _Transaction(self, "credit") as txn:
            s = self._state
            self._require(caller, Role.SERVER)
            self._require_not_paused()
            self._check_identity(user)
            self._check_amount(amount)

            s.balances[user] = self._checked_add(s.balances.get(user, 0), amount)
            s.total_chips = self._checked_add(s.total_chips, amount)
            self._emit(EventType.CREDIT, caller, user=user, amount=amount)

        if not self.is_solvent():
            logger.warning(
                "credit by %s leaves %d chips backed by %d collateral",
                caller,
                self._state.total_chips,
                self._state.total_collateral,
            )
        return txn.events

    def debit(self, caller: str, user: str, amount: int) -> List[LedgerEvent]:
        with _Transaction(self, "debit") as txn:
            s = self._state
            self._require(caller, Role.SERVER)
            self._require_not_paused()
            self._check_identity(user)
            self._check_amount(amount)

            available = s.balances.get(user, 0)
            if available < amount:
                raise InsufficientBalance(
                    f"{user} has {available} chips available, {amount} requested"
                )
            s.balances[user] = available - amount
            s.total_chips -= amount
            self._emit(EventType.DEBIT, caller, user=user, amount=amount)

        return txn.events

    def lock_chips(self, caller: str, user: str, amount: int, table_id: str) -> List[LedgerEvent]:
        """Move chips from `user`'s available balance onto a table."""

        with _Transaction(self, "lock_chips") as txn:
            s = self._state
            self._require(caller, Role.SERVER)
            self._require_not_paused()
            self._check_identity(user)
            self._check_table(table_id)
            self._check_amount(amount)

            available = s.balances.get(user, 0)
            if available < amount:
                raise InsufficientBalance(
                    f"{user} has {available} chips available, {amount} requested"
                )
            s.balances[user] = available - amount
            table = s.table_locks.setdefault(table_id, {})
            table[user] = table.get(user, 0) + amount
            self._emit(EventType.CHIPS_LOCKED, caller, user=user, amount=amount, table_id=table_id)

        return txn.events

    def unlock_chips(self, caller: str, user: str, amount: int, table_id: str) -> List[LedgerEvent]:
        """Return chips locked at a table to `user`'s available balance."""

        with _Transaction(self, "unlock_chips") as txn:
            s = self._state
            self._require(caller, Role.SERVER)
            self._require_not_paused()
            self._check_identity(user)
            self._check_table(table_id)
            self._check_amount(amount)

            locked = s.table_locks.get(table_id, {}).get(user, 0)
            if locked < amount:
                raise InsufficientBalance(
                    f"{user} has {locked} chips locked at {table_id}, {amount} requested"
                )
            self._set_table_lock(table_id, user, locked - amount)
            s.balances[user] = s.balances.get(user, 0) + amount
            self._emit(EventType.CHIPS_UNLOCKED, caller, user=user, amount=amount, table_id=table_id)

        return txn.events

    def settle_table(
        self,
        caller: str,
        table_id: str,
        deltas: Mapping[str, int],
    ) -> List[LedgerEvent]:
        """
        Close out a table.

        Each listed user gets back the chips they had locked at the table,
        adjusted by their signed delta (positive = won). Deltas must sum to
        zero, so the chips outstanding do not change.
        """

        with _Transaction(self, "settle_table") as txn:
            s = self._state
            self._require(caller, Role.SERVER)
            self._require_not_paused()
            self._check_table(table_id)
            if not deltas:
                raise InvalidSettlement("no players to settle")
            for user, delta in deltas.items():
                self._check_identity(user)
                if not _is_int(delta) or abs(delta) > MAX_UINT256:
                    raise InvalidAmount(f"invalid delta for {user}: {delta!r}")
            if sum(deltas.values()) != 0:
                raise InvalidSettlement("Deltas must sum to zero")

            for user, delta in deltas.items():
                released = s.table_locks.get(table_id, {}).get(user, 0)
                payout = released + delta
                if payout < 0:
                    raise InsufficientBalance(
                        f"{user} lost {-delta} but had {released} locked at {table_id}"
                    )
                self._set_table_lock(table_id, user, 0)
                s.balances[user] = self._checked_add(s.balances.get(user, 0), payout)
                self._emit(
                    EventType.TABLE_SETTLED,
                    caller,
                    user=user,
                    amount=released,
                    table_id=table_id,
                    delta=delta,
                )

        logger.info("settled table %s for %d players", table_id, len(deltas))
        return txn.events

    # ── administration ────────────────────────────────────────────────────

    def authorize_server(self, caller: str, server: str) -> List[LedgerEvent]:
        """Add `server` to the trusted set. Authorizing twice is a no-op."""

        with _Transaction(self, "authorize_server") as txn:
            self._require(caller, Role.OWNER)
            self._check_identity(server)
            if server not in self._state.authorized_servers:
                self._state.authorized_servers.add(server)
                self._emit(EventType.SERVER_AUTHORIZED, caller, user=server)

        return txn.events

    def revoke_server(self, caller: str, server: str) -> List[LedgerEvent]:
        """Remove `server` from the trusted set. Revoking an absent server is a no-op."""

        with _Transaction(self, "revoke_server") as txn:
            self._require(caller, Role.OWNER)
            self._check_identity(server)
            if server in self._state.authorized_servers:
                self._state.authorized_servers.discard(server)
                self._emit(EventType.SERVER_REVOKED, caller, user=server)

        return txn.events

    def transfer_ownership(self, caller: str, new_owner: str) -> List[LedgerEvent]:
        """
        Hand the owner role to `new_owner` in a single step.

        There is no acceptance step: a mistyped identity locks the admin
        functions for good.
        """

        with _Transaction(self, "transfer_ownership") as txn:
            self._require(caller, Role.OWNER)
            self._check_identity(new_owner)
            self._state.owner = new_owner
            self._emit(EventType.OWNERSHIP_TRANSFERRED, caller, user=new_owner)

        logger.info("ownership transferred from %s to %s", caller, new_owner)
        return txn.events

    def pause(self, caller: str) -> List[LedgerEvent]:
        with _Transaction(self, "pause") as txn:
            self._require(caller, Role.OWNER)
            if not self._state.paused:
                self._state.paused = True
                self._emit(EventType.PAUSED, caller)

        return txn.events

    def unpause(self, caller: str) -> List[LedgerEvent]:
        with _Transaction(self, "unpause") as txn:
            self._require(caller, Role.OWNER)
            if self._state.paused:
                self._state.paused = False
                self._emit(EventType.UNPAUSED, caller)

        return txn.events

    @contextmanager
    def exclusive(self) -> Iterator[bool]:
        """
        Hold the vault lock across an operation and whatever must follow it
        before another caller gets in, such as saving the committed state.

        Yields False when entered from inside a running operation (a call
        made by the collateral transfer). Whatever happens there is committed
        or discarded together with the enclosing operation, so it must not
        be saved on its own.
        """

        with self._lock:
            yield self._depth == 0

    # ── queries ───────────────────────────────────────────────────────────

    @property
    def owner(self) -> str:
        with self._lock:
            return self._state.owner

    @property
    def paused(self) -> bool:
        with self._lock:
            return self._state.paused

    @property
    def chip_rate(self) -> int:
        return self._state.chip_rate

    @property
    def total_collateral(self) -> int:
        with self._lock:
            return self._state.total_collateral

    @property
    def total_chips(self) -> int:
        with self._lock:
            return self._state.total_chips

    def balance_of(self, user: str) -> int:
        """Chips `user` can withdraw right now."""

        with self._lock:
            return self._state.balances.get(user, 0)

    def locked_balance_of(self, user: str) -> int:
        with self._lock:
            return self._state.locked_balance(user)

    def total_balance_of(self, user: str) -> int:
        with self._lock:
            return self._state.balances.get(user, 0) + self._state.locked_balance(user)

    def table_locked_amount(self, table_id: str, user: str) -> int:
        with self._lock:
            return self._state.table_locks.get(table_id, {}).get(user, 0)

    def account(self, user: str) -> UserAccount:
        with self._lock:
            return UserAccount(
                id=user,
                available=self._state.balances.get(user, 0),
                locked=self._state.locked_balance(user),
            )

    def is_authorized(self, server: str) -> bool:
        with self._lock:
            return server in self._state.authorized_servers

    def authorized_servers(self) -> List[str]:
        with self._lock:
            return sorted(self._state.authorized_servers)

    def surplus(self) -> int:
        with self._lock:
            return self._surplus()

    def is_solvent(self) -> bool:
        """True when every outstanding chip is backed by collateral held."""

        with self._lock:
            s = self._state
            return s.total_chips <= s.total_collateral * s.chip_rate

    def events(self, since: int = 0) -> List[LedgerEvent]:
        """Events committed in this process with a sequence number above `since`."""

        with self._lock:
            return [e for e in self._state.events if e.sequence > since]

    def export_state(self) -> VaultState:
        """
        Return a detached copy of the state for persistence.

        The event log is left out; committed events go to an
        `EventRepository` instead.
        """

        with self._lock:
            s = self._state
            return replace(
                s,
                balances=dict(s.balances),
                table_locks={t: dict(locks) for t, locks in s.table_locks.items()},
                authorized_servers=set(s.authorized_servers),
                events=[],
            )

    # ── internals ─────────────────────────────────────────────────────────

    def _resolve_role(self, caller: str) -> Role:
        role = Role.NONE
        if caller == self._state.owner:
            role |= Role.OWNER
        if caller in self._state.authorized_servers:
            role |= Role.SERVER
        return role

    def _require(self, caller: str, required: Role) -> None:
        if required not in self._resolve_role(caller):
            raise Unauthorized(f"{caller!r} is not allowed to act as {required.name.lower()}")

    def _require_not_paused(self) -> None:
        if self._state.paused:
            raise EnforcedPause("vault is paused")

    @staticmethod
    def _check_identity(identity: str) -> None:
        if not isinstance(identity, str) or is_null_identity(identity):
            raise InvalidAddress(f"invalid identity: {identity!r}")

    @staticmethod
    def _check_table(table_id: str) -> None:
        if not isinstance(table_id, str) or not table_id.strip():
            raise InvalidSettlement(f"invalid table id: {table_id!r}")

    @staticmethod
    def _check_amount(amount: int) -> None:
        if not _is_int(amount):
            raise InvalidAmount(f"amount must be an integer, got {amount!r}")
        if amount <= 0:
            raise InvalidAmount("Amount must be greater than zero.")
        if amount > MAX_UINT256:
            raise InvalidAmount("amount exceeds the maximum representable value")

    @staticmethod
    def _checked_add(a: int, b: int) -> int:
        total = a + b
        if total > MAX_UINT256:
            raise InvalidAmount("balance overflow")
        return total

    def _surplus(self) -> int:
        s = self._state
        # Collateral needed to redeem every chip, rounded up.
        needed = -(-s.total_chips // s.chip_rate)
        return max(0, s.total_collateral - needed)

    def _set_table_lock(self, table_id: str, user: str, amount: int) -> None:
        table = self._state.table_locks.get(table_id)
        if table is None:
            return
        if amount:
            table[user] = amount
            return
        table.pop(user, None)
        if not table:
            del self._state.table_locks[table_id]

    def _receive_collateral(self, sender: str, amount: int) -> None:
        try:
            received = self._transfer.receive(sender, amount)
        except Exception as exc:
            raise TransferFailed(f"collection of {amount} from {sender} failed: {exc}") from exc
        if not received:
            raise TransferFailed(f"{sender} did not pay in {amount}")

    def _send_collateral(self, recipient: str, amount: int) -> None:
        try:
            delivered = self._transfer.send(recipient, amount)
        except Exception as exc:
            raise TransferFailed(f"transfer of {amount} to {recipient} failed: {exc}") from exc
        if not delivered:
            raise TransferFailed(f"{recipient} did not accept {amount}")

    def _emit(self, event_type: EventType, actor: str, **fields) -> None:
        s = self._state
        s.events.append(LedgerEvent(sequence=s.next_sequence, type=event_type, actor=actor, **fields))
        s.next_sequence += 1

    def _take_snapshot(self) -> _Snapshot:
        s = self._state
        return _Snapshot(
            owner=s.owner,
            paused=s.paused,
            total_collateral=s.total_collateral,
            total_chips=s.total_chips,
            balances=dict(s.balances),
            table_locks={t: dict(locks) for t, locks in s.table_locks.items()},
            authorized_servers=set(s.authorized_servers),
            event_count=len(s.events),
            next_sequence=s.next_sequence,
        )

    def _restore(self, snapshot: _Snapshot) -> None:
        s = self._state
        s.owner = snapshot.owner
        s.paused = snapshot.paused
        s.total_collateral = snapshot.total_collateral
        s.total_chips = snapshot.total_chips
        s.balances = snapshot.balances
        s.table_locks = snapshot.table_locks
        s.authorized_servers = snapshot.authorized_servers
        del s.events[snapshot.event_count:]
        s.next_sequence = snapshot.next_sequence


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
