from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Identities that mean "no address" when supplied through configuration or a
# command argument.
NULL_IDENTITIES = frozenset({"", "0x...", "0x0", ZERO_ADDRESS})

MAX_UINT256 = (1 << 256) - 1


def is_null_identity(identity: Optional[str]) -> bool:
    if identity is None:
        return True
    return identity.strip().lower() in NULL_IDENTITIES


class Role(enum.Flag):
    """Privileges a caller holds for the duration of a single call."""

    NONE = 0
    SERVER = enum.auto()
    OWNER = enum.auto()


class EventType(str, enum.Enum):
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    CREDIT = "Credit"
    DEBIT = "Debit"
    SERVER_AUTHORIZED = "ServerAuthorized"
    SERVER_REVOKED = "ServerRevoked"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"
    PAUSED = "Paused"
    UNPAUSED = "Unpaused"
    CHIPS_LOCKED = "ChipsLocked"
    CHIPS_UNLOCKED = "ChipsUnlocked"
    TABLE_SETTLED = "TableSettled"
    SURPLUS_SWEPT = "SurplusSwept"


@dataclass(frozen=True)
class LedgerEvent:
    """
    A single state change recorded by the vault.

    `delta` is only used by table settlement, where the per-user change is
    signed; every other event reports an unsigned `amount`.
    """

    sequence: int
    type: EventType
    actor: str
    user: Optional[str] = None
    amount: Optional[int] = None
    table_id: Optional[str] = None
    delta: Optional[int] = None


@dataclass
class UserAccount:
    """Read model of one depositor's chip position."""

    id: str
    available: int
    locked: int

    @property
    def total(self) -> int:
        return self.available + self.locked


@dataclass
class VaultState:
    """
    Everything the vault owns, in one object.

    The state is only mutated by `ChipVault`, which holds it behind a lock.
    Repositories load and save it as a whole.
    """

    owner: str
    chip_rate: int = 1
    min_deposit: int = 1
    paused: bool = False
    total_collateral: int = 0
    total_chips: int = 0
    balances: Dict[str, int] = field(default_factory=dict)
    # table_id -> user -> locked chips
    table_locks: Dict[str, Dict[str, int]] = field(default_factory=dict)
    authorized_servers: Set[str] = field(default_factory=set)
    events: List[LedgerEvent] = field(default_factory=list)
    next_sequence: int = 1

    def locked_balance(self, user: str) -> int:
        return sum(locks.get(user, 0) for locks in self.table_locks.values())
