from __future__ import annotations

from typing import Iterable, List, Optional, Protocol

from .models import LedgerEvent, VaultState


class VaultStateRepository(Protocol):
    """
    Abstraction over vault persistence.

    Implementations are responsible for:
    - Mapping between database rows and the `VaultState` domain model.
    - Saving the whole state atomically, so a crash never leaves a
      half-written ledger behind.
    """

    def load_state(self) -> Optional[VaultState]:
        """Return the persisted vault, or None if nothing was saved yet."""

        ...

    def save_state(self, state: VaultState) -> None:
        """
        Replace the persisted vault with `state`.

        The event log is not part of this call; see `EventRepository`.
        """

        ...


class EventRepository(Protocol):
    """
    Append-only store of committed ledger events, used for off-ledger
    auditing and by the display layer to refresh balances.
    """

    def append_events(self, events: Iterable[LedgerEvent]) -> None:
        ...

    def get_events(self, user_id: Optional[str] = None) -> List[LedgerEvent]:
        """
        Return events in sequence order, optionally only those whose actor
        or affected user is `user_id`.
        """

        ...


class CollateralTransfer(Protocol):
    """
    Collateral custody at the vault's boundary.

    `receive` pulls collateral from a depositor into the vault; `send` pays
    it back out. Either may call back into the vault. Both return False, or
    raise, when the funds cannot move.
    """

    def receive(self, sender: str, amount: int) -> bool:
        ...

    def send(self, recipient: str, amount: int) -> bool:
        ...
