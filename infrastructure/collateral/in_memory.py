from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Set

from domain.repositories import CollateralTransfer

logger = logging.getLogger(__name__)


class InMemoryCollateralBank(CollateralTransfer):
    """
    Process-local stand-in for the settlement network.

    Keeps a wallet per identity. Deposits are paid out of the depositor's
    wallet and withdrawals land back in it, so collateral is only ever moved,
    never created. Wallets nobody has funded yet start at `opening_balance`,
    the equivalent of a test-network faucet.

    Recipients can be marked as rejecting, and `on_receive` runs before funds
    land, so it can call back into the vault or raise to refuse the payment.
    """

    def __init__(self, opening_balance: int = 0) -> None:
        if opening_balance < 0:
            raise ValueError("opening balance cannot be negative")
        self._opening_balance = opening_balance
        self._wallets: Dict[str, int] = {}
        self._rejecting: Set[str] = set()
        self.on_receive: Optional[Callable[[str, int], None]] = None

    def fund(self, identity: str, amount: int) -> None:
        self._wallets[identity] = self.wallet_balance(identity) + amount

    def reject(self, recipient: str) -> None:
        self._rejecting.add(recipient)

    def accept(self, recipient: str) -> None:
        self._rejecting.discard(recipient)

    def wallet_balance(self, identity: str) -> int:
        return self._wallets.get(identity, self._opening_balance)

    def receive(self, sender: str, amount: int) -> bool:
        held = self.wallet_balance(sender)
        if held < amount:
            logger.info("%s holds %d collateral, cannot deposit %d", sender, held, amount)
            return False

        self._wallets[sender] = held - amount
        return True

    def send(self, recipient: str, amount: int) -> bool:
        if recipient in self._rejecting:
            logger.info("%s refused %d collateral", recipient, amount)
            return False

        if self.on_receive is not None:
            self.on_receive(recipient, amount)

        self._wallets[recipient] = self.wallet_balance(recipient) + amount
        return True
