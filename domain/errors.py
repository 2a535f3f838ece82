from __future__ import annotations


class LedgerError(Exception):
    """
    Base class for every rejected vault operation.

    A raised `LedgerError` always means the operation left no trace: the
    vault restores its previous state before the exception propagates.
    """

    kind = "LedgerError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class Unauthorized(LedgerError):
    """The caller does not hold the role the operation requires."""

    kind = "Unauthorized"


class InsufficientBalance(LedgerError):
    kind = "InsufficientBalance"


class InvalidAmount(LedgerError):
    """Zero, negative, non-integer or out-of-range amount."""

    kind = "InvalidAmount"


class InvalidAddress(LedgerError):
    kind = "InvalidAddress"


class TransferFailed(LedgerError):
    """The outbound collateral transfer could not complete."""

    kind = "TransferFailed"


class EnforcedPause(LedgerError):
    kind = "EnforcedPause"


class InvalidSettlement(LedgerError):
    """Settlement deltas that are empty or do not sum to zero."""

    kind = "InvalidSettlement"
