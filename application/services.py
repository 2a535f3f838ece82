from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from domain.errors import LedgerError
from domain.models import EventType, LedgerEvent, UserAccount, is_null_identity
from domain.repositories import CollateralTransfer, EventRepository, VaultStateRepository
from domain.vault import ChipVault

logger = logging.getLogger(__name__)


@dataclass
class ExternalContext:
    """
    Information about the caller from a particular channel (Telegram, Discord).

    The application layer never depends on concrete SDK types; it only sees
    this small context object. The ledger identity of a chat user is
    "<provider>:<provider_user_id>".
    """

    provider: str
    provider_user_id: str
    first_name: str
    last_name: str

    @property
    def identity(self) -> str:
        return make_identity(self.provider, self.provider_user_id)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.identity


@dataclass
class BroadcastMessage:
    """A message that should be delivered to a particular ledger identity."""

    user_id: str
    text: str


@dataclass
class OperationResult:
    """Result of a vault operation submitted on behalf of a caller."""

    success: bool
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    events: List[LedgerEvent] = field(default_factory=list)
    broadcasts: List[BroadcastMessage] = field(default_factory=list)


@dataclass
class VaultSummary:
    owner: str
    paused: bool
    chip_rate: int
    total_collateral: int
    total_chips: int
    surplus: int
    solvent: bool
    authorized_servers: List[str]


def make_identity(provider: str, provider_user_id: str) -> str:
    return f"{provider}:{provider_user_id}"


def split_identity(identity: str) -> Tuple[str, str]:
    """
    Inverse of `make_identity`. Identities that did not come from a chat
    provider (raw addresses) come back with an empty provider.
    """

    provider, sep, provider_user_id = identity.partition(":")
    if not sep:
        return "", identity
    return provider, provider_user_id


_EVENT_VERBS = {
    EventType.DEPOSIT: "deposited",
    EventType.WITHDRAW: "withdrew",
    EventType.CREDIT: "were credited",
    EventType.DEBIT: "were debited",
    EventType.CHIPS_LOCKED: "locked",
    EventType.CHIPS_UNLOCKED: "unlocked",
    EventType.SURPLUS_SWEPT: "received a surplus sweep of",
}


def _describe(event: LedgerEvent, vault: ChipVault) -> Optional[str]:
    if event.type == EventType.TABLE_SETTLED:
        outcome = "won" if event.delta >= 0 else "lost"
        return (
            f"Table {event.table_id} settled: you {outcome} {abs(event.delta)}. "
            f"Available: {vault.balance_of(event.user)}"
        )
    if event.type == EventType.SERVER_AUTHORIZED:
        return "You are now an authorized game server."
    if event.type == EventType.SERVER_REVOKED:
        return "Your game server authorization was revoked."
    if event.type == EventType.OWNERSHIP_TRANSFERRED:
        return "You are now the vault owner."

    verb = _EVENT_VERBS.get(event.type)
    if verb is None:
        return None
    return f"You {verb} {event.amount}. Available: {vault.balance_of(event.user)}"


def _build_broadcasts(events: List[LedgerEvent], vault: ChipVault) -> List[BroadcastMessage]:
    broadcasts = []
    for event in events:
        if event.user is None:
            continue
        text = _describe(event, vault)
        if text:
            broadcasts.append(BroadcastMessage(user_id=event.user, text=text))
    return broadcasts


def _submit(
    operation: Callable[[], List[LedgerEvent]],
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    """
    Run one vault operation and persist its outcome.

    The vault stays locked until the state is saved, so saves land in
    commit order. A rejected operation changed nothing, so nothing is
    written, and neither is an operation submitted from inside another one's
    collateral transfer: the outer submission saves both. Storage failures
    propagate to the caller.
    """

    with vault.exclusive() as outermost:
        try:
            events = operation()
        except LedgerError as exc:
            return OperationResult(
                success=False,
                error_message=exc.message,
                error_kind=exc.kind,
            )

        if events and outermost:
            state_repo.save_state(vault.export_state())
            event_repo.append_events(events)

        return OperationResult(
            success=True,
            events=events,
            broadcasts=_build_broadcasts(events, vault),
        )


def open_vault(
    owner: str,
    transfer: CollateralTransfer,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
    chip_rate: int = 1,
    min_deposit: int = 1,
    initial_server: Optional[str] = None,
) -> ChipVault:
    """
    Load the persisted vault, or create and persist a new one.

    `owner`, `chip_rate`, `min_deposit` and `initial_server` only apply to
    a brand new vault; an existing vault keeps what it was created with.
    """

    state = state_repo.load_state()
    if state is not None:
        vault = ChipVault(state, transfer)
        if state.chip_rate != chip_rate:
            logger.warning(
                "configured chip rate %d ignored, vault was created with %d",
                chip_rate,
                state.chip_rate,
            )
        if not is_null_identity(initial_server) and not vault.is_authorized(initial_server):
            logger.info("%s is not authorized; use authorize_server to add it", initial_server)
        return vault

    vault = ChipVault.create(
        owner,
        transfer,
        chip_rate=chip_rate,
        min_deposit=min_deposit,
        initial_server=initial_server,
    )
    state_repo.save_state(vault.export_state())
    event_repo.append_events(vault.events())
    logger.info("created vault owned by %s", owner)
    return vault


def deposit_chips(
    external_ctx: ExternalContext,
    amount: int,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    """Buy chips with collateral taken from the caller's wallet."""

    return _submit(
        lambda: vault.deposit(external_ctx.identity, amount),
        vault,
        state_repo,
        event_repo,
    )


def withdraw_chips(
    external_ctx: ExternalContext,
    amount: int,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    """Redeem chips for collateral paid out to the caller."""

    return _submit(
        lambda: vault.withdraw(external_ctx.identity, amount),
        vault,
        state_repo,
        event_repo,
    )


def credit_player(
    external_ctx: ExternalContext,
    user_id: str,
    amount: int,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    return _submit(
        lambda: vault.credit(external_ctx.identity, user_id, amount),
        vault,
        state_repo,
        event_repo,
    )


def debit_player(
    external_ctx: ExternalContext,
    user_id: str,
    amount: int,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    return _submit(
        lambda: vault.debit(external_ctx.identity, user_id, amount),
        vault,
        state_repo,
        event_repo,
    )


def lock_table_chips(
    external_ctx: ExternalContext,
    user_id: str,
    amount: int,
    table_id: str,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    return _submit(
        lambda: vault.lock_chips(external_ctx.identity, user_id, amount, table_id),
        vault,
        state_repo,
        event_repo,
    )


def unlock_table_chips(
    external_ctx: ExternalContext,
    user_id: str,
    amount: int,
    table_id: str,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    return _submit(
        lambda: vault.unlock_chips(external_ctx.identity, user_id, amount, table_id),
        vault,
        state_repo,
        event_repo,
    )


def settle_table(
    external_ctx: ExternalContext,
    table_id: str,
    deltas: Dict[str, int],
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    """
    Apply the win/loss deltas a game server computed for one table.

    - Every listed player's locked chips at the table are released.
    - Deltas must sum to zero.
    """

    return _submit(
        lambda: vault.settle_table(external_ctx.identity, table_id, deltas),
        vault,
        state_repo,
        event_repo,
    )


def authorize_game_server(
    external_ctx: ExternalContext,
    server_id: str,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    return _submit(
        lambda: vault.authorize_server(external_ctx.identity, server_id),
        vault,
        state_repo,
        event_repo,
    )


def revoke_game_server(
    external_ctx: ExternalContext,
    server_id: str,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    return _submit(
        lambda: vault.revoke_server(external_ctx.identity, server_id),
        vault,
        state_repo,
        event_repo,
    )


def transfer_vault_ownership(
    external_ctx: ExternalContext,
    new_owner: str,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    """
    Hand over the owner role. The interfaces ask for an explicit
    confirmation before calling this, since the transfer is single-step.
    """

    return _submit(
        lambda: vault.transfer_ownership(external_ctx.identity, new_owner),
        vault,
        state_repo,
        event_repo,
    )


def pause_vault(
    external_ctx: ExternalContext,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    return _submit(lambda: vault.pause(external_ctx.identity), vault, state_repo, event_repo)


def unpause_vault(
    external_ctx: ExternalContext,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    return _submit(lambda: vault.unpause(external_ctx.identity), vault, state_repo, event_repo)


def sweep_vault_surplus(
    external_ctx: ExternalContext,
    recipient: str,
    amount: int,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> OperationResult:
    return _submit(
        lambda: vault.sweep_surplus(external_ctx.identity, recipient, amount),
        vault,
        state_repo,
        event_repo,
    )


def get_account(user_id: str, vault: ChipVault) -> UserAccount:
    return vault.account(user_id)


def get_vault_summary(vault: ChipVault) -> VaultSummary:
    return VaultSummary(
        owner=vault.owner,
        paused=vault.paused,
        chip_rate=vault.chip_rate,
        total_collateral=vault.total_collateral,
        total_chips=vault.total_chips,
        surplus=vault.surplus(),
        solvent=vault.is_solvent(),
        authorized_servers=vault.authorized_servers(),
    )
