from __future__ import annotations

import logging

import telebot
from telebot.types import InlineKeyboardButton, InlineKeyboardMarkup

from application.services import (
    ExternalContext,
    OperationResult,
    authorize_game_server,
    credit_player,
    debit_player,
    deposit_chips,
    get_account,
    get_vault_summary,
    make_identity,
    pause_vault,
    revoke_game_server,
    split_identity,
    transfer_vault_ownership,
    unpause_vault,
    withdraw_chips,
)
from domain.repositories import EventRepository, VaultStateRepository
from domain.vault import ChipVault
from interfaces.telegram.callback_data import (
    OWNERSHIP_PREFIX,
    encode_ownership_confirmation,
    parse_ownership_confirmation,
)

logger = logging.getLogger(__name__)

PROVIDER = "telegram"


def _build_external_context(user) -> ExternalContext:
    """Extract a channel-agnostic context object from a Telegram user."""

    return ExternalContext(
        provider=PROVIDER,
        provider_user_id=str(user.id),
        first_name=user.first_name or "",
        last_name=user.last_name or "",
    )


def _parse_int(text: str):
    try:
        return int(text)
    except ValueError:
        return None


def create_telegram_bot(
    bot_token: str,
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> telebot.TeleBot:
    """
    Configure and return a TeleBot instance wired to the application layer.

    This module contains only Telegram-specific concerns: parsing Telegram
    messages/callbacks and mapping them to/from application services.
    Other players and servers are addressed by their numeric Telegram ID.
    """

    bot = telebot.TeleBot(bot_token)

    def deliver(message, result: OperationResult, fallback: str) -> None:
        if not result.success:
            bot.send_message(message.chat.id, f"{result.error_kind}: {result.error_message}")
            return

        notified_caller = False
        for broadcast in result.broadcasts:
            provider, chat_id = split_identity(broadcast.user_id)
            if provider != PROVIDER:
                continue
            bot.send_message(chat_id, broadcast.text)
            notified_caller = notified_caller or chat_id == str(message.chat.id)
        if not notified_caller:
            bot.send_message(message.chat.id, fallback)

    @bot.message_handler(commands=["start", "help"])
    def handle_help(message):
        bot.send_message(
            message.chat.id,
            "/deposit <amount>            - deposit collateral for chips\n"
            "/withdraw <amount>           - redeem chips for collateral\n"
            "/balance [user_id]           - show chip balances\n"
            "/vault                       - show vault totals\n"
            "/credit <user_id> <amount>   - (server) credit chips\n"
            "/debit <user_id> <amount>    - (server) debit chips\n"
            "/authorize <user_id>         - (owner) authorize a game server\n"
            "/revoke <user_id>            - (owner) revoke a game server\n"
            "/transfer_owner <user_id>    - (owner) hand over the vault\n"
            "/pause, /unpause             - (owner) stop or resume chip movement\n",
        )

    @bot.message_handler(commands=["deposit", "withdraw"])
    def handle_collateral(message):
        parts = message.text.split()
        amount = _parse_int(parts[1]) if len(parts) > 1 else None
        if amount is None:
            bot.send_message(message.chat.id, "Please enter an amount, e.g. /deposit 100")
            return

        external_ctx = _build_external_context(message.from_user)
        if parts[0][1:].startswith("deposit"):
            result = deposit_chips(external_ctx, amount, vault, state_repo, event_repo)
            deliver(message, result, "Deposit completed.")
        else:
            result = withdraw_chips(external_ctx, amount, vault, state_repo, event_repo)
            deliver(message, result, "Withdrawal completed.")

    @bot.message_handler(commands=["balance"])
    def handle_balance(message):
        parts = message.text.split()
        user_id = parts[1] if len(parts) > 1 else str(message.from_user.id)
        account = get_account(make_identity(PROVIDER, user_id), vault)
        bot.send_message(
            message.chat.id,
            f"Available: {account.available}\nLocked: {account.locked}\nTotal: {account.total}",
        )

    @bot.message_handler(commands=["vault"])
    def handle_vault(message):
        summary = get_vault_summary(vault)
        bot.send_message(
            message.chat.id,
            f"Collateral: {summary.total_collateral}\n"
            f"Chips outstanding: {summary.total_chips}\n"
            f"Surplus: {summary.surplus}\n"
            f"Solvent: {'yes' if summary.solvent else 'NO'}\n"
            f"Paused: {'yes' if summary.paused else 'no'}",
        )

    @bot.message_handler(commands=["credit", "debit"])
    def handle_chip_move(message):
        parts = message.text.split()
        amount = _parse_int(parts[2]) if len(parts) > 2 else None
        if amount is None:
            bot.send_message(message.chat.id, "Usage: /credit <user_id> <amount>")
            return

        external_ctx = _build_external_context(message.from_user)
        user = make_identity(PROVIDER, parts[1])
        if parts[0][1:].startswith("credit"):
            result = credit_player(external_ctx, user, amount, vault, state_repo, event_repo)
        else:
            result = debit_player(external_ctx, user, amount, vault, state_repo, event_repo)
        deliver(message, result, "Done.")

    @bot.message_handler(commands=["authorize", "revoke"])
    def handle_server_admin(message):
        parts = message.text.split()
        if len(parts) < 2:
            bot.send_message(message.chat.id, "Usage: /authorize <user_id>")
            return

        external_ctx = _build_external_context(message.from_user)
        server = make_identity(PROVIDER, parts[1])
        if parts[0][1:].startswith("authorize"):
            result = authorize_game_server(external_ctx, server, vault, state_repo, event_repo)
            deliver(message, result, f"{parts[1]} is authorized.")
        else:
            result = revoke_game_server(external_ctx, server, vault, state_repo, event_repo)
            deliver(message, result, f"{parts[1]} is not authorized.")

    @bot.message_handler(commands=["pause", "unpause"])
    def handle_pause(message):
        external_ctx = _build_external_context(message.from_user)
        if message.text.split()[0][1:].startswith("unpause"):
            result = unpause_vault(external_ctx, vault, state_repo, event_repo)
            deliver(message, result, "Vault resumed.")
        else:
            result = pause_vault(external_ctx, vault, state_repo, event_repo)
            deliver(message, result, "Vault paused.")

    @bot.message_handler(commands=["transfer_owner"])
    def handle_transfer_owner(message):
        parts = message.text.split()
        if len(parts) < 2:
            bot.send_message(message.chat.id, "Usage: /transfer_owner <user_id>")
            return

        owner_id = str(message.from_user.id)
        if make_identity(PROVIDER, owner_id) != vault.owner:
            bot.send_message(message.chat.id, "Unauthorized: only the vault owner can transfer ownership.")
            return

        markup = InlineKeyboardMarkup(row_width=2)
        markup.add(
            InlineKeyboardButton(
                "yes",
                callback_data=encode_ownership_confirmation(owner_id, parts[1], accepted=True),
            ),
            InlineKeyboardButton(
                "no",
                callback_data=encode_ownership_confirmation(owner_id, parts[1], accepted=False),
            ),
        )
        bot.send_message(
            message.chat.id,
            f"Transfer vault ownership to {parts[1]}? This cannot be undone.",
            reply_markup=markup,
        )

    @bot.callback_query_handler(func=lambda call: call.data.startswith(f"{OWNERSHIP_PREFIX}:"))
    def handle_ownership_confirmation(call):
        try:
            accepted, owner_id, new_owner_id = parse_ownership_confirmation(call.data)
        except ValueError:
            logger.warning("Ignoring malformed callback data %r", call.data)
            bot.answer_callback_query(call.id, "Invalid confirmation.")
            return

        # Only the owner who asked may answer.
        if str(call.from_user.id) != owner_id:
            bot.answer_callback_query(call.id, "Not your request.")
            return

        try:
            if not accepted:
                bot.send_message(call.message.chat.id, "Ownership transfer cancelled.")
                return

            result = transfer_vault_ownership(
                _build_external_context(call.from_user),
                make_identity(PROVIDER, new_owner_id),
                vault,
                state_repo,
                event_repo,
            )
            deliver(call.message, result, "Ownership transferred.")
        finally:
            bot.delete_message(call.message.chat.id, call.message.id)

    return bot
