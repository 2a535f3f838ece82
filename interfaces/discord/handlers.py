from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import discord
from discord.ext import commands

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

logger = logging.getLogger(__name__)

PROVIDER = "discord"


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    # Discord has `name` and `display_name`; here we just store the full
    # display name in `first_name` to keep things simple.
    display_name = user.display_name or user.name
    return ExternalContext(
        provider=PROVIDER,
        provider_user_id=str(user.id),
        first_name=display_name,
        last_name="",
    )


def _identity_of(member: discord.abc.User) -> str:
    return make_identity(PROVIDER, str(member.id))


def _format_result(result: OperationResult, fallback: str) -> str:
    if not result.success:
        return f"{result.error_kind}: {result.error_message}"

    lines = []
    for broadcast in result.broadcasts:
        provider, user_id = split_identity(broadcast.user_id)
        if provider == PROVIDER:
            lines.append(f"<@{user_id}> {broadcast.text}")
    return "\n".join(lines) or fallback


def create_discord_bot(
    vault: ChipVault,
    state_repo: VaultStateRepository,
    event_repo: EventRepository,
) -> commands.Bot:
    """
    Configure and return a Discord bot that submits vault operations.

    Players deposit, withdraw and check balances; game servers credit and
    debit; the owner manages servers, pausing and ownership.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.members = True
    intents.reactions = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)

    # Ownership transfers waiting for the owner's reaction, keyed by the
    # confirmation message ID.
    pending_transfers: Dict[int, Tuple[ExternalContext, str, int]] = {}
    # value: (owner_ctx, new_owner_identity, owner_discord_id)

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await ctx.send(
            "!deposit <amount>             - deposit collateral for chips\n"
            "!withdraw <amount>            - redeem chips for collateral\n"
            "!balance [@player]            - show chip balances\n"
            "!vault                        - show vault totals\n"
            "!credit @player <amount>      - (server) credit chips\n"
            "!debit @player <amount>       - (server) debit chips\n"
            "!authorize @member            - (owner) authorize a game server\n"
            "!revoke @member               - (owner) revoke a game server\n"
            "!transfer_owner @member       - (owner) hand over the vault\n"
            "!pause / !unpause             - (owner) stop or resume chip movement\n"
        )

    @bot.command(name="deposit")
    async def deposit_cmd(ctx: commands.Context, amount: int):
        result = deposit_chips(_build_external_context(ctx.author), amount, vault, state_repo, event_repo)
        await ctx.send(_format_result(result, "Deposit completed."))

    @bot.command(name="withdraw")
    async def withdraw_cmd(ctx: commands.Context, amount: int):
        result = withdraw_chips(_build_external_context(ctx.author), amount, vault, state_repo, event_repo)
        await ctx.send(_format_result(result, "Withdrawal completed."))

    @bot.command(name="balance")
    async def balance_cmd(ctx: commands.Context, member: Optional[discord.Member] = None):
        target = member or ctx.author
        account = get_account(_identity_of(target), vault)
        await ctx.send(
            f"{target.display_name}: available {account.available}, "
            f"locked {account.locked}, total {account.total}"
        )

    @bot.command(name="vault")
    async def vault_cmd(ctx: commands.Context):
        summary = get_vault_summary(vault)
        await ctx.send(
            f"Collateral: {summary.total_collateral}\n"
            f"Chips outstanding: {summary.total_chips}\n"
            f"Surplus: {summary.surplus}\n"
            f"Solvent: {'yes' if summary.solvent else 'NO'}\n"
            f"Paused: {'yes' if summary.paused else 'no'}"
        )

    @bot.command(name="credit")
    async def credit_cmd(ctx: commands.Context, member: discord.Member, amount: int):
        result = credit_player(
            _build_external_context(ctx.author),
            _identity_of(member),
            amount,
            vault,
            state_repo,
            event_repo,
        )
        await ctx.send(_format_result(result, "Credit completed."))

    @bot.command(name="debit")
    async def debit_cmd(ctx: commands.Context, member: discord.Member, amount: int):
        result = debit_player(
            _build_external_context(ctx.author),
            _identity_of(member),
            amount,
            vault,
            state_repo,
            event_repo,
        )
        await ctx.send(_format_result(result, "Debit completed."))

    @bot.command(name="authorize")
    async def authorize_cmd(ctx: commands.Context, member: discord.Member):
        result = authorize_game_server(
            _build_external_context(ctx.author), _identity_of(member), vault, state_repo, event_repo
        )
        await ctx.send(_format_result(result, f"{member.display_name} is authorized."))

    @bot.command(name="revoke")
    async def revoke_cmd(ctx: commands.Context, member: discord.Member):
        result = revoke_game_server(
            _build_external_context(ctx.author), _identity_of(member), vault, state_repo, event_repo
        )
        await ctx.send(_format_result(result, f"{member.display_name} is not authorized."))

    @bot.command(name="pause")
    async def pause_cmd(ctx: commands.Context):
        result = pause_vault(_build_external_context(ctx.author), vault, state_repo, event_repo)
        await ctx.send(_format_result(result, "Vault paused."))

    @bot.command(name="unpause")
    async def unpause_cmd(ctx: commands.Context):
        result = unpause_vault(_build_external_context(ctx.author), vault, state_repo, event_repo)
        await ctx.send(_format_result(result, "Vault resumed."))

    @bot.command(name="transfer_owner")
    async def transfer_owner_cmd(ctx: commands.Context, member: discord.Member):
        owner_ctx = _build_external_context(ctx.author)
        if owner_ctx.identity != vault.owner:
            await ctx.send("Unauthorized: only the vault owner can transfer ownership.")
            return

        confirmation_message = await ctx.send(
            f"{ctx.author.mention}, transfer vault ownership to {member.mention}? "
            "This cannot be undone.\n"
            "React with ✅ to confirm or ❌ to cancel."
        )
        await confirmation_message.add_reaction("✅")
        await confirmation_message.add_reaction("❌")

        pending_transfers[confirmation_message.id] = (
            owner_ctx,
            _identity_of(member),
            ctx.author.id,
        )

    @bot.event
    async def on_reaction_add(reaction: discord.Reaction, user: discord.abc.User):
        # Ignore bot reactions and reactions not on tracked messages.
        if user.bot:
            return

        message_id = reaction.message.id
        if message_id not in pending_transfers:
            return

        owner_ctx, new_owner, owner_discord_id = pending_transfers[message_id]

        # Only the owner who asked can confirm/cancel.
        if user.id != owner_discord_id:
            return

        emoji = str(reaction.emoji)
        channel = reaction.message.channel

        if emoji == "❌":
            pending_transfers.pop(message_id, None)
            await channel.send("Ownership transfer cancelled.")
            return
        if emoji != "✅":
            return

        pending_transfers.pop(message_id, None)
        result = transfer_vault_ownership(owner_ctx, new_owner, vault, state_repo, event_repo)
        await channel.send(_format_result(result, "Ownership transferred."))

    return bot
