from __future__ import annotations

import logging
from typing import Tuple

from application.services import open_vault
from config import Settings
from domain.models import is_null_identity
from domain.repositories import EventRepository, VaultStateRepository
from domain.vault import ChipVault
from infrastructure.collateral.in_memory import InMemoryCollateralBank


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_repositories(settings: Settings) -> Tuple[VaultStateRepository, EventRepository]:
    """Postgres when DATABASE_URL is set, otherwise SQLite at DB_PATH."""

    if settings.database_url:
        from infrastructure.db.event_repository_postgres import PostgresEventRepository
        from infrastructure.db.vault_repository_postgres import PostgresVaultStateRepository

        db_params = {"dsn": settings.database_url}
        return PostgresVaultStateRepository(db_params), PostgresEventRepository(db_params)

    from infrastructure.db.event_repository_sqlite import SqliteEventRepository
    from infrastructure.db.vault_repository_sqlite import SqliteVaultStateRepository

    return SqliteVaultStateRepository(settings.db_path), SqliteEventRepository(settings.db_path)


def build_vault(settings: Settings) -> Tuple[ChipVault, VaultStateRepository, EventRepository]:
    if is_null_identity(settings.vault_owner):
        raise RuntimeError("VAULT_OWNER environment variable is not set.")

    state_repo, event_repo = build_repositories(settings)
    vault = open_vault(
        settings.vault_owner,
        InMemoryCollateralBank(opening_balance=settings.wallet_opening_balance),
        state_repo,
        event_repo,
        chip_rate=settings.chip_rate,
        min_deposit=settings.min_deposit,
        initial_server=settings.game_server_address,
    )
    return vault, state_repo, event_repo
