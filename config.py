import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


def _int_env(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from None
    if value < minimum:
        raise RuntimeError(f"{name} must be at least {minimum}.")
    return value


@dataclass(frozen=True)
class Settings:
    discord_token: Optional[str]
    telegram_token: Optional[str]
    db_path: str
    database_url: Optional[str]
    vault_owner: Optional[str]
    game_server_address: Optional[str]
    chip_rate: int
    min_deposit: int
    wallet_opening_balance: int
    log_level: str


def load_settings() -> Settings:
    """Read settings from the environment (and `.env`, if present)."""

    return Settings(
        discord_token=os.environ.get("DISCORD_TOKEN"),
        telegram_token=os.environ.get("TELEGRAM_TOKEN"),
        db_path=os.environ.get("DB_PATH", "chipvault.db"),
        database_url=os.environ.get("DATABASE_URL") or None,
        vault_owner=os.environ.get("VAULT_OWNER"),
        game_server_address=os.environ.get("GAME_SERVER_ADDRESS"),
        chip_rate=_int_env("CHIP_RATE", 1),
        min_deposit=_int_env("MIN_DEPOSIT", 1),
        wallet_opening_balance=_int_env("WALLET_OPENING_BALANCE", 0, minimum=0),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
