import logging

from bootstrap import build_vault, configure_logging
from config import load_settings
from interfaces.telegram.handlers import create_telegram_bot

logger = logging.getLogger(__name__)


def main() -> None:
    settings = load_settings()
    configure_logging(settings)

    if not settings.telegram_token:
        raise RuntimeError("TELEGRAM_TOKEN environment variable is not set.")

    vault, state_repo, event_repo = build_vault(settings)

    bot = create_telegram_bot(settings.telegram_token, vault, state_repo, event_repo)
    logger.info("Telegram bot polling")
    bot.infinity_polling()


if __name__ == "__main__":
    main()
