from bootstrap import build_vault, configure_logging
from config import load_settings
from interfaces.discord.handlers import create_discord_bot


def main() -> None:
    settings = load_settings()
    configure_logging(settings)

    if not settings.discord_token:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    vault, state_repo, event_repo = build_vault(settings)

    bot = create_discord_bot(vault, state_repo, event_repo)
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
