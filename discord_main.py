import structlog

from infrastructure.config import Settings, create_identity_repository
from infrastructure.logging_config import setup_logging
from interfaces.discord.handlers import create_discord_bot

logger = structlog.get_logger("netbot.discord")


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings)

    if not settings.discord_token:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    identity_repo = create_identity_repository(settings)
    bot = create_discord_bot(identity_repo, settings.discord_cmd_prefix)

    logger.info("discord_starting", db_backend=settings.db_backend)
    # Logging is already configured; keep discord.py from installing its own handler.
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
