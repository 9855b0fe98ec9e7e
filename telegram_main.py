import asyncio

import structlog

from infrastructure.config import Settings, create_identity_repository
from infrastructure.logging_config import setup_logging
from interfaces.telegram.handlers import create_telegram_bot

logger = structlog.get_logger("netbot.telegram")


async def run(settings: Settings) -> None:
    identity_repo = create_identity_repository(settings)
    bot = create_telegram_bot(
        settings.telegram_token,
        identity_repo,
        settings.telegram_cmd_prefix,
    )

    logger.info("telegram_starting", db_backend=settings.db_backend)
    try:
        await bot.infinity_polling()
    finally:
        await bot.close_session()
        logger.info("telegram_stopped")


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings)

    if not settings.telegram_token:
        raise RuntimeError("TELEGRAM_TOKEN environment variable is not set.")

    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
