from __future__ import annotations

from typing import Optional

import structlog
from telebot.async_telebot import AsyncTeleBot
from telebot.asyncio_helper import ApiTelegramException

from application.builtin_commands import create_command_registry
from application.commands import ExternalContext, IncomingMessage
from application.dispatcher import Dispatcher
from domain.errors import DeliveryError
from domain.repositories import IdentityRepository

PLATFORM = "telegram"

logger = structlog.get_logger("netbot.telegram")


class TelegramChannel:
    """`Channel` adapter for one Telegram chat."""

    def __init__(self, bot: AsyncTeleBot, chat_id: int) -> None:
        self._bot = bot
        self._chat_id = chat_id

    async def send(self, text: str) -> None:
        try:
            await self._bot.send_message(self._chat_id, text)
        except ApiTelegramException as exc:
            # 403 when the user never started a private chat with the bot.
            raise DeliveryError(exc.description) from exc

    async def start_typing(self) -> None:
        # Telegram shows the action for ~5 seconds or until we send something.
        await self._bot.send_chat_action(self._chat_id, "typing")

    async def stop_typing(self) -> None:
        # There is no API to cancel a chat action; it simply expires.
        return None


def _build_external_context(message) -> ExternalContext:
    """Extract a platform-agnostic context object from a Telegram message."""

    return ExternalContext(
        platform=PLATFORM,
        platform_user_id=str(message.from_user.id),
        username=message.from_user.username,
    )


def strip_bot_mention(text: str, prefix: str, bot_username: Optional[str]) -> Optional[str]:
    """
    Turn `/cmd@MyBot args` into `/cmd args`.

    Telegram clients append the bot name to commands in group chats.
    Returns None when the command is addressed to a different bot.
    """

    if not text.startswith(prefix):
        return text
    head, sep, rest = text.partition(" ")
    if "@" not in head:
        return text
    command, _, mention = head.partition("@")
    if bot_username is None or mention.lower() != bot_username.lower():
        return None
    return command + sep + rest


def build_incoming_message(
    bot: AsyncTeleBot,
    message,
    prefix: str,
    bot_username: Optional[str] = None,
) -> Optional[IncomingMessage]:
    content = strip_bot_mention(message.text or "", prefix, bot_username)
    if content is None:
        return None
    return IncomingMessage(
        content=content,
        channel=TelegramChannel(bot, message.chat.id),
        author=_build_external_context(message),
        private_channel=TelegramChannel(bot, message.from_user.id),
    )


def create_telegram_bot(
    bot_token: str,
    identity_repo: IdentityRepository,
    cmd_prefix: str = "/",
    bot_username: Optional[str] = None,
) -> AsyncTeleBot:
    """
    Configure and return an AsyncTeleBot instance wired to the dispatcher.

    This module contains only Telegram-specific concerns: wrapping Telegram
    messages and chats into the application's message and channel types.
    The bot's own username is looked up on first use unless given.
    """

    bot = AsyncTeleBot(bot_token)
    dispatcher = Dispatcher(create_command_registry(identity_repo, cmd_prefix), cmd_prefix)

    @bot.message_handler(content_types=["text"])
    async def handle_text(message):
        nonlocal bot_username
        if message.from_user is None or message.from_user.is_bot:
            return
        if bot_username is None:
            bot_username = (await bot.get_me()).username
        incoming = build_incoming_message(bot, message, cmd_prefix, bot_username)
        if incoming is None:
            return
        await dispatcher.dispatch(incoming)

    logger.info("telegram_bot_configured", prefix=cmd_prefix, commands=len(dispatcher.registry))
    return bot
