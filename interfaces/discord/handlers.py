from __future__ import annotations

from contextlib import AsyncExitStack
from typing import Optional

import discord
import structlog

from application.builtin_commands import create_command_registry
from application.commands import ExternalContext, IncomingMessage
from application.dispatcher import Dispatcher
from domain.errors import DeliveryError
from domain.repositories import IdentityRepository

PLATFORM = "discord"

logger = structlog.get_logger("netbot.discord")


class DiscordChannel:
    """
    `Channel` adapter over anything discord.py can send to.

    Discord has no "stop typing" call; the indicator is kept alive by
    `channel.typing()` until we leave that context, which we do on send or
    when asked explicitly.
    """

    def __init__(self, target: discord.abc.Messageable) -> None:
        self._target = target
        self._typing: Optional[AsyncExitStack] = None

    async def send(self, text: str) -> None:
        await self.stop_typing()
        try:
            await self._target.send(text)
        except discord.HTTPException as exc:
            # Includes Forbidden, raised when the user has DMs closed.
            raise DeliveryError(str(exc)) from exc

    async def start_typing(self) -> None:
        if self._typing is not None:
            return
        stack = AsyncExitStack()
        await stack.enter_async_context(self._target.typing())
        self._typing = stack

    async def stop_typing(self) -> None:
        stack, self._typing = self._typing, None
        if stack is not None:
            await stack.aclose()


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    return ExternalContext(
        platform=PLATFORM,
        platform_user_id=str(user.id),
        username=user.name,
    )


def build_incoming_message(message: discord.Message) -> IncomingMessage:
    return IncomingMessage(
        content=message.content,
        channel=DiscordChannel(message.channel),
        author=_build_external_context(message.author),
        private_channel=DiscordChannel(message.author),
    )


def create_discord_bot(
    identity_repo: IdentityRepository,
    cmd_prefix: str = "!",
) -> discord.Client:
    """
    Configure and return a Discord client that feeds every message to a
    `Dispatcher` built around the shared command set.
    """

    intents = discord.Intents.default()
    intents.message_content = True

    client = discord.Client(intents=intents)
    dispatcher = Dispatcher(create_command_registry(identity_repo, cmd_prefix), cmd_prefix)

    @client.event
    async def on_ready():
        logger.info(
            "discord_ready",
            user=str(client.user),
            invite=(
                "https://discordapp.com/oauth2/authorize"
                f"?client_id={client.user.id}&scope=bot&permissions=8"
            ),
        )
        await client.change_presence(
            activity=discord.Game(name=f"on the net - {cmd_prefix}help")
        )

    @client.event
    async def on_message(message: discord.Message):
        # Ignore other bots, including ourselves.
        if message.author.bot:
            return
        await dispatcher.dispatch(build_incoming_message(message))

    @client.event
    async def on_error(event_method: str, *args, **kwargs):
        logger.exception("discord_event_error", event_name=event_method)

    return client
