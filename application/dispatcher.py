"""Parse inbound chat messages and run the matching command handler.

One call to `Dispatcher.dispatch` turns one message into at most one
reply. Handler failures never leave the dispatcher: they are logged and
answered with a fixed "Internal Error" text.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from application.commands import Channel, CommandRegistry, IncomingMessage

logger = structlog.get_logger("netbot.dispatcher")

DEFAULT_PREFIX = "!"
TYPING_DELAY_SECONDS = 0.1
INTERNAL_ERROR_REPLY = "Internal Error"
REDACTED = "***REDACTED***"


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    argument: Optional[str] = None


def parse_command(text: str, prefix: str = DEFAULT_PREFIX) -> Optional[ParsedCommand]:
    """
    Split `<prefix><name> <argument>` into its parts.

    Returns None for text that is not a command. The argument is
    everything after the first space, trimmed; an empty argument is None.
    """

    if not text.startswith(prefix):
        return None

    name, _, rest = text[len(prefix):].partition(" ")
    if not name:
        return None
    return ParsedCommand(name=name, argument=rest.strip() or None)


class TypingIndicator:
    """
    Single-shot "user is typing" signal that fires after a delay.

    Started when a handler is invoked and cancelled as soon as it settles,
    so fast handlers never show the indicator at all.
    """

    def __init__(self, channel: Channel, delay: float) -> None:
        self._channel = channel
        self._delay = delay
        self._task: Optional[asyncio.Task] = None
        self.started = False

    def schedule(self) -> None:
        self._task = asyncio.ensure_future(self._start_after_delay())

    async def _start_after_delay(self) -> None:
        await asyncio.sleep(self._delay)
        self.started = True
        try:
            await self._channel.start_typing()
        except Exception:
            logger.debug("typing_indicator_failed", exc_info=True)

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()

    async def clear(self) -> None:
        """Stop a fired indicator; needed when no reply will stop it implicitly."""

        if not self.started:
            return
        try:
            await self._channel.stop_typing()
        except Exception:
            logger.debug("typing_indicator_stop_failed", exc_info=True)


class Dispatcher:
    """
    Routes prefixed messages to handlers registered in a `CommandRegistry`.

    Dispatches are independent of each other; nothing here serialises
    handlers, so the gateway may run many `dispatch` calls concurrently.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        prefix: str = DEFAULT_PREFIX,
        typing_delay: float = TYPING_DELAY_SECONDS,
    ) -> None:
        self.registry = registry
        self.prefix = prefix
        self._typing_delay = typing_delay

    async def dispatch(self, message: IncomingMessage) -> None:
        parsed = parse_command(message.content, self.prefix)
        if parsed is None:
            return

        command = self.registry.lookup(parsed.name)
        if command is None:
            return

        log = logger.bind(
            command=parsed.name,
            platform=message.author.platform,
            user=message.author.username or message.author.platform_user_id,
        )
        logged_argument = parsed.argument
        if command.sensitive_argument and logged_argument is not None:
            logged_argument = REDACTED
        log.debug("dispatching_command", argument=logged_argument)

        typing = TypingIndicator(message.channel, self._typing_delay)
        typing.schedule()
        try:
            try:
                reply = await command.handler(message, parsed.argument)
            finally:
                typing.cancel()
        except Exception:
            log.exception("command_handler_failed", argument=logged_argument)
            await self._send(message.channel, INTERNAL_ERROR_REPLY, log)
            return

        if reply:
            await self._send(message.channel, reply, log)
        else:
            await typing.clear()

    @staticmethod
    async def _send(channel: Channel, text: str, log) -> None:
        try:
            await channel.send(text)
        except Exception:
            log.exception("reply_send_failed")
