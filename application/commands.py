from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from domain.errors import DuplicateCommandError


class Channel(Protocol):
    """
    Where a reply goes. Gateway adapters wrap their SDK objects in this.
    """

    async def send(self, text: str) -> None:
        ...

    async def start_typing(self) -> None:
        ...

    async def stop_typing(self) -> None:
        ...


@dataclass
class ExternalContext:
    """
    Information about the caller from a particular platform (Discord, Telegram).

    The application layer never depends on concrete SDK types; it only sees
    this small context object.
    """

    platform: str
    platform_user_id: str
    username: Optional[str] = None


@dataclass
class IncomingMessage:
    """One inbound chat message, as handed to the dispatcher and to handlers."""

    content: str
    channel: Channel
    author: ExternalContext
    # Direct-message channel to the author, for secrets such as tokens.
    private_channel: Optional[Channel] = None


# `argument` is the text after the command name, trimmed, or None if empty.
# Return the reply text, or an empty string when no reply should be sent.
MessageHandler = Callable[[IncomingMessage, Optional[str]], Awaitable[str]]


@dataclass(frozen=True)
class Command:
    name: str
    short_description: str
    usage: str
    handler: MessageHandler
    # Secrets (tokens, keys) as argument: never write the argument to logs.
    sensitive_argument: bool = False


class CommandRegistry:
    """
    Maps command names to their handlers.

    Filled once at startup and only read afterwards, so concurrent
    dispatches can share it without locking. Iteration follows
    registration order.
    """

    def __init__(self) -> None:
        self._commands: Dict[str, Command] = {}

    def register_command(self, command: Command) -> None:
        """
        Add a command.

        Raises `DuplicateCommandError` if the name is taken; the existing
        entry is left untouched.
        """

        if command.name in self._commands:
            raise DuplicateCommandError(command.name)
        self._commands[command.name] = command

    def register(
        self,
        name: str,
        short_description: str,
        usage: str,
        handler: MessageHandler,
        sensitive_argument: bool = False,
    ) -> Command:
        command = Command(
            name=name,
            short_description=short_description,
            usage=usage,
            handler=handler,
            sensitive_argument=sensitive_argument,
        )
        self.register_command(command)
        return command

    def lookup(self, name: str) -> Optional[Command]:
        return self._commands.get(name)

    def list_all(self) -> List[Tuple[str, str]]:
        """Return (name, short description) pairs in registration order."""

        return [(cmd.name, cmd.short_description) for cmd in self._commands.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)
