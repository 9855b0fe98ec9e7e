from __future__ import annotations

from typing import Optional

from application.commands import Command, CommandRegistry, IncomingMessage
from application.services import (
    confirm_account_link,
    describe_account,
    regenerate_api_key,
    request_account_link,
)
from domain.errors import DeliveryError
from domain.repositories import IdentityRepository

FENCE = "```"
DM_CLOSED_REPLY = (
    "I could not send you {what} by direct message. "
    "Please allow direct messages from me and run {command} again."
)


def make_help_command(registry: CommandRegistry, prefix: str) -> Command:
    """Build the `help` command, which describes whatever `registry` holds."""

    async def help_handler(_message: IncomingMessage, argument: Optional[str]) -> str:
        if argument:
            # Help for a specific command.
            command = registry.lookup(argument)
            if command is None:
                return f"Unknown command '{argument}'"
            return f"{FENCE}{command.name} - {command.short_description}\n\n{command.usage}{FENCE}"

        lines = [f"{prefix}{name} - {desc}" for name, desc in registry.list_all()]
        return f"{FENCE}Commands:\n\n" + "\n".join(lines) + FENCE

    return Command(
        name="help",
        short_description="Get list of commands or help for a specific command (help [cmd])",
        usage=(
            "usage: help [cmd]\n"
            "  help - list all commands with their descriptions\n"
            "  help [cmd] - get the description and usage information for [cmd]"
        ),
        handler=help_handler,
    )


def register_account_commands(
    registry: CommandRegistry,
    identity_repo: IdentityRepository,
    prefix: str,
) -> None:
    """Register the commands that manage the caller's identity record."""

    async def link_handler(message: IncomingMessage, argument: Optional[str]) -> str:
        if not argument:
            return f"usage: {prefix}link <username>"
        if message.private_channel is None:
            return "Link requests can only be made where I can message you privately."

        result = request_account_link(message.author, argument, identity_repo)
        if not result.success:
            return result.error_message or "Link request failed."

        try:
            await message.private_channel.send(
                f"Your link token is `{result.token}`.\n"
                f"Log in as {result.target_username} on the other platform and send "
                f"confirmlink {result.token}"
            )
        except DeliveryError:
            return DM_CLOSED_REPLY.format(what="a link token", command=f"{prefix}link")
        return "I sent you a link token in a direct message."

    async def confirm_link_handler(message: IncomingMessage, argument: Optional[str]) -> str:
        if not argument:
            return f"usage: {prefix}confirmlink <token>"
        result = confirm_account_link(message.author, argument, identity_repo)
        return result.message or ""

    async def api_key_handler(message: IncomingMessage, _argument: Optional[str]) -> str:
        if message.private_channel is None:
            return "API keys can only be sent where I can message you privately."

        result = regenerate_api_key(message.author, identity_repo)
        try:
            await message.private_channel.send(
                f"Your new API key is `{result.api_key}`. The previous key no longer works."
            )
        except DeliveryError:
            # The old key is already gone; tell the user to fetch the new one.
            return DM_CLOSED_REPLY.format(what="your new API key", command=f"{prefix}apikey")
        return "I sent you a new API key in a direct message."

    async def whoami_handler(message: IncomingMessage, _argument: Optional[str]) -> str:
        result = describe_account(message.author, identity_repo)
        return f"{FENCE}{result.message}{FENCE}"

    registry.register(
        "link",
        "Link your account with your account on another platform (link <username>)",
        "usage: link <username>\n"
        "  link <username> - get a token (by direct message) to confirm from the\n"
        "                    account called <username> on another platform",
        link_handler,
    )
    registry.register(
        "confirmlink",
        "Confirm a link request made from another platform (confirmlink <token>)",
        "usage: confirmlink <token>\n"
        "  confirmlink <token> - merge this account with the one that requested the link",
        confirm_link_handler,
        sensitive_argument=True,
    )
    registry.register(
        "apikey",
        "Get a new API key by direct message",
        "usage: apikey\n"
        "  apikey - generate a new API key; any previous key stops working",
        api_key_handler,
    )
    registry.register(
        "whoami",
        "Show your account class and linked platforms",
        "usage: whoami",
        whoami_handler,
    )


def create_command_registry(identity_repo: IdentityRepository, prefix: str) -> CommandRegistry:
    """
    Build the registry for one gateway: `help` first, then the account
    commands. Duplicate names abort startup with `DuplicateCommandError`.
    """

    registry = CommandRegistry()
    registry.register_command(make_help_command(registry, prefix))
    register_account_commands(registry, identity_repo, prefix)
    return registry
