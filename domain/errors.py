from __future__ import annotations


class NetbotError(Exception):
    """Base class for errors raised by the bot itself."""


class DuplicateCommandError(NetbotError):
    """Raised when two handlers are registered under the same command name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Command handler for cmd {name} already registered!")
        self.name = name


class HandlerError(NetbotError):
    """
    Failure inside a command handler.

    Handlers may raise this (or anything else); the dispatcher contains
    every handler failure and answers with a generic reply.
    """


class StorageError(NetbotError):
    """A persistence operation could not be completed."""


class AccountLinkError(NetbotError):
    """Two identity records cannot be merged."""


class DeliveryError(NetbotError):
    """The gateway refused to deliver a message (e.g. direct messages closed)."""
