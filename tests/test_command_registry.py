import unittest

from application.commands import Command, CommandRegistry
from domain.errors import DuplicateCommandError


async def _reply_pong(message, argument):
    return "pong"


async def _reply_other(message, argument):
    return "other"


class CommandRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = CommandRegistry()

    def test_lookup_returns_registered_entry(self):
        self.registry.register("ping", "Reply with pong", "usage: ping", _reply_pong)

        command = self.registry.lookup("ping")
        self.assertIsNotNone(command)
        self.assertEqual(command.name, "ping")
        self.assertEqual(command.short_description, "Reply with pong")
        self.assertEqual(command.usage, "usage: ping")
        self.assertIs(command.handler, _reply_pong)

    def test_lookup_unknown_name_returns_none(self):
        self.assertIsNone(self.registry.lookup("nope"))

    def test_duplicate_registration_fails_and_keeps_original(self):
        self.registry.register("ping", "Reply with pong", "usage: ping", _reply_pong)

        with self.assertRaises(DuplicateCommandError) as ctx:
            self.registry.register("ping", "Something else", "usage: ping", _reply_other)

        self.assertEqual(ctx.exception.name, "ping")
        self.assertIs(self.registry.lookup("ping").handler, _reply_pong)
        self.assertEqual(len(self.registry), 1)

    def test_register_command_accepts_prebuilt_entry(self):
        command = Command("ping", "Reply with pong", "usage: ping", _reply_pong)
        self.registry.register_command(command)

        self.assertIn("ping", self.registry)
        with self.assertRaises(DuplicateCommandError):
            self.registry.register_command(command)

    def test_list_all_keeps_registration_order(self):
        for name in ("zeta", "alpha", "mid"):
            self.registry.register(name, f"{name} desc", f"usage: {name}", _reply_pong)

        self.assertEqual(
            self.registry.list_all(),
            [("zeta", "zeta desc"), ("alpha", "alpha desc"), ("mid", "mid desc")],
        )


if __name__ == "__main__":
    unittest.main()
