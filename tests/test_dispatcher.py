import asyncio
import unittest

from structlog.testing import capture_logs

from application.commands import CommandRegistry
from application.dispatcher import (
    INTERNAL_ERROR_REPLY,
    REDACTED,
    Dispatcher,
    ParsedCommand,
    parse_command,
)
from domain.errors import HandlerError
from fakes import FakeChannel, make_message


class ParseCommandTests(unittest.TestCase):
    def test_name_and_argument(self):
        self.assertEqual(parse_command("!help foo bar", "!"), ParsedCommand("help", "foo bar"))

    def test_no_argument(self):
        self.assertEqual(parse_command("!help", "!"), ParsedCommand("help", None))

    def test_whitespace_only_argument_is_absent(self):
        self.assertEqual(parse_command("!help   ", "!"), ParsedCommand("help", None))

    def test_argument_is_trimmed(self):
        self.assertEqual(parse_command("!say   hi there  ", "!"), ParsedCommand("say", "hi there"))

    def test_text_without_prefix_is_not_a_command(self):
        self.assertIsNone(parse_command("hello", "!"))
        self.assertIsNone(parse_command("help !me", "!"))

    def test_bare_prefix_is_not_a_command(self):
        self.assertIsNone(parse_command("!", "!"))
        self.assertIsNone(parse_command("! help", "!"))

    def test_multi_character_prefix(self):
        self.assertEqual(parse_command("bot: link bob", "bot: "), ParsedCommand("link", "bob"))
        self.assertIsNone(parse_command("!link bob", "bot: "))


class DispatcherTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.registry = CommandRegistry()
        self.calls = []

    def _register(self, name, handler):
        self.registry.register(name, f"{name} desc", f"usage: {name}", handler)

    def _dispatcher(self, typing_delay: float = 10.0) -> Dispatcher:
        return Dispatcher(self.registry, prefix="!", typing_delay=typing_delay)

    async def test_handler_receives_message_and_argument(self):
        async def echo(message, argument):
            self.calls.append((message.content, argument))
            return f"echo: {argument}"

        self._register("echo", echo)
        message = make_message("!echo  foo bar ")

        await self._dispatcher().dispatch(message)

        self.assertEqual(self.calls, [("!echo  foo bar ", "foo bar")])
        self.assertEqual(message.channel.sent, ["echo: foo bar"])

    async def test_missing_argument_is_passed_as_none(self):
        async def record(message, argument):
            self.calls.append(argument)
            return "ok"

        self._register("record", record)
        await self._dispatcher().dispatch(make_message("!record   "))

        self.assertEqual(self.calls, [None])

    async def test_unregistered_command_is_ignored(self):
        message = make_message("!nope please")

        with capture_logs() as logs:
            await self._dispatcher().dispatch(message)

        self.assertEqual(message.channel.events, [])
        self.assertEqual(logs, [])

    async def test_plain_text_is_ignored(self):
        async def never(message, argument):
            self.calls.append(argument)
            return "nope"

        self._register("hello", never)
        message = make_message("hello there")

        await self._dispatcher().dispatch(message)

        self.assertEqual(self.calls, [])
        self.assertEqual(message.channel.events, [])

    async def test_empty_reply_sends_nothing(self):
        async def quiet(message, argument):
            return ""

        self._register("quiet", quiet)
        message = make_message("!quiet")

        await self._dispatcher().dispatch(message)

        self.assertEqual(message.channel.events, [])

    async def test_handler_failure_sends_internal_error_and_logs(self):
        async def broken(message, argument):
            raise RuntimeError("boom")

        self._register("broken", broken)
        message = make_message("!broken now")

        with capture_logs() as logs:
            await self._dispatcher().dispatch(message)

        self.assertEqual(message.channel.sent, [INTERNAL_ERROR_REPLY])
        failures = [entry for entry in logs if entry["event"] == "command_handler_failed"]
        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0]["log_level"], "error")
        self.assertEqual(failures[0]["command"], "broken")

    async def test_handler_error_is_contained_too(self):
        async def refuses(message, argument):
            raise HandlerError("cannot do that")

        self._register("refuses", refuses)
        message = make_message("!refuses")

        await self._dispatcher().dispatch(message)

        self.assertEqual(message.channel.sent, [INTERNAL_ERROR_REPLY])

    async def test_sensitive_argument_is_redacted_in_logs(self):
        async def confirm(message, argument):
            self.calls.append(argument)
            raise RuntimeError("boom")

        self.registry.register(
            "confirm", "confirm desc", "usage: confirm <token>", confirm, sensitive_argument=True
        )
        message = make_message("!confirm s3cr3t-token")

        with capture_logs() as logs:
            await self._dispatcher().dispatch(message)

        self.assertEqual(self.calls, ["s3cr3t-token"])
        logged = {entry["event"]: entry for entry in logs}
        self.assertEqual(logged["dispatching_command"]["argument"], REDACTED)
        self.assertEqual(logged["command_handler_failed"]["argument"], REDACTED)
        self.assertNotIn("s3cr3t-token", repr(logs))

    async def test_plain_argument_is_logged(self):
        async def echo(message, argument):
            return ""

        self._register("echo", echo)

        with capture_logs() as logs:
            await self._dispatcher().dispatch(make_message("!echo hello"))

        self.assertEqual(logs[0]["event"], "dispatching_command")
        self.assertEqual(logs[0]["argument"], "hello")

    async def test_failed_reply_delivery_does_not_escape(self):
        async def chatty(message, argument):
            return "hi"

        self._register("chatty", chatty)
        message = make_message("!chatty", channel=FakeChannel(fail_send=True))

        with capture_logs() as logs:
            await self._dispatcher().dispatch(message)

        self.assertEqual(message.channel.sent, ["hi"])
        self.assertIn("reply_send_failed", [entry["event"] for entry in logs])

    async def test_fast_handler_never_starts_typing(self):
        async def fast(message, argument):
            return "done"

        self._register("fast", fast)
        message = make_message("!fast")

        await self._dispatcher(typing_delay=0.2).dispatch(message)
        await asyncio.sleep(0.3)

        self.assertEqual(message.channel.events, [("send", "done")])

    async def test_slow_handler_starts_typing_before_reply(self):
        async def slow(message, argument):
            await asyncio.sleep(0.05)
            return "finally"

        self._register("slow", slow)
        message = make_message("!slow")

        await self._dispatcher(typing_delay=0).dispatch(message)

        self.assertEqual(message.channel.events, [("start_typing",), ("send", "finally")])

    async def test_slow_empty_reply_clears_typing(self):
        async def slow_quiet(message, argument):
            await asyncio.sleep(0.05)
            return ""

        self._register("slowquiet", slow_quiet)
        message = make_message("!slowquiet")

        await self._dispatcher(typing_delay=0).dispatch(message)

        self.assertEqual(message.channel.events, [("start_typing",), ("stop_typing",)])

    async def test_typing_timer_cancelled_when_handler_fails(self):
        async def fails_fast(message, argument):
            raise ValueError("bad input")

        self._register("failsfast", fails_fast)
        message = make_message("!failsfast")

        await self._dispatcher(typing_delay=0.1).dispatch(message)
        await asyncio.sleep(0.2)

        self.assertEqual(message.channel.events, [("send", INTERNAL_ERROR_REPLY)])

    async def test_typing_failure_is_swallowed(self):
        async def slow(message, argument):
            await asyncio.sleep(0.05)
            return "still here"

        self._register("slow", slow)
        message = make_message("!slow", channel=FakeChannel(fail_typing=True))

        await self._dispatcher(typing_delay=0).dispatch(message)

        self.assertEqual(message.channel.sent, ["still here"])

    async def test_dispatches_run_concurrently(self):
        release = asyncio.Event()

        async def waits(message, argument):
            await release.wait()
            return "released"

        async def releases(message, argument):
            release.set()
            return "releasing"

        self._register("wait", waits)
        self._register("release", releases)
        dispatcher = self._dispatcher()
        first = make_message("!wait")
        second = make_message("!release")

        await asyncio.wait_for(
            asyncio.gather(dispatcher.dispatch(first), dispatcher.dispatch(second)),
            timeout=1,
        )

        self.assertEqual(first.channel.sent, ["released"])
        self.assertEqual(second.channel.sent, ["releasing"])


if __name__ == "__main__":
    unittest.main()
