import asyncio
import threading
import unittest

from core.contracts import Role
from core.lifecycle import LoopRunner
from trigger import ChatTriggerConfig, create_trigger
from trigger.twitch import parse_badges, parse_irc_line, to_chat_message


class TestIrcParsing(unittest.TestCase):
    def test_privmsg_with_tags(self):
        line = (
            "@badge-info=subscriber/8;badges=moderator/1,subscriber/6;"
            "display-name=Alice\\sB;user-id=42 "
            ":alice!alice@alice.tmi.twitch.tv PRIVMSG #chan :!shot please\r\n"
        )
        msg = parse_irc_line(line)
        self.assertEqual(msg.command, "PRIVMSG")
        self.assertEqual(msg.params, ["#chan", "!shot please"])
        self.assertEqual(msg.nick, "alice")
        self.assertEqual(msg.tags["display-name"], "Alice B")

        chat = to_chat_message(msg, own_login="bot")
        self.assertEqual(chat.channel, "chan")
        self.assertEqual(chat.requester_id, "Alice B")
        self.assertEqual(chat.text, "!shot please")
        self.assertEqual(chat.requester_roles, frozenset({Role.MODERATOR, Role.SUBSCRIBER}))
        self.assertFalse(chat.is_self)

    def test_own_message_is_flagged(self):
        msg = parse_irc_line(":Bot!bot@bot.tmi.twitch.tv PRIVMSG #chan :!shot")
        self.assertTrue(to_chat_message(msg, own_login="bot").is_self)

    def test_non_privmsg_and_blank_lines(self):
        self.assertEqual(parse_irc_line("PING :tmi.twitch.tv").params, ["tmi.twitch.tv"])
        self.assertIsNone(parse_irc_line("\r\n"))
        self.assertIsNone(to_chat_message(parse_irc_line(":tmi.twitch.tv 001 bot :Welcome")))

    def test_parse_badges(self):
        self.assertEqual(parse_badges("vip/1,subscriber/12"), {"vip": "1", "subscriber": "12"})
        self.assertEqual(parse_badges(""), {})


class FakeIrcServer:
    def __init__(self, script: list[bytes]):
        self.script = script
        self.received: list[str] = []
        self.port = 0
        self._server: asyncio.AbstractServer | None = None

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader, writer):
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.decode().rstrip("\r\n")
                self.received.append(line)
                if line.startswith("JOIN"):
                    for out in self.script:
                        writer.write(out)
                    await writer.drain()
        finally:
            writer.close()


class TestTwitchChatTrigger(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.loop_runner = LoopRunner()
        self.messages = []
        self.got = threading.Event()

    async def asyncTearDown(self):
        await asyncio.to_thread(self.loop_runner.shutdown_loop)

    def _trigger(self, port: int):
        cfg = ChatTriggerConfig(
            host="127.0.0.1",
            port=port,
            use_tls=False,
            username="Bot",
            oauth_token="abc123",
            channel="Chan",
            reconnect_delay_s=0.1,
        )

        def on_message(msg):
            self.messages.append(msg)
            if len(self.messages) >= 2:
                self.got.set()

        return create_trigger("twitch", cfg, on_message, loop_runner=self.loop_runner)

    async def test_login_ping_and_messages(self):
        server = FakeIrcServer(
            [
                b":bot!bot@bot.tmi.twitch.tv JOIN #chan\r\n",
                b"PING :tmi.twitch.tv\r\n",
                b"@badges=vip/1;display-name=Carol :carol!carol@x PRIVMSG #chan :!shot\r\n",
                b":bot!bot@bot.tmi.twitch.tv PRIVMSG #chan :!shot\r\n",
            ]
        )
        await server.start()
        trigger = self._trigger(server.port)
        trigger.start()
        try:
            self.assertTrue(await asyncio.to_thread(self.got.wait, 5.0))
            for _ in range(50):
                if "PONG :tmi.twitch.tv" in server.received:
                    break
                await asyncio.sleep(0.05)
            trigger.raise_if_failed()
        finally:
            await asyncio.to_thread(trigger.stop)
            await server.stop()

        self.assertEqual(server.received[0], "CAP REQ :twitch.tv/tags twitch.tv/commands")
        self.assertEqual(server.received[1], "PASS oauth:abc123")
        self.assertEqual(server.received[2:4], ["NICK bot", "JOIN #chan"])
        self.assertIn("PONG :tmi.twitch.tv", server.received)
        first, second = self.messages[:2]
        self.assertEqual(first.requester_id, "Carol")
        self.assertEqual(first.requester_roles, frozenset({Role.VIP}))
        self.assertFalse(first.is_self)
        self.assertTrue(second.is_self)

    async def test_auth_failure_surfaces_in_raise_if_failed(self):
        server = FakeIrcServer([b":tmi.twitch.tv NOTICE * :Login authentication failed\r\n"])
        await server.start()
        trigger = self._trigger(server.port)
        trigger.start()
        try:
            failed = False
            for _ in range(100):
                try:
                    trigger.raise_if_failed()
                except RuntimeError:
                    failed = True
                    break
                await asyncio.sleep(0.05)
            self.assertTrue(failed)
        finally:
            await asyncio.to_thread(trigger.stop)
            await server.stop()


if __name__ == "__main__":
    unittest.main()
