# -- coding: utf-8 --
"""Twitch chat listener over IRC (tags capability) feeding ChatMessage events."""

import asyncio
import logging
import ssl
import threading
from concurrent.futures import CancelledError as FutureCancelledError
from dataclasses import dataclass, field

from core.lifecycle import AsyncTaskOwner, LoopRunner
from trigger.base import BaseTrigger, ChatMessage, ChatTriggerConfig, register_trigger
from trigger.permissions import roles_from_badges

L = logging.getLogger("snap_runtime.trigger.twitch")

_TAG_ESCAPES = {"s": " ", ":": ";", "\\": "\\", "r": "\r", "n": "\n"}


class ChatAuthError(Exception):
    pass


@dataclass
class IrcMessage:
    command: str
    params: list[str] = field(default_factory=list)
    prefix: str = ""
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def nick(self) -> str:
        return self.prefix.split("!", 1)[0]


def _unescape_tag(value: str) -> str:
    out = []
    it = iter(value)
    for ch in it:
        if ch == "\\":
            nxt = next(it, "")
            out.append(_TAG_ESCAPES.get(nxt, nxt))
        else:
            out.append(ch)
    return "".join(out)


def parse_irc_line(line: str) -> IrcMessage | None:
    rest = line.rstrip("\r\n")
    if not rest:
        return None
    tags: dict[str, str] = {}
    if rest.startswith("@"):
        raw_tags, _, rest = rest[1:].partition(" ")
        for item in raw_tags.split(";"):
            key, _, value = item.partition("=")
            if key:
                tags[key] = _unescape_tag(value)
    prefix = ""
    if rest.startswith(":"):
        prefix, _, rest = rest[1:].partition(" ")
    trailing = None
    if " :" in rest:
        rest, trailing = rest.split(" :", 1)
    elif rest.startswith(":"):
        rest, trailing = "", rest[1:]
    parts = rest.split()
    if not parts:
        return None
    params = parts[1:]
    if trailing is not None:
        params.append(trailing)
    return IrcMessage(command=parts[0].upper(), params=params, prefix=prefix, tags=tags)


def parse_badges(raw: str | None) -> dict[str, str]:
    badges: dict[str, str] = {}
    for item in str(raw or "").split(","):
        name, _, version = item.partition("/")
        if name:
            badges[name] = version
    return badges


def to_chat_message(msg: IrcMessage, own_login: str = "") -> ChatMessage | None:
    if msg.command != "PRIVMSG" or len(msg.params) < 2:
        return None
    login = msg.nick
    return ChatMessage(
        channel=msg.params[0].lstrip("#"),
        requester_id=msg.tags.get("display-name") or login,
        requester_roles=roles_from_badges(parse_badges(msg.tags.get("badges"))),
        text=msg.params[-1],
        is_self=bool(own_login) and login.lower() == own_login.lower(),
    )


@register_trigger("twitch")
class TwitchChatTrigger(BaseTrigger):
    def __init__(
        self,
        cfg: ChatTriggerConfig,
        on_message,
        *,
        loop_runner: LoopRunner,
    ):
        super().__init__(cfg, on_message)
        self._run_task = None
        self._writer: asyncio.StreamWriter | None = None
        self._started = False
        self._state_lock = threading.Lock()
        self._tasks = AsyncTaskOwner(loop_runner=loop_runner, owner_name="twitch_chat")

    def start(self):
        with self._state_lock:
            if self._started:
                return
            self._started = True
        self._run_task = self._tasks.spawn(self._run_forever())
        L.info(
            "Twitch chat trigger started: #%s as %s", self.cfg.channel, self.cfg.username
        )

    def stop(self):
        with self._state_lock:
            self._started = False
        self._run_task = None
        self._tasks.cancel_and_clear_local_tasks()
        L.info("Twitch chat trigger stopped")

    def raise_if_failed(self):
        task = self._run_task
        if task is None or not task.done():
            return
        try:
            err = task.exception()
        except (asyncio.CancelledError, FutureCancelledError):
            return
        if err is None:
            return
        raise RuntimeError(
            f"TwitchChatTrigger stopped unexpectedly ({type(err).__name__}: {err})"
        ) from err

    async def _run_forever(self):
        delay = max(float(self.cfg.reconnect_delay_s), 0.0)
        while True:
            try:
                await self._session()
            except ChatAuthError:
                L.error("Twitch chat login failed for %s", self.cfg.username)
                raise
            except (OSError, asyncio.IncompleteReadError) as e:
                L.warning("Twitch chat error: %s; reconnecting in %.1fs", e, delay)
            await asyncio.sleep(delay)

    async def _session(self):
        ssl_ctx = ssl.create_default_context() if self.cfg.use_tls else None
        reader, writer = await asyncio.open_connection(
            self.cfg.host, self.cfg.port, ssl=ssl_ctx
        )
        self._writer = writer
        try:
            token = self.cfg.oauth_token
            if not token.startswith("oauth:"):
                token = f"oauth:{token}"
            await self._send("CAP REQ :twitch.tv/tags twitch.tv/commands")
            await self._send(f"PASS {token}")
            await self._send(f"NICK {self.cfg.username.lower()}")
            await self._send(f"JOIN #{self.cfg.channel.lower()}")
            while True:
                raw = await reader.readline()
                if not raw:
                    raise ConnectionResetError("connection closed by server")
                msg = parse_irc_line(raw.decode("utf-8", errors="replace"))
                if msg is not None:
                    await self._handle(msg)
        finally:
            self._writer = None
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def _send(self, line: str):
        writer = self._writer
        if writer is None:
            return
        writer.write((line + "\r\n").encode("utf-8"))
        await writer.drain()

    async def _handle(self, msg: IrcMessage):
        if msg.command == "PING":
            await self._send(f"PONG :{msg.params[-1] if msg.params else 'tmi.twitch.tv'}")
        elif msg.command == "RECONNECT":
            raise ConnectionResetError("server requested reconnect")
        elif msg.command == "NOTICE" and "authentication failed" in (
            msg.params[-1] if msg.params else ""
        ).lower():
            raise ChatAuthError(msg.params[-1])
        elif msg.command == "JOIN" and msg.nick.lower() == self.cfg.username.lower():
            L.info("Connected to Twitch chat #%s", self.cfg.channel)
        elif msg.command == "PRIVMSG":
            chat = to_chat_message(msg, self.cfg.username)
            if chat is None:
                return
            try:
                self.on_message(chat)
            except Exception:
                L.exception("Chat message handler failed for %r", chat.text)


__all__ = [
    "ChatAuthError",
    "IrcMessage",
    "TwitchChatTrigger",
    "parse_badges",
    "parse_irc_line",
    "to_chat_message",
]
