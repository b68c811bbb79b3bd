# -- coding: utf-8 --

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Type

from core.contracts import Role
from core.registry import register_named, resolve_registered

TriggerFactory = Dict[str, Type["BaseTrigger"]]
_registry: TriggerFactory = {}


@dataclass(frozen=True)
class ChatMessage:
    """One inbound chat line as delivered by a chat transport."""

    channel: str
    requester_id: str
    requester_roles: frozenset[Role]
    text: str
    is_self: bool = False


@dataclass
class ChatTriggerConfig:
    host: str = "irc.chat.twitch.tv"
    port: int = 6697
    use_tls: bool = True
    username: str = ""
    oauth_token: str = ""
    channel: str = ""
    reconnect_delay_s: float = 5.0


def build_chat_trigger_config(cfg) -> ChatTriggerConfig:
    chat = cfg.chat
    return ChatTriggerConfig(
        host=str(chat.host),
        port=int(chat.port),
        use_tls=bool(chat.use_tls),
        username=str(chat.username or "").strip(),
        oauth_token=str(chat.oauth_token or "").strip(),
        channel=str(chat.channel or "").strip().lstrip("#"),
        reconnect_delay_s=float(chat.reconnect_delay_s),
    )


class BaseTrigger(ABC):
    def __init__(self, cfg: ChatTriggerConfig, on_message: Callable[[ChatMessage], None]):
        self.cfg = cfg
        self.on_message = on_message

    @abstractmethod
    def start(self):
        pass

    @abstractmethod
    def stop(self):
        pass

    def raise_if_failed(self):
        return None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()


def register_trigger(name: str):
    return register_named(_registry, name)


def create_trigger(
    name: str, cfg: ChatTriggerConfig, on_message: Callable[[ChatMessage], None], **kwargs
) -> BaseTrigger:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "trigger",
        unknown_label="chat trigger type",
    )
    return cls(cfg, on_message, **kwargs)


__all__ = [
    "ChatMessage",
    "ChatTriggerConfig",
    "BaseTrigger",
    "build_chat_trigger_config",
    "register_trigger",
    "create_trigger",
]
