"""Typed config schema blocks shared by loader/validator/runtime."""

from dataclasses import dataclass, field
from typing import Dict


class ConfigError(Exception):
    pass


@dataclass
class RuntimeConfig:
    data_dir: str = "data"
    log_level: str = "info"
    log_dir: str = ""
    max_runtime_s: float = 0.0
    history_size: int = 20
    write_csv: bool = True


@dataclass
class ObsConfigBlock:
    host: str = "localhost"
    port: int = 4455
    password: str = ""
    connect_timeout_s: float = 5.0
    request_timeout_s: float = 10.0


@dataclass
class CaptureConfigBlock:
    client: str = "obs"
    source: str = ""
    width: int = 0
    height: int = 0
    native_size: bool = False
    image_format: str = "png"
    save_screenshots: bool = False
    output_dir: str = ""
    max_concurrent: int = 0


@dataclass
class PermissionsConfigBlock:
    everyone: bool = True
    broadcaster: bool = False
    moderator: bool = False
    vip: bool = False
    subscriber: bool = False


@dataclass
class ChatConfigBlock:
    enabled: bool = False
    type: str = "twitch"
    host: str = "irc.chat.twitch.tv"
    port: int = 6697
    use_tls: bool = True
    username: str = ""
    oauth_token: str = ""
    channel: str = ""
    command: str = "!shot"
    reconnect_delay_s: float = 5.0
    permissions: PermissionsConfigBlock = field(default_factory=PermissionsConfigBlock)


@dataclass
class ThrottleConfigBlock:
    max_triggers: int = 3
    window_ms: float = 10_000.0
    retention_ms: float = 60_000.0


@dataclass
class OverlayConfigBlock:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3456
    animation_delay_ms: int = 5000
    animation_direction: str = "left"


@dataclass
class WebhookConfigBlock:
    enabled: bool = False
    url: str = ""
    username: str = "SnapRuntime Bot"
    message_template: str = ""
    timeout_s: float = 10.0


@dataclass
class LoadedConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    obs: ObsConfigBlock = field(default_factory=ObsConfigBlock)
    capture: CaptureConfigBlock = field(default_factory=CaptureConfigBlock)
    chat: ChatConfigBlock = field(default_factory=ChatConfigBlock)
    throttle: ThrottleConfigBlock = field(default_factory=ThrottleConfigBlock)
    overlay: OverlayConfigBlock = field(default_factory=OverlayConfigBlock)
    webhook: WebhookConfigBlock = field(default_factory=WebhookConfigBlock)
    paths: Dict[str, str] = field(default_factory=dict)


__all__ = [
    "ConfigError",
    "RuntimeConfig",
    "ObsConfigBlock",
    "CaptureConfigBlock",
    "PermissionsConfigBlock",
    "ChatConfigBlock",
    "ThrottleConfigBlock",
    "OverlayConfigBlock",
    "WebhookConfigBlock",
    "LoadedConfig",
]
