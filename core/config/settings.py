"""Frozen per-invocation settings snapshot resolved from LoadedConfig.

A pipeline run reads only its snapshot, so a config swap while a capture is
in flight never mixes old and new values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from trigger.permissions import Policy

from .schema import LoadedConfig


@dataclass(frozen=True)
class ConnectionInfo:
    host: str = "localhost"
    port: int = 4455
    password: str = ""
    connect_timeout_s: float = 5.0
    request_timeout_s: float = 10.0

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"


@dataclass(frozen=True)
class OutputDirPolicy:
    data_dir: str = "data"
    save_screenshots: bool = False
    output_dir: str = ""


@dataclass(frozen=True)
class CaptureSettings:
    source: str = ""
    width: int = 0
    height: int = 0
    native_size: bool = False
    image_format: str = "png"


@dataclass(frozen=True)
class ThrottleSettings:
    max_triggers: int = 3
    window_ms: float = 10_000.0
    retention_ms: float = 60_000.0


@dataclass(frozen=True)
class OverlaySettings:
    enabled: bool = True
    animation_delay_ms: int = 5000
    animation_direction: str = "left"


@dataclass(frozen=True)
class WebhookSettings:
    enabled: bool = False
    url: str = ""
    username: str = "SnapRuntime Bot"
    message_template: str = ""
    timeout_s: float = 10.0


@dataclass(frozen=True)
class PipelineSettings:
    connection: ConnectionInfo = field(default_factory=ConnectionInfo)
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    output_dir: OutputDirPolicy = field(default_factory=OutputDirPolicy)
    command: str = "!shot"
    policy: Policy = field(default_factory=Policy)
    throttle: ThrottleSettings = field(default_factory=ThrottleSettings)
    overlay: OverlaySettings = field(default_factory=OverlaySettings)
    webhook: WebhookSettings = field(default_factory=WebhookSettings)


def build_pipeline_settings(cfg: LoadedConfig) -> PipelineSettings:
    perms = cfg.chat.permissions
    return PipelineSettings(
        connection=ConnectionInfo(
            host=str(cfg.obs.host),
            port=int(cfg.obs.port),
            password=str(cfg.obs.password or ""),
            connect_timeout_s=float(cfg.obs.connect_timeout_s),
            request_timeout_s=float(cfg.obs.request_timeout_s),
        ),
        capture=CaptureSettings(
            source=str(cfg.capture.source or "").strip(),
            width=int(cfg.capture.width or 0),
            height=int(cfg.capture.height or 0),
            native_size=bool(cfg.capture.native_size),
            image_format=str(cfg.capture.image_format or "png").lower(),
        ),
        output_dir=OutputDirPolicy(
            data_dir=os.path.abspath(str(cfg.runtime.data_dir or "data")),
            save_screenshots=bool(cfg.capture.save_screenshots),
            output_dir=str(cfg.capture.output_dir or ""),
        ),
        command=str(cfg.chat.command or ""),
        policy=Policy(
            everyone=bool(perms.everyone),
            broadcaster=bool(perms.broadcaster),
            moderator=bool(perms.moderator),
            vip=bool(perms.vip),
            subscriber=bool(perms.subscriber),
        ),
        throttle=ThrottleSettings(
            max_triggers=int(cfg.throttle.max_triggers),
            window_ms=float(cfg.throttle.window_ms),
            retention_ms=float(cfg.throttle.retention_ms),
        ),
        overlay=OverlaySettings(
            enabled=bool(cfg.overlay.enabled),
            animation_delay_ms=int(cfg.overlay.animation_delay_ms),
            animation_direction=str(cfg.overlay.animation_direction),
        ),
        webhook=WebhookSettings(
            enabled=bool(cfg.webhook.enabled),
            url=str(cfg.webhook.url or "").strip(),
            username=str(cfg.webhook.username or "") or "SnapRuntime Bot",
            message_template=str(cfg.webhook.message_template or ""),
            timeout_s=float(cfg.webhook.timeout_s),
        ),
    )


__all__ = [
    "ConnectionInfo",
    "OutputDirPolicy",
    "CaptureSettings",
    "ThrottleSettings",
    "OverlaySettings",
    "WebhookSettings",
    "PipelineSettings",
    "build_pipeline_settings",
]
