"""Runtime config value validation."""

from __future__ import annotations

from typing import Any

from .schema import ConfigError, LoadedConfig

_DIRECTIONS = {"left", "right", "top", "bottom"}
_IMAGE_FORMATS = {"png", "jpg", "jpeg", "bmp"}


def validate_config(cfg: LoadedConfig) -> None:
    # runtime
    _require_float("runtime.max_runtime_s", cfg.runtime.max_runtime_s, min_v=0.0)
    _require_int("runtime.history_size", cfg.runtime.history_size, min_v=1)

    # obs
    _require_str("obs.host", cfg.obs.host, non_empty=True)
    _require_port("obs.port", cfg.obs.port)
    _require_float("obs.connect_timeout_s", cfg.obs.connect_timeout_s, min_v=0.1)
    _require_float("obs.request_timeout_s", cfg.obs.request_timeout_s, min_v=0.1)

    # capture
    _require_str("capture.client", cfg.capture.client, non_empty=True)
    _require_int("capture.width", cfg.capture.width, min_v=0)
    _require_int("capture.height", cfg.capture.height, min_v=0)
    _require_int("capture.max_concurrent", cfg.capture.max_concurrent, min_v=0)
    _require_choice(
        "capture.image_format", str(cfg.capture.image_format).lower(), _IMAGE_FORMATS
    )

    # chat
    if cfg.chat.enabled:
        _require_str("chat.username", cfg.chat.username, non_empty=True)
        _require_str("chat.oauth_token", cfg.chat.oauth_token, non_empty=True)
        _require_str("chat.channel", cfg.chat.channel, non_empty=True)
        _require_port("chat.port", cfg.chat.port)
    if not str(cfg.chat.command or "").lstrip("!").strip():
        raise ConfigError("chat.command must not be empty")
    _require_float("chat.reconnect_delay_s", cfg.chat.reconnect_delay_s, min_v=0.0)

    # throttle
    _require_int("throttle.max_triggers", cfg.throttle.max_triggers, min_v=1)
    _require_float("throttle.window_ms", cfg.throttle.window_ms, min_v=1.0)
    _require_float("throttle.retention_ms", cfg.throttle.retention_ms, min_v=0.0)

    # overlay
    _require_port("overlay.port", cfg.overlay.port)
    _require_int("overlay.animation_delay_ms", cfg.overlay.animation_delay_ms, min_v=0)
    _require_choice(
        "overlay.animation_direction", cfg.overlay.animation_direction, _DIRECTIONS
    )

    # webhook
    if cfg.webhook.enabled:
        _require_str("webhook.url", cfg.webhook.url, non_empty=True)
    _require_float("webhook.timeout_s", cfg.webhook.timeout_s, min_v=0.1)


def _require_int(
    name: str, value: Any, *, min_v: int | None = None, max_v: int | None = None
) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        iv = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer") from e
    if min_v is not None and iv < min_v:
        op = ">=" if min_v != 1 else ">"
        threshold = min_v if min_v != 1 else 0
        raise ConfigError(f"{name} must be {op} {threshold}")
    if max_v is not None and iv > max_v:
        raise ConfigError(f"{name} must be <= {max_v}")
    return iv


def _require_float(
    name: str, value: Any, *, min_v: float | None = None, max_v: float | None = None
) -> float:
    try:
        fv = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number") from e
    if min_v is not None and fv < min_v:
        raise ConfigError(f"{name} must be >= {min_v:g}")
    if max_v is not None and fv > max_v:
        raise ConfigError(f"{name} must be <= {max_v:g}")
    return fv


def _require_port(name: str, value: Any) -> int:
    return _require_int(name, value, min_v=1, max_v=65535)


def _require_str(name: str, value: Any, *, non_empty: bool = False) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{name} must be a string")
    if non_empty and not value.strip():
        raise ConfigError(f"{name} must not be empty")
    return value


def _require_choice(name: str, value: Any, choices: set[str]) -> str:
    if value not in choices:
        raise ConfigError(f"{name} must be one of: {', '.join(sorted(choices))}")
    return value


__all__ = ["validate_config"]
