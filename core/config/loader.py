"""YAML loader and section builders for runtime configuration."""

from __future__ import annotations

import glob
import os
from typing import Any

import yaml

from .schema import (
    CaptureConfigBlock,
    ChatConfigBlock,
    ConfigError,
    LoadedConfig,
    ObsConfigBlock,
    OverlayConfigBlock,
    PermissionsConfigBlock,
    RuntimeConfig,
    ThrottleConfigBlock,
    WebhookConfigBlock,
)

_FLAT_SECTIONS = {
    "runtime": RuntimeConfig,
    "obs": ObsConfigBlock,
    "capture": CaptureConfigBlock,
    "throttle": ThrottleConfigBlock,
    "overlay": OverlayConfigBlock,
    "webhook": WebhookConfigBlock,
}


def load_config(config_dir: str = "config") -> LoadedConfig:
    main_path = _find_main_config(config_dir)
    return load_config_file(main_path)


def load_config_file(main_path: str) -> LoadedConfig:
    main_data = _read_yaml(main_path)
    _validate_allowed_keys(
        main_data, set(_FLAT_SECTIONS) | {"chat"}, "<root>", main_path
    )
    cfg = LoadedConfig(paths={"main": main_path})
    for section, cls in _FLAT_SECTIONS.items():
        block = _section(main_data, section, main_path)
        if block is not None:
            setattr(cfg, section, _build_dataclass(cls, block, main_path, section))
    cfg.chat = _build_chat_config(_section(main_data, "chat", main_path), main_path)
    return cfg


def _find_main_config(config_dir: str) -> str:
    patterns = [
        os.path.join(config_dir, "main_*.yaml"),
        os.path.join(config_dir, "main_*.yml"),
    ]
    candidates: list[str] = []
    for pattern in patterns:
        candidates.extend(glob.glob(pattern))
    if len(candidates) == 0:
        raise ConfigError(f"No main_*.yaml found under {config_dir}")
    if len(candidates) > 1:
        raise ConfigError(
            f"Expected exactly one main_*.yaml, found: {', '.join(sorted(candidates))}"
        )
    return candidates[0]


def _read_yaml(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"YAML root must be a mapping: {path}")
    return data


def _section(data: dict[str, Any], name: str, main_path: str) -> dict[str, Any] | None:
    block = data.get(name)
    if block is None:
        return None
    if not isinstance(block, dict):
        raise ConfigError(f"'{name}' must be a mapping in {main_path}")
    return block


def _build_dataclass(cls, data: dict[str, Any], main_path: str, section: str):
    obj = cls()
    fields = cls.__dataclass_fields__
    for k, v in (data or {}).items():
        if k in fields:
            setattr(obj, k, v)
        else:
            raise ConfigError(f"Unknown field {section}.{k} in {main_path}")
    return obj


def _validate_allowed_keys(
    data: dict[str, Any], allowed_keys: set[str], section: str, main_path: str
) -> None:
    for key in data.keys():
        if key not in allowed_keys:
            raise ConfigError(f"Unknown field {section}.{key} in {main_path}")


def _build_chat_config(data: dict[str, Any] | None, main_path: str) -> ChatConfigBlock:
    if data is None:
        return ChatConfigBlock()
    scalars = {k: v for k, v in data.items() if k != "permissions"}
    cfg = _build_dataclass(ChatConfigBlock, scalars, main_path, "chat")
    perms = data.get("permissions")
    if perms is not None:
        if not isinstance(perms, dict):
            raise ConfigError(f"'chat.permissions' must be a mapping in {main_path}")
        cfg.permissions = _build_dataclass(
            PermissionsConfigBlock, perms, main_path, "chat.permissions"
        )
    return cfg


__all__ = ["load_config", "load_config_file"]
