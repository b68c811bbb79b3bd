from .base import (
    BaseTrigger,
    ChatMessage,
    ChatTriggerConfig,
    build_chat_trigger_config,
    create_trigger,
    register_trigger,
)
from .gateway import TriggerGate, normalize_command
from .permissions import Policy, evaluate, roles_from_badges
from .rate_limit import RateLimiter

__all__ = [
    "BaseTrigger",
    "ChatMessage",
    "ChatTriggerConfig",
    "build_chat_trigger_config",
    "create_trigger",
    "register_trigger",
    "TriggerGate",
    "normalize_command",
    "Policy",
    "evaluate",
    "roles_from_badges",
    "RateLimiter",
]
