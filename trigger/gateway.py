import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable

from core.contracts import TriggerEvent
from trigger.permissions import evaluate
from trigger.rate_limit import RateLimiter

if TYPE_CHECKING:  # pragma: no cover
    from core.config.settings import PipelineSettings

L = logging.getLogger("snap_runtime.gateway")

COMMAND_PREFIX = "!"


def normalize_command(text: str | None) -> str:
    """First whitespace-delimited token with leading command prefixes removed."""
    parts = str(text or "").split(maxsplit=1)
    if not parts:
        return ""
    return parts[0].lstrip(COMMAND_PREFIX).casefold()


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class TriggerGate:
    """Decide whether a chat trigger starts a capture pipeline.

    Throttling is global (one RateLimiter for every requester). The read and
    record of the limiter happen under one lock so near-simultaneous triggers
    never both see the same count. Retention follows each trigger's settings.
    Capture pipelines themselves are not serialized here.
    """

    def __init__(
        self,
        dispatch: Callable[[TriggerEvent, "PipelineSettings"], Any],
        *,
        retention_ms: float = 60_000.0,
        clock_ms: Callable[[], float] | None = None,
    ):
        self.dispatch = dispatch
        self.limiter = RateLimiter(retention_ms=retention_ms)
        self._clock_ms = clock_ms or _monotonic_ms
        self._lock = threading.Lock()

    def on_trigger(self, event: TriggerEvent, settings: "PipelineSettings") -> bool:
        """Return True when a pipeline was dispatched for this event."""
        command = normalize_command(settings.command)
        token = normalize_command(event.raw_text)
        if not command or token != command:
            return False

        throttle = settings.throttle
        requester = event.requester_id or "?"
        with self._lock:
            self.limiter.set_retention(throttle.retention_ms)
            now = self._clock_ms()
            recent = self.limiter.count_within(now, throttle.window_ms)
            if recent >= throttle.max_triggers:
                L.info(
                    "Throttling %s%s from %s: %d triggers in last %.0fms",
                    COMMAND_PREFIX,
                    command,
                    requester,
                    recent,
                    throttle.window_ms,
                )
                return False
            self.limiter.record(now)

        roles = sorted(r.value for r in event.requester_roles)
        if not evaluate(settings.policy, event.requester_roles):
            L.info(
                "Permission denied for %s%s from %s (roles=%s)",
                COMMAND_PREFIX,
                command,
                requester,
                ",".join(roles) or "none",
            )
            return False

        L.info(
            "Chat command %s%s triggered by %s (roles=%s)",
            COMMAND_PREFIX,
            command,
            requester,
            ",".join(roles) or "none",
        )
        self.dispatch(event, settings)
        return True

    def reset(self):
        with self._lock:
            self.limiter.reset()


__all__ = ["COMMAND_PREFIX", "TriggerGate", "normalize_command"]
