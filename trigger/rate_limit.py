"""Sliding-window trigger counter."""

from __future__ import annotations

from collections import deque


class RateLimiter:
    """Ordered timestamps (ms) of accepted triggers for one scope.

    Not synchronized; callers serialize the read-then-record sequence.
    """

    def __init__(self, retention_ms: float = 60_000.0):
        self.set_retention(retention_ms)
        self._window: deque[float] = deque()

    def set_retention(self, retention_ms: float) -> None:
        self.retention_ms = max(float(retention_ms), 0.0)

    def record(self, now_ms: float) -> None:
        self._prune(now_ms, self.retention_ms)
        self._window.append(float(now_ms))

    def count_within(self, now_ms: float, window_ms: float) -> int:
        self._prune(now_ms, max(float(window_ms), self.retention_ms))
        cutoff = now_ms - window_ms
        return sum(1 for ts in self._window if ts > cutoff)

    def reset(self) -> None:
        self._window.clear()

    def __len__(self) -> int:
        return len(self._window)

    def _prune(self, now_ms: float, keep_ms: float) -> None:
        cutoff = now_ms - keep_ms
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()


__all__ = ["RateLimiter"]
