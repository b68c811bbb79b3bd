"""Data contracts for trigger, capture, and notification channels."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union

DEFAULT_CAPTURE_WIDTH = 1280
DEFAULT_CAPTURE_HEIGHT = 720


class Role(str, enum.Enum):
    SUBSCRIBER = "subscriber"
    VIP = "vip"
    MODERATOR = "moderator"
    BROADCASTER = "broadcaster"


class FailureReason(str, enum.Enum):
    CONNECTION_ERROR = "connection-error"
    CAPTURE_REQUEST_ERROR = "capture-request-error"
    PERSISTENCE_ERROR = "persistence-error"


@dataclass(slots=True)
class TriggerEvent:
    requester_id: str = ""
    requester_roles: frozenset[Role] = frozenset()
    raw_text: str = ""
    received_at: datetime | None = None
    channel: str = ""


@dataclass(frozen=True, slots=True)
class CaptureRequest:
    source_name: str
    width: int = DEFAULT_CAPTURE_WIDTH
    height: int = DEFAULT_CAPTURE_HEIGHT
    requested_at: datetime | None = None
    image_format: str = "png"

    @classmethod
    def build(
        cls,
        source_name: str,
        width: int | None = None,
        height: int | None = None,
        *,
        image_format: str = "png",
    ) -> "CaptureRequest":
        """Unset (None/0) dimensions fall back to 1280x720."""
        return cls(
            source_name=source_name,
            width=int(width or DEFAULT_CAPTURE_WIDTH),
            height=int(height or DEFAULT_CAPTURE_HEIGHT),
            requested_at=datetime.now(timezone.utc),
            image_format=image_format,
        )

    @classmethod
    def native(cls, source_name: str, *, image_format: str = "png") -> "CaptureRequest":
        """0x0 asks the remote host for the source's own resolution."""
        return cls(
            source_name=source_name,
            width=0,
            height=0,
            requested_at=datetime.now(timezone.utc),
            image_format=image_format,
        )

    @property
    def is_native(self) -> bool:
        return self.width == 0 and self.height == 0


@dataclass(slots=True)
class CaptureSuccess:
    image_path: str
    image_bytes: bytes | None
    captured_at: datetime
    width: int = 0
    height: int = 0

    @property
    def success(self) -> bool:
        return True

    def release(self):
        self.image_bytes = None


@dataclass(slots=True)
class CaptureFailure:
    reason: FailureReason
    message: str = ""

    @property
    def success(self) -> bool:
        return False


CaptureResult = Union[CaptureSuccess, CaptureFailure]


@dataclass(slots=True)
class NotificationOutcome:
    sink_name: str
    succeeded: bool
    error: str | None = None


@dataclass(slots=True)
class PipelineRecord:
    seq: int = 0
    origin: str = ""
    requester: str = ""
    success: bool = False
    reason: str = ""
    message: str = ""
    image_path: str = ""
    outcomes: list[NotificationOutcome] = field(default_factory=list)
    started_at: datetime | None = None
    duration_ms: float = 0.0


__all__ = [
    "DEFAULT_CAPTURE_WIDTH",
    "DEFAULT_CAPTURE_HEIGHT",
    "Role",
    "FailureReason",
    "TriggerEvent",
    "CaptureRequest",
    "CaptureSuccess",
    "CaptureFailure",
    "CaptureResult",
    "NotificationOutcome",
    "PipelineRecord",
]
