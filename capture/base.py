# -- coding: utf-8 --

import asyncio
import itertools
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Type

import cv2
import numpy as np

from core.config.settings import CaptureSettings, ConnectionInfo, OutputDirPolicy
from core.contracts import (
    CaptureFailure,
    CaptureRequest,
    CaptureResult,
    CaptureSuccess,
    FailureReason,
)
from core.registry import register_named, resolve_registered
from utils.path_time import format_snapshot_filename, resolve_output_dir

L = logging.getLogger("snap_runtime.capture")

CaptureClientFactory = Dict[str, Type["BaseCaptureClient"]]
_registry: CaptureClientFactory = {}


class CaptureError(Exception):
    reason = FailureReason.CAPTURE_REQUEST_ERROR


class RemoteConnectionError(CaptureError):
    reason = FailureReason.CONNECTION_ERROR


class CaptureRequestError(CaptureError):
    reason = FailureReason.CAPTURE_REQUEST_ERROR


class PersistenceError(CaptureError):
    reason = FailureReason.PERSISTENCE_ERROR


def build_capture_request(settings: CaptureSettings) -> CaptureRequest:
    if settings.native_size:
        return CaptureRequest.native(
            settings.source, image_format=settings.image_format
        )
    return CaptureRequest.build(
        settings.source,
        settings.width,
        settings.height,
        image_format=settings.image_format,
    )


def read_back_image(path: str) -> tuple[bytes, int, int]:
    """Read a persisted snapshot and return (bytes, width, height)."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise PersistenceError(f"cannot read snapshot {path}: {e}") from e
    if not data:
        raise PersistenceError(f"snapshot file is empty: {path}")
    img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise PersistenceError(f"snapshot is not a decodable image: {path}")
    height, width = img.shape[:2]
    return data, int(width), int(height)


class BaseCaptureClient(ABC):
    """Request one screenshot from a rendering host, persist it, read it back.

    Every failure is returned as CaptureFailure; `capture()` never raises and
    never retries. Filesystem work runs off the event loop.
    """

    def __init__(self, output_policy: OutputDirPolicy):
        self.output_policy = output_policy
        self._seq = itertools.count(1)
        self._open_sessions = 0

    @property
    def open_sessions(self) -> int:
        return self._open_sessions

    async def capture(
        self,
        request: CaptureRequest,
        connection_info: ConnectionInfo,
        *,
        output_policy: OutputDirPolicy | None = None,
    ) -> CaptureResult:
        policy = output_policy or self.output_policy
        try:
            dest_path = await asyncio.to_thread(self._next_dest_path, request, policy)
            await self._capture_to(request, connection_info, dest_path)
            data, width, height = await asyncio.to_thread(read_back_image, dest_path)
        except CaptureError as e:
            L.warning(
                "Capture failed source=%r reason=%s: %s",
                request.source_name,
                e.reason.value,
                e,
            )
            return CaptureFailure(reason=e.reason, message=str(e))
        except Exception as e:
            L.exception(
                "Capture failed source=%r: unexpected error", request.source_name
            )
            return CaptureFailure(
                reason=FailureReason.CAPTURE_REQUEST_ERROR,
                message=f"unexpected error: {e!r}",
            )
        L.info("Snapshot saved: %s (%dx%d)", dest_path, width, height)
        return CaptureSuccess(
            image_path=dest_path,
            image_bytes=data,
            captured_at=datetime.now(timezone.utc),
            width=width,
            height=height,
        )

    def _next_dest_path(self, request: CaptureRequest, policy: OutputDirPolicy) -> str:
        folder = resolve_output_dir(
            policy.data_dir, policy.save_screenshots, policy.output_dir
        )
        name = format_snapshot_filename(
            next(self._seq), f".{request.image_format}", ts_utc=request.requested_at
        )
        return os.path.join(folder, name)

    @abstractmethod
    async def _capture_to(
        self,
        request: CaptureRequest,
        connection_info: ConnectionInfo,
        dest_path: str,
    ) -> None:
        """Have the host write the snapshot to dest_path; raise CaptureError."""

    async def list_sources(self, connection_info: ConnectionInfo) -> dict:
        return {"scenes": [], "sources": []}


def register_capture_client(name: str):
    return register_named(_registry, name)


def create_capture_client(name: str, output_policy: OutputDirPolicy) -> BaseCaptureClient:
    cls = resolve_registered(
        _registry,
        name,
        package=__package__ or "capture",
        unknown_label="capture client",
    )
    return cls(output_policy)


__all__ = [
    "CaptureError",
    "RemoteConnectionError",
    "CaptureRequestError",
    "PersistenceError",
    "BaseCaptureClient",
    "build_capture_request",
    "read_back_image",
    "register_capture_client",
    "create_capture_client",
]
