# -- coding: utf-8 --

import asyncio
import logging
from datetime import datetime, timezone

from capture.base import (
    BaseCaptureClient,
    CaptureRequestError,
    PersistenceError,
    register_capture_client,
)
from capture.test_pattern import encode_image, render_test_pattern
from core.config.settings import ConnectionInfo
from core.contracts import CaptureRequest

L = logging.getLogger("snap_runtime.capture.mock")

NATIVE_WIDTH = 1920
NATIVE_HEIGHT = 1080


@register_capture_client("mock")
class MockCaptureClient(BaseCaptureClient):
    """Renders a labelled test pattern instead of asking a rendering host."""

    async def _capture_to(
        self,
        request: CaptureRequest,
        connection_info: ConnectionInfo,
        dest_path: str,
    ) -> None:
        _ = connection_info
        if not request.source_name:
            raise CaptureRequestError("No capture source specified")
        self._open_sessions += 1
        try:
            width = request.width or NATIVE_WIDTH
            height = request.height or NATIVE_HEIGHT
            img = render_test_pattern(
                width,
                height,
                title=request.source_name,
                stamp=request.requested_at or datetime.now(timezone.utc),
            )
            data = encode_image(img, f".{request.image_format}")
            await asyncio.to_thread(_write_file, dest_path, data)
        finally:
            self._open_sessions -= 1
        L.debug("Mock snapshot written: %s", dest_path)

    async def list_sources(self, connection_info: ConnectionInfo) -> dict:
        _ = connection_info
        return {
            "scenes": [{"sceneName": "Mock"}],
            "sources": [{"name": "Mock", "type": "OBS_SOURCE_TYPE_INPUT"}],
        }


def _write_file(path: str, data: bytes):
    try:
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise PersistenceError(f"cannot write snapshot {path}: {e}") from e


__all__ = ["MockCaptureClient"]
