# -- coding: utf-8 --
"""Capture client for OBS Studio via simpleobsws (obs-websocket protocol v5)."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

import simpleobsws
from websockets.exceptions import WebSocketException

from capture.base import (
    BaseCaptureClient,
    CaptureError,
    CaptureRequestError,
    RemoteConnectionError,
    register_capture_client,
)
from core.config.settings import ConnectionInfo
from core.contracts import CaptureRequest

L = logging.getLogger("snap_runtime.capture.obs")


class ObsSession:
    """An identified obs-websocket connection; valid inside one capture call."""

    def __init__(self, ws: simpleobsws.WebSocketClient, request_timeout_s: float):
        self.ws = ws
        self.request_timeout_s = request_timeout_s

    async def call(self, request_type: str, data: dict[str, Any] | None = None) -> dict:
        try:
            response = await self.ws.call(
                simpleobsws.Request(request_type, data),
                timeout=self.request_timeout_s,
            )
        except simpleobsws.MessageTimeout as e:
            raise CaptureRequestError(
                f"{request_type} timed out after {self.request_timeout_s:g}s"
            ) from e
        except simpleobsws.NotIdentifiedError as e:
            raise RemoteConnectionError(f"{request_type} sent on a lost session") from e
        except (WebSocketException, OSError) as e:
            raise CaptureRequestError(f"{request_type} failed: {e}") from e

        if not response.ok():
            status = response.requestStatus
            raise CaptureRequestError(
                f"{request_type} rejected (code={status.code}): "
                f"{status.comment or 'no comment'}"
            )
        data = response.responseData
        return data if isinstance(data, dict) else {}


@register_capture_client("obs")
class ObsCaptureClient(BaseCaptureClient):
    @asynccontextmanager
    async def session(self, info: ConnectionInfo):
        """Connect and identify; the connection is closed on every exit path."""
        self._open_sessions += 1
        ws = simpleobsws.WebSocketClient(
            url=info.url,
            password=info.password,
            identification_parameters=simpleobsws.IdentificationParameters(
                eventSubscriptions=0
            ),
        )
        try:
            L.debug("Connecting to OBS at %s", info.url)
            try:
                await asyncio.wait_for(ws.connect(), timeout=info.connect_timeout_s)
            except asyncio.TimeoutError as e:
                raise RemoteConnectionError(
                    f"connect to {info.url} timed out after {info.connect_timeout_s:g}s"
                ) from e
            except (WebSocketException, OSError) as e:
                raise RemoteConnectionError(f"cannot connect to {info.url}: {e}") from e
            if not await ws.wait_until_identified(timeout=info.connect_timeout_s):
                raise RemoteConnectionError(
                    f"not identified by {info.url} (authentication failed or "
                    "host rejected the handshake)"
                )
            yield ObsSession(ws, info.request_timeout_s)
        finally:
            try:
                await ws.disconnect()
            except (WebSocketException, OSError) as e:
                L.debug("OBS disconnect error ignored: %s", e)
            finally:
                self._open_sessions -= 1

    async def _capture_to(
        self,
        request: CaptureRequest,
        connection_info: ConnectionInfo,
        dest_path: str,
    ) -> None:
        async with self.session(connection_info) as obs:
            if not request.source_name:
                raise CaptureRequestError("No capture source specified")
            data: dict[str, Any] = {
                "sourceName": request.source_name,
                "imageFormat": request.image_format,
                "imageFilePath": dest_path,
            }
            if not request.is_native:
                data["imageWidth"] = request.width
                data["imageHeight"] = request.height
            L.debug("SaveSourceScreenshot %s", data)
            await obs.call("SaveSourceScreenshot", data)

    async def list_sources(self, connection_info: ConnectionInfo) -> dict:
        async with self.session(connection_info) as obs:
            scenes = _objects((await obs.call("GetSceneList")).get("scenes"))
            inputs = _objects((await obs.call("GetInputList")).get("inputs"))
            sources: list[dict[str, Any]] = []
            for scene in scenes:
                scene_name = scene.get("sceneName")
                try:
                    items = _objects(
                        (
                            await obs.call("GetSceneItemList", {"sceneName": scene_name})
                        ).get("sceneItems")
                    )
                except CaptureError as e:
                    L.warning("Cannot list items of scene %r: %s", scene_name, e)
                    continue
                for item in items:
                    sources.append(
                        {
                            "name": item.get("sourceName"),
                            "type": item.get("sourceType"),
                            "scene": scene_name,
                        }
                    )
            known = {s["name"] for s in sources}
            for inp in inputs:
                if inp.get("inputName") in known:
                    continue
                sources.append(
                    {
                        "name": inp.get("inputName"),
                        "type": "OBS_SOURCE_TYPE_INPUT",
                        "inputKind": inp.get("inputKind"),
                    }
                )
        L.info("Found %d scenes and %d sources", len(scenes), len(sources))
        return {"scenes": scenes, "sources": sources}


def _objects(value) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


__all__ = ["ObsCaptureClient", "ObsSession"]
