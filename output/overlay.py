# -- coding: utf-8 --
from __future__ import annotations

import asyncio
import base64
import contextlib
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Protocol

from aiohttp import web

from capture.base import CaptureError
from capture.test_pattern import encode_image, render_test_pattern
from core.config.settings import OverlaySettings
from core.contracts import CaptureResult, CaptureSuccess, PipelineRecord
from core.lifecycle import LoopRunner, run_async_cleanup

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from output.manager import ResultStore

L = logging.getLogger("snap_runtime.output.overlay")

EVENT_NEW_SNAPSHOT = "newSnapshot"
EVENT_TEST_ANIMATION = "testAnimation"
TEST_IMAGE_WIDTH = 800
TEST_IMAGE_HEIGHT = 600


class BroadcastChannel:
    """One-way publish/subscribe channel to connected overlay listeners.

    `publish` only enqueues; it never waits for a listener. Must be used from
    the event loop thread.
    """

    def __init__(self, max_pending: int = 8):
        self.max_pending = max(int(max_pending), 1)
        self._subscribers: set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self.max_pending)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: asyncio.Queue):
        self._subscribers.discard(q)

    @property
    def listener_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: str, data: dict[str, Any]) -> int:
        msg = {"event": event, "data": data}
        delivered = 0
        for q in list(self._subscribers):
            if q.full():
                # Slow listener: keep the newest snapshots.
                with contextlib.suppress(asyncio.QueueEmpty):
                    q.get_nowait()
            q.put_nowait(msg)
            delivered += 1
        return delivered


def _display_time(dt: datetime | None) -> str:
    ref = dt or datetime.now(timezone.utc)
    return ref.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def snapshot_payload(result: CaptureSuccess, settings: OverlaySettings) -> dict[str, Any]:
    return {
        "imageData": base64.b64encode(result.image_bytes or b"").decode("ascii"),
        "animationDelay": int(settings.animation_delay_ms),
        "animationDirection": settings.animation_direction,
        "timestamp": _display_time(result.captured_at),
    }


def test_animation_payload(
    settings: OverlaySettings,
    width: int = TEST_IMAGE_WIDTH,
    height: int = TEST_IMAGE_HEIGHT,
) -> dict[str, Any]:
    img = render_test_pattern(width, height, stamp=datetime.now())
    return {
        "imageData": base64.b64encode(encode_image(img, ".png")).decode("ascii"),
        "animationDelay": int(settings.animation_delay_ms),
        "animationDirection": settings.animation_direction,
    }


class OverlaySink:
    name = "overlay"

    def __init__(self, channel: BroadcastChannel, settings: OverlaySettings):
        self.channel = channel
        self.settings = settings

    async def send(self, result: CaptureSuccess) -> None:
        listeners = self.channel.publish(
            EVENT_NEW_SNAPSHOT, snapshot_payload(result, self.settings)
        )
        L.info("Snapshot pushed to %d overlay listener(s)", listeners)


class OverlayContext(Protocol):
    @property
    def channel(self) -> BroadcastChannel: ...

    @property
    def results(self) -> "ResultStore": ...

    async def manual_capture(self) -> CaptureResult: ...

    async def test_animation(self) -> int: ...

    async def list_sources(self) -> dict: ...


def _serialize_record(rec: PipelineRecord) -> dict[str, Any]:
    return {
        "seq": rec.seq,
        "origin": rec.origin,
        "requester": rec.requester,
        "success": rec.success,
        "reason": rec.reason,
        "image_path": rec.image_path,
        "duration_ms": round(float(rec.duration_ms or 0.0), 3),
        "started_at": rec.started_at.isoformat() if rec.started_at else None,
        "sinks": {o.sink_name: o.succeeded for o in rec.outcomes},
    }


def _serialize_capture(result: CaptureResult) -> dict[str, Any]:
    if isinstance(result, CaptureSuccess):
        return {"success": True, "imagePath": result.image_path}
    return {
        "success": False,
        "reason": result.reason.value,
        "error": result.message,
    }


class OverlayServer:
    """aiohttp service: overlay websocket plus manual capture endpoints."""

    def __init__(
        self,
        host: str,
        port: int,
        context: OverlayContext,
        *,
        loop_runner: LoopRunner,
    ):
        self.host = host
        self.port = port
        self.context = context
        self.app = web.Application()
        self._setup_routes()
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started = False
        self._loop_runner = loop_runner

    def _setup_routes(self):
        app = self.app
        ctx = self.context

        async def websocket(request):
            ws = web.WebSocketResponse(heartbeat=30.0)
            await ws.prepare(request)
            q = ctx.channel.subscribe()
            L.info("Overlay listener connected: %s", request.remote)
            sender = asyncio.create_task(_pump(ws, q))
            try:
                async for _msg in ws:
                    # Listeners do not talk back; drain control frames only.
                    pass
            finally:
                ctx.channel.unsubscribe(q)
                sender.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sender
                L.info("Overlay listener disconnected: %s", request.remote)
            return ws

        async def capture(_request):
            result = await ctx.manual_capture()
            status = 200 if result.success else 502
            return web.json_response(_serialize_capture(result), status=status)

        async def test_animation(_request):
            listeners = await ctx.test_animation()
            return web.json_response({"success": True, "listeners": listeners})

        async def status(_request):
            store = ctx.results
            return web.json_response(
                {
                    "records": [_serialize_record(r) for r in store.latest_records],
                    "stats": store.stats(),
                    "max_records": store.max_records,
                    "listeners": ctx.channel.listener_count,
                }
            )

        async def sources(_request):
            try:
                data = await ctx.list_sources()
            except CaptureError as e:
                return web.json_response(
                    {"error": str(e), "reason": e.reason.value}, status=502
                )
            return web.json_response(data)

        app.router.add_get("/ws", websocket)
        app.router.add_post("/capture", capture)
        app.router.add_post("/test-animation", test_animation)
        app.router.add_get("/status", status)
        app.router.add_get("/sources", sources)

    def start(self):
        if self._started:
            return
        try:
            self._loop_runner.run_async(self._serve(), timeout=2.0)
        except Exception:
            self.stop()
            raise
        self._started = True

    async def _serve(self):
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        L.info("Overlay server listening on http://%s:%d", self.host, self.port)

    def stop(self):
        async def _cleanup():
            if self._runner:
                await self._runner.cleanup()
            self._runner = None
            self._site = None

        run_async_cleanup(_cleanup(), timeout=1.0, loop_runner=self._loop_runner)
        self._started = False
        L.info("Overlay server stopped")

    def raise_if_failed(self):
        if not self._started:
            return
        if self._runner is None or self._site is None:
            raise RuntimeError("Overlay server stopped unexpectedly")
        server = getattr(self._site, "_server", None)
        is_serving = getattr(server, "is_serving", None)
        if callable(is_serving) and not bool(is_serving()):
            raise RuntimeError("Overlay server is not serving")


async def _pump(ws: web.WebSocketResponse, q: asyncio.Queue):
    while not ws.closed:
        msg = await q.get()
        try:
            await ws.send_json(msg)
        except ConnectionResetError:
            return


__all__ = [
    "BroadcastChannel",
    "EVENT_NEW_SNAPSHOT",
    "EVENT_TEST_ANIMATION",
    "OverlayContext",
    "OverlayServer",
    "OverlaySink",
    "snapshot_payload",
    "test_animation_payload",
]
