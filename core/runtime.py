"""Core runtime: AppContext (pipeline entry points) and SystemRuntime supervision."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from capture.base import BaseCaptureClient
from core.config.settings import PipelineSettings
from core.contracts import CaptureResult, TriggerEvent
from core.lifecycle import AsyncTaskOwner, LoopRunner
from core.pipeline import ORIGIN_CHAT, CapturePipeline
from output.overlay import EVENT_TEST_ANIMATION, BroadcastChannel, test_animation_payload
from trigger.base import ChatMessage
from trigger.gateway import TriggerGate

if TYPE_CHECKING:  # pragma: no cover
    from output.manager import ResultStore
    from output.overlay import OverlayServer

L = logging.getLogger("snap_runtime.runtime")


class TriggerHandle(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def raise_if_failed(self) -> None: ...


class AppContext:
    """Shared state behind chat triggers and the overlay HTTP endpoints.

    Every pipeline reads the settings snapshot current at trigger time;
    `update_settings` only affects pipelines started afterwards.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        *,
        client: BaseCaptureClient,
        pipeline: CapturePipeline,
        channel: BroadcastChannel,
        results: "ResultStore",
        loop_runner: LoopRunner,
        clock_ms: Callable[[], float] | None = None,
    ):
        self._settings = settings
        self.client = client
        self.pipeline = pipeline
        self._channel = channel
        self._results = results
        self.gate = TriggerGate(
            self._dispatch,
            retention_ms=settings.throttle.retention_ms,
            clock_ms=clock_ms,
        )
        self._tasks = AsyncTaskOwner(loop_runner=loop_runner, owner_name="pipeline")

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    def update_settings(self, settings: PipelineSettings):
        self._settings = settings
        L.info("Pipeline settings updated")

    @property
    def channel(self) -> BroadcastChannel:
        return self._channel

    @property
    def results(self) -> "ResultStore":
        return self._results

    @property
    def pending_pipelines(self) -> int:
        return self._tasks.pending

    def on_chat_message(self, msg: ChatMessage) -> bool:
        if msg.is_self:
            return False
        event = TriggerEvent(
            requester_id=msg.requester_id,
            requester_roles=msg.requester_roles,
            raw_text=msg.text,
            received_at=datetime.now(timezone.utc),
            channel=msg.channel,
        )
        return self.gate.on_trigger(event, self._settings)

    def _dispatch(self, event: TriggerEvent, settings: PipelineSettings):
        self._tasks.spawn(self._run_pipeline(settings, event.requester_id))

    async def _run_pipeline(self, settings: PipelineSettings, requester: str):
        try:
            await self.pipeline.run(settings, origin=ORIGIN_CHAT, requester=requester)
        except Exception:
            L.exception("Pipeline crashed for requester %s", requester or "?")

    async def manual_capture(self) -> CaptureResult:
        return await self.pipeline.manual_capture(self._settings)

    async def test_animation(self) -> int:
        payload = test_animation_payload(self._settings.overlay)
        listeners = self._channel.publish(EVENT_TEST_ANIMATION, payload)
        L.info("Test animation sent to %d overlay listener(s)", listeners)
        return listeners

    async def list_sources(self) -> dict:
        return await self.client.list_sources(self._settings.connection)

    def cancel_pending(self):
        self._tasks.cancel_and_clear_local_tasks()


class SystemRuntime:
    """Coordinates chat triggers, the overlay server, and the shared loop."""

    def __init__(
        self,
        app_context: AppContext,
        loop_runner: LoopRunner,
        overlay_server: Optional["OverlayServer"] = None,
    ):
        self.app_context = app_context
        self.loop_runner = loop_runner
        self.overlay_server = overlay_server
        self.triggers: list[TriggerHandle] = []

        self._stop_evt = threading.Event()
        self._started = False
        self._stopped = False

    def on_chat_message(self, msg: ChatMessage) -> bool:
        return self.app_context.on_chat_message(msg)

    def manual_capture(self, timeout: float | None = 30.0) -> CaptureResult:
        """Run one pipeline outside the gate and wait for its result."""
        return self.loop_runner.run_async(
            self.app_context.manual_capture(), timeout=timeout
        )

    def list_sources(self, timeout: float | None = 30.0) -> dict:
        return self.loop_runner.run_async(
            self.app_context.list_sources(), timeout=timeout
        )

    def start(self, triggers: Optional[list[TriggerHandle]] = None):
        if self._started:
            raise RuntimeError(
                "SystemRuntime is single-use; start() may only be called once"
            )
        if self._stopped:
            raise RuntimeError("SystemRuntime is stopped and cannot be started again")
        self._started = True
        self.triggers = list(triggers or [])
        try:
            if self.overlay_server is not None:
                self.overlay_server.start()
            for t in list(self.triggers):
                t.start()
        except Exception:
            L.exception("Runtime start failed; rolling back partial startup")
            try:
                self.stop()
            except Exception:
                L.exception("Runtime rollback stop failed")
            raise

    def request_stop(self):
        self._stop_evt.set()

    def run(self, runtime_limit_s: float | None = None):
        if not self._started:
            raise RuntimeError("SystemRuntime.run() requires start() first")
        start_ts = time.perf_counter()
        try:
            while not self._stop_evt.wait(0.1):
                for trig in self.triggers:
                    trig.raise_if_failed()
                if self.overlay_server is not None:
                    self.overlay_server.raise_if_failed()
                if (
                    runtime_limit_s is not None
                    and (time.perf_counter() - start_ts) >= runtime_limit_s
                ):
                    L.info(
                        "Runtime limit reached (%ss); shutting down service",
                        runtime_limit_s,
                    )
                    self.request_stop()
        finally:
            self.stop()

    def stop(self):
        if self._stopped:
            return
        self._stopped = True
        stop_t0 = time.perf_counter()
        stage_t0 = stop_t0

        def _log_stage(name: str):
            nonlocal stage_t0
            now = time.perf_counter()
            L.debug("Shutdown stage=%s elapsed=%.1fms", name, (now - stage_t0) * 1000)
            stage_t0 = now

        def _run_stage(name: str, fn: Callable[[], None]):
            try:
                fn()
            except Exception:
                L.exception("Shutdown stage failed: %s", name)
            finally:
                _log_stage(name)

        def _stop_triggers():
            for t in list(self.triggers):
                try:
                    t.stop()
                except Exception:
                    L.exception("Trigger stop failed: %r", t)

        def _stop_overlay():
            if self.overlay_server is not None:
                self.overlay_server.stop()

        _run_stage("triggers", _stop_triggers)
        _run_stage("overlay_server", _stop_overlay)
        _run_stage("pending_pipelines", self.app_context.cancel_pending)
        _run_stage("async_loop", self.loop_runner.shutdown_loop)
        _run_stage("result_store", self.app_context.results.stop)
        L.debug(
            "Shutdown stage=total elapsed=%.1fms",
            (time.perf_counter() - stop_t0) * 1000,
        )


__all__ = ["AppContext", "SystemRuntime", "TriggerHandle"]
