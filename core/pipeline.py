"""Capture pipeline: one snapshot request, its fanout, and its history record."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from datetime import datetime, timezone

from capture.base import BaseCaptureClient, build_capture_request
from core.config.settings import PipelineSettings
from core.contracts import CaptureResult, CaptureSuccess, PipelineRecord
from output.manager import (
    NotificationFanout,
    NotificationSink,
    ResultStore,
    summarize_outcomes,
)
from output.overlay import BroadcastChannel, OverlaySink
from output.webhook import WebhookSink

L = logging.getLogger("snap_runtime.pipeline")

ORIGIN_CHAT = "chat"
ORIGIN_MANUAL = "manual"


def build_sinks(
    settings: PipelineSettings, channel: BroadcastChannel
) -> list[NotificationSink]:
    sinks: list[NotificationSink] = []
    if settings.overlay.enabled:
        sinks.append(OverlaySink(channel, settings.overlay))
    if settings.webhook.enabled and settings.webhook.url:
        sinks.append(WebhookSink(settings.webhook))
    return sinks


class CapturePipeline:
    """Run capture then fanout for one trigger, using one settings snapshot.

    Pipelines may overlap; `max_concurrent > 0` bounds how many remote
    captures are in flight at once.
    """

    def __init__(
        self,
        client: BaseCaptureClient,
        fanout: NotificationFanout,
        channel: BroadcastChannel,
        store: ResultStore | None = None,
        *,
        max_concurrent: int = 0,
    ):
        self.client = client
        self.fanout = fanout
        self.channel = channel
        self.store = store
        self._seq = itertools.count(1)
        self._limit = (
            asyncio.Semaphore(int(max_concurrent)) if int(max_concurrent) > 0 else None
        )

    async def run(
        self,
        settings: PipelineSettings,
        *,
        origin: str = ORIGIN_CHAT,
        requester: str = "",
    ) -> CaptureResult:
        seq = next(self._seq)
        started_at = datetime.now(timezone.utc)
        t0 = time.perf_counter()
        request = build_capture_request(settings.capture)
        L.info(
            "Pipeline #%d (%s%s) capturing source=%r size=%s",
            seq,
            origin,
            f" by {requester}" if requester else "",
            request.source_name,
            "native" if request.is_native else f"{request.width}x{request.height}",
        )
        result = await self._capture(request, settings)
        outcomes = await self.fanout.publish(result, build_sinks(settings, self.channel))
        duration_ms = (time.perf_counter() - t0) * 1000
        if isinstance(result, CaptureSuccess):
            L.info(
                "Pipeline #%d done in %.1fms sinks=%s",
                seq,
                duration_ms,
                summarize_outcomes(outcomes),
            )
            rec = PipelineRecord(
                seq=seq,
                origin=origin,
                requester=requester,
                success=True,
                image_path=result.image_path,
                outcomes=outcomes,
                started_at=started_at,
                duration_ms=duration_ms,
            )
            result.release()
        else:
            L.warning(
                "Pipeline #%d failed in %.1fms: %s (%s)",
                seq,
                duration_ms,
                result.reason.value,
                result.message,
            )
            rec = PipelineRecord(
                seq=seq,
                origin=origin,
                requester=requester,
                success=False,
                reason=result.reason.value,
                message=result.message,
                started_at=started_at,
                duration_ms=duration_ms,
            )
        if self.store is not None:
            self.store.submit(rec)
        return result

    async def manual_capture(self, settings: PipelineSettings) -> CaptureResult:
        return await self.run(settings, origin=ORIGIN_MANUAL)

    async def _capture(self, request, settings: PipelineSettings) -> CaptureResult:
        if self._limit is None:
            return await self.client.capture(
                request, settings.connection, output_policy=settings.output_dir
            )
        async with self._limit:
            return await self.client.capture(
                request, settings.connection, output_policy=settings.output_dir
            )


__all__ = ["CapturePipeline", "ORIGIN_CHAT", "ORIGIN_MANUAL", "build_sinks"]
