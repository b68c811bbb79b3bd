# -- coding: utf-8 --
"""NotificationFanout and ResultStore: deliver snapshots and keep pipeline history."""

import asyncio
import logging
import os
import queue
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Iterable, Protocol

from core.contracts import (
    CaptureResult,
    CaptureSuccess,
    NotificationOutcome,
    PipelineRecord,
)

L = logging.getLogger("snap_runtime.output")


class SinkError(Exception):
    """A notification sink failed after a successful capture."""


class NotificationSink(Protocol):
    name: str

    async def send(self, result: CaptureSuccess) -> None: ...


class NotificationFanout:
    """Publish one capture result to independent sinks.

    Sinks run concurrently; a raising sink only fails its own outcome.
    Failed captures are never published.
    """

    async def publish(
        self, result: CaptureResult, sinks: Iterable[NotificationSink]
    ) -> list[NotificationOutcome]:
        if not isinstance(result, CaptureSuccess):
            return []
        sinks = list(sinks)
        if not sinks:
            return []
        return list(await asyncio.gather(*(self._deliver(s, result) for s in sinks)))

    async def _deliver(
        self, sink: NotificationSink, result: CaptureSuccess
    ) -> NotificationOutcome:
        name = str(getattr(sink, "name", "") or type(sink).__name__)
        try:
            await sink.send(result)
        except Exception as e:
            L.warning("Sink %s failed: %s", name, e)
            return NotificationOutcome(sink_name=name, succeeded=False, error=str(e))
        return NotificationOutcome(sink_name=name, succeeded=True)


def summarize_outcomes(outcomes: Iterable[NotificationOutcome]) -> str:
    parts = []
    for o in outcomes:
        parts.append(f"{o.sink_name}=ok" if o.succeeded else f"{o.sink_name}=fail")
    return ",".join(parts) or "none"


class ResultStore:
    _STOP_SENTINEL = None

    def __init__(self, base_dir: str, max_records: int = 20, write_csv: bool = True):
        self.base_dir = base_dir
        self.csv_root_dir = os.path.join(base_dir, "records")
        self._max_records = max_records
        self._records: deque[PipelineRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()
        self.total_count = 0
        self.ok_count = 0
        self.error_count = 0
        self.sink_failure_count = 0
        self._write_queue: queue.Queue[PipelineRecord | None] | None = (
            queue.Queue() if write_csv else None
        )
        self._writer_thread = (
            threading.Thread(target=self._writer_loop, daemon=True)
            if write_csv
            else None
        )
        if write_csv:
            os.makedirs(self.csv_root_dir, exist_ok=True)
        if self._writer_thread:
            self._writer_thread.start()

    def stop(self):
        thread = self._writer_thread
        q = self._write_queue
        if thread is None or q is None:
            return
        q.put(self._STOP_SENTINEL)
        thread.join()
        self._writer_thread = None
        self._write_queue = None

    def submit(self, rec: PipelineRecord):
        with self._lock:
            self._records.appendleft(rec)
            self.total_count += 1
            if rec.success:
                self.ok_count += 1
            else:
                self.error_count += 1
            self.sink_failure_count += sum(1 for o in rec.outcomes if not o.succeeded)
        if self._write_queue is not None:
            self._write_queue.put(rec)

    def reset(self):
        with self._lock:
            self._records.clear()
            self.total_count = 0
            self.ok_count = 0
            self.error_count = 0
            self.sink_failure_count = 0

    @property
    def latest_records(self) -> list[PipelineRecord]:
        with self._lock:
            return list(self._records)

    @property
    def max_records(self) -> int:
        return self._max_records

    def stats(self):
        with self._lock:
            total = self.total_count
            ok = self.ok_count
            err = self.error_count
            sink_fail = self.sink_failure_count
        return {
            "total": total,
            "ok": ok,
            "error": err,
            "sink_failures": sink_fail,
            "success_rate": (ok / total) if total else 0.0,
        }

    def _writer_loop(self):
        queue_ref = self._write_queue
        if queue_ref is None:
            raise RuntimeError("writer queue missing")
        while True:
            item = queue_ref.get()
            try:
                if item is None:
                    break
                self._append_csv(item)
            except OSError:
                L.exception("Failed to append pipeline record %s", item.seq)
            finally:
                queue_ref.task_done()

    def _append_csv(self, rec: PipelineRecord):
        csv_path = self._csv_path_for_record(rec)
        write_header = not os.path.exists(csv_path)
        t_date, t_time = _fmt_date_time(rec.started_at)
        with open(csv_path, "a", encoding="utf-8") as f:
            if write_header:
                f.write(
                    "id,date,time,origin,requester,result,reason,duration_ms,sinks,image_path\n"
                )
            f.write(
                f"{rec.seq},{t_date},{t_time},{rec.origin},{_csv_field(rec.requester)},"
                f"{'OK' if rec.success else 'ERROR'},{rec.reason},"
                f"{rec.duration_ms:.3f},{summarize_outcomes(rec.outcomes)},"
                f"{_csv_field(rec.image_path)}\n"
            )

    def _csv_path_for_record(self, rec: PipelineRecord) -> str:
        day_dir = os.path.join(self.csv_root_dir, _to_utc(rec.started_at).date().isoformat())
        os.makedirs(day_dir, exist_ok=True)
        return os.path.join(day_dir, "records.csv")


def _csv_field(value: str) -> str:
    text = str(value or "")
    if any(c in text for c in ',"\n'):
        return '"' + text.replace('"', '""') + '"'
    return text


def _fmt_date_time(dt: datetime | None) -> tuple[str, str]:
    ref = _to_utc(dt)
    return ref.date().isoformat(), ref.strftime("%H:%M:%S.%f")[:-3] + "Z"


def _to_utc(dt: datetime | None) -> datetime:
    ref = dt or datetime.now(timezone.utc)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    return ref.astimezone(timezone.utc)


__all__ = [
    "NotificationFanout",
    "NotificationSink",
    "ResultStore",
    "SinkError",
    "summarize_outcomes",
]
