"""Background asyncio loop shared by the overlay server, chat trigger and pipelines."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import TimeoutError
from typing import Any, TypeVar

L = logging.getLogger("snap_runtime.loop")


T = TypeVar("T")


def _task_label(task: asyncio.Task[Any]) -> str:
    name = task.get_name() or ""
    coro = task.get_coro()
    coro_name = getattr(coro, "__qualname__", "") or getattr(coro, "__name__", "")
    if name and coro_name:
        return f"{name}({coro_name})"
    return name or coro_name or repr(task)


class LoopRunner:
    """Owns one asyncio loop in a daemon thread and bridges sync callers onto it."""

    def __init__(self, *, logger: logging.Logger | None = None):
        self._logger = logger or L
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stopped = False
        self._lock = threading.Lock()
        self._loop_thread_ident: int | None = None

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._stopped:
                raise RuntimeError("Async loop already stopped")
            if self._loop and self._thread and self._thread.is_alive():
                return self._loop
            loop = asyncio.new_event_loop()
            ready = threading.Event()
            self._loop = loop
            self._loop_thread_ident = None

            def _runner():
                asyncio.set_event_loop(loop)
                self._loop_thread_ident = threading.get_ident()
                ready.set()
                loop.run_forever()

            self._thread = threading.Thread(
                target=_runner, name="snap_runtime.loop", daemon=True
            )
            self._thread.start()
            ready.wait(timeout=0.5)
            return loop

    @property
    def in_loop_thread(self) -> bool:
        return (
            self._loop_thread_ident is not None
            and threading.get_ident() == self._loop_thread_ident
        )

    def run_async(self, coro: Coroutine[Any, Any, T], timeout: float | None = 0.5) -> T:
        """Submit coroutine to the shared loop from a non-loop thread and wait."""
        loop = self._ensure_loop()
        if self.in_loop_thread:
            coro.close()
            raise RuntimeError(
                "run_async must not be called from the loop thread; await directly"
            )
        fut = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return fut.result(timeout=timeout)
        except TimeoutError:
            fut.cancel()
            self._logger.warning("run_async timeout after %.2fs", timeout or 0)
            raise

    def spawn_background_task(
        self, coro: Coroutine[Any, Any, Any], *, task_name: str | None = None
    ):
        """Fire-and-forget task on the shared loop; returns the task/future handle."""
        loop = self._ensure_loop()
        if self.in_loop_thread:
            return loop.create_task(coro, name=task_name)

        async def _named():
            task = asyncio.current_task()
            if task is not None and task_name:
                task.set_name(task_name)
            return await coro

        return asyncio.run_coroutine_threadsafe(_named(), loop)

    def shutdown_loop(self, timeout: float = 1.0):
        """Cancel pending tasks and stop the shared loop."""
        if self.in_loop_thread:
            raise RuntimeError("shutdown_loop must not be called from the loop thread")
        with self._lock:
            loop = self._loop
            thread = self._thread
            self._stopped = True
            if not loop or not thread or loop.is_closed():
                return

        async def _shutdown():
            current = asyncio.current_task()
            tasks = [
                t for t in asyncio.all_tasks() if t is not current and not t.done()
            ]
            if tasks:
                names = [_task_label(t) for t in tasks[:10]]
                suffix = f" (+{len(tasks) - 10} more)" if len(tasks) > 10 else ""
                self._logger.debug(
                    "shutdown_loop pending_tasks=%d names=%s%s",
                    len(tasks),
                    ", ".join(names),
                    suffix,
                )
            for t in tasks:
                t.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            await loop.shutdown_asyncgens()

        fut = asyncio.run_coroutine_threadsafe(_shutdown(), loop)
        try:
            fut.result(timeout=timeout)
        except TimeoutError:
            fut.cancel()
            raise
        finally:
            loop.call_soon_threadsafe(loop.stop)
            thread.join(timeout=timeout)
            if thread.is_alive():
                self._logger.warning(
                    "shutdown_loop thread did not exit within %.2fs; loop not closed",
                    timeout,
                )
            else:
                loop.close()
                self._loop = None
                self._thread = None
                self._loop_thread_ident = None


class AsyncTaskOwner:
    """Track background tasks spawned by one component so stop() can cancel them."""

    def __init__(
        self,
        *,
        loop_runner: LoopRunner,
        owner_name: str = "async_service",
    ):
        self._owner_name = owner_name
        self._loop_runner = loop_runner
        self._local_tasks: list[Any] = []
        self._spawn_seq = 0

    def spawn(self, coro: Coroutine[Any, Any, Any]):
        self._spawn_seq += 1
        task_name = f"{self._owner_name}.{self._spawn_seq}"
        task = self._loop_runner.spawn_background_task(coro, task_name=task_name)
        return self.register(task)

    def register(self, task: Any):
        if task is None:
            return None
        self._local_tasks.append(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: Any):
        try:
            self._local_tasks.remove(task)
        except ValueError:
            pass

    @property
    def pending(self) -> int:
        return len(self._local_tasks)

    def cancel_and_clear_local_tasks(self):
        for task in list(self._local_tasks):
            task.cancel()
        self._local_tasks.clear()

    @property
    def loop_runner(self) -> LoopRunner:
        return self._loop_runner


def run_async_cleanup(
    coro: Coroutine[Any, Any, Any],
    *,
    loop_runner: LoopRunner,
    timeout: float = 0.5,
):
    """Run async cleanup from sync code with a bounded wait."""
    loop_runner.run_async(coro, timeout=timeout)


__all__ = [
    "LoopRunner",
    "AsyncTaskOwner",
    "run_async_cleanup",
]
