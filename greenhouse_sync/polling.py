"""Polling scheduler for the greenhouse backend endpoints.

Each scheduled task runs on its own fixed-rate grid and is represented by a
:class:`TaskHandle` kept in an arena indexed by task id.

Design principles:
- Ticks are measured from the start of the previous tick, not its completion
- At most one in-flight invocation per task; overdue ticks are skipped, never queued
- Cancellation is synchronous and idempotent; late results are discarded
- Failures of a tick never stop the schedule
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)

TaskFunction = Callable[[], Awaitable[Any]]
ResultCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


@dataclass(eq=False)
class TaskHandle:
    """Handle for a scheduled polling task.

    Attributes:
        task_id: Arena key for the task
        interval: Seconds between tick starts
        invocations: Number of ticks that actually invoked the task function
        skipped: Number of ticks dropped because the previous invocation was still running
        cancelled: Set once :meth:`PollingScheduler.cancel` has been called
    """

    task_id: str
    interval: float
    fn: TaskFunction = field(repr=False)
    on_result: Optional[ResultCallback] = field(default=None, repr=False)
    on_error: Optional[ErrorCallback] = field(default=None, repr=False)
    invocations: int = 0
    skipped: int = 0
    cancelled: bool = False
    _ticker: Optional[asyncio.Task[None]] = field(default=None, repr=False)
    _inflight: Optional[asyncio.Task[None]] = field(default=None, repr=False)

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()


class PollingScheduler:
    """Runs named async tasks on independent fixed intervals.

    Thread-safety: This class is NOT thread-safe. All calls should occur
    on the same event loop thread.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, TaskHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def schedule(
        self,
        task_id: str,
        interval_seconds: float,
        fn: TaskFunction,
        *,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> TaskHandle:
        """Start invoking ``fn`` now and every ``interval_seconds`` afterwards.

        Args:
            task_id: Unique name for the task while it is active
            interval_seconds: Seconds between the starts of consecutive ticks
            fn: Coroutine function invoked on each tick
            on_result: Called with the return value of each successful invocation
            on_error: Called with the exception of each failed invocation

        Raises:
            ValueError: If the interval is not positive or the id is already active
            RuntimeError: If no event loop is running
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        existing = self._handles.get(task_id)
        if existing is not None and not existing.cancelled:
            raise ValueError(f"Task {task_id!r} is already scheduled")

        loop = asyncio.get_running_loop()
        handle = TaskHandle(
            task_id=task_id,
            interval=interval_seconds,
            fn=fn,
            on_result=on_result,
            on_error=on_error,
        )
        self._handles[task_id] = handle
        handle._ticker = self._track(
            loop.create_task(self._tick_loop(handle), name=f"poll-ticker:{task_id}")
        )
        return handle

    def cancel(self, handle: TaskHandle) -> None:
        """Stop ``handle``; no invocation starts after this returns."""
        if handle.cancelled:
            return

        handle.cancelled = True
        if handle._ticker is not None:
            handle._ticker.cancel()
        if self._handles.get(handle.task_id) is handle:
            del self._handles[handle.task_id]
        LOGGER.debug("Cancelled scheduled task %s", handle.task_id)

    def cancel_all(self) -> None:
        for handle in list(self._handles.values()):
            self.cancel(handle)

    def get(self, task_id: str) -> Optional[TaskHandle]:
        return self._handles.get(task_id)

    @property
    def active_task_ids(self) -> list[str]:
        return sorted(self._handles)

    async def aclose(self) -> None:
        """Cancel every task and wait for in-flight invocations to settle."""
        self.cancel_all()
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _track(self, task: asyncio.Task[None]) -> asyncio.Task[None]:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _tick_loop(self, handle: TaskHandle) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        with contextlib.suppress(asyncio.CancelledError):
            while not handle.cancelled:
                self._fire(handle)

                next_tick += handle.interval
                now = loop.time()
                if next_tick <= now:
                    # the loop itself fell behind; drop the ticks it missed
                    missed = int((now - next_tick) // handle.interval) + 1
                    handle.skipped += missed
                    next_tick += missed * handle.interval
                await asyncio.sleep(next_tick - now)

    def _fire(self, handle: TaskHandle) -> None:
        if handle.in_flight:
            handle.skipped += 1
            LOGGER.debug(
                "Skipping tick for %s; previous invocation still running",
                handle.task_id,
            )
            return

        handle.invocations += 1
        handle._inflight = self._track(
            asyncio.create_task(
                self._invoke(handle), name=f"poll-invoke:{handle.task_id}"
            )
        )

    async def _invoke(self, handle: TaskHandle) -> None:
        try:
            result = await handle.fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if handle.cancelled:
                return
            if handle.on_error is None:
                LOGGER.warning("Scheduled task %s failed: %s", handle.task_id, exc)
                return
            self._run_callback(handle, handle.on_error, exc)
            return

        if handle.cancelled or handle.on_result is None:
            return
        self._run_callback(handle, handle.on_result, result)

    @staticmethod
    def _run_callback(
        handle: TaskHandle, callback: Callable[[Any], None], value: Any
    ) -> None:
        try:
            callback(value)
        except Exception:
            LOGGER.exception("Callback for scheduled task %s failed", handle.task_id)


__all__ = ["PollingScheduler", "TaskHandle"]
