"""
smarttesthub-harness - bounded concurrent dispatcher.

File: src/smarttesthub/dispatch/dispatcher.py
Last updated: 2026-10-19

Purpose
- Run a stream of discrete work items with at most ``max_concurrency`` active at once.
- Queue the overflow FIFO and admit the queue head whenever a worker finishes.

Functional requirements
- ``submit`` starts immediately while a slot is free, otherwise appends to the queue.
- ``on_worker_done`` frees the slot and starts the next queued item.
- A failing worker is logged and recorded; it never blocks or cancels the others.
- ``max_concurrency`` is fixed at construction. No priorities, no per-item cancellation.
- Long-running callers pass ``retain_completed=False``; only counters are kept.

Non-functional requirements
- Each item is started exactly once. Admission order equals submission order.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

from smarttesthub.observability.metrics import (
    DISPATCHER_ACTIVE,
    DISPATCHER_QUEUED,
    JOBS_SUBMITTED_TOTAL,
    MetricsRegistry,
)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass(slots=True, eq=False)
class WorkerHandle(Generic[ItemT, ResultT]):
    """Live worker for one admitted item."""

    sequence: int
    item: ItemT
    task: asyncio.Task[ResultT]
    started_at: float


@dataclass(frozen=True, slots=True)
class CompletedWork(Generic[ItemT, ResultT]):
    """Completion record. Exactly one of ``result``/``error`` is meaningful."""

    sequence: int
    item: ItemT
    result: ResultT | None
    error: BaseException | None
    duration_seconds: float

    @property
    def ok(self) -> bool:
        return self.error is None


class DispatcherClosedError(RuntimeError):
    """Raised when submitting to a dispatcher that no longer admits work."""


class BoundedDispatcher(Generic[ItemT, ResultT]):
    """Admit work items into at most ``max_concurrency`` concurrent asyncio tasks."""

    def __init__(
        self,
        runner: Callable[[ItemT], Awaitable[ResultT]],
        *,
        max_concurrency: int,
        metrics: MetricsRegistry | None = None,
        on_complete: Callable[[CompletedWork[ItemT, ResultT]], None] | None = None,
        logger: Any | None = None,
        retain_completed: bool = True,
    ) -> None:
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int):
            raise TypeError("max_concurrency must be an integer")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self._runner = runner
        self._max_concurrency = max_concurrency
        self._metrics = metrics
        self._on_complete = on_complete
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._queue: deque[tuple[int, ItemT]] = deque()
        self._active: dict[int, WorkerHandle[ItemT, ResultT]] = {}
        self._retain_completed = retain_completed
        self._completed: list[CompletedWork[ItemT, ResultT]] = []
        self._completed_count = 0
        self._failed_count = 0
        self._next_sequence = 0
        self._peak_active = 0
        self._closed = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    @property
    def peak_active(self) -> int:
        return self._peak_active

    @property
    def completed(self) -> tuple[CompletedWork[ItemT, ResultT], ...]:
        """Completion records in completion order.

        Empty when the dispatcher was built with ``retain_completed=False``.
        """

        return tuple(self._completed)

    @property
    def completed_count(self) -> int:
        return self._completed_count

    @property
    def failed_count(self) -> int:
        return self._failed_count

    @property
    def is_idle(self) -> bool:
        return not self._active and not self._queue

    def submit(self, item: ItemT) -> int:
        """Admit ``item`` now if a slot is free, else queue it. Returns its sequence number.

        Must be called from inside the running event loop.
        """

        if self._closed:
            raise DispatcherClosedError("dispatcher is closed")

        sequence = self._next_sequence
        self._next_sequence += 1
        self._idle.clear()
        if self._metrics is not None:
            self._metrics.inc(JOBS_SUBMITTED_TOTAL)

        if len(self._active) < self._max_concurrency:
            self._start(sequence, item)
        else:
            self._queue.append((sequence, item))
            self._logger.info(
                "dispatcher_item_queued",
                sequence=sequence,
                active=len(self._active),
                queued=len(self._queue),
            )
        self._publish_gauges()
        return sequence

    def on_worker_done(
        self, handle: WorkerHandle[ItemT, ResultT]
    ) -> WorkerHandle[ItemT, ResultT] | None:
        """Retire ``handle`` and admit the queue head, returning the newly started handle."""

        if self._active.pop(handle.sequence, None) is None:
            return None

        self._record_completion(handle)

        started: WorkerHandle[ItemT, ResultT] | None = None
        if self._queue:
            sequence, item = self._queue.popleft()
            started = self._start(sequence, item)
        elif not self._active:
            self._idle.set()
        self._publish_gauges()
        return started

    def close(self) -> None:
        """Stop admitting new items. Already queued and running items still complete."""

        self._closed = True

    async def join(self) -> None:
        """Wait until every submitted item has completed."""

        await self._idle.wait()

    async def drain(self) -> tuple[CompletedWork[ItemT, ResultT], ...]:
        """Wait for all work to complete and return completion records in submission order."""

        await self.join()
        return tuple(sorted(self._completed, key=lambda record: record.sequence))

    def _start(self, sequence: int, item: ItemT) -> WorkerHandle[ItemT, ResultT]:
        task = asyncio.get_running_loop().create_task(
            self._invoke(item), name=f"smarttesthub-worker-{sequence}"
        )
        handle: WorkerHandle[ItemT, ResultT] = WorkerHandle(
            sequence=sequence,
            item=item,
            task=task,
            started_at=time.monotonic(),
        )
        self._active[sequence] = handle
        self._peak_active = max(self._peak_active, len(self._active))
        task.add_done_callback(lambda _task: self.on_worker_done(handle))
        self._logger.info(
            "dispatcher_item_started",
            sequence=sequence,
            active=len(self._active),
            queued=len(self._queue),
        )
        return handle

    async def _invoke(self, item: ItemT) -> ResultT:
        return await self._runner(item)

    def _record_completion(self, handle: WorkerHandle[ItemT, ResultT]) -> None:
        duration = max(0.0, time.monotonic() - handle.started_at)
        task = handle.task
        error: BaseException | None
        result: ResultT | None = None
        if task.cancelled():
            error = asyncio.CancelledError(f"worker {handle.sequence} was cancelled")
        else:
            error = task.exception()
            if error is None:
                result = task.result()

        record = CompletedWork(
            sequence=handle.sequence,
            item=handle.item,
            result=result,
            error=error,
            duration_seconds=duration,
        )
        self._completed_count += 1
        if error is not None:
            self._failed_count += 1
        if self._retain_completed:
            self._completed.append(record)

        if error is None:
            self._logger.info(
                "dispatcher_item_finished",
                sequence=handle.sequence,
                duration_ms=int(duration * 1000),
            )
        else:
            self._logger.error(
                "dispatcher_worker_failed",
                sequence=handle.sequence,
                error_type=type(error).__name__,
                error=str(error),
            )

        if self._on_complete is not None:
            try:
                self._on_complete(record)
            except Exception as exc:  # noqa: BLE001 - a callback must not stall admission.
                self._logger.error(
                    "dispatcher_completion_callback_failed",
                    sequence=handle.sequence,
                    error=str(exc),
                )

    def _publish_gauges(self) -> None:
        if self._metrics is None:
            return
        self._metrics.set_gauge(DISPATCHER_ACTIVE, len(self._active))
        self._metrics.set_gauge(DISPATCHER_QUEUED, len(self._queue))


__all__ = [
    "BoundedDispatcher",
    "CompletedWork",
    "DispatcherClosedError",
    "WorkerHandle",
]
