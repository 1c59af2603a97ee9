"""
smarttesthub-harness - unit tests for the bounded dispatcher

File: tests/unit/dispatch/test_dispatcher.py
Last updated: 2026-10-19

Purpose
- Validate admission control: never more than ``max_concurrency`` active workers.

What this test file should cover
- FIFO admission of queued items as workers finish.
- Failure isolation between workers.
- Exactly-once execution for every submitted item.
- Close/drain lifecycle and metrics gauges.
- Long-running mode keeps counters only.

Functional requirements
- Offline; no subprocesses.

Non-functional requirements
- Deterministic and fast (gates instead of wall-clock sleeps where ordering matters).
"""

from __future__ import annotations

import asyncio
from collections import Counter

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from smarttesthub.dispatch import BoundedDispatcher, CompletedWork, DispatcherClosedError
from smarttesthub.observability.metrics import (
    DISPATCHER_ACTIVE,
    DISPATCHER_QUEUED,
    JOBS_SUBMITTED_TOTAL,
    MetricsRegistry,
)


class _Tracker:
    def __init__(self) -> None:
        self.active = 0
        self.peak = 0
        self.started: list[int] = []
        self.calls: Counter[int] = Counter()

    async def run(self, item: int, delay: float = 0.0) -> int:
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.started.append(item)
        self.calls[item] += 1
        try:
            await asyncio.sleep(delay)
        finally:
            self.active -= 1
        return item * 10


async def test_five_items_with_two_slots_queue_three_and_admit_fifo() -> None:
    gates = {item: asyncio.Event() for item in range(5)}
    started: list[int] = []

    async def runner(item: int) -> int:
        started.append(item)
        await gates[item].wait()
        return item

    dispatcher: BoundedDispatcher[int, int] = BoundedDispatcher(runner, max_concurrency=2)
    for item in range(5):
        dispatcher.submit(item)

    assert dispatcher.active_count == 2
    assert dispatcher.queued_count == 3

    await asyncio.sleep(0)
    assert started == [0, 1]

    gates[1].set()
    for _ in range(10):
        await asyncio.sleep(0)
    assert started == [0, 1, 2]
    assert dispatcher.active_count == 2
    assert dispatcher.queued_count == 2

    for gate in gates.values():
        gate.set()
    dispatcher.close()
    records = await dispatcher.drain()

    assert started == [0, 1, 2, 3, 4]
    assert [record.item for record in records] == [0, 1, 2, 3, 4]
    assert [record.result for record in records] == [0, 1, 2, 3, 4]
    assert dispatcher.peak_active == 2
    assert dispatcher.is_idle


async def test_failing_worker_does_not_block_others() -> None:
    async def runner(item: int) -> int:
        await asyncio.sleep(0)
        if item == 2:
            raise RuntimeError("tool exploded")
        return item

    dispatcher: BoundedDispatcher[int, int] = BoundedDispatcher(runner, max_concurrency=1)
    for item in range(5):
        dispatcher.submit(item)
    dispatcher.close()
    records = await dispatcher.drain()

    assert len(records) == 5
    failed = [record for record in records if not record.ok]
    assert [record.item for record in failed] == [2]
    assert isinstance(failed[0].error, RuntimeError)
    assert failed[0].result is None
    assert [record.result for record in records if record.ok] == [0, 1, 3, 4]


async def test_each_item_runs_exactly_once() -> None:
    tracker = _Tracker()
    dispatcher: BoundedDispatcher[int, int] = BoundedDispatcher(tracker.run, max_concurrency=3)
    for item in range(20):
        dispatcher.submit(item)
    dispatcher.close()
    await dispatcher.drain()

    assert tracker.calls == Counter(range(20))
    assert tracker.peak <= 3


async def test_long_running_mode_keeps_counters_not_records() -> None:
    async def runner(item: int) -> int:
        if item % 100 == 0:
            raise RuntimeError("tool exploded")
        return item

    dispatcher: BoundedDispatcher[int, int] = BoundedDispatcher(
        runner, max_concurrency=8, retain_completed=False
    )
    for item in range(1000):
        dispatcher.submit(item)
    await dispatcher.join()

    assert dispatcher.completed == ()
    assert dispatcher.completed_count == 1000
    assert dispatcher.failed_count == 10
    assert dispatcher.is_idle


async def test_submit_after_close_is_rejected() -> None:
    dispatcher: BoundedDispatcher[int, int] = BoundedDispatcher(
        _Tracker().run, max_concurrency=1
    )
    dispatcher.close()
    with pytest.raises(DispatcherClosedError):
        dispatcher.submit(1)


@pytest.mark.parametrize("bad", [0, -1])
def test_max_concurrency_must_be_positive(bad: int) -> None:
    with pytest.raises(ValueError):
        BoundedDispatcher(_Tracker().run, max_concurrency=bad)


def test_max_concurrency_must_be_integer() -> None:
    with pytest.raises(TypeError):
        BoundedDispatcher(_Tracker().run, max_concurrency=True)


async def test_metrics_and_completion_callback() -> None:
    metrics = MetricsRegistry()
    seen: list[CompletedWork[int, int]] = []

    def on_complete(record: CompletedWork[int, int]) -> None:
        seen.append(record)
        if record.item == 0:
            raise ValueError("callback failure must not stall admission")

    dispatcher: BoundedDispatcher[int, int] = BoundedDispatcher(
        _Tracker().run, max_concurrency=2, metrics=metrics, on_complete=on_complete
    )
    for item in range(4):
        dispatcher.submit(item)
    assert metrics.get_gauge(DISPATCHER_QUEUED) == 2.0

    dispatcher.close()
    await dispatcher.drain()

    assert metrics.get_counter(JOBS_SUBMITTED_TOTAL) == 4.0
    assert metrics.get_gauge(DISPATCHER_ACTIVE) == 0.0
    assert metrics.get_gauge(DISPATCHER_QUEUED) == 0.0
    assert sorted(record.item for record in seen) == [0, 1, 2, 3]


async def test_join_on_idle_dispatcher_returns_immediately() -> None:
    dispatcher: BoundedDispatcher[int, int] = BoundedDispatcher(
        _Tracker().run, max_concurrency=1
    )
    await asyncio.wait_for(dispatcher.join(), timeout=1.0)
    assert await dispatcher.drain() == ()


@settings(max_examples=40, deadline=None)
@given(
    delays=st.lists(st.sampled_from([0.0, 0.001, 0.002]), min_size=0, max_size=15),
    limit=st.integers(min_value=1, max_value=5),
)
def test_active_workers_never_exceed_limit(delays: list[float], limit: int) -> None:
    async def scenario() -> tuple[_Tracker, tuple[CompletedWork[int, int], ...]]:
        tracker = _Tracker()

        async def runner(item: int) -> int:
            return await tracker.run(item, delays[item])

        dispatcher: BoundedDispatcher[int, int] = BoundedDispatcher(
            runner, max_concurrency=limit
        )
        for item in range(len(delays)):
            dispatcher.submit(item)
            assert dispatcher.active_count <= limit
        dispatcher.close()
        records = await dispatcher.drain()
        assert dispatcher.peak_active <= limit
        return tracker, records

    tracker, records = asyncio.run(scenario())

    assert tracker.peak <= limit
    assert tracker.started == sorted(tracker.started)
    assert tracker.calls == Counter(range(len(delays)))
    assert [record.sequence for record in records] == list(range(len(delays)))
