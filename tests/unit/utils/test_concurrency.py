"""Unit tests for cancellation tokens and retry with linear backoff."""

from __future__ import annotations

import asyncio

import pytest

from smarttesthub.utils.concurrency import CancellationToken, retry_with_backoff


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _sequence(values: list[int]) -> tuple[list[int], object]:
    calls: list[int] = []

    async def operation() -> int:
        value = values[len(calls)]
        calls.append(value)
        return value

    return calls, operation


async def test_retry_succeeds_after_transient_failures() -> None:
    sleep = _RecordingSleep()
    calls, operation = _sequence([1, 1, 0])

    outcome = await retry_with_backoff(
        operation,
        attempts=3,
        base_delay_seconds=2.0,
        is_success=lambda code: code == 0,
        sleep=sleep,
    )

    assert outcome.succeeded
    assert outcome.attempts == 3
    assert outcome.value == 0
    assert calls == [1, 1, 0]
    assert sleep.delays == [2.0, 4.0]


async def test_retry_gives_up_without_sleeping_after_last_attempt() -> None:
    sleep = _RecordingSleep()
    retries: list[tuple[int, float, int]] = []
    _calls, operation = _sequence([7, 7, 7])

    outcome = await retry_with_backoff(
        operation,
        attempts=3,
        base_delay_seconds=0.5,
        is_success=lambda code: code == 0,
        sleep=sleep,
        on_retry=lambda attempt, delay, value: retries.append((attempt, delay, value)),
    )

    assert not outcome.succeeded
    assert outcome.attempts == 3
    assert outcome.value == 7
    assert sleep.delays == [0.5, 1.0]
    assert retries == [(1, 0.5, 7), (2, 1.0, 7)]


async def test_retry_does_not_swallow_exceptions() -> None:
    async def operation() -> int:
        raise OSError("spawn failed")

    with pytest.raises(OSError, match="spawn failed"):
        await retry_with_backoff(
            operation, attempts=3, base_delay_seconds=0.0, is_success=lambda _v: True
        )


@pytest.mark.parametrize(("attempts", "delay"), [(0, 1.0), (1, -1.0)])
async def test_retry_rejects_invalid_policy(attempts: int, delay: float) -> None:
    async def operation() -> int:
        return 0

    with pytest.raises(ValueError):
        await retry_with_backoff(
            operation, attempts=attempts, base_delay_seconds=delay, is_success=bool
        )


async def test_cancellation_token_sleep_wakes_on_cancel() -> None:
    token = CancellationToken()
    assert await token.sleep(0) is False

    asyncio.get_running_loop().call_soon(token.cancel)
    assert await asyncio.wait_for(token.sleep(30), timeout=1.0) is True
    assert token.is_cancelled
    with pytest.raises(asyncio.CancelledError):
        token.raise_if_cancelled()
