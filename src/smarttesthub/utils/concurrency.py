"""Async concurrency primitives shared by the watcher, dispatcher, and pipelines."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return ``True`` if cancelled meanwhile."""

        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0.0))
        except TimeoutError:
            return False
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


@dataclass(frozen=True, slots=True)
class RetryOutcome(Generic[T]):
    """Final value of a retried operation plus how many attempts it took."""

    value: T
    attempts: int
    succeeded: bool


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay_seconds: float,
    is_success: Callable[[T], bool],
    sleep: Callable[[float], Awaitable[None]] | None = None,
    on_retry: Callable[[int, float, T], None] | None = None,
) -> RetryOutcome[T]:
    """Run ``operation`` up to ``attempts`` times, sleeping ``attempt * base_delay`` between tries.

    ``operation`` is a zero-arg factory so each attempt gets a fresh awaitable.
    Exceptions raised by ``operation`` propagate immediately; only unsuccessful
    *results* are retried.
    """

    if attempts <= 0:
        raise ValueError("attempts must be > 0")
    if base_delay_seconds < 0:
        raise ValueError("base_delay_seconds must be >= 0")

    sleep_fn = sleep if sleep is not None else asyncio.sleep
    attempt = 1
    while True:
        value = await operation()
        if is_success(value):
            return RetryOutcome(value=value, attempts=attempt, succeeded=True)
        if attempt >= attempts:
            return RetryOutcome(value=value, attempts=attempt, succeeded=False)

        delay = base_delay_seconds * attempt
        if on_retry is not None:
            on_retry(attempt, delay, value)
        await sleep_fn(delay)
        attempt += 1


__all__ = [
    "CancellationToken",
    "RetryOutcome",
    "retry_with_backoff",
]
