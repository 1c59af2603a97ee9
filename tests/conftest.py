"""Shared fakes for pipeline and service tests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path

import pytest

from smarttesthub.pipelines.base import CommandExecutor, CommandResult, CommandSpec

Effect = Callable[[Path], None]


class FakeExecutor(CommandExecutor):
    """Scripted executor: exact argv -> queued results; the last queued result repeats."""

    def __init__(self) -> None:
        self.calls: list[CommandSpec] = []
        self.active = 0
        self.peak_active = 0
        self._scripts: dict[tuple[str, ...], list[CommandResult]] = {}
        self._effects: dict[tuple[str, ...], Effect] = {}

    def respond(
        self,
        argv: Iterable[str],
        *exit_codes: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        key = tuple(argv)
        self._scripts[key] = [
            CommandResult(argv=key, exit_code=code, stdout=stdout, stderr=stderr, duration_ms=5)
            for code in exit_codes
        ]

    def time_out(self, argv: Iterable[str]) -> None:
        key = tuple(argv)
        self._scripts[key] = [
            CommandResult(
                argv=key,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=5,
                timed_out=True,
                error="command timed out after 1.000s",
            )
        ]

    def fail_to_spawn(self, argv: Iterable[str]) -> None:
        key = tuple(argv)
        self._scripts[key] = [
            CommandResult(
                argv=key,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=0,
                error="[Errno 2] No such file or directory",
            )
        ]

    def on_run(self, argv: Iterable[str], effect: Effect) -> None:
        self._effects[tuple(argv)] = effect

    def argvs(self) -> list[tuple[str, ...]]:
        return [spec.argv for spec in self.calls]

    async def run(self, spec: CommandSpec) -> CommandResult:
        self.calls.append(spec)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            await asyncio.sleep(0)
            effect = self._effects.get(spec.argv)
            if effect is not None and spec.cwd is not None:
                effect(Path(spec.cwd))
            queued = self._scripts.get(spec.argv)
            if not queued:
                return CommandResult(
                    argv=spec.argv, exit_code=0, stdout="ok\n", stderr="", duration_ms=5
                )
            return queued.pop(0) if len(queued) > 1 else queued[0]
        finally:
            self.active -= 1


def _which_all(tool: str) -> str | None:
    return f"/usr/local/bin/{tool}"


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def which_all() -> Callable[[str], str | None]:
    """Every tool resolves on PATH."""

    return _which_all


@pytest.fixture
def no_sleep() -> Callable[[float], Awaitable[None]]:
    return _no_sleep
