"""
smarttesthub-harness - tool stage execution primitives.

File: src/smarttesthub/pipelines/base.py
Last updated: 2026-10-19

Purpose
- Defines the command execution contract (spec, result, executor) and the ordered
  stage runner shared by the EVM and non-EVM toolchains.

What should be included in this file
- Standard stage fields: tool, argv, captured output file, halt flag, run condition,
  accepted exit codes, failure severity, retry policy.
- Deterministic stage and pipeline results for reports and metrics.

Functional requirements
- Tool failures are results, never exceptions: a failing stage is recorded and the
  pipeline moves on unless the stage halts it.
- Missing tools are skipped, not failed.

Non-functional requirements
- Subprocess output is bounded and redacted before it is stored or logged.
- Stage output files receive the redacted stdout untruncated.
- A timeout kills the tool's whole process group and bounds the output drain.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import signal
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Final, Protocol, runtime_checkable

import structlog

from smarttesthub.intake.validation import sanitized_environment
from smarttesthub.observability.metrics import (
    STAGE_DURATION_MS,
    STAGE_RUNS_TOTAL,
    MetricsRegistry,
)
from smarttesthub.utils.concurrency import CancellationToken, retry_with_backoff
from smarttesthub.utils.fs import atomic_write

DEFAULT_MAX_OUTPUT_CHARS: Final[int] = 200_000
UNKNOWN_TOOL_ERROR_MESSAGE: Final[str] = "Unknown tool error, attempting to continue"
_LOG_TAIL_CHARS: Final[int] = 2_000
_DRAIN_TIMEOUT_SECONDS: Final[float] = 2.0

TextRedactor = Callable[[str], str]
WhichFn = Callable[[str], str | None]
StageCondition = Callable[[Path], bool]
StageHook = Callable[[Path], None]

_logger = structlog.get_logger(__name__)


class StageStatus(StrEnum):
    """Canonical stage statuses for deterministic downstream handling."""

    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"
    ERROR = "error"
    TIMEOUT = "timeout"
    SKIP = "skip"


_BLOCKING_STATUSES: Final[frozenset[StageStatus]] = frozenset(
    {StageStatus.FAIL, StageStatus.ERROR, StageStatus.TIMEOUT}
)


@dataclass(slots=True)
class CommandSpec:
    """Portable command invocation contract used by stages."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None
    allowed_exit_codes: tuple[int, ...] = (0,)
    capture_full_stdout: bool = False

    def __post_init__(self) -> None:
        self.argv = tuple(self.argv)
        if not self.argv or not all(isinstance(item, str) and item for item in self.argv):
            raise ValueError("CommandSpec.argv must be a non-empty tuple of non-empty strings")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("CommandSpec.timeout_seconds must be > 0")
        self.env = dict(self.env)
        self.allowed_exit_codes = tuple(self.allowed_exit_codes)

    def build_env(self) -> dict[str, str]:
        env = sanitized_environment()
        env.update(self.env)
        return env

    def display(self) -> str:
        return " ".join(self.argv)

    def to_dict(self) -> dict[str, Any]:
        return {
            "argv": list(self.argv),
            "cwd": self.cwd,
            "env": dict(sorted(self.env.items())),
            "timeout_seconds": self.timeout_seconds,
            "allowed_exit_codes": list(self.allowed_exit_codes),
            "capture_full_stdout": self.capture_full_stdout,
        }


@dataclass(slots=True)
class CommandResult:
    """Deterministic command execution outcome.

    ``stdout_full`` holds the redacted but untruncated stdout when the spec asked for
    ``capture_full_stdout``; it is left out of ``to_dict``.
    """

    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    error: str | None = None
    stdout_full: str | None = None

    def __post_init__(self) -> None:
        if self.timed_out and self.exit_code is not None:
            raise ValueError("CommandResult.exit_code must be None when timed_out is true")

    def is_success(self, spec: CommandSpec | None = None) -> bool:
        if self.timed_out or self.error is not None or self.exit_code is None:
            return False
        if spec is None:
            return self.exit_code == 0
        return self.exit_code in spec.allowed_exit_codes

    def to_dict(self) -> dict[str, Any]:
        return {
            "argv": list(self.argv),
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "error": self.error,
        }


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface for stages."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Async local subprocess executor with deterministic capture/timeout behavior."""

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        max_output_chars: int | None = DEFAULT_MAX_OUTPUT_CHARS,
        redactor: TextRedactor | None = None,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        if max_output_chars is not None and max_output_chars <= 0:
            raise ValueError("max_output_chars must be > 0")
        self._default_timeout_seconds = default_timeout_seconds
        self._max_output_chars = max_output_chars
        self._redact: TextRedactor = redactor if redactor is not None else _identity_redactor

    async def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        timeout = (
            spec.timeout_seconds
            if spec.timeout_seconds is not None
            else self._default_timeout_seconds
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            return CommandResult(
                argv=spec.argv,
                exit_code=None,
                stdout="",
                stderr="",
                duration_ms=_elapsed_ms(started_ns),
                timed_out=False,
                error=self._redact(str(exc)),
            )

        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(
                process=process,
                timeout_seconds=timeout,
            )
            timed_out = False
            error_text: str | None = None
            exit_code = process.returncode
        except _CommandTimeoutError as exc:
            stdout_bytes = exc.stdout
            stderr_bytes = exc.stderr
            timed_out = True
            timeout_value = timeout if timeout is not None else 0.0
            error_text = f"command timed out after {timeout_value:.3f}s"
            exit_code = None

        stdout_text = _normalize_output_text(stdout_bytes)
        return CommandResult(
            argv=spec.argv,
            exit_code=exit_code,
            stdout=self._redact(_truncate_text(stdout_text, self._max_output_chars)),
            stderr=self._redact(
                _truncate_text(_normalize_output_text(stderr_bytes), self._max_output_chars)
            ),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=timed_out,
            error=self._redact(error_text) if error_text is not None else None,
            stdout_full=self._redact(stdout_text) if spec.capture_full_stdout else None,
        )


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    attempts: int
    base_delay_seconds: float

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("RetryPolicy.attempts must be >= 1")
        if self.base_delay_seconds < 0:
            raise ValueError("RetryPolicy.base_delay_seconds must be >= 0")


@dataclass(frozen=True, slots=True)
class ToolStage:
    """
    One external tool invocation within a chain pipeline.

    ``tool`` is the executable looked up on ``PATH`` before running (defaults to
    ``argv[0]``). ``output_file`` is relative to the workspace root and receives
    the command's stdout. ``after`` runs only when the stage passes.
    """

    name: str
    argv: tuple[str, ...]
    tool: str | None = None
    output_file: str | None = None
    halt_on_failure: bool = False
    condition: StageCondition | None = None
    allowed_exit_codes: tuple[int, ...] = (0,)
    failure_status: StageStatus = StageStatus.FAIL
    retry: RetryPolicy | None = None
    env: tuple[tuple[str, str], ...] = ()
    failure_message: str = UNKNOWN_TOOL_ERROR_MESSAGE
    after: StageHook | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("ToolStage.name must not be empty")
        if not self.argv:
            raise ValueError(f"ToolStage {self.name!r} requires argv")
        if self.failure_status not in {StageStatus.FAIL, StageStatus.WARN}:
            raise ValueError("ToolStage.failure_status must be FAIL or WARN")

    @property
    def required_tool(self) -> str:
        return self.tool if self.tool is not None else self.argv[0]


@dataclass(frozen=True, slots=True)
class StageResult:
    name: str
    status: StageStatus
    command: str
    exit_code: int | None = None
    duration_ms: int = 0
    attempts: int = 0
    message: str = ""
    output_file: str | None = None

    @property
    def blocking(self) -> bool:
        return self.status in _BLOCKING_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "command": self.command,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
            "message": self.message,
            "output_file": self.output_file,
        }


@dataclass(frozen=True, slots=True)
class PipelineResult:
    chain: str
    stages: tuple[StageResult, ...]
    halted_at: str | None = None

    @property
    def status(self) -> StageStatus:
        """Worst outcome: FAIL if anything blocked, WARN on warnings, else PASS."""

        statuses = {stage.status for stage in self.stages}
        if statuses & _BLOCKING_STATUSES:
            return StageStatus.FAIL
        if StageStatus.WARN in statuses:
            return StageStatus.WARN
        return StageStatus.PASS

    @property
    def succeeded(self) -> bool:
        return self.status is not StageStatus.FAIL

    def stage(self, name: str) -> StageResult | None:
        for result in self.stages:
            if result.name == name:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain,
            "status": self.status.value,
            "halted_at": self.halted_at,
            "stages": [stage.to_dict() for stage in self.stages],
        }


async def run_pipeline(
    stages: Sequence[ToolStage],
    *,
    chain: str,
    workspace_root: Path,
    source_name: str,
    executor: CommandExecutor,
    timeout_seconds: float | None = None,
    which: WhichFn | None = None,
    metrics: MetricsRegistry | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    cancel: CancellationToken | None = None,
) -> PipelineResult:
    """Run ``stages`` in order inside ``workspace_root`` and collect their results."""

    which_fn = which if which is not None else shutil.which
    results: list[StageResult] = []
    halted_at: str | None = None

    for stage in stages:
        command = " ".join(stage.argv)
        if halted_at is not None:
            result = StageResult(
                name=stage.name,
                status=StageStatus.SKIP,
                command=command,
                message=f"skipped after {halted_at} failed",
            )
        elif cancel is not None and cancel.is_cancelled:
            result = StageResult(
                name=stage.name, status=StageStatus.SKIP, command=command, message="cancelled"
            )
        elif stage.condition is not None and not stage.condition(workspace_root):
            result = StageResult(
                name=stage.name,
                status=StageStatus.SKIP,
                command=command,
                message="not applicable",
            )
        elif which_fn(stage.required_tool) is None:
            result = StageResult(
                name=stage.name,
                status=StageStatus.SKIP,
                command=command,
                message=f"{stage.required_tool} not installed",
            )
        else:
            result = await _run_stage(
                stage,
                workspace_root=workspace_root,
                source_name=source_name,
                executor=executor,
                timeout_seconds=timeout_seconds,
                sleep=sleep,
            )
            if stage.halt_on_failure and result.blocking:
                halted_at = stage.name

        results.append(result)
        _logger.info(
            "stage_finished",
            chain=chain,
            stage=stage.name,
            status=result.status.value,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
        )
        if metrics is not None:
            metrics.inc(
                STAGE_RUNS_TOTAL,
                labels={"chain": chain, "stage": stage.name, "status": result.status.value},
            )
            if result.status is not StageStatus.SKIP:
                metrics.observe(
                    STAGE_DURATION_MS,
                    float(result.duration_ms),
                    labels={"chain": chain, "stage": stage.name},
                )

    return PipelineResult(chain=chain, stages=tuple(results), halted_at=halted_at)


async def _run_stage(
    stage: ToolStage,
    *,
    workspace_root: Path,
    source_name: str,
    executor: CommandExecutor,
    timeout_seconds: float | None,
    sleep: Callable[[float], Awaitable[None]] | None,
) -> StageResult:
    spec = CommandSpec(
        argv=stage.argv,
        cwd=str(workspace_root),
        env=dict(stage.env),
        timeout_seconds=timeout_seconds,
        allowed_exit_codes=stage.allowed_exit_codes,
        capture_full_stdout=stage.output_file is not None,
    )

    attempts = 1
    if stage.retry is None:
        command_result = await executor.run(spec)
    else:

        def _log_retry(attempt: int, delay: float, failed: CommandResult) -> None:
            _logger.warning(
                "stage_retry_scheduled",
                stage=stage.name,
                attempt=attempt,
                delay_seconds=delay,
                exit_code=failed.exit_code,
            )

        outcome = await retry_with_backoff(
            lambda: executor.run(spec),
            attempts=stage.retry.attempts,
            base_delay_seconds=stage.retry.base_delay_seconds,
            is_success=lambda candidate: candidate.is_success(spec),
            sleep=sleep,
            on_retry=_log_retry,
        )
        command_result = outcome.value
        attempts = outcome.attempts

    output_file: str | None = None
    if stage.output_file is not None:
        captured = command_result.stdout_full
        if captured is None:
            captured = command_result.stdout
        atomic_write(workspace_root / stage.output_file, captured)
        output_file = stage.output_file

    if command_result.timed_out:
        status = StageStatus.TIMEOUT
        message = command_result.error or "timed out"
    elif command_result.error is not None:
        status = StageStatus.ERROR
        message = command_result.error
    elif command_result.is_success(spec):
        status = StageStatus.PASS
        message = ""
    else:
        status = stage.failure_status
        message = stage.failure_message.format(file=source_name)

    if status is StageStatus.PASS and stage.after is not None:
        try:
            stage.after(workspace_root)
        except OSError as exc:
            status = StageStatus.WARN
            message = f"post-processing failed: {exc}"

    if status is not StageStatus.PASS:
        _logger.warning(
            "tool_failed",
            detail=(
                f"{stage.required_tool} failed with exit code {command_result.exit_code} "
                f"for file {source_name}"
            ),
            stage=stage.name,
            advice=message,
            stderr_tail=command_result.stderr[-_LOG_TAIL_CHARS:],
        )

    return StageResult(
        name=stage.name,
        status=status,
        command=spec.display(),
        exit_code=command_result.exit_code,
        duration_ms=command_result.duration_ms,
        attempts=attempts,
        message=message,
        output_file=output_file,
    )


@dataclass(slots=True)
class _CommandTimeoutError(Exception):
    stdout: bytes
    stderr: bytes


async def _communicate_with_timeout(
    *,
    process: asyncio.subprocess.Process,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate()
        return await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        _kill_process_group(process)
        stdout_bytes, stderr_bytes = await _drain(process)
        raise _CommandTimeoutError(stdout=stdout_bytes, stderr=stderr_bytes) from exc
    except asyncio.CancelledError:
        _kill_process_group(process)
        await _drain(process)
        raise


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the whole session so tool grandchildren release the output pipes."""

    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        with suppress(ProcessLookupError):
            process.kill()


async def _drain(process: asyncio.subprocess.Process) -> tuple[bytes, bytes]:
    # A descendant that left the group can still hold the pipes open.
    try:
        return await asyncio.wait_for(process.communicate(), timeout=_DRAIN_TIMEOUT_SECONDS)
    except TimeoutError:
        _logger.warning("output_drain_abandoned", pid=process.pid)
        return b"", b""


def _identity_redactor(text: str) -> str:
    return text


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {omitted} chars]"


__all__ = [
    "DEFAULT_MAX_OUTPUT_CHARS",
    "UNKNOWN_TOOL_ERROR_MESSAGE",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
    "PipelineResult",
    "RetryPolicy",
    "StageResult",
    "StageStatus",
    "ToolStage",
    "run_pipeline",
]
