"""
smarttesthub-harness - harness service wiring.

File: src/smarttesthub/service.py
Last updated: 2026-10-19

Purpose
- Wire config, watcher, dispatcher, per-job pipeline and reporting into one
  service usable in batch mode (``process_files``) or as a daemon (``serve``).

What should be included in this file
- The per-job lifecycle: validate, secret scan, workspace, manifests, pipeline,
  reports, processed marker, cleanup.
- Mapping of job outcomes to metrics and structured log events.

Functional requirements
- ``run_job`` never raises for tool failures; every path ends in a ``JobOutcome``.
- One job's failure never affects another job.

Non-functional requirements
- Every log record emitted while a job runs carries its ``job_id`` and ``source``.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from smarttesthub.constants import CHAIN_EVM, SOURCE_EXTENSIONS
from smarttesthub.dispatch.dispatcher import BoundedDispatcher, CompletedWork
from smarttesthub.dispatch.jobs import JobDescriptor, JobOutcome, JobStatus
from smarttesthub.intake.validation import (
    ValidationError,
    check_environment,
    scan_for_secrets,
    validate_source_file,
)
from smarttesthub.intake.watcher import DetectedFile, PollingWatcher
from smarttesthub.manifests.render import ManifestBundle, ManifestRenderer, ManifestRenderError
from smarttesthub.observability.health import (
    HealthReporter,
    HealthStatus,
    MetricsProvider,
    SystemMetricsProvider,
)
from smarttesthub.observability.logging import correlation_scope, default_log_redactor
from smarttesthub.observability.metrics import (
    JOB_DURATION_MS,
    JOBS_COMPLETED_TOTAL,
    MetricsRegistry,
)
from smarttesthub.pipelines import report_rows_for, stages_for
from smarttesthub.pipelines.base import (
    CommandExecutor,
    LocalSubprocessExecutor,
    PipelineResult,
    run_pipeline,
)
from smarttesthub.reporting.summary import ReportWriteError, SummaryReporter
from smarttesthub.utils.concurrency import CancellationToken
from smarttesthub.utils.hashing import FileVersion
from smarttesthub.workspace.manager import Workspace, WorkspaceError, WorkspaceManager

WhichFn = Callable[[str], str | None]

_logger = structlog.get_logger(__name__)


class HarnessEnvironmentError(RuntimeError):
    """Raised when the runtime directories or host environment are unusable."""


@dataclass(frozen=True, slots=True)
class HarnessPaths:
    input_dir: Path
    work_root: Path
    log_dir: Path
    report_dir: Path
    status_file: Path
    metrics_file: Path
    processed_dir: Path

    @classmethod
    def from_config(cls, paths: Mapping[str, Any]) -> HarnessPaths:
        return cls(
            input_dir=Path(str(paths["input_dir"])),
            work_root=Path(str(paths["work_root"])),
            log_dir=Path(str(paths["log_dir"])),
            report_dir=Path(str(paths["report_dir"])),
            status_file=Path(str(paths["status_file"])),
            metrics_file=Path(str(paths["metrics_file"])),
            processed_dir=Path(str(paths["processed_dir"])),
        )

    def directories(self) -> tuple[Path, ...]:
        return (
            self.input_dir,
            self.work_root,
            self.log_dir,
            self.report_dir,
            self.processed_dir,
            self.status_file.parent,
            self.metrics_file.parent,
        )


class HarnessService:
    """One chain's harness: intake, bounded dispatch, and the per-job pipeline."""

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        executor: CommandExecutor | None = None,
        metrics: MetricsRegistry | None = None,
        provider: MetricsProvider | None = None,
        which: WhichFn | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._chain = str(config["harness"]["chain"])
        self._paths = HarnessPaths.from_config(config["paths"])
        self._pipeline_config: Mapping[str, Any] = config["pipeline"]
        self._validation_config: Mapping[str, Any] = config["validation"]
        self._max_concurrency = int(config["dispatch"]["max_concurrency"])

        self._metrics = metrics if metrics is not None else MetricsRegistry()
        self._which: WhichFn = which if which is not None else shutil.which
        self._sleep = sleep
        self._now: Callable[[], datetime] = now_fn if now_fn is not None else _utc_now
        self._provider = (
            provider
            if provider is not None
            else SystemMetricsProvider(disk_path=self._paths.work_root)
        )

        if executor is None:
            redact = bool(config["observability"]["redact_secrets"])
            executor = LocalSubprocessExecutor(
                default_timeout_seconds=float(self._pipeline_config["stage_timeout_seconds"]),
                redactor=_redact_text if redact else None,
            )
        self._executor = executor

        self._workspaces = WorkspaceManager(self._paths.work_root, now_fn=self._now)
        self._renderer = ManifestRenderer()
        self._reporter = SummaryReporter(self._paths.report_dir)
        dispatch = config["dispatch"]
        self._watcher = PollingWatcher(
            self._paths.input_dir,
            extension=SOURCE_EXTENSIONS[self._chain],
            processed_dir=self._paths.processed_dir,
            stable_polls=int(dispatch["stable_polls"]),
            poll_interval_seconds=float(dispatch["poll_interval_seconds"]),
        )

    @property
    def chain(self) -> str:
        return self._chain

    @property
    def paths(self) -> HarnessPaths:
        return self._paths

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    @property
    def watcher(self) -> PollingWatcher:
        return self._watcher

    def prepare(self) -> None:
        """Create the runtime directories and warn about a thin environment."""

        for directory in self._paths.directories():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise HarnessEnvironmentError(
                    f"unable to create directory {directory}: {exc}"
                ) from exc
        check_environment()

    def describe(self, source_path: Path | str, *, version: str | None = None) -> JobDescriptor:
        return JobDescriptor.for_source(
            source_path, chain=self._chain, version=version, now=self._now()
        )

    def health_reporter(self) -> HealthReporter:
        return HealthReporter(
            chain=self._chain,
            watch_dir=self._paths.input_dir,
            status_file=self._paths.status_file,
            metrics_file=self._paths.metrics_file,
            health_config=self._config["health"],
            provider=self._provider,
            registry=self._metrics,
            processed_files=lambda: self._watcher.processed_count,
            which=self._which,
        )

    def check_health(self) -> HealthStatus:
        """Write the health and metrics files once and return the status."""

        return self.health_reporter().report_once()

    async def run_job(self, descriptor: JobDescriptor) -> JobOutcome:
        """Process one dropped file end to end. Tool failures become outcomes, not errors."""

        started_at = self._now()
        with correlation_scope(job_id=descriptor.job_id, source=descriptor.name):
            _logger.info(
                "job_started",
                chain=descriptor.chain,
                path=descriptor.source_path.as_posix(),
                version=descriptor.version,
            )
            try:
                validate_source_file(
                    descriptor.source_path,
                    chain=descriptor.chain,
                    max_bytes=int(self._validation_config["max_file_bytes"]),
                )
            except ValidationError as exc:
                _logger.error("job_rejected", reason=exc.reason)
                self._mark_processed(descriptor)
                return self._finish(descriptor, JobStatus.REJECTED, started_at, message=str(exc))

            if self._validation_config["secret_scan"]:
                try:
                    scan_for_secrets(descriptor.source_path)
                except OSError as exc:
                    _logger.error("secret_scan_failed", error=str(exc))
                    return self._finish(
                        descriptor,
                        JobStatus.ERROR,
                        started_at,
                        message=f"secret scan failed: {exc}",
                    )

            try:
                workspace = self._workspaces.create(descriptor)
            except WorkspaceError as exc:
                _logger.error("workspace_create_failed", error=str(exc))
                return self._finish(descriptor, JobStatus.ERROR, started_at, message=str(exc))
            _logger.debug("workspace_created", source_sha256=workspace.source_sha256)

            try:
                bundle = self._render_manifests(workspace)
                pipeline = await run_pipeline(
                    stages_for(descriptor.chain, self._pipeline_config),
                    chain=descriptor.chain,
                    workspace_root=workspace.root,
                    source_name=descriptor.source_path.name,
                    executor=self._executor,
                    timeout_seconds=float(self._pipeline_config["stage_timeout_seconds"]),
                    which=self._which,
                    metrics=self._metrics,
                    sleep=self._sleep,
                )
                report = self._reporter.write(
                    descriptor=descriptor,
                    contract_name=bundle.contract_name,
                    pipeline=pipeline,
                    rows=report_rows_for(descriptor.chain),
                    workspace=workspace,
                    manifests=bundle,
                    now=self._now(),
                )
            except (ManifestRenderError, ReportWriteError, OSError) as exc:
                _logger.error("job_errored", error_type=type(exc).__name__, error=str(exc))
                return self._finish(descriptor, JobStatus.ERROR, started_at, message=str(exc))
            finally:
                self._cleanup(workspace)

            self._mark_processed(descriptor)
            status = JobStatus.SUCCEEDED if pipeline.succeeded else JobStatus.FAILED
            return self._finish(
                descriptor,
                status,
                started_at,
                message=_pipeline_message(pipeline),
                pipeline=pipeline,
                report_paths=report.paths,
            )

    async def process_files(self, paths: Iterable[Path | str]) -> tuple[JobOutcome, ...]:
        """Batch mode: dispatch every path, wait for all, return outcomes in submission order."""

        self.prepare()
        dispatcher: BoundedDispatcher[JobDescriptor, JobOutcome] = BoundedDispatcher(
            self.run_job, max_concurrency=self._max_concurrency, metrics=self._metrics
        )
        for path in paths:
            dispatcher.submit(self.describe(path))
        dispatcher.close()
        completed = await dispatcher.drain()
        return tuple(self._outcome_from(record) for record in completed)

    async def serve(self, stop: CancellationToken) -> None:
        """Watch the input directory and dispatch stable files until ``stop`` is cancelled."""

        self.prepare()
        self._reap_stale_workspaces()
        dispatcher: BoundedDispatcher[JobDescriptor, JobOutcome] = BoundedDispatcher(
            self.run_job,
            max_concurrency=self._max_concurrency,
            metrics=self._metrics,
            retain_completed=False,
        )

        def _submit(detected: DetectedFile) -> None:
            dispatcher.submit(self.describe(detected.path, version=detected.version.token()))

        _logger.info(
            "harness_started",
            chain=self._chain,
            max_concurrency=self._max_concurrency,
            input_dir=self._paths.input_dir.as_posix(),
        )
        health_task = asyncio.get_running_loop().create_task(
            self.health_reporter().run(stop), name="smarttesthub-health"
        )
        try:
            await self._watcher.watch(_submit, stop)
        finally:
            dispatcher.close()
            await dispatcher.join()
            stop.cancel()
            await health_task
            _logger.info(
                "harness_stopped",
                chain=self._chain,
                completed=dispatcher.completed_count,
                failed=dispatcher.failed_count,
            )

    def _render_manifests(self, workspace: Workspace) -> ManifestBundle:
        if workspace.chain == CHAIN_EVM:
            return self._renderer.write_evm(workspace, self._config["evm"])
        return self._renderer.write_non_evm(workspace, self._config["non_evm"])

    def _cleanup(self, workspace: Workspace) -> None:
        if self._pipeline_config["keep_workspaces"]:
            return
        try:
            self._workspaces.cleanup(workspace)
        except (WorkspaceError, OSError) as exc:
            _logger.warning("workspace_cleanup_failed", error=str(exc))

    def _reap_stale_workspaces(self) -> None:
        """Remove workspaces left behind by a previous daemon that did not shut down cleanly."""

        if self._pipeline_config["keep_workspaces"]:
            return
        for stale in self._workspaces.list_active():
            _logger.warning("stale_workspace_removed", stale_job_id=stale.job_id)
            self._cleanup(stale)

    def _mark_processed(self, descriptor: JobDescriptor) -> None:
        try:
            version = FileVersion.from_token(descriptor.version)
        except ValueError:
            return
        try:
            self._watcher.mark_processed(descriptor.source_path, version)
        except OSError as exc:
            _logger.warning("processed_marker_failed", error=str(exc))

    def _finish(
        self,
        descriptor: JobDescriptor,
        status: JobStatus,
        started_at: datetime,
        *,
        message: str = "",
        pipeline: PipelineResult | None = None,
        report_paths: tuple[Path, ...] = (),
    ) -> JobOutcome:
        outcome = JobOutcome(
            descriptor=descriptor,
            status=status,
            started_at=started_at,
            finished_at=self._now(),
            message=message,
            pipeline=pipeline,
            report_paths=report_paths,
        )
        self._metrics.inc(JOBS_COMPLETED_TOTAL, labels={"status": status.value})
        self._metrics.observe(JOB_DURATION_MS, float(outcome.duration_ms))
        log_method = _logger.info if outcome.succeeded else _logger.warning
        log_method(
            "job_finished",
            status=status.value,
            duration_ms=outcome.duration_ms,
            detail=message,
        )
        return outcome

    def _outcome_from(self, record: CompletedWork[JobDescriptor, JobOutcome]) -> JobOutcome:
        if record.result is not None:
            return record.result
        now = self._now()
        return JobOutcome(
            descriptor=record.item,
            status=JobStatus.ERROR,
            started_at=now,
            finished_at=now,
            message=f"{type(record.error).__name__}: {record.error}",
        )


def _pipeline_message(pipeline: PipelineResult) -> str:
    if pipeline.halted_at is not None:
        return f"halted at {pipeline.halted_at}"
    failed = [stage.name for stage in pipeline.stages if stage.blocking]
    if failed:
        return "failed stages: " + ", ".join(failed)
    return pipeline.status.value


def _redact_text(text: str) -> str:
    redacted = default_log_redactor(text)
    return redacted if isinstance(redacted, str) else text


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


__all__ = [
    "HarnessEnvironmentError",
    "HarnessPaths",
    "HarnessService",
]
