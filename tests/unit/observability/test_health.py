"""
smarttesthub-harness - unit tests for health evaluation and reporting

File: tests/unit/observability/test_health.py
Last updated: 2026-10-19

Purpose
- Validate the health status line, required-tool checks, and the status/metrics files.

What this test file should cover
- OK vs ERROR status lines and the first failing check.
- Disk threshold handling, including an unavailable disk reading.
- Resource threshold warnings.
- ``HealthReporter`` writing both files and stopping on cancellation.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from smarttesthub.config import default_config
from smarttesthub.observability.health import (
    HealthReporter,
    ResourceSnapshot,
    SystemMetricsProvider,
    collect_metrics,
    evaluate_health,
    monitor_resources,
)
from smarttesthub.observability.metrics import MetricsRegistry
from smarttesthub.utils.concurrency import CancellationToken

_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def _snapshot(*, disk: float | None = 40.0, memory: float | None = 50.0) -> ResourceSnapshot:
    return ResourceSnapshot(
        captured_at=_NOW,
        cpu_percent=12.5,
        memory_percent=memory,
        memory_used_mb=512.0,
        disk_percent=disk,
    )


class _FixedProvider:
    def __init__(self, snapshot: ResourceSnapshot) -> None:
        self.calls = 0
        self._snapshot = snapshot

    def snapshot(self) -> ResourceSnapshot:
        self.calls += 1
        return self._snapshot


def _all_tools(tool: str) -> str | None:
    return f"/usr/bin/{tool}"


def test_healthy_status_line(tmp_path: Path) -> None:
    status = evaluate_health(
        chain="evm",
        watch_dir=tmp_path,
        snapshot=_snapshot(),
        disk_error_percent=95.0,
        which=_all_tools,
        now=_NOW,
    )

    assert status.ok
    assert status.message == "OK: Container healthy at 2026-03-01T12:00:00Z"
    assert [check.name for check in status.checks] == [
        "watch_dir",
        "tool:npx",
        "tool:node",
        "disk",
    ]


def test_missing_watch_dir_is_reported_first(tmp_path: Path) -> None:
    status = evaluate_health(
        chain="non_evm",
        watch_dir=tmp_path / "missing",
        snapshot=_snapshot(),
        disk_error_percent=95.0,
        which=lambda _tool: None,
    )

    assert not status.ok
    assert status.message == "ERROR: Watch directory inaccessible"
    failing = [check.name for check in status.checks if not check.ok]
    assert failing == ["watch_dir", "tool:cargo", "tool:rustc"]


def test_missing_tool_and_disk_pressure(tmp_path: Path) -> None:
    missing_cargo = evaluate_health(
        chain="non_evm",
        watch_dir=tmp_path,
        snapshot=_snapshot(),
        disk_error_percent=95.0,
        which=lambda tool: None if tool == "cargo" else "/bin/" + tool,
    )
    assert missing_cargo.message == "ERROR: cargo missing"

    full_disk = evaluate_health(
        chain="evm",
        watch_dir=tmp_path,
        snapshot=_snapshot(disk=97.4),
        disk_error_percent=95.0,
        which=_all_tools,
    )
    assert full_disk.message == "ERROR: Disk usage too high: 97%"

    unknown_disk = evaluate_health(
        chain="evm",
        watch_dir=tmp_path,
        snapshot=_snapshot(disk=None),
        disk_error_percent=95.0,
        which=_all_tools,
    )
    assert unknown_disk.ok


def test_monitor_resources_returns_threshold_warnings() -> None:
    class _Recorder:
        def __init__(self) -> None:
            self.events: list[tuple[str, str, dict[str, object]]] = []

        def info(self, event: str, **fields: object) -> None:
            self.events.append(("info", event, fields))

        def warning(self, event: str, **fields: object) -> None:
            self.events.append(("warning", event, fields))

    recorder = _Recorder()
    warnings = monitor_resources(
        _snapshot(disk=92.0, memory=95.5),
        memory_warn_percent=90.0,
        disk_warn_percent=90.0,
        logger=recorder,
    )

    assert warnings == ("High memory usage: 95.5%", "High disk usage: 92.0%")
    assert recorder.events[0][1] == "resource_snapshot"
    assert recorder.events[0][2]["category"] == "performance"
    assert [event for level, event, _ in recorder.events if level == "warning"] == [
        "resource_threshold_exceeded",
        "resource_threshold_exceeded",
    ]


def test_collect_metrics_writes_container_payload(tmp_path: Path) -> None:
    registry = MetricsRegistry()
    registry.inc("jobs_submitted_total")

    payload = collect_metrics(
        tmp_path / "metrics.json",
        chain="non_evm",
        processed_files=4,
        snapshot=_snapshot(),
        registry=registry,
        now=_NOW,
    )

    written = json.loads((tmp_path / "metrics.json").read_text(encoding="utf-8"))
    assert written == payload
    assert written["container"] == "non-evm"
    assert written["timestamp"] == "2026-03-01T12:00:00Z"
    assert written["metrics"]["processed_files"] == 4
    assert written["registry"]["counters"] == {"jobs_submitted_total": 1.0}


async def test_reporter_writes_files_and_stops_on_cancel(tmp_path: Path) -> None:
    watch_dir = tmp_path / "input"
    watch_dir.mkdir()
    provider = _FixedProvider(_snapshot())
    reporter = HealthReporter(
        chain="evm",
        watch_dir=watch_dir,
        status_file=tmp_path / "logs" / "health.json",
        metrics_file=tmp_path / "logs" / "metrics.json",
        health_config=default_config()["health"],
        provider=provider,
        registry=MetricsRegistry(),
        processed_files=lambda: 2,
        which=_all_tools,
    )
    stop = CancellationToken()
    stop.cancel()

    await reporter.run(stop)
    assert provider.calls == 0

    status = reporter.report_once()
    assert status.ok
    health = json.loads((tmp_path / "logs" / "health.json").read_text(encoding="utf-8"))
    assert health["status"] == "OK"
    assert health["resources"]["disk_percent"] == 40.0
    metrics = json.loads((tmp_path / "logs" / "metrics.json").read_text(encoding="utf-8"))
    assert metrics["metrics"]["processed_files"] == 2


def test_system_provider_returns_bounded_percentages(tmp_path: Path) -> None:
    snapshot = SystemMetricsProvider(disk_path=tmp_path).snapshot()
    for value in (snapshot.cpu_percent, snapshot.memory_percent, snapshot.disk_percent):
        assert value is None or 0.0 <= value <= 100.0
