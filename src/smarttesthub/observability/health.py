"""Resource snapshots, health evaluation, and the periodic status/metrics reporter."""

from __future__ import annotations

import os
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Protocol

import structlog

from smarttesthub.constants import (
    CHAIN_EVM,
    CHAIN_NON_EVM,
    CONTAINER_LABELS,
    LOG_CATEGORY_PERFORMANCE,
)
from smarttesthub.utils.fs import atomic_write_json

if TYPE_CHECKING:
    from smarttesthub.observability.metrics import MetricsRegistry
    from smarttesthub.utils.concurrency import CancellationToken

try:  # pragma: no cover - optional dependency.
    import psutil as _psutil
except ModuleNotFoundError:  # pragma: no cover - exercised by fallback tests.
    _psutil = None

_BYTES_PER_MIB: Final[int] = 1024 * 1024
_MEMINFO_PATH: Final[Path] = Path("/proc/meminfo")

REQUIRED_TOOLS: Final[dict[str, tuple[str, ...]]] = {
    CHAIN_EVM: ("npx", "node"),
    CHAIN_NON_EVM: ("cargo", "rustc"),
}

WhichFn = Callable[[str], str | None]

_logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ResourceSnapshot:
    """Coarse point-in-time host usage. ``None`` fields could not be measured."""

    captured_at: datetime
    cpu_percent: float | None
    memory_percent: float | None
    memory_used_mb: float | None
    disk_percent: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "captured_at": _iso8601z(self.captured_at),
            "cpu_percent": self.cpu_percent,
            "memory_percent": self.memory_percent,
            "memory_used_mb": self.memory_used_mb,
            "disk_percent": self.disk_percent,
        }


class MetricsProvider(Protocol):
    """Source for resource snapshots (injectable for tests)."""

    def snapshot(self) -> ResourceSnapshot: ...


class SystemMetricsProvider:
    """Collect host metrics with ``psutil`` when available, stdlib fallback otherwise."""

    def __init__(self, *, disk_path: Path | str | None = None) -> None:
        raw_disk_path = Path.cwd() if disk_path is None else Path(disk_path)
        self._disk_path = raw_disk_path.resolve(strict=False)

    def snapshot(self) -> ResourceSnapshot:
        if _psutil is not None:
            return self._snapshot_from_psutil()
        return self._snapshot_without_psutil()

    def _snapshot_from_psutil(self) -> ResourceSnapshot:
        assert _psutil is not None
        memory = _psutil.virtual_memory()
        return ResourceSnapshot(
            captured_at=datetime.now(tz=UTC),
            cpu_percent=_clamp_percent(float(_psutil.cpu_percent(interval=None))),
            memory_percent=_clamp_percent(float(memory.percent)),
            memory_used_mb=round(int(memory.used) / _BYTES_PER_MIB, 1),
            disk_percent=self._disk_percent(),
        )

    def _snapshot_without_psutil(self) -> ResourceSnapshot:
        memory_total, memory_available = _fallback_memory()
        memory_percent: float | None = None
        memory_used_mb: float | None = None
        if memory_total and memory_available is not None:
            used = memory_total - memory_available
            memory_percent = _clamp_percent(used * 100.0 / memory_total)
            memory_used_mb = round(used / _BYTES_PER_MIB, 1)
        return ResourceSnapshot(
            captured_at=datetime.now(tz=UTC),
            cpu_percent=_fallback_cpu_percent(),
            memory_percent=memory_percent,
            memory_used_mb=memory_used_mb,
            disk_percent=self._disk_percent(),
        )

    def _disk_percent(self) -> float | None:
        try:
            usage = shutil.disk_usage(self._disk_path)
        except OSError:
            return None
        if usage.total <= 0:
            return None
        return _clamp_percent(usage.used * 100.0 / usage.total)


@dataclass(frozen=True, slots=True)
class HealthCheck:
    name: str
    ok: bool
    detail: str


@dataclass(frozen=True, slots=True)
class HealthStatus:
    """Outcome of one health evaluation; ``message`` is the single status line."""

    ok: bool
    message: str
    checks: tuple[HealthCheck, ...]
    checked_at: datetime
    snapshot: ResourceSnapshot | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "status": "OK" if self.ok else "ERROR",
            "message": self.message,
            "checked_at": _iso8601z(self.checked_at),
            "checks": [
                {"name": check.name, "ok": check.ok, "detail": check.detail}
                for check in self.checks
            ],
            "resources": None if self.snapshot is None else self.snapshot.to_dict(),
        }


def monitor_resources(
    snapshot: ResourceSnapshot,
    *,
    memory_warn_percent: float,
    disk_warn_percent: float,
    logger: Any | None = None,
) -> tuple[str, ...]:
    """Log a performance line for ``snapshot`` and return any threshold warnings."""

    log = logger if logger is not None else _logger
    log.info(
        "resource_snapshot",
        category=LOG_CATEGORY_PERFORMANCE,
        memory_percent=snapshot.memory_percent,
        cpu_percent=snapshot.cpu_percent,
        disk_percent=snapshot.disk_percent,
    )

    warnings: list[str] = []
    if snapshot.memory_percent is not None and snapshot.memory_percent > memory_warn_percent:
        warnings.append(f"High memory usage: {snapshot.memory_percent:.1f}%")
    if snapshot.disk_percent is not None and snapshot.disk_percent > disk_warn_percent:
        warnings.append(f"High disk usage: {snapshot.disk_percent:.1f}%")
    for message in warnings:
        log.warning(
            "resource_threshold_exceeded", category=LOG_CATEGORY_PERFORMANCE, detail=message
        )
    return tuple(warnings)


def evaluate_health(
    *,
    chain: str,
    watch_dir: Path | str,
    snapshot: ResourceSnapshot | None,
    disk_error_percent: float,
    which: WhichFn | None = None,
    now: datetime | None = None,
) -> HealthStatus:
    """Check watch-dir access, required toolchain, and disk headroom.

    The first failing check decides the status line. All checks are still
    recorded so ``doctor``/``health --json`` can show the full picture.
    """

    which_fn = which if which is not None else shutil.which
    checked_at = now if now is not None else datetime.now(tz=UTC)
    checks: list[HealthCheck] = []

    watch_path = Path(watch_dir)
    watch_ok = watch_path.is_dir() and os.access(watch_path, os.R_OK | os.X_OK)
    checks.append(
        HealthCheck(
            name="watch_dir",
            ok=watch_ok,
            detail=str(watch_path) if watch_ok else "Watch directory inaccessible",
        )
    )

    for tool in REQUIRED_TOOLS.get(chain, ()):
        resolved = which_fn(tool)
        checks.append(
            HealthCheck(
                name=f"tool:{tool}",
                ok=resolved is not None,
                detail=resolved if resolved is not None else f"{tool} missing",
            )
        )

    disk_percent = snapshot.disk_percent if snapshot is not None else None
    if disk_percent is None:
        checks.append(HealthCheck(name="disk", ok=True, detail="disk usage unavailable"))
    else:
        disk_ok = disk_percent <= disk_error_percent
        checks.append(
            HealthCheck(
                name="disk",
                ok=disk_ok,
                detail=(
                    f"{disk_percent:.1f}%"
                    if disk_ok
                    else f"Disk usage too high: {disk_percent:.0f}%"
                ),
            )
        )

    failing = [check for check in checks if not check.ok]
    if failing:
        message = f"ERROR: {failing[0].detail}"
    else:
        message = f"OK: Container healthy at {_iso8601z(checked_at)}"
    return HealthStatus(
        ok=not failing,
        message=message,
        checks=tuple(checks),
        checked_at=checked_at,
        snapshot=snapshot,
    )


def write_health_file(path: Path | str, status: HealthStatus) -> Path:
    """Atomically overwrite the JSON health file."""

    return atomic_write_json(path, status.to_dict())


def collect_metrics(
    path: Path | str,
    *,
    chain: str,
    processed_files: int,
    snapshot: ResourceSnapshot,
    registry: MetricsRegistry | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Atomically overwrite the JSON metrics file and return the written payload."""

    timestamp = now if now is not None else datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "timestamp": _iso8601z(timestamp),
        "container": CONTAINER_LABELS.get(chain, chain),
        "metrics": {
            "processed_files": processed_files,
            "memory_usage_mb": snapshot.memory_used_mb,
            "cpu_usage_percent": snapshot.cpu_percent,
            "disk_usage_percent": snapshot.disk_percent,
            "uptime_seconds": None if registry is None else round(registry.uptime_seconds, 3),
        },
        "registry": None if registry is None else registry.snapshot(),
    }
    atomic_write_json(path, payload)
    return payload


class HealthReporter:
    """Periodically refresh the health and metrics files until stopped."""

    def __init__(
        self,
        *,
        chain: str,
        watch_dir: Path,
        status_file: Path,
        metrics_file: Path,
        health_config: Mapping[str, Any],
        provider: MetricsProvider,
        registry: MetricsRegistry,
        processed_files: Callable[[], int],
        which: WhichFn | None = None,
    ) -> None:
        self._chain = chain
        self._watch_dir = watch_dir
        self._status_file = status_file
        self._metrics_file = metrics_file
        self._interval = float(health_config["interval_seconds"])
        self._memory_warn = float(health_config["memory_warn_percent"])
        self._disk_warn = float(health_config["disk_warn_percent"])
        self._disk_error = float(health_config["disk_error_percent"])
        self._provider = provider
        self._registry = registry
        self._processed_files = processed_files
        self._which = which

    def report_once(self) -> HealthStatus:
        snapshot = self._provider.snapshot()
        monitor_resources(
            snapshot,
            memory_warn_percent=self._memory_warn,
            disk_warn_percent=self._disk_warn,
        )
        status = evaluate_health(
            chain=self._chain,
            watch_dir=self._watch_dir,
            snapshot=snapshot,
            disk_error_percent=self._disk_error,
            which=self._which,
        )
        write_health_file(self._status_file, status)
        collect_metrics(
            self._metrics_file,
            chain=self._chain,
            processed_files=self._processed_files(),
            snapshot=snapshot,
            registry=self._registry,
        )
        if not status.ok:
            _logger.error("health_check_failed", detail=status.message)
        return status

    async def run(self, stop: CancellationToken) -> None:
        while not stop.is_cancelled:
            try:
                self.report_once()
            except OSError as exc:
                _logger.error("health_report_write_failed", error=str(exc))
            if await stop.sleep(self._interval):
                return


def _clamp_percent(value: float) -> float:
    return round(max(0.0, min(100.0, value)), 1)


def _fallback_cpu_percent() -> float | None:
    try:
        load_1m = os.getloadavg()[0]
    except (AttributeError, OSError):
        return None
    cpus = os.cpu_count() or 1
    return _clamp_percent(load_1m * 100.0 / cpus)


def _fallback_memory() -> tuple[int | None, int | None]:
    try:
        lines = _MEMINFO_PATH.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None, None

    values: dict[str, int] = {}
    for line in lines:
        key, _, rest = line.partition(":")
        parts = rest.split()
        if parts and parts[0].isdigit():
            values[key.strip()] = int(parts[0]) * 1024
    return values.get("MemTotal"), values.get("MemAvailable")


def _iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


__all__ = [
    "HealthCheck",
    "HealthReporter",
    "HealthStatus",
    "MetricsProvider",
    "REQUIRED_TOOLS",
    "ResourceSnapshot",
    "SystemMetricsProvider",
    "collect_metrics",
    "evaluate_health",
    "monitor_resources",
    "write_health_file",
]
