"""Thread-safe harness metrics registry with deterministic JSON export."""

from __future__ import annotations

import json
import math
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

from smarttesthub.utils.fs import atomic_write

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MetricLabels = tuple[tuple[str, str], ...]

_METRIC_NAME_MAX_LEN: Final[int] = 128
_LABEL_VALUE_MAX_LEN: Final[int] = 256

JOBS_SUBMITTED_TOTAL: Final[str] = "jobs_submitted_total"
JOBS_COMPLETED_TOTAL: Final[str] = "jobs_completed_total"
STAGE_RUNS_TOTAL: Final[str] = "stage_runs_total"
JOB_DURATION_MS: Final[str] = "job_duration_ms"
STAGE_DURATION_MS: Final[str] = "stage_duration_ms"
DISPATCHER_ACTIVE: Final[str] = "dispatcher_active"
DISPATCHER_QUEUED: Final[str] = "dispatcher_queued"


@dataclass(frozen=True, order=True, slots=True)
class _MetricKey:
    name: str
    labels: _MetricLabels


@dataclass(slots=True)
class _DistributionState:
    count: int = 0
    total: float = 0.0
    minimum: float | None = None
    maximum: float | None = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        if self.minimum is None or value < self.minimum:
            self.minimum = value
        if self.maximum is None or value > self.maximum:
            self.maximum = value

    def as_dict(self) -> dict[str, JSONValue]:
        return {
            "count": self.count,
            "sum": self.total,
            "min": self.minimum,
            "max": self.maximum,
            "avg": self.total / self.count if self.count else 0.0,
        }


class MetricsRegistry:
    """In-memory metrics store shared by the dispatcher, pipelines and health reporter."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._created_at = datetime.now(tz=UTC)
        self._counters: dict[_MetricKey, float] = {}
        self._gauges: dict[_MetricKey, float] = {}
        self._distributions: dict[_MetricKey, _DistributionState] = {}

    @property
    def uptime_seconds(self) -> float:
        with self._lock:
            created_at = self._created_at
        return max(0.0, (datetime.now(tz=UTC) - created_at).total_seconds())

    def inc(
        self,
        name: str,
        amount: float = 1.0,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        """Increment a counter by ``amount`` (>= 0)."""

        delta = _as_finite_float(amount, path="amount")
        if delta < 0:
            raise ValueError("counter increment amount must be >= 0")

        key = _metric_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0.0) + delta

    def set_gauge(
        self,
        name: str,
        value: float,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        key = _metric_key(name, labels)
        gauge_value = _as_finite_float(value, path="value")
        with self._lock:
            self._gauges[key] = gauge_value

    def observe(
        self,
        name: str,
        value: float,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        """Record a sample for count/sum/min/max/avg statistics."""

        key = _metric_key(name, labels)
        sample = _as_finite_float(value, path="value")
        with self._lock:
            state = self._distributions.get(key)
            if state is None:
                state = _DistributionState()
                self._distributions[key] = state
            state.observe(sample)

    def get_counter(self, name: str, *, labels: Mapping[str, str] | None = None) -> float:
        key = _metric_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def get_gauge(self, name: str, *, labels: Mapping[str, str] | None = None) -> float | None:
        key = _metric_key(name, labels)
        with self._lock:
            return self._gauges.get(key)

    def get_distribution(
        self,
        name: str,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> dict[str, JSONValue] | None:
        key = _metric_key(name, labels)
        with self._lock:
            state = self._distributions.get(key)
            return None if state is None else state.as_dict()

    def total_counter(self, name: str) -> float:
        """Sum a counter across every label combination."""

        normalized = _validate_metric_name(name)
        with self._lock:
            return sum(value for key, value in self._counters.items() if key.name == normalized)

    def snapshot(self) -> dict[str, JSONValue]:
        """Return deterministic snapshot with stable key ordering."""

        with self._lock:
            created_at = self._created_at
            counters = tuple(sorted(self._counters.items()))
            gauges = tuple(sorted(self._gauges.items()))
            distributions = tuple(sorted(self._distributions.items()))

        now = datetime.now(tz=UTC)
        return {
            "metadata": {
                "created_at": created_at.isoformat(timespec="seconds").replace("+00:00", "Z"),
                "snapshot_at": now.isoformat(timespec="seconds").replace("+00:00", "Z"),
                "uptime_seconds": max(0.0, (now - created_at).total_seconds()),
            },
            "counters": {_metric_identifier(key): value for key, value in counters},
            "gauges": {_metric_identifier(key): value for key, value in gauges},
            "distributions": {
                _metric_identifier(key): state.as_dict() for key, state in distributions
            },
        }

    def to_json(self, *, indent: int | None = None) -> str:
        payload = self.snapshot()
        if indent is None:
            return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return json.dumps(payload, sort_keys=True, indent=indent, ensure_ascii=False)

    def export_json(self, path: str | Path, *, indent: int = 2) -> Path:
        """Atomically write snapshot JSON to ``path``."""

        return atomic_write(path, self.to_json(indent=indent) + "\n")


def _metric_key(name: str, labels: Mapping[str, str] | None) -> _MetricKey:
    return _MetricKey(name=_validate_metric_name(name), labels=_normalize_labels(labels))


def _metric_identifier(key: _MetricKey) -> str:
    if not key.labels:
        return key.name
    labels = ",".join(f"{k}={v}" for k, v in key.labels)
    return f"{key.name}{{{labels}}}"


def _validate_metric_name(name: str) -> str:
    normalized = name.strip()
    if not normalized:
        raise ValueError("metric name must not be empty")
    if len(normalized) > _METRIC_NAME_MAX_LEN:
        raise ValueError(f"metric name must be <= {_METRIC_NAME_MAX_LEN} characters")
    return normalized


def _normalize_labels(labels: Mapping[str, str] | None) -> _MetricLabels:
    if labels is None:
        return ()

    out: list[tuple[str, str]] = []
    for key, value in labels.items():
        key_name = key.strip()
        val_name = str(value).strip()
        if not key_name:
            raise ValueError("label key must not be empty")
        if not val_name:
            raise ValueError(f"label value for {key!r} must not be empty")
        if len(val_name) > _LABEL_VALUE_MAX_LEN:
            raise ValueError(f"label value for {key!r} exceeds {_LABEL_VALUE_MAX_LEN} characters")
        out.append((key_name, val_name))

    out.sort(key=lambda item: item[0])
    return tuple(out)


def _as_finite_float(value: float, *, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{path} must be numeric, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        raise ValueError(f"{path} must be finite")
    return parsed


__all__ = [
    "DISPATCHER_ACTIVE",
    "DISPATCHER_QUEUED",
    "JOBS_COMPLETED_TOTAL",
    "JOBS_SUBMITTED_TOTAL",
    "JOB_DURATION_MS",
    "JSONScalar",
    "JSONValue",
    "MetricsRegistry",
    "STAGE_DURATION_MS",
    "STAGE_RUNS_TOTAL",
]
