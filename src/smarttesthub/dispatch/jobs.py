"""Immutable job descriptors and outcomes passed between intake, dispatcher and pipelines."""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from smarttesthub.constants import CHAINS
from smarttesthub.utils.hashing import file_version

if TYPE_CHECKING:
    from smarttesthub.pipelines.base import PipelineResult

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
JOB_ID_PREFIX: Final[str] = "job"
_ULID_LENGTH: Final[int] = 26
_ULID_RANDOM_BYTES: Final[int] = 10
_JOB_ID_RE: Final[re.Pattern[str]] = re.compile(r"^job-[0-9A-HJKMNP-TV-Z]{26}$")

_RandBytes = Callable[[int], bytes]


class JobStatus(StrEnum):
    """Terminal status of one unit of work."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REJECTED = "rejected"
    ERROR = "error"


def generate_job_id(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate ``job-<ULID>``; lexical order follows submission time."""

    ts_ms = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    if not 0 <= ts_ms < (1 << 48):
        raise ValueError(f"timestamp_ms out of range: {ts_ms}")
    random_bytes = (randbytes or secrets.token_bytes)(_ULID_RANDOM_BYTES)
    if len(random_bytes) != _ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {_ULID_RANDOM_BYTES} bytes")

    value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")
    chars: list[str] = []
    for _ in range(_ULID_LENGTH):
        chars.append(CROCKFORD_BASE32_ALPHABET[value & 0x1F])
        value >>= 5
    return f"{JOB_ID_PREFIX}-{''.join(reversed(chars))}"


def validate_job_id(job_id: str) -> None:
    if not _JOB_ID_RE.fullmatch(job_id):
        raise ValueError(f"invalid job id: {job_id!r}")


@dataclass(frozen=True, slots=True)
class JobDescriptor:
    """Everything a worker needs to process one dropped file, passed by value."""

    job_id: str
    source_path: Path
    chain: str
    name: str
    version: str
    submitted_at: datetime

    def __post_init__(self) -> None:
        validate_job_id(self.job_id)
        if self.chain not in CHAINS:
            raise ValueError(f"unsupported chain {self.chain!r}")
        if not self.name:
            raise ValueError("name must not be empty")
        object.__setattr__(self, "source_path", Path(self.source_path))

    @classmethod
    def for_source(
        cls,
        source_path: Path | str,
        *,
        chain: str,
        version: str | None = None,
        now: datetime | None = None,
    ) -> JobDescriptor:
        """Describe ``source_path``; ``version`` defaults to its current size/mtime token."""

        path = Path(source_path)
        resolved_version = version
        if resolved_version is None:
            try:
                resolved_version = file_version(path).token()
            except OSError:
                resolved_version = "missing"
        return cls(
            job_id=generate_job_id(),
            source_path=path,
            chain=chain,
            name=path.stem or path.name,
            version=resolved_version,
            submitted_at=now if now is not None else datetime.now(tz=UTC),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "source_path": self.source_path.as_posix(),
            "chain": self.chain,
            "name": self.name,
            "version": self.version,
            "submitted_at": _iso8601z(self.submitted_at),
        }


@dataclass(frozen=True, slots=True)
class JobOutcome:
    descriptor: JobDescriptor
    status: JobStatus
    started_at: datetime
    finished_at: datetime
    message: str = ""
    pipeline: PipelineResult | None = None
    report_paths: tuple[Path, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCEEDED

    @property
    def duration_ms(self) -> int:
        return max(0, int((self.finished_at - self.started_at).total_seconds() * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.descriptor.to_dict(),
            "status": self.status.value,
            "message": self.message,
            "started_at": _iso8601z(self.started_at),
            "finished_at": _iso8601z(self.finished_at),
            "duration_ms": self.duration_ms,
            "pipeline": None if self.pipeline is None else self.pipeline.to_dict(),
            "reports": [path.as_posix() for path in self.report_paths],
        }


def _iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = [
    "JOB_ID_PREFIX",
    "JobDescriptor",
    "JobOutcome",
    "JobStatus",
    "generate_job_id",
    "validate_job_id",
]
