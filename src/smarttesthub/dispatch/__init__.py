"""Bounded dispatch of harness jobs."""

from smarttesthub.dispatch.dispatcher import (
    BoundedDispatcher,
    CompletedWork,
    DispatcherClosedError,
    WorkerHandle,
)
from smarttesthub.dispatch.jobs import (
    JobDescriptor,
    JobOutcome,
    JobStatus,
    generate_job_id,
    validate_job_id,
)

__all__ = [
    "BoundedDispatcher",
    "CompletedWork",
    "DispatcherClosedError",
    "JobDescriptor",
    "JobOutcome",
    "JobStatus",
    "WorkerHandle",
    "generate_job_id",
    "validate_job_id",
]
