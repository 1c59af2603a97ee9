"""Per-job markdown and JSON test summaries."""

from smarttesthub.reporting.summary import (
    ARTIFACTS_DIR_NAME,
    STATUS_LABELS,
    ReportWriteError,
    SummaryReport,
    SummaryReporter,
)

__all__ = [
    "ARTIFACTS_DIR_NAME",
    "STATUS_LABELS",
    "ReportWriteError",
    "SummaryReport",
    "SummaryReporter",
]
