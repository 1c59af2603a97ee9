"""Intake: watch for dropped sources and validate them before dispatch."""

from smarttesthub.intake.validation import (
    SecretFinding,
    ValidationError,
    check_environment,
    sanitized_environment,
    scan_for_secrets,
    validate_source_file,
)
from smarttesthub.intake.watcher import DetectedFile, PollingWatcher

__all__ = [
    "DetectedFile",
    "PollingWatcher",
    "SecretFinding",
    "ValidationError",
    "check_environment",
    "sanitized_environment",
    "scan_for_secrets",
    "validate_source_file",
]
