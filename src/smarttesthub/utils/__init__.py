"""Utility exports for filesystem, hashing, and concurrency helpers."""

from smarttesthub.utils.concurrency import CancellationToken, RetryOutcome, retry_with_backoff
from smarttesthub.utils.fs import (
    atomic_write,
    atomic_write_json,
    ensure_directories,
    is_within,
    safe_delete,
)
from smarttesthub.utils.hashing import FileVersion, file_version, sha256_file, sha256_text

__all__ = [
    "CancellationToken",
    "FileVersion",
    "RetryOutcome",
    "atomic_write",
    "atomic_write_json",
    "ensure_directories",
    "file_version",
    "is_within",
    "retry_with_backoff",
    "safe_delete",
    "sha256_file",
    "sha256_text",
]
