"""
smarttesthub-harness - hashing utilities

File: src/smarttesthub/utils/hashing.py
Last updated: 2026-10-19

Purpose
- SHA-256 digests for dropped source files.
- Version fingerprints used by the watcher and processed markers.
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path

PathLike = str | os.PathLike[str]

_FILE_READ_CHUNK_BYTES = 1024 * 1024

__all__ = [
    "FileVersion",
    "file_version",
    "sha256_file",
    "sha256_text",
]


@dataclass(frozen=True, slots=True, order=True)
class FileVersion:
    """Cheap identity for one on-disk version of a file."""

    size: int
    mtime_ns: int

    def token(self) -> str:
        return f"{self.size}:{self.mtime_ns}"

    @classmethod
    def from_token(cls, token: str) -> FileVersion:
        size_text, _, mtime_text = token.strip().partition(":")
        try:
            return cls(size=int(size_text), mtime_ns=int(mtime_text))
        except ValueError as exc:
            raise ValueError(f"invalid file version token: {token!r}") from exc


def file_version(path: PathLike) -> FileVersion:
    stat_result = Path(path).stat()
    return FileVersion(size=int(stat_result.st_size), mtime_ns=int(stat_result.st_mtime_ns))


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return hashlib.sha256(text.encode(encoding)).hexdigest()


def sha256_file(path: PathLike, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()
