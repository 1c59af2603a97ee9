"""
smarttesthub-harness - filesystem utilities

File: src/smarttesthub/utils/fs.py
Last updated: 2026-10-19

Purpose
- Atomic writes for status/metrics/marker files that other processes read while we run.
- Guarded deletion of job workspaces (never outside the work root).

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Deletion refuses paths outside the configured work root.
"""

from __future__ import annotations

import contextlib
import json
import os
import shutil
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "atomic_write_json",
    "ensure_directories",
    "is_within",
    "safe_delete",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> Path:
    """Atomically replace ``path`` with ``data`` (temp file + fsync + ``os.replace``)."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise
    return target


def atomic_write_json(path: PathLike, payload: object, *, indent: int | None = 2) -> Path:
    """Serialize ``payload`` with sorted keys and write it atomically."""

    text = json.dumps(payload, sort_keys=True, indent=indent, ensure_ascii=False)
    return atomic_write(path, text + "\n")


def ensure_directories(root: PathLike, relative_dirs: tuple[str, ...]) -> tuple[Path, ...]:
    """Create ``relative_dirs`` under ``root``; reject absolute or escaping entries."""

    base = Path(root)
    created: list[Path] = []
    for relative in relative_dirs:
        candidate = Path(relative)
        if candidate.is_absolute() or ".." in candidate.parts:
            raise ValueError(f"directory must be relative and inside root: {relative!r}")
        target = base / candidate
        target.mkdir(parents=True, exist_ok=True)
        created.append(target)
    return tuple(created)


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    try:
        resolved_parent = Path(parent).resolve(strict=True)
        resolved_child = Path(child).resolve(strict=True)
    except FileNotFoundError:
        return False
    if not resolved_parent.is_dir():
        return False
    return _is_relative_to(resolved_child, resolved_parent)


def safe_delete(path: PathLike, root: PathLike) -> None:
    """Delete ``path`` only if it lives under ``root``. Symlinks are unlinked, not followed."""

    base = Path(root).resolve(strict=True)
    if not base.is_dir():
        raise NotADirectoryError(f"{base!s} is not a directory")

    target = Path(path)
    candidate = target.parent.resolve(strict=True) / target.name
    if candidate == base or not _is_relative_to(candidate, base):
        raise ValueError(f"refusing to delete path outside root: {target!s}")

    if target.is_symlink():
        target.unlink()
        return

    if target.is_dir():
        shutil.rmtree(target)
        return

    target.unlink()


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True
