"""
smarttesthub-harness - input directory watcher.

File: src/smarttesthub/intake/watcher.py
Last updated: 2026-10-19

Purpose
- Detect dropped source files by polling the watch directory (no inotify dependency).

Functional requirements
- A file is emitted once it is stable: same ``(size, mtime_ns)`` for ``stable_polls``
  consecutive polls after first sight.
- Each stable version is emitted once. Re-dropping a file (new size or mtime)
  emits it again.
- Processed markers (``<processed_dir>/<file name>.done``) hold the version token,
  so a restart does not re-emit versions that were already processed.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from smarttesthub.constants import PROCESSED_MARKER_SUFFIX
from smarttesthub.utils.concurrency import CancellationToken
from smarttesthub.utils.fs import atomic_write
from smarttesthub.utils.hashing import FileVersion, file_version


@dataclass(frozen=True, slots=True)
class DetectedFile:
    path: Path
    version: FileVersion


@dataclass(slots=True)
class _Observation:
    version: FileVersion
    unchanged_polls: int = 0


class PollingWatcher:
    """Poll ``watch_dir`` for files with ``extension`` and report stable new versions."""

    def __init__(
        self,
        watch_dir: Path | str,
        *,
        extension: str,
        processed_dir: Path | str,
        stable_polls: int = 1,
        poll_interval_seconds: float = 2.0,
        logger: Any | None = None,
    ) -> None:
        if stable_polls < 0:
            raise ValueError("stable_polls must be >= 0")
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if not extension.startswith("."):
            raise ValueError("extension must start with '.'")

        self._watch_dir = Path(watch_dir)
        self._extension = extension.lower()
        self._processed_dir = Path(processed_dir)
        self._stable_polls = stable_polls
        self._poll_interval = poll_interval_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._observations: dict[Path, _Observation] = {}
        self._emitted: dict[Path, FileVersion] = {}
        self._processed_count = 0

    @property
    def watch_dir(self) -> Path:
        return self._watch_dir

    @property
    def processed_count(self) -> int:
        """Markers written by this watcher since start."""

        return self._processed_count

    def marker_path(self, path: Path | str) -> Path:
        return self._processed_dir / f"{Path(path).name}{PROCESSED_MARKER_SUFFIX}"

    def is_processed(self, path: Path | str, version: FileVersion) -> bool:
        marker = self.marker_path(path)
        try:
            recorded = marker.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return False
        try:
            return FileVersion.from_token(recorded) == version
        except ValueError:
            self._logger.warning("processed_marker_unreadable", marker=marker.as_posix())
            return False

    def mark_processed(self, path: Path | str, version: FileVersion) -> Path:
        """Record ``version`` of ``path`` as processed."""

        marker = atomic_write(self.marker_path(path), version.token() + "\n")
        self._processed_count += 1
        return marker

    def scan_once(self) -> tuple[DetectedFile, ...]:
        """Poll once and return files that just became stable, sorted by name."""

        try:
            entries = sorted(self._watch_dir.iterdir())
        except FileNotFoundError:
            self._logger.warning("watch_dir_missing", watch_dir=self._watch_dir.as_posix())
            return ()

        seen: set[Path] = set()
        ready: list[DetectedFile] = []
        for entry in entries:
            if entry.name.startswith(".") or entry.suffix.lower() != self._extension:
                continue
            try:
                if not entry.is_file():
                    continue
                version = file_version(entry)
            except FileNotFoundError:
                continue
            seen.add(entry)

            observation = self._observations.get(entry)
            if observation is None or observation.version != version:
                observation = _Observation(version=version)
                self._observations[entry] = observation
            else:
                observation.unchanged_polls += 1

            if observation.unchanged_polls < self._stable_polls:
                continue
            if self._emitted.get(entry) == version:
                continue
            self._emitted[entry] = version
            if self.is_processed(entry, version):
                self._logger.debug("watcher_skip_processed", source=entry.name)
                continue
            ready.append(DetectedFile(path=entry, version=version))

        for vanished in set(self._observations) - seen:
            del self._observations[vanished]
            self._emitted.pop(vanished, None)

        for detected in ready:
            self._logger.info(
                "watcher_file_detected", source=detected.path.name, version=detected.version.token()
            )
        return tuple(ready)

    async def watch(
        self,
        callback: Callable[[DetectedFile], None],
        stop: CancellationToken,
    ) -> None:
        """Call ``callback`` for each newly stable file until ``stop`` is cancelled."""

        self._logger.info(
            "watcher_started",
            watch_dir=self._watch_dir.as_posix(),
            extension=self._extension,
            poll_interval_seconds=self._poll_interval,
        )
        while not stop.is_cancelled:
            for detected in self.scan_once():
                callback(detected)
            if await stop.sleep(self._poll_interval):
                break
        self._logger.info("watcher_stopped", watch_dir=self._watch_dir.as_posix())


__all__ = ["DetectedFile", "PollingWatcher"]
