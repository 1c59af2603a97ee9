"""
smarttesthub-harness - unit tests for the polling watcher

File: tests/unit/intake/test_watcher.py
Last updated: 2026-10-19

Purpose
- Validate stability detection, once-per-version emission, and processed markers.

What this test file should cover
- A file is emitted only after ``stable_polls`` unchanged polls.
- Re-dropping a file with a new version emits it again.
- Markers suppress re-emission across watcher restarts.
- ``watch`` stops on cancellation.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from smarttesthub.intake.watcher import DetectedFile, PollingWatcher
from smarttesthub.utils.concurrency import CancellationToken
from smarttesthub.utils.hashing import file_version


def _watcher(root: Path, *, stable_polls: int = 1, interval: float = 0.01) -> PollingWatcher:
    return PollingWatcher(
        root / "input",
        extension=".sol",
        processed_dir=root / "processed",
        stable_polls=stable_polls,
        poll_interval_seconds=interval,
    )


def _drop(root: Path, name: str, text: str, *, mtime_ns: int | None = None) -> Path:
    path = root / "input" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    if mtime_ns is not None:
        os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


def _names(detected: tuple[DetectedFile, ...]) -> list[str]:
    return [item.path.name for item in detected]


def test_file_is_emitted_once_after_it_is_stable(tmp_path: Path) -> None:
    watcher = _watcher(tmp_path, stable_polls=1)
    _drop(tmp_path, "Token.sol", "contract Token {}")
    _drop(tmp_path, "notes.txt", "ignored")
    _drop(tmp_path, ".hidden.sol", "ignored")

    assert watcher.scan_once() == ()
    assert _names(watcher.scan_once()) == ["Token.sol"]
    assert watcher.scan_once() == ()


def test_zero_stable_polls_emits_on_first_sight(tmp_path: Path) -> None:
    watcher = _watcher(tmp_path, stable_polls=0)
    _drop(tmp_path, "B.sol", "b")
    _drop(tmp_path, "A.sol", "a")
    assert _names(watcher.scan_once()) == ["A.sol", "B.sol"]


def test_changed_file_restarts_stability_and_is_emitted_again(tmp_path: Path) -> None:
    watcher = _watcher(tmp_path, stable_polls=0)
    _drop(tmp_path, "Token.sol", "v1", mtime_ns=1_000_000_000)
    assert _names(watcher.scan_once()) == ["Token.sol"]

    _drop(tmp_path, "Token.sol", "version two", mtime_ns=2_000_000_000)
    assert _names(watcher.scan_once()) == ["Token.sol"]
    assert watcher.scan_once() == ()


def test_processed_marker_survives_restart(tmp_path: Path) -> None:
    path = _drop(tmp_path, "Token.sol", "contract Token {}", mtime_ns=5_000_000_000)
    first = _watcher(tmp_path, stable_polls=0)
    (detected,) = first.scan_once()

    marker = first.mark_processed(detected.path, detected.version)

    assert marker == tmp_path / "processed" / "Token.sol.done"
    assert marker.read_text(encoding="utf-8").strip() == file_version(path).token()
    assert first.processed_count == 1

    restarted = _watcher(tmp_path, stable_polls=0)
    assert restarted.scan_once() == ()

    _drop(tmp_path, "Token.sol", "contract Token { uint x; }", mtime_ns=6_000_000_000)
    assert _names(restarted.scan_once()) == ["Token.sol"]


def test_unreadable_marker_is_ignored(tmp_path: Path) -> None:
    path = _drop(tmp_path, "Token.sol", "x")
    (tmp_path / "processed").mkdir()
    (tmp_path / "processed" / "Token.sol.done").write_text("garbage", encoding="utf-8")
    watcher = _watcher(tmp_path, stable_polls=0)
    assert not watcher.is_processed(path, file_version(path))


def test_missing_watch_dir_yields_nothing(tmp_path: Path) -> None:
    assert _watcher(tmp_path).scan_once() == ()


@pytest.mark.parametrize(
    ("kwargs", "message"),
    [
        ({"stable_polls": -1}, "stable_polls"),
        ({"poll_interval_seconds": 0}, "poll_interval_seconds"),
        ({"extension": "sol"}, "extension"),
    ],
)
def test_invalid_arguments_are_rejected(
    tmp_path: Path, kwargs: dict[str, object], message: str
) -> None:
    options: dict[str, object] = {"extension": ".sol", "processed_dir": tmp_path}
    options.update(kwargs)
    with pytest.raises(ValueError, match=message):
        PollingWatcher(tmp_path, **options)  # type: ignore[arg-type]


async def test_watch_delivers_files_until_cancelled(tmp_path: Path) -> None:
    watcher = _watcher(tmp_path, stable_polls=0)
    _drop(tmp_path, "Token.sol", "contract Token {}")
    stop = CancellationToken()
    received: list[DetectedFile] = []

    def callback(detected: DetectedFile) -> None:
        received.append(detected)
        stop.cancel()

    await asyncio.wait_for(watcher.watch(callback, stop), timeout=2.0)

    assert _names(tuple(received)) == ["Token.sol"]
