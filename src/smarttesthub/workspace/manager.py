"""Per-job isolated workspace lifecycle management."""

from __future__ import annotations

import json
import re
import shutil
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from smarttesthub.constants import CHAIN_EVM, CHAIN_NON_EVM
from smarttesthub.utils.fs import atomic_write_json, ensure_directories, is_within, safe_delete
from smarttesthub.utils.hashing import sha256_file

if TYPE_CHECKING:
    from collections.abc import Callable

    from smarttesthub.dispatch.jobs import JobDescriptor

WORKSPACE_METADATA_FILE: Final[str] = ".smarthub-workspace.json"
_SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")

CHAIN_SKELETONS: Final[dict[str, tuple[str, ...]]] = {
    CHAIN_EVM: (
        "contracts",
        "test",
        "config",
        "logs/slither",
        "logs/coverage",
        "logs/gas",
        "logs/foundry",
        "logs/reports",
    ),
    CHAIN_NON_EVM: (
        "src",
        "config",
        "logs/coverage",
        "logs/reports",
    ),
}


class WorkspaceError(RuntimeError):
    """Raised when a job workspace cannot be created or removed safely."""


@dataclass(frozen=True, slots=True)
class Workspace:
    """
    Workspace descriptor returned by the manager.

    ``source_path`` is the job's private copy of the dropped file and
    ``original_name`` the dropped file's name. ``source_sha256`` is the digest of the
    copied source. Tools run with ``root`` as their working directory.
    """

    job_id: str
    chain: str
    root: Path
    source_path: Path
    original_name: str
    created_at: datetime
    source_sha256: str = ""

    @property
    def config_dir(self) -> Path:
        return self.root / "config"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def reports_dir(self) -> Path:
        return self.root / "logs" / "reports"

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "chain": self.chain,
            "root": self.root.as_posix(),
            "source_path": self.source_path.as_posix(),
            "original_name": self.original_name,
            "created_at": self.created_at.isoformat(timespec="seconds").replace("+00:00", "Z"),
            "source_sha256": self.source_sha256,
        }


class WorkspaceManager:
    """Create and remove ``work_root/<job_id>/`` trees, never anything outside ``work_root``."""

    def __init__(
        self,
        work_root: str | Path,
        *,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._work_root = Path(work_root).expanduser().resolve(strict=False)
        self._now_fn: Callable[[], datetime] = now_fn if now_fn is not None else _utc_now
        self._lock = threading.RLock()

    @property
    def work_root(self) -> Path:
        return self._work_root

    def create(self, job: JobDescriptor) -> Workspace:
        """Lay out the chain skeleton for ``job`` and copy its source in."""

        job_id = _validate_identifier(job.job_id, "job_id")
        skeleton = CHAIN_SKELETONS.get(job.chain)
        if skeleton is None:
            raise WorkspaceError(f"unsupported chain {job.chain!r}")

        workspace_dir = self._work_root / job_id
        with self._lock:
            self._work_root.mkdir(parents=True, exist_ok=True)
            if workspace_dir.exists() or workspace_dir.is_symlink():
                raise WorkspaceError(f"workspace directory already exists: {workspace_dir}")
            workspace_dir.mkdir()

        try:
            ensure_directories(workspace_dir, skeleton)
            destination = workspace_dir / _source_destination(job)
            shutil.copy2(job.source_path, destination)
            workspace = Workspace(
                job_id=job_id,
                chain=job.chain,
                root=workspace_dir,
                source_path=destination,
                original_name=job.source_path.name,
                created_at=_ensure_aware_utc(self._now_fn()),
                source_sha256=sha256_file(destination),
            )
            atomic_write_json(
                workspace_dir / WORKSPACE_METADATA_FILE,
                {**workspace.to_dict(), "job": job.to_dict()},
            )
        except OSError as exc:
            safe_delete(workspace_dir, self._work_root)
            raise WorkspaceError(f"unable to prepare workspace for {job_id}: {exc}") from exc
        return workspace

    def list_active(self) -> tuple[Workspace, ...]:
        """Return workspaces under ``work_root`` that carry readable metadata."""

        if not self._work_root.is_dir():
            return ()
        found: list[Workspace] = []
        for candidate in sorted(self._work_root.iterdir()):
            if candidate.is_symlink() or not candidate.is_dir():
                continue
            workspace = self._read_metadata(candidate)
            if workspace is not None:
                found.append(workspace)
        return tuple(found)

    def cleanup(self, workspace: Workspace) -> None:
        """Delete ``workspace``; refuses paths that are not inside ``work_root``."""

        if not workspace.root.exists():
            return
        if not is_within(workspace.root, self._work_root):
            raise WorkspaceError(f"refusing to delete outside work root: {workspace.root}")
        with self._lock:
            safe_delete(workspace.root, self._work_root)

    def _read_metadata(self, workspace_dir: Path) -> Workspace | None:
        metadata_path = workspace_dir / WORKSPACE_METADATA_FILE
        if not metadata_path.is_file() or metadata_path.is_symlink():
            return None
        try:
            payload = json.loads(metadata_path.read_text(encoding="utf-8"))
            return Workspace(
                job_id=str(payload["job_id"]),
                chain=str(payload["chain"]),
                root=workspace_dir,
                source_path=Path(str(payload["source_path"])),
                original_name=str(payload["original_name"]),
                created_at=datetime.fromisoformat(
                    str(payload["created_at"]).replace("Z", "+00:00")
                ),
                source_sha256=str(payload.get("source_sha256", "")),
            )
        except (OSError, ValueError, KeyError, TypeError):
            return None


def _source_destination(job: JobDescriptor) -> Path:
    if job.chain == CHAIN_EVM:
        return Path("contracts") / job.source_path.name
    # Cargo builds the crate root from src/lib.rs.
    return Path("src") / "lib.rs"


def _validate_identifier(value: str, field_name: str) -> str:
    if not value:
        raise WorkspaceError(f"{field_name} must not be empty")
    if value in {".", ".."} or _SAFE_ID_PATTERN.fullmatch(value) is None:
        raise WorkspaceError(f"{field_name} contains unsupported characters: {value!r}")
    return value


def _ensure_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


__all__ = [
    "CHAIN_SKELETONS",
    "WORKSPACE_METADATA_FILE",
    "Workspace",
    "WorkspaceError",
    "WorkspaceManager",
]
