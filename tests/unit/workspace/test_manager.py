"""
smarttesthub-harness - unit tests for workspace lifecycle

File: tests/unit/workspace/test_manager.py
Last updated: 2026-10-19

Purpose
- Validate per-job workspace layout, metadata, listing, and guarded cleanup.

What this test file should cover
- Chain skeletons and source placement (contracts/ vs src/lib.rs).
- Collision and identifier safety.
- Cleanup never escapes the work root.
"""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from smarttesthub.dispatch.jobs import JobDescriptor
from smarttesthub.workspace.manager import (
    CHAIN_SKELETONS,
    WORKSPACE_METADATA_FILE,
    Workspace,
    WorkspaceError,
    WorkspaceManager,
)

_NOW = datetime(2026, 5, 6, 7, 8, 9, tzinfo=UTC)


def _job(tmp_path: Path, name: str, chain: str, text: str = "// source\n") -> JobDescriptor:
    source = tmp_path / "input" / name
    source.parent.mkdir(parents=True, exist_ok=True)
    source.write_text(text, encoding="utf-8")
    return JobDescriptor.for_source(source, chain=chain, now=_NOW)


def _manager(tmp_path: Path) -> WorkspaceManager:
    return WorkspaceManager(tmp_path / "work", now_fn=lambda: _NOW)


def test_evm_workspace_layout(tmp_path: Path) -> None:
    job = _job(tmp_path, "Token.sol", "evm", "contract Token {}\n")
    workspace = _manager(tmp_path).create(job)

    assert workspace.root == (tmp_path / "work").resolve() / job.job_id
    for relative in CHAIN_SKELETONS["evm"]:
        assert (workspace.root / relative).is_dir()
    assert workspace.source_path == workspace.root / "contracts" / "Token.sol"
    assert workspace.source_path.read_text(encoding="utf-8") == "contract Token {}\n"
    assert workspace.original_name == "Token.sol"
    assert workspace.created_at == _NOW


def test_non_evm_source_becomes_crate_root(tmp_path: Path) -> None:
    job = _job(tmp_path, "escrow.rs", "non_evm", "pub fn f() {}\n")
    workspace = _manager(tmp_path).create(job)

    assert workspace.source_path == workspace.root / "src" / "lib.rs"
    assert workspace.original_name == "escrow.rs"
    assert workspace.reports_dir.is_dir()


def test_metadata_round_trips_through_list_active(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    created = manager.create(_job(tmp_path, "A.sol", "evm"))
    (manager.work_root / "stray").mkdir()

    (listed,) = manager.list_active()

    assert listed == created
    assert (created.root / WORKSPACE_METADATA_FILE).is_file()


def test_metadata_records_source_digest(tmp_path: Path) -> None:
    body = "contract Vault {}\n"
    workspace = _manager(tmp_path).create(_job(tmp_path, "Vault.sol", "evm", body))

    expected = hashlib.sha256(body.encode("utf-8")).hexdigest()
    payload = json.loads(
        (workspace.root / WORKSPACE_METADATA_FILE).read_text(encoding="utf-8")
    )
    assert workspace.source_sha256 == expected
    assert payload["source_sha256"] == expected
    assert payload["job"]["source_path"].endswith("Vault.sol")


def test_existing_workspace_directory_is_a_collision(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    job = _job(tmp_path, "A.sol", "evm")
    manager.create(job)
    with pytest.raises(WorkspaceError, match="already exists"):
        manager.create(job)


def test_missing_source_leaves_no_partial_workspace(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    job = JobDescriptor.for_source(tmp_path / "input" / "Gone.sol", chain="evm")

    with pytest.raises(WorkspaceError, match="unable to prepare workspace"):
        manager.create(job)
    assert list(manager.work_root.iterdir()) == []


def test_cleanup_removes_workspace(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    workspace = manager.create(_job(tmp_path, "A.sol", "evm"))

    manager.cleanup(workspace)
    manager.cleanup(workspace)

    assert not workspace.root.exists()
    assert manager.work_root.is_dir()


def test_cleanup_refuses_paths_outside_work_root(tmp_path: Path) -> None:
    manager = _manager(tmp_path)
    outside = tmp_path / "elsewhere"
    outside.mkdir()
    rogue = Workspace(
        job_id="job-rogue",
        chain="evm",
        root=outside,
        source_path=outside / "A.sol",
        original_name="A.sol",
        created_at=_NOW,
    )
    manager.work_root.mkdir(parents=True)

    with pytest.raises(WorkspaceError, match="outside work root"):
        manager.cleanup(rogue)
    assert outside.is_dir()
