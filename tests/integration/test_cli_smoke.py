"""
smarttesthub-harness - CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py
Last updated: 2026-10-19

Purpose
- Enforce observable CLI behavior for `python -m smarttesthub` config/doctor/health/run.
- Verify exit codes, JSON output, and the files a run leaves behind.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


def _run_cli(
    cwd: Path, *args: str, path_dir: Path | None = None
) -> subprocess.CompletedProcess[str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("SMARTHUB_")}
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    env["NO_COLOR"] = "1"
    if path_dir is not None:
        # An empty PATH: no toolchain binary resolves.
        env["PATH"] = str(path_dir)
    return subprocess.run(
        [sys.executable, "-m", "smarttesthub", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _json(completed: subprocess.CompletedProcess[str]) -> dict[str, Any]:
    payload = json.loads(completed.stdout)
    assert isinstance(payload, dict)
    return payload


def _empty_path(tmp_path: Path) -> Path:
    empty = tmp_path / "empty-bin"
    empty.mkdir()
    return empty


def test_config_json_shows_defaults_and_chain_alias(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "config", "--json")
    assert completed.returncode == 0, completed.stderr
    payload = _json(completed)
    assert payload["command"] == "config"
    assert payload["active_profile"] is None
    assert payload["config"]["harness"]["chain"] == "evm"
    assert payload["config"]["dispatch"]["max_concurrency"] == 3
    assert payload["config"]["paths"]["input_dir"] == str((tmp_path / "input").resolve())

    aliased = _json(_run_cli(tmp_path, "config", "--json", "--chain", "solana"))
    assert aliased["config"]["harness"]["chain"] == "non_evm"


def test_config_file_and_profile_are_applied(tmp_path: Path) -> None:
    (tmp_path / "smarthub.toml").write_text(
        "[dispatch]\nmax_concurrency = 5\n", encoding="utf-8"
    )
    completed = _run_cli(tmp_path, "config", "--json", "--profile", "non-evm")
    assert completed.returncode == 0, completed.stderr
    payload = _json(completed)
    assert payload["active_profile"] == "non-evm"
    assert payload["config"]["dispatch"]["max_concurrency"] == 5
    assert payload["config"]["harness"]["chain"] == "non_evm"


def test_missing_config_file_is_a_config_error(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "config", "--config", "nope.toml")
    assert completed.returncode == 2
    assert completed.stderr.startswith("error: ")
    assert "config file not found" in completed.stderr


def test_doctor_reports_missing_required_tools(tmp_path: Path) -> None:
    (tmp_path / "input").mkdir()
    completed = _run_cli(tmp_path, "doctor", "--json", path_dir=_empty_path(tmp_path))
    assert completed.returncode == 3
    payload = _json(completed)
    assert payload["ok"] is False
    statuses = {check["name"]: check["status"] for check in payload["checks"]}
    assert statuses["required:npx"] == "fail"
    assert statuses["required:node"] == "fail"
    assert statuses["optional:slither"] == "ok"
    assert statuses["input_dir"] == "ok"


def test_health_json_reports_first_failing_check(tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path, "health", "--json", "--chain", "non_evm", path_dir=_empty_path(tmp_path)
    )
    assert completed.returncode == 3
    payload = _json(completed)
    assert payload["status"] == "ERROR"
    assert payload["message"] == "ERROR: cargo missing"
    written = json.loads((tmp_path / "logs" / "health.json").read_text(encoding="utf-8"))
    assert written["message"] == payload["message"]
    assert (tmp_path / "logs" / "metrics.json").exists()


def test_run_rejects_wrong_extension(tmp_path: Path) -> None:
    notes = tmp_path / "notes.txt"
    notes.write_text("hello", encoding="utf-8")
    completed = _run_cli(tmp_path, "run", str(notes), "--json", path_dir=_empty_path(tmp_path))
    assert completed.returncode == 1
    payload = _json(completed)
    assert payload["failed"] == 1
    (job,) = payload["jobs"]
    assert job["status"] == "rejected"
    assert job["job"]["job_id"].startswith("job-")
    assert (tmp_path / "processed" / "notes.txt.done").exists()
    assert (tmp_path / "logs" / "error.log").exists()


def test_run_without_toolchain_skips_every_stage(tmp_path: Path) -> None:
    source = tmp_path / "Token.sol"
    source.write_text(
        "// SPDX-License-Identifier: MIT\npragma solidity ^0.8.20;\ncontract Token {}\n",
        encoding="utf-8",
    )
    completed = _run_cli(tmp_path, "run", str(source), "--json", path_dir=_empty_path(tmp_path))
    assert completed.returncode == 0, completed.stderr
    (job,) = _json(completed)["jobs"]
    assert job["status"] == "succeeded"
    assert {stage["status"] for stage in job["pipeline"]["stages"]} == {"skip"}
    summary = tmp_path / "logs" / "reports" / "test-summary-Token.md"
    assert "**Overall**: PASSED" in summary.read_text(encoding="utf-8")
    assert list((tmp_path / "work").iterdir()) == []
