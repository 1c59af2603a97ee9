"""Unit tests for the per-job markdown/JSON summaries."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from smarttesthub.dispatch.jobs import JobDescriptor
from smarttesthub.pipelines.base import PipelineResult, StageResult, StageStatus
from smarttesthub.pipelines.evm import EVM_REPORT_ROWS, SLITHER_REPORT
from smarttesthub.reporting.summary import STATUS_LABELS, ReportWriteError, SummaryReporter
from smarttesthub.workspace.manager import Workspace

NOW = datetime(2026, 10, 19, 8, 30, 0, tzinfo=UTC)


def _descriptor(tmp_path: Path) -> JobDescriptor:
    return JobDescriptor.for_source(tmp_path / "Token.sol", chain="evm", version="1:1", now=NOW)


def _pipeline() -> PipelineResult:
    return PipelineResult(
        chain="evm",
        stages=(
            StageResult(name="compile", status=StageStatus.PASS, command="npx hardhat compile"),
            StageResult(
                name="hardhat-test",
                status=StageStatus.FAIL,
                command="npx hardhat test",
                exit_code=1,
                message="Hardhat tests failed, continuing analysis",
            ),
            StageResult(
                name="foundry-test",
                status=StageStatus.SKIP,
                command="forge test",
                message="not applicable",
            ),
            StageResult(name="slither", status=StageStatus.WARN, command="slither contracts"),
        ),
    )


def _workspace(tmp_path: Path, job_id: str) -> Workspace:
    root = tmp_path / "work" / job_id
    (root / "logs" / "slither").mkdir(parents=True)
    (root / SLITHER_REPORT).write_text('{"success": true}', encoding="utf-8")
    return Workspace(
        job_id=job_id,
        chain="evm",
        root=root,
        source_path=root / "contracts" / "Token.sol",
        original_name="Token.sol",
        created_at=NOW,
    )


def test_every_status_has_a_label() -> None:
    assert set(STATUS_LABELS) == set(StageStatus)
    assert STATUS_LABELS[StageStatus.SKIP] == "N/A"


def test_build_payload_maps_rows(tmp_path: Path) -> None:
    descriptor = _descriptor(tmp_path)
    payload = SummaryReporter(tmp_path / "reports").build_payload(
        descriptor=descriptor,
        contract_name="Token",
        pipeline=_pipeline(),
        rows=EVM_REPORT_ROWS,
        artifacts_dir=None,
        now=NOW,
    )

    outcomes = {row["stage"]: row["outcome"] for row in payload["results"]}
    assert outcomes["compile"] == "PASSED"
    assert outcomes["hardhat-test"] == "FAILED"
    assert outcomes["foundry-test"] == "N/A"
    assert outcomes["slither"] == "ISSUES FOUND"
    assert outcomes["coverage"] == "N/A"
    assert payload["overall"] == "FAILED"
    assert payload["file_name"] == "Token.sol"
    assert payload["test_date"] == "2026-10-19 08:30:00"
    assert payload["manifests"] is None
    assert all(not artifact["exists"] for artifact in payload["artifacts"])


def test_write_creates_markdown_json_and_artifacts(tmp_path: Path) -> None:
    descriptor = _descriptor(tmp_path)
    reporter = SummaryReporter(tmp_path / "reports")
    workspace = _workspace(tmp_path, descriptor.job_id)

    report = reporter.write(
        descriptor=descriptor,
        contract_name="Token",
        pipeline=_pipeline(),
        rows=EVM_REPORT_ROWS,
        workspace=workspace,
        now=NOW,
    )

    assert report.markdown_path == tmp_path / "reports" / "test-summary-Token.md"
    assert report.artifacts_dir == tmp_path / "reports" / "artifacts" / descriptor.job_id
    copied = report.artifacts_dir / SLITHER_REPORT
    assert copied.read_text(encoding="utf-8") == '{"success": true}'

    markdown = report.markdown_path.read_text(encoding="utf-8")
    assert markdown.startswith("# Test Summary for Token\n")
    assert "- **Hardhat Tests**: FAILED (Hardhat tests failed, continuing analysis)" in markdown
    assert "- **Foundry Tests**: N/A (not applicable)" in markdown
    assert "**Overall**: FAILED" in markdown
    assert f"artifacts/{descriptor.job_id}/{SLITHER_REPORT}`\n" in markdown
    assert "(not generated)" in markdown

    payload = json.loads(report.json_path.read_text(encoding="utf-8"))
    assert payload["job_id"] == descriptor.job_id
    assert payload["pipeline"]["status"] == "fail"
    slither = next(item for item in payload["artifacts"] if item["label"] == "Security Analysis")
    assert slither["exists"] is True


def test_contract_name_is_sanitized_for_filenames(tmp_path: Path) -> None:
    report = SummaryReporter(tmp_path).write(
        descriptor=_descriptor(tmp_path),
        contract_name="../evil name",
        pipeline=_pipeline(),
        rows=(),
        now=NOW,
    )
    assert report.markdown_path.parent == tmp_path
    assert report.markdown_path.name == "test-summary-evil_name.md"
    assert report.artifacts_dir is None


def test_missing_template_raises_report_error(tmp_path: Path) -> None:
    reporter = SummaryReporter(tmp_path, template_root=tmp_path / "nowhere")
    with pytest.raises(ReportWriteError, match="unable to render"):
        reporter.render_markdown({})
