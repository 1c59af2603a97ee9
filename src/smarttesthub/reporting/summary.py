"""
smarttesthub-harness - per-job test summaries.

File: src/smarttesthub/reporting/summary.py
Last updated: 2026-10-19

Purpose
- Turn a finished pipeline into ``test-summary-<name>.md`` and ``.json`` under the
  report directory, and keep the workspace's tool artifacts next to them.

Functional requirements
- One result line per reported stage; skipped stages read ``N/A``.
- Generated files are listed relative to the report directory and flagged when the
  tool did not produce them.

Non-functional requirements
- JSON output uses stable key ordering; both files are written atomically.
"""

from __future__ import annotations

import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog
from jinja2 import Environment, StrictUndefined, TemplateError

from smarttesthub.constants import REPORT_SCHEMA_VERSION
from smarttesthub.pipelines.base import PipelineResult, StageStatus
from smarttesthub.utils.fs import atomic_write, atomic_write_json

if TYPE_CHECKING:
    from smarttesthub.dispatch.jobs import JobDescriptor
    from smarttesthub.manifests.render import ManifestBundle
    from smarttesthub.workspace.manager import Workspace

SUMMARY_TEMPLATE: Final[str] = "test-summary.md.j2"
ARTIFACTS_DIR_NAME: Final[str] = "artifacts"

STATUS_LABELS: Final[dict[StageStatus, str]] = {
    StageStatus.PASS: "PASSED",
    StageStatus.FAIL: "FAILED",
    StageStatus.WARN: "ISSUES FOUND",
    StageStatus.ERROR: "ERROR",
    StageStatus.TIMEOUT: "TIMED OUT",
    StageStatus.SKIP: "N/A",
}

ReportRow = tuple[str, str, str | None]

_logger = structlog.get_logger(__name__)


class ReportWriteError(RuntimeError):
    """Raised when a summary cannot be rendered."""


@dataclass(frozen=True, slots=True)
class SummaryReport:
    markdown_path: Path
    json_path: Path
    artifacts_dir: Path | None

    @property
    def paths(self) -> tuple[Path, ...]:
        return (self.markdown_path, self.json_path)


class SummaryReporter:
    """Render and persist job summaries under ``report_dir``."""

    def __init__(self, report_dir: Path | str, *, template_root: Path | str | None = None) -> None:
        self._report_dir = Path(report_dir)
        root = (
            Path(template_root)
            if template_root is not None
            else Path(__file__).resolve().parent / "templates"
        )
        self._template_path = root / SUMMARY_TEMPLATE
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    @property
    def report_dir(self) -> Path:
        return self._report_dir

    def build_payload(
        self,
        *,
        descriptor: JobDescriptor,
        contract_name: str,
        pipeline: PipelineResult,
        rows: Sequence[ReportRow],
        artifacts_dir: Path | None,
        manifests: ManifestBundle | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        tested_at = now if now is not None else datetime.now(tz=UTC)
        results = []
        for label, stage_name, _artifact in rows:
            stage = pipeline.stage(stage_name)
            status = stage.status if stage is not None else StageStatus.SKIP
            results.append(
                {
                    "label": label,
                    "stage": stage_name,
                    "status": status.value,
                    "outcome": STATUS_LABELS[status],
                    "message": stage.message if stage is not None else "",
                }
            )

        artifacts = []
        for label, _stage_name, artifact in rows:
            if artifact is None:
                continue
            relative = (
                Path(ARTIFACTS_DIR_NAME) / descriptor.job_id / artifact
                if artifacts_dir is not None
                else Path(artifact)
            )
            exists = artifacts_dir is not None and (artifacts_dir / artifact).exists()
            artifacts.append({"label": label, "path": relative.as_posix(), "exists": exists})

        return {
            "schema_version": REPORT_SCHEMA_VERSION,
            "job_id": descriptor.job_id,
            "chain": descriptor.chain,
            "file_name": descriptor.source_path.name,
            "contract_name": contract_name,
            "test_date": tested_at.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S"),
            "overall": STATUS_LABELS[pipeline.status],
            "results": results,
            "artifacts": artifacts,
            "manifests": None if manifests is None else manifests.to_dict(),
            "pipeline": pipeline.to_dict(),
        }

    def render_markdown(self, payload: dict[str, Any]) -> str:
        try:
            source = self._template_path.read_text(encoding="utf-8")
            return self._environment.from_string(source).render(**payload)
        except (OSError, TemplateError) as exc:
            raise ReportWriteError(f"unable to render {SUMMARY_TEMPLATE}: {exc}") from exc

    def write(
        self,
        *,
        descriptor: JobDescriptor,
        contract_name: str,
        pipeline: PipelineResult,
        rows: Sequence[ReportRow],
        workspace: Workspace | None = None,
        manifests: ManifestBundle | None = None,
        now: datetime | None = None,
    ) -> SummaryReport:
        """Copy workspace artifacts, then write the markdown and JSON summaries."""

        artifacts_dir = None
        if workspace is not None:
            artifacts_dir = self.collect_artifacts(workspace)
        payload = self.build_payload(
            descriptor=descriptor,
            contract_name=contract_name,
            pipeline=pipeline,
            rows=rows,
            artifacts_dir=artifacts_dir,
            manifests=manifests,
            now=now,
        )
        stem = f"test-summary-{_safe_stem(contract_name)}"
        markdown_path = atomic_write(
            self._report_dir / f"{stem}.md", self.render_markdown(payload)
        )
        json_path = atomic_write_json(self._report_dir / f"{stem}.json", payload)
        _logger.info(
            "summary_written",
            markdown=markdown_path.as_posix(),
            overall=payload["overall"],
        )
        return SummaryReport(
            markdown_path=markdown_path, json_path=json_path, artifacts_dir=artifacts_dir
        )

    def collect_artifacts(self, workspace: Workspace) -> Path:
        """Copy ``workspace/logs`` to ``report_dir/artifacts/<job_id>/logs``."""

        destination = self._report_dir / ARTIFACTS_DIR_NAME / workspace.job_id
        if workspace.logs_dir.is_dir():
            shutil.copytree(workspace.logs_dir, destination / "logs", dirs_exist_ok=True)
        else:
            destination.mkdir(parents=True, exist_ok=True)
        return destination


def _safe_stem(name: str) -> str:
    cleaned = "".join(char if char.isalnum() or char in "._-" else "_" for char in name)
    return cleaned.strip("._") or "contract"


__all__ = [
    "ARTIFACTS_DIR_NAME",
    "STATUS_LABELS",
    "SUMMARY_TEMPLATE",
    "ReportWriteError",
    "SummaryReport",
    "SummaryReporter",
]
