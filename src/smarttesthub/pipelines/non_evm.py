"""Non-EVM (Solana/Rust) toolchain stages: cargo build/test/audit, tarpaulin, clippy, anchor."""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from smarttesthub.pipelines.base import (
    UNKNOWN_TOOL_ERROR_MESSAGE,
    RetryPolicy,
    StageStatus,
    ToolStage,
)

TARPAULIN_CONFIG: Final[str] = "config/tarpaulin.toml"
COVERAGE_DIR: Final[str] = "logs/coverage"
AUDIT_REPORT: Final[str] = "logs/reports/cargo-audit.txt"
CLIPPY_REPORT: Final[str] = "logs/reports/clippy.txt"

TOOL_ERROR_MESSAGES: Final[dict[str, str]] = {
    "build": "Build failed, skipping tests for {file}",
    "test": "Tests failed, continuing analysis",
    "audit": "Security audit failed, check dependencies manually",
    "coverage": "Coverage analysis failed, skipping report",
}


def declares_anchor(workspace_root: Path) -> bool:
    """True when the generated Cargo.toml depends on ``anchor-lang``."""

    try:
        with (workspace_root / "Cargo.toml").open("rb") as handle:
            manifest = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError):
        return False
    dependencies = manifest.get("dependencies", {})
    return isinstance(dependencies, dict) and "anchor-lang" in dependencies


def non_evm_stages(pipeline_config: Mapping[str, Any]) -> tuple[ToolStage, ...]:
    """Stage list for one Rust source, in execution order."""

    audit_retry = RetryPolicy(
        attempts=int(pipeline_config["audit_retry_attempts"]),
        base_delay_seconds=float(pipeline_config["audit_retry_base_delay_seconds"]),
    )
    return (
        ToolStage(
            name="build",
            argv=("cargo", "build"),
            halt_on_failure=True,
            failure_message=TOOL_ERROR_MESSAGES["build"],
        ),
        ToolStage(
            name="test",
            argv=("cargo", "test"),
            failure_message=TOOL_ERROR_MESSAGES["test"],
        ),
        ToolStage(
            name="generate-lockfile",
            argv=("cargo", "generate-lockfile"),
            failure_status=StageStatus.WARN,
            failure_message=UNKNOWN_TOOL_ERROR_MESSAGE,
        ),
        ToolStage(
            name="audit",
            argv=("cargo", "audit"),
            tool="cargo-audit",
            output_file=AUDIT_REPORT,
            retry=audit_retry,
            failure_message=TOOL_ERROR_MESSAGES["audit"],
        ),
        ToolStage(
            name="coverage",
            argv=("cargo", "tarpaulin", "--config", TARPAULIN_CONFIG),
            tool="cargo-tarpaulin",
            failure_status=StageStatus.WARN,
            failure_message=TOOL_ERROR_MESSAGES["coverage"],
        ),
        ToolStage(
            name="clippy",
            argv=("cargo", "clippy", "--", "-D", "warnings"),
            tool="cargo-clippy",
            output_file=CLIPPY_REPORT,
            failure_status=StageStatus.WARN,
            failure_message="Clippy reported warnings for {file}",
        ),
        ToolStage(
            name="anchor",
            argv=("anchor", "build"),
            condition=declares_anchor,
            failure_status=StageStatus.WARN,
        ),
    )


NON_EVM_REPORT_ROWS: Final[tuple[tuple[str, str, str | None], ...]] = (
    ("Cargo Build", "build", None),
    ("Cargo Tests", "test", None),
    ("Security Audit", "audit", AUDIT_REPORT),
    ("Coverage Analysis", "coverage", COVERAGE_DIR + "/"),
    ("Clippy Lints", "clippy", CLIPPY_REPORT),
    ("Anchor Build", "anchor", None),
)

__all__ = [
    "AUDIT_REPORT",
    "CLIPPY_REPORT",
    "COVERAGE_DIR",
    "NON_EVM_REPORT_ROWS",
    "TARPAULIN_CONFIG",
    "TOOL_ERROR_MESSAGES",
    "declares_anchor",
    "non_evm_stages",
]
