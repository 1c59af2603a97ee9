"""Chain toolchain pipelines run inside a job workspace."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from smarttesthub.constants import CHAIN_EVM, CHAIN_NON_EVM
from smarttesthub.pipelines.base import (
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
    PipelineResult,
    RetryPolicy,
    StageResult,
    StageStatus,
    ToolStage,
    run_pipeline,
)
from smarttesthub.pipelines.evm import EVM_REPORT_ROWS, evm_stages
from smarttesthub.pipelines.non_evm import NON_EVM_REPORT_ROWS, non_evm_stages


def stages_for(chain: str, pipeline_config: Mapping[str, Any]) -> tuple[ToolStage, ...]:
    if chain == CHAIN_EVM:
        return evm_stages()
    if chain == CHAIN_NON_EVM:
        return non_evm_stages(pipeline_config)
    raise ValueError(f"unsupported chain {chain!r}")


def report_rows_for(chain: str) -> tuple[tuple[str, str, str | None], ...]:
    return EVM_REPORT_ROWS if chain == CHAIN_EVM else NON_EVM_REPORT_ROWS


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
    "PipelineResult",
    "RetryPolicy",
    "StageResult",
    "StageStatus",
    "ToolStage",
    "evm_stages",
    "non_evm_stages",
    "report_rows_for",
    "run_pipeline",
    "stages_for",
]
