"""Unit tests for the cargo/tarpaulin/clippy/anchor stage list."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from smarttesthub.config import default_config
from smarttesthub.pipelines import report_rows_for, stages_for
from smarttesthub.pipelines.base import StageStatus, run_pipeline
from smarttesthub.pipelines.non_evm import (
    AUDIT_REPORT,
    NON_EVM_REPORT_ROWS,
    declares_anchor,
    non_evm_stages,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from conftest import FakeExecutor


@pytest.fixture
def pipeline_config() -> dict[str, object]:
    return dict(default_config()["pipeline"])


def test_stage_order_and_audit_retry(pipeline_config: dict[str, object]) -> None:
    stages = non_evm_stages(pipeline_config)
    assert [stage.name for stage in stages] == [
        "build",
        "test",
        "generate-lockfile",
        "audit",
        "coverage",
        "clippy",
        "anchor",
    ]
    audit = stages[3]
    assert audit.required_tool == "cargo-audit"
    assert audit.retry is not None
    assert audit.retry.attempts == 3
    assert audit.retry.base_delay_seconds == 2.0
    assert stages_for("non_evm", pipeline_config) == stages
    assert report_rows_for("non_evm") is NON_EVM_REPORT_ROWS


def test_unsupported_chain_is_rejected() -> None:
    with pytest.raises(ValueError, match="unsupported chain"):
        stages_for("bitcoin", {})


def test_declares_anchor(tmp_path: Path) -> None:
    assert not declares_anchor(tmp_path)
    manifest = tmp_path / "Cargo.toml"
    manifest.write_text("[package\n", encoding="utf-8")
    assert not declares_anchor(tmp_path)
    manifest.write_text(
        '[package]\nname = "vault"\n\n[dependencies]\nsolana-program = "1.17.0"\n',
        encoding="utf-8",
    )
    assert not declares_anchor(tmp_path)
    manifest.write_text(
        '[package]\nname = "vault"\n\n[dependencies]\nanchor-lang = "0.29.0"\n',
        encoding="utf-8",
    )
    assert declares_anchor(tmp_path)


async def test_build_failure_halts_pipeline(
    tmp_path: Path,
    fake_executor: FakeExecutor,
    which_all: Callable[[str], str | None],
    pipeline_config: dict[str, object],
) -> None:
    fake_executor.respond(("cargo", "build"), 101)

    result = await run_pipeline(
        non_evm_stages(pipeline_config),
        chain="non_evm",
        workspace_root=tmp_path,
        source_name="vault.rs",
        executor=fake_executor,
        which=which_all,
    )

    assert result.stages[0].message == "Build failed, skipping tests for vault.rs"
    assert result.halted_at == "build"
    assert fake_executor.argvs() == [("cargo", "build")]
    assert not result.succeeded


async def test_audit_retries_then_fails(
    tmp_path: Path,
    fake_executor: FakeExecutor,
    which_all: Callable[[str], str | None],
    no_sleep: Callable[[float], Awaitable[None]],
    pipeline_config: dict[str, object],
) -> None:
    fake_executor.respond(("cargo", "audit"), 1, stdout="error: couldn't fetch advisory database")

    result = await run_pipeline(
        non_evm_stages(pipeline_config),
        chain="non_evm",
        workspace_root=tmp_path,
        source_name="vault.rs",
        executor=fake_executor,
        which=which_all,
        sleep=no_sleep,
    )

    audit = result.stage("audit")
    assert audit is not None
    assert audit.status is StageStatus.FAIL
    assert audit.attempts == 3
    assert audit.message == "Security audit failed, check dependencies manually"
    assert fake_executor.argvs().count(("cargo", "audit")) == 3
    assert "advisory database" in (tmp_path / AUDIT_REPORT).read_text(encoding="utf-8")
    assert result.stage("clippy") is not None
    assert result.stage("clippy").status is StageStatus.PASS  # type: ignore[union-attr]


async def test_optional_tools_skip_and_anchor_not_applicable(
    tmp_path: Path,
    fake_executor: FakeExecutor,
    pipeline_config: dict[str, object],
) -> None:
    installed = {"cargo"}

    result = await run_pipeline(
        non_evm_stages(pipeline_config),
        chain="non_evm",
        workspace_root=tmp_path,
        source_name="vault.rs",
        executor=fake_executor,
        which=lambda tool: f"/usr/bin/{tool}" if tool in installed else None,
    )

    messages = {stage.name: stage.message for stage in result.stages}
    assert messages["audit"] == "cargo-audit not installed"
    assert messages["coverage"] == "cargo-tarpaulin not installed"
    assert messages["clippy"] == "cargo-clippy not installed"
    assert messages["anchor"] == "not applicable"
    assert result.status is StageStatus.PASS
    assert fake_executor.argvs() == [
        ("cargo", "build"),
        ("cargo", "test"),
        ("cargo", "generate-lockfile"),
    ]
