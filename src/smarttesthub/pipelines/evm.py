"""EVM toolchain stages: Hardhat, Foundry, Slither and the Hardhat report plugins."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Final

from smarttesthub.pipelines.base import StageStatus, ToolStage

HARDHAT_CONFIG: Final[str] = "config/hardhat.config.js"
SLITHER_CONFIG: Final[str] = "config/slither.config.json"

SLITHER_REPORT: Final[str] = "logs/slither/slither-report.json"
FOUNDRY_TEST_REPORT: Final[str] = "logs/foundry/foundry-test-report.json"
FOUNDRY_LCOV_REPORT: Final[str] = "logs/coverage/foundry-lcov.info"
GAS_REPORT: Final[str] = "logs/gas/gas-report.txt"
GAS_TEST_OUTPUT: Final[str] = "logs/gas/gas-test-output.txt"
COVERAGE_DIR: Final[str] = "logs/coverage"
CONTRACT_SIZES_REPORT: Final[str] = "logs/reports/contract-sizes.txt"
STORAGE_LAYOUT_REPORT: Final[str] = "logs/reports/storage-layout.txt"

_HARDHAT: Final[tuple[str, ...]] = ("npx", "hardhat")
_WITH_CONFIG: Final[tuple[str, ...]] = ("--config", HARDHAT_CONFIG)


def has_foundry_tests(workspace_root: Path) -> bool:
    return any((workspace_root / "test").glob("*.t.sol"))


def collect_hardhat_coverage(workspace_root: Path) -> None:
    """Move solidity-coverage output under ``logs/coverage``."""

    destination_root = workspace_root / COVERAGE_DIR
    destination_root.mkdir(parents=True, exist_ok=True)
    for name in ("coverage.json", "coverage"):
        produced = workspace_root / name
        if not produced.exists():
            continue
        destination = destination_root / name
        if destination.is_dir():
            shutil.rmtree(destination)
        elif destination.exists():
            destination.unlink()
        shutil.move(str(produced), str(destination))


def evm_stages() -> tuple[ToolStage, ...]:
    """Stage list for one Solidity source, in execution order."""

    return (
        ToolStage(
            name="compile",
            argv=(*_HARDHAT, "compile", *_WITH_CONFIG),
            tool="npx",
            halt_on_failure=True,
            failure_message="Compilation failed, skipping tests for {file}",
        ),
        ToolStage(
            name="hardhat-test",
            argv=(*_HARDHAT, "test", *_WITH_CONFIG),
            tool="npx",
            failure_message="Hardhat tests failed, continuing analysis",
        ),
        ToolStage(
            name="foundry-test",
            argv=("forge", "test", "--gas-report", "--json"),
            output_file=FOUNDRY_TEST_REPORT,
            condition=has_foundry_tests,
            failure_message="Foundry tests failed, continuing analysis",
        ),
        ToolStage(
            name="foundry-coverage",
            argv=("forge", "coverage", "--report", "lcov", "--report-file", FOUNDRY_LCOV_REPORT),
            condition=has_foundry_tests,
            failure_status=StageStatus.WARN,
            failure_message="Foundry coverage failed, skipping report",
        ),
        ToolStage(
            name="slither",
            argv=(
                "slither",
                "contracts",
                "--config-file",
                SLITHER_CONFIG,
                "--json",
                SLITHER_REPORT,
            ),
            failure_status=StageStatus.WARN,
            failure_message="Security analysis reported findings for {file}",
        ),
        ToolStage(
            name="gas-report",
            argv=(*_HARDHAT, "test", *_WITH_CONFIG),
            tool="npx",
            output_file=GAS_TEST_OUTPUT,
            env=(("REPORT_GAS", "true"),),
            failure_status=StageStatus.WARN,
            failure_message="Gas analysis failed, skipping report",
        ),
        ToolStage(
            name="coverage",
            argv=(*_HARDHAT, "coverage", *_WITH_CONFIG),
            tool="npx",
            failure_status=StageStatus.WARN,
            failure_message="Coverage analysis failed, skipping report",
            after=collect_hardhat_coverage,
        ),
        ToolStage(
            name="contract-size",
            argv=(*_HARDHAT, "size-contracts", *_WITH_CONFIG),
            tool="npx",
            output_file=CONTRACT_SIZES_REPORT,
            failure_status=StageStatus.WARN,
        ),
        ToolStage(
            name="storage-layout",
            argv=(*_HARDHAT, "check", *_WITH_CONFIG),
            tool="npx",
            output_file=STORAGE_LAYOUT_REPORT,
            failure_status=StageStatus.WARN,
        ),
    )


# Report label, stage name, generated artifact (or None).
EVM_REPORT_ROWS: Final[tuple[tuple[str, str, str | None], ...]] = (
    ("Hardhat Compilation", "compile", None),
    ("Hardhat Tests", "hardhat-test", None),
    ("Foundry Tests", "foundry-test", FOUNDRY_TEST_REPORT),
    ("Security Analysis", "slither", SLITHER_REPORT),
    ("Gas Analysis", "gas-report", GAS_REPORT),
    ("Coverage Analysis", "coverage", COVERAGE_DIR + "/"),
    ("Contract Sizes", "contract-size", CONTRACT_SIZES_REPORT),
    ("Storage Layout", "storage-layout", STORAGE_LAYOUT_REPORT),
)

__all__ = [
    "CONTRACT_SIZES_REPORT",
    "COVERAGE_DIR",
    "EVM_REPORT_ROWS",
    "FOUNDRY_LCOV_REPORT",
    "FOUNDRY_TEST_REPORT",
    "GAS_REPORT",
    "GAS_TEST_OUTPUT",
    "HARDHAT_CONFIG",
    "SLITHER_CONFIG",
    "SLITHER_REPORT",
    "STORAGE_LAYOUT_REPORT",
    "collect_hardhat_coverage",
    "evm_stages",
    "has_foundry_tests",
]
