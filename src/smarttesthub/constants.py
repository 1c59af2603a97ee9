"""Stable constants shared across harness modules."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
REPORT_SCHEMA_VERSION: Final[int] = 1

# Supported chains and the source extension each one watches for.
CHAIN_EVM: Final[str] = "evm"
CHAIN_NON_EVM: Final[str] = "non_evm"
CHAINS: Final[tuple[str, ...]] = (CHAIN_EVM, CHAIN_NON_EVM)
SOURCE_EXTENSIONS: Final[dict[str, str]] = {
    CHAIN_EVM: ".sol",
    CHAIN_NON_EVM: ".rs",
}
# Container label used in metrics/health payloads.
CONTAINER_LABELS: Final[dict[str, str]] = {
    CHAIN_EVM: "evm",
    CHAIN_NON_EVM: "non-evm",
}

# Log categories, routed to dedicated sinks under the log directory.
LOG_CATEGORY_GENERAL: Final[str] = "general"
LOG_CATEGORY_ERROR: Final[str] = "error"
LOG_CATEGORY_SECURITY: Final[str] = "security"
LOG_CATEGORY_PERFORMANCE: Final[str] = "performance"
LOG_CATEGORY_FILES: Final[dict[str, PurePosixPath]] = {
    LOG_CATEGORY_GENERAL: PurePosixPath("general.log"),
    LOG_CATEGORY_ERROR: PurePosixPath("error.log"),
    LOG_CATEGORY_SECURITY: PurePosixPath("security/security-audit.log"),
    LOG_CATEGORY_PERFORMANCE: PurePosixPath("analysis/performance.log"),
}

# Intake limits.
DEFAULT_MAX_FILE_BYTES: Final[int] = 10 * 1024 * 1024
PROCESSED_MARKER_SUFFIX: Final[str] = ".done"

# Default runtime paths (relative to the config file directory unless overridden).
INPUT_DIR: Final[PurePosixPath] = PurePosixPath("input")
WORK_DIR: Final[PurePosixPath] = PurePosixPath("work")
LOGS_DIR: Final[PurePosixPath] = PurePosixPath("logs")
REPORTS_DIR: Final[PurePosixPath] = PurePosixPath("logs/reports")
PROCESSED_DIR: Final[PurePosixPath] = PurePosixPath("processed")

__all__ = [
    "CHAINS",
    "CHAIN_EVM",
    "CHAIN_NON_EVM",
    "CONFIG_SCHEMA_VERSION",
    "CONTAINER_LABELS",
    "DEFAULT_MAX_FILE_BYTES",
    "INPUT_DIR",
    "LOGS_DIR",
    "LOG_CATEGORY_ERROR",
    "LOG_CATEGORY_FILES",
    "LOG_CATEGORY_GENERAL",
    "LOG_CATEGORY_PERFORMANCE",
    "LOG_CATEGORY_SECURITY",
    "PROCESSED_DIR",
    "PROCESSED_MARKER_SUFFIX",
    "REPORTS_DIR",
    "REPORT_SCHEMA_VERSION",
    "SOURCE_EXTENSIONS",
    "WORK_DIR",
]
