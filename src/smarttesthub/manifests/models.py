"""
smarttesthub-harness - manifest models for generated tool configs.

File: src/smarttesthub/manifests/models.py
Last updated: 2026-10-19

Purpose
- Describe every per-job tool configuration (Hardhat, Slither, mocha scaffold,
  Cargo, tarpaulin) as frozen dataclasses that templates can render.

What should be included in this file
- Pure value objects plus ``to_context`` helpers for template rendering.
- Construction from validated config sections.

Functional requirements
- Models are immutable and deterministic: equal inputs render equal files.

Non-functional requirements
- No filesystem access; rendering and writing live in ``render.py``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Final

_CRATE_NAME_INVALID = re.compile(r"[^a-z0-9_]+")
_JS_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")

HARDHAT_PLUGINS: Final[tuple[str, ...]] = (
    "@nomicfoundation/hardhat-toolbox",
    "solidity-coverage",
    "hardhat-gas-reporter",
    "hardhat-contract-sizer",
    "hardhat-docgen",
    "hardhat-storage-layout",
    "@openzeppelin/hardhat-upgrades",
)


@dataclass(frozen=True, slots=True)
class SolidityCompiler:
    version: str
    optimizer_runs: int | None = None

    def to_context(self) -> dict[str, Any]:
        return {"version": self.version, "optimizer_runs": self.optimizer_runs}


@dataclass(frozen=True, slots=True)
class HardhatConfig:
    """
    Hardhat project configuration.

    The file is written to ``config/`` inside the workspace, so ``root`` points
    one level up and every other path is relative to the workspace root.
    """

    compilers: tuple[SolidityCompiler, ...]
    chain_id: int = 1337
    report_gas: bool = True
    plugins: tuple[str, ...] = HARDHAT_PLUGINS
    root: str = ".."
    sources_dir: str = "./contracts"
    tests_dir: str = "./test"
    cache_dir: str = "./cache"
    artifacts_dir: str = "./artifacts"
    gas_report_file: str = "./logs/gas/gas-report.txt"
    contract_sizes_file: str = "./logs/reports/contract-sizes.txt"
    docs_dir: str = "./logs/docs"
    localhost_url: str = "http://127.0.0.1:8545"

    def __post_init__(self) -> None:
        if not self.compilers:
            raise ValueError("HardhatConfig requires at least one compiler")

    @classmethod
    def from_config(cls, evm: Mapping[str, Any]) -> HardhatConfig:
        """Build from the ``evm`` config section; the newest compiler gets the optimizer."""

        versions = [str(version) for version in evm["solc_versions"]]
        runs = int(evm["optimizer_runs"])
        compilers = tuple(
            SolidityCompiler(version=version, optimizer_runs=runs if index == 0 else None)
            for index, version in enumerate(versions)
        )
        return cls(
            compilers=compilers,
            chain_id=int(evm["chain_id"]),
            report_gas=bool(evm["report_gas"]),
        )

    def to_context(self) -> dict[str, Any]:
        return {
            "plugins": list(self.plugins),
            "compilers": [compiler.to_context() for compiler in self.compilers],
            "chain_id": self.chain_id,
            "report_gas": self.report_gas,
            "localhost_url": self.localhost_url,
            "gas_report_file": self.gas_report_file,
            "contract_sizes_file": self.contract_sizes_file,
            "docs_dir": self.docs_dir,
            "paths": {
                "root": self.root,
                "sources": self.sources_dir,
                "tests": self.tests_dir,
                "cache": self.cache_dir,
                "artifacts": self.artifacts_dir,
            },
        }


@dataclass(frozen=True, slots=True)
class SlitherConfig:
    json_output: str = "logs/slither/slither-report.json"
    detectors_to_exclude: tuple[str, ...] = ()
    exclude_informational: bool = False
    exclude_low: bool = False
    exclude_medium: bool = False
    exclude_high: bool = False
    solc_disable_warnings: bool = False

    def to_context(self) -> dict[str, Any]:
        return {
            "detectors_to_exclude": list(self.detectors_to_exclude),
            "exclude_informational": self.exclude_informational,
            "exclude_low": self.exclude_low,
            "exclude_medium": self.exclude_medium,
            "exclude_high": self.exclude_high,
            "solc_disable_warnings": self.solc_disable_warnings,
            "json": self.json_output,
        }


@dataclass(frozen=True, slots=True)
class HardhatTestScaffold:
    """Minimal mocha test deploying ``contract_name``."""

    contract_name: str

    def __post_init__(self) -> None:
        if _JS_IDENTIFIER.fullmatch(self.contract_name) is None:
            raise ValueError(f"invalid contract name: {self.contract_name!r}")

    @property
    def filename(self) -> str:
        return f"{self.contract_name}.test.js"

    def to_context(self) -> dict[str, Any]:
        return {"contract_name": self.contract_name}


@dataclass(frozen=True, slots=True)
class CrateDependency:
    name: str
    version: str
    features: tuple[str, ...] = ()

    def to_context(self) -> dict[str, Any]:
        return {"name": self.name, "version": self.version, "features": list(self.features)}


@dataclass(frozen=True, slots=True)
class CargoManifest:
    package_name: str
    edition: str = "2021"
    version: str = "0.1.0"
    crate_types: tuple[str, ...] = ("cdylib", "lib")
    dependencies: tuple[CrateDependency, ...] = ()
    dev_dependencies: tuple[CrateDependency, ...] = ()

    def __post_init__(self) -> None:
        if crate_name_for(self.package_name) != self.package_name:
            raise ValueError(f"invalid crate name: {self.package_name!r}")

    @property
    def dependency_names(self) -> tuple[str, ...]:
        return tuple(dependency.name for dependency in self.dependencies)

    def to_context(self) -> dict[str, Any]:
        return {
            "package_name": self.package_name,
            "version": self.version,
            "edition": self.edition,
            "crate_types": list(self.crate_types),
            "dependencies": [dependency.to_context() for dependency in self.dependencies],
            "dev_dependencies": [
                dependency.to_context() for dependency in self.dev_dependencies
            ],
        }


@dataclass(frozen=True, slots=True)
class TarpaulinConfig:
    output_dir: str = "logs/coverage"
    formats: tuple[str, ...] = ("Html", "Xml")
    timeout_seconds: int = 300
    verbose: bool = True
    exclude_files: tuple[str, ...] = ("**/tests/**", "**/benches/**")
    coveralls: bool = False
    ignore_panics: bool = True
    line: bool = True
    count: bool = True
    ignored_fn_names: tuple[str, ...] = field(default=("main",))

    def to_context(self) -> dict[str, Any]:
        return {
            "out": list(self.formats),
            "output_dir": self.output_dir,
            "timeout": self.timeout_seconds,
            "verbose": self.verbose,
            "exclude_files": list(self.exclude_files),
            "coveralls": self.coveralls,
            "ignore_panics": self.ignore_panics,
            "line": self.line,
            "count": self.count,
            "ignored_fn_names": list(self.ignored_fn_names),
        }


def crate_name_for(stem: str) -> str:
    """Normalize a file stem to a valid Cargo package name."""

    normalized = _CRATE_NAME_INVALID.sub("_", stem.strip().lower()).strip("_")
    if not normalized:
        return "contract"
    if normalized[0].isdigit():
        return f"contract_{normalized}"
    return normalized


__all__ = [
    "HARDHAT_PLUGINS",
    "CargoManifest",
    "CrateDependency",
    "HardhatConfig",
    "HardhatTestScaffold",
    "SlitherConfig",
    "SolidityCompiler",
    "TarpaulinConfig",
    "crate_name_for",
]
