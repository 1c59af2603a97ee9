"""
smarttesthub-harness - deterministic manifest rendering.

File: src/smarttesthub/manifests/render.py
Last updated: 2026-10-19

Purpose
- Render the per-job tool configuration files from packaged Jinja2 templates and
  write them into a job workspace.

What should be included in this file
- Strict template loading (unknown variables are errors, never blanks).
- A ``tojson`` filter that quotes every interpolated value, so source-derived
  names cannot break out of the generated JS/TOML/JSON syntax.
- Chain-specific writers that sniff the job source and pick the manifests.

Functional requirements
- Rendered text is newline-normalized and hashed for evidence in reports.
- The mocha scaffold is only written when the workspace has no test of that name.

Non-functional requirements
- Same models in, byte-identical files out.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog
from jinja2 import Environment, StrictUndefined, TemplateError

from smarttesthub.manifests.models import (
    CargoManifest,
    CrateDependency,
    HardhatConfig,
    HardhatTestScaffold,
    SlitherConfig,
    TarpaulinConfig,
    crate_name_for,
)
from smarttesthub.manifests.sniffing import sniff_rust_dependencies, sniff_solidity
from smarttesthub.utils.fs import atomic_write
from smarttesthub.utils.hashing import sha256_text

if TYPE_CHECKING:
    from smarttesthub.workspace.manager import Workspace

HARDHAT_CONFIG_TEMPLATE: Final[str] = "hardhat.config.js.j2"
SLITHER_CONFIG_TEMPLATE: Final[str] = "slither.config.json.j2"
TEST_SCAFFOLD_TEMPLATE: Final[str] = "contract.test.js.j2"
CARGO_MANIFEST_TEMPLATE: Final[str] = "Cargo.toml.j2"
TARPAULIN_CONFIG_TEMPLATE: Final[str] = "tarpaulin.toml.j2"

_logger = structlog.get_logger(__name__)


class ManifestRenderError(RuntimeError):
    """Raised when a template is missing or cannot be rendered."""


@dataclass(frozen=True, slots=True)
class RenderedManifest:
    template_name: str
    content: str
    content_hash: str


@dataclass(frozen=True, slots=True)
class WrittenManifest:
    path: Path
    content_hash: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path.as_posix(), "sha256": self.content_hash}


@dataclass(frozen=True, slots=True)
class ManifestBundle:
    """What was written for one job, plus what sniffing learned about the source."""

    contract_name: str
    manifests: tuple[WrittenManifest, ...]
    dependencies: tuple[CrateDependency, ...] = ()

    @property
    def dependency_names(self) -> tuple[str, ...]:
        return tuple(dependency.name for dependency in self.dependencies)

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract_name": self.contract_name,
            "manifests": [manifest.to_dict() for manifest in self.manifests],
            "dependencies": list(self.dependency_names),
        }


class ManifestRenderer:
    """Strict Jinja2 renderer over the packaged manifest templates."""

    def __init__(self, *, template_root: Path | str | None = None) -> None:
        root = Path(template_root) if template_root is not None else _default_template_root()
        resolved_root = root.resolve()
        if not resolved_root.is_dir():
            raise ManifestRenderError(f"template root is not a directory: {resolved_root}")

        self._template_root = resolved_root
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )
        self._environment.filters["tojson"] = _tojson

    @property
    def template_root(self) -> Path:
        return self._template_root

    def render(self, template_name: str, context: Mapping[str, Any]) -> RenderedManifest:
        template_path = self._template_root / template_name
        try:
            template_source = _normalize_newlines(template_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ManifestRenderError(f"unable to read template {template_name}: {exc}") from exc

        try:
            rendered = self._environment.from_string(template_source).render(**context)
        except TemplateError as exc:
            raise ManifestRenderError(f"unable to render {template_name}: {exc}") from exc

        content = _normalize_newlines(rendered)
        return RenderedManifest(
            template_name=template_name,
            content=content,
            content_hash=sha256_text(content),
        )

    def write(
        self, template_name: str, context: Mapping[str, Any], destination: Path
    ) -> WrittenManifest:
        rendered = self.render(template_name, context)
        path = atomic_write(destination, rendered.content)
        _logger.debug(
            "manifest_written",
            template=template_name,
            path=path.as_posix(),
            sha256=rendered.content_hash,
        )
        return WrittenManifest(path=path, content_hash=rendered.content_hash)

    def write_evm(self, workspace: Workspace, evm_config: Mapping[str, Any]) -> ManifestBundle:
        """Hardhat config, Slither config, and the mocha scaffold when missing."""

        source_text = workspace.source_path.read_text(encoding="utf-8", errors="replace")
        sniff = sniff_solidity(source_text)
        contract_name = sniff.primary_contract(Path(workspace.original_name).stem)

        written = [
            self.write(
                HARDHAT_CONFIG_TEMPLATE,
                HardhatConfig.from_config(evm_config).to_context(),
                workspace.config_dir / "hardhat.config.js",
            ),
            self.write(
                SLITHER_CONFIG_TEMPLATE,
                SlitherConfig().to_context(),
                workspace.config_dir / "slither.config.json",
            ),
        ]

        try:
            scaffold: HardhatTestScaffold | None = HardhatTestScaffold(contract_name)
        except ValueError:
            _logger.warning("test_scaffold_skipped", contract_name=contract_name)
            scaffold = None
        if scaffold is not None:
            test_path = workspace.root / "test" / scaffold.filename
            if not test_path.exists():
                written.append(
                    self.write(TEST_SCAFFOLD_TEMPLATE, scaffold.to_context(), test_path)
                )

        if sniff.pragma_constraints:
            _logger.info(
                "solidity_source_sniffed",
                contract_name=contract_name,
                pragma=list(sniff.pragma_constraints),
                uses_openzeppelin=sniff.uses_openzeppelin,
            )
        return ManifestBundle(contract_name=contract_name, manifests=tuple(written))

    def write_non_evm(
        self, workspace: Workspace, non_evm_config: Mapping[str, Any]
    ) -> ManifestBundle:
        """Cargo.toml at the workspace root and the tarpaulin config."""

        source_text = workspace.source_path.read_text(encoding="utf-8", errors="replace")
        solana_version = str(non_evm_config["solana_version"])
        dependencies = sniff_rust_dependencies(source_text, solana_version=solana_version)

        # The job copy is always src/lib.rs; the crate is named after the dropped file.
        package_name = crate_name_for(Path(workspace.original_name).stem)
        manifest = CargoManifest(
            package_name=package_name,
            edition=str(non_evm_config["edition"]),
            dependencies=dependencies,
            dev_dependencies=(CrateDependency(name="solana-sdk", version=solana_version),),
        )
        written = (
            self.write(
                CARGO_MANIFEST_TEMPLATE, manifest.to_context(), workspace.root / "Cargo.toml"
            ),
            self.write(
                TARPAULIN_CONFIG_TEMPLATE,
                TarpaulinConfig().to_context(),
                workspace.config_dir / "tarpaulin.toml",
            ),
        )
        return ManifestBundle(
            contract_name=package_name, manifests=written, dependencies=dependencies
        )


def _tojson(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _default_template_root() -> Path:
    return Path(__file__).resolve().parent / "templates"


__all__ = [
    "CARGO_MANIFEST_TEMPLATE",
    "HARDHAT_CONFIG_TEMPLATE",
    "SLITHER_CONFIG_TEMPLATE",
    "TARPAULIN_CONFIG_TEMPLATE",
    "TEST_SCAFFOLD_TEMPLATE",
    "ManifestBundle",
    "ManifestRenderError",
    "ManifestRenderer",
    "RenderedManifest",
    "WrittenManifest",
]
