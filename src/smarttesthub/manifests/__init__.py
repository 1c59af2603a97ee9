"""Generated per-job tool configuration (Hardhat, Slither, Cargo, tarpaulin)."""

from smarttesthub.manifests.models import (
    HARDHAT_PLUGINS,
    CargoManifest,
    CrateDependency,
    HardhatConfig,
    HardhatTestScaffold,
    SlitherConfig,
    SolidityCompiler,
    TarpaulinConfig,
    crate_name_for,
)
from smarttesthub.manifests.render import (
    ManifestBundle,
    ManifestRenderer,
    ManifestRenderError,
    RenderedManifest,
    WrittenManifest,
)
from smarttesthub.manifests.sniffing import (
    SoliditySniff,
    sniff_rust_dependencies,
    sniff_solidity,
)

__all__ = [
    "HARDHAT_PLUGINS",
    "CargoManifest",
    "CrateDependency",
    "HardhatConfig",
    "HardhatTestScaffold",
    "ManifestBundle",
    "ManifestRenderError",
    "ManifestRenderer",
    "RenderedManifest",
    "SlitherConfig",
    "SolidityCompiler",
    "SoliditySniff",
    "TarpaulinConfig",
    "WrittenManifest",
    "crate_name_for",
    "sniff_rust_dependencies",
    "sniff_solidity",
]
