"""Lightweight source sniffing used to tailor generated manifests."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from smarttesthub.manifests.models import CrateDependency

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"//[^\n]*")
_CONTRACT_DECLARATION = re.compile(
    r"^\s*(?:abstract\s+)?contract\s+([A-Za-z_$][A-Za-z0-9_$]*)", re.MULTILINE
)
_PRAGMA_SOLIDITY = re.compile(r"^\s*pragma\s+solidity\s+([^;]+);", re.MULTILINE)
_OPENZEPPELIN_IMPORT = re.compile(r"""\bimport\b[^;]*["']@openzeppelin/""")

# (keyword pattern, crate, version, features); solana-program is always added.
_RUST_CRATE_RULES: Final[tuple[tuple[re.Pattern[str], str, str, tuple[str, ...]], ...]] = (
    (re.compile(r"\banchor_lang\b"), "anchor-lang", "0.29.0", ()),
    (re.compile(r"\bspl_token\b"), "spl-token", "4.0.0", ("no-entrypoint",)),
    (re.compile(r"\bborsh\b|\bBorsh(?:Serialize|Deserialize)\b"), "borsh", "0.10.3", ()),
    (re.compile(r"\bserde\b|\b(?:Serialize|Deserialize)\b"), "serde", "1.0", ("derive",)),
)


@dataclass(frozen=True, slots=True)
class SoliditySniff:
    contract_names: tuple[str, ...]
    pragma_constraints: tuple[str, ...]
    uses_openzeppelin: bool

    def primary_contract(self, fallback: str) -> str:
        """Prefer the contract named like the file, else the last declared one."""

        if fallback in self.contract_names:
            return fallback
        if self.contract_names:
            return self.contract_names[-1]
        return fallback


def _strip_comments(text: str) -> str:
    return _LINE_COMMENT.sub("", _BLOCK_COMMENT.sub("", text))


def sniff_solidity(text: str) -> SoliditySniff:
    code = _strip_comments(text)
    return SoliditySniff(
        contract_names=tuple(_CONTRACT_DECLARATION.findall(code)),
        pragma_constraints=tuple(
            " ".join(match.split()) for match in _PRAGMA_SOLIDITY.findall(code)
        ),
        uses_openzeppelin=_OPENZEPPELIN_IMPORT.search(code) is not None,
    )


def sniff_rust_dependencies(text: str, *, solana_version: str) -> tuple[CrateDependency, ...]:
    """Return crate dependencies implied by ``text``, ``solana-program`` first."""

    code = _strip_comments(text)
    dependencies = [CrateDependency(name="solana-program", version=solana_version)]
    for pattern, name, version, features in _RUST_CRATE_RULES:
        if pattern.search(code) is None:
            continue
        dependencies.append(CrateDependency(name=name, version=version, features=features))
    return tuple(dependencies)


__all__ = ["SoliditySniff", "sniff_rust_dependencies", "sniff_solidity"]
