"""Unit tests for source-file validation, secret scanning and environment checks."""

from __future__ import annotations

from pathlib import Path

import pytest

from smarttesthub.intake.validation import (
    ValidationError,
    check_environment,
    sanitized_environment,
    scan_for_secrets,
    validate_source_file,
)


class _Recorder:
    def __init__(self) -> None:
        self.warnings: list[tuple[str, dict[str, object]]] = []

    def warning(self, event: str, **fields: object) -> None:
        self.warnings.append((event, fields))


def _source(tmp_path: Path, name: str, text: str = "contract A {}\n") -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_valid_sources_pass_for_each_chain(tmp_path: Path) -> None:
    solidity = _source(tmp_path, "Token.sol")
    rust = _source(tmp_path, "program.RS", "pub fn f() {}\n")

    assert validate_source_file(solidity, chain="evm") == solidity
    assert validate_source_file(rust, chain="non_evm") == rust


def test_missing_file_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_source_file(tmp_path / "Gone.sol", chain="evm")
    assert excinfo.value.reason == "file does not exist"


def test_directory_is_not_a_readable_source(tmp_path: Path) -> None:
    (tmp_path / "Fake.sol").mkdir()
    with pytest.raises(ValidationError, match="not readable"):
        validate_source_file(tmp_path / "Fake.sol", chain="evm")


def test_oversized_file_is_rejected(tmp_path: Path) -> None:
    path = _source(tmp_path, "Big.sol", "x" * 11)
    with pytest.raises(ValidationError, match=r"too large \(11 bytes, max: 10\)"):
        validate_source_file(path, chain="evm", max_bytes=10)


def test_extension_must_match_chain(tmp_path: Path) -> None:
    path = _source(tmp_path, "Token.sol")
    with pytest.raises(ValidationError, match="expected .rs"):
        validate_source_file(path, chain="non_evm")
    with pytest.raises(ValidationError, match="unsupported chain"):
        validate_source_file(path, chain="tron")


def test_secret_scan_reports_first_line_per_pattern(tmp_path: Path) -> None:
    path = _source(
        tmp_path,
        "Vault.sol",
        "contract Vault {\n"
        "  // PRIVATE_KEY goes here\n"
        "  bytes32 secret;\n"
        "  bytes32 otherSecret;\n"
        "}\n",
    )
    recorder = _Recorder()

    findings = scan_for_secrets(path, logger=recorder)

    assert [(item.pattern, item.line_number) for item in findings] == [
        ("private.*key", 2),
        ("secret", 3),
    ]
    assert all(event == "potential_secret_found" for event, _ in recorder.warnings)
    assert recorder.warnings[0][1]["category"] == "security"


def test_secret_scan_of_clean_file_finds_nothing(tmp_path: Path) -> None:
    path = _source(tmp_path, "Clean.sol", "contract Clean { uint256 x; }\n")
    assert scan_for_secrets(path, logger=_Recorder()) == ()


def test_check_environment_warns_for_missing_variables() -> None:
    recorder = _Recorder()
    missing = check_environment({"HOME": "/root", "PATH": ""}, logger=recorder)
    assert missing == ("PATH", "USER")
    assert [fields["variable"] for _, fields in recorder.warnings] == ["PATH", "USER"]


def test_sanitized_environment_strips_loader_variables() -> None:
    env = sanitized_environment({"PATH": "/bin", "LD_PRELOAD": "evil.so", "LD_LIBRARY_PATH": "/x"})
    assert env == {"PATH": "/bin"}
