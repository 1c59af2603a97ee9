"""
smarttesthub-harness - unit tests for config schema

File: tests/unit/config/test_schema.py
Last updated: 2026-10-19

Purpose
- Validate structured validation issues, profile overlays, merge and redaction helpers.

What this test file should cover
- Defaults validate cleanly.
- Type, range and enum violations report dotted field paths.
- Embedded secrets in config are rejected.
- Schema version mismatches carry migration guidance.
"""

from __future__ import annotations

import pytest

from smarttesthub.config import (
    ConfigValidationError,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)


def _issue_paths(config: object) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_defaults_are_valid() -> None:
    result = validate_config(default_config())
    assert result.is_valid
    assert result.config is not None
    assert result.config["evm"]["solc_versions"][0] == "0.8.24"


def test_default_config_returns_independent_copies() -> None:
    first = default_config()
    first["dispatch"]["max_concurrency"] = 99
    assert default_config()["dispatch"]["max_concurrency"] == 3


@pytest.mark.parametrize(
    ("section", "key", "value", "expected_path"),
    [
        ("dispatch", "max_concurrency", 0, "dispatch.max_concurrency"),
        ("dispatch", "max_concurrency", True, "dispatch.max_concurrency"),
        ("harness", "chain", "tron", "harness.chain"),
        ("observability", "log_level", "TRACE", "observability.log_level"),
        ("health", "disk_error_percent", 120.0, "health.disk_error_percent"),
        ("non_evm", "edition", "2015", "non_evm.edition"),
        ("evm", "solc_versions", ["latest"], "evm.solc_versions"),
        ("evm", "solc_versions", [], "evm.solc_versions"),
        ("pipeline", "keep_workspaces", "no", "pipeline.keep_workspaces"),
    ],
)
def test_invalid_values_report_field_paths(
    section: str, key: str, value: object, expected_path: str
) -> None:
    config = default_config()
    config[section][key] = value  # type: ignore[literal-required]
    assert expected_path in _issue_paths(config)


def test_unknown_and_missing_fields_are_reported() -> None:
    config = merge_config(default_config(), {"dispatch": {"priority": "high"}})
    del config["paths"]["input_dir"]

    paths = _issue_paths(config)

    assert "dispatch.priority" in paths
    assert "paths.input_dir" in paths


def test_embedded_secrets_are_forbidden() -> None:
    config = merge_config(default_config(), {"evm": {"etherscanApiKey": "xyz"}})
    result = validate_config(config)
    messages = {issue.path: issue.message for issue in result.issues}
    assert "embedded secret" in messages["evm.etherscanApiKey"]


def test_disk_warn_must_not_exceed_error_threshold() -> None:
    config = merge_config(
        default_config(), {"health": {"disk_warn_percent": 97.0, "disk_error_percent": 95.0}}
    )
    assert "health.disk_warn_percent" in _issue_paths(config)


def test_schema_version_mismatch_carries_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": 2}})
    result = validate_config(config)
    assert not result.is_valid
    assert "upgrade the smarttesthub-harness runtime" in result.issues[0].message
    assert "older than supported" in migration_guidance(0)
    assert migration_guidance(1) == "schema version is current"


def test_assert_valid_config_raises_with_rendered_issues() -> None:
    config = default_config()
    config["dispatch"]["stable_polls"] = -1
    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)
    assert "dispatch.stable_polls: must be >= 0" in str(excinfo.value)
    assert excinfo.value.issues[0].path == "dispatch.stable_polls"


def test_profile_overlay_merges_and_revalidates() -> None:
    config = merge_config(
        default_config(),
        {"profiles": {"fast": {"dispatch": {"max_concurrency": 8}}}},
    )
    applied = apply_profile_overlay(assert_valid_config(config), "fast")
    assert applied["dispatch"]["max_concurrency"] == 8
    assert applied["dispatch"]["poll_interval_seconds"] == 2.0

    with pytest.raises(ConfigValidationError):
        apply_profile_overlay(applied, "missing")


def test_profile_names_are_restricted() -> None:
    config = merge_config(default_config(), {"profiles": {"Fast Lane": {}}})
    assert "profiles.Fast Lane" in _issue_paths(config)


def test_merge_config_is_deep_and_does_not_mutate_inputs() -> None:
    base = {"a": {"b": 1, "c": [1]}}
    merged = merge_config(base, {"a": {"b": 2}})
    merged["a"]["c"].append(2)
    assert merged == {"a": {"b": 2, "c": [1, 2]}}
    assert base == {"a": {"b": 1, "c": [1]}}


def test_redact_config_masks_sensitive_keys_recursively() -> None:
    redacted = redact_config(
        {"paths": {"input_dir": "in"}, "extra": [{"password": "hunter2"}], "authToken": "t"}
    )
    assert redacted == {
        "authToken": "<redacted>",
        "extra": [{"password": "<redacted>"}],
        "paths": {"input_dir": "in"},
    }
    assert redact_config("not a mapping") == {}
