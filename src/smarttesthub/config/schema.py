"""
smarttesthub-harness - configuration schema and validation.

File: src/smarttesthub/config/schema.py
Last updated: 2026-10-19

Purpose
- Define authoritative harness defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation (``evm`` / ``non-evm``) and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Concurrency ceiling is static: validated once, never tuned at runtime.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from smarttesthub.constants import CHAINS, CONFIG_SCHEMA_VERSION, DEFAULT_MAX_FILE_BYTES

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("evm", "non-evm")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_SOLC_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "private", "credential", "auth"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "private_key",
    "password",
    "secret",
)

_SECTIONS: Final[tuple[str, ...]] = (
    "meta",
    "harness",
    "paths",
    "dispatch",
    "pipeline",
    "validation",
    "health",
    "observability",
    "evm",
    "non_evm",
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "input_dir"),
    ("paths", "work_root"),
    ("paths", "log_dir"),
    ("paths", "report_dir"),
    ("paths", "status_file"),
    ("paths", "metrics_file"),
    ("paths", "processed_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class HarnessConfig(TypedDict):
    chain: Literal["evm", "non_evm"]
    name: str


class PathsConfig(TypedDict):
    input_dir: str
    work_root: str
    log_dir: str
    report_dir: str
    status_file: str
    metrics_file: str
    processed_dir: str


class DispatchConfig(TypedDict):
    max_concurrency: int
    poll_interval_seconds: float
    stable_polls: int


class PipelineConfig(TypedDict):
    stage_timeout_seconds: float
    audit_retry_attempts: int
    audit_retry_base_delay_seconds: float
    keep_workspaces: bool


class ValidationConfig(TypedDict):
    max_file_bytes: int
    secret_scan: bool


class HealthConfig(TypedDict):
    interval_seconds: float
    memory_warn_percent: float
    disk_warn_percent: float
    disk_error_percent: float


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_to_stdout: bool
    redact_secrets: bool


class EvmConfig(TypedDict):
    solc_versions: list[str]
    optimizer_runs: int
    chain_id: int
    report_gas: bool


class NonEvmConfig(TypedDict):
    solana_version: str
    edition: Literal["2018", "2021"]


class ProfileOverlay(TypedDict, total=False):
    harness: dict[str, object]
    paths: dict[str, object]
    dispatch: dict[str, object]
    pipeline: dict[str, object]
    validation: dict[str, object]
    health: dict[str, object]
    observability: dict[str, object]
    evm: dict[str, object]
    non_evm: dict[str, object]


class HarnessSettings(TypedDict):
    meta: MetaConfig
    harness: HarnessConfig
    paths: PathsConfig
    dispatch: DispatchConfig
    pipeline: PipelineConfig
    validation: ValidationConfig
    health: HealthConfig
    observability: ObservabilityConfig
    evm: EvmConfig
    non_evm: NonEvmConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[HarnessSettings] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "harness": {
        "chain": "evm",
        "name": "smarttesthub",
    },
    "paths": {
        "input_dir": "input",
        "work_root": "work",
        "log_dir": "logs",
        "report_dir": "logs/reports",
        "status_file": "logs/health.json",
        "metrics_file": "logs/metrics.json",
        "processed_dir": "processed",
    },
    "dispatch": {
        "max_concurrency": 3,
        "poll_interval_seconds": 2.0,
        "stable_polls": 1,
    },
    "pipeline": {
        "stage_timeout_seconds": 600.0,
        "audit_retry_attempts": 3,
        "audit_retry_base_delay_seconds": 2.0,
        "keep_workspaces": False,
    },
    "validation": {
        "max_file_bytes": DEFAULT_MAX_FILE_BYTES,
        "secret_scan": True,
    },
    "health": {
        "interval_seconds": 60.0,
        "memory_warn_percent": 90.0,
        "disk_warn_percent": 90.0,
        "disk_error_percent": 95.0,
    },
    "observability": {
        "log_level": "INFO",
        "log_to_stdout": True,
        "redact_secrets": True,
    },
    "evm": {
        "solc_versions": ["0.8.24", "0.8.20", "0.8.17", "0.6.12"],
        "optimizer_runs": 200,
        "chain_id": 1337,
        "report_gas": True,
    },
    "non_evm": {
        "solana_version": "1.17.0",
        "edition": "2021",
    },
    "profiles": {
        "evm": {"harness": {"chain": "evm"}},
        "non-evm": {"harness": {"chain": "non_evm"}},
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_SectionValidator = Callable[[Mapping[str, object], str, _IssueCollector, bool], dict[str, Any]]


def default_config() -> HarnessSettings:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade smarthub.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the smarttesthub-harness runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None:
        return materialized

    selected = profile.strip()
    if not selected:
        return materialized

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )

    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    merged = merge_config(materialized, overlay_raw)
    return assert_valid_config(merged, active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs and the ``config`` command."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    return redacted if isinstance(redacted, dict) else {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = {*_SECTIONS, "profiles"}
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, set(_SECTIONS), "", issues)

    out: dict[str, Any] = {}
    for key in _SECTIONS:
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        out[key] = _SECTION_VALIDATORS[key](section, key, issues, False)

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles_obj = _as_object(profiles_raw, "profiles", issues)
        if profiles_obj is not None:
            out["profiles"] = _validate_profiles(profiles_obj, "profiles", issues)

    _validate_health_cross_fields(out.get("health"), "health", issues)
    return out


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    if not partial:
        _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(
            payload["schema_version"], _join(path, "schema_version"), issues, minimum=1
        )
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_harness(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"chain", "name"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "chain" in payload:
        parsed_chain = _as_enum(
            payload["chain"], _join(path, "chain"), issues, allowed_values=CHAINS
        )
        if parsed_chain is not None:
            out["chain"] = parsed_chain
    if "name" in payload:
        parsed_name = _as_str(payload["name"], _join(path, "name"), issues)
        if parsed_name is not None:
            out["name"] = parsed_name
    return out


def _validate_paths(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {field_path[1] for field_path in PATH_FIELDS}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_path_text(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_dispatch(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"max_concurrency", "poll_interval_seconds", "stable_polls"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_concurrency" in payload:
        parsed_limit = _as_int(
            payload["max_concurrency"], _join(path, "max_concurrency"), issues, minimum=1
        )
        if parsed_limit is not None:
            out["max_concurrency"] = parsed_limit
    if "poll_interval_seconds" in payload:
        parsed_interval = _as_float(
            payload["poll_interval_seconds"],
            _join(path, "poll_interval_seconds"),
            issues,
            minimum=0.01,
        )
        if parsed_interval is not None:
            out["poll_interval_seconds"] = parsed_interval
    if "stable_polls" in payload:
        parsed_polls = _as_int(
            payload["stable_polls"], _join(path, "stable_polls"), issues, minimum=0
        )
        if parsed_polls is not None:
            out["stable_polls"] = parsed_polls
    return out


def _validate_pipeline(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {
        "stage_timeout_seconds",
        "audit_retry_attempts",
        "audit_retry_base_delay_seconds",
        "keep_workspaces",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "stage_timeout_seconds" in payload:
        parsed_timeout = _as_float(
            payload["stage_timeout_seconds"],
            _join(path, "stage_timeout_seconds"),
            issues,
            minimum=1.0,
        )
        if parsed_timeout is not None:
            out["stage_timeout_seconds"] = parsed_timeout
    if "audit_retry_attempts" in payload:
        parsed_attempts = _as_int(
            payload["audit_retry_attempts"], _join(path, "audit_retry_attempts"), issues, minimum=1
        )
        if parsed_attempts is not None:
            out["audit_retry_attempts"] = parsed_attempts
    if "audit_retry_base_delay_seconds" in payload:
        parsed_delay = _as_float(
            payload["audit_retry_base_delay_seconds"],
            _join(path, "audit_retry_base_delay_seconds"),
            issues,
            minimum=0.0,
        )
        if parsed_delay is not None:
            out["audit_retry_base_delay_seconds"] = parsed_delay
    if "keep_workspaces" in payload:
        parsed_keep = _as_bool(payload["keep_workspaces"], _join(path, "keep_workspaces"), issues)
        if parsed_keep is not None:
            out["keep_workspaces"] = parsed_keep
    return out


def _validate_validation(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"max_file_bytes", "secret_scan"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_file_bytes" in payload:
        parsed_bytes = _as_int(
            payload["max_file_bytes"], _join(path, "max_file_bytes"), issues, minimum=1
        )
        if parsed_bytes is not None:
            out["max_file_bytes"] = parsed_bytes
    if "secret_scan" in payload:
        parsed_scan = _as_bool(payload["secret_scan"], _join(path, "secret_scan"), issues)
        if parsed_scan is not None:
            out["secret_scan"] = parsed_scan
    return out


def _validate_health(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    percent_fields = ("memory_warn_percent", "disk_warn_percent", "disk_error_percent")
    allowed = {"interval_seconds", *percent_fields}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "interval_seconds" in payload:
        parsed_interval = _as_float(
            payload["interval_seconds"], _join(path, "interval_seconds"), issues, minimum=0.01
        )
        if parsed_interval is not None:
            out["interval_seconds"] = parsed_interval
    for key in percent_fields:
        if key in payload:
            parsed = _as_float(payload[key], _join(path, key), issues, minimum=0.0, maximum=100.0)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"log_level", "log_to_stdout", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed_level = _as_enum(
            payload["log_level"],
            _join(path, "log_level"),
            issues,
            allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
        )
        if parsed_level is not None:
            out["log_level"] = parsed_level
    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            parsed = _as_bool(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_evm(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"solc_versions", "optimizer_runs", "chain_id", "report_gas"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "solc_versions" in payload:
        versions = _as_str_list(payload["solc_versions"], _join(path, "solc_versions"), issues)
        if versions is not None:
            bad = [item for item in versions if not _SOLC_VERSION_PATTERN.fullmatch(item)]
            if not versions:
                issues.add(_join(path, "solc_versions"), "must list at least one compiler")
            elif bad:
                issues.add(
                    _join(path, "solc_versions"),
                    "versions must look like MAJOR.MINOR.PATCH: " + ", ".join(bad),
                )
            else:
                out["solc_versions"] = versions
    for key in ("optimizer_runs", "chain_id"):
        if key in payload:
            parsed = _as_int(payload[key], _join(path, key), issues, minimum=1)
            if parsed is not None:
                out[key] = parsed
    if "report_gas" in payload:
        parsed_gas = _as_bool(payload["report_gas"], _join(path, "report_gas"), issues)
        if parsed_gas is not None:
            out["report_gas"] = parsed_gas
    return out


def _validate_non_evm(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any]:
    allowed = {"solana_version", "edition"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "solana_version" in payload:
        parsed_version = _as_str(payload["solana_version"], _join(path, "solana_version"), issues)
        if parsed_version is not None:
            out["solana_version"] = parsed_version
    if "edition" in payload:
        parsed_edition = _as_enum(
            payload["edition"], _join(path, "edition"), issues, allowed_values=("2018", "2021")
        )
        if parsed_edition is not None:
            out["edition"] = parsed_edition
    return out


_SECTION_VALIDATORS: Final[dict[str, _SectionValidator]] = {
    "meta": _validate_meta,
    "harness": _validate_harness,
    "paths": _validate_paths,
    "dispatch": _validate_dispatch,
    "pipeline": _validate_pipeline,
    "validation": _validate_validation,
    "health": _validate_health,
    "observability": _validate_observability,
    "evm": _validate_evm,
    "non_evm": _validate_non_evm,
}


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue

        overlay_sections = set(_SECTIONS) - {"meta"}
        _reject_unknown_keys(profile_obj, overlay_sections, profile_path, issues)
        overlay: dict[str, Any] = {}
        for section in sorted(overlay_sections):
            raw = profile_obj.get(section)
            if raw is None:
                continue
            section_path = _join(profile_path, section)
            section_obj = _as_object(raw, section_path, issues)
            if section_obj is None:
                continue
            overlay[section] = _SECTION_VALIDATORS[section](section_obj, section_path, issues, True)
        out[profile_name] = overlay
    return out


def _validate_health_cross_fields(health: object, path: str, issues: _IssueCollector) -> None:
    if not isinstance(health, Mapping):
        return
    warn = health.get("disk_warn_percent")
    error = health.get("disk_error_percent")
    if isinstance(warn, float) and isinstance(error, float) and warn > error:
        issues.add(
            _join(path, "disk_warn_percent"),
            f"must be <= disk_error_percent ({error})",
        )


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes, bytearray)):
        issues.add(path, f"expected array of strings, got {type(value).__name__}")
        return None
    parsed: list[str] = []
    for index, item in enumerate(value):
        text = _as_str(item, f"{path}[{index}]", issues)
        if text is None:
            return None
        parsed.append(text)
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in harness config")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            if _looks_sensitive_key(str(key)):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(value[key], str(key))
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "HarnessSettings",
    "PATH_FIELDS",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
