"""Pre-flight checks for dropped source files and the process environment."""

from __future__ import annotations

import os
import re
import stat
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from smarttesthub.constants import DEFAULT_MAX_FILE_BYTES, LOG_CATEGORY_SECURITY, SOURCE_EXTENSIONS

SECRET_PATTERNS: Final[tuple[str, ...]] = (
    "private.*key",
    "secret",
    "password",
    "token",
    "api.*key",
)
REQUIRED_ENV_VARS: Final[tuple[str, ...]] = ("HOME", "PATH", "USER")
STRIPPED_ENV_VARS: Final[tuple[str, ...]] = ("LD_PRELOAD", "LD_LIBRARY_PATH")

_COMPILED_SECRET_PATTERNS: Final[tuple[tuple[str, re.Pattern[str]], ...]] = tuple(
    (pattern, re.compile(pattern, re.IGNORECASE)) for pattern in SECRET_PATTERNS
)

_logger = structlog.get_logger(__name__)


class ValidationError(ValueError):
    """Raised when a dropped file must be rejected before any tool runs."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")


@dataclass(frozen=True, slots=True)
class SecretFinding:
    pattern: str
    line_number: int


def validate_source_file(
    path: Path | str,
    *,
    chain: str,
    max_bytes: int = DEFAULT_MAX_FILE_BYTES,
) -> Path:
    """Return ``path`` if it is a readable regular file of acceptable size for ``chain``.

    Checks run in order (existence, regular and readable, size, extension) so the
    first failure names the most basic problem.
    """

    candidate = Path(path)
    try:
        info = candidate.stat()
    except FileNotFoundError as exc:
        raise ValidationError(candidate, "file does not exist") from exc
    except OSError as exc:
        raise ValidationError(candidate, f"file cannot be inspected: {exc}") from exc

    if not stat.S_ISREG(info.st_mode) or not os.access(candidate, os.R_OK):
        raise ValidationError(candidate, "file does not exist or is not readable")

    if info.st_size > max_bytes:
        raise ValidationError(
            candidate, f"file is too large ({info.st_size} bytes, max: {max_bytes})"
        )

    expected = SOURCE_EXTENSIONS.get(chain)
    if expected is None:
        raise ValidationError(candidate, f"unsupported chain {chain!r}")
    if candidate.suffix.lower() != expected:
        raise ValidationError(
            candidate, f"unexpected extension {candidate.suffix or '<none>'!r}; expected {expected}"
        )
    return candidate


def scan_for_secrets(path: Path | str, *, logger: Any | None = None) -> tuple[SecretFinding, ...]:
    """Warn (security category) for each secret-looking pattern present in ``path``.

    Findings are advisory and never reject the file. Only the first matching
    line per pattern is reported.
    """

    log = logger if logger is not None else _logger
    candidate = Path(path)
    text = candidate.read_text(encoding="utf-8", errors="replace")
    lines = text.splitlines()

    findings: list[SecretFinding] = []
    for pattern, compiled in _COMPILED_SECRET_PATTERNS:
        for index, line in enumerate(lines, start=1):
            if compiled.search(line):
                findings.append(SecretFinding(pattern=pattern, line_number=index))
                log.warning(
                    "potential_secret_found",
                    category=LOG_CATEGORY_SECURITY,
                    path=candidate.as_posix(),
                    pattern=pattern,
                    line_number=index,
                )
                break
    return tuple(findings)


def check_environment(
    environ: Mapping[str, str] | None = None,
    *,
    logger: Any | None = None,
) -> tuple[str, ...]:
    """Return required variables that are unset or empty, warning for each."""

    env = os.environ if environ is None else environ
    log = logger if logger is not None else _logger
    missing = tuple(name for name in REQUIRED_ENV_VARS if not env.get(name))
    for name in missing:
        log.warning("required_environment_variable_missing", variable=name)
    return missing


def sanitized_environment(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy of the environment for tool subprocesses, without loader-injection variables."""

    env = dict(os.environ if environ is None else environ)
    for name in STRIPPED_ENV_VARS:
        env.pop(name, None)
    return env


__all__ = [
    "REQUIRED_ENV_VARS",
    "SECRET_PATTERNS",
    "STRIPPED_ENV_VARS",
    "SecretFinding",
    "ValidationError",
    "check_environment",
    "sanitized_environment",
    "scan_for_secrets",
    "validate_source_file",
]
