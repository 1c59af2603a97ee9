"""Command-line interface router for smarttesthub."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import shutil
import signal
import sys
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

from smarttesthub.config import (
    ConfigLoadError,
    ConfigValidationError,
    load_config,
    redact_config,
)
from smarttesthub.constants import CHAIN_EVM, CHAIN_NON_EVM, CHAINS
from smarttesthub.observability.health import REQUIRED_TOOLS
from smarttesthub.observability.logging import (
    StructuredLoggingHandle,
    setup_logging,
    shutdown_logging,
)
from smarttesthub.pipelines import stages_for
from smarttesthub.service import HarnessService
from smarttesthub.ui.render import CLIRenderer, create_renderer
from smarttesthub.utils.concurrency import CancellationToken

EXIT_SUCCESS: Final[int] = 0
EXIT_JOBS_FAILED: Final[int] = 1
EXIT_CONFIG_ERROR: Final[int] = 2
EXIT_ENVIRONMENT_ERROR: Final[int] = 3

_CHAIN_ALIASES: Final[dict[str, str]] = {
    "evm": CHAIN_EVM,
    "non_evm": CHAIN_NON_EVM,
    "non-evm": CHAIN_NON_EVM,
    "solana": CHAIN_NON_EVM,
}


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="smarthub",
        description=(
            "smarttesthub - CI harness for Solidity and Solana smart contracts.\n\n"
            "Common workflows:\n"
            "  smarthub watch                 Process files dropped into the input dir\n"
            "  smarthub run Token.sol         Process files once and exit\n"
            "  smarthub health                Write and show the health status\n"
            "  smarthub doctor                Check toolchain presence\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to harness TOML config (default: ./smarthub.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name (built-in: evm, non-evm).",
    )
    common.add_argument(
        "--chain",
        default=None,
        choices=sorted(_CHAIN_ALIASES),
        help="Override harness.chain for this invocation.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output and log at DEBUG level.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # watch ---------------------------------------------------------------
    watch_parser = subparsers.add_parser(
        "watch",
        parents=[common],
        help="Watch the input directory until interrupted",
        description=(
            "Poll the input directory and run the chain pipeline for every stable file.\n"
            "Stops cleanly on SIGINT/SIGTERM after running jobs finish.\n\n"
            "Examples:\n"
            "  smarthub watch\n"
            "  smarthub watch --profile non-evm\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    watch_parser.set_defaults(handler=_cmd_watch)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Process the given files once (batch mode)",
        description=(
            "Dispatch every FILE through the chain pipeline and wait for all of them.\n"
            "Exit code is 1 when any job did not succeed.\n\n"
            "Examples:\n"
            "  smarthub run contracts/Token.sol\n"
            "  smarthub run --chain non_evm program.rs --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("files", nargs="+", metavar="FILE", help="Source files to process")
    run_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    run_parser.set_defaults(handler=_cmd_run)

    # health --------------------------------------------------------------
    health_parser = subparsers.add_parser(
        "health",
        parents=[common],
        help="Write the health/metrics files once and show the status",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    health_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    health_parser.set_defaults(handler=_cmd_health)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file, env, and profile.\n"
            "Sensitive values are redacted.\n\n"
            "Examples:\n"
            "  smarthub config\n"
            "  smarthub config --json --profile non-evm\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    # doctor --------------------------------------------------------------
    doctor_parser = subparsers.add_parser(
        "doctor",
        parents=[common],
        help="Check toolchain presence for the configured chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    doctor_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    doctor_parser.set_defaults(handler=_cmd_doctor)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_watch(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    renderer = _get_renderer(args)
    handle = _start_logging(config, quiet=False)
    try:
        service = HarnessService(config)
        renderer.heading(f"smarthub watch ({service.chain})")
        renderer.kv("Input", service.paths.input_dir)
        renderer.kv("Reports", service.paths.report_dir)
        asyncio.run(_serve_until_signalled(service))
    finally:
        shutdown_logging(handle)
    return EXIT_SUCCESS


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    json_mode = _flag(args, "json")
    files = [Path(item).expanduser() for item in args.files]
    handle = _start_logging(config, quiet=json_mode)
    try:
        service = HarnessService(config)
        outcomes = asyncio.run(service.process_files(files))
    finally:
        shutdown_logging(handle)

    failed = [outcome for outcome in outcomes if not outcome.succeeded]
    if json_mode:
        _emit_json(
            {
                "command": "run",
                "chain": service.chain,
                "jobs": [outcome.to_dict() for outcome in outcomes],
                "failed": len(failed),
            }
        )
    else:
        renderer = _get_renderer(args)
        renderer.table(
            ("Job", "File", "Status", "Duration (ms)", "Detail"),
            [
                (
                    outcome.descriptor.job_id,
                    outcome.descriptor.source_path.name,
                    outcome.status.value,
                    str(outcome.duration_ms),
                    outcome.message,
                )
                for outcome in outcomes
            ],
            title=f"smarthub run ({service.chain})",
        )
        for outcome in outcomes:
            for path in outcome.report_paths:
                renderer.items([path.as_posix()], prefix="report: ")
        if failed:
            renderer.warning(f"{len(failed)} of {len(outcomes)} job(s) did not succeed")
    return EXIT_JOBS_FAILED if failed else EXIT_SUCCESS


def _cmd_health(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    handle = _start_logging(config, quiet=_flag(args, "json"))
    try:
        service = HarnessService(config)
        service.prepare()
        status = service.check_health()
    except OSError as exc:
        raise CLIError(
            f"unable to write health files: {exc}", exit_code=EXIT_ENVIRONMENT_ERROR
        ) from exc
    finally:
        shutdown_logging(handle)

    if _flag(args, "json"):
        _emit_json({"command": "health", "chain": service.chain, **status.to_dict()})
    else:
        renderer = _get_renderer(args)
        renderer.heading(status.message)
        for check in status.checks:
            if check.ok:
                renderer.ok(f"{check.name}: {check.detail}")
            else:
                renderer.fail(f"{check.name}: {check.detail}")
        renderer.kv("Status file", service.paths.status_file)
    return EXIT_SUCCESS if status.ok else EXIT_ENVIRONMENT_ERROR


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))
    redacted = redact_config(config)

    payload: dict[str, object] = {
        "command": "config",
        "active_profile": profile,
        "config": redacted,
    }

    if _flag(args, "json"):
        _emit_json(payload)
        return EXIT_SUCCESS

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return EXIT_SUCCESS


def _cmd_doctor(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    chain = str(config["harness"]["chain"])
    checks: list[tuple[str, bool, str]] = []

    for tool in REQUIRED_TOOLS.get(chain, ()):
        resolved = shutil.which(tool)
        checks.append(
            (f"required:{tool}", resolved is not None, resolved or "not found in PATH")
        )

    required = set(REQUIRED_TOOLS.get(chain, ()))
    for stage in stages_for(chain, config["pipeline"]):
        tool = stage.required_tool
        if tool in required:
            continue
        required.add(tool)
        resolved = shutil.which(tool)
        # Optional tools only skip their stage.
        checks.append(
            (f"optional:{tool}", True, resolved or f"not found; stage {stage.name} will skip")
        )

    input_dir = Path(str(config["paths"]["input_dir"]))
    input_ok = input_dir.is_dir() and os.access(input_dir, os.R_OK | os.X_OK)
    checks.append(
        ("input_dir", input_ok, str(input_dir) if input_ok else f"{input_dir} is not readable")
    )

    all_passed = all(passed for _, passed, _ in checks)
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "doctor",
                "chain": chain,
                "ok": all_passed,
                "checks": [
                    {"name": name, "status": "ok" if passed else "fail", "detail": detail}
                    for name, passed, detail in checks
                ],
            }
        )
    else:
        renderer = _get_renderer(args)
        renderer.heading(f"smarthub doctor ({chain})")
        for name, passed, detail in checks:
            if passed:
                renderer.ok(f"{name}: {detail}")
            else:
                renderer.fail(f"{name}: {detail}")
        if all_passed:
            renderer.text("\nAll checks passed.")
        else:
            renderer.text("\nSome checks failed. See details above.")
    return EXIT_SUCCESS if all_passed else EXIT_ENVIRONMENT_ERROR


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _serve_until_signalled(service: HarnessService) -> None:
    stop = CancellationToken()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform; KeyboardInterrupt still stops asyncio.run.
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, stop.cancel)
    await service.serve(stop)


def _start_logging(config: Mapping[str, Any], *, quiet: bool) -> StructuredLoggingHandle:
    observability = dict(config["observability"])
    if quiet:
        observability["log_to_stdout"] = False
    run_id = f"run-{datetime.now(tz=UTC).strftime('%Y%m%dT%H%M%SZ')}-{os.getpid()}"
    return setup_logging(
        observability,
        run_id=run_id,
        log_dir=Path(str(config["paths"]["log_dir"])),
    )


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    """Retrieve or create a CLI renderer from the parsed namespace."""

    no_color = _flag(args, "no_color")
    verbose = _flag(args, "verbose")
    return create_renderer(no_color=no_color, verbose=verbose)


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))

    overrides: dict[str, object] = {}
    chain = _optional_str(getattr(args, "chain", None))
    if chain is not None:
        overrides["harness.chain"] = _CHAIN_ALIASES[chain]
    if _flag(args, "verbose"):
        overrides["observability.log_level"] = "DEBUG"

    try:
        loaded = load_config(config_path, profile=profile, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc

    if loaded["harness"]["chain"] not in CHAINS:
        raise CLIError(
            f"unsupported chain {loaded['harness']['chain']!r}", exit_code=EXIT_CONFIG_ERROR
        )
    return loaded


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=EXIT_CONFIG_ERROR)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    value = getattr(args, name, False)
    return bool(value)


__all__ = ["CLIError", "build_parser", "run_cli"]
