"""Command-line interface router for cargo-tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from cargo_tasks.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from cargo_tasks.diagnostics import DiagnosticParser, DiagnosticPublisher, InMemoryDiagnosticsSink
from cargo_tasks.domain.events import EventType, TaskEvent
from cargo_tasks.domain.ids import generate_run_id
from cargo_tasks.domain.models import FileDiagnostic, Severity, TaskOutcome, TaskState
from cargo_tasks.execution import (
    ConfigArgsSource,
    ProcessRunner,
    StaticWorkingDirectory,
    TaskOrchestrator,
    Verb,
)
from cargo_tasks.main import ExitCode
from cargo_tasks.observability import EventBus, correlation_scope, setup_logging, shutdown_logging
from cargo_tasks.ui.render import CLIRenderer, TerminalOutputSink, create_renderer

PASSTHROUGH_SEPARATOR: Final[str] = "--"

_VERB_HELP: Final[dict[Verb, str]] = {
    Verb.BENCH: "Run benchmarks.",
    Verb.BUILD: "Compile the package.",
    Verb.CHECK: "Analyze the package without producing artifacts.",
    Verb.CLEAN: "Remove build artifacts.",
    Verb.CLIPPY: "Run the lint tool.",
    Verb.DOC: "Build documentation.",
    Verb.INIT: "Create a package in an existing directory.",
    Verb.NEW: "Create a new package.",
    Verb.RUN: "Build and run the binary target.",
    Verb.RUSTC: "Compile with extra compiler flags.",
    Verb.TEST: "Run the test suite.",
    Verb.UPDATE: "Update the lock file.",
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
    """Build the argparse command router for all supported verbs."""

    parser = argparse.ArgumentParser(
        prog="cargo-tasks",
        description=(
            "cargo-tasks — run one build tool task and report its diagnostics.\n\n"
            "Common workflows:\n"
            "  cargo-tasks check                 Check with configured default args\n"
            "  cargo-tasks build -- --release    Build with explicit args\n"
            "  cargo-tasks config                Show the effective config\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./cargo_tasks.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--cwd",
        default=None,
        help="Working directory for the task (default: workspace.cwd or the current directory).",
    )
    common.add_argument(
        "--no-diagnostics",
        dest="no_diagnostics",
        action="store_true",
        default=False,
        help="Do not parse or report diagnostics.",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit a machine-readable JSON summary on stdout.",
    )
    common.add_argument(
        "--log-dir",
        dest="log_dir",
        default=None,
        help="Directory for run logs (default: observability.log_dir).",
    )
    common.add_argument("--verbose", "-v", action="store_true", default=False)

    subparsers = parser.add_subparsers(dest="command", metavar="<verb>")
    for verb in Verb:
        sub = subparsers.add_parser(
            verb.value,
            parents=[common],
            help=_VERB_HELP.get(verb, ""),
            description=(
                f"Run `{verb.value}`. Arguments after `{PASSTHROUGH_SEPARATOR}` are passed "
                "to the tool; without them the configured defaults apply."
            ),
        )
        sub.set_defaults(handler=_cmd_task, verb=verb.value)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Print the redacted effective config."
    )
    config_parser.set_defaults(handler=_cmd_config)
    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    raw = list(argv) if argv is not None else sys.argv[1:]
    head, passthrough = split_passthrough(raw)

    parser = build_parser()
    namespace = parser.parse_args(head)
    namespace.tool_args = passthrough
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return ExitCode.CONFIG_ERROR

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


def split_passthrough(argv: Sequence[str]) -> tuple[list[str], list[str] | None]:
    """Split ``argv`` at the first ``--``; ``None`` means no separator was given."""

    items = list(argv)
    if PASSTHROUGH_SEPARATOR not in items:
        return items, None
    index = items.index(PASSTHROUGH_SEPARATOR)
    return items[:index], items[index + 1 :]


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_task(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    run_id = generate_run_id()
    handle = setup_logging(
        config["observability"],
        run_id=run_id,
        log_dir=_optional_str(getattr(args, "log_dir", None)),
    )
    logger = structlog.get_logger(__name__)
    try:
        with correlation_scope(run_id=run_id, verb=args.verb):
            logger.info("cli_task_requested", verb=args.verb, tool_args=args.tool_args)
            return asyncio.run(_run_task(args, config))
    finally:
        shutdown_logging(handle)


async def _run_task(args: argparse.Namespace, config: Mapping[str, Any]) -> int:
    json_mode = _flag(args, "json")
    renderer = _get_renderer(args)
    cargo = config["cargo"]

    sink = InMemoryDiagnosticsSink()
    publisher = DiagnosticPublisher(
        sink, deduplicate=bool(config["diagnostics"].get("deduplicate", False))
    )
    events = EventBus()
    notices: list[dict[str, object]] = []

    def _record_notice(event: TaskEvent) -> None:
        notices.append(dict(event.payload))

    events.subscribe(EventType.USER_NOTIFIED, _record_notice)

    # JSON mode keeps stdout for the summary document.
    output = TerminalOutputSink(
        sys.stderr if json_mode else sys.stdout, enabled=bool(cargo["show_output"])
    )
    orchestrator = TaskOrchestrator(
        runner=ProcessRunner(
            kill_grace_seconds=float(cargo["kill_grace_seconds"]),
            env_overrides=cargo["env"],
        ),
        cwd_resolver=StaticWorkingDirectory(_task_cwd(args, config)),
        publisher=publisher,
        parser=DiagnosticParser(),
        args_source=ConfigArgsSource(config),
        output=output,
        events=events,
        executable=str(cargo["executable"]),
        show_output=bool(cargo["show_output"]),
        diagnostics_enabled=bool(config["diagnostics"]["enabled"]) and not args.no_diagnostics,
    )

    verb = Verb.parse(args.verb)
    tool_args = args.tool_args
    try:
        if verb is Verb.CHECK:
            task = await orchestrator.invoke_check(tool_args)
        else:
            task = await orchestrator.invoke(verb, tool_args)
        outcome = await orchestrator.wait() if task is not None else None
    except asyncio.CancelledError:
        orchestrator.stop()
        await orchestrator.wait()
        raise

    if task is not None and outcome is None:
        outcome = task.outcome
    diagnostics = sink.all()
    exit_code = _exit_code_for(outcome)

    if json_mode:
        _emit_json(
            {
                "command": verb.value,
                "argv": list(task.argv) if task is not None else [],
                "cwd": str(task.cwd) if task is not None else None,
                "state": outcome.state.value if outcome is not None else None,
                "exit_code": outcome.exit_code if outcome is not None else None,
                "elapsed_seconds": outcome.elapsed_seconds if outcome is not None else None,
                "diagnostics": [item.to_dict() for item in diagnostics],
                "notifications": notices,
            }
        )
        return exit_code

    for notice in notices:
        renderer.notice(str(notice.get("level", "info")), str(notice.get("message", "")))
    if diagnostics:
        renderer.section("Diagnostics:")
        renderer.diagnostics(diagnostics)
        renderer.summary(**_severity_counts(diagnostics))
    return exit_code


def _cmd_config(args: argparse.Namespace) -> int:
    profile = _optional_str(getattr(args, "profile", None))
    shown = effective_config(_load_effective_config(args))

    if _flag(args, "json"):
        _emit_json({"command": "config", "active_profile": profile, "config": shown})
        return ExitCode.SUCCESS

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(shown, indent=2, sort_keys=True, ensure_ascii=False))
    return ExitCode.SUCCESS


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


def _severity_counts(diagnostics: Sequence[FileDiagnostic]) -> dict[str, int]:
    errors = sum(1 for item in diagnostics if item.severity is Severity.ERROR)
    warnings = sum(1 for item in diagnostics if item.severity is Severity.WARNING)
    return {"errors": errors, "warnings": warnings, "other": len(diagnostics) - errors - warnings}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    try:
        return load_config(
            _optional_str(getattr(args, "config_path", None)),
            profile=_optional_str(getattr(args, "profile", None)),
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=ExitCode.CONFIG_ERROR) from exc


def _task_cwd(args: argparse.Namespace, config: Mapping[str, Any]) -> Path:
    raw = _optional_str(getattr(args, "cwd", None))
    if raw is not None:
        return Path(raw).expanduser().resolve()
    configured = config.get("workspace", {}).get("cwd")
    if isinstance(configured, str) and configured.strip():
        return Path(configured)
    return Path.cwd()


def _exit_code_for(outcome: TaskOutcome | None) -> int:
    if outcome is None:
        return ExitCode.CONFIG_ERROR
    if outcome.state is TaskState.FAILED:
        return ExitCode.TOOL_UNAVAILABLE if outcome.start_failed else ExitCode.INTERNAL_ERROR
    if outcome.state is TaskState.KILLED:
        return ExitCode.INTERRUPTED
    code = outcome.exit_code if outcome.exit_code is not None else 1
    # Negative codes report the terminating signal.
    return 128 - code if code < 0 else code


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli", "split_passthrough"]
