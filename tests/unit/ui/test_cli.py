"""
cargo-tasks — CLI router tests

File: tests/unit/ui/test_cli.py

Purpose
- Validate argument routing, passthrough splitting, and command output
  without spawning the build tool.

What this test file should cover
- ``--`` passthrough versus configured default args.
- JSON summaries for task and config commands.
- Exit codes for config errors, unresolved directories, and tool exits.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pytest

from cargo_tasks.domain.models import TaskOutcome, TaskState
from cargo_tasks.main import ExitCode
from cargo_tasks.ui import cli

from ..diagnostics import compiler_message
from ..execution import FakeHandle, FakeRunner


@pytest.fixture()
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in ("CARGO_TASKS_PROFILE", "CARGO_TASKS_WORKSPACE_CWD", "CARGO_TASKS_ARGS_CHECK"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def _install_runner(monkeypatch: pytest.MonkeyPatch, exit_code: int = 0) -> list[FakeRunner]:
    created: list[FakeRunner] = []

    def script(handle: FakeHandle) -> None:
        handle.started()
        if "--help" in handle.argv:
            handle.exit(0)
            return
        handle.stderr("   Compiling demo v0.1.0")
        handle.stdout(compiler_message(level="error", code="E0308", text="mismatched types"))
        handle.exit(exit_code)

    def factory(**_: Any) -> FakeRunner:
        runner = FakeRunner(script)
        created.append(runner)
        return runner

    monkeypatch.setattr(cli, "ProcessRunner", factory)
    return created


def _json_output(capsys: pytest.CaptureFixture[str]) -> Mapping[str, Any]:
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_split_passthrough() -> None:
    assert cli.split_passthrough(["check", "--json"]) == (["check", "--json"], None)
    assert cli.split_passthrough(["check", "--", "--lib", "--", "x"]) == (
        ["check"],
        ["--lib", "--", "x"],
    )
    assert cli.split_passthrough(["build", "--"]) == (["build"], [])


def test_every_verb_has_a_subcommand() -> None:
    parser = cli.build_parser()
    namespace = parser.parse_args(["clippy", "--json", "--no-diagnostics"])
    assert namespace.verb == "clippy"
    assert namespace.json and namespace.no_diagnostics
    assert parser.parse_args(["init"]).verb == "init"


def test_missing_command_prints_help_and_fails(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.run_cli([]) == ExitCode.CONFIG_ERROR
    assert "cargo-tasks" in capsys.readouterr().err


def test_config_command_emits_redacted_json(
    workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (workdir / "cargo_tasks.toml").write_text(
        '[cargo.env]\nCARGO_REGISTRY_TOKEN = "super-secret"\n', encoding="utf-8"
    )

    assert cli.run_cli(["config", "--json", "--profile", "release"]) == 0

    payload = _json_output(capsys)
    assert payload["command"] == "config"
    assert payload["active_profile"] == "release"
    assert payload["config"]["cargo"]["env"]["CARGO_REGISTRY_TOKEN"] == "<redacted>"
    assert payload["config"]["args"]["build"] == ["--release"]


def test_missing_config_file_is_a_config_error(
    workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli.run_cli(["build", "--config", str(workdir / "absent.toml")])
    assert code == ExitCode.CONFIG_ERROR
    assert "config file not found" in capsys.readouterr().err


def test_unresolved_working_directory_reports_notice(
    workdir: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    runners = _install_runner(monkeypatch)

    code = cli.run_cli(["build", "--json", "--cwd", str(workdir / "missing")])

    assert code == ExitCode.CONFIG_ERROR
    assert runners[0].handles == []
    payload = _json_output(capsys)
    assert payload["state"] is None
    assert payload["notifications"][0]["level"] == "error"
    assert "does not exist" in payload["notifications"][0]["message"]


def test_check_runs_with_passthrough_args_and_reports_diagnostics(
    workdir: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    runners = _install_runner(monkeypatch, exit_code=101)

    code = cli.run_cli(["check", "--json", "--", "--lib"])

    assert code == 101
    probe, task = runners[0].handles
    assert probe.argv == ("cargo", "check", "--help")
    assert task.argv == ("cargo", "check", "--message-format", "json", "--lib")
    assert task.cwd == workdir.resolve()

    captured = capsys.readouterr()
    payload = json.loads(captured.out.strip().splitlines()[-1])
    assert payload["command"] == "check"
    assert payload["argv"] == ["check", "--message-format", "json", "--lib"]
    assert payload["state"] == "completed"
    assert payload["exit_code"] == 101
    [diagnostic] = payload["diagnostics"]
    assert diagnostic["code"] == "E0308"
    assert diagnostic["severity"] == "error"
    assert Path(diagnostic["file_path"]) == workdir.resolve() / "src" / "lib.rs"
    # task output goes to stderr so stdout stays a single JSON document
    assert "Compiling demo" in captured.err


def test_default_args_come_from_config_without_separator(
    workdir: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    (workdir / "cargo_tasks.toml").write_text(
        '[args]\ntest = ["--workspace"]\n', encoding="utf-8"
    )
    runners = _install_runner(monkeypatch)

    assert cli.run_cli(["test", "--no-diagnostics"]) == 0

    assert runners[0].last.argv == ("cargo", "test", "--message-format", "json", "--workspace")
    captured = capsys.readouterr()
    assert "Started cargo test --message-format json --workspace" in captured.out
    assert "Diagnostics:" not in captured.out


def test_plain_output_lists_diagnostics_and_summary(
    workdir: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    _install_runner(monkeypatch)

    assert cli.run_cli(["build"]) == 0

    out = capsys.readouterr().out
    assert "Diagnostics:" in out
    assert "src/lib.rs:3:5: error[E0308]: mismatched types" in out
    assert "1 error(s), 0 warning(s), 0 other diagnostic(s)" in out


@pytest.mark.parametrize(
    ("state", "exit_code", "start_failed", "expected"),
    [
        ("completed", 0, False, 0),
        ("completed", 101, False, 101),
        ("completed", -9, False, 137),
        ("killed", -15, False, ExitCode.INTERRUPTED),
        ("failed", None, True, ExitCode.TOOL_UNAVAILABLE),
        ("failed", None, False, ExitCode.INTERNAL_ERROR),
    ],
)
def test_exit_code_mapping(
    state: str, exit_code: int | None, start_failed: bool, expected: int
) -> None:
    outcome = TaskOutcome(
        state=TaskState(state),
        exit_code=exit_code,
        elapsed_seconds=0.1,
        start_failed=start_failed,
    )
    assert cli._exit_code_for(outcome) == expected
    assert cli._exit_code_for(None) == ExitCode.CONFIG_ERROR


def test_log_dir_flag_overrides_configured_log_directory(
    workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _install_runner(monkeypatch)
    logs = workdir / "custom-logs"

    assert cli.run_cli(["build", "--json", "--log-dir", str(logs)]) == 0

    [run_log] = list(logs.glob("run-*/cargo_tasks.jsonl"))
    messages = [json.loads(line)["message"] for line in run_log.read_text().splitlines()]
    assert "cli_task_requested" in messages
    assert not (workdir / ".cargo_tasks").exists()
