"""
cargo-tasks — CLI end-to-end tests

File: tests/integration/test_cli_end_to_end.py

Purpose
- Drive ``cli_entrypoint`` against a scripted stand-in for the build tool,
  spawned as a real child process.

What this test file should cover
- Check probe, argument vector, working directory, and JSON summary.
- Diagnostics resolved to absolute paths.
- Missing executable reported as an informational notice.
"""

from __future__ import annotations

import json
import os
import stat
import sys
import textwrap
from pathlib import Path

import pytest

from cargo_tasks.main import ExitCode, cli_entrypoint

pytestmark = pytest.mark.skipif(os.name != "posix", reason="shebang scripts are POSIX-only")

_FAKE_TOOL = """\
#!{python}
import json
import sys

args = sys.argv[1:]
if args == ["check", "--help"]:
    print("Check a local package and all of its dependencies for errors")
    raise SystemExit(0)

with open({record!r}, "w", encoding="utf-8") as handle:
    json.dump({{"args": args, "cwd": __import__("os").getcwd()}}, handle)

print("   Compiling demo v0.1.0", file=sys.stderr, flush=True)
print(json.dumps({{
    "reason": "compiler-message",
    "package_id": "demo 0.1.0",
    "message": {{
        "message": "unused variable: `x`",
        "code": {{"code": "unused_variables", "explanation": None}},
        "level": "warning",
        "spans": [{{
            "file_name": "src/lib.rs",
            "line_start": 2,
            "line_end": 2,
            "column_start": 9,
            "column_end": 10,
            "is_primary": True,
            "label": None,
        }}],
        "children": [{{
            "message": "if this is intentional, prefix it with an underscore",
            "level": "help",
            "spans": [{{
                "file_name": "src/lib.rs",
                "line_start": 2,
                "line_end": 2,
                "column_start": 9,
                "column_end": 10,
                "is_primary": True,
                "suggested_replacement": "_x",
            }}],
        }}],
    }},
}}), flush=True)
print(json.dumps({{"reason": "build-finished", "success": True}}), flush=True)
raise SystemExit({exit_code})
"""


def _fake_tool(directory: Path, *, exit_code: int = 0) -> tuple[Path, Path]:
    record = directory / "invocation.json"
    script = directory / "fake-cargo"
    script.write_text(
        _FAKE_TOOL.format(python=sys.executable, record=str(record), exit_code=exit_code),
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script, record


def _config(directory: Path, executable: Path) -> Path:
    path = directory / "cargo_tasks.toml"
    path.write_text(
        textwrap.dedent(
            f"""
            [cargo]
            executable = "{executable.as_posix()}"
            kill_grace_seconds = 1.0

            [args]
            check = ["--workspace"]
            """
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def crate(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    root = tmp_path / "demo"
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text('[package]\nname = "demo"\n', encoding="utf-8")
    return root


def test_check_reports_diagnostics_as_json(
    tmp_path: Path, crate: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    tool, record = _fake_tool(tmp_path, exit_code=0)
    config = _config(tmp_path, tool)

    code = cli_entrypoint(
        ["check", "--config", str(config), "--cwd", str(crate), "--json", "--", "--lib"]
    )

    assert code == ExitCode.SUCCESS
    invocation = json.loads(record.read_text(encoding="utf-8"))
    assert invocation["args"] == ["check", "--message-format", "json", "--lib"]
    assert Path(invocation["cwd"]).resolve() == crate.resolve()

    captured = capsys.readouterr()
    payload = json.loads(captured.out.strip().splitlines()[-1])
    assert payload["state"] == "completed"
    assert payload["exit_code"] == 0
    assert payload["notifications"] == []

    [diagnostic] = payload["diagnostics"]
    assert Path(diagnostic["file_path"]) == crate.resolve() / "src" / "lib.rs"
    assert diagnostic["range"] == {
        "start": {"line": 1, "character": 8},
        "end": {"line": 1, "character": 9},
    }
    assert diagnostic["severity"] == "warning"
    assert diagnostic["related"][0]["message"] == (
        "if this is intentional, prefix it with an underscore: `_x`"
    )
    assert "Compiling demo v0.1.0" in captured.err


def test_tool_exit_code_passes_through_and_default_args_apply(
    tmp_path: Path, crate: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    tool, record = _fake_tool(tmp_path, exit_code=101)
    config = _config(tmp_path, tool)

    code = cli_entrypoint(["check", "--config", str(config), "--cwd", str(crate)])

    assert code == 101
    invocation = json.loads(record.read_text(encoding="utf-8"))
    assert invocation["args"] == ["check", "--message-format", "json", "--workspace"]
    out = capsys.readouterr().out
    assert "Completed with code 101" in out
    assert "warning[unused_variables]: unused variable: `x`" in out


def test_missing_executable_is_reported_as_a_notice(
    tmp_path: Path, crate: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = tmp_path / "no-such-cargo"
    config = _config(tmp_path, missing)

    code = cli_entrypoint(["build", "--config", str(config), "--cwd", str(crate), "--json"])

    assert code == ExitCode.TOOL_UNAVAILABLE
    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["state"] == "failed"
    assert payload["diagnostics"] == []
    assert payload["notifications"] == [
        {
            "level": "info",
            "message": (
                f'The "{missing.as_posix()}" command is not available. '
                "Make sure it is installed."
            ),
        }
    ]
