"""
cargo-tasks — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Env var path mapping and type coercion, including argument lists.
- Path normalization relative to the config file.
- Redacted effective config dumping.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cargo_tasks.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_overrides,
    env_var_for,
    load_config,
)
from cargo_tasks.config.schema import ConfigValidationError, default_config


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text.strip() + "\n", encoding="utf-8")
    return path


def test_defaults_apply_without_a_config_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_config(environ={})

    assert config["cargo"]["executable"] == "cargo"
    assert config["diagnostics"] == {"enabled": True, "deduplicate": False}
    assert config["observability"]["log_dir"] == (tmp_path / ".cargo_tasks/logs").as_posix()
    assert "cwd" not in config["workspace"]


def test_explicit_missing_config_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_reported(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "cargo_tasks.toml", "[cargo\nexecutable = 1")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(path, environ={})


def test_precedence_cli_over_env_over_file(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path / "cargo_tasks.toml",
        """
[cargo]
executable = "cargo-nightly"
kill_grace_seconds = 1.5

[args]
check = ["--lib"]
""",
    )
    environ = {
        "CARGO_TASKS_CARGO_KILL_GRACE_SECONDS": "0.5",
        "CARGO_TASKS_ARGS_CHECK": "--workspace --all-targets",
        "CARGO_TASKS_CARGO_SHOW_OUTPUT": "off",
    }

    config = load_config(
        path, environ=environ, cli_overrides={"cargo.kill_grace_seconds": 2.0}
    )

    assert config["cargo"]["executable"] == "cargo-nightly"
    assert config["cargo"]["kill_grace_seconds"] == 2.0
    assert config["cargo"]["show_output"] is False
    assert config["args"]["check"] == ["--workspace", "--all-targets"]


def test_env_coercion_errors_name_the_variable(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ConfigLoadError, match="CARGO_TASKS_DIAGNOSTICS_ENABLED"):
        load_config(environ={"CARGO_TASKS_DIAGNOSTICS_ENABLED": "maybe"})


def test_profile_from_env_is_applied_before_env_overrides(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "cargo_tasks.toml", "")
    config = load_config(
        path,
        environ={
            "CARGO_TASKS_PROFILE": "release",
            "CARGO_TASKS_ARGS_RUN": "--release --bin app",
        },
    )
    assert config["args"]["build"] == ["--release"]
    assert config["args"]["run"] == ["--release", "--bin", "app"]


def test_workspace_cwd_is_normalized_relative_to_config_file(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path / "conf" / "cargo_tasks.toml",
        """
[workspace]
cwd = "../crate"
""",
    )
    config = load_config(path, environ={})
    assert config["workspace"]["cwd"] == (tmp_path / "crate").as_posix()


def test_workspace_cwd_can_come_from_env(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "cargo_tasks.toml", "")
    config = load_config(path, environ={"CARGO_TASKS_WORKSPACE_CWD": "sub"})
    assert config["workspace"]["cwd"] == (tmp_path / "sub").as_posix()


def test_cli_override_with_invalid_value_fails_validation(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "cargo_tasks.toml", "")
    with pytest.raises(ConfigValidationError, match=r"diagnostics\.enabled"):
        load_config(path, environ={}, cli_overrides={"diagnostics.enabled": "nope"})


def test_dump_effective_config_is_redacted_and_stable(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path / "cargo_tasks.toml",
        """
[cargo.env]
CARGO_REGISTRY_TOKEN = "super-secret"
""",
    )
    config = load_config(path, environ={})
    first = dump_effective_config(config)
    second = dump_effective_config(load_config(path, environ={}))

    assert first == second
    assert "super-secret" not in first
    assert json.loads(first)["cargo"]["env"]["CARGO_REGISTRY_TOKEN"] == "<redacted>"


def test_env_variable_names_follow_config_paths() -> None:
    assert env_var_for(("cargo", "show_output")) == "CARGO_TASKS_CARGO_SHOW_OUTPUT"
    assert env_var_for(("args", "clippy")) == "CARGO_TASKS_ARGS_CLIPPY"


def test_meta_and_cargo_env_are_not_bound_to_environment_variables() -> None:
    environ = {
        "CARGO_TASKS_META_SCHEMA_VERSION": "2",
        "CARGO_TASKS_CARGO_ENV_RUSTFLAGS": "-Dwarnings",
        "CARGO_TASKS_CARGO_EXECUTABLE": " cargo-nightly ",
    }
    assert env_overrides(default_config(), environ) == {"cargo": {"executable": "cargo-nightly"}}
