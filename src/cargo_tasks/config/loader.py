"""Build the effective configuration for one invocation.

Layers, lowest first: built-in defaults, ``cargo_tasks.toml``, the selected
profile, ``CARGO_TASKS_*`` environment variables, then dotted CLI overrides.
Each environment variable names one leaf (``CARGO_TASKS_CARGO_SHOW_OUTPUT``
sets ``cargo.show_output``) and is coerced to that leaf's current type;
argument lists are split with shell quoting rules.
"""

from __future__ import annotations

import json
import os
import shlex
import tomllib
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from cargo_tasks.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from cargo_tasks.constants import DEFAULT_CONFIG_FILENAME

DEFAULT_CONFIG_FILE: Final[str] = DEFAULT_CONFIG_FILENAME
ENV_PREFIX: Final[str] = "CARGO_TASKS_"
PROFILE_ENV_VAR: Final[str] = f"{ENV_PREFIX}PROFILE"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

# Leaves that can be set from the environment although the defaults omit them.
_OPTIONAL_LEAVES: Final[dict[tuple[str, ...], object]] = {("workspace", "cwd"): ""}
# Subtrees never bound to environment variables.
_UNBOUND_PREFIXES: Final[tuple[tuple[str, ...], ...]] = (("meta",), ("profiles",), ("cargo", "env"))


class ConfigLoadError(ValueError):
    """The config file is unreadable or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config with path fields made absolute.

    Without ``config_path`` the loader looks for ``cargo_tasks.toml`` in the
    current directory and silently uses defaults when it is absent; a path that
    was named explicitly must exist.
    """

    path = _config_file(config_path)
    env = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})
    chosen = _chosen_profile(profile, overrides, env)

    config = assert_valid_config(merge_config(default_config(), _read_toml(path, config_path)))
    if chosen:
        config = apply_profile_overlay(config, chosen)
    config = merge_config(config, env_overrides(config, env))
    config = merge_config(config, _dotted_to_nested(overrides))
    config = assert_valid_config(config, active_profile=chosen)
    return normalize_paths(config, base_dir=path.parent)


def env_overrides(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay built from the ``CARGO_TASKS_*`` variables that map onto ``config`` leaves."""

    overlay: dict[str, Any] = {}
    leaves = dict(_leaves(config))
    for path, sample in _OPTIONAL_LEAVES.items():
        leaves.setdefault(path, sample)
    for path in sorted(leaves):
        name = env_var_for(path)
        if name in environ:
            _put(overlay, path, _coerce(environ[name], leaves[path], name, path))
    return overlay


def env_var_for(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields, including those inside profiles, against ``base_dir``."""

    resolved = merge_config({}, config)
    scopes: list[dict[str, Any]] = [resolved]
    profiles = resolved.get("profiles")
    if isinstance(profiles, dict):
        scopes.extend(overlay for overlay in profiles.values() if isinstance(overlay, dict))

    for scope in scopes:
        for section, key in PATH_FIELDS:
            table = scope.get(section)
            if isinstance(table, dict) and isinstance(table.get(key), str):
                table[key] = _absolute(table[key], base_dir)
    return resolved


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Redacted config as stable, indented JSON."""

    return json.dumps(effective_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def _config_file(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, requested: str | Path | None) -> dict[str, Any]:
    if not path.is_file():
        if requested is not None:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _chosen_profile(
    explicit: str | None, overrides: Mapping[str, object], environ: Mapping[str, str]
) -> str | None:
    if explicit is not None:
        candidate: object = explicit
    elif "profile" in overrides:
        candidate = overrides["profile"]
    else:
        candidate = environ.get(PROFILE_ENV_VAR)
    if candidate is None:
        return None
    if not isinstance(candidate, str):
        raise ConfigLoadError("profile override must be a string")
    return candidate.strip() or None


def _leaves(
    payload: Mapping[str, object], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    for key, value in payload.items():
        path = (*prefix, key)
        if any(path[: len(skip)] == skip for skip in _UNBOUND_PREFIXES):
            continue
        if isinstance(value, Mapping):
            yield from _leaves(value, path)
        else:
            yield path, value


def _coerce(raw: str, sample: object, env_name: str, path: tuple[str, ...]) -> object:
    target = ".".join(path)
    text = raw.strip()
    if isinstance(sample, bool):
        if text.lower() in _TRUTHY:
            return True
        if text.lower() in _FALSY:
            return False
        raise ConfigLoadError(f"{env_name} -> {target} must be a boolean (true/false, 1/0, on/off)")
    if isinstance(sample, (int, float)):
        try:
            return type(sample)(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {target} must be a number") from exc
    if isinstance(sample, list):
        try:
            return shlex.split(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {target} is not a valid argument list") from exc
    return text


def _dotted_to_nested(overrides: Mapping[str, object]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for key, value in overrides.items():
        if key == "profile":
            continue
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _put(nested, path, value)
    return nested


def _put(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    *parents, leaf = path
    for part in parents:
        target = target.setdefault(part, {})
    target[leaf] = value


def _absolute(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    return Path(os.path.normpath(base_dir / candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PROFILE_ENV_VAR",
    "dump_effective_config",
    "effective_config",
    "env_overrides",
    "env_var_for",
    "load_config",
    "normalize_paths",
]
