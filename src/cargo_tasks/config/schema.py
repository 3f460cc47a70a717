"""Shape of ``cargo_tasks.toml``: defaults, strict validation, profiles, redaction.

Every section is described by a table of fields. Validation walks that table
and reports each problem as a :class:`ConfigValidationIssue` carrying a dotted
path (``cargo.env.BAD-NAME``, ``args.check[1]``), so one run of
``cargo-tasks config`` shows everything that is wrong at once.

Profiles are partial overlays of the same sections. ``release`` adds
``--release`` to the build/run/test argument lists and ``quiet`` hides task
output; a user profile with the same name is merged over the built-in one.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from cargo_tasks.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_EXECUTABLE,
    DEFAULT_KILL_GRACE_SECONDS,
    DEFAULT_LOG_DIR,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("release", "quiet")
ARGS_KINDS: Final[tuple[str, ...]] = ("build", "check", "clippy", "run", "test")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
REDACTED: Final[str] = "<redacted>"

# Relative values are resolved against the directory holding the config file.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("workspace", "cwd"),
    ("observability", "log_dir"),
)

_ENV_VAR_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_PROFILE_NAME = re.compile(r"[a-z][a-z0-9_-]*")
_WORD_BREAK = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|[^A-Za-z0-9]+")
_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials", "auth"}
)


class MetaConfig(TypedDict):
    schema_version: int


class CargoConfig(TypedDict):
    executable: str
    env: dict[str, str]
    show_output: bool
    kill_grace_seconds: float


class DiagnosticsConfig(TypedDict):
    enabled: bool
    deduplicate: bool


class ArgsConfig(TypedDict):
    build: list[str]
    check: list[str]
    clippy: list[str]
    run: list[str]
    test: list[str]


class WorkspaceConfig(TypedDict):
    cwd: NotRequired[str]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class ProfileOverlay(TypedDict, total=False):
    cargo: dict[str, object]
    diagnostics: dict[str, object]
    args: dict[str, object]
    workspace: dict[str, object]
    observability: dict[str, object]


class CargoTasksConfig(TypedDict):
    meta: MetaConfig
    cargo: CargoConfig
    diagnostics: DiagnosticsConfig
    args: ArgsConfig
    workspace: WorkspaceConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[CargoTasksConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "cargo": {
        "executable": DEFAULT_EXECUTABLE,
        "env": {},
        "show_output": True,
        "kill_grace_seconds": DEFAULT_KILL_GRACE_SECONDS,
    },
    "diagnostics": {"enabled": True, "deduplicate": False},
    "args": {"build": [], "check": [], "clippy": [], "run": [], "test": []},
    "workspace": {},
    "observability": {
        "log_level": "INFO",
        "log_dir": str(DEFAULT_LOG_DIR),
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "profiles": {
        "release": {
            "args": {"build": ["--release"], "run": ["--release"], "test": ["--release"]},
        },
        "quiet": {
            "cargo": {"show_output": False},
            "observability": {"log_level": "WARNING"},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Normalized config, or ``None`` together with every issue found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {issue.path}: {issue.message}" for issue in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "- <root>: unknown failure"))


class _Invalid(Exception):
    """A field check failed; ``suffix`` narrows the path (``[2]``, ``.NAME``)."""

    def __init__(self, message: str, suffix: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.suffix = suffix


_Check = Callable[[object], object]


@dataclass(frozen=True, slots=True)
class _Field:
    check: _Check
    required: bool = True
    default: Callable[[], object] | None = None


def default_config() -> CargoTasksConfig:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "rewrite cargo_tasks.toml for the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "install a newer cargo-tasks"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; lists are replaced, not appended."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config(current, value)
        elif isinstance(value, Mapping):
            merged[key] = merge_config({}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Overlay ``profiles.<profile>`` onto ``config`` and validate the result."""

    name = (profile or "").strip()
    if not name:
        return merge_config({}, config)

    profiles = config.get("profiles")
    overlay = profiles.get(name) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError([ConfigValidationIssue("profiles", _undefined(name))])
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            [ConfigValidationIssue(f"profiles.{name}", "profile overlay must be an object")]
        )
    return assert_valid_config(merge_config(config, overlay))


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    issues: list[ConfigValidationIssue] = []
    root = _table(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(None, tuple(issues))

    normalized = _check_root(root, issues)

    name = active_profile.strip() if isinstance(active_profile, str) else ""
    if name:
        overlay = normalized.get("profiles", {}).get(name)
        if overlay is None:
            issues.append(ConfigValidationIssue("profiles", _undefined(name)))
        else:
            _check_root(merge_config(normalized, overlay), issues)

    if issues:
        return ConfigValidationResult(None, tuple(issues))
    return ConfigValidationResult(normalized, ())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy of ``config`` with string values under secret-looking keys replaced."""

    if not isinstance(config, Mapping):
        return {}
    return {key: _masked(key, value) for key, value in config.items()}


def _masked(key: str, value: object) -> Any:
    if isinstance(value, str):
        return REDACTED if _is_secret_key(key) else value
    if isinstance(value, Mapping):
        return {name: _masked(name, item) for name, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_masked(key, item) for item in value]
    return value


def _is_secret_key(key: str) -> bool:
    words = [word.lower() for word in _WORD_BREAK.split(key) if word]
    joined = "_".join(words)
    return any(word in _SECRET_WORDS for word in words) or any(
        phrase in joined for phrase in ("api_key", "access_token", "private_key")
    )


def _undefined(profile: str) -> str:
    return f"profile {profile!r} is not defined"


# Field checks: return the normalized value or raise _Invalid.


def _text(value: object) -> str:
    if not isinstance(value, str):
        raise _Invalid(f"expected string, got {type(value).__name__}")
    stripped = value.strip()
    if not stripped:
        raise _Invalid("must not be empty")
    if "\x00" in stripped:
        raise _Invalid("must not contain NUL bytes")
    return stripped


def _flag(value: object) -> bool:
    if not isinstance(value, bool):
        raise _Invalid(f"expected boolean, got {type(value).__name__}")
    return value


def _seconds(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _Invalid(f"expected number, got {type(value).__name__}")
    if not math.isfinite(value):
        raise _Invalid("must be finite")
    if value < 0:
        raise _Invalid("must be >= 0")
    return float(value)


def _arg_list(value: object) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise _Invalid(f"expected array of strings, got {type(value).__name__}")
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise _Invalid(f"expected string, got {type(item).__name__}", f"[{index}]")
    return list(value)


def _env_table(value: object) -> dict[str, str]:
    if not isinstance(value, Mapping):
        raise _Invalid(f"expected object, got {type(value).__name__}")
    env: dict[str, str] = {}
    for name in sorted(value):
        if not isinstance(name, str) or not _ENV_VAR_NAME.fullmatch(name):
            raise _Invalid("must be an env var name (example: RUSTFLAGS)", f".{name}")
        item = value[name]
        if not isinstance(item, str):
            raise _Invalid(f"expected string, got {type(item).__name__}", f".{name}")
        env[name] = item
    return env


def _log_level(value: object) -> str:
    level = _text(value)
    if level not in LOG_LEVELS:
        raise _Invalid(f"invalid value {level!r}; expected one of: {', '.join(LOG_LEVELS)}")
    return level


def _schema_version(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Invalid(f"expected integer, got {type(value).__name__}")
    if value < 1:
        raise _Invalid("must be >= 1")
    if value != ConfigSchemaVersion:
        raise _Invalid(migration_guidance(value))
    return value


_SCHEMA: Final[dict[str, dict[str, _Field]]] = {
    "meta": {"schema_version": _Field(_schema_version)},
    "cargo": {
        "executable": _Field(_text),
        "env": _Field(_env_table, required=False, default=dict),
        "show_output": _Field(_flag),
        "kill_grace_seconds": _Field(_seconds),
    },
    "diagnostics": {"enabled": _Field(_flag), "deduplicate": _Field(_flag)},
    "args": {kind: _Field(_arg_list, required=False, default=list) for kind in ARGS_KINDS},
    "workspace": {"cwd": _Field(_text, required=False)},
    "observability": {
        "log_level": _Field(_log_level),
        "log_dir": _Field(_text),
        "log_to_stdout": _Field(_flag),
        "redact_secrets": _Field(_flag),
    },
}


def _check_root(
    payload: Mapping[str, object], issues: list[ConfigValidationIssue]
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(payload):
        if key not in _SCHEMA and key != "profiles":
            issues.append(ConfigValidationIssue(key, "unknown field"))
    for name in _SCHEMA:
        if name not in payload:
            issues.append(ConfigValidationIssue(name, "missing required field"))
            continue
        table = _table(payload[name], name, issues)
        if table is not None:
            out[name] = _check_section(name, table, name, issues, partial=False)
    if "profiles" in payload:
        profiles = _table(payload["profiles"], "profiles", issues)
        if profiles is not None:
            out["profiles"] = _check_profiles(profiles, issues)
    return out


def _check_section(
    section: str,
    payload: Mapping[str, object],
    path: str,
    issues: list[ConfigValidationIssue],
    *,
    partial: bool,
) -> dict[str, Any]:
    fields = _SCHEMA[section]
    for key in sorted(payload):
        if key not in fields:
            issues.append(ConfigValidationIssue(f"{path}.{key}", "unknown field"))

    out: dict[str, Any] = {}
    for key, field in fields.items():
        where = f"{path}.{key}"
        if key in payload:
            try:
                out[key] = field.check(payload[key])
            except _Invalid as exc:
                issues.append(ConfigValidationIssue(where + exc.suffix, exc.message))
        elif partial:
            continue
        elif field.required:
            issues.append(ConfigValidationIssue(where, "missing required field"))
        elif field.default is not None:
            out[key] = field.default()
    return out


def _check_profiles(
    payload: Mapping[str, object], issues: list[ConfigValidationIssue]
) -> dict[str, Any]:
    profiles: dict[str, Any] = {}
    for name in sorted(payload):
        path = f"profiles.{name}"
        if not _PROFILE_NAME.fullmatch(name):
            message = f"profile name must match {_PROFILE_NAME.pattern}"
            issues.append(ConfigValidationIssue(path, message))
            continue
        overlay = _table(payload[name], path, issues)
        if overlay is None:
            continue
        checked: dict[str, Any] = {}
        for section in sorted(overlay):
            where = f"{path}.{section}"
            if section not in _SCHEMA or section == "meta":
                issues.append(ConfigValidationIssue(where, "unknown field"))
                continue
            table = _table(overlay[section], where, issues)
            if table is not None:
                checked[section] = _check_section(section, table, where, issues, partial=True)
        profiles[name] = checked
    return profiles


def _table(
    value: object, path: str, issues: list[ConfigValidationIssue]
) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.append(ConfigValidationIssue(path, f"expected object, got {type(value).__name__}"))
        return None
    bad_keys = [key for key in value if not isinstance(key, str)]
    if bad_keys:
        issues.append(ConfigValidationIssue(path, f"object keys must be strings: {bad_keys!r}"))
    return {key: item for key, item in value.items() if isinstance(key, str)}


__all__ = [
    "ARGS_KINDS",
    "BUILTIN_PROFILE_NAMES",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "REDACTED",
    "CargoTasksConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
