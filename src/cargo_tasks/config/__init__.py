"""Configuration: ``cargo_tasks.toml`` schema, layered loading, and redacted dumps."""

from cargo_tasks.config.loader import (
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    env_var_for,
    load_config,
)
from cargo_tasks.config.schema import (
    BUILTIN_PROFILE_NAMES,
    CargoTasksConfig,
    ConfigValidationError,
    ConfigValidationIssue,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ENV_PREFIX",
    "CargoTasksConfig",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "env_var_for",
    "load_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
