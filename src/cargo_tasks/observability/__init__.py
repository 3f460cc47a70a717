"""Run log and in-process task event bus."""

from cargo_tasks.observability.events import DispatchError, EventBus, Subscriber
from cargo_tasks.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    flush_logging,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "Subscriber",
    "correlation_scope",
    "flush_logging",
    "setup_logging",
    "shutdown_logging",
]
