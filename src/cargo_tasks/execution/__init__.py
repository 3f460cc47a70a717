"""Task execution: process lifecycle, verb rules, and the single-slot orchestrator."""

from cargo_tasks.execution.orchestrator import (
    OrchestratorState,
    OutputSink,
    RunRequest,
    TaskOrchestrator,
)
from cargo_tasks.execution.process import (
    ProcessEvent,
    ProcessExited,
    ProcessFailed,
    ProcessHandle,
    ProcessLine,
    ProcessRunner,
    ProcessStarted,
)
from cargo_tasks.execution.verbs import VERB_RULES, ArgsKind, Verb, VerbRule, build_argv, rule_for
from cargo_tasks.execution.workspace import (
    ConfigArgsSource,
    StaticWorkingDirectory,
    UserArgsSource,
    WorkingDirectoryResolver,
)

__all__ = [
    "VERB_RULES",
    "ArgsKind",
    "ConfigArgsSource",
    "OrchestratorState",
    "OutputSink",
    "ProcessEvent",
    "ProcessExited",
    "ProcessFailed",
    "ProcessHandle",
    "ProcessLine",
    "ProcessRunner",
    "ProcessStarted",
    "RunRequest",
    "StaticWorkingDirectory",
    "TaskOrchestrator",
    "UserArgsSource",
    "Verb",
    "VerbRule",
    "WorkingDirectoryResolver",
    "build_argv",
    "rule_for",
]
