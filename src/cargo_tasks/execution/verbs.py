"""Closed verb enumeration and the rule table that turns a verb into an argv."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from cargo_tasks.constants import JSON_MESSAGE_FORMAT_ARGS
from cargo_tasks.domain.errors import UnhandledVerbError


class Verb(StrEnum):
    BUILD = "build"
    CHECK = "check"
    CLIPPY = "clippy"
    RUN = "run"
    TEST = "test"
    BENCH = "bench"
    DOC = "doc"
    UPDATE = "update"
    CLEAN = "clean"
    RUSTC = "rustc"
    NEW = "new"
    INIT = "init"

    @classmethod
    def parse(cls, value: str | Verb) -> Verb:
        if isinstance(value, Verb):
            return value
        if not isinstance(value, str):
            raise UnhandledVerbError(value)
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            raise UnhandledVerbError(value) from exc


class ArgsKind(StrEnum):
    """Key used to look up user-configured default arguments for a verb."""

    BUILD = "build"
    CHECK = "check"
    CLIPPY = "clippy"
    RUN = "run"
    TEST = "test"


@dataclass(frozen=True, slots=True)
class VerbRule:
    json_output: bool
    args_kind: ArgsKind | None = None


VERB_RULES: Final[dict[Verb, VerbRule]] = {
    Verb.BUILD: VerbRule(json_output=True, args_kind=ArgsKind.BUILD),
    Verb.CHECK: VerbRule(json_output=True, args_kind=ArgsKind.CHECK),
    Verb.CLIPPY: VerbRule(json_output=True, args_kind=ArgsKind.CLIPPY),
    Verb.RUN: VerbRule(json_output=True, args_kind=ArgsKind.RUN),
    Verb.TEST: VerbRule(json_output=True, args_kind=ArgsKind.TEST),
    Verb.BENCH: VerbRule(json_output=False),
    Verb.DOC: VerbRule(json_output=False),
    Verb.UPDATE: VerbRule(json_output=False),
    Verb.CLEAN: VerbRule(json_output=False),
    Verb.RUSTC: VerbRule(json_output=False),
    Verb.NEW: VerbRule(json_output=False),
    Verb.INIT: VerbRule(json_output=False),
}


def rule_for(verb: str | Verb) -> VerbRule:
    parsed = Verb.parse(verb)
    rule = VERB_RULES.get(parsed)
    if rule is None:
        raise UnhandledVerbError(parsed)
    return rule


def build_argv(verb: str | Verb, args: Sequence[str] = ()) -> tuple[str, ...]:
    """Return the argument vector that follows the executable.

    The verb comes first; JSON-capable verbs get ``--message-format json``
    before any caller arguments, so ``check --lib`` becomes
    ``("check", "--message-format", "json", "--lib")``.
    """

    parsed = Verb.parse(verb)
    rule = rule_for(parsed)
    prefix: tuple[str, ...] = (parsed.value,)
    if rule.json_output:
        prefix += JSON_MESSAGE_FORMAT_ARGS
    return (*prefix, *(str(item) for item in args))


__all__ = ["VERB_RULES", "ArgsKind", "Verb", "VerbRule", "build_argv", "rule_for"]
