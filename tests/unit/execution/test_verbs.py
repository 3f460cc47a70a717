"""Unit tests for the verb table and argument vector construction."""

from __future__ import annotations

from pathlib import Path

import pytest

from cargo_tasks.domain.errors import UnhandledVerbError, WorkingDirectoryUnresolvedError
from cargo_tasks.execution.verbs import VERB_RULES, ArgsKind, Verb, build_argv, rule_for
from cargo_tasks.execution.workspace import ConfigArgsSource, StaticWorkingDirectory


def test_every_verb_has_a_rule() -> None:
    assert set(VERB_RULES) == set(Verb)


@pytest.mark.parametrize(
    ("verb", "args", "expected"),
    [
        ("check", ["--lib"], ("check", "--message-format", "json", "--lib")),
        ("build", [], ("build", "--message-format", "json")),
        (
            "clippy",
            ["--", "-Dwarnings"],
            ("clippy", "--message-format", "json", "--", "-Dwarnings"),
        ),
        ("test", ["it_works"], ("test", "--message-format", "json", "it_works")),
        ("doc", ["--open"], ("doc", "--open")),
        ("new", ["hello"], ("new", "hello")),
        ("rustc", ["--", "-Zno-trans"], ("rustc", "--", "-Zno-trans")),
    ],
)
def test_build_argv_places_verb_first_and_json_flags_before_user_args(
    verb: str, args: list[str], expected: tuple[str, ...]
) -> None:
    assert build_argv(verb, args) == expected


def test_verb_parse_is_case_insensitive_and_rejects_unknown_verbs() -> None:
    assert Verb.parse(" Check ") is Verb.CHECK
    with pytest.raises(UnhandledVerbError):
        Verb.parse("fmt")
    with pytest.raises(UnhandledVerbError):
        rule_for("publish")


def test_args_kind_is_set_only_for_configurable_verbs() -> None:
    kinds = {verb: rule.args_kind for verb, rule in VERB_RULES.items() if rule.args_kind}
    assert kinds == {
        Verb.BUILD: ArgsKind.BUILD,
        Verb.CHECK: ArgsKind.CHECK,
        Verb.CLIPPY: ArgsKind.CLIPPY,
        Verb.RUN: ArgsKind.RUN,
        Verb.TEST: ArgsKind.TEST,
    }


def test_config_args_source_reads_args_section() -> None:
    source = ConfigArgsSource({"args": {"check": ["--lib"], "run": ("--bin", "app")}})
    assert source.get_args(ArgsKind.CHECK) == ["--lib"]
    assert source.get_args(ArgsKind.RUN) == ["--bin", "app"]
    assert source.get_args(ArgsKind.TEST) == []


def test_static_working_directory_validates_path(tmp_path: Path) -> None:
    assert StaticWorkingDirectory(tmp_path).cwd() == tmp_path.resolve()

    with pytest.raises(WorkingDirectoryUnresolvedError, match="No working directory"):
        StaticWorkingDirectory(None).cwd()
    with pytest.raises(WorkingDirectoryUnresolvedError, match="does not exist"):
        StaticWorkingDirectory(tmp_path / "missing").cwd()

    file_path = tmp_path / "Cargo.toml"
    file_path.write_text("[package]\n", encoding="utf-8")
    with pytest.raises(WorkingDirectoryUnresolvedError, match="not a directory"):
        StaticWorkingDirectory(file_path).cwd()
