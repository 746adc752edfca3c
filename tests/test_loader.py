"""Tests for checklints.rules.loader — YAML and TOML rule documents to the typed model."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import yaml

from checklints.errors import ParseError
from checklints.rules.loader import dump, dumps, load, load_path
from checklints.rules.model import (
    AllOf,
    AnyOf,
    CommandAvailable,
    DirectoryCheck,
    DirectoryExists,
    EnvSet,
    EnvVar,
    EvalCommand,
    FactEquals,
    FileCheck,
    FileContent,
    FileExists,
    Literal,
    Not,
    StructuredPathQuery,
)

if TYPE_CHECKING:
    from pathlib import Path


FULL_DOCUMENT = """\
version: 1
condition:
  - type: file
    path: Cargo.toml
  - type: any
    conditions:
      - type: command
        command: cargo
      - type: not
        condition:
          type: env
          variable: CI
fact:
  - key: PROJECT_NAME
    type: structured-path-query
    path: Cargo.toml
    query: package.name
  - key: RUSTC_VERSION
    type: eval-command
    command: rustc --version
    inputs:
      - rust-toolchain.toml
    timeout: 5
    requires:
      - type: command
        command: rustc
  - key: LICENSE_TEXT
    type: file-content
    path: LICENSE
  - key: HOME_DIR
    type: env-var
    variable: HOME
  - key: EDITION
    type: literal
    value: "2021"
    description: Expected edition
check:
  - type: file
    path: README.md
    template: README.md.j2
    contains:
      - "# "
  - type: directory
    path: src
    contains:
      - main.rs
    conditions:
      - type: fact-equals
        key: EDITION
        expected: "2021"
  - type: directory
    path: .github
    contents:
      - workflows
    description: Only workflows live in .github
  - type: file
    path: .gitignore
    contents: "target/\\n"
"""


REQUIREMENTS_DOCUMENT = """\
requires:
  - type: command
    command: cargo
check:
  - type: file
    path: rustfmt.toml
    requirements:
      - type: env
        variable: CI
      - type: command
        command: rustfmt
"""


def _load(text: str) -> object:
    return load(text.encode("utf-8"), source="checks.yml")


# ---------------------------------------------------------------------------
# Successful loads
# ---------------------------------------------------------------------------


class TestLoad:
    def test_full_document(self) -> None:
        rule_set = load(FULL_DOCUMENT.encode(), source="checks.yml")

        assert rule_set.source == "checks.yml"
        assert rule_set.version == 1
        assert rule_set.conditions == (
            FileExists(path="Cargo.toml"),
            AnyOf(
                conditions=(
                    CommandAvailable(command="cargo"),
                    Not(condition=EnvSet(variable="CI")),
                )
            ),
        )
        assert [f.key for f in rule_set.facts] == [
            "PROJECT_NAME",
            "RUSTC_VERSION",
            "LICENSE_TEXT",
            "HOME_DIR",
            "EDITION",
        ]
        assert rule_set.facts[0].source == StructuredPathQuery(path="Cargo.toml", query="package.name")
        assert rule_set.facts[1].source == EvalCommand(
            command="rustc --version", inputs=("rust-toolchain.toml",), timeout=5
        )
        assert rule_set.facts[1].requires == (CommandAvailable(command="rustc"),)
        assert rule_set.facts[2].source == FileContent(path="LICENSE")
        assert rule_set.facts[3].source == EnvVar(variable="HOME")
        assert rule_set.facts[4].source == Literal(value="2021")
        assert rule_set.facts[4].description == "Expected edition"

        readme, src, github, gitignore = rule_set.checks
        assert readme == FileCheck(path="README.md", template="README.md.j2", contains=("# ",))
        assert src == DirectoryCheck(
            path="src",
            contains=("main.rs",),
            conditions=(FactEquals(key="EDITION", expected="2021"),),
        )
        assert github == DirectoryCheck(
            path=".github", contents=("workflows",), description="Only workflows live in .github"
        )
        assert gitignore == FileCheck(path=".gitignore", contents="target/\n")

    def test_empty_document(self) -> None:
        rule_set = _load("")
        assert rule_set.conditions == ()
        assert rule_set.facts == ()
        assert rule_set.checks == ()
        assert rule_set.version is None

    def test_spans_point_at_declarations(self) -> None:
        rule_set = load(FULL_DOCUMENT.encode(), source="checks.yml")
        fact = rule_set.facts[0]
        assert fact.span is not None
        assert fact.span.file == "checks.yml"
        assert fact.span.start_line == 14
        assert fact.span.start_column == 5

    def test_spans_do_not_affect_equality(self) -> None:
        first = _load("check:\n  - type: file\n    path: a\n")
        second = _load("\n\n\ncheck:\n- {type: file, path: a}\n")
        assert first.checks == second.checks
        assert first.checks[0].span != second.checks[0].span

    def test_directory_condition_with_contains(self) -> None:
        rule_set = _load(
            "condition:\n"
            "  - type: all\n"
            "    conditions:\n"
            "      - type: directory\n"
            "        path: src\n"
            "        contains: [lib.rs]\n"
        )
        assert rule_set.conditions == (
            AllOf(conditions=(DirectoryExists(path="src", contains=("lib.rs",)),)),
        )

    def test_load_path_uses_file_name_as_source(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yml"
        path.write_text("check:\n  - type: file\n    path: README.md\n")
        rule_set = load_path(path)
        assert rule_set.source == str(path)
        assert rule_set.checks == (FileCheck(path="README.md"),)

    def test_document_requires_and_check_requirements(self) -> None:
        rule_set = _load(REQUIREMENTS_DOCUMENT)
        assert rule_set.requires == (CommandAvailable(command="cargo"),)
        assert rule_set.checks[0].requirements == (
            EnvSet(variable="CI"),
            CommandAvailable(command="rustfmt"),
        )
        assert rule_set.checks[0].conditions == ()


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestParseErrors:
    def test_unknown_check_type_points_at_tag(self) -> None:
        text = "check:\n  - type: flie\n    path: README.md\n"
        with pytest.raises(ParseError, match="unknown type 'flie'") as excinfo:
            _load(text)
        span = excinfo.value.span
        assert span is not None
        assert (span.start_line, span.start_column) == (2, 11)
        assert (span.end_line, span.end_column) == (2, 15)
        assert text.encode()[span.start_byte : span.end_byte] == b"flie"
        assert excinfo.value.source_text == text
        assert str(excinfo.value).startswith("checks.yml:2:11: ")

    def test_unknown_field(self) -> None:
        text = "check:\n  - type: file\n    path: a\n    colour: red\n"
        with pytest.raises(ParseError, match="unknown field 'colour'") as excinfo:
            _load(text)
        assert excinfo.value.span is not None
        assert excinfo.value.span.start_line == 4

    def test_unknown_top_level_section(self) -> None:
        with pytest.raises(ParseError, match="unknown field 'checks'"):
            _load("checks: []\n")

    def test_missing_required_field(self) -> None:
        with pytest.raises(ParseError, match="missing required field 'path'"):
            _load("check:\n  - type: file\n")

    def test_missing_type(self) -> None:
        with pytest.raises(ParseError, match="missing required field 'type'"):
            _load("check:\n  - path: README.md\n")

    def test_list_field_given_a_string(self) -> None:
        text = "check:\n  - type: directory\n    path: src\n    contains: main.rs\n"
        with pytest.raises(ParseError, match=r"check\[0\]\.contains must be a list") as excinfo:
            _load(text)
        assert excinfo.value.span is not None
        assert excinfo.value.span.start_line == 4

    def test_string_field_given_a_list(self) -> None:
        with pytest.raises(ParseError, match=r"check\[0\]\.path must be a string"):
            _load("check:\n  - type: file\n    path: [a, b]\n")

    def test_duplicate_fact_key(self) -> None:
        text = (
            "fact:\n"
            "  - {key: NAME, type: literal, value: a}\n"
            "  - {key: NAME, type: literal, value: b}\n"
        )
        with pytest.raises(ParseError, match="duplicate fact key 'NAME'") as excinfo:
            _load(text)
        assert excinfo.value.span is not None
        assert excinfo.value.span.start_line == 3

    def test_duplicate_mapping_field(self) -> None:
        with pytest.raises(ParseError, match="duplicate field 'path'"):
            _load("check:\n  - type: file\n    path: a\n    path: b\n")

    def test_undeclared_fact_reference(self) -> None:
        text = "condition:\n  - type: fact-equals\n    key: MISSING\n    expected: x\n"
        with pytest.raises(ParseError, match="undeclared fact 'MISSING'") as excinfo:
            _load(text)
        assert excinfo.value.span is not None
        assert excinfo.value.span.start_line == 3

    def test_undeclared_fact_in_nested_check_condition(self) -> None:
        text = (
            "check:\n"
            "  - type: file\n"
            "    path: a\n"
            "    conditions:\n"
            "      - type: not\n"
            "        condition: {type: fact-equals, key: NOPE, expected: 1}\n"
        )
        with pytest.raises(ParseError, match="undeclared fact 'NOPE'"):
            _load(text)

    def test_fact_equals_rejected_in_requires(self) -> None:
        text = (
            "fact:\n"
            "  - {key: A, type: literal, value: 1}\n"
            "  - key: B\n"
            "    type: literal\n"
            "    value: 2\n"
            "    requires:\n"
            "      - {type: fact-equals, key: A, expected: 1}\n"
        )
        with pytest.raises(ParseError, match="not allowed in a fact's requires"):
            _load(text)

    def test_unsupported_version(self) -> None:
        with pytest.raises(ParseError, match="unsupported version 2"):
            _load("version: 2\n")

    def test_empty_composite(self) -> None:
        with pytest.raises(ParseError, match="must not be empty"):
            _load("condition:\n  - type: all\n    conditions: []\n")

    def test_non_positive_timeout(self) -> None:
        with pytest.raises(ParseError, match="must be a positive number"):
            _load("fact:\n  - {key: A, type: eval-command, command: 'true', timeout: 0}\n")

    def test_yaml_syntax_error(self) -> None:
        with pytest.raises(ParseError, match="invalid YAML") as excinfo:
            _load("check:\n  - type: file\n    path: [unclosed\n")
        assert excinfo.value.span is not None

    def test_invalid_utf8(self) -> None:
        with pytest.raises(ParseError, match="not valid UTF-8") as excinfo:
            load(b"check:\n  - type: file\n    path: \xff\n", source="bad.yml")
        span = excinfo.value.span
        assert span is not None
        assert (span.start_line, span.start_column) == (3, 11)

    def test_document_must_be_mapping(self) -> None:
        with pytest.raises(ParseError, match="rule document must be a mapping"):
            _load("- type: file\n")

    @pytest.mark.parametrize(
        ("text", "line"),
        [
            ("check:\n  - type: file\n    path: !custom README.md\n", 3),
            ("fact:\n  - {key: A, type: eval-command, command: run, timeout: !!int abc}\n", 2),
            ("version: !!float nope\n", 1),
        ],
    )
    def test_unreadable_tagged_value(self, text: str, line: int) -> None:
        with pytest.raises(ParseError, match="cannot read value") as excinfo:
            _load(text)
        assert excinfo.value.span is not None
        assert excinfo.value.span.start_line == line
        assert excinfo.value.label == "unreadable value"

    def test_requirement_must_be_command_or_env(self) -> None:
        with pytest.raises(ParseError, match=r"requires\[0\]: unknown type 'file'"):
            _load("requires:\n  - {type: file, path: Cargo.toml}\n")

    def test_check_requirement_must_be_command_or_env(self) -> None:
        text = (
            "check:\n"
            "  - type: file\n"
            "    path: a\n"
            "    requirements:\n"
            "      - {type: not, condition: {type: env, variable: CI}}\n"
        )
        with pytest.raises(ParseError, match=r"check\[0\]\.requirements\[0\]: unknown type"):
            _load(text)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class TestDump:
    def test_round_trip_matches_parsed_document(self) -> None:
        rule_set = load(FULL_DOCUMENT.encode(), source="checks.yml")
        assert dump(rule_set) == yaml.safe_load(FULL_DOCUMENT)

    def test_dumps_reloads_to_equal_rule_set(self) -> None:
        rule_set = load(FULL_DOCUMENT.encode(), source="checks.yml")
        again = load(dumps(rule_set).encode(), source="checks.yml")
        assert again == rule_set

    def test_requirements_round_trip(self) -> None:
        rule_set = _load(REQUIREMENTS_DOCUMENT)
        assert dump(rule_set) == yaml.safe_load(REQUIREMENTS_DOCUMENT)
        assert load(dumps(rule_set).encode(), source="checks.yml") == rule_set

    def test_defaults_are_omitted(self) -> None:
        rule_set = _load("check:\n  - type: file\n    path: README.md\n")
        assert dump(rule_set) == {"check": [{"type": "file", "path": "README.md"}]}


# ---------------------------------------------------------------------------
# TOML documents
# ---------------------------------------------------------------------------

TOML_DOCUMENT = """\
version = 1

[[requires]]
type = "command"
command = "cargo"

[[condition]]
type = "file"
path = "Cargo.toml"
description = "Rust project defined by Cargo.toml"

[[fact]]
key = "PROJECT_NAME"
type = "structured-path-query"
path = "Cargo.toml"
query = "package.name"

[[fact]]
key = "RUSTC_VERSION"
type = "eval-command"
command = "rustc --version"
timeout = 5
requires = [{ type = "command", command = "rustc" }]

[[check]]
type = "file"
path = "README.md"
template = "templates/rust-README.md.j2"
requirements = [{ type = "env", variable = "HOME" }]

[[check]]
type = "directory"
path = "src"
contains = ["main.rs"]
conditions = [
  { type = "fact-equals", key = "PROJECT_NAME", expected = "demo" },
]
"""

TOML_AS_YAML = """\
version: 1
requires:
  - {type: command, command: cargo}
condition:
  - {type: file, path: Cargo.toml, description: Rust project defined by Cargo.toml}
fact:
  - {key: PROJECT_NAME, type: structured-path-query, path: Cargo.toml, query: package.name}
  - key: RUSTC_VERSION
    type: eval-command
    command: rustc --version
    timeout: 5
    requires:
      - {type: command, command: rustc}
check:
  - type: file
    path: README.md
    template: templates/rust-README.md.j2
    requirements:
      - {type: env, variable: HOME}
  - type: directory
    path: src
    contains: [main.rs]
    conditions:
      - {type: fact-equals, key: PROJECT_NAME, expected: demo}
"""


def _load_toml(text: str) -> object:
    return load(text.encode("utf-8"), source="rust.toml")


class TestToml:
    def test_same_model_as_yaml(self) -> None:
        expected = load(TOML_AS_YAML.encode(), source="rust.toml", fmt="yaml")
        assert _load_toml(TOML_DOCUMENT) == expected

    def test_format_follows_suffix_or_argument(self) -> None:
        text = b'[[check]]\ntype = "file"\npath = "README.md"\n'
        assert load(text, source="<stdin>", fmt="toml").checks == (FileCheck(path="README.md"),)
        with pytest.raises(ParseError, match="must be a mapping|invalid YAML"):
            load(text, source="<stdin>")
        with pytest.raises(ValueError, match="unknown rule document format"):
            load(text, fmt="ini")

    def test_load_path_reads_toml(self, tmp_path: Path) -> None:
        path = tmp_path / "checklist.toml"
        path.write_text(TOML_DOCUMENT)
        rule_set = load_path(path)
        assert rule_set.source == str(path)
        assert [f.key for f in rule_set.facts] == ["PROJECT_NAME", "RUSTC_VERSION"]

    def test_spans_point_at_table_headers(self) -> None:
        rule_set = _load_toml(TOML_DOCUMENT)
        assert rule_set.facts[1].span is not None
        assert rule_set.facts[1].span.start_line == 18
        assert rule_set.checks[1].span is not None
        assert rule_set.checks[1].span.start_line == 31
        assert rule_set.checks[1].span.file == "rust.toml"

    def test_empty_document(self) -> None:
        rule_set = _load_toml("")
        assert (rule_set.conditions, rule_set.facts, rule_set.checks) == ((), (), ())
        assert rule_set.version is None

    def test_unknown_field_points_at_key(self) -> None:
        text = '[[check]]\ntype = "file"\npath = "a"\ncolour = "red"\n'
        with pytest.raises(ParseError, match=r"check\[0\]: unknown field 'colour'") as excinfo:
            _load_toml(text)
        span = excinfo.value.span
        assert span is not None
        assert (span.start_line, span.start_column) == (4, 1)
        assert text.encode()[span.start_byte : span.end_byte] == b"colour"

    def test_unknown_type_points_at_value(self) -> None:
        text = '[[check]]\ntype = "flie"\npath = "a"\n'
        with pytest.raises(ParseError, match="unknown type 'flie'") as excinfo:
            _load_toml(text)
        span = excinfo.value.span
        assert span is not None
        assert text.encode()[span.start_byte : span.end_byte] == b'"flie"'

    def test_missing_field_points_at_table(self) -> None:
        text = 'version = 1\n\n[[check]]\ntype = "file"\n'
        with pytest.raises(ParseError, match="missing required field 'path'") as excinfo:
            _load_toml(text)
        assert excinfo.value.span is not None
        assert excinfo.value.span.start_line == 3

    def test_second_table_of_array_is_located(self) -> None:
        text = (
            '[[check]]\ntype = "file"\npath = "a"\n\n'
            '[[check]]\ntype = "file"\npath = 7\n'
        )
        with pytest.raises(ParseError, match=r"check\[1\]\.path must be a string") as excinfo:
            _load_toml(text)
        assert excinfo.value.span is not None
        assert excinfo.value.span.start_line == 7

    def test_dates_are_not_strings(self) -> None:
        with pytest.raises(ParseError, match=r"check\[0\]\.path must be a string"):
            _load_toml('[[check]]\ntype = "file"\npath = 1979-05-27\n')

    def test_syntax_error(self) -> None:
        with pytest.raises(ParseError, match="invalid TOML") as excinfo:
            _load_toml('[[check]]\ntype = "file\n')
        assert excinfo.value.span is not None
        assert excinfo.value.span.start_line == 2
