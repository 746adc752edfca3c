"""Typed rule model: conditions, facts, checks, and the rule sets that hold them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Source locations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceSpan:
    """A range inside a text document.

    Lines and columns are 1-based; byte offsets index the UTF-8 encoding.
    """

    file: str
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    start_byte: int = 0
    end_byte: int = 0

    @property
    def location(self) -> str:
        return f"{self.file}:{self.start_line}:{self.start_column}"


def _span() -> Any:
    # Spans never take part in equality or hashing.
    return field(default=None, compare=False, repr=False)


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileExists:
    """Holds when ``path`` is a regular file under the repository root."""

    path: str
    description: str | None = None
    span: SourceSpan | None = _span()


@dataclass(frozen=True)
class DirectoryExists:
    """Holds when ``path`` is a directory containing every entry in ``contains``."""

    path: str
    contains: tuple[str, ...] = ()
    description: str | None = None
    span: SourceSpan | None = _span()


@dataclass(frozen=True)
class FactEquals:
    """Holds when the fact named ``key`` resolves to ``expected``."""

    key: str
    expected: Any
    description: str | None = None
    span: SourceSpan | None = _span()


@dataclass(frozen=True)
class CommandAvailable:
    """Holds when ``command`` resolves on the executable search path."""

    command: str
    description: str | None = None
    span: SourceSpan | None = _span()


@dataclass(frozen=True)
class EnvSet:
    """Holds when the environment variable ``variable`` is set."""

    variable: str
    description: str | None = None
    span: SourceSpan | None = _span()


@dataclass(frozen=True)
class AllOf:
    conditions: tuple[Condition, ...]
    description: str | None = None
    span: SourceSpan | None = _span()


@dataclass(frozen=True)
class AnyOf:
    conditions: tuple[Condition, ...]
    description: str | None = None
    span: SourceSpan | None = _span()


@dataclass(frozen=True)
class Not:
    condition: Condition
    description: str | None = None
    span: SourceSpan | None = _span()


Condition = FileExists | DirectoryExists | FactEquals | CommandAvailable | EnvSet | AllOf | AnyOf | Not


def describe_condition(condition: Condition) -> str:
    """Return the author's description, or a generated one."""
    if condition.description:
        return condition.description
    if isinstance(condition, FileExists):
        return f"File {condition.path} exists"
    if isinstance(condition, DirectoryExists):
        if condition.contains:
            return f"Directory {condition.path} exists and contains {list(condition.contains)}"
        return f"Directory {condition.path} exists"
    if isinstance(condition, FactEquals):
        return f"Fact {condition.key} equals {condition.expected!r}"
    if isinstance(condition, CommandAvailable):
        return f"Command {condition.command} is available"
    if isinstance(condition, EnvSet):
        return f"Environment variable {condition.variable} is set"
    if isinstance(condition, AllOf):
        return " and ".join(describe_condition(c) for c in condition.conditions)
    if isinstance(condition, AnyOf):
        return " or ".join(describe_condition(c) for c in condition.conditions)
    return f"not ({describe_condition(condition.condition)})"


# ---------------------------------------------------------------------------
# Facts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class EvalCommand:
    """Run ``command`` in the repository root and capture stdout.

    ``inputs`` lists repository files whose contents feed the fingerprint,
    so editing them invalidates the cached value.
    """

    command: str
    inputs: tuple[str, ...] = ()
    timeout: float | None = None


@dataclass(frozen=True)
class StructuredPathQuery:
    """Extract the dotted ``query`` (e.g. ``package.name``) from a TOML/YAML/JSON file."""

    path: str
    query: str


@dataclass(frozen=True)
class FileContent:
    path: str


@dataclass(frozen=True)
class EnvVar:
    variable: str


FactSource = Literal | EvalCommand | StructuredPathQuery | FileContent | EnvVar

FACT_SOURCE_TYPES: dict[type, str] = {
    Literal: "literal",
    EvalCommand: "eval-command",
    StructuredPathQuery: "structured-path-query",
    FileContent: "file-content",
    EnvVar: "env-var",
}


@dataclass(frozen=True)
class Fact:
    """A named value derived from the repository or the environment."""

    key: str
    source: FactSource
    requires: tuple[Condition, ...] = ()
    description: str | None = None
    span: SourceSpan | None = _span()

    @property
    def source_type(self) -> str:
        return FACT_SOURCE_TYPES[type(self.source)]


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileCheck:
    """Assert a file exists and, optionally, what it holds.

    ``template`` is resolved relative to the rule document; ``contents`` is
    the exact expected text; ``contains`` lists required text fragments.
    A false entry in ``conditions`` skips the check, while an unmet entry in
    ``requirements`` (an available command or a set variable) fails it.
    """

    path: str
    template: str | None = None
    contents: str | None = None
    contains: tuple[str, ...] = ()
    description: str | None = None
    conditions: tuple[Condition, ...] = ()
    requirements: tuple[Condition, ...] = ()
    span: SourceSpan | None = _span()


@dataclass(frozen=True)
class DirectoryCheck:
    """Assert a directory exists with the given immediate children."""

    path: str
    contains: tuple[str, ...] = ()
    contents: tuple[str, ...] | None = None
    description: str | None = None
    conditions: tuple[Condition, ...] = ()
    requirements: tuple[Condition, ...] = ()
    span: SourceSpan | None = _span()


Check = FileCheck | DirectoryCheck


def describe_check(check: Check) -> str:
    """Return the author's description, or one generated from the assertions."""
    if check.description:
        return check.description
    if isinstance(check, FileCheck):
        text = f"File {check.path}: must exist"
        if check.contains:
            text += f", must contain {list(check.contains)}"
        if check.contents is not None:
            text += ", contents must match exactly"
        if check.template is not None:
            text += f", must match template {check.template}"
        return text
    text = f"Directory {check.path}: must exist"
    if check.contains:
        text += f", must contain {list(check.contains)}"
    if check.contents is not None:
        text += f", contents must be exactly {list(check.contents)}"
    return text


# ---------------------------------------------------------------------------
# Rule set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleSet:
    """One loaded rule document: the unit gated by its conditions.

    ``requires`` lists commands and variables the document needs; when one
    is missing the document fails instead of being skipped.
    """

    source: str
    conditions: tuple[Condition, ...] = ()
    facts: tuple[Fact, ...] = ()
    checks: tuple[Check, ...] = ()
    version: int | None = None
    requires: tuple[Condition, ...] = ()

    def fact(self, key: str) -> Fact | None:
        for fact in self.facts:
            if fact.key == key:
                return fact
        return None

    @property
    def fact_map(self) -> dict[str, Fact]:
        return {fact.key: fact for fact in self.facts}
