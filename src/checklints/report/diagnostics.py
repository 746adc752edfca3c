"""Outcomes, diagnostics, and the aggregated run report."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from checklints.rules.model import SourceSpan


class Status(str, Enum):
    """Severity of an outcome, ordered pass < fail < error."""

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


# Second component of ``Outcome.order``: position of the section kind.
ORDER_CONDITION = 0
ORDER_FACT = 1
ORDER_CHECK = 2


@dataclass(frozen=True)
class Diagnostic:
    """A human-facing explanation of a non-passing outcome."""

    kind: str  # "check" | "condition" | "fact" | "parse" | "requirement"
    subject: str
    severity: Status
    message: str
    rule_set: str | None = None
    span: SourceSpan | None = None
    label: str | None = None
    detail: str | None = None
    source_text: str | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Outcome:
    """Result of one condition, fact, or check.

    ``order`` is ``(rule_set_index, section_kind, declaration_index)`` and
    fixes the report order independently of execution order.
    """

    order: tuple[int, int, int]
    kind: str
    subject: str
    status: Status
    rule_set: str
    diagnostic: Diagnostic | None = None


@dataclass(frozen=True)
class Report:
    """Outcomes of a run sorted by declaration order."""

    outcomes: tuple[Outcome, ...] = ()

    @property
    def passed(self) -> int:
        return sum(1 for o in self.outcomes if o.status is Status.PASS)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status is Status.FAIL)

    @property
    def errors(self) -> int:
        return sum(1 for o in self.outcomes if o.status is Status.ERROR)

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return [o.diagnostic for o in self.outcomes if o.diagnostic is not None]

    @property
    def status(self) -> Status:
        if self.failed or self.errors:
            return Status.FAIL
        return Status.PASS

    @property
    def exit_code(self) -> int:
        return 0 if self.status is Status.PASS else 1


def build_report(outcomes: Iterable[Outcome]) -> Report:
    """Sort *outcomes* into declaration order and wrap them in a :class:`Report`."""
    return Report(outcomes=tuple(sorted(outcomes, key=lambda o: o.order)))
