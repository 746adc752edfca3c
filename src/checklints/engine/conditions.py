"""Condition evaluation against a repository root."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from checklints.engine.command import resolve_executable, split_command
from checklints.errors import EvalError, FactError
from checklints.rules.model import (
    AllOf,
    AnyOf,
    CommandAvailable,
    DirectoryExists,
    EnvSet,
    FactEquals,
    FileExists,
    Not,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

    from checklints.engine.facts import FactResolver
    from checklints.rules.model import Condition, Fact

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def values_match(value: Any, expected: Any) -> bool:
    """Compare a resolved fact value with an expected scalar.

    Command output is always text, so ``"3"`` matches an expected ``3``.
    """
    if value == expected and type(value) is type(expected):
        return True
    if isinstance(value, str) and not isinstance(expected, str):
        return value == _as_text(expected)
    if isinstance(value, bool) or isinstance(expected, bool):
        return False
    return value == expected


class ConditionEvaluator:
    """Decide whether conditions hold for ``repo_root``.

    *facts* maps the keys visible to ``fact-equals`` conditions to their
    declarations, in declaration order; values come from *resolver*, so a
    fact shared by several conditions is executed once.  A command fact is
    resolved with the facts declared before it as its environment.
    """

    def __init__(
        self,
        repo_root: Path,
        resolver: FactResolver,
        facts: Mapping[str, Fact],
    ) -> None:
        self.repo_root = repo_root
        self.resolver = resolver
        self.facts = facts

    def applies(self, condition: Condition) -> bool:
        """Return whether *condition* holds; raise :class:`EvalError` if it cannot be decided."""
        if isinstance(condition, FileExists):
            return (self.repo_root / condition.path).is_file()
        if isinstance(condition, DirectoryExists):
            directory = self.repo_root / condition.path
            if not directory.is_dir():
                return False
            return all((directory / entry).exists() for entry in condition.contains)
        if isinstance(condition, FactEquals):
            return self._fact_equals(condition)
        if isinstance(condition, CommandAvailable):
            try:
                name = split_command(condition.command)[0]
            except ValueError as exc:
                msg = f"invalid command '{condition.command}': {exc}"
                raise EvalError(msg) from exc
            return resolve_executable(name, self.repo_root) is not None
        if isinstance(condition, EnvSet):
            return condition.variable in os.environ
        if isinstance(condition, AllOf):
            return all(self.applies(c) for c in condition.conditions)
        if isinstance(condition, AnyOf):
            return any(self.applies(c) for c in condition.conditions)
        if isinstance(condition, Not):
            return not self.applies(condition.condition)
        msg = f"unsupported condition: {condition!r}"
        raise EvalError(msg)

    def applies_all(self, conditions: tuple[Condition, ...]) -> bool:
        return all(self.applies(c) for c in conditions)

    def _fact_equals(self, condition: FactEquals) -> bool:
        fact = self.facts.get(condition.key)
        if fact is None:
            msg = f"condition references undeclared fact '{condition.key}'"
            raise EvalError(msg)
        declared = list(self.facts)
        context = [self.facts[key] for key in declared[: declared.index(condition.key)]]
        try:
            value = self.resolver.resolve(fact, self.repo_root, context)
        except FactError as exc:
            msg = f"fact '{condition.key}' could not be resolved: {exc}"
            raise EvalError(msg) from exc
        matched = values_match(value, condition.expected)
        logger.debug(
            "fact-equals %s: %r vs expected %r -> %s", condition.key, value, condition.expected, matched
        )
        return matched
