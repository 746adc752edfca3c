"""Run orchestrator: load rule documents, gate sections, resolve facts, run checks."""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from checklints.engine.cache import MemoryCacheStore, open_cache
from checklints.engine.checks import CheckEngine
from checklints.engine.conditions import ConditionEvaluator
from checklints.engine.facts import DEFAULT_COMMAND_TIMEOUT, FactResolver
from checklints.engine.templates import JinjaRenderer
from checklints.errors import CacheIOError, EvalError, RepositoryError, RequirementNotMet
from checklints.report.diagnostics import (
    ORDER_CHECK,
    ORDER_CONDITION,
    ORDER_FACT,
    Diagnostic,
    Outcome,
    Report,
    Status,
    build_report,
)
from checklints.rules.loader import load_path
from checklints.rules.model import CommandAvailable, EnvSet, describe_check, describe_condition

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from checklints.engine.cache import CacheStore
    from checklints.engine.facts import FactResult
    from checklints.engine.templates import TemplateRenderer
    from checklints.rules.model import Check, Condition, RuleSet

logger = logging.getLogger(__name__)

DEFAULT_JOBS = 8


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class RunResult:
    """Result of a checklints run."""

    report: Report = field(default_factory=Report)
    rule_sets_loaded: int = 0
    sections_applied: int = 0
    facts_resolved: int = 0
    cache_hits: int = 0
    sources_executed: int = 0
    elapsed_ms: float = 0.0


@dataclass
class _Section:
    index: int
    rule_set: RuleSet
    evaluator: ConditionEvaluator
    facts: dict[str, FactResult] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Outcome helpers
# ---------------------------------------------------------------------------


def _condition_error(
    order: tuple[int, int, int], condition: Condition, rule_set: RuleSet, exc: EvalError
) -> Outcome:
    subject = describe_condition(condition)
    diagnostic = Diagnostic(
        kind="condition",
        subject=subject,
        severity=Status.ERROR,
        message=f"condition could not be evaluated: {exc}",
        rule_set=rule_set.source,
        span=condition.span,
    )
    return Outcome(order, "condition", subject, Status.ERROR, rule_set.source, diagnostic)


def _fact_error(order: tuple[int, int, int], result: FactResult, rule_set: RuleSet) -> Outcome:
    assert result.error is not None
    fact = rule_set.fact(result.key)
    subject = f"fact {result.key}"
    diagnostic = Diagnostic(
        kind="fact",
        subject=subject,
        severity=Status.ERROR,
        message=f"fact '{result.key}' could not be resolved ({result.error.kind}): {result.error}",
        rule_set=rule_set.source,
        span=fact.span if fact is not None else None,
    )
    return Outcome(order, "fact", subject, Status.ERROR, rule_set.source, diagnostic)


def _requirement_failure(
    order: tuple[int, int, int],
    requirement: Condition,
    rule_set: RuleSet,
    *,
    kind: str,
    subject: str,
) -> Outcome:
    if isinstance(requirement, CommandAvailable):
        missing = f"command '{requirement.command}' is not available"
    elif isinstance(requirement, EnvSet):
        missing = f"environment variable '{requirement.variable}' is not set"
    else:
        missing = f"{describe_condition(requirement)} does not hold"
    diagnostic = Diagnostic(
        kind=kind,
        subject=subject,
        severity=Status.FAIL,
        message=f"requirement not met: {missing}",
        rule_set=rule_set.source,
        span=requirement.span,
    )
    return Outcome(order, kind, subject, Status.FAIL, rule_set.source, diagnostic)


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------


def _gate(section: _Section) -> tuple[bool, list[Outcome]]:
    """Evaluate a section's top-level conditions (AND, short-circuit), then its requires.

    A false condition skips the section quietly; every unmet requirement of
    an otherwise applicable section is reported as a failure.
    """
    rule_set = section.rule_set
    for idx, condition in enumerate(rule_set.conditions):
        try:
            holds = section.evaluator.applies(condition)
        except EvalError as exc:
            order = (section.index, ORDER_CONDITION, idx)
            return False, [_condition_error(order, condition, rule_set, exc)]
        if not holds:
            logger.debug(
                "Skipping %s: %s does not hold",
                rule_set.source,
                describe_condition(condition),
            )
            return False, []

    failures: list[Outcome] = []
    for idx, requirement in enumerate(rule_set.requires, start=len(rule_set.conditions)):
        order = (section.index, ORDER_CONDITION, idx)
        try:
            met = section.evaluator.applies(requirement)
        except EvalError as exc:
            failures.append(_condition_error(order, requirement, rule_set, exc))
            continue
        if not met:
            logger.debug(
                "%s: requirement not met: %s", rule_set.source, describe_condition(requirement)
            )
            failures.append(
                _requirement_failure(
                    order,
                    requirement,
                    rule_set,
                    kind="requirement",
                    subject=describe_condition(requirement),
                )
            )
    return not failures, failures


def _run_check(
    engine: CheckEngine, section: _Section, idx: int, check: Check
) -> Outcome | None:
    order = (section.index, ORDER_CHECK, idx)
    for condition in check.conditions:
        try:
            holds = section.evaluator.applies(condition)
        except EvalError as exc:
            return _condition_error(order, condition, section.rule_set, exc)
        if not holds:
            logger.debug("Skipping check %d of %s: condition false", idx, section.rule_set.source)
            return None
    for requirement in check.requirements:
        try:
            met = section.evaluator.applies(requirement)
        except EvalError as exc:
            return _condition_error(order, requirement, section.rule_set, exc)
        if not met:
            return _requirement_failure(
                order, requirement, section.rule_set, kind="check", subject=describe_check(check)
            )
    return engine.run(check, section.rule_set, section.facts, order=order)


def run_checks(
    repo_root: Path,
    rule_sets: Sequence[RuleSet],
    *,
    cache: CacheStore | None = None,
    renderer: TemplateRenderer | None = None,
    jobs: int = DEFAULT_JOBS,
    fail_fast: bool = False,
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    read_cache: bool = True,
    write_cache: bool = True,
) -> RunResult:
    """Evaluate *rule_sets* against *repo_root* and return the sorted report.

    Work runs in three phases on a bounded thread pool: gate every section,
    resolve the facts of applicable sections, then run their checks.  Each
    phase only submits leaf tasks, and the report order never depends on
    completion order.  With *fail_fast* checks run serially and stop after
    the first failure.
    """
    start = time.monotonic()
    resolver = FactResolver(
        cache,
        command_timeout=command_timeout,
        read_cache=read_cache,
        write_cache=write_cache,
    )
    engine = CheckEngine(repo_root, renderer or JinjaRenderer())
    sections = [
        _Section(idx, rule_set, ConditionEvaluator(repo_root, resolver, rule_set.fact_map))
        for idx, rule_set in enumerate(rule_sets)
    ]
    outcomes: list[Outcome] = []

    with ThreadPoolExecutor(max_workers=max(jobs, 1)) as pool:
        # Phase 1: gate sections.
        gated = list(pool.map(_gate, sections))
        applicable: list[_Section] = []
        for section, (applies, found) in zip(sections, gated, strict=True):
            outcomes.extend(found)
            if applies:
                applicable.append(section)

        # Phase 2: resolve facts.
        fact_futures = [
            (
                section,
                idx,
                pool.submit(resolver.result, fact, repo_root, section.rule_set.facts[:idx]),
            )
            for section in applicable
            for idx, fact in enumerate(section.rule_set.facts)
        ]
        facts_resolved = 0
        for section, idx, future in fact_futures:
            result = future.result()
            section.facts[result.key] = result
            if result.ok:
                facts_resolved += 1
            elif not isinstance(result.error, RequirementNotMet):
                outcomes.append(_fact_error((section.index, ORDER_FACT, idx), result, section.rule_set))

        # Phase 3: run checks.
        work = [
            (section, idx, check)
            for section in applicable
            for idx, check in enumerate(section.rule_set.checks)
        ]
        if fail_fast:
            for section, idx, check in work:
                outcome = _run_check(engine, section, idx, check)
                if outcome is None:
                    continue
                outcomes.append(outcome)
                if outcome.status is not Status.PASS:
                    logger.info("Stopping after first failure (fail-fast)")
                    break
        else:
            check_futures = [
                pool.submit(_run_check, engine, section, idx, check) for section, idx, check in work
            ]
            outcomes.extend(o for o in (f.result() for f in check_futures) if o is not None)

    elapsed = (time.monotonic() - start) * 1000
    return RunResult(
        report=build_report(outcomes),
        rule_sets_loaded=len(rule_sets),
        sections_applied=len(applicable),
        facts_resolved=facts_resolved,
        cache_hits=resolver.cache_hits,
        sources_executed=resolver.executions,
        elapsed_ms=elapsed,
    )


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def check_repository(
    repo_root: Path,
    rule_files: Iterable[Path],
    *,
    cache_path: Path | None = None,
    use_cache: bool = True,
    clear_cache: bool = False,
    template_dirs: Iterable[Path] = (),
    jobs: int = DEFAULT_JOBS,
    fail_fast: bool = False,
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    read_cache: bool = True,
    write_cache: bool = True,
) -> RunResult:
    """Load *rule_files* and check *repo_root* against them.

    Parameters
    ----------
    repo_root:
        Root of the repository under test.  It is never modified.
    rule_files:
        Rule documents, in precedence order.
    cache_path:
        Location of the persistent fact cache; the XDG default when *None*.
    use_cache:
        When *False*, facts are cached in memory for this run only.

    Raises
    ------
    ParseError
        When a rule document is malformed; no fact or check work is started.
    RepositoryError
        When *repo_root* is missing or unreadable.
    """
    start = time.monotonic()

    try:
        os.listdir(repo_root)
    except OSError as exc:
        msg = f"cannot read repository root {repo_root}: {exc}"
        raise RepositoryError(msg) from exc

    rule_sets = [load_path(Path(path)) for path in rule_files]

    store: CacheStore
    if use_cache and (read_cache or write_cache or clear_cache):
        try:
            store = open_cache(cache_path)
        except CacheIOError as exc:
            logger.warning("%s; continuing with an in-memory cache", exc)
            store = MemoryCacheStore()
    else:
        store = MemoryCacheStore()

    try:
        if clear_cache:
            try:
                store.clear()
            except CacheIOError as exc:
                logger.warning("Could not clear cache: %s", exc)

        result = run_checks(
            repo_root,
            rule_sets,
            cache=store,
            renderer=JinjaRenderer(template_dirs),
            jobs=jobs,
            fail_fast=fail_fast,
            command_timeout=command_timeout,
            read_cache=read_cache,
            write_cache=write_cache,
        )
    finally:
        store.close()

    result.elapsed_ms = (time.monotonic() - start) * 1000
    return result
