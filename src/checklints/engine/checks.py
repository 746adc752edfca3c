"""Check execution: file and directory assertions against the repository."""

from __future__ import annotations

import difflib
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from checklints.errors import RenderError
from checklints.report.diagnostics import ORDER_CHECK, Diagnostic, Outcome, Status
from checklints.rules.model import FileCheck, SourceSpan, describe_check

if TYPE_CHECKING:
    from collections.abc import Mapping

    from checklints.engine.facts import FactResult
    from checklints.engine.templates import TemplateRenderer
    from checklints.rules.model import Check, DirectoryCheck, RuleSet

logger = logging.getLogger(__name__)


def _lines(text: str) -> list[str]:
    return text.splitlines(keepends=True)


def _diff_lines(lines: list[str]) -> list[str]:
    return [line if line.endswith("\n") else line + "\n" for line in lines]


def unified_diff(expected: str, actual: str) -> str:
    """Return a unified diff from *expected* to *actual*."""
    return "".join(
        difflib.unified_diff(
            _diff_lines(_lines(expected)),
            _diff_lines(_lines(actual)),
            fromfile="expected",
            tofile="actual",
        )
    )


def first_mismatch(expected: str, actual: str, file: str) -> tuple[SourceSpan, str | None, str | None]:
    """Locate the first difference between *expected* and *actual*.

    Returns the span of the differing position inside *actual*, the expected
    line at that position (``None`` past its end), and the actual line
    (``None`` past its end).
    """
    expected_lines = _lines(expected)
    actual_lines = _lines(actual)
    index = 0
    while (
        index < len(expected_lines)
        and index < len(actual_lines)
        and expected_lines[index] == actual_lines[index]
    ):
        index += 1

    exp_line = expected_lines[index] if index < len(expected_lines) else None
    act_line = actual_lines[index] if index < len(actual_lines) else None

    if act_line is None:
        # Actual text ended early: point just past its last character.
        line_no = max(len(actual_lines), 1)
        last = actual_lines[-1].rstrip("\n") if actual_lines else ""
        column = len(last) + 1
        offset = len(actual.encode("utf-8"))
        span = SourceSpan(file, line_no, column, line_no, column, offset, offset)
        return span, exp_line, None

    column = 0
    reference = exp_line or ""
    while column < len(act_line) and column < len(reference) and act_line[column] == reference[column]:
        column += 1
    line_start = len("".join(actual_lines[:index]).encode("utf-8"))
    body = act_line.rstrip("\r\n")
    end_column = max(len(body), column) + 1
    span = SourceSpan(
        file,
        index + 1,
        column + 1,
        index + 1,
        end_column,
        line_start + len(act_line[:column].encode("utf-8")),
        line_start + len(body.encode("utf-8")),
    )
    return span, exp_line, act_line


class CheckEngine:
    """Run checks against ``repo_root`` using already-resolved facts."""

    def __init__(self, repo_root: Path, renderer: TemplateRenderer) -> None:
        self.repo_root = repo_root
        self.renderer = renderer

    def run(
        self,
        check: Check,
        rule_set: RuleSet,
        facts: Mapping[str, FactResult],
        *,
        order: tuple[int, int, int] = (0, ORDER_CHECK, 0),
    ) -> Outcome:
        """Execute *check* and return its :class:`Outcome`. Never raises."""
        subject = describe_check(check)
        if isinstance(check, FileCheck):
            failure = self._run_file(check, rule_set, facts)
        else:
            failure = self._run_directory(check)

        if failure is None:
            logger.debug("Check passed: %s", subject)
            return Outcome(order, "check", subject, Status.PASS, rule_set.source)

        diagnostic = Diagnostic(
            kind="check",
            subject=subject,
            severity=Status.FAIL,
            message=failure.message,
            rule_set=rule_set.source,
            span=failure.span or check.span,
            label=failure.label,
            detail=failure.detail,
            source_text=failure.source_text,
        )
        logger.debug("Check failed: %s: %s", subject, failure.message)
        return Outcome(order, "check", subject, Status.FAIL, rule_set.source, diagnostic)

    # -- file checks ---------------------------------------------------------

    def _run_file(
        self,
        check: FileCheck,
        rule_set: RuleSet,
        facts: Mapping[str, FactResult],
    ) -> _Failure | None:
        base_dir = Path(rule_set.source).parent

        if check.template is not None:
            referenced = self.renderer.referenced_names(check.template, base_dir)
            for name in sorted(referenced):
                result = facts.get(name)
                if result is not None and result.error is not None:
                    return _Failure(
                        f"{check.path}: template '{check.template}' depends on fact "
                        f"'{name}', which could not be resolved: {result.error}"
                    )

        path = self.repo_root / check.path
        if not path.is_file():
            if path.exists():
                return _Failure(f"{check.path} is not a regular file")
            return _Failure(f"{check.path} does not exist")

        if check.contents is None and not check.contains and check.template is None:
            return None

        try:
            actual = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return _Failure(f"{check.path} could not be read: {exc}")

        if check.contents is not None and actual != check.contents:
            return self._mismatch(check.path, check.contents, actual, "the expected contents")

        missing = [fragment for fragment in check.contains if fragment not in actual]
        if missing:
            listed = ", ".join(repr(fragment) for fragment in missing)
            return _Failure(f"{check.path} is missing expected text: {listed}")

        if check.template is not None:
            context = {key: result.value for key, result in facts.items() if result.error is None}
            try:
                expected = self.renderer.render(check.template, context, base_dir)
            except RenderError as exc:
                return _Failure(f"{check.path}: {exc}")
            if actual != expected:
                return self._mismatch(check.path, expected, actual, f"template '{check.template}'")

        return None

    def _mismatch(self, file: str, expected: str, actual: str, what: str) -> _Failure:
        span, exp_line, act_line = first_mismatch(expected, actual, file)
        if exp_line is None:
            expected_text = "end of file"
            label = "expected end of file"
        else:
            # Line endings stay in the message so newline-only differences show.
            expected_text = repr(exp_line)
            body = exp_line.rstrip("\r\n")
            label = f"expected: {body}"
        found = "end of file" if act_line is None else repr(act_line)
        message = (
            f"{file} does not match {what}: line {span.start_line} "
            f"expected {expected_text}, found {found}"
        )
        return _Failure(
            message,
            span=span,
            label=label,
            detail=unified_diff(expected, actual),
            source_text=actual,
        )

    # -- directory checks ----------------------------------------------------

    def _run_directory(self, check: DirectoryCheck) -> _Failure | None:
        directory = self.repo_root / check.path
        if not directory.is_dir():
            if directory.exists():
                return _Failure(f"{check.path} is not a directory")
            return _Failure(f"directory {check.path} does not exist")

        try:
            children = {entry.name for entry in directory.iterdir()}
        except OSError as exc:
            return _Failure(f"directory {check.path} could not be listed: {exc}")

        wanted = {entry.rstrip("/") for entry in check.contains}
        problems: list[str] = []
        if check.contents is not None:
            expected = {entry.rstrip("/") for entry in check.contents}
            missing = sorted((expected | wanted) - children)
            unexpected = sorted(children - expected - wanted)
            if missing:
                problems.append(f"missing {missing}")
            if unexpected:
                problems.append(f"unexpected {unexpected}")
        else:
            missing = sorted(wanted - children)
            if missing:
                problems.append(f"missing {missing}")

        if problems:
            return _Failure(f"directory {check.path}: " + "; ".join(problems))
        return None


class _Failure:
    __slots__ = ("detail", "label", "message", "source_text", "span")

    def __init__(
        self,
        message: str,
        *,
        span: SourceSpan | None = None,
        label: str | None = None,
        detail: str | None = None,
        source_text: str | None = None,
    ) -> None:
        self.message = message
        self.span = span
        self.label = label
        self.detail = detail
        self.source_text = source_text
