"""Report formatters: Rich console, JSON, and one-line porcelain output."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from rich.markup import escape

from checklints.report.diagnostics import Status
from checklints.report.snippets import annotate

if TYPE_CHECKING:
    from rich.console import Console

    from checklints.engine.runner import RunResult
    from checklints.errors import ParseError
    from checklints.report.diagnostics import Diagnostic
    from checklints.rules.model import SourceSpan

_MARKERS: dict[Status, str] = {
    Status.PASS: "[green]✓[/green]",
    Status.FAIL: "[red]✗[/red]",
    Status.ERROR: "[bold red]![/bold red]",
}


def _span_dict(span: SourceSpan | None) -> dict[str, Any] | None:
    if span is None:
        return None
    return {
        "file": span.file,
        "start_line": span.start_line,
        "start_column": span.start_column,
        "end_line": span.end_line,
        "end_column": span.end_column,
        "start_byte": span.start_byte,
        "end_byte": span.end_byte,
    }


# ---------------------------------------------------------------------------
# Rich
# ---------------------------------------------------------------------------


def _print_diff(detail: str, console: Console) -> None:
    for line in detail.splitlines():
        text = escape(line)
        if line.startswith(("+++", "---")):
            console.print(f"    [bold]{text}[/bold]")
        elif line.startswith("@@"):
            console.print(f"    [cyan]{text}[/cyan]")
        elif line.startswith("+"):
            console.print(f"    [green]{text}[/green]")
        elif line.startswith("-"):
            console.print(f"    [red]{text}[/red]")
        else:
            console.print(f"    {text}")


def _print_diagnostic(diagnostic: Diagnostic, console: Console) -> None:
    console.print(f"  {escape(diagnostic.message)}")
    if diagnostic.span is None:
        return
    if diagnostic.source_text is None:
        console.print(f"  [dim]--> {escape(diagnostic.span.location)}[/dim]")
    else:
        for line in annotate(diagnostic.source_text, diagnostic.span, label=diagnostic.label):
            console.print(f"  [blue]{escape(line)}[/blue]")
    if diagnostic.detail:
        _print_diff(diagnostic.detail, console)


def render_report(result: RunResult, console: Console) -> None:
    """Render a run result on a Rich console.

    Passing checks get one line each; failures and errors are followed by
    their message, annotated excerpt, and diff.
    """
    report = result.report
    console.print(
        f"Rule sets: {result.rule_sets_loaded} loaded, {result.sections_applied} applied"
    )
    console.print(f"Facts: {result.facts_resolved} resolved ({result.cache_hits} from cache)")
    console.print()

    for outcome in report.outcomes:
        console.print(f"{_MARKERS[outcome.status]} {escape(outcome.subject)}")
        if outcome.diagnostic is not None:
            _print_diagnostic(outcome.diagnostic, console)
            console.print()

    elapsed = f"{result.elapsed_ms / 1000:.1f}s"
    summary = f"{report.passed} passed, {report.failed} failed, {report.errors} errors ({elapsed})"
    if report.status is Status.PASS:
        console.print(f"[green]✓ {summary}[/green]")
    else:
        console.print(f"[red]✗ {summary}[/red]")


def render_parse_error(exc: ParseError, console: Console) -> None:
    """Print a rule document error with an annotated excerpt when possible."""
    console.print(f"[bold red]error:[/bold red] {escape(exc.message)}")
    if exc.span is None:
        return
    if exc.source_text is None:
        console.print(f"  --> {escape(exc.span.location)}")
        return
    for line in annotate(exc.source_text, exc.span, label=exc.label):
        console.print(f"[blue]{escape(line)}[/blue]")


# ---------------------------------------------------------------------------
# Machine-readable
# ---------------------------------------------------------------------------


def format_json(result: RunResult) -> str:
    """Format a RunResult as structured JSON with ``outcomes`` and ``summary``."""
    report = result.report
    outcomes: list[dict[str, Any]] = []
    for outcome in report.outcomes:
        entry: dict[str, Any] = {
            "kind": outcome.kind,
            "subject": outcome.subject,
            "status": outcome.status.value,
            "rule_set": outcome.rule_set,
        }
        diagnostic = outcome.diagnostic
        if diagnostic is not None:
            entry["diagnostic"] = {
                "severity": diagnostic.severity.value,
                "message": diagnostic.message,
                "span": _span_dict(diagnostic.span),
                "label": diagnostic.label,
                "detail": diagnostic.detail,
            }
        outcomes.append(entry)

    output: dict[str, Any] = {
        "status": report.status.value,
        "outcomes": outcomes,
        "summary": {
            "passed": report.passed,
            "failed": report.failed,
            "errors": report.errors,
            "rule_sets_loaded": result.rule_sets_loaded,
            "sections_applied": result.sections_applied,
            "facts_resolved": result.facts_resolved,
            "cache_hits": result.cache_hits,
            "elapsed_ms": result.elapsed_ms,
        },
    }
    return json.dumps(output, indent=2)


def format_porcelain(result: RunResult) -> str:
    """Format non-passing outcomes one per line.

    Format: ``status:kind:rule_set:file:line:message``.  Missing locations
    are empty strings.  Returns an empty string when everything passed.
    """
    lines: list[str] = []
    for outcome in result.report.outcomes:
        if outcome.status is Status.PASS or outcome.diagnostic is None:
            continue
        span = outcome.diagnostic.span
        file = span.file if span is not None else ""
        line = str(span.start_line) if span is not None else ""
        message = outcome.diagnostic.message.replace("\n", " ")
        lines.append(f"{outcome.status.value}:{outcome.kind}:{outcome.rule_set}:{file}:{line}:{message}")
    return "\n".join(lines)
