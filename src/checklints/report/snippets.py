"""Compiler-style annotated excerpts for diagnostics with a source span.

Example::

    error: invalid type 'flie'
      --> checks.yml:4:11
       |
     4 |     type: flie
       |           ^^^^ unknown check type
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from checklints.rules.model import SourceSpan

# Spans longer than this are shown as head and tail with an elision marker.
MAX_SPAN_LINES = 6


def _caret_row(line: str, start_col: int, end_col: int) -> str:
    start = max(start_col, 1)
    end = max(end_col, start + 1)
    width = min(end, max(len(line) + 1, start + 1)) - start
    return " " * (start - 1) + "^" * max(width, 1)


def annotate(
    source_text: str,
    span: SourceSpan,
    *,
    label: str | None = None,
    title: str | None = None,
    severity: str = "error",
) -> list[str]:
    """Render *span* within *source_text* as plain-text excerpt lines.

    Columns are 1-based; ``span.end_column`` is exclusive.  Multi-line spans
    underline from the start column on the first line to the end column on
    the last, eliding the middle when longer than :data:`MAX_SPAN_LINES`.
    """
    lines = source_text.splitlines() or [""]
    start_line = min(max(span.start_line, 1), len(lines) + 1)
    end_line = min(max(span.end_line, start_line), len(lines) + 1)
    gutter = len(str(end_line))
    pad = " " * gutter

    out: list[str] = []
    if title:
        out.append(f"{severity}: {title}")
    out.append(f"{pad}--> {span.location}")
    out.append(f"{pad} |")

    numbers = list(range(start_line, end_line + 1))
    if len(numbers) > MAX_SPAN_LINES:
        head = numbers[: MAX_SPAN_LINES - 2]
        tail = numbers[-2:]
        numbers = [*head, 0, *tail]

    for number in numbers:
        if number == 0:
            out.append(f"{'.' * gutter} |")
            continue
        text = lines[number - 1] if number <= len(lines) else ""
        out.append(f"{number:>{gutter}} | {text}")
        first = 1
        last = len(text) + 1
        if number == start_line:
            first = span.start_column
        if number == end_line:
            last = span.end_column
        if number not in (start_line, end_line) and not text.strip():
            continue
        carets = _caret_row(text, first, last)
        if number == end_line and label:
            carets += f" {label}"
        out.append(f"{pad} | {carets}")
    return out
