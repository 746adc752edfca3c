"""Reporting: outcomes and diagnostics, annotated excerpts, and output formats."""

from checklints.report.diagnostics import Diagnostic, Outcome, Report, Status, build_report
from checklints.report.formatters import (
    format_json,
    format_porcelain,
    render_parse_error,
    render_report,
)
from checklints.report.snippets import annotate

__all__ = [
    "Diagnostic",
    "Outcome",
    "Report",
    "Status",
    "annotate",
    "build_report",
    "format_json",
    "format_porcelain",
    "render_parse_error",
    "render_report",
]
