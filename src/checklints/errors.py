"""Exception taxonomy shared by the loader, the engine and the CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from checklints.rules.model import SourceSpan


class ChecklintsError(Exception):
    """Base class for every error raised by checklints."""


class ParseError(ChecklintsError):
    """Raised when a rule document does not conform to the rule schema.

    Carries the exact location of the offending input and the document text
    so the renderer can produce an annotated excerpt.
    """

    def __init__(
        self,
        message: str,
        span: SourceSpan | None = None,
        *,
        source_text: str | None = None,
        label: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.span = span
        self.source_text = source_text
        self.label = label

    def __str__(self) -> str:
        if self.span is None:
            return self.message
        return f"{self.span.file}:{self.span.start_line}:{self.span.start_column}: {self.message}"


class FactError(ChecklintsError):
    """A fact could not be resolved."""

    kind = "error"

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key
        self.message = message

    def __str__(self) -> str:
        return self.message


class CommandFailed(FactError):
    """Executable missing, non-zero exit, or empty output."""

    kind = "command-failed"


class PathNotFound(FactError):
    """A structured-path query did not match anything."""

    kind = "path-not-found"


class FactIOError(FactError):
    """The file a fact reads is missing, unreadable, or unparseable."""

    kind = "io"


class FactTimeout(FactError):
    """A command fact exceeded its timeout."""

    kind = "timeout"


class RequirementNotMet(FactError):
    """One of the fact's ``requires`` conditions does not hold."""

    kind = "requirement-not-met"


class EvalError(ChecklintsError):
    """A condition could not be evaluated."""


class RenderError(ChecklintsError):
    """A template could not be found, parsed, or rendered."""


class CacheIOError(ChecklintsError):
    """The persistent cache could not be opened or written."""


class RepositoryError(ChecklintsError):
    """The target repository root is missing or unreadable."""


class ConfigError(ChecklintsError):
    """Invalid configuration value in a settings layer."""
