"""Rule domain: typed model, YAML loader, and rule document discovery."""

from checklints.rules.discovery import discover_rule_files, rule_files_in_dir
from checklints.rules.loader import dump, dumps, load, load_path
from checklints.rules.model import (
    AllOf,
    AnyOf,
    Check,
    CommandAvailable,
    Condition,
    DirectoryCheck,
    DirectoryExists,
    EnvSet,
    EnvVar,
    EvalCommand,
    Fact,
    FactEquals,
    FactSource,
    FileCheck,
    FileContent,
    FileExists,
    Literal,
    Not,
    RuleSet,
    SourceSpan,
    StructuredPathQuery,
    describe_check,
    describe_condition,
)

__all__ = [
    "AllOf",
    "AnyOf",
    "Check",
    "CommandAvailable",
    "Condition",
    "DirectoryCheck",
    "DirectoryExists",
    "EnvSet",
    "EnvVar",
    "EvalCommand",
    "Fact",
    "FactEquals",
    "FactSource",
    "FileCheck",
    "FileContent",
    "FileExists",
    "Literal",
    "Not",
    "RuleSet",
    "SourceSpan",
    "StructuredPathQuery",
    "describe_check",
    "describe_condition",
    "discover_rule_files",
    "dump",
    "dumps",
    "load",
    "load_path",
    "rule_files_in_dir",
]
