"""Evaluation engine: fact cache, fact resolver, conditions, checks, and the runner."""

from checklints.engine.cache import CacheEntry, MemoryCacheStore, SqliteCacheStore, open_cache
from checklints.engine.checks import CheckEngine
from checklints.engine.conditions import ConditionEvaluator
from checklints.engine.facts import FactResolver, FactResult
from checklints.engine.runner import RunResult, check_repository, run_checks
from checklints.engine.templates import JinjaRenderer, TemplateRenderer

__all__ = [
    "CacheEntry",
    "CheckEngine",
    "ConditionEvaluator",
    "FactResolver",
    "FactResult",
    "JinjaRenderer",
    "MemoryCacheStore",
    "RunResult",
    "SqliteCacheStore",
    "TemplateRenderer",
    "check_repository",
    "open_cache",
    "run_checks",
]
