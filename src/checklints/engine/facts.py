"""Fact resolution: fingerprint, consult the cache, execute the declared source.

Resolution is memoized per run: resolving the same fact twice returns the
same :class:`FactResult` without executing its source again, even when two
workers ask for it at the same time.

Command facts see the facts declared before them in the same document as
environment variables named by their keys, added to the inherited
environment.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import os
import subprocess
import threading
import tomllib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import yaml

from checklints.engine.cache import MemoryCacheStore
from checklints.engine.command import CommandNotFound, resolve_executable, run_command_line, split_command
from checklints.errors import (
    CacheIOError,
    CommandFailed,
    EvalError,
    FactError,
    FactIOError,
    FactTimeout,
    PathNotFound,
    RequirementNotMet,
)
from checklints.rules.model import (
    EnvVar,
    EvalCommand,
    FileContent,
    Literal,
    StructuredPathQuery,
    describe_condition,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from checklints.engine.cache import CacheEntry, CacheStore
    from checklints.rules.model import Fact

    _MemoKey = tuple[Fact, Path, frozenset[tuple[str, str]]]

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 30.0

_MISSING = "<missing>"


@dataclass(frozen=True)
class FactResult:
    """Outcome of resolving one fact: a value or the error that prevented it."""

    key: str
    value: Any = None
    error: FactError | None = None
    fingerprint: str | None = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Structured documents
# ---------------------------------------------------------------------------


def _normalize(value: Any) -> Any:
    """Coerce parsed values into JSON-compatible types so cached and fresh values agree."""
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def parse_structured(path: Path, text: str) -> Any:
    """Parse TOML, JSON, or YAML according to the file suffix."""
    if path.suffix == ".toml":
        return tomllib.loads(text)
    if path.suffix == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def query_path(data: Any, query: str) -> Any:
    """Follow a dotted *query* (``package.name``, ``authors.0``) through *data*.

    Raises ``KeyError`` with the failing segment when the path is absent.
    """
    current = data
    for segment in query.split("."):
        if not segment:
            raise KeyError(query)
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise KeyError(segment)
    return current


def _env_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    if value is None:
        return ""
    return str(value)


def fact_environment(results: Sequence[FactResult]) -> dict[str, str]:
    """Map the keys of resolved *results* to their values as environment text.

    Failed facts and keys or values the OS cannot carry are left out.
    """
    env: dict[str, str] = {}
    for result in results:
        if not result.ok or not result.key or "=" in result.key or "\0" in result.key:
            continue
        text = _env_text(result.value)
        if "\0" in text:
            continue
        env[result.key] = text
    return env


def _hash_file(path: Path) -> str:
    try:
        return hashlib.sha256(path.read_bytes()).hexdigest()
    except OSError:
        return _MISSING


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class FactResolver:
    """Resolve facts against a repository, backed by a :class:`CacheStore`.

    ``executions`` counts sources actually executed; ``cache_hits`` counts
    values served from the persistent cache.
    """

    def __init__(
        self,
        cache: CacheStore | None = None,
        *,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        read_cache: bool = True,
        write_cache: bool = True,
    ) -> None:
        self.cache = cache if cache is not None else MemoryCacheStore()
        self.command_timeout = command_timeout
        self.read_cache = read_cache
        self.write_cache = write_cache
        self.executions = 0
        self.cache_hits = 0
        self._memo: dict[_MemoKey, FactResult] = {}
        self._locks: dict[_MemoKey, threading.Lock] = {}
        self._guard = threading.Lock()

    def resolve(self, fact: Fact, repo_root: Path, context: Sequence[Fact] = ()) -> Any:
        """Return the fact's value, raising :class:`FactError` when it cannot be resolved."""
        result = self.result(fact, repo_root, context)
        if result.error is not None:
            raise result.error
        return result.value

    def result(self, fact: Fact, repo_root: Path, context: Sequence[Fact] = ()) -> FactResult:
        """Return the memoized :class:`FactResult`; never raises ``FactError``.

        *context* lists the facts declared before *fact*.  A command fact
        resolves them first and receives their values in its environment.
        """
        env: dict[str, str] = {}
        if isinstance(fact.source, EvalCommand) and context:
            env = fact_environment(
                [self.result(prior, repo_root, context[:idx]) for idx, prior in enumerate(context)]
            )
        memo_key = (fact, repo_root, frozenset(env.items()))
        with self._guard:
            existing = self._memo.get(memo_key)
            if existing is not None:
                return existing
            lock = self._locks.setdefault(memo_key, threading.Lock())

        with lock:
            with self._guard:
                existing = self._memo.get(memo_key)
            if existing is not None:
                return existing
            result = self._compute(fact, repo_root, env)
            with self._guard:
                self._memo[memo_key] = result
            return result

    # -- fingerprint ---------------------------------------------------------

    def fingerprint(
        self, fact: Fact, repo_root: Path, env: Mapping[str, str] | None = None
    ) -> str:
        """Hash the declared source plus the content of every input it reads.

        For a command, the values exported to it in *env* count as inputs.
        """
        hasher = hashlib.sha256()
        description = {"type": fact.source_type, **dataclasses.asdict(fact.source)}
        hasher.update(json.dumps(description, sort_keys=True).encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(str(repo_root.resolve()).encode("utf-8"))

        source = fact.source
        inputs: list[str] = []
        if isinstance(source, EvalCommand):
            inputs.extend(source.inputs)
            try:
                executable = resolve_executable(split_command(source.command)[0], repo_root)
            except ValueError:
                executable = None
            hasher.update(b"\0")
            hasher.update((executable or _MISSING).encode("utf-8"))
            if env:
                hasher.update(b"\0")
                hasher.update(json.dumps(sorted(env.items())).encode("utf-8"))
        elif isinstance(source, (StructuredPathQuery, FileContent)):
            inputs.append(source.path)

        for rel in inputs:
            hasher.update(b"\0")
            hasher.update(rel.encode("utf-8"))
            hasher.update(b"=")
            hasher.update(_hash_file(repo_root / rel).encode("utf-8"))
        return hasher.hexdigest()

    # -- computation ---------------------------------------------------------

    def _compute(self, fact: Fact, repo_root: Path, env: Mapping[str, str]) -> FactResult:
        try:
            self._check_requirements(fact, repo_root)
            if isinstance(fact.source, (Literal, EnvVar)):
                return FactResult(key=fact.key, value=self._execute(fact, repo_root, env))

            fingerprint = self.fingerprint(fact, repo_root, env)
            if self.read_cache:
                entry = self._cache_get(fact.key, fingerprint)
                if entry is not None:
                    logger.debug("Fact '%s' served from cache", fact.key)
                    with self._guard:
                        self.cache_hits += 1
                    return FactResult(
                        key=fact.key, value=entry.value, fingerprint=fingerprint, cached=True
                    )

            value = self._execute(fact, repo_root, env)
            if self.write_cache:
                self._cache_put(fact.key, fingerprint, value)
            return FactResult(key=fact.key, value=value, fingerprint=fingerprint)
        except FactError as exc:
            logger.debug("Fact '%s' failed: %s", fact.key, exc)
            return FactResult(key=fact.key, error=exc)

    def _check_requirements(self, fact: Fact, repo_root: Path) -> None:
        if not fact.requires:
            return
        from checklints.engine.conditions import ConditionEvaluator

        evaluator = ConditionEvaluator(repo_root, self, {})
        for requirement in fact.requires:
            try:
                holds = evaluator.applies(requirement)
            except EvalError as exc:
                raise RequirementNotMet(fact.key, str(exc)) from exc
            if not holds:
                msg = f"requirement not met: {describe_condition(requirement)}"
                raise RequirementNotMet(fact.key, msg)

    def _cache_get(self, key: str, fingerprint: str) -> CacheEntry | None:
        try:
            return self.cache.get(key, fingerprint)
        except CacheIOError as exc:
            logger.warning("Cache read failed for fact '%s': %s", key, exc)
            return None

    def _cache_put(self, key: str, fingerprint: str, value: Any) -> None:
        try:
            self.cache.put(key, fingerprint, value)
        except CacheIOError as exc:
            logger.warning("Cache write failed for fact '%s': %s", key, exc)

    def _execute(self, fact: Fact, repo_root: Path, env: Mapping[str, str]) -> Any:
        source = fact.source
        if isinstance(source, Literal):
            return source.value
        if isinstance(source, EnvVar):
            value = os.environ.get(source.variable)
            if value is None:
                msg = f"environment variable '{source.variable}' is not set"
                raise FactIOError(fact.key, msg)
            return value

        with self._guard:
            self.executions += 1
        if isinstance(source, EvalCommand):
            return self._run_command(fact.key, source, repo_root, env)
        if isinstance(source, StructuredPathQuery):
            return self._query(fact.key, source, repo_root)
        return self._read(fact.key, source, repo_root)

    def _run_command(
        self, key: str, source: EvalCommand, repo_root: Path, env: Mapping[str, str]
    ) -> str:
        command = source.command
        timeout = source.timeout or self.command_timeout
        try:
            output = run_command_line(
                command,
                cwd=repo_root,
                timeout=timeout,
                env={**os.environ, **env} if env else None,
            )
        except ValueError as exc:
            msg = f"invalid command line '{command}': {exc}"
            raise CommandFailed(key, msg) from exc
        except CommandNotFound as exc:
            msg = f"{exc} (command '{command}')"
            raise CommandFailed(key, msg) from exc
        except subprocess.TimeoutExpired as exc:
            msg = f"command '{command}' timed out after {timeout:g}s"
            raise FactTimeout(key, msg) from exc
        except OSError as exc:
            msg = f"command '{command}' could not be started: {exc}"
            raise CommandFailed(key, msg) from exc

        if output.code != 0:
            msg = f"command '{command}' exited with status {output.code}"
            if output.stderr:
                msg += f": {output.stderr}"
            raise CommandFailed(key, msg)
        if output.stdout is None:
            msg = f"command '{command}' produced no output"
            raise CommandFailed(key, msg)
        return output.stdout

    def _read_text(self, key: str, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"cannot read {path}: {exc}"
            raise FactIOError(key, msg) from exc

    def _query(self, key: str, source: StructuredPathQuery, repo_root: Path) -> Any:
        path = repo_root / source.path
        text = self._read_text(key, path)
        try:
            data = parse_structured(path, text)
        except (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
            msg = f"cannot parse {source.path}: {exc}"
            raise FactIOError(key, msg) from exc
        try:
            value = query_path(data, source.query)
        except KeyError as exc:
            msg = f"'{source.query}' not found in {source.path}"
            raise PathNotFound(key, msg) from exc
        return _normalize(value)

    def _read(self, key: str, source: FileContent, repo_root: Path) -> str:
        return self._read_text(key, repo_root / source.path)
