"""Fact cache: content-addressed ``(fact_key, fingerprint) -> value`` stores.

:class:`SqliteCacheStore` persists entries across runs in a single SQLite
file; :class:`MemoryCacheStore` implements the same contract in memory and is
used for tests and for runs where the persistent store cannot be opened.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from checklints.errors import CacheIOError

logger = logging.getLogger(__name__)

# Bump on breaking schema changes; a mismatch rebuilds the fact table.
SCHEMA_VERSION = "1"

CACHE_FILE_NAME = "cache.db"

_FACT_CACHE_SQL = """\
CREATE TABLE IF NOT EXISTS fact_cache (
    fact_key    TEXT NOT NULL,
    fingerprint TEXT NOT NULL,
    value       TEXT NOT NULL,
    computed_at REAL NOT NULL,
    PRIMARY KEY (fact_key, fingerprint)
);
"""

_META_SQL = """\
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


@dataclass(frozen=True)
class CacheEntry:
    """A cached fact value with the fingerprint it was computed for."""

    fact_key: str
    fingerprint: str
    value: Any
    computed_at: float


class CacheStore(Protocol):
    """The get/put contract the fact resolver relies on."""

    def get(self, key: str, fingerprint: str) -> CacheEntry | None: ...

    def put(self, key: str, fingerprint: str, value: Any) -> None: ...

    def clear(self) -> None: ...

    def stats(self) -> dict[str, int]: ...

    def close(self) -> None: ...


def default_cache_path() -> Path:
    """Return ``$XDG_CACHE_HOME/checklints/cache.db`` (``~/.cache`` when unset)."""
    base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base) / "checklints" / CACHE_FILE_NAME


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class MemoryCacheStore:
    """Dictionary-backed store with the same contract as the SQLite one."""

    def __init__(self) -> None:
        self._store: dict[tuple[str, str], CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str, fingerprint: str) -> CacheEntry | None:
        with self._lock:
            return self._store.get((key, fingerprint))

    def put(self, key: str, fingerprint: str, value: Any) -> None:
        entry = CacheEntry(fact_key=key, fingerprint=fingerprint, value=value, computed_at=time.time())
        with self._lock:
            self._store[(key, fingerprint)] = entry

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"entries": len(self._store)}

    def close(self) -> None:
        """Nothing to release."""


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------


def _connect(db_path: Path) -> sqlite3.Connection:
    """Open a connection with WAL journaling and a busy timeout for concurrent writers."""
    conn = sqlite3.connect(str(db_path), timeout=30.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def _get_meta(conn: sqlite3.Connection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
    if row is None:
        return None
    return str(row[0])


def _set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        "INSERT INTO meta (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, value),
    )


class SqliteCacheStore:
    """Persistent store backed by one SQLite file.

    Every worker thread gets its own connection.  Each :meth:`put` runs in
    its own transaction, so an entry is either fully written or absent.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._registry_lock = threading.Lock()
        self._closed = False

    @classmethod
    def open(cls, db_path: Path) -> SqliteCacheStore:
        """Open (or create) the store at *db_path*.

        A store written with another schema version gets its fact table
        dropped and recreated in the current shape.
        Raises :class:`CacheIOError` when the file cannot be opened as a
        database.
        """
        store = cls(db_path)
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = store._conn()
            conn.executescript(_META_SQL)
            version = _get_meta(conn, "schema_version")
            if version == SCHEMA_VERSION:
                conn.executescript(_FACT_CACHE_SQL)
            else:
                if version is not None:
                    logger.info(
                        "Cache schema version %s != %s, rebuilding the fact table",
                        version,
                        SCHEMA_VERSION,
                    )
                conn.executescript(f"DROP TABLE IF EXISTS fact_cache;\n{_FACT_CACHE_SQL}")
                with conn:
                    _set_meta(conn, "schema_version", SCHEMA_VERSION)
        except (OSError, sqlite3.Error) as exc:
            store.close()
            msg = f"cannot open cache {db_path}: {exc}"
            raise CacheIOError(msg) from exc
        logger.debug("Opened fact cache %s", db_path)
        return store

    def _conn(self) -> sqlite3.Connection:
        if self._closed:
            msg = f"cache {self.db_path} is closed"
            raise CacheIOError(msg)
        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is None:
            conn = _connect(self.db_path)
            self._local.conn = conn
            with self._registry_lock:
                self._connections.append(conn)
        return conn

    def get(self, key: str, fingerprint: str) -> CacheEntry | None:
        try:
            row = (
                self._conn()
                .execute(
                    "SELECT value, computed_at FROM fact_cache "
                    "WHERE fact_key = ? AND fingerprint = ?",
                    (key, fingerprint),
                )
                .fetchone()
            )
        except sqlite3.Error as exc:
            msg = f"cannot read cache {self.db_path}: {exc}"
            raise CacheIOError(msg) from exc
        if row is None:
            return None
        try:
            value = json.loads(row["value"])
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry for fact '%s'", key)
            return None
        return CacheEntry(
            fact_key=key,
            fingerprint=fingerprint,
            value=value,
            computed_at=float(row["computed_at"]),
        )

    def put(self, key: str, fingerprint: str, value: Any) -> None:
        payload = json.dumps(value, sort_keys=True)
        try:
            conn = self._conn()
            with conn:
                conn.execute(
                    "INSERT INTO fact_cache (fact_key, fingerprint, value, computed_at) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT(fact_key, fingerprint) DO UPDATE SET "
                    "value = excluded.value, computed_at = excluded.computed_at",
                    (key, fingerprint, payload, time.time()),
                )
        except sqlite3.Error as exc:
            msg = f"cannot write cache {self.db_path}: {exc}"
            raise CacheIOError(msg) from exc

    def clear(self) -> None:
        try:
            conn = self._conn()
            with conn:
                conn.execute("DELETE FROM fact_cache")
        except sqlite3.Error as exc:
            msg = f"cannot clear cache {self.db_path}: {exc}"
            raise CacheIOError(msg) from exc

    def stats(self) -> dict[str, int]:
        row = self._conn().execute("SELECT COUNT(*) FROM fact_cache").fetchone()
        return {"entries": int(row[0]) if row is not None else 0}

    def close(self) -> None:
        with self._registry_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._closed = True


def open_cache(db_path: Path | None = None) -> SqliteCacheStore:
    """Open the persistent fact cache at *db_path* (default: :func:`default_cache_path`)."""
    return SqliteCacheStore.open(db_path or default_cache_path())
