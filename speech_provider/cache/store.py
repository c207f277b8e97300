"""Persistent stores for cached HTTP responses.

Two interchangeable backends implement :class:`CacheStore`:

* :class:`SQLiteCacheStore`: timestamped records in a SQLite file.
* :class:`MemoryResponseStore`: ``httpx.Response`` objects kept in process.

Usage::

    store = SQLiteCacheStore("./data/speech-provider-cache.db")
    await store.put(key, CacheEntry.create(key, payload, headers))
    entry = await store.get(key)   # None when absent
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Base error for response cache failures."""


class CacheStoreError(CacheError):
    """Raised when a store cannot be opened, read or written."""


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CacheEntry:
    """A captured response body with the headers seen at write time."""

    key: str
    timestamp: int  # milliseconds since the epoch
    payload: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        key: str,
        payload: bytes,
        headers: dict[str, str] | None = None,
        timestamp: int | None = None,
    ) -> CacheEntry:
        return cls(
            key=key,
            timestamp=now_ms() if timestamp is None else timestamp,
            payload=bytes(payload),
            headers=dict(headers or {}),
        )

    def age(self, now: int | None = None) -> float:
        """Seconds elapsed since the entry was written."""
        return ((now_ms() if now is None else now) - self.timestamp) / 1000

    def is_fresh(self, max_age: float, now: int | None = None) -> bool:
        return self.age(now) < max_age


class CacheStore:
    """Abstract key → :class:`CacheEntry` store.

    ``get`` returns ``None`` for a missing key.  Backends raise
    :class:`CacheStoreError` when the store itself is unusable.
    """

    async def get(self, key: str) -> CacheEntry | None:
        raise NotImplementedError

    async def put(self, key: str, entry: CacheEntry) -> bool:
        """Store *entry* under *key*, replacing any previous entry."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS responses (
    key        TEXT PRIMARY KEY,
    timestamp  INTEGER NOT NULL,
    payload    BLOB NOT NULL,
    headers    TEXT NOT NULL DEFAULT '{}'
);
"""


class SQLiteCacheStore(CacheStore):
    """Structured-record store backed by a SQLite file.

    The database is opened lazily on first use.  Each worker thread gets its
    own connection (WAL mode), and blocking calls run in the default executor
    so concurrent fetches for different keys never serialize on the loop.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._local = threading.local()
        self._init_lock = threading.Lock()
        self._initialized = False
        self._connections: list[sqlite3.Connection] = []

    # ------------------------------------------------------------------
    # CacheStore interface
    # ------------------------------------------------------------------

    async def get(self, key: str) -> CacheEntry | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._get_sync, key)

    async def put(self, key: str, entry: CacheEntry) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._put_sync, key, entry)

    async def close(self) -> None:
        with self._init_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
            self._local = threading.local()

    # ------------------------------------------------------------------
    # Blocking helpers (executor threads)
    # ------------------------------------------------------------------

    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        try:
            with self._init_lock:
                if not self._initialized:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(self.path), check_same_thread=False, timeout=10.0)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                if not self._initialized:
                    conn.executescript(_SCHEMA_SQL)
                    conn.commit()
                    self._initialized = True
                    logger.debug("Opened response cache at %s", self.path)
                self._connections.append(conn)
        except (sqlite3.Error, OSError) as exc:
            raise CacheStoreError(f"Cannot open cache database {self.path}: {exc}") from exc
        self._local.conn = conn
        return conn

    def _get_sync(self, key: str) -> CacheEntry | None:
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT key, timestamp, payload, headers FROM responses WHERE key = ?",
                (key,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise CacheStoreError(f"Cache read failed: {exc}") from exc
        if row is None:
            return None
        try:
            headers = json.loads(row["headers"])
        except ValueError as exc:
            raise CacheStoreError(f"Corrupt headers for cached entry: {exc}") from exc
        return CacheEntry(
            key=row["key"],
            timestamp=int(row["timestamp"]),
            payload=bytes(row["payload"]),
            headers=headers,
        )

    def _put_sync(self, key: str, entry: CacheEntry) -> bool:
        conn = self._conn()
        try:
            conn.execute(
                """INSERT OR REPLACE INTO responses (key, timestamp, payload, headers)
                   VALUES (?, ?, ?, ?)""",
                (key, entry.timestamp, sqlite3.Binary(entry.payload), json.dumps(entry.headers)),
            )
            conn.commit()
        except (sqlite3.Error, TypeError) as exc:
            raise CacheStoreError(f"Cache write failed: {exc}") from exc
        return True


# ---------------------------------------------------------------------------
# Response-object backend
# ---------------------------------------------------------------------------

_TIMESTAMP_HEADER = "x-speech-cache-timestamp"


class MemoryResponseStore(CacheStore):
    """Response-cache store holding ``httpx.Response`` objects in process.

    The write time travels with the stored response in a private header,
    mirroring how a native response cache keeps only response objects.
    The captured header map is kept beside the response exactly as written,
    since ``httpx.Headers`` lowercases names and adds ``content-length``.
    """

    def __init__(self) -> None:
        self._responses: dict[str, tuple[httpx.Response, dict[str, str]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> CacheEntry | None:
        async with self._lock:
            stored = self._responses.get(key)
        if stored is None:
            return None
        response, headers = stored
        try:
            timestamp = int(response.headers[_TIMESTAMP_HEADER])
        except (KeyError, ValueError) as exc:
            raise CacheStoreError(f"Stored response has no valid timestamp: {exc}") from exc
        return CacheEntry(key=key, timestamp=timestamp, payload=response.content, headers=dict(headers))

    async def put(self, key: str, entry: CacheEntry) -> bool:
        try:
            response = httpx.Response(
                200,
                headers={_TIMESTAMP_HEADER: str(entry.timestamp)},
                content=entry.payload,
            )
            headers = {str(k): str(v) for k, v in entry.headers.items()}
        except (TypeError, ValueError) as exc:
            raise CacheStoreError(f"Cannot store response for {key}: {exc}") from exc
        async with self._lock:
            self._responses[key] = (response, headers)
        return True

    def __len__(self) -> int:
        return len(self._responses)
