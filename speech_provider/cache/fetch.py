"""HTTP fetch with a best-effort response cache.

Responses are cached by request shape (URL, method, headers, body).  The
cache is an optimisation only: any failure while reading or writing it is
logged and the request goes to the network instead.  Network errors are
never swallowed here.

Usage::

    async with CachedFetch(SQLiteCacheStore(path)) as fetcher:
        resp = await fetcher.fetch("https://api.example.com/data")
        resp = await fetcher.fetch(url, cache_options=CacheOptions(max_age=86400))
        resp = await fetcher.fetch(url, cache_options=CacheOptions(max_age=None))  # no cache
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping

import httpx

from speech_provider.cache.keys import build_key
from speech_provider.cache.store import CacheEntry, CacheStore
from speech_provider.config import DEFAULT_MAX_AGE

logger = logging.getLogger(__name__)

# The stored payload is already decoded, so these no longer describe it.
_UNCACHED_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})


@dataclass(frozen=True)
class CacheOptions:
    """Per-request cache behaviour.

    ``max_age`` is in seconds; ``None`` or ``0`` disables caching for the call.
    """

    max_age: int | float | None = DEFAULT_MAX_AGE
    skip_cache: bool = False

    @property
    def enabled(self) -> bool:
        return not self.skip_cache and bool(self.max_age)


class CachedFetch:
    """Performs HTTP requests through an injected :class:`CacheStore`.

    A single :class:`httpx.AsyncClient` is reused across calls.  Call
    :meth:`aclose` (or use as an async context manager) when done.
    """

    def __init__(
        self,
        store: CacheStore,
        client: httpx.AsyncClient | None = None,
        *,
        default_max_age: int | float | None = DEFAULT_MAX_AGE,
        clock: Callable[[], float] = time.time,
        hashed_keys: bool = False,
    ) -> None:
        self.store = store
        self.default_max_age = default_max_age
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = client is None
        self._clock = clock
        self._hashed_keys = hashed_keys

    async def aclose(self) -> None:
        """Close the HTTP client (if owned) and the store."""
        if self._owns_client:
            await self._client.aclose()
        await self.store.close()

    async def __aenter__(self) -> "CachedFetch":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        additional_headers: Mapping[str, str] | None = None,
        body: bytes | str | None = None,
        cache_options: CacheOptions | None = None,
    ) -> httpx.Response:
        """Return the response for a request, from the cache when fresh."""
        options = cache_options or CacheOptions(max_age=self.default_max_age)
        merged = dict(headers or {})
        if additional_headers:
            merged.update(additional_headers)

        if not options.enabled:
            return await self._send(url, method, merged, body)

        try:
            key = build_key(url, method, merged, body, hashed=self._hashed_keys)
            entry = await self.store.get(key)
            if entry is not None:
                age = entry.age(self._now_ms())
                if age < options.max_age:
                    logger.debug("Cache hit (age %.1fs) for %s %s", age, method, url)
                    return self._from_entry(entry, url, method)
                logger.debug("Stale cache entry (age %.1fs) for %s %s", age, method, url)
        except Exception as e:
            logger.warning("Cache error, falling back to network fetch: %s", e)
            return await self._send(url, method, merged, body)

        response = await self._send(url, method, merged, body)
        if not response.is_success:
            return response

        try:
            stored = await self.store.put(
                key,
                CacheEntry.create(
                    key,
                    response.content,
                    _capture_headers(response.headers),
                    timestamp=self._now_ms(),
                ),
            )
            if not stored:
                logger.warning("Cache store declined entry for %s %s", method, url)
        except Exception as e:
            logger.warning("Cache write failed, returning uncached response: %s", e)
        return response

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _send(
        self,
        url: str,
        method: str,
        headers: dict[str, str],
        body: bytes | str | None,
    ) -> httpx.Response:
        return await self._client.request(method, url, headers=headers, content=body)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def _from_entry(entry: CacheEntry, url: str, method: str) -> httpx.Response:
        return httpx.Response(
            200,
            headers=[(k.encode("utf-8"), v.encode("utf-8")) for k, v in entry.headers.items()],
            content=entry.payload,
            request=httpx.Request(method, url),
        )


def _capture_headers(headers: httpx.Headers) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k not in _UNCACHED_HEADERS}
