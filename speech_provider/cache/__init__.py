"""speech_provider.cache: best-effort HTTP response cache.

Public re-exports for convenient import.
"""

from speech_provider.cache.fetch import CacheOptions, CachedFetch
from speech_provider.cache.keys import build_key
from speech_provider.cache.store import (
    CacheEntry,
    CacheError,
    CacheStore,
    CacheStoreError,
    MemoryResponseStore,
    SQLiteCacheStore,
)

__all__ = [
    "CacheOptions",
    "CachedFetch",
    "build_key",
    "CacheEntry",
    "CacheError",
    "CacheStore",
    "CacheStoreError",
    "MemoryResponseStore",
    "SQLiteCacheStore",
]
