"""TTL memoization of orchestration results keyed by a hash of (query, params)."""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from typing import Any, Callable

from cachetools import TTLCache
from loguru import logger

from attendry.config import settings


def cache_key(query: str, **params: Any) -> str:
    payload = json.dumps(
        {"query": " ".join(query.split()).lower(), "params": params},
        sort_keys=True,
        default=str,
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class QueryCache:
    """Bounded TTL cache; never serves an entry at or past its TTL."""

    def __init__(
        self,
        ttl_seconds: float | None = None,
        max_entries: int | None = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.query_cache_ttl_seconds
        self._cache: TTLCache[str, Any] = TTLCache(
            maxsize=max_entries or settings.query_cache_max_entries,
            ttl=self.ttl_seconds,
            timer=timer,
        )
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            value = self._cache.get(key)
            if value is None:
                self.misses += 1
            else:
                self.hits += 1
            return value

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._cache[key] = value

    async def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or everything when ``key`` is None."""
        async with self._lock:
            if key is None:
                self._cache.clear()
                logger.debug("Query cache cleared")
            else:
                self._cache.pop(key, None)

    def __len__(self) -> int:
        return len(self._cache)
