from __future__ import annotations

import asyncio

import pytest

from attendry.services.query_cache import QueryCache, cache_key


class Timer:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_cache_key_is_stable_and_param_sensitive():
    a = cache_key("Legal  Conference", country="DE", providers=["web-search"])
    b = cache_key("legal conference", providers=["web-search"], country="DE")
    c = cache_key("legal conference", country="FR", providers=["web-search"])
    assert a == b
    assert a != c
    assert len(a) == 64


@pytest.mark.asyncio
async def test_entry_expires_exactly_at_ttl():
    timer = Timer()
    cache = QueryCache(ttl_seconds=10, max_entries=8, timer=timer)
    await cache.set("k", ["https://a.de/x"])

    timer.now = 9.999
    assert await cache.get("k") == ["https://a.de/x"]

    timer.now = 10.0
    assert await cache.get("k") is None
    assert cache.hits == 1
    assert cache.misses == 1


@pytest.mark.asyncio
async def test_invalidate_single_key_and_all():
    cache = QueryCache(ttl_seconds=60, max_entries=8)
    await cache.set("a", 1)
    await cache.set("b", 2)

    await cache.invalidate("a")
    assert await cache.get("a") is None
    assert await cache.get("b") == 2

    await cache.invalidate()
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_max_entries_bounds_size():
    cache = QueryCache(ttl_seconds=60, max_entries=2)
    for key in ("a", "b", "c"):
        await cache.set(key, key)
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_concurrent_access_is_safe():
    cache = QueryCache(ttl_seconds=60, max_entries=128)

    async def worker(i: int):
        await cache.set(f"k{i}", i)
        return await cache.get(f"k{i}")

    results = await asyncio.gather(*(worker(i) for i in range(50)))
    assert results == list(range(50))
