"""Tests for the feed cache backends."""

import fnmatch

import pytest

from smartfeed.engine.cache import InMemoryFeedCache, RedisFeedCache, feed_cache_key
from smartfeed.engine.types import FeedMetadata, FeedOptions, FeedResult
from tests.fakes import NOW


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    """The handful of redis.asyncio calls RedisFeedCache makes."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expiry: dict[str, int] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatch(key, match):
                yield key


def _metadata() -> FeedMetadata:
    return FeedMetadata(generated_at=NOW, algorithm_version="v4", weights={"following": 1.0})


def test_cache_key_ignores_force_refresh() -> None:
    assert feed_cache_key("u1", FeedOptions()) == feed_cache_key("u1", FeedOptions(force_refresh=True))
    assert feed_cache_key("u1", FeedOptions()) != feed_cache_key("u1", FeedOptions(limit=10))
    assert feed_cache_key("u1", FeedOptions()) != feed_cache_key("u2", FeedOptions())
    assert feed_cache_key("u1", FeedOptions()).startswith("smart_feed:u1:")


@pytest.mark.asyncio
async def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = InMemoryFeedCache(ttl_seconds=120, clock=clock)
    await cache.set("smart_feed:u1:x", FeedResult(), _metadata())

    clock.now += 119
    assert await cache.get("smart_feed:u1:x") is not None
    clock.now += 1
    assert await cache.get("smart_feed:u1:x") is None


@pytest.mark.asyncio
async def test_least_recently_used_entry_is_evicted() -> None:
    cache = InMemoryFeedCache(max_entries=2, clock=FakeClock())
    await cache.set("smart_feed:a:1", FeedResult(), _metadata())
    await cache.set("smart_feed:b:1", FeedResult(), _metadata())
    await cache.get("smart_feed:a:1")
    await cache.set("smart_feed:c:1", FeedResult(), _metadata())

    assert await cache.get("smart_feed:b:1") is None
    assert await cache.get("smart_feed:a:1") is not None
    assert await cache.size() == 2


@pytest.mark.asyncio
async def test_evict_user_only_touches_that_user() -> None:
    cache = InMemoryFeedCache(clock=FakeClock())
    await cache.set("smart_feed:u1:a", FeedResult(), _metadata())
    await cache.set("smart_feed:u1:b", FeedResult(), _metadata())
    await cache.set("smart_feed:u10:a", FeedResult(), _metadata())

    assert await cache.evict_user("u1") == 2
    assert await cache.get("smart_feed:u10:a") is not None


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_entries() -> None:
    clock = FakeClock()
    cache = InMemoryFeedCache(ttl_seconds=120, clock=clock)
    await cache.set("smart_feed:old:1", FeedResult(), _metadata())
    clock.now += 100
    await cache.set("smart_feed:new:1", FeedResult(), _metadata())
    clock.now += 30

    assert await cache.evict_expired() == 1
    assert await cache.size() == 1


@pytest.mark.asyncio
async def test_redis_backend_stores_json_with_ttl() -> None:
    redis = FakeRedis()
    cache = RedisFeedCache(redis, ttl_seconds=120)
    key = feed_cache_key("u1", FeedOptions())

    await cache.set(key, FeedResult(), _metadata())
    cached = await cache.get(key)

    assert redis.expiry[key] == 120
    assert cached.metadata == _metadata()
    assert cached.feed == FeedResult()


@pytest.mark.asyncio
async def test_redis_backend_evicts_per_user() -> None:
    redis = FakeRedis()
    cache = RedisFeedCache(redis)
    await cache.set("smart_feed:u1:a", FeedResult(), _metadata())
    await cache.set("smart_feed:u2:a", FeedResult(), _metadata())

    assert await cache.evict_user("u1") == 1
    assert await cache.size() == 1
    await cache.clear()
    assert await cache.size() == 0
