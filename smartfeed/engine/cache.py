"""
Feed cache.

Two interchangeable backends behind the FeedCache protocol:

  • InMemoryFeedCache — OrderedDict LRU guarded by an asyncio.Lock, TTL checked
                        on read and by a periodic sweep.
  • RedisFeedCache    — JSON payload under `smart_feed:{user}:{digest}` with
                        SET ... EX; redis expires entries on its own.

Keys are per-user so requests for different users never touch the same entry.
"""
import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis

from smartfeed.engine.types import CachedFeed, FeedMetadata, FeedOptions, FeedResult

logger = logging.getLogger(__name__)

KEY_PREFIX = "smart_feed"


def feed_cache_key(user_id: str, options: FeedOptions, prefix: str = KEY_PREFIX) -> str:
    payload = json.dumps(options.cache_fields(), sort_keys=True)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}:{user_id}:{digest}"


def preload_cache_key(user_id: str, after_post_id: str, prefix: str = KEY_PREFIX) -> str:
    return f"{prefix}:{user_id}:preload:{after_post_id}"


class FeedCache(Protocol):
    prefix: str

    async def get(self, key: str) -> Optional[CachedFeed]: ...

    async def set(self, key: str, feed: FeedResult, metadata: FeedMetadata) -> None: ...

    async def evict(self, key: str) -> None: ...

    async def evict_user(self, user_id: str) -> int: ...

    async def evict_expired(self) -> int: ...

    async def clear(self) -> None: ...

    async def size(self) -> int: ...


class InMemoryFeedCache:
    def __init__(
        self,
        ttl_seconds: float = 120.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.time,
        prefix: str = KEY_PREFIX,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.prefix = prefix
        self._clock = clock
        self._entries: "OrderedDict[str, CachedFeed]" = OrderedDict()
        self._lock = asyncio.Lock()

    def _expired(self, entry: CachedFeed, now: float) -> bool:
        return now - entry.stored_at >= self.ttl_seconds

    async def get(self, key: str) -> Optional[CachedFeed]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry

    async def set(self, key: str, feed: FeedResult, metadata: FeedMetadata) -> None:
        entry = CachedFeed(feed=feed, metadata=metadata, stored_at=self._clock())
        async with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    async def evict(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def evict_user(self, user_id: str) -> int:
        marker = f"{self.prefix}:{user_id}:"
        async with self._lock:
            doomed = [k for k in self._entries if k.startswith(marker)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    async def evict_expired(self) -> int:
        now = self._clock()
        async with self._lock:
            doomed = [k for k, e in self._entries.items() if self._expired(e, now)]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def size(self) -> int:
        return len(self._entries)


class RedisFeedCache:
    def __init__(
        self,
        redis: aioredis.Redis,
        ttl_seconds: float = 120.0,
        prefix: str = KEY_PREFIX,
    ) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    async def get(self, key: str) -> Optional[CachedFeed]:
        raw = await self.redis.get(key)
        if not raw:
            return None
        return CachedFeed.model_validate_json(raw)

    async def set(self, key: str, feed: FeedResult, metadata: FeedMetadata) -> None:
        entry = CachedFeed(feed=feed, metadata=metadata, stored_at=time.time())
        await self.redis.set(key, entry.model_dump_json(), ex=max(1, int(self.ttl_seconds)))

    async def evict(self, key: str) -> None:
        await self.redis.delete(key)

    async def evict_user(self, user_id: str) -> int:
        keys = [k async for k in self.redis.scan_iter(match=f"{self.prefix}:{user_id}:*")]
        if not keys:
            return 0
        return await self.redis.delete(*keys)

    async def evict_expired(self) -> int:
        # Redis expires keys itself
        return 0

    async def clear(self) -> None:
        keys = [k async for k in self.redis.scan_iter(match=f"{self.prefix}:*")]
        if keys:
            await self.redis.delete(*keys)

    async def size(self) -> int:
        count = 0
        async for _ in self.redis.scan_iter(match=f"{self.prefix}:*"):
            count += 1
        return count


async def sweep_forever(cache: FeedCache, interval_seconds: float) -> None:
    """Background eviction loop; runs until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            evicted = await cache.evict_expired()
            if evicted:
                logger.debug("Cache sweep evicted %d expired feeds", evicted)
        except Exception as exc:
            logger.warning("Cache sweep failed: %s", exc)
