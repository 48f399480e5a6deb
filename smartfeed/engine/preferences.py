"""
Per-user signal caches held by the engine.

PreferenceCache keeps preferences for a soft TTL (5 minutes by default) and is
dropped on an explicit preference update. FeedHistory remembers the head of
the last feed served to each user for the discovery novelty score.
"""
import logging
import time
from collections import OrderedDict
from typing import Callable, Sequence

from smartfeed.engine.stores import UserSignalStore
from smartfeed.engine.types import ContentItem, UserPreferences

logger = logging.getLogger(__name__)


class PreferenceCache:
    """TTL cache of user preferences, at most `max_users` entries.

    Entries are kept in fetch order, so expired ones are always at the front
    and are dropped on the next lookup.
    """

    def __init__(
        self,
        store: UserSignalStore,
        ttl_seconds: float = 300.0,
        max_users: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_users = max_users
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[float, UserPreferences]]" = OrderedDict()

    def evict_expired(self) -> int:
        now = self._clock()
        evicted = 0
        while self._entries:
            fetched_at, _ = next(iter(self._entries.values()))
            if now - fetched_at < self.ttl_seconds:
                break
            self._entries.popitem(last=False)
            evicted += 1
        return evicted

    async def get(self, user_id: str) -> UserPreferences:
        self.evict_expired()
        hit = self._entries.get(user_id)
        if hit:
            return hit[1]

        try:
            preferences = await self.store.get_preferences(user_id)
        except Exception as exc:
            logger.warning("Preference lookup failed for %s: %s — using defaults", user_id, exc)
            return UserPreferences()

        if preferences is None:
            preferences = UserPreferences()
        self._entries[user_id] = (self._clock(), preferences)
        self._entries.move_to_end(user_id)
        while len(self._entries) > self.max_users:
            self._entries.popitem(last=False)
        return preferences

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class FeedHistory:
    def __init__(self, per_user: int = 20, max_users: int = 10_000) -> None:
        self.per_user = per_user
        self.max_users = max_users
        self._entries: "OrderedDict[str, tuple[ContentItem, ...]]" = OrderedDict()

    def get(self, user_id: str) -> Sequence[ContentItem]:
        return self._entries.get(user_id, ())

    def remember(self, user_id: str, items: Sequence[ContentItem]) -> None:
        self._entries[user_id] = tuple(items[: self.per_user])
        self._entries.move_to_end(user_id)
        while len(self._entries) > self.max_users:
            self._entries.popitem(last=False)

    def forget(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
