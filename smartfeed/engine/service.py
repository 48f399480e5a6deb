"""
FeedEngine — the smart feed generation pipeline.

  cache ─hit──────────────────────────────────────────────────────────▶ response
    │ miss / force_refresh
    ▼
  preferences + behaviour ─▶ lane weights ─▶ concurrent lane fetchers
    ─▶ aggregate (score × weight) ─▶ diversity filter ─▶ monetization
    ─▶ finalize ─▶ cache write + analytics (background) ─▶ response

The generation runs under a time budget. Anything that goes wrong inside it
(every lane empty, a scoring bug, the budget running out) switches to the
fallback feed: the most recent public posts, unscored. Only when that query
fails too does the caller get success=False.
"""
import asyncio
import logging
import random
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from opentelemetry import trace

from smartfeed.engine.analytics import AnalyticsDispatcher, get_feed_analytics
from smartfeed.engine.cache import FeedCache, feed_cache_key, preload_cache_key, sweep_forever
from smartfeed.engine.monetization import RandomSource, finalize_feed, inject_monetization
from smartfeed.engine.policy import FeedPolicy
from smartfeed.engine.preferences import FeedHistory, PreferenceCache
from smartfeed.engine.ranking import aggregate, diversify
from smartfeed.engine.rewards import award_coins_for_view
from smartfeed.engine.sources import build_fetchers, fetch_all_sources
from smartfeed.engine.stores import (
    AdProvider,
    AnalyticsReader,
    ContentStore,
    FollowGraphStore,
    PostQuery,
    RewardLedger,
    UserSignalStore,
)
from smartfeed.engine.types import (
    CachedFeed,
    EntryMetadata,
    FeedAnalyticsEvent,
    FeedEntry,
    FeedMetadata,
    FeedOptions,
    FeedResult,
    NoCandidatesError,
    SmartFeedResponse,
    UserBehaviorProfile,
)
from smartfeed.engine.weights import compute_lane_weights
from smartfeed.telemetry import CACHE_REQUESTS_TOTAL, FALLBACK_TOTAL, FEED_LATENCY

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _operation_id() -> str:
    return f"feed_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class FeedEngine:
    def __init__(
        self,
        *,
        content: ContentStore,
        follows: FollowGraphStore,
        signals: UserSignalStore,
        ads: AdProvider,
        cache: FeedCache,
        analytics: AnalyticsDispatcher,
        policy: Optional[FeedPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
        rng: Optional[RandomSource] = None,
        generation_timeout: float = 3.0,
        preferences_ttl: float = 300.0,
        preferences_max_users: int = 10_000,
        cache_timeout: float = 0.5,
        cache_sweep_interval: float = 60.0,
        rewards: Optional[RewardLedger] = None,
        analytics_reader: Optional[AnalyticsReader] = None,
    ) -> None:
        self.content = content
        self.signals = signals
        self.ads = ads
        self.cache = cache
        self.analytics = analytics
        self.policy = policy or FeedPolicy()
        self.clock = clock
        self.rng = rng or random.Random()
        self.generation_timeout = generation_timeout
        self.cache_timeout = cache_timeout
        self.cache_sweep_interval = cache_sweep_interval
        self.rewards = rewards
        self.analytics_reader = analytics_reader

        self.preferences = PreferenceCache(
            signals, ttl_seconds=preferences_ttl, max_users=preferences_max_users
        )
        self.history = FeedHistory(per_user=self.policy.feed_history_size)
        self.fetchers = build_fetchers(
            content, follows, signals, self.history.get, self.policy, clock
        )
        self._sweeper: Optional[asyncio.Task] = None

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        self.analytics.start()
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(
                sweep_forever(self.cache, self.cache_sweep_interval), name="feed-cache-sweeper"
            )

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.analytics.stop()

    # ── Main entry point ──────────────────────────────────────────────────

    async def get_smart_feed(
        self, user_id: str, options: Optional[FeedOptions] = None
    ) -> SmartFeedResponse:
        options = options or FeedOptions()
        started = time.perf_counter()
        operation_id = _operation_id()
        cache_key = feed_cache_key(user_id, options, self.cache.prefix)

        def elapsed_ms() -> float:
            return round((time.perf_counter() - started) * 1000, 2)

        with tracer.start_as_current_span("get_smart_feed") as span:
            span.set_attribute("user.id", user_id)
            span.set_attribute("feed.force_refresh", options.force_refresh)

            if not options.force_refresh:
                cached = await self._cache_get(cache_key)
                if cached is not None:
                    CACHE_REQUESTS_TOTAL.labels(result="hit").inc()
                    span.set_attribute("feed.cached", True)
                    return SmartFeedResponse(
                        success=True,
                        feed=cached.feed,
                        metadata=cached.metadata,
                        cached=True,
                        operation_id=operation_id,
                        duration_ms=elapsed_ms(),
                    )
                CACHE_REQUESTS_TOTAL.labels(result="miss").inc()

            logger.info(
                "Generating smart feed for %s (op=%s, algorithm=%s, options=%s)",
                user_id, operation_id, self.policy.algorithm_version, options.model_dump(),
            )

            try:
                feed, metadata = await asyncio.wait_for(
                    self._generate(user_id, options), timeout=self.generation_timeout
                )
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.error("Smart feed generation failed for %s: %s", user_id, message)
                FALLBACK_TOTAL.inc()
                span.set_attribute("feed.fallback", True)
                try:
                    fallback = await self._fallback_feed(options)
                except Exception as fallback_exc:
                    logger.error("Fallback feed failed for %s: %s", user_id, fallback_exc)
                    return SmartFeedResponse(
                        success=False,
                        error=f"Feed generation failed: {message}",
                        operation_id=operation_id,
                        duration_ms=elapsed_ms(),
                    )
                return SmartFeedResponse(
                    success=True,
                    feed=fallback,
                    metadata=FeedMetadata(
                        generated_at=self.clock(),
                        algorithm_version=self.policy.algorithm_version,
                        is_fallback=True,
                        error=message,
                    ),
                    operation_id=operation_id,
                    duration_ms=elapsed_ms(),
                )

            await self._cache_set(cache_key, feed, metadata)

            duration = elapsed_ms()
            FEED_LATENCY.observe(duration / 1000)
            span.set_attribute("feed.size", len(feed))
            logger.info(
                "Smart feed generated for %s: %d entries, sources=%s (%.1fms)",
                user_id, len(feed), metadata.source_counts, duration,
            )
            return SmartFeedResponse(
                success=True,
                feed=feed,
                metadata=metadata,
                operation_id=operation_id,
                duration_ms=duration,
            )

    # ── Pipeline ──────────────────────────────────────────────────────────

    async def _generate(self, user_id: str, options: FeedOptions) -> tuple[FeedResult, FeedMetadata]:
        preferences = await self.preferences.get(user_id)
        behavior = await self._behavior(user_id)
        now = self.clock()
        weights = compute_lane_weights(preferences, behavior, now, self.policy)

        with tracer.start_as_current_span("fetch_sources"):
            sources = await fetch_all_sources(
                self.fetchers, user_id, preferences, weights, options
            )

        with tracer.start_as_current_span("rank"):
            candidates = aggregate(sources, weights)
        if not candidates:
            raise NoCandidatesError(f"No candidates from any lane for user {user_id}")

        with tracer.start_as_current_span("diversify"):
            diversified = diversify(candidates, self.policy)[: options.limit]

        with tracer.start_as_current_span("monetize"):
            slots = await inject_monetization(
                diversified, user_id, options, self.ads, self.policy, self.rng
            )
        feed = finalize_feed(slots, now, self.policy)

        metadata = FeedMetadata(
            generated_at=now,
            source_counts={lane.value: len(items) for lane, items in sources.items()},
            weights=weights,
            algorithm_version=self.policy.algorithm_version,
        )

        self.history.remember(user_id, [s.item for s in diversified])
        self.analytics.submit(
            FeedAnalyticsEvent(
                user_id=user_id,
                feed_size=len(feed),
                weights=weights,
                algorithm_version=self.policy.algorithm_version,
                generated_at=now,
            )
        )
        return feed, metadata

    async def _behavior(self, user_id: str) -> UserBehaviorProfile:
        try:
            behavior = await self.signals.get_behavior(user_id)
        except Exception as exc:
            logger.warning("Behavior lookup failed for %s: %s — using defaults", user_id, exc)
            return UserBehaviorProfile()
        return behavior or UserBehaviorProfile()

    async def _fallback_feed(self, options: FeedOptions) -> FeedResult:
        limit = min(self.policy.fallback_size, options.limit)
        posts = await self.content.find_posts(PostQuery(limit=limit))
        now = self.clock()
        return FeedResult(
            entries=tuple(
                FeedEntry(
                    kind="post",
                    item=post,
                    feed_position=position,
                    metadata=EntryMetadata(
                        source="fallback",
                        inserted_at=now,
                        algorithm_version=self.policy.algorithm_version,
                    ),
                )
                for position, post in enumerate(posts[:limit], start=1)
            )
        )

    # ── Preloading ────────────────────────────────────────────────────────

    async def preload_next_feed(self, user_id: str, current_feed: FeedResult) -> Optional[str]:
        """Generate the page after `current_feed` and park it in the cache.

        Stored under a key derived from the last post served, so the client
        can ask for it with that post id. Returns the key, or None when there
        was nothing to preload after or generation failed.
        """
        posts = [e for e in current_feed.entries if e.kind == "post" and e.item is not None]
        if not posts:
            return None
        after_post_id = posts[-1].item.id

        response = await self.get_smart_feed(
            user_id, FeedOptions(limit=self.policy.preload_count, force_refresh=True)
        )
        if not response.success or response.metadata is None or response.metadata.is_fallback:
            # Fallback feeds are never cached
            reason = response.error or (response.metadata.error if response.metadata else None)
            logger.warning("Preload next feed failed for %s: %s", user_id, reason)
            return None

        key = preload_cache_key(user_id, after_post_id, self.cache.prefix)
        await self._cache_set(key, response.feed, response.metadata)
        logger.debug("Preloaded %d entries for %s after %s", len(response.feed), user_id, after_post_id)
        return key

    async def get_preloaded_feed(self, user_id: str, after_post_id: str) -> Optional[CachedFeed]:
        return await self._cache_get(preload_cache_key(user_id, after_post_id, self.cache.prefix))

    # ── Cache (best effort) ───────────────────────────────────────────────

    async def _cache_get(self, key: str):
        try:
            return await asyncio.wait_for(self.cache.get(key), timeout=self.cache_timeout)
        except Exception as exc:
            logger.warning("Feed cache read failed (%s): %s", key, exc)
            return None

    async def _cache_set(self, key: str, feed: FeedResult, metadata: FeedMetadata) -> None:
        try:
            await asyncio.wait_for(self.cache.set(key, feed, metadata), timeout=self.cache_timeout)
        except Exception as exc:
            logger.warning("Feed cache write failed (%s): %s", key, exc)

    # ── Management ────────────────────────────────────────────────────────

    async def invalidate_user(self, user_id: str) -> int:
        """Forget everything cached for a user (feeds, preferences, history)."""
        self.preferences.invalidate(user_id)
        self.history.forget(user_id)
        try:
            evicted = await self.cache.evict_user(user_id)
        except Exception as exc:
            logger.warning("Feed cache eviction failed for %s: %s", user_id, exc)
            evicted = 0
        logger.info("Cleared feed cache for user %s (%d feeds)", user_id, evicted)
        return evicted

    def invalidate_preferences(self, user_id: str) -> None:
        self.preferences.invalidate(user_id)

    async def clear_cache(self) -> None:
        await self.cache.clear()
        self.preferences.clear()
        self.history.clear()
        logger.info("Feed service cache cleared")

    async def get_stats(self) -> dict:
        try:
            cache_size = await self.cache.size()
        except Exception as exc:
            logger.warning("Feed cache size unavailable: %s", exc)
            cache_size = -1
        return {
            "cache_size": cache_size,
            "user_preferences": len(self.preferences),
            "feed_history": len(self.history),
            "algorithm_version": self.policy.algorithm_version,
        }

    # ── Rewards & insights ────────────────────────────────────────────────

    async def award_coins_for_view(self, user_id: str, post_id: str, view_duration_ms: int) -> dict:
        if self.rewards is None:
            return {"awarded": False, "coins": 0, "error": "Rewards are not configured"}
        return await award_coins_for_view(
            self.rewards, user_id, post_id, view_duration_ms, self.clock()
        )

    async def get_feed_analytics(self, user_id: str, timeframe: str = "7d") -> dict:
        if self.analytics_reader is None:
            return {"success": False, "analytics": [], "insights": {}, "timeframe": timeframe}
        return await get_feed_analytics(
            self.analytics_reader, user_id, timeframe, self.clock(), signals=self.signals
        )
