"""
Wires a FeedEngine to its production collaborators.

Shared by the API lifespan and the refresh worker:

  TiDB stores ─┐
  ad server  ──┼─▶ FeedEngine ◀── feed cache (memory | redis)
  analytics  ──┘                  analytics sink (database | kafka)
"""
import logging
from typing import Optional

from smartfeed.clients.ad_client import AdClient, AdServerProvider
from smartfeed.clients.kafka_producer import KafkaAnalyticsSink, init_kafka, stop_kafka
from smartfeed.clients.redis_client import close_redis, init_redis
from smartfeed.config import Settings
from smartfeed.database import AsyncSessionLocal, dispose_db, init_db
from smartfeed.engine.analytics import AnalyticsDispatcher
from smartfeed.engine.cache import FeedCache, InMemoryFeedCache, RedisFeedCache
from smartfeed.engine.service import FeedEngine
from smartfeed.sql_stores import (
    SqlAnalyticsStore,
    SqlContentStore,
    SqlFollowGraphStore,
    SqlRewardLedger,
    SqlUserSignalStore,
)

logger = logging.getLogger(__name__)

_ad_client: Optional[AdClient] = None


async def _build_cache(settings: Settings) -> FeedCache:
    if settings.feed_cache_backend == "redis":
        redis = await init_redis(
            settings.redis_host, settings.redis_port, socket_timeout=settings.redis_socket_timeout
        )
        return RedisFeedCache(
            redis, ttl_seconds=settings.feed_cache_ttl_seconds, prefix=settings.feed_cache_prefix
        )
    return InMemoryFeedCache(
        ttl_seconds=settings.feed_cache_ttl_seconds,
        max_entries=settings.feed_cache_max_entries,
        prefix=settings.feed_cache_prefix,
    )


async def start_engine(settings: Settings) -> FeedEngine:
    """Connect every backend, build the engine and start its background tasks."""
    global _ad_client

    await init_db()

    content = SqlContentStore(AsyncSessionLocal)
    analytics_store = SqlAnalyticsStore(AsyncSessionLocal)

    if settings.analytics_backend == "kafka":
        await init_kafka(settings.kafka_bootstrap_servers)
        sink = KafkaAnalyticsSink(settings.kafka_topic_feed_analytics)
    else:
        sink = analytics_store

    _ad_client = AdClient(settings.ad_server_url, timeout=settings.ad_server_timeout)
    await _ad_client.start()

    engine = FeedEngine(
        content=content,
        follows=SqlFollowGraphStore(AsyncSessionLocal),
        signals=SqlUserSignalStore(AsyncSessionLocal),
        ads=AdServerProvider(_ad_client, content, settings.policy.sponsored_pool_size),
        cache=await _build_cache(settings),
        analytics=AnalyticsDispatcher(sink, max_queue=settings.analytics_queue_size),
        policy=settings.policy,
        generation_timeout=settings.generation_timeout_seconds,
        preferences_ttl=settings.preferences_ttl_seconds,
        preferences_max_users=settings.preferences_max_users,
        cache_timeout=settings.cache_timeout_seconds,
        cache_sweep_interval=settings.cache_sweep_interval_seconds,
        rewards=SqlRewardLedger(AsyncSessionLocal),
        analytics_reader=analytics_store,
    )
    engine.start()
    logger.info(
        "Feed engine ready (cache=%s, analytics=%s, algorithm=%s)",
        settings.feed_cache_backend, settings.analytics_backend, settings.policy.algorithm_version,
    )
    return engine


async def stop_engine(engine: FeedEngine) -> None:
    global _ad_client

    await engine.stop()
    if _ad_client is not None:
        await _ad_client.stop()
        _ad_client = None
    await stop_kafka()
    await close_redis()
    await dispose_db()
