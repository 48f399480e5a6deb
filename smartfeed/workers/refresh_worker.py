"""
Feed refresh worker — Kafka consumer.

For every 'user-events' message:
  follow_changed       → regenerate the user's feed with force_refresh
  preferences_updated  → drop cached preferences, then regenerate

Key design decisions:
  • Regeneration runs in background tasks so a slow user never blocks the
    consumer loop or other users.
  • A semaphore bounds how many feeds are generated at once.
  • Events are coalesced per user: while a refresh is in flight, further
    events for that user only mark it dirty and trigger one more pass.
"""
import asyncio
import json
import logging
from typing import Optional

from aiokafka import AIOKafkaConsumer
from opentelemetry import trace

from smartfeed.bootstrap import start_engine, stop_engine
from smartfeed.config import settings
from smartfeed.engine.service import FeedEngine
from smartfeed.engine.types import FeedOptions
from smartfeed.telemetry import setup_tracing

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

FOLLOW_CHANGED = "follow_changed"
PREFERENCES_UPDATED = "preferences_updated"


class RefreshScheduler:
    def __init__(self, engine: FeedEngine, concurrency: int = 8) -> None:
        self.engine = engine
        self._semaphore = asyncio.Semaphore(concurrency)
        self._running: dict[str, asyncio.Task] = {}
        self._dirty: set[str] = set()

    @property
    def in_flight(self) -> int:
        return len(self._running)

    def schedule(self, user_id: str) -> None:
        if user_id in self._running:
            self._dirty.add(user_id)
            return
        self._running[user_id] = asyncio.create_task(
            self._refresh(user_id), name=f"feed-refresh-{user_id}"
        )

    async def _refresh(self, user_id: str) -> None:
        try:
            while True:
                self._dirty.discard(user_id)
                async with self._semaphore:
                    with tracer.start_as_current_span("refresh_feed") as span:
                        span.set_attribute("user.id", user_id)
                        result = await self.engine.get_smart_feed(
                            user_id, FeedOptions(force_refresh=True)
                        )
                if result.success:
                    logger.info(
                        "Refreshed feed for %s: %d entries (%.1fms)",
                        user_id, len(result.feed), result.duration_ms,
                    )
                else:
                    logger.error("Feed refresh failed for %s: %s", user_id, result.error)
                if user_id not in self._dirty:
                    break
        except Exception as exc:
            logger.error("Feed refresh error for %s: %s", user_id, exc)
        finally:
            self._running.pop(user_id, None)

    async def drain(self) -> None:
        """Wait for every scheduled refresh, including reruns they trigger."""
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)


def handle_event(msg: dict, scheduler: RefreshScheduler) -> Optional[str]:
    """Route one user event; returns the user whose feed was scheduled."""
    event_type = msg.get("type")
    user_id = msg.get("user_id") or msg.get("follower_id")

    if not event_type or not user_id:
        logger.warning("Malformed user event: %s", msg)
        return None

    if event_type == PREFERENCES_UPDATED:
        scheduler.engine.invalidate_preferences(user_id)
    elif event_type != FOLLOW_CHANGED:
        logger.debug("Ignoring user event %s for %s", event_type, user_id)
        return None

    scheduler.schedule(user_id)
    return user_id


# ─────────────────────────── Main Loop ───────────────────────────────────

async def main() -> None:
    setup_tracing("feed-refresh-worker", settings.environment, settings.otel_exporter_otlp_endpoint)

    engine = await start_engine(settings)
    scheduler = RefreshScheduler(engine, concurrency=settings.refresh_concurrency)

    consumer = AIOKafkaConsumer(
        settings.kafka_topic_user_events,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_consumer_group,
        auto_offset_reset="latest",
        value_deserializer=lambda v: json.loads(v.decode("utf-8")),
    )
    await consumer.start()
    logger.info("Refresh worker listening on topic '%s'", settings.kafka_topic_user_events)

    try:
        async for msg in consumer:
            try:
                handle_event(msg.value, scheduler)
            except Exception as exc:
                logger.error("Refresh worker error for %s: %s", msg.value, exc)
    finally:
        await consumer.stop()
        await scheduler.drain()
        await stop_engine(engine)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )
    asyncio.run(main())
