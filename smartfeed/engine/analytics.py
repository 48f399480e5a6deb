"""
Fire-and-forget analytics.

The engine hands each FeedAnalyticsEvent to AnalyticsDispatcher.submit(), which
only enqueues it. A background worker task drains the queue into the
configured sink; failures are logged and counted, never raised to a request.
Also computes the per-user insights served by /feed/analytics.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from smartfeed.engine.stores import AnalyticsReader, AnalyticsSink, UserSignalStore
from smartfeed.engine.types import FeedAnalyticsEvent, Lane
from smartfeed.telemetry import ANALYTICS_ERRORS_TOTAL

logger = logging.getLogger(__name__)

TIMEFRAME_DAYS = {"1d": 1, "7d": 7, "30d": 30}

# Most recent interactions considered for the engagement trend
ENGAGEMENT_SAMPLE = 1_000


class AnalyticsDispatcher:
    def __init__(self, sink: AnalyticsSink, max_queue: int = 10_000) -> None:
        self.sink = sink
        self._queue: asyncio.Queue[FeedAnalyticsEvent] = asyncio.Queue(maxsize=max_queue)
        self._worker: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="analytics-dispatcher")

    async def stop(self) -> None:
        if self._worker is None:
            return
        await self.drain()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    def submit(self, event: FeedAnalyticsEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            ANALYTICS_ERRORS_TOTAL.inc()
            logger.warning("Analytics queue full, dropping event for %s", event.user_id)

    async def drain(self) -> None:
        """Wait until every queued event has been handed to the sink."""
        if self._worker is None:
            while not self._queue.empty():
                await self._deliver(self._queue.get_nowait())
                self._queue.task_done()
            return
        await self._queue.join()

    async def _deliver(self, event: FeedAnalyticsEvent) -> None:
        try:
            await self.sink.record(event)
        except Exception as exc:
            ANALYTICS_ERRORS_TOTAL.inc()
            logger.warning("Track feed generation failed for %s: %s", event.user_id, exc)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()


def most_common_source(events: Sequence[FeedAnalyticsEvent]) -> str:
    totals: dict[str, float] = {}
    for event in events:
        for lane, weight in event.weights.items():
            totals[lane] = totals.get(lane, 0.0) + weight

    best, best_weight = Lane.FOLLOWING.value, 0.0
    for lane, weight in totals.items():
        if weight > best_weight:
            best, best_weight = lane, weight
    return best


async def engagement_trend(
    signals: UserSignalStore,
    user_id: str,
    days: int,
    now: datetime,
) -> dict:
    """Interactions in the window, and whether its newer half beats the older one."""
    since = now - timedelta(days=days)
    midpoint = now - timedelta(days=days / 2)
    try:
        interactions = await signals.get_recent_interactions(user_id, ENGAGEMENT_SAMPLE)
    except Exception as exc:
        logger.warning("Engagement trend failed for %s: %s", user_id, exc)
        return {"error": str(exc)}

    stamps = [i.occurred_at for i in interactions if i.occurred_at is not None and i.occurred_at >= since]
    newer = sum(1 for t in stamps if t >= midpoint)
    older = len(stamps) - newer
    if newer > older:
        trend = "increasing"
    elif newer < older:
        trend = "decreasing"
    else:
        trend = "stable"

    return {
        "total_engagements": len(stamps),
        "average_per_day": len(stamps) / days,
        "trend": trend,
    }


async def get_feed_analytics(
    reader: AnalyticsReader,
    user_id: str,
    timeframe: str,
    now: datetime,
    signals: Optional[UserSignalStore] = None,
) -> dict:
    days = TIMEFRAME_DAYS.get(timeframe, 1)
    try:
        events = list(await reader.list_feed_events(user_id, now - timedelta(days=days)))
    except Exception as exc:
        logger.error("Get feed analytics failed for %s: %s", user_id, exc)
        return {"success": False, "analytics": [], "insights": {}, "timeframe": timeframe}

    insights = {
        "total_feeds_generated": len(events),
        "average_feed_size": sum(e.feed_size for e in events) / max(1, len(events)),
        "most_common_source": most_common_source(events),
    }
    if signals is not None:
        insights["engagement_trend"] = await engagement_trend(signals, user_id, days, now)
    return {"success": True, "analytics": events, "insights": insights, "timeframe": timeframe}
