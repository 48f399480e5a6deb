"""Tests for the analytics dispatcher and feed insights."""

from datetime import timedelta

import pytest

from smartfeed.engine.analytics import (
    AnalyticsDispatcher,
    engagement_trend,
    get_feed_analytics,
    most_common_source,
)
from smartfeed.engine.types import FeedAnalyticsEvent, Interaction
from tests.fakes import NOW, FakeSignals, RecordingSink


def _event(user_id: str = "u1", size: int = 10, days_ago: float = 0, **weights) -> FeedAnalyticsEvent:
    return FeedAnalyticsEvent(
        user_id=user_id,
        feed_size=size,
        weights=weights or {"following": 0.5, "for_you": 0.5},
        algorithm_version="v4",
        generated_at=NOW - timedelta(days=days_ago),
    )


def test_most_common_source_sums_weights() -> None:
    events = [
        _event(following=0.6, for_you=0.4),
        _event(following=0.2, for_you=0.5, trending=0.3),
    ]

    assert most_common_source(events) == "for_you"
    assert most_common_source([]) == "following"


@pytest.mark.asyncio
async def test_insights_cover_the_timeframe() -> None:
    sink = RecordingSink()
    sink.events = [
        _event(size=10, days_ago=0.5),
        _event(size=20, days_ago=3),
        _event(size=99, days_ago=10),
        _event(user_id="u2", size=5),
    ]

    week = await get_feed_analytics(sink, "u1", "7d", NOW)
    day = await get_feed_analytics(sink, "u1", "1d", NOW)

    assert week["success"]
    assert week["insights"]["total_feeds_generated"] == 2
    assert week["insights"]["average_feed_size"] == 15
    assert day["insights"]["total_feeds_generated"] == 1
    assert week["timeframe"] == "7d"


@pytest.mark.asyncio
async def test_insights_with_no_events() -> None:
    result = await get_feed_analytics(RecordingSink(), "u1", "30d", NOW)

    assert result["insights"] == {
        "total_feeds_generated": 0,
        "average_feed_size": 0,
        "most_common_source": "following",
    }


@pytest.mark.asyncio
async def test_reader_failure_returns_unsuccessful_result() -> None:
    result = await get_feed_analytics(RecordingSink(fail=True), "u1", "7d", NOW)

    assert result == {"success": False, "analytics": [], "insights": {}, "timeframe": "7d"}


@pytest.mark.asyncio
async def test_dispatcher_worker_delivers_in_background() -> None:
    sink = RecordingSink()
    dispatcher = AnalyticsDispatcher(sink)
    dispatcher.start()

    dispatcher.submit(_event())
    dispatcher.submit(_event(user_id="u2"))
    await dispatcher.drain()
    await dispatcher.stop()

    assert [e.user_id for e in sink.events] == ["u1", "u2"]


@pytest.mark.asyncio
async def test_dispatcher_drops_events_when_full() -> None:
    sink = RecordingSink()
    dispatcher = AnalyticsDispatcher(sink, max_queue=1)

    dispatcher.submit(_event())
    dispatcher.submit(_event(user_id="u2"))
    await dispatcher.drain()

    assert [e.user_id for e in sink.events] == ["u1"]


@pytest.mark.asyncio
async def test_dispatcher_survives_sink_failures() -> None:
    dispatcher = AnalyticsDispatcher(RecordingSink(fail=True))
    dispatcher.start()

    dispatcher.submit(_event())
    await dispatcher.drain()
    await dispatcher.stop()


def _interactions(*days_ago: float) -> FakeSignals:
    return FakeSignals(
        interactions={"u1": [Interaction(occurred_at=NOW - timedelta(days=d)) for d in days_ago]}
    )


@pytest.mark.asyncio
async def test_engagement_trend_compares_halves_of_the_window() -> None:
    rising = await engagement_trend(_interactions(0.5, 1, 2, 5, 10), "u1", 7, NOW)
    falling = await engagement_trend(_interactions(1, 4, 5, 6), "u1", 7, NOW)
    flat = await engagement_trend(_interactions(), "u1", 7, NOW)

    assert rising == {"total_engagements": 4, "average_per_day": 4 / 7, "trend": "increasing"}
    assert falling["trend"] == "decreasing"
    assert flat == {"total_engagements": 0, "average_per_day": 0.0, "trend": "stable"}


@pytest.mark.asyncio
async def test_engagement_trend_reports_store_errors() -> None:
    class BrokenSignals(FakeSignals):
        async def get_recent_interactions(self, user_id, limit):
            raise ConnectionError("signal store down")

    assert await engagement_trend(BrokenSignals(), "u1", 7, NOW) == {"error": "signal store down"}


@pytest.mark.asyncio
async def test_insights_include_engagement_trend_when_signals_given() -> None:
    sink = RecordingSink()
    sink.events = [_event(size=10)]

    result = await get_feed_analytics(sink, "u1", "1d", NOW, signals=_interactions(0.1, 0.2, 3))

    assert result["insights"]["engagement_trend"]["total_engagements"] == 2
    assert result["insights"]["engagement_trend"]["trend"] == "increasing"
