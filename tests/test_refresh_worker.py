"""Tests for the user-event driven feed refresh worker."""

import asyncio

import pytest

from smartfeed.engine.types import FeedOptions, FeedResult, SmartFeedResponse
from smartfeed.workers.refresh_worker import RefreshScheduler, handle_event


class StubEngine:
    """Records regenerations; each one blocks until `release` is set."""

    def __init__(self, success: bool = True) -> None:
        self.calls: list[tuple[str, FeedOptions]] = []
        self.invalidated: list[str] = []
        self.release = asyncio.Event()
        self.success = success
        self.active = 0
        self.peak = 0

    def invalidate_preferences(self, user_id: str) -> None:
        self.invalidated.append(user_id)

    async def get_smart_feed(self, user_id: str, options: FeedOptions) -> SmartFeedResponse:
        self.calls.append((user_id, options))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.release.wait()
        finally:
            self.active -= 1
        return SmartFeedResponse(
            success=self.success,
            feed=FeedResult(),
            error=None if self.success else "Feed generation failed: boom",
            operation_id="feed_test",
        )


@pytest.mark.asyncio
async def test_follow_change_forces_refresh() -> None:
    engine = StubEngine()
    scheduler = RefreshScheduler(engine)

    assert handle_event({"type": "follow_changed", "user_id": "u1"}, scheduler) == "u1"
    engine.release.set()
    await scheduler.drain()

    assert [(u, o.force_refresh) for u, o in engine.calls] == [("u1", True)]
    assert engine.invalidated == []


@pytest.mark.asyncio
async def test_preference_update_invalidates_before_refresh() -> None:
    engine = StubEngine()
    scheduler = RefreshScheduler(engine)

    handle_event({"type": "preferences_updated", "user_id": "u1"}, scheduler)
    engine.release.set()
    await scheduler.drain()

    assert engine.invalidated == ["u1"]
    assert len(engine.calls) == 1


@pytest.mark.asyncio
async def test_follower_id_is_accepted() -> None:
    engine = StubEngine()
    scheduler = RefreshScheduler(engine)

    assert handle_event({"type": "follow_changed", "follower_id": "u9", "followee_id": "u2"}, scheduler) == "u9"
    engine.release.set()
    await scheduler.drain()


@pytest.mark.asyncio
async def test_malformed_and_unknown_events_are_ignored() -> None:
    engine = StubEngine()
    scheduler = RefreshScheduler(engine)

    assert handle_event({"user_id": "u1"}, scheduler) is None
    assert handle_event({"type": "follow_changed"}, scheduler) is None
    assert handle_event({"type": "post_liked", "user_id": "u1"}, scheduler) is None
    assert scheduler.in_flight == 0


@pytest.mark.asyncio
async def test_events_for_a_busy_user_are_coalesced() -> None:
    engine = StubEngine()
    scheduler = RefreshScheduler(engine)

    handle_event({"type": "follow_changed", "user_id": "u1"}, scheduler)
    await asyncio.sleep(0)
    for _ in range(4):
        handle_event({"type": "follow_changed", "user_id": "u1"}, scheduler)
    assert scheduler.in_flight == 1
    engine.release.set()
    await scheduler.drain()

    assert len(engine.calls) == 2


@pytest.mark.asyncio
async def test_concurrency_is_bounded() -> None:
    engine = StubEngine()
    scheduler = RefreshScheduler(engine, concurrency=2)

    for i in range(6):
        handle_event({"type": "follow_changed", "user_id": f"u{i}"}, scheduler)
    await asyncio.sleep(0.01)

    assert engine.peak == 2
    engine.release.set()
    await scheduler.drain()
    assert len(engine.calls) == 6


@pytest.mark.asyncio
async def test_failed_refresh_does_not_break_scheduler() -> None:
    engine = StubEngine(success=False)
    engine.release.set()
    scheduler = RefreshScheduler(engine)

    handle_event({"type": "follow_changed", "user_id": "u1"}, scheduler)
    await scheduler.drain()
    handle_event({"type": "follow_changed", "user_id": "u1"}, scheduler)
    await scheduler.drain()

    assert len(engine.calls) == 2
    assert scheduler.in_flight == 0
