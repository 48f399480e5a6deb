"""Tests for ad / sponsored insertion and final feed assembly."""

import pytest

from smartfeed.engine.monetization import AdSlot, SponsoredSlot, finalize_feed, inject_monetization
from smartfeed.engine.policy import FeedPolicy
from smartfeed.engine.types import FeedOptions, Lane, ScoredItem
from tests.fakes import NOW, FakeAdProvider, SequenceRandom, make_post

POLICY = FeedPolicy()


def _posts(count: int) -> list[ScoredItem]:
    return [
        ScoredItem(item=make_post(f"p{i}", author_id=f"a{i}"), source=Lane.FOR_YOU, score=1.0, final_score=0.25)
        for i in range(1, count + 1)
    ]


@pytest.mark.asyncio
async def test_ads_follow_every_fifth_post() -> None:
    provider = FakeAdProvider()
    slots = await inject_monetization(
        _posts(12), "u1", FeedOptions(sponsored=False), provider, POLICY, SequenceRandom()
    )
    feed = finalize_feed(slots, NOW, POLICY)

    assert len(feed) == 14
    ads = [e for e in feed.entries if e.kind == "ad"]
    assert [e.feed_position for e in ads] == [6, 12]
    assert feed.entries[4].item.id == "p5"
    assert feed.entries[10].item.id == "p10"
    assert provider.ad_calls == [0, 1]


@pytest.mark.asyncio
async def test_sponsored_posts_follow_the_rng() -> None:
    sponsored = make_post("sp1", author_id="brand")
    provider = FakeAdProvider(sponsored=[sponsored])
    rng = SequenceRandom([0.99, 0.01, 0.99])

    slots = await inject_monetization(_posts(3), "u1", FeedOptions(ads=False), provider, POLICY, rng)

    assert [type(s).__name__ for s in slots] == ["ScoredItem", "ScoredItem", "SponsoredSlot", "ScoredItem"]
    assert isinstance(slots[2], SponsoredSlot)
    assert slots[2].item.id == "sp1"


@pytest.mark.asyncio
async def test_disabled_monetization_returns_posts_untouched() -> None:
    provider = FakeAdProvider()
    slots = await inject_monetization(
        _posts(10), "u1", FeedOptions(ads=False, sponsored=False), provider, POLICY, SequenceRandom([0.0])
    )

    assert len(slots) == 10
    assert provider.ad_calls == []
    assert provider.sponsored_calls == []


@pytest.mark.asyncio
async def test_provider_failures_are_skipped() -> None:
    provider = FakeAdProvider(fail=True)
    slots = await inject_monetization(
        _posts(10), "u1", FeedOptions(), provider, POLICY, SequenceRandom([0.0])
    )

    assert len(slots) == 10
    assert not any(isinstance(s, (AdSlot, SponsoredSlot)) for s in slots)


@pytest.mark.asyncio
async def test_missing_ads_do_not_advance_ad_count() -> None:
    provider = FakeAdProvider(ads=False)
    await inject_monetization(_posts(10), "u1", FeedOptions(sponsored=False), provider, POLICY)

    assert provider.ad_calls == [0, 0]


def test_finalize_assigns_positions_and_metadata() -> None:
    feed = finalize_feed(_posts(3), NOW, POLICY)

    assert [e.feed_position for e in feed.entries] == [1, 2, 3]
    meta = feed.entries[0].metadata
    assert meta.source == "for_you"
    assert meta.score == 0.25
    assert meta.inserted_at == NOW
    assert meta.algorithm_version == POLICY.algorithm_version
