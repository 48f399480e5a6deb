"""
Monetization insertion and final feed assembly.

Ads are spliced in after every `ad_interval`-th organic post; sponsored posts
are spliced in after any post with probability `sponsored_ratio`. Provider
errors are swallowed: monetization never blocks or fails the organic feed.
"""
import logging
import random
from datetime import datetime
from typing import Optional, Protocol, Sequence, Union

from smartfeed.engine.policy import FeedPolicy
from smartfeed.engine.stores import AdProvider
from smartfeed.engine.types import (
    AdUnit,
    ContentItem,
    EntryMetadata,
    FeedEntry,
    FeedOptions,
    FeedResult,
    ScoredItem,
)
from smartfeed.telemetry import MONETIZATION_INSERTS_TOTAL

logger = logging.getLogger(__name__)


class RandomSource(Protocol):
    def random(self) -> float: ...


class AdSlot:
    """An ad placeholder in the monetized sequence."""

    __slots__ = ("ad",)

    def __init__(self, ad: AdUnit) -> None:
        self.ad = ad


class SponsoredSlot:
    __slots__ = ("item",)

    def __init__(self, item: ContentItem) -> None:
        self.item = item


Slot = Union[ScoredItem, AdSlot, SponsoredSlot]


async def _safe_ad(provider: AdProvider, user_id: str, slot_index: int) -> Optional[AdUnit]:
    try:
        return await provider.get_ad(user_id, slot_index)
    except Exception as exc:
        logger.warning("Ad fetch failed (user=%s, slot=%d): %s", user_id, slot_index, exc)
        return None


async def _safe_sponsored(provider: AdProvider, user_id: str, slot_index: int) -> Optional[ContentItem]:
    try:
        return await provider.get_sponsored_post(user_id, slot_index)
    except Exception as exc:
        logger.warning("Sponsored fetch failed (user=%s, slot=%d): %s", user_id, slot_index, exc)
        return None


async def inject_monetization(
    posts: Sequence[ScoredItem],
    user_id: str,
    options: FeedOptions,
    provider: AdProvider,
    policy: FeedPolicy,
    rng: Optional[RandomSource] = None,
) -> list[Slot]:
    if not options.ads and not options.sponsored:
        return list(posts)

    rng = rng or random.Random()
    monetized: list[Slot] = []
    ad_count = 0
    sponsored_count = 0

    for post_count, post in enumerate(posts, start=1):
        monetized.append(post)

        if options.ads and policy.ad_interval > 0 and post_count % policy.ad_interval == 0:
            ad = await _safe_ad(provider, user_id, ad_count)
            if ad is not None:
                monetized.append(AdSlot(ad))
                ad_count += 1

        if options.sponsored and rng.random() < policy.sponsored_ratio:
            sponsored = await _safe_sponsored(provider, user_id, sponsored_count)
            if sponsored is not None:
                monetized.append(SponsoredSlot(sponsored))
                sponsored_count += 1

    if ad_count:
        MONETIZATION_INSERTS_TOTAL.labels(kind="ad").inc(ad_count)
    if sponsored_count:
        MONETIZATION_INSERTS_TOTAL.labels(kind="sponsored").inc(sponsored_count)
    logger.debug(
        "Monetization for %s: %d ads, %d sponsored posts", user_id, ad_count, sponsored_count
    )
    return monetized


def finalize_feed(slots: Sequence[Slot], now: datetime, policy: FeedPolicy) -> FeedResult:
    """Assign 1-based positions and attach observational metadata."""
    entries: list[FeedEntry] = []
    for position, slot in enumerate(slots, start=1):
        if isinstance(slot, AdSlot):
            entry = FeedEntry(
                kind="ad",
                ad=slot.ad,
                feed_position=position,
                metadata=EntryMetadata(
                    source="monetization",
                    inserted_at=now,
                    algorithm_version=policy.algorithm_version,
                ),
            )
        elif isinstance(slot, SponsoredSlot):
            entry = FeedEntry(
                kind="sponsored",
                item=slot.item,
                feed_position=position,
                metadata=EntryMetadata(
                    source="sponsored",
                    inserted_at=now,
                    algorithm_version=policy.algorithm_version,
                ),
            )
        else:
            entry = FeedEntry(
                kind="post",
                item=slot.item,
                feed_position=position,
                metadata=EntryMetadata(
                    source=slot.source.value,
                    score=slot.final_score or slot.score,
                    inserted_at=now,
                    algorithm_version=policy.algorithm_version,
                ),
            )
        entries.append(entry)
    return FeedResult(entries=tuple(entries))
