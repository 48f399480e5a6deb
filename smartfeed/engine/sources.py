"""
Source fetchers — one per lane.

Every fetcher queries the content store, scores what comes back with its lane
scorer and returns at most `max_items_per_source` ScoredItems. fetch_all_sources
runs the activated fetchers concurrently and waits for every one of them to
settle; a failing lane is logged and contributes nothing, it never cancels the
other lanes or fails the request.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Sequence

import numpy as np

from smartfeed.engine import scoring
from smartfeed.engine.policy import FeedPolicy
from smartfeed.engine.stores import (
    ContentStore,
    FollowGraphStore,
    PostQuery,
    UserSignalStore,
)
from smartfeed.engine.types import (
    ContentItem,
    ContentType,
    FeedOptions,
    GeoPoint,
    Lane,
    ScoredItem,
    UserPreferences,
    Visibility,
)
from smartfeed.telemetry import FEED_CANDIDATES_TOTAL, SOURCE_FAILURES_TOTAL

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088

Clock = Callable[[], datetime]
HistoryLookup = Callable[[str], Sequence[ContentItem]]


def _by_score(items: list[ScoredItem]) -> list[ScoredItem]:
    # sorted() is stable: equal scores keep store order
    return sorted(items, key=lambda s: s.score, reverse=True)


def haversine_km(origin: GeoPoint, points: Sequence[GeoPoint]) -> np.ndarray:
    """Great-circle distance from origin to every point, in kilometres."""
    if not points:
        return np.array([], dtype=np.float64)
    lat = np.radians(np.array([p.latitude for p in points], dtype=np.float64))
    lon = np.radians(np.array([p.longitude for p in points], dtype=np.float64))
    lat0 = np.radians(origin.latitude)
    lon0 = np.radians(origin.longitude)

    a = (
        np.sin((lat - lat0) / 2.0) ** 2
        + np.cos(lat0) * np.cos(lat) * np.sin((lon - lon0) / 2.0) ** 2
    )
    return 2.0 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))


class SourceFetcher:
    """Base class: subclasses implement `_fetch` for one lane."""

    lane: Lane

    def __init__(self, content: ContentStore, policy: FeedPolicy, clock: Clock) -> None:
        self.content = content
        self.policy = policy
        self.clock = clock

    def is_active(self, weights: dict[str, float], preferences: UserPreferences) -> bool:
        return weights.get(self.lane.value, 0.0) > self.policy.threshold_for(self.lane)

    async def fetch(
        self,
        user_id: str,
        preferences: UserPreferences,
        weights: dict[str, float],
        options: FeedOptions,
    ) -> list[ScoredItem]:
        items = await self._fetch(user_id, preferences, weights, options)
        return items[: self.policy.max_items_per_source]

    async def _fetch(
        self,
        user_id: str,
        preferences: UserPreferences,
        weights: dict[str, float],
        options: FeedOptions,
    ) -> list[ScoredItem]:
        raise NotImplementedError

    def _scored(self, item: ContentItem, score: float) -> ScoredItem:
        return ScoredItem(item=item, source=self.lane, score=score)


class FollowingFetcher(SourceFetcher):
    lane = Lane.FOLLOWING

    def __init__(self, content, follows: FollowGraphStore, policy, clock) -> None:
        super().__init__(content, policy, clock)
        self.follows = follows

    async def _fetch(self, user_id, preferences, weights, options):
        following = await self.follows.get_following(user_id)
        if not following:
            return []

        posts = await self.content.find_posts(
            PostQuery(
                author_ids=tuple(following),
                visibilities=(Visibility.PUBLIC, Visibility.FOLLOWERS),
                limit=self.policy.max_items_per_source,
            )
        )
        now = self.clock()
        return [
            self._scored(p, scoring.following_score(p, preferences, now, self.policy))
            for p in posts
        ]


class ForYouFetcher(SourceFetcher):
    lane = Lane.FOR_YOU

    def __init__(self, content, signals: UserSignalStore, policy, clock) -> None:
        super().__init__(content, policy, clock)
        self.signals = signals

    async def _fetch(self, user_id, preferences, weights, options):
        interests = tuple(preferences.topics[: self.policy.interest_query_limit])
        posts = await self.content.find_posts(
            PostQuery(tags_any=interests, limit=self.policy.max_items_per_source)
        )
        if not posts:
            return []

        try:
            interactions = await self.signals.get_recent_interactions(
                user_id, self.policy.interaction_history_size
            )
        except Exception as exc:
            logger.debug("Interaction history unavailable for %s: %s", user_id, exc)
            interactions = []

        now = self.clock()
        return _by_score([
            self._scored(
                p,
                scoring.personalization_score(p, preferences, interactions, now, self.policy),
            )
            for p in posts
        ])


class TrendingFetcher(SourceFetcher):
    lane = Lane.TRENDING

    async def _fetch(self, user_id, preferences, weights, options):
        now = self.clock()
        posts = await self.content.find_posts(
            PostQuery(
                created_since=now - timedelta(hours=self.policy.trending_window_hours),
                limit=self.policy.candidate_pool_size,
            )
        )
        return _by_score([
            self._scored(p, scoring.trending_score(p, now, self.policy)) for p in posts
        ])


class DiscoverFetcher(SourceFetcher):
    lane = Lane.DISCOVER

    def __init__(self, content, follows: FollowGraphStore, history: HistoryLookup, policy, clock) -> None:
        super().__init__(content, policy, clock)
        self.follows = follows
        self.history = history

    async def _fetch(self, user_id, preferences, weights, options):
        following = await self.follows.get_following(user_id)
        excluded = set(following) | {user_id}

        posts = await self.content.find_posts(
            PostQuery(
                exclude_author_ids=tuple(sorted(excluded)),
                limit=self.policy.candidate_pool_size,
            )
        )
        now = self.clock()
        history = self.history(user_id)
        ranked = _by_score([
            self._scored(p, scoring.discovery_score(p, history, now, self.policy))
            for p in posts
            if p.author_id not in excluded
        ])
        return self._cap_per_topic(ranked)

    def _cap_per_topic(self, ranked: list[ScoredItem]) -> list[ScoredItem]:
        """Keep an item only while at least one of its topics is under the cap."""
        cap = self.policy.max_items_per_topic
        per_topic: dict[str, int] = {}
        kept: list[ScoredItem] = []

        for candidate in ranked:
            topics = [t.lower() for t in candidate.item.tags] or [""]
            if all(per_topic.get(t, 0) >= cap for t in topics):
                continue
            for t in topics:
                per_topic[t] = per_topic.get(t, 0) + 1
            kept.append(candidate)
            if len(kept) >= self.policy.max_items_per_source:
                break
        return kept


class VideoFetcher(SourceFetcher):
    lane = Lane.VIDEOS

    async def _fetch(self, user_id, preferences, weights, options):
        posts = await self.content.find_posts(
            PostQuery(content_type=ContentType.VIDEO, limit=self.policy.max_items_per_source)
        )
        now = self.clock()
        return [self._scored(p, scoring.video_score(p, now, self.policy)) for p in posts]


class AudioFetcher(SourceFetcher):
    lane = Lane.AUDIO

    async def _fetch(self, user_id, preferences, weights, options):
        posts = await self.content.find_posts(
            PostQuery(content_type=ContentType.AUDIO, limit=self.policy.max_items_per_source)
        )
        now = self.clock()
        return [self._scored(p, scoring.audio_score(p, now, self.policy)) for p in posts]


class NearbyFetcher(SourceFetcher):
    lane = Lane.NEARBY

    def is_active(self, weights, preferences):
        return preferences.location is not None and super().is_active(weights, preferences)

    async def _fetch(self, user_id, preferences, weights, options):
        origin = preferences.location
        if origin is None:
            return []

        posts = await self.content.find_posts(
            PostQuery(geotagged_only=True, limit=self.policy.candidate_pool_size)
        )
        located = [p for p in posts if p.location is not None]
        distances = haversine_km(origin, [p.location for p in located])

        now = self.clock()
        scored = [
            self._scored(p, scoring.nearby_score(p, float(d), now, self.policy))
            for p, d in zip(located, distances)
            if d <= self.policy.nearby_radius_km
        ]
        return _by_score(scored)


async def fetch_all_sources(
    fetchers: Sequence[SourceFetcher],
    user_id: str,
    preferences: UserPreferences,
    weights: dict[str, float],
    options: FeedOptions,
) -> dict[Lane, list[ScoredItem]]:
    """
    Launch every activated fetcher at once and join on all of them.

    Returns one slot per activated lane; a lane whose fetch raised gets an
    empty list.
    """
    active = [f for f in fetchers if f.is_active(weights, preferences)]
    if not active:
        return {}

    results = await asyncio.gather(
        *[f.fetch(user_id, preferences, weights, options) for f in active],
        return_exceptions=True,
    )

    sources: dict[Lane, list[ScoredItem]] = {}
    for fetcher, result in zip(active, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.warning(
                "%s lane failed for user %s: %s", fetcher.lane.value, user_id, result
            )
            SOURCE_FAILURES_TOTAL.labels(lane=fetcher.lane.value).inc()
            sources[fetcher.lane] = []
            continue
        sources[fetcher.lane] = result
        FEED_CANDIDATES_TOTAL.labels(lane=fetcher.lane.value).inc(len(result))
    return sources


def build_fetchers(
    content: ContentStore,
    follows: FollowGraphStore,
    signals: UserSignalStore,
    history: HistoryLookup,
    policy: FeedPolicy,
    clock: Clock,
) -> list[SourceFetcher]:
    return [
        FollowingFetcher(content, follows, policy, clock),
        ForYouFetcher(content, signals, policy, clock),
        TrendingFetcher(content, policy, clock),
        DiscoverFetcher(content, follows, history, policy, clock),
        VideoFetcher(content, policy, clock),
        AudioFetcher(content, policy, clock),
        NearbyFetcher(content, policy, clock),
    ]
