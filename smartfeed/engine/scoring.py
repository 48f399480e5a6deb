"""
Per-lane scoring functions.

Each lane follows the same shape:

    score = base × freshness × engagement_boost × affinity

where freshness = decay_rate ** age_hours. Trending is the exception: it
scores engagement *velocity* and applies its own exp(-age/24) decay.

All functions are pure and non-negative; `now` is always passed in so scores
are reproducible.
"""
import math
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from smartfeed.engine.policy import FeedPolicy
from smartfeed.engine.types import (
    ContentItem,
    ContentType,
    EngagementStats,
    Interaction,
    UserPreferences,
)


def age_hours(item: ContentItem, now: datetime) -> float:
    created = item.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max((now - created).total_seconds() / 3600.0, 0.0)


def freshness(item: ContentItem, now: datetime, policy: FeedPolicy) -> float:
    return math.pow(policy.freshness_decay_rate, age_hours(item, now))


def engagement_boost(stats: EngagementStats, policy: FeedPolicy) -> float:
    rate = stats.likes / max(1, stats.views)
    return 1.0 + rate * policy.engagement_boost


def interest_overlap(tags: Iterable[str], interests: Iterable[str]) -> float:
    """Jaccard overlap of post tags and user interests, case-insensitive."""
    tag_set = {t.lower() for t in tags}
    interest_set = {i.lower() for i in interests}
    if not tag_set or not interest_set:
        return 0.0
    return len(tag_set & interest_set) / len(tag_set | interest_set)


def content_similarity(item: ContentItem, interactions: Sequence[Interaction]) -> float:
    """Mean similarity of the item to the user's recent interactions."""
    if not interactions:
        return 0.0
    total = 0.0
    for interaction in interactions:
        if interaction.content_type == item.content_type:
            total += 0.3
        if interaction.tags and item.tags:
            total += interest_overlap(item.tags, interaction.tags) * 0.7
    return total / len(interactions)


def favors_type(preferences: UserPreferences, content_type: ContentType, policy: FeedPolicy) -> bool:
    if content_type.value in {t.lower() for t in preferences.topics}:
        return True
    affinity = preferences.content_type_affinity.get(content_type.value, 0.0)
    return affinity >= policy.type_favor_threshold


# ──────────────────────────── Lane scorers ────────────────────────────────

def following_score(
    item: ContentItem,
    preferences: UserPreferences,
    now: datetime,
    policy: FeedPolicy,
) -> float:
    author_affinity = preferences.author_affinity.get(item.author_id, 0.0)
    base = 1.0 + author_affinity * 2
    affinity = preferences.content_type_affinity.get(
        item.content_type.value, policy.default_type_affinity
    )
    score = base * affinity * freshness(item, now, policy) * engagement_boost(item.stats, policy)
    return max(0.0, score)


def personalization_score(
    item: ContentItem,
    preferences: UserPreferences,
    interactions: Sequence[Interaction],
    now: datetime,
    policy: FeedPolicy,
) -> float:
    score = 1.0 + interest_overlap(item.tags, preferences.topics) * 2
    score *= 1.0 + content_similarity(item, interactions)

    if item.content_type == ContentType.VIDEO and favors_type(preferences, ContentType.VIDEO, policy):
        score *= policy.video_affinity_multiplier
    elif item.content_type == ContentType.AUDIO and favors_type(preferences, ContentType.AUDIO, policy):
        score *= policy.audio_affinity_multiplier

    score *= freshness(item, now, policy) * engagement_boost(item.stats, policy)
    return max(0.0, score)


def trending_score(item: ContentItem, now: datetime, policy: FeedPolicy) -> float:
    age = age_hours(item, now)
    hours = max(1.0, age)
    stats = item.stats

    velocity = (
        (stats.likes / hours) * policy.trending_like_weight
        + (stats.comments / hours) * policy.trending_comment_weight
        + (stats.shares / hours) * policy.trending_share_weight
    )
    score = velocity * math.exp(-age / policy.trending_decay_hours)

    if item.content_type == ContentType.VIDEO:
        score *= policy.trending_video_multiplier
    return max(0.0, score)


def novelty(item: ContentItem, history: Sequence[ContentItem]) -> float:
    """How different the item is from what the user was served last time."""
    if not history:
        return 0.5
    similarity = 0.0
    for seen in history:
        if seen.author_id == item.author_id:
            similarity += 0.3
        if seen.content_type == item.content_type:
            similarity += 0.2
    return 1.0 - similarity / len(history)


def discovery_score(
    item: ContentItem,
    history: Sequence[ContentItem],
    now: datetime,
    policy: FeedPolicy,
) -> float:
    quality = 0.0
    if item.media_count > 0:
        quality += 0.2
    if len(item.text) > 100:
        quality += 0.1
    if item.stats.likes > 10:
        quality += 0.2

    score = 1.0 + novelty(item, history) + quality
    if age_hours(item, now) < policy.discovery_fresh_hours:
        score *= policy.discovery_fresh_boost
    return max(0.0, score * freshness(item, now, policy))


def video_score(item: ContentItem, now: datetime, policy: FeedPolicy) -> float:
    score = 1.0
    video = item.video
    duration = video.duration_seconds if video else None

    if duration and video.avg_watch_seconds:
        completion = min(1.0, video.avg_watch_seconds / duration)
        score *= 1.0 + completion * policy.completion_boost

    if duration:
        if duration < policy.short_video_seconds:
            score *= policy.short_video_boost
        elif duration > policy.long_video_seconds:
            score *= policy.long_video_penalty

    engagement = item.stats.likes + item.stats.comments * 2
    score *= 1.0 + engagement / 100.0
    return max(0.0, score * freshness(item, now, policy))


def audio_score(item: ContentItem, now: datetime, policy: FeedPolicy) -> float:
    return max(0.0, freshness(item, now, policy) * engagement_boost(item.stats, policy))


def nearby_score(
    item: ContentItem,
    distance_km: Optional[float],
    now: datetime,
    policy: FeedPolicy,
) -> float:
    proximity = 1.0
    if distance_km is not None and policy.nearby_radius_km > 0:
        proximity = 1.0 / (1.0 + max(0.0, distance_km) / policy.nearby_radius_km)
    score = proximity * freshness(item, now, policy) * engagement_boost(item.stats, policy)
    return max(0.0, score)
