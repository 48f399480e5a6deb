"""
Tunable parameters of the feed engine.

Every constant the ranking pipeline depends on lives here so it can be
overridden per deployment (see Settings.policy, e.g. POLICY__AD_INTERVAL=7).
Defaults reproduce the observed production behaviour; none of them is known
to be optimal.
"""
from pydantic import BaseModel, ConfigDict, Field

from smartfeed.engine.types import Lane


def _base_weights() -> dict[str, float]:
    return {
        Lane.FOLLOWING.value: 0.35,
        Lane.FOR_YOU.value: 0.25,
        Lane.TRENDING.value: 0.15,
        Lane.DISCOVER.value: 0.10,
        Lane.VIDEOS.value: 0.08,
        Lane.AUDIO.value: 0.04,
        Lane.NEARBY.value: 0.02,
        Lane.PREMIUM.value: 0.01,
    }


def _activation_thresholds() -> dict[str, float]:
    return {
        Lane.FOLLOWING.value: 0.10,
        Lane.FOR_YOU.value: 0.10,
        Lane.TRENDING.value: 0.10,
        Lane.DISCOVER.value: 0.10,
        Lane.VIDEOS.value: 0.05,
        Lane.AUDIO.value: 0.03,
        Lane.NEARBY.value: 0.02,
    }


class FeedPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    algorithm_version: str = "v4"

    # ── Lane weights ───────────────────────────────────────────────────────
    base_weights: dict[str, float] = Field(default_factory=_base_weights)
    activation_thresholds: dict[str, float] = Field(default_factory=_activation_thresholds)
    high_engagement_rate: float = 0.7
    new_user_seconds: float = 300.0
    daytime_start_hour: int = 8
    daytime_end_hour: int = 17          # inclusive
    timezone: str = "UTC"

    # ── Fetching ───────────────────────────────────────────────────────────
    max_items_per_source: int = 50
    candidate_pool_size: int = 100      # trending / discover / nearby over-fetch
    trending_window_hours: float = 24.0
    interest_query_limit: int = 10
    max_items_per_topic: int = 3
    nearby_radius_km: float = 25.0
    interaction_history_size: int = 50

    # ── Scoring ────────────────────────────────────────────────────────────
    freshness_decay_rate: float = 0.95  # per hour, compounding
    engagement_boost: float = 1.5
    default_type_affinity: float = 0.5
    type_favor_threshold: float = 0.7
    video_affinity_multiplier: float = 1.5
    audio_affinity_multiplier: float = 1.3
    trending_like_weight: float = 1.0
    trending_comment_weight: float = 2.0
    trending_share_weight: float = 3.0
    trending_decay_hours: float = 24.0
    trending_video_multiplier: float = 1.3
    discovery_fresh_hours: float = 24.0
    discovery_fresh_boost: float = 1.5
    short_video_seconds: float = 60.0
    long_video_seconds: float = 600.0
    short_video_boost: float = 1.5
    long_video_penalty: float = 0.7
    completion_boost: float = 2.0

    # ── Diversity ──────────────────────────────────────────────────────────
    max_same_author: int = 2
    max_same_type: int = 3
    min_distinct_authors: int = 5
    min_distinct_types: int = 3
    diversity_min_items: int = 20
    feed_history_size: int = 20

    # ── Monetization ───────────────────────────────────────────────────────
    ad_interval: int = 5
    sponsored_ratio: float = 0.05
    sponsored_pool_size: int = 10

    # ── Fallback ───────────────────────────────────────────────────────────
    fallback_size: int = 20

    # ── Preloading ─────────────────────────────────────────────────────────
    preload_count: int = 10

    def threshold_for(self, lane: Lane) -> float:
        return self.activation_thresholds.get(lane.value, 0.1)
