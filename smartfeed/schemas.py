"""
Pydantic request / response schemas for the API layer.

The feed itself is returned as the engine's SmartFeedResponse; the models here
cover the management and rewards endpoints around it.
"""
from typing import Literal, Optional

from pydantic import BaseModel, Field

from smartfeed.engine.types import FeedAnalyticsEvent


# ──────────────────────────── Rewards ─────────────────────────────────────

class ViewRewardRequest(BaseModel):
    user_id: str
    post_id: str
    view_duration_ms: int = Field(..., ge=0)


class ViewRewardResponse(BaseModel):
    awarded: bool
    coins: int = 0
    reason: Optional[str] = None
    error: Optional[str] = None


# ──────────────────────────── Analytics ───────────────────────────────────

Timeframe = Literal["1d", "7d", "30d"]


class EngagementTrend(BaseModel):
    total_engagements: int = 0
    average_per_day: float = 0.0
    trend: Literal["increasing", "decreasing", "stable"] = "stable"
    error: Optional[str] = None


class FeedInsights(BaseModel):
    total_feeds_generated: int = 0
    average_feed_size: float = 0.0
    most_common_source: str = "following"
    engagement_trend: Optional[EngagementTrend] = None


class FeedAnalyticsResponse(BaseModel):
    success: bool
    analytics: list[FeedAnalyticsEvent]
    insights: Optional[FeedInsights] = None
    timeframe: str


# ──────────────────────────── Management ──────────────────────────────────

class InvalidateResponse(BaseModel):
    user_id: str
    evicted_feeds: int


class StatsResponse(BaseModel):
    cache_size: int
    user_preferences: int
    feed_history: int
    algorithm_version: str
