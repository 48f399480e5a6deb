"""
Domain types shared by every stage of the feed pipeline.

ContentItem / AdUnit come from the external stores; ScoredItem exists only for
the duration of one generation; FeedEntry / FeedResult are what gets cached and
returned to callers.
"""
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Lane(str, Enum):
    FOLLOWING = "following"
    FOR_YOU = "for_you"
    TRENDING = "trending"
    DISCOVER = "discover"
    VIDEOS = "videos"
    AUDIO = "audio"
    NEARBY = "nearby"
    PREMIUM = "premium"


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    POLL = "poll"
    LINK = "link"
    EVENT = "event"
    AD = "ad"
    SPONSORED = "sponsored"


class Visibility(str, Enum):
    PUBLIC = "public"
    FOLLOWERS = "followers"


# ──────────────────────────── Content ─────────────────────────────────────

class EngagementStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    likes: int = 0
    comments: int = 0
    shares: int = 0
    views: int = 0


class VideoStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration_seconds: Optional[float] = None
    avg_watch_seconds: Optional[float] = None


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float


class ContentItem(BaseModel):
    """A post as returned by the content store."""
    model_config = ConfigDict(frozen=True)

    id: str
    author_id: str
    content_type: ContentType = ContentType.TEXT
    created_at: datetime
    stats: EngagementStats = Field(default_factory=EngagementStats)
    visibility: Visibility = Visibility.PUBLIC
    tags: tuple[str, ...] = ()
    text: str = ""
    media_count: int = 0
    video: Optional[VideoStats] = None
    location: Optional[GeoPoint] = None
    is_sponsored: bool = False


class AdUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    ad_type: str = "display"
    title: str = "Sponsored"
    body: str = ""
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    link: Optional[str] = None
    advertiser: Optional[str] = None
    cta: str = "Learn More"
    duration_ms: int = 5000


class ScoredItem(BaseModel):
    """A candidate tagged with the lane that produced it. Never persisted."""

    item: ContentItem
    source: Lane
    score: float = Field(ge=0.0)
    final_score: float = 0.0


# ──────────────────────────── Users ───────────────────────────────────────

def _default_type_affinity() -> dict[str, float]:
    return {"text": 0.5, "image": 0.8, "video": 0.9, "audio": 0.4, "poll": 0.3}


class UserPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    content_type_affinity: dict[str, float] = Field(default_factory=_default_type_affinity)
    topics: tuple[str, ...] = ()
    author_affinity: dict[str, float] = Field(default_factory=dict)
    location: Optional[GeoPoint] = None


class UserBehaviorProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    engagement_rate: float = Field(default=0.5, ge=0.0, le=1.0)
    time_on_platform_seconds: float = 0.0
    last_active_at: Optional[datetime] = None


class Interaction(BaseModel):
    """One recent engagement of the user, used for content similarity."""
    model_config = ConfigDict(frozen=True)

    content_type: Optional[ContentType] = None
    tags: tuple[str, ...] = ()
    occurred_at: Optional[datetime] = None


# ──────────────────────────── Requests ────────────────────────────────────

class FeedOptions(BaseModel):
    """Every option get_smart_feed recognises."""
    model_config = ConfigDict(frozen=True)

    force_refresh: bool = False     # bypass (and overwrite) the cached feed
    limit: int = Field(default=20, ge=1, le=100)  # max organic posts
    ads: bool = True                # insert an ad every ad_interval posts
    sponsored: bool = True          # probabilistic sponsored insertion

    def cache_fields(self) -> dict:
        return self.model_dump(exclude={"force_refresh"})


# ──────────────────────────── Results ─────────────────────────────────────

class EntryMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    score: Optional[float] = None
    inserted_at: datetime
    algorithm_version: str


class FeedEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["post", "ad", "sponsored"]
    item: Optional[ContentItem] = None
    ad: Optional[AdUnit] = None
    feed_position: int
    metadata: EntryMetadata

    @property
    def entry_id(self) -> str:
        if self.item is not None:
            return self.item.id
        return self.ad.id if self.ad else ""


class FeedResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    entries: tuple[FeedEntry, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)


class FeedMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    generated_at: datetime
    source_counts: dict[str, int] = Field(default_factory=dict)
    weights: dict[str, float] = Field(default_factory=dict)
    algorithm_version: str
    is_fallback: bool = False
    error: Optional[str] = None


class CachedFeed(BaseModel):
    model_config = ConfigDict(frozen=True)

    feed: FeedResult
    metadata: FeedMetadata
    stored_at: float              # epoch seconds


class SmartFeedResponse(BaseModel):
    success: bool
    feed: FeedResult = Field(default_factory=FeedResult)
    metadata: Optional[FeedMetadata] = None
    cached: bool = False
    error: Optional[str] = None
    operation_id: str
    duration_ms: float = 0.0


class FeedAnalyticsEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    feed_size: int
    weights: dict[str, float]
    algorithm_version: str
    is_fallback: bool = False
    generated_at: datetime


class FeedError(Exception):
    """Base class for feed engine failures."""


class NoCandidatesError(FeedError):
    """Raised when no lane produced a single candidate."""
