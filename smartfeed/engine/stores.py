"""
Interfaces of the engine's external collaborators.

The engine only depends on these protocols; sql_store.py and the ad / analytics
clients provide the production implementations, tests provide in-memory fakes.
"""
from datetime import datetime
from typing import Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict

from smartfeed.engine.types import (
    AdUnit,
    ContentItem,
    ContentType,
    FeedAnalyticsEvent,
    Interaction,
    UserBehaviorProfile,
    UserPreferences,
    Visibility,
)


class PostQuery(BaseModel):
    """
    Filter for ContentStore.find_posts. Results are always published,
    non-deleted posts ordered by creation time, newest first.
    """
    model_config = ConfigDict(frozen=True)

    author_ids: Optional[tuple[str, ...]] = None
    exclude_author_ids: tuple[str, ...] = ()
    content_type: Optional[ContentType] = None
    visibilities: tuple[Visibility, ...] = (Visibility.PUBLIC,)
    created_since: Optional[datetime] = None
    tags_any: tuple[str, ...] = ()
    geotagged_only: bool = False
    limit: int = 50


class ContentStore(Protocol):
    async def find_posts(self, query: PostQuery) -> list[ContentItem]: ...

    async def find_sponsored(self, limit: int) -> list[ContentItem]: ...


class FollowGraphStore(Protocol):
    async def get_following(self, user_id: str) -> list[str]: ...


class UserSignalStore(Protocol):
    async def get_preferences(self, user_id: str) -> Optional[UserPreferences]: ...

    async def get_behavior(self, user_id: str) -> Optional[UserBehaviorProfile]: ...

    async def get_recent_interactions(self, user_id: str, limit: int) -> list[Interaction]: ...


class AdProvider(Protocol):
    async def get_ad(self, user_id: str, slot_index: int) -> Optional[AdUnit]: ...

    async def get_sponsored_post(self, user_id: str, slot_index: int) -> Optional[ContentItem]: ...


class AnalyticsSink(Protocol):
    async def record(self, event: FeedAnalyticsEvent) -> None: ...


class AnalyticsReader(Protocol):
    async def list_feed_events(self, user_id: str, since: datetime) -> Sequence[FeedAnalyticsEvent]: ...


class RewardLedger(Protocol):
    async def credit_once(
        self,
        user_id: str,
        post_id: str,
        coins: int,
        reason: str,
        view_duration_ms: int,
        since: datetime,
    ) -> bool:
        """Credit unless (user, post) already has an award since `since`.

        The check and the credit must be atomic: concurrent calls for the
        same (user, post) credit at most once. Returns whether it credited.
        """
        ...
