"""
SQLAlchemy implementations of the engine's store interfaces.

Every store takes the async session factory and opens one short session per
call, so stores are safe to share between concurrent lane fetchers.
TiDB DATETIME columns are naive UTC; values are converted at this boundary.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smartfeed.engine.stores import PostQuery
from smartfeed.engine.types import (
    ContentItem,
    ContentType,
    EngagementStats,
    FeedAnalyticsEvent,
    GeoPoint,
    Interaction,
    UserBehaviorProfile,
    UserPreferences,
    VideoStats,
    Visibility,
)
from smartfeed.models import (
    CoinAward,
    FeedAnalytics,
    Follow,
    Post,
    PostTag,
    User,
    UserEngagement,
    UserInteraction,
    UserPreference,
)

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _content_type(value: Optional[str]) -> ContentType:
    try:
        return ContentType(value or ContentType.TEXT.value)
    except ValueError:
        return ContentType.TEXT


def _geo(latitude: Optional[float], longitude: Optional[float]) -> Optional[GeoPoint]:
    if latitude is None or longitude is None:
        return None
    return GeoPoint(latitude=latitude, longitude=longitude)


def post_to_item(post: Post) -> ContentItem:
    video = None
    if post.video_duration_seconds is not None or post.avg_watch_seconds is not None:
        video = VideoStats(
            duration_seconds=post.video_duration_seconds,
            avg_watch_seconds=post.avg_watch_seconds,
        )
    try:
        visibility = Visibility(post.visibility)
    except ValueError:
        visibility = Visibility.PUBLIC

    return ContentItem(
        id=post.post_id,
        author_id=post.user_id,
        content_type=_content_type(post.content_type),
        created_at=_aware_utc(post.created_at),
        stats=EngagementStats(
            likes=post.like_count,
            comments=post.comment_count,
            shares=post.share_count,
            views=post.view_count,
        ),
        visibility=visibility,
        tags=tuple(t.tag for t in post.tags),
        text=post.content or "",
        media_count=post.media_count,
        video=video,
        location=_geo(post.latitude, post.longitude),
        is_sponsored=post.is_sponsored,
    )


# ─────────────────────────── Content ──────────────────────────────────────

class SqlContentStore:
    def __init__(self, sessions: SessionFactory) -> None:
        self.sessions = sessions

    @staticmethod
    def _live():
        return and_(Post.is_published.is_(True), Post.is_deleted.is_(False))

    async def find_posts(self, query: PostQuery) -> list[ContentItem]:
        """Organic posts only; sponsored posts are served through find_sponsored."""
        stmt = select(Post).where(
            self._live(),
            Post.is_sponsored.is_(False),
            Post.visibility.in_([v.value for v in query.visibilities]),
        )
        if query.author_ids is not None:
            stmt = stmt.where(Post.user_id.in_(query.author_ids))
        if query.exclude_author_ids:
            stmt = stmt.where(Post.user_id.notin_(query.exclude_author_ids))
        if query.content_type is not None:
            stmt = stmt.where(Post.content_type == query.content_type.value)
        if query.created_since is not None:
            stmt = stmt.where(Post.created_at >= _naive_utc(query.created_since))
        if query.tags_any:
            tagged = select(PostTag.post_id).where(
                PostTag.tag.in_([t.lower() for t in query.tags_any])
            )
            stmt = stmt.where(Post.post_id.in_(tagged))
        if query.geotagged_only:
            stmt = stmt.where(Post.latitude.is_not(None), Post.longitude.is_not(None))

        stmt = stmt.order_by(Post.created_at.desc()).limit(query.limit)

        async with self.sessions() as session:
            rows = await session.execute(stmt)
            return [post_to_item(p) for p in rows.scalars().all()]

    async def find_sponsored(self, limit: int) -> list[ContentItem]:
        stmt = (
            select(Post)
            .where(self._live(), Post.is_sponsored.is_(True))
            .order_by(Post.created_at.desc())
            .limit(limit)
        )
        async with self.sessions() as session:
            rows = await session.execute(stmt)
            return [post_to_item(p) for p in rows.scalars().all()]


# ─────────────────────────── Social graph ─────────────────────────────────

class SqlFollowGraphStore:
    def __init__(self, sessions: SessionFactory) -> None:
        self.sessions = sessions

    async def get_following(self, user_id: str) -> list[str]:
        stmt = select(Follow.followee_id).where(
            Follow.follower_id == user_id, Follow.status == "active"
        )
        async with self.sessions() as session:
            rows = await session.execute(stmt)
            return list(rows.scalars().all())


# ─────────────────────────── User signals ─────────────────────────────────

class SqlUserSignalStore:
    def __init__(self, sessions: SessionFactory) -> None:
        self.sessions = sessions

    async def get_preferences(self, user_id: str) -> Optional[UserPreferences]:
        async with self.sessions() as session:
            row = await session.get(UserPreference, user_id)
        if row is None:
            return None

        affinity = UserPreferences().content_type_affinity
        affinity.update({k: float(v) for k, v in (row.content_type_affinity or {}).items()})
        return UserPreferences(
            content_type_affinity=affinity,
            topics=tuple(row.topics or ()),
            author_affinity={k: float(v) for k, v in (row.author_affinity or {}).items()},
            location=_geo(row.latitude, row.longitude),
        )

    async def get_behavior(self, user_id: str) -> Optional[UserBehaviorProfile]:
        async with self.sessions() as session:
            row = await session.get(UserEngagement, user_id)
        if row is None:
            return None
        return UserBehaviorProfile(
            engagement_rate=min(1.0, max(0.0, row.engagement_rate)),
            time_on_platform_seconds=row.time_on_platform_seconds,
            last_active_at=_aware_utc(row.last_active_at) if row.last_active_at else None,
        )

    async def get_recent_interactions(self, user_id: str, limit: int) -> list[Interaction]:
        stmt = (
            select(UserInteraction)
            .where(UserInteraction.user_id == user_id)
            .order_by(UserInteraction.created_at.desc())
            .limit(limit)
        )
        async with self.sessions() as session:
            rows = await session.execute(stmt)
            return [
                Interaction(
                    content_type=_content_type(r.content_type) if r.content_type else None,
                    tags=tuple(r.tags or ()),
                    occurred_at=_aware_utc(r.created_at) if r.created_at else None,
                )
                for r in rows.scalars().all()
            ]


# ─────────────────────────── Analytics ────────────────────────────────────

class SqlAnalyticsStore:
    """AnalyticsSink + AnalyticsReader over the feed_analytics table."""

    def __init__(self, sessions: SessionFactory) -> None:
        self.sessions = sessions

    async def record(self, event: FeedAnalyticsEvent) -> None:
        async with self.sessions() as session:
            session.add(
                FeedAnalytics(
                    user_id=event.user_id,
                    feed_size=event.feed_size,
                    weights=event.weights,
                    algorithm_version=event.algorithm_version,
                    is_fallback=event.is_fallback,
                    generated_at=_naive_utc(event.generated_at),
                )
            )
            await session.commit()

    async def list_feed_events(self, user_id: str, since: datetime) -> Sequence[FeedAnalyticsEvent]:
        stmt = (
            select(FeedAnalytics)
            .where(
                FeedAnalytics.user_id == user_id,
                FeedAnalytics.generated_at >= _naive_utc(since),
            )
            .order_by(FeedAnalytics.generated_at.desc())
        )
        async with self.sessions() as session:
            rows = await session.execute(stmt)
            return [
                FeedAnalyticsEvent(
                    user_id=r.user_id,
                    feed_size=r.feed_size,
                    weights=r.weights or {},
                    algorithm_version=r.algorithm_version,
                    is_fallback=r.is_fallback,
                    generated_at=_aware_utc(r.generated_at),
                )
                for r in rows.scalars().all()
            ]


# ─────────────────────────── Coin rewards ─────────────────────────────────

def lock_user_stmt(user_id: str):
    """Row lock on the user; serialises concurrent awards for that user."""
    return select(User.user_id).where(User.user_id == user_id).with_for_update()


def award_since_stmt(user_id: str, post_id: str, since: datetime):
    return (
        select(CoinAward.award_id)
        .where(
            CoinAward.user_id == user_id,
            CoinAward.post_id == post_id,
            CoinAward.created_at >= _naive_utc(since),
        )
        .limit(1)
    )


class SqlRewardLedger:
    def __init__(self, sessions: SessionFactory) -> None:
        self.sessions = sessions

    async def credit_once(
        self,
        user_id: str,
        post_id: str,
        coins: int,
        reason: str,
        view_duration_ms: int,
        since: datetime,
    ) -> bool:
        async with self.sessions() as session:
            async with session.begin():
                locked = await session.execute(lock_user_stmt(user_id))
                if locked.scalar_one_or_none() is None:
                    raise LookupError(f"Unknown user {user_id}")

                existing = await session.execute(award_since_stmt(user_id, post_id, since))
                if existing.scalar_one_or_none() is not None:
                    return False

                session.add(
                    CoinAward(
                        user_id=user_id,
                        post_id=post_id,
                        coins=coins,
                        reason=reason,
                        view_duration_ms=view_duration_ms,
                        created_at=_naive_utc(datetime.now(timezone.utc)),
                    )
                )
                await session.execute(
                    update(User)
                    .where(User.user_id == user_id)
                    .values(coin_balance=User.coin_balance + coins)
                )
        logger.debug("Credited %d coins to %s (%s)", coins, user_id, reason)
        return True
