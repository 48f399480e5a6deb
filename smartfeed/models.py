"""
SQLAlchemy ORM models for TiDB.

Tables:
  users             — user profiles + coin balance
  follows           — social graph edges (follower → followee, with status)
  posts             — post metadata, engagement counters, video stats, geotag
  post_tags         — topic tags per post
  user_preferences  — content-type / topic / author affinities, location
  user_engagement   — behaviour profile (engagement rate, time on platform)
  user_interactions — recent likes / comments / shares with the post's type
  feed_analytics    — one row per generated feed
  coin_awards       — coins credited for viewing posts
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from smartfeed.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    coin_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class Follow(Base):
    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    followee_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    # 'active' | 'pending' | 'blocked' — only active edges feed the following lane
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_follower_status", "follower_id", "status"),
        Index("idx_followee", "followee_id"),
    )


class Post(Base):
    __tablename__ = "posts"

    post_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    content_type: Mapped[str] = mapped_column(String(20), default="text", nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text)
    media_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    visibility: Mapped[str] = mapped_column(String(20), default="public", nullable=False)

    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    share_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    video_duration_seconds: Mapped[Optional[float]] = mapped_column(Float)
    avg_watch_seconds: Mapped[Optional[float]] = mapped_column(Float)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)

    is_sponsored: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    tags = relationship("PostTag", lazy="selectin", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_posts_user", "user_id"),
        Index("idx_posts_created", "created_at"),
        Index("idx_posts_type_created", "content_type", "created_at"),
    )


class PostTag(Base):
    __tablename__ = "post_tags"

    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), primary_key=True
    )
    tag: Mapped[str] = mapped_column(String(100), primary_key=True)

    __table_args__ = (Index("idx_post_tags_tag", "tag"),)


class UserPreference(Base):
    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    content_type_affinity: Mapped[Optional[dict]] = mapped_column(JSON)
    topics: Mapped[Optional[list]] = mapped_column(JSON)
    author_affinity: Mapped[Optional[dict]] = mapped_column(JSON)
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class UserEngagement(Base):
    __tablename__ = "user_engagement"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), primary_key=True
    )
    engagement_rate: Mapped[float] = mapped_column(Float, default=0.5, nullable=False)
    time_on_platform_seconds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_active_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class UserInteraction(Base):
    __tablename__ = "user_interactions"

    interaction_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("posts.post_id"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), default="like", nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(20))
    tags: Mapped[Optional[list]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_interactions_user_created", "user_id", "created_at"),)


class FeedAnalytics(Base):
    __tablename__ = "feed_analytics"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    feed_size: Mapped[int] = mapped_column(Integer, nullable=False)
    weights: Mapped[dict] = mapped_column(JSON, nullable=False)
    algorithm_version: Mapped[str] = mapped_column(String(20), nullable=False)
    is_fallback: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_feed_analytics_user_time", "user_id", "generated_at"),)


class CoinAward(Base):
    __tablename__ = "coin_awards"

    award_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    post_id: Mapped[str] = mapped_column(String(36), nullable=False)
    coins: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    view_duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_coin_awards_user_post", "user_id", "post_id", "created_at"),)
