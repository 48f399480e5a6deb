#!/usr/bin/env python3
"""
Seed script — creates a realistic dataset for exercising the smart feed.

Creates, directly in TiDB:
  • 10 users with engagement profiles and content preferences
  • A follow graph (each user follows 4 others)
  • 8 posts per user across text / image / video / audio / poll, tagged,
    some geotagged, spread over the last 3 days
  • 5 sponsored posts
  • Recent interactions per user (for the personalization lane)

Run after docker compose up (uses the same TIDB_* settings as the API):
  python scripts/seed_data.py --posts-per-user 8

All IDs are printed so you can use them in curl commands.
"""
import argparse
import asyncio
import random
import uuid
from datetime import datetime, timedelta, timezone

from smartfeed.database import AsyncSessionLocal, dispose_db, init_db
from smartfeed.models import (
    Follow,
    Post,
    PostTag,
    User,
    UserEngagement,
    UserInteraction,
    UserPreference,
)

BASE_USERS = [
    ("alice_ai", "Alice Chen"),
    ("bob_builder", "Bob Martinez"),
    ("carol_codes", "Carol Singh"),
    ("dave_designs", "Dave Kim"),
    ("eve_engineer", "Eve Johnson"),
    ("frank_feeds", "Frank Williams"),
    ("grace_graphs", "Grace Li"),
    ("henry_hpc", "Henry Brown"),
    ("iris_infra", "Iris Davis"),
    ("jack_ml", "Jack Wilson"),
]

TOPICS = ["music", "travel", "food", "tech", "fitness", "art", "gaming", "news"]

SAMPLE_POSTS = [
    "Just shipped a new feature to production 🚀 Zero downtime deploys are beautiful.",
    "Sunset run along the river today. 10k in under 50 minutes!",
    "Tried the new ramen place downtown. The broth is unreal.",
    "New track dropping Friday. Here's a 30 second preview.",
    "Which city should I visit next: Lisbon, Kyoto or Mexico City?",
    "Finished my first watercolour landscape. Feedback welcome.",
    "Speedrun attempt #42. So close to the world record.",
    "The feed latency histogram shows p99 at 120ms. Time to optimise ranking.",
    "Podcast episode 12 is live: building products people actually want.",
    "Morning routine: coffee, journaling, then 20 minutes of stretching.",
]

# (content_type, media_count, video duration seconds)
POST_SHAPES = [
    ("text", 0, None),
    ("image", 1, None),
    ("image", 3, None),
    ("video", 1, 45.0),
    ("video", 1, 900.0),
    ("audio", 1, None),
    ("poll", 0, None),
]

# A few neighbourhoods for the nearby lane
LOCATIONS = [(40.7128, -74.0060), (40.7306, -73.9352), (34.0522, -118.2437)]


def _id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_post(user_id: str, rng: random.Random, sponsored: bool = False) -> Post:
    content_type, media_count, duration = rng.choice(POST_SHAPES)
    views = rng.randint(10, 2000)
    location = rng.choice(LOCATIONS) if rng.random() < 0.3 else None
    post = Post(
        post_id=_id(),
        user_id=user_id,
        content_type=content_type,
        content=rng.choice(SAMPLE_POSTS),
        media_count=media_count,
        visibility="followers" if rng.random() < 0.1 else "public",
        like_count=rng.randint(0, views // 4),
        comment_count=rng.randint(0, 40),
        share_count=rng.randint(0, 20),
        view_count=views,
        video_duration_seconds=duration,
        avg_watch_seconds=duration * rng.uniform(0.2, 1.0) if duration else None,
        latitude=location[0] if location else None,
        longitude=location[1] if location else None,
        is_sponsored=sponsored,
        created_at=_now() - timedelta(minutes=rng.randint(1, 3 * 24 * 60)),
    )
    post.tags = [PostTag(tag=t) for t in rng.sample(TOPICS, k=rng.randint(1, 3))]
    return post


async def seed(posts_per_user: int, seed_value: int) -> None:
    rng = random.Random(seed_value)
    await init_db()

    async with AsyncSessionLocal() as session:
        # ── Users + signals ──────────────────────────────────────────────
        print("Creating users...")
        users = [User(user_id=_id(), username=u, display_name=d) for u, d in BASE_USERS]
        session.add_all(users)
        await session.flush()
        user_ids = [u.user_id for u in users]
        for user in users:
            print(f"  ✓ {user.username} ({user.user_id})")
            location = rng.choice(LOCATIONS)
            session.add(
                UserPreference(
                    user_id=user.user_id,
                    content_type_affinity={
                        "text": round(rng.uniform(0.2, 0.9), 2),
                        "image": round(rng.uniform(0.4, 1.0), 2),
                        "video": round(rng.uniform(0.4, 1.0), 2),
                        "audio": round(rng.uniform(0.1, 0.8), 2),
                        "poll": round(rng.uniform(0.1, 0.6), 2),
                    },
                    topics=rng.sample(TOPICS, k=3),
                    author_affinity={},
                    latitude=location[0],
                    longitude=location[1],
                )
            )
            session.add(
                UserEngagement(
                    user_id=user.user_id,
                    engagement_rate=round(rng.uniform(0.1, 0.95), 2),
                    time_on_platform_seconds=rng.choice([60.0, 3600.0, 86400.0]),
                    last_active_at=_now(),
                )
            )

        # ── Follow graph ─────────────────────────────────────────────────
        print("\nCreating follow relationships...")
        for follower_id in user_ids:
            followees = rng.sample([u for u in user_ids if u != follower_id], k=4)
            for followee_id in followees:
                session.add(Follow(follower_id=follower_id, followee_id=followee_id))
        print("  ✓ Follow graph created")

        # ── Posts ────────────────────────────────────────────────────────
        print("\nCreating posts...")
        posts = [make_post(uid, rng) for uid in user_ids for _ in range(posts_per_user)]
        posts += [make_post(rng.choice(user_ids), rng, sponsored=True) for _ in range(5)]
        session.add_all(posts)
        await session.flush()
        print(f"  ✓ {len(posts)} posts created (5 sponsored)")

        # ── Interactions ─────────────────────────────────────────────────
        print("\nAdding interactions...")
        interactions = 0
        organic = [p for p in posts if not p.is_sponsored]
        for user_id in user_ids:
            for post in rng.sample(organic, k=min(15, len(organic))):
                session.add(
                    UserInteraction(
                        user_id=user_id,
                        post_id=post.post_id,
                        kind=rng.choice(["like", "comment", "share"]),
                        content_type=post.content_type,
                        tags=[t.tag for t in post.tags],
                        created_at=_now() - timedelta(minutes=rng.randint(1, 600)),
                    )
                )
                interactions += 1
        print(f"  ✓ {interactions} interactions added")

        await session.commit()

    await dispose_db()

    # ── Print summary ────────────────────────────────────────────────────
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    u = user_ids[0]
    print(f"# Get the smart feed for user '{BASE_USERS[0][0]}':")
    print(f"  curl -s 'http://localhost:8000/feed/?user_id={u}' | python3 -m json.tool\n")
    print("# Force a regeneration:")
    print(f"  curl -s 'http://localhost:8000/feed/?user_id={u}&force_refresh=true'\n")
    print("# Feed insights for the last week:")
    print(f"  curl -s 'http://localhost:8000/feed/analytics/{u}?timeframe=7d'\n")
    print("# Check Jaeger traces: http://localhost:16686")
    print("# Check Prometheus: http://localhost:9090")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the SmartFeed database")
    parser.add_argument("--posts-per-user", type=int, default=8, help="Organic posts per user")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    args = parser.parse_args()
    asyncio.run(seed(args.posts_per_user, args.seed))
