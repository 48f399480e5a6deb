"""Tests for per-lane scoring functions."""

import pytest

from smartfeed.engine import scoring
from smartfeed.engine.policy import FeedPolicy
from smartfeed.engine.types import ContentType, Interaction, UserPreferences
from tests.fakes import NOW, make_post

POLICY = FeedPolicy()


def test_freshness_decays_with_age() -> None:
    assert scoring.freshness(make_post("p", hours_old=0), NOW, POLICY) == pytest.approx(1.0)
    assert scoring.freshness(make_post("p", hours_old=2), NOW, POLICY) == pytest.approx(0.95**2)


def test_future_posts_are_treated_as_brand_new() -> None:
    assert scoring.age_hours(make_post("p", hours_old=-3), NOW) == 0.0


@pytest.mark.parametrize(
    "score_fn",
    [
        lambda item: scoring.following_score(item, UserPreferences(), NOW, POLICY),
        lambda item: scoring.personalization_score(item, UserPreferences(topics=("music",)), [], NOW, POLICY),
        lambda item: scoring.trending_score(item, NOW, POLICY),
        lambda item: scoring.discovery_score(item, [], NOW, POLICY),
        lambda item: scoring.video_score(item, NOW, POLICY),
        lambda item: scoring.audio_score(item, NOW, POLICY),
        lambda item: scoring.nearby_score(item, 3.0, NOW, POLICY),
    ],
)
def test_older_item_never_scores_higher(score_fn) -> None:
    ages = [0.5, 2, 6, 23, 25, 48, 200]
    scores = [
        score_fn(make_post("p", hours_old=age, likes=40, comments=5, shares=2, views=100, tags=("music",)))
        for age in ages
    ]

    assert all(s >= 0 for s in scores)
    assert scores == sorted(scores, reverse=True)


def test_engagement_boost_uses_like_rate() -> None:
    post = make_post("p", likes=50, views=100)

    assert scoring.engagement_boost(post.stats, POLICY) == pytest.approx(1.75)


def test_engagement_boost_without_views_does_not_divide_by_zero() -> None:
    post = make_post("p", likes=2, views=0)

    assert scoring.engagement_boost(post.stats, POLICY) == pytest.approx(4.0)


def test_interest_overlap_is_case_insensitive_jaccard() -> None:
    assert scoring.interest_overlap(["Music", "travel"], ["music", "food"]) == pytest.approx(1 / 3)
    assert scoring.interest_overlap([], ["music"]) == 0.0


def test_following_score_uses_author_and_type_affinity() -> None:
    prefs = UserPreferences(author_affinity={"a1": 0.5})
    post = make_post("p", author_id="a1", content_type=ContentType.VIDEO, hours_old=0)

    # (1 + 0.5 * 2) * video affinity 0.9
    assert scoring.following_score(post, prefs, NOW, POLICY) == pytest.approx(1.8)


def test_following_score_defaults_unknown_type_affinity() -> None:
    post = make_post("p", content_type=ContentType.LINK, hours_old=0)

    assert scoring.following_score(post, UserPreferences(), NOW, POLICY) == pytest.approx(0.5)


def test_personalization_rewards_interest_overlap_and_similarity() -> None:
    prefs = UserPreferences(topics=("music",))
    matching = make_post("m", tags=("music",), hours_old=0)
    unrelated = make_post("u", tags=("finance",), hours_old=0)
    history = [Interaction(content_type=ContentType.TEXT, tags=("music",))]

    assert scoring.personalization_score(matching, prefs, history, NOW, POLICY) == pytest.approx(6.0)
    assert scoring.personalization_score(unrelated, prefs, history, NOW, POLICY) == pytest.approx(1.3)


def test_personalization_boosts_favored_video() -> None:
    prefs = UserPreferences(content_type_affinity={"video": 0.9})
    video = make_post("v", content_type=ContentType.VIDEO, hours_old=0)

    assert scoring.personalization_score(video, prefs, [], NOW, POLICY) == pytest.approx(1.5)


def test_trending_scores_engagement_velocity() -> None:
    post = make_post("p", hours_old=0.5, likes=10, comments=5, shares=2)

    # hours floored at 1: 10 + 10 + 6, decayed by exp(-0.5 / 24)
    expected = 26 * 0.979383
    assert scoring.trending_score(post, NOW, POLICY) == pytest.approx(expected, rel=1e-4)


def test_trending_boosts_video() -> None:
    text = make_post("t", hours_old=2, likes=10)
    video = make_post("v", content_type=ContentType.VIDEO, hours_old=2, likes=10)

    assert scoring.trending_score(video, NOW, POLICY) == pytest.approx(
        scoring.trending_score(text, NOW, POLICY) * 1.3
    )


def test_discovery_novelty_defaults_without_history() -> None:
    post = make_post("p", hours_old=0)

    # (1 + 0.5 novelty) * 1.5 fresh boost
    assert scoring.discovery_score(post, [], NOW, POLICY) == pytest.approx(2.25)


def test_discovery_quality_signals() -> None:
    post = make_post("p", hours_old=0, media_count=1, text="x" * 120, likes=11)

    assert scoring.discovery_score(post, [], NOW, POLICY) == pytest.approx((1.5 + 0.5) * 1.5)


def test_novelty_penalises_repeated_author_and_type() -> None:
    seen = [make_post("s", author_id="a1")]

    assert scoring.novelty(make_post("p", author_id="a1"), seen) == pytest.approx(0.5)
    assert scoring.novelty(make_post("p", author_id="a2", content_type=ContentType.IMAGE), seen) == 1.0


def test_short_videos_beat_long_videos() -> None:
    short = make_post("s", content_type=ContentType.VIDEO, hours_old=0, duration=30, avg_watch=30)
    long = make_post("l", content_type=ContentType.VIDEO, hours_old=0, duration=900, avg_watch=900)

    assert scoring.video_score(short, NOW, POLICY) == pytest.approx(3 * 1.5)
    assert scoring.video_score(long, NOW, POLICY) == pytest.approx(3 * 0.7)


def test_nearby_score_decays_with_distance() -> None:
    post = make_post("p", hours_old=0)

    assert scoring.nearby_score(post, 0.0, NOW, POLICY) == pytest.approx(1.0)
    assert scoring.nearby_score(post, 25.0, NOW, POLICY) == pytest.approx(0.5)
