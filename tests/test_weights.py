"""Tests for lane weight calculation."""

import itertools
from datetime import datetime, timezone

import pytest

from smartfeed.engine.policy import FeedPolicy
from smartfeed.engine.types import UserBehaviorProfile, UserPreferences
from smartfeed.engine.weights import compute_lane_weights, is_daytime
from tests.fakes import NIGHT, NOW

POLICY = FeedPolicy()


def _behavior(engagement: float, seconds: float) -> UserBehaviorProfile:
    return UserBehaviorProfile(engagement_rate=engagement, time_on_platform_seconds=seconds)


def test_highly_engaged_user_shifts_weight_to_for_you() -> None:
    weights = compute_lane_weights(UserPreferences(), _behavior(0.9, 10_000), NOW, POLICY)

    assert weights["for_you"] > 0.25
    assert weights["following"] < 0.35


@pytest.mark.parametrize(
    "engagement,seconds,now",
    list(itertools.product([0.0, 0.5, 0.71, 1.0], [0, 299, 300, 10_000], [NOW, NIGHT])),
)
def test_weights_are_normalized_and_non_negative(engagement, seconds, now) -> None:
    weights = compute_lane_weights(UserPreferences(), _behavior(engagement, seconds), now, POLICY)

    assert sum(weights.values()) == pytest.approx(1.0)
    assert all(w >= 0 for w in weights.values())


def test_new_user_adjustment_clamps_following_at_zero() -> None:
    policy = FeedPolicy(base_weights={**POLICY.base_weights, "following": 0.1})
    weights = compute_lane_weights(UserPreferences(), _behavior(0.5, 0), NOW, policy)

    assert weights["following"] == 0.0
    assert sum(weights.values()) == pytest.approx(1.0)


def test_high_engagement_takes_precedence_over_new_user() -> None:
    engaged_newcomer = compute_lane_weights(UserPreferences(), _behavior(0.9, 10), NOW, POLICY)
    engaged_veteran = compute_lane_weights(UserPreferences(), _behavior(0.9, 10_000), NOW, POLICY)

    assert engaged_newcomer == engaged_veteran


def test_night_favors_videos_and_audio() -> None:
    day = compute_lane_weights(UserPreferences(), _behavior(0.5, 10_000), NOW, POLICY)
    night = compute_lane_weights(UserPreferences(), _behavior(0.5, 10_000), NIGHT, POLICY)

    assert night["videos"] > day["videos"]
    assert night["audio"] > day["audio"]
    assert night["discover"] < day["discover"]


def test_weights_are_deterministic() -> None:
    behavior = _behavior(0.3, 50)
    first = compute_lane_weights(UserPreferences(), behavior, NOW, POLICY)
    second = compute_lane_weights(UserPreferences(), behavior, NOW, POLICY)

    assert first == second


def test_premium_slot_is_kept() -> None:
    weights = compute_lane_weights(UserPreferences(), _behavior(0.5, 10_000), NOW, POLICY)

    assert weights["premium"] > 0


def test_daytime_boundaries_are_inclusive() -> None:
    assert is_daytime(datetime(2026, 3, 4, 8, 0, tzinfo=timezone.utc), POLICY)
    assert is_daytime(datetime(2026, 3, 4, 17, 59, tzinfo=timezone.utc), POLICY)
    assert not is_daytime(datetime(2026, 3, 4, 18, 0, tzinfo=timezone.utc), POLICY)
    assert not is_daytime(datetime(2026, 3, 4, 7, 59, tzinfo=timezone.utc), POLICY)


def test_daytime_uses_policy_timezone() -> None:
    # 14:00 UTC is 23:00 in Tokyo
    tokyo = FeedPolicy(timezone="Asia/Tokyo")

    assert not is_daytime(NOW, tokyo)
