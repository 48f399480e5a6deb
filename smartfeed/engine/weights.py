"""
Lane weight calculation.

Starts from the policy's base table, shifts weight between lanes according to
the user's behaviour and the local time of day, clamps at zero and
renormalises so the weights always sum to 1.0. No randomness: identical
inputs (including `now`) give identical weights.
"""
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from smartfeed.engine.policy import FeedPolicy
from smartfeed.engine.types import Lane, UserBehaviorProfile, UserPreferences

logger = logging.getLogger(__name__)

LaneWeights = dict[str, float]


def _shift(weights: LaneWeights, lane: Lane, delta: float) -> None:
    weights[lane.value] = weights.get(lane.value, 0.0) + delta


def is_daytime(now: datetime, policy: FeedPolicy) -> bool:
    local = now.astimezone(ZoneInfo(policy.timezone)) if now.tzinfo else now
    return policy.daytime_start_hour <= local.hour <= policy.daytime_end_hour


def compute_lane_weights(
    preferences: UserPreferences,
    behavior: UserBehaviorProfile,
    now: datetime,
    policy: FeedPolicy,
) -> LaneWeights:
    weights: LaneWeights = dict(policy.base_weights)

    if behavior.engagement_rate > policy.high_engagement_rate:
        # Engaged users get more personalised content
        _shift(weights, Lane.FOR_YOU, 0.15)
        _shift(weights, Lane.FOLLOWING, -0.10)
        _shift(weights, Lane.TRENDING, -0.05)
    elif behavior.time_on_platform_seconds < policy.new_user_seconds:
        # New users have a thin follow graph
        _shift(weights, Lane.TRENDING, 0.10)
        _shift(weights, Lane.DISCOVER, 0.10)
        _shift(weights, Lane.FOLLOWING, -0.20)

    if is_daytime(now, policy):
        _shift(weights, Lane.DISCOVER, 0.05)
        _shift(weights, Lane.FOR_YOU, 0.05)
    else:
        _shift(weights, Lane.VIDEOS, 0.10)
        _shift(weights, Lane.AUDIO, 0.05)

    for lane, value in weights.items():
        weights[lane] = max(0.0, value)

    total = sum(weights.values())
    if total <= 0:
        logger.warning("Lane weights collapsed to zero, using a uniform split")
        return {lane: 1.0 / len(weights) for lane in weights}

    return {lane: value / total for lane, value in weights.items()}
