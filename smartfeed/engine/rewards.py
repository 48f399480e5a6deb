"""
Coin rewards for viewing posts in the feed.

A view earns 1 coin from 3 s, 3 coins from 5 s and 5 coins from 10 s, at most
once per (user, post) per day.
"""
import logging
from datetime import datetime, timedelta

from smartfeed.engine.stores import RewardLedger

logger = logging.getLogger(__name__)

MIN_VIEW_MS = 3_000
AWARD_WINDOW = timedelta(hours=24)

# (minimum view duration ms, coins), highest tier first
COIN_TIERS = ((10_000, 5), (5_000, 3), (3_000, 1))


def coins_for_view(view_duration_ms: int) -> int:
    for threshold, coins in COIN_TIERS:
        if view_duration_ms >= threshold:
            return coins
    return 0


async def award_coins_for_view(
    ledger: RewardLedger,
    user_id: str,
    post_id: str,
    view_duration_ms: int,
    now: datetime,
) -> dict:
    if view_duration_ms < MIN_VIEW_MS:
        return {"awarded": False, "coins": 0, "reason": "View time too short"}

    coins = coins_for_view(view_duration_ms)
    try:
        credited = await ledger.credit_once(
            user_id, post_id, coins, "feed_view", view_duration_ms, now - AWARD_WINDOW
        )
    except Exception as exc:
        logger.warning("Award coins for view failed (%s, %s): %s", user_id, post_id, exc)
        return {"awarded": False, "coins": 0, "error": str(exc)}

    if not credited:
        return {"awarded": False, "coins": 0, "reason": "Already awarded"}

    logger.info("Awarded %d coins to %s for viewing %s", coins, user_id, post_id)
    return {"awarded": True, "coins": coins}
