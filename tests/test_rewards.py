"""Tests for view coin rewards."""

import asyncio

import pytest
from sqlalchemy.dialects import mysql

from smartfeed.engine.rewards import award_coins_for_view, coins_for_view
from smartfeed.sql_stores import award_since_stmt, lock_user_stmt
from tests.fakes import NOW, FakeLedger, make_engine


@pytest.mark.parametrize(
    "duration_ms,coins",
    [(2_999, 0), (3_000, 1), (4_999, 1), (5_000, 3), (9_999, 3), (10_000, 5), (60_000, 5)],
)
def test_coin_tiers(duration_ms, coins) -> None:
    assert coins_for_view(duration_ms) == coins


@pytest.mark.asyncio
async def test_short_views_earn_nothing() -> None:
    ledger = FakeLedger()

    result = await award_coins_for_view(ledger, "u1", "p1", 1_500, NOW)

    assert result == {"awarded": False, "coins": 0, "reason": "View time too short"}
    assert ledger.awards == []


@pytest.mark.asyncio
async def test_view_is_awarded_once() -> None:
    ledger = FakeLedger()

    first = await award_coins_for_view(ledger, "u1", "p1", 7_000, NOW)
    second = await award_coins_for_view(ledger, "u1", "p1", 12_000, NOW)

    assert first == {"awarded": True, "coins": 3}
    assert second == {"awarded": False, "coins": 0, "reason": "Already awarded"}
    assert ledger.awards == [("u1", "p1", 3, "feed_view", 7_000)]


@pytest.mark.asyncio
async def test_ledger_failure_is_reported() -> None:
    result = await award_coins_for_view(FakeLedger(fail=True), "u1", "p1", 7_000, NOW)

    assert result["awarded"] is False
    assert result["error"] == "ledger down"


@pytest.mark.asyncio
async def test_engine_without_ledger_declines() -> None:
    result = await make_engine().award_coins_for_view("u1", "p1", 12_000)

    assert result["awarded"] is False


@pytest.mark.asyncio
async def test_engine_awards_through_ledger() -> None:
    ledger = FakeLedger()
    engine = make_engine(rewards=ledger)

    result = await engine.award_coins_for_view("u1", "p1", 12_000)

    assert result == {"awarded": True, "coins": 5}


@pytest.mark.asyncio
async def test_concurrent_views_are_awarded_once() -> None:
    ledger = FakeLedger()

    results = await asyncio.gather(
        award_coins_for_view(ledger, "u1", "p1", 12_000, NOW),
        award_coins_for_view(ledger, "u1", "p1", 12_000, NOW),
        award_coins_for_view(ledger, "u1", "p2", 12_000, NOW),
    )

    assert [r["awarded"] for r in results] == [True, False, True]
    assert results[1]["reason"] == "Already awarded"
    assert len(ledger.awards) == 2


def test_sql_award_check_runs_under_a_user_row_lock() -> None:
    lock_sql = str(lock_user_stmt("u1").compile(dialect=mysql.dialect()))
    check_sql = str(award_since_stmt("u1", "p1", NOW).compile(dialect=mysql.dialect()))

    assert "FROM users" in lock_sql
    assert lock_sql.rstrip().endswith("FOR UPDATE")
    assert "coin_awards.created_at >=" in check_sql
