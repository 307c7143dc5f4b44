"""Tests for personalize/adaptive/ratelimit.py

Key behaviors:
- Hourly window is the trailing hour, daily window starts at local midnight
- Concurrent sends can never exceed a cap
- force=True records past the cap
- Store failures fail open with degraded=True
"""

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from personalize.adaptive.notifications import has_reached_limit
from personalize.adaptive.ratelimit import NotificationRateLimiter
from personalize.learning.models import FrequencyLimits


@pytest.fixture
def limiter(temp_db):
    return NotificationRateLimiter(temp_db)


LIMITS = FrequencyLimits(max_per_hour=5, max_per_day=20)


class TestCaps:
    """Tests for hourly and daily caps."""

    def test_allows_until_hourly_cap(self, limiter, mock_user_id, now):
        results = [limiter.try_acquire(mock_user_id, LIMITS, now=now) for _ in range(6)]

        assert [r["allowed"] for r in results] == [True] * 5 + [False]
        assert results[-1]["reason"] == "hourly_limit_reached"
        assert results[4]["hourly_count"] == 5

    def test_hourly_window_slides(self, limiter, mock_user_id, now):
        for _ in range(5):
            limiter.try_acquire(mock_user_id, LIMITS, now=now - timedelta(minutes=61))

        result = limiter.try_acquire(mock_user_id, LIMITS, now=now)

        assert result["allowed"] is True
        assert result["hourly_count"] == 1
        assert result["daily_count"] == 6

    def test_daily_window_starts_at_midnight(self, limiter, mock_user_id):
        limits = FrequencyLimits(max_per_hour=10, max_per_day=2)
        late = datetime(2026, 3, 10, 23, 30)
        for _ in range(2):
            limiter.try_acquire(mock_user_id, limits, now=late)

        blocked = limiter.try_acquire(mock_user_id, limits, now=late + timedelta(minutes=10))
        next_day = limiter.try_acquire(mock_user_id, limits, now=datetime(2026, 3, 11, 0, 5))

        assert blocked["reason"] == "daily_limit_reached"
        assert next_day["allowed"] is True
        assert next_day["daily_count"] == 1

    def test_users_counted_separately(self, limiter, now):
        for _ in range(5):
            limiter.try_acquire("alice", LIMITS, now=now)

        assert limiter.try_acquire("bob", LIMITS, now=now)["allowed"] is True

    def test_check_does_not_record(self, limiter, mock_user_id, now):
        limiter.check(mock_user_id, LIMITS, now)
        limiter.check(mock_user_id, LIMITS, now)

        assert limiter.counts(mock_user_id, now) == {"hourly": 0, "daily": 0}


class TestForce:
    def test_force_records_over_cap(self, limiter, mock_user_id, now):
        for _ in range(5):
            limiter.try_acquire(mock_user_id, LIMITS, now=now)

        result = limiter.try_acquire(mock_user_id, LIMITS, now=now, force=True)

        assert result["allowed"] is True
        assert result["reason"] == "hourly_limit_reached"
        assert limiter.counts(mock_user_id, now)["hourly"] == 6


class TestConcurrency:
    """Tests for the atomic check-and-record."""

    def test_parallel_sends_never_exceed_cap(self, limiter, mock_user_id, now):
        """Ten threads race for five slots; exactly five win."""
        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(lambda _: limiter.try_acquire(mock_user_id, LIMITS, now=now), range(10)))

        assert sum(r["allowed"] for r in results) == 5
        assert limiter.counts(mock_user_id, now)["hourly"] == 5

    def test_separate_limiters_share_the_database(self, temp_db, mock_user_id, now):
        """Two limiter instances stand in for two processes."""
        first, second = NotificationRateLimiter(temp_db), NotificationRateLimiter(temp_db)

        def send(i):
            return (first if i % 2 else second).try_acquire(mock_user_id, LIMITS, now=now)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(send, range(8)))

        assert sum(r["allowed"] for r in results) == 5

    def test_limit_checks_race_sends_for_the_last_slot(self, limiter, make_model, mock_user_id, now):
        """Checks running beside sends see a consistent count and never a sixth send."""
        model = make_model()
        for _ in range(4):
            limiter.try_acquire(mock_user_id, LIMITS, now=now)

        def work(i):
            if i % 2:
                return "check", has_reached_limit(mock_user_id, model, limiter, now)
            return "send", limiter.try_acquire(mock_user_id, LIMITS, now=now)

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(work, range(10)))

        sends = [r for kind, r in results if kind == "send"]
        checks = [r for kind, r in results if kind == "check"]
        assert sum(r["allowed"] for r in sends) == 1
        for check in checks:
            assert check["hourly_count"] in (4, 5)
            assert check["hourly_limit_reached"] is (check["hourly_count"] >= 5)
            assert check["limits"]["max_per_hour"] == 5
        assert has_reached_limit(mock_user_id, model, limiter, now)["hourly_limit_reached"] is True
        assert limiter.counts(mock_user_id, now)["hourly"] == 5


class TestFailOpen:
    """Tests for degraded behavior when the counter store fails."""

    def test_try_acquire_allows_when_store_fails(self, limiter, mock_user_id, now):
        with patch(
            "personalize.adaptive.ratelimit.get_connection",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            result = limiter.try_acquire(mock_user_id, LIMITS, now=now)

        assert result["allowed"] is True
        assert result["degraded"] is True

    def test_check_reports_degraded(self, limiter, mock_user_id, now):
        with patch(
            "personalize.adaptive.ratelimit.get_connection",
            side_effect=sqlite3.OperationalError("database is locked"),
        ):
            result = limiter.check(mock_user_id, LIMITS, now)

        assert result["degraded"] is True
        assert result["hourly_limit_reached"] is False


def test_reset(limiter, mock_user_id, now):
    for _ in range(3):
        limiter.record_sent(mock_user_id, now=now)

    assert limiter.reset(mock_user_id) == 3
    assert limiter.counts(mock_user_id, now)["daily"] == 0


def test_forget_drops_idle_lock(limiter, mock_user_id, now):
    limiter.try_acquire(mock_user_id, LIMITS, now=now)
    assert mock_user_id in limiter._user_locks

    limiter.forget(mock_user_id)

    assert mock_user_id not in limiter._user_locks


def test_forget_keeps_held_lock(limiter, mock_user_id):
    lock = limiter._user_lock(mock_user_id)
    with lock:
        limiter.forget(mock_user_id)

    assert limiter._user_locks[mock_user_id] is lock
