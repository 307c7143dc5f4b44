"""
Tool: Notification Rate Limiter
Purpose: Count delivered notifications per user and enforce hourly/daily caps

Counting and recording happen inside one critical section: a per-user lock in
this process plus an IMMEDIATE sqlite transaction across processes. Two
concurrent try_acquire() calls can therefore never both take the last slot.

When the counter store itself fails the limiter fails open: the check reports
degraded=True and the caller keeps delivering.

Usage:
    limiter = NotificationRateLimiter()
    result = limiter.try_acquire("alice", FrequencyLimits(max_per_hour=5, max_per_day=20))
    if result["allowed"]:
        deliver(...)

Dependencies:
    - sqlite3 (stdlib)
    - threading (stdlib)
"""

import sqlite3
import threading
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from personalize.adaptive import DB_PATH, get_connection
from personalize.errors import StoreUnavailable
from personalize.learning.models import FrequencyLimits, to_local_naive
from personalize.logging_config import get_logger

logger = get_logger(__name__)


def _ts(value: datetime) -> str:
    return to_local_naive(value).isoformat(timespec="seconds")


class NotificationRateLimiter:
    """Thread-safe sent-notification counters backed by sent_notifications.

    Args:
        db_path: SQLite file holding sent_notifications.
        timeout: Seconds to wait on a locked database.
    """

    def __init__(self, db_path: Path | str | None = None, timeout: float = 5.0):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self.timeout = timeout
        self._lock = threading.Lock()
        self._user_locks: dict[str, threading.Lock] = {}

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._lock:
            return self._user_locks.setdefault(user_id, threading.Lock())

    @staticmethod
    def _window_starts(now: datetime) -> tuple[str, str]:
        hour_ago = now - timedelta(hours=1)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return _ts(hour_ago), _ts(midnight)

    def _count(self, conn: sqlite3.Connection, user_id: str, now: datetime) -> tuple[int, int]:
        hour_ago, midnight = self._window_starts(now)
        row = conn.execute(
            """
            SELECT
                SUM(CASE WHEN sent_at > ? THEN 1 ELSE 0 END) AS hourly,
                SUM(CASE WHEN sent_at >= ? THEN 1 ELSE 0 END) AS daily
            FROM sent_notifications
            WHERE user_id = ? AND sent_at <= ?
            """,
            (hour_ago, midnight, user_id, _ts(now)),
        ).fetchone()
        return row["hourly"] or 0, row["daily"] or 0

    def counts(self, user_id: str, now: datetime | None = None) -> dict[str, int]:
        """Notifications sent in the trailing hour and since local midnight."""
        now = now or datetime.now()
        conn = get_connection(self.db_path, self.timeout)
        try:
            hourly, daily = self._count(conn, user_id, now)
        finally:
            conn.close()
        return {"hourly": hourly, "daily": daily}

    def check(
        self, user_id: str, limits: FrequencyLimits, now: datetime | None = None
    ) -> dict[str, Any]:
        """Whether either cap is already reached. Reads only; never records."""
        now = now or datetime.now()
        try:
            with self._user_lock(user_id):
                count = self.counts(user_id, now)
        except sqlite3.Error as e:
            logger.warning("rate_limiter_degraded", user_id=user_id, error=str(e))
            return {
                "hourly_limit_reached": False,
                "daily_limit_reached": False,
                "hourly_count": None,
                "daily_count": None,
                "degraded": True,
            }

        return {
            "hourly_limit_reached": count["hourly"] >= limits.max_per_hour,
            "daily_limit_reached": count["daily"] >= limits.max_per_day,
            "hourly_count": count["hourly"],
            "daily_count": count["daily"],
            "degraded": False,
        }

    def try_acquire(
        self,
        user_id: str,
        limits: FrequencyLimits,
        now: datetime | None = None,
        notification_id: str | None = None,
        notification_type: str | None = None,
        priority: str | None = None,
        channel: str | None = None,
        force: bool = False,
    ) -> dict[str, Any]:
        """
        Atomically check the caps and, if there is room, record one send.

        force=True records the send even over the cap (urgent notifications).

        Returns:
            {"allowed": bool, "reason": str | None, "hourly_count": int,
             "daily_count": int, "degraded": bool}
        """
        now = now or datetime.now()
        with self._user_lock(user_id):
            try:
                conn = get_connection(self.db_path, self.timeout)
            except sqlite3.Error as e:
                logger.warning("rate_limiter_degraded", user_id=user_id, error=str(e))
                return {"allowed": True, "reason": None, "degraded": True}

            try:
                conn.execute("BEGIN IMMEDIATE")
                hourly, daily = self._count(conn, user_id, now)

                reason = None
                if hourly >= limits.max_per_hour:
                    reason = "hourly_limit_reached"
                elif daily >= limits.max_per_day:
                    reason = "daily_limit_reached"

                if reason and not force:
                    conn.rollback()
                    return {
                        "allowed": False,
                        "reason": reason,
                        "hourly_count": hourly,
                        "daily_count": daily,
                        "degraded": False,
                    }

                conn.execute(
                    """
                    INSERT INTO sent_notifications
                    (id, user_id, notification_id, notification_type, priority, channel, sent_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        f"sent_{uuid.uuid4().hex[:12]}",
                        user_id,
                        notification_id,
                        notification_type,
                        priority,
                        channel,
                        _ts(now),
                    ),
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.warning("rate_limiter_degraded", user_id=user_id, error=str(e))
                return {"allowed": True, "reason": None, "degraded": True}
            finally:
                conn.close()

        return {
            "allowed": True,
            "reason": reason,
            "hourly_count": hourly + 1,
            "daily_count": daily + 1,
            "degraded": False,
        }

    def record_sent(
        self,
        user_id: str,
        now: datetime | None = None,
        notification_id: str | None = None,
        notification_type: str | None = None,
        channel: str | None = None,
    ) -> dict[str, Any]:
        """Record a send that bypassed the caps."""
        return self.try_acquire(
            user_id,
            FrequencyLimits(),
            now=now,
            notification_id=notification_id,
            notification_type=notification_type,
            channel=channel,
            force=True,
        )

    def reset(self, user_id: str) -> int:
        """Forget every recorded send for a user. Returns rows removed."""
        with self._user_lock(user_id):
            try:
                conn = get_connection(self.db_path, self.timeout)
                try:
                    with conn:
                        removed = conn.execute(
                            "DELETE FROM sent_notifications WHERE user_id = ?", (user_id,)
                        ).rowcount
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise StoreUnavailable(f"could not reset notification counters: {e}") from e
        return removed

    def forget(self, user_id: str) -> None:
        """Drop a user's in-process lock. A lock that is currently held is kept."""
        with self._lock:
            lock = self._user_locks.get(user_id)
            if lock is not None and not lock.locked():
                del self._user_locks[user_id]
