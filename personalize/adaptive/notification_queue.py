"""
Tool: Pending Notification Queue
Purpose: Hold deferred and grouped notifications until they are delivered

The scheduler groups a new notification with pending ones of the same type
created within the last hour that are still undelivered and that the user has
neither seen nor dismissed. Due entries are released by the engine, each one
claiming a rate-limit slot first.

Usage:
    from personalize.adaptive.notification_queue import enqueue, find_similar_pending

    result = enqueue("alice", notification, adapted)
    ids = find_similar_pending("alice", "task_reminder")
"""

import json
import sqlite3
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from personalize.adaptive import get_connection
from personalize.errors import StoreUnavailable
from personalize.learning.models import AdaptedNotification, NotificationRequest, to_local_naive


def _ts(value: datetime) -> str:
    return to_local_naive(value).isoformat(timespec="seconds")


def enqueue(
    user_id: str,
    notification: NotificationRequest,
    adapted: AdaptedNotification,
    now: datetime | None = None,
    db_path: Path | None = None,
) -> dict[str, Any]:
    """
    Store a notification whose delivery was deferred or grouped.

    Returns:
        {"success": True, "notification_id": str, "deliver_at": str | None}
    """
    now = now or datetime.now()
    notification_id = notification.id or f"ntf_{uuid.uuid4().hex[:12]}"

    try:
        conn = get_connection(db_path)
        try:
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO pending_notifications
                    (id, user_id, notification_type, priority, message, channel,
                     deliver_at, group_with, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        notification_id,
                        user_id,
                        notification.type,
                        notification.priority,
                        adapted.adapted_message or notification.message,
                        adapted.channel,
                        _ts(adapted.deliver_at) if adapted.deliver_at else None,
                        json.dumps(list(adapted.group_with)),
                        _ts(now),
                    ),
                )
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise StoreUnavailable(f"could not queue notification: {e}") from e

    return {
        "success": True,
        "notification_id": notification_id,
        "deliver_at": _ts(adapted.deliver_at) if adapted.deliver_at else None,
    }


def find_similar_pending(
    user_id: str,
    notification_type: str,
    now: datetime | None = None,
    window_minutes: int = 60,
    db_path: Path | None = None,
) -> list[str]:
    """Ids of undelivered, unseen, undismissed notifications of this type from the last window."""
    now = now or datetime.now()
    since = now - timedelta(minutes=window_minutes)

    try:
        conn = get_connection(db_path)
        try:
            rows = conn.execute(
                """
                SELECT id FROM pending_notifications
                WHERE user_id = ? AND notification_type = ?
                AND shown = 0 AND dismissed = 0 AND delivered_at IS NULL
                AND created_at >= ?
                ORDER BY created_at, rowid
                """,
                (user_id, notification_type, _ts(since)),
            ).fetchall()
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise StoreUnavailable(f"could not read pending notifications: {e}") from e

    return [row["id"] for row in rows]


def get_pending(
    user_id: str,
    due_before: datetime | None = None,
    db_path: Path | None = None,
) -> list[dict[str, Any]]:
    """
    Undelivered notifications the user has neither seen nor dismissed, oldest first.

    Args:
        due_before: Only those with no delivery time or one at or before this time
    """
    sql = """
        SELECT * FROM pending_notifications
        WHERE user_id = ? AND shown = 0 AND dismissed = 0 AND delivered_at IS NULL
    """
    params: list[Any] = [user_id]
    if due_before:
        sql += " AND (deliver_at IS NULL OR deliver_at <= ?)"
        params.append(_ts(due_before))
    sql += " ORDER BY created_at, rowid"

    try:
        conn = get_connection(db_path)
        try:
            rows = conn.execute(sql, tuple(params)).fetchall()
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise StoreUnavailable(f"could not read pending notifications: {e}") from e

    pending = []
    for row in rows:
        item = dict(row)
        item["group_with"] = json.loads(item["group_with"]) if item["group_with"] else []
        pending.append(item)
    return pending


def _update(
    user_id: str, notification_id: str, assignment: str, params: tuple, db_path: Path | None
) -> bool:
    try:
        conn = get_connection(db_path)
        try:
            with conn:
                cursor = conn.execute(
                    f"UPDATE pending_notifications SET {assignment} WHERE id = ? AND user_id = ?",
                    (*params, notification_id, user_id),
                )
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise StoreUnavailable(f"could not update notification {notification_id}: {e}") from e
    return cursor.rowcount > 0


def mark_shown(user_id: str, notification_id: str, db_path: Path | None = None) -> bool:
    return _update(user_id, notification_id, "shown = 1", (), db_path)


def mark_dismissed(user_id: str, notification_id: str, db_path: Path | None = None) -> bool:
    return _update(user_id, notification_id, "dismissed = 1", (), db_path)


def mark_delivered(
    user_id: str,
    notification_id: str,
    now: datetime | None = None,
    db_path: Path | None = None,
) -> bool:
    return _update(
        user_id, notification_id, "delivered_at = ?", (_ts(now or datetime.now()),), db_path
    )


def clear_user(user_id: str, db_path: Path | None = None) -> int:
    try:
        conn = get_connection(db_path)
        try:
            with conn:
                removed = conn.execute(
                    "DELETE FROM pending_notifications WHERE user_id = ?", (user_id,)
                ).rowcount
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise StoreUnavailable(f"could not clear pending notifications: {e}") from e
    return removed
