"""Adaptive delivery: calibrated estimates, suggestions and notifications

Philosophy:
    Everything here reads one UserModel snapshot and returns a decision. No
    function in this package edits a model; sparse data falls back to neutral
    behaviour instead of guessing.

Components:
    calibration.py: Calibrated values and the six estimate factors
    estimates.py: Calibrated time estimates, batch totals, estimate advice
    style.py: Message length, emoji and tone adaptation
    suggestions.py: Filter, delay, re-prioritise and rank suggestions
    notifications.py: Skip, channel, timing, grouping, digest and caps
    ratelimit.py: Atomic per-user sent-notification counters
    notification_queue.py: Pending notifications used for grouping

Database: data/notifications.db
    - sent_notifications: One row per delivered notification (cap counting)
    - pending_notifications: Deferred or grouped notifications awaiting delivery,
      released through the rate limiter once due
"""

import sqlite3
from pathlib import Path


# Path constants
PROJECT_ROOT = Path(__file__).parent.parent.parent
DATA_PATH = PROJECT_ROOT / "data"
DB_PATH = DATA_PATH / "notifications.db"


def get_connection(db_path: Path | None = None, timeout: float = 5.0) -> sqlite3.Connection:
    """
    Get database connection, creating tables if needed.

    Returns:
        SQLite connection with row_factory set
    """
    path = db_path or DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.row_factory = sqlite3.Row

    cursor = conn.cursor()

    # Delivered notifications, counted against hourly and daily caps
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS sent_notifications (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            notification_id TEXT,
            notification_type TEXT,
            priority TEXT,
            channel TEXT,
            sent_at TEXT NOT NULL
        )
    """)

    # Notifications waiting for their delivery time or their group
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS pending_notifications (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            notification_type TEXT NOT NULL,
            priority TEXT NOT NULL,
            message TEXT NOT NULL,
            channel TEXT,
            deliver_at TEXT,
            group_with TEXT,
            shown INTEGER DEFAULT 0,
            dismissed INTEGER DEFAULT 0,
            delivered_at TEXT,
            created_at TEXT NOT NULL
        )
    """)

    # Migration: databases created before delivery tracking lack delivered_at
    columns = {row["name"] for row in cursor.execute("PRAGMA table_info(pending_notifications)")}
    if "delivered_at" not in columns:
        cursor.execute("ALTER TABLE pending_notifications ADD COLUMN delivered_at TEXT")

    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_sent_user_time ON sent_notifications(user_id, sent_at)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_pending_user_type "
        "ON pending_notifications(user_id, notification_type, created_at)"
    )

    conn.commit()
    return conn
