"""
Tool: Event Store
Purpose: Append-only behavioural log for the personalization engine

Every event collaborators report lands in learning_events. Events that carry a
learnable signal are also routed, in the same transaction, into a typed record
table the model builder aggregates:

    item_completed           -> estimation_records (+ productivity "completion")
    item_started             -> productivity "work_start"
    focus_session_ended      -> productivity "focus_session"
    suggestion_accepted      -> suggestion_history (accepted)
    suggestion_dismissed     -> suggestion_history (dismissed)
    notification_clicked     -> notification_engagement (clicked)
    notification_ignored     -> notification_engagement (ignored)
    user_message             -> message_style_records
    preference_set           -> explicit_preferences (upsert, validated first)

Explicit feedback (see feedback.py) is kept in learning_feedback, and poorly
rated suggestion types in low_value_suggestions.

Estimation records are never updated or deleted except by clear_user().

Usage:
    store = EventStore()
    store.record_event("alice", "item_completed", {
        "item": {"id": "t1", "type": "coding", "estimated_minutes": 60},
        "actual_duration": 95,
    })
    records = store.get_estimation_records("alice", since=datetime.now() - timedelta(days=30))

Dependencies:
    - sqlite3 (stdlib)

Output:
    record_event() returns {"success": True, "event_id": ..., "derived": [...]}
"""

import json
import re
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from personalize.errors import InvalidInput, StoreUnavailable
from personalize.learning import (
    DAY_NAMES,
    DB_PATH,
    EMOJI_PATTERN,
    EVENT_TYPES,
    EXPLICIT_PREFERENCE_KEYS,
    size_for_minutes,
)
from personalize.learning.models import EstimationRecord, to_local_naive
from personalize.logging_config import get_logger
from personalize.schemas import validate_explicit_preferences

logger = get_logger(__name__)

TECHNICAL_PATTERN = re.compile(r"\b(api|code|function|debug|error)\b", re.IGNORECASE)


def _ts(value: datetime) -> str:
    return to_local_naive(value).isoformat(timespec="seconds")


def _positive(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class EventStore:
    """SQLite-backed behavioural log. One short-lived connection per call."""

    def __init__(self, db_path: Path | str | None = None, timeout: float = 5.0):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self.timeout = timeout

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row

        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS learning_events (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                data TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS estimation_records (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                task_id TEXT,
                task_type TEXT,
                task_size TEXT,
                estimated_minutes REAL NOT NULL,
                actual_minutes REAL NOT NULL,
                title TEXT,
                project_id TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS productivity_records (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                record_type TEXT NOT NULL
                    CHECK(record_type IN ('completion', 'focus_session', 'work_start')),
                hour INTEGER NOT NULL,
                day_of_week TEXT NOT NULL,
                duration REAL,
                completed_count INTEGER,
                was_interrupted INTEGER DEFAULT 0,
                item_type TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS suggestion_history (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                suggestion_type TEXT NOT NULL,
                outcome TEXT NOT NULL CHECK(outcome IN ('accepted', 'dismissed')),
                reason TEXT,
                hour INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS notification_engagement (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                notification_type TEXT NOT NULL,
                outcome TEXT NOT NULL CHECK(outcome IN ('clicked', 'ignored')),
                channel TEXT,
                hour INTEGER NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS message_style_records (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                word_count INTEGER NOT NULL,
                has_emoji INTEGER DEFAULT 0,
                is_brief INTEGER DEFAULT 0,
                is_detailed INTEGER DEFAULT 0,
                is_technical INTEGER DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS explicit_preferences (
                user_id TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT,
                updated_at TEXT NOT NULL,
                PRIMARY KEY(user_id, key)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS learning_feedback (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                feedback_type TEXT NOT NULL,
                context TEXT,
                rating INTEGER,
                comment TEXT,
                correction TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS low_value_suggestions (
                user_id TEXT NOT NULL,
                suggestion_type TEXT NOT NULL,
                rating INTEGER,
                reason TEXT,
                flagged_at TEXT NOT NULL,
                PRIMARY KEY(user_id, suggestion_type)
            )
        """)

        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_events_user ON learning_events(user_id, created_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_estimation_user ON estimation_records(user_id, created_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_productivity_user ON productivity_records(user_id, created_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_suggestions_user ON suggestion_history(user_id, created_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_engagement_user ON notification_engagement(user_id, created_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_feedback_user ON learning_feedback(user_id, created_at)"
        )

        conn.commit()
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success, and map sqlite failures to StoreUnavailable."""
        try:
            conn = self.get_connection()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"event store unavailable: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailable(f"event store operation failed: {e}") from e
        finally:
            conn.close()

    # ─────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────

    def record_event(
        self,
        user_id: str,
        event_type: str,
        data: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> dict[str, Any]:
        """Append an event and derive its typed records in one transaction."""
        if event_type not in EVENT_TYPES:
            raise InvalidInput(
                f"Unknown event type: {event_type}",
                [{"loc": ["type"], "msg": f"must be one of {EVENT_TYPES}"}],
            )

        data = data or {}
        if event_type == "preference_set":
            validate_explicit_preferences(data)
        timestamp = to_local_naive(timestamp or datetime.now())
        event_id = f"evt_{uuid.uuid4().hex[:12]}"

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO learning_events (id, user_id, event_type, data, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (event_id, user_id, event_type, json.dumps(data, default=str), _ts(timestamp)),
            )
            derived = self._route(conn, user_id, event_type, data, timestamp)

        logger.debug("event_recorded", user_id=user_id, event_type=event_type, derived=derived)
        return {"success": True, "event_id": event_id, "derived": derived}

    def _route(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        event_type: str,
        data: dict[str, Any],
        timestamp: datetime,
    ) -> list[str]:
        derived: list[str] = []
        item = data.get("item") or {}

        if event_type == "item_completed":
            estimated = _positive(item.get("estimated_minutes"))
            actual = _positive(data.get("actual_duration"))
            if estimated and actual:
                self._insert_estimation(
                    conn,
                    EstimationRecord(
                        id=EstimationRecord.generate_id(),
                        user_id=user_id,
                        task_id=item.get("id"),
                        task_type=item.get("type"),
                        task_size=item.get("size") or size_for_minutes(estimated),
                        estimated_minutes=float(estimated),
                        actual_minutes=float(actual),
                        title=item.get("title"),
                        project_id=item.get("project_id"),
                        created_at=timestamp,
                    ),
                )
                derived.append("estimation_records")
            self._insert_productivity(
                conn, user_id, "completion", timestamp,
                duration=actual, item_type=item.get("type") or "task",
            )
            derived.append("productivity_records")

        elif event_type == "item_started":
            self._insert_productivity(
                conn, user_id, "work_start", timestamp, item_type=item.get("type") or "task"
            )
            derived.append("productivity_records")

        elif event_type == "focus_session_ended":
            self._insert_productivity(
                conn, user_id, "focus_session", timestamp,
                duration=data.get("duration"),
                completed_count=data.get("completed_items", 0),
                was_interrupted=bool(data.get("was_interrupted", False)),
            )
            derived.append("productivity_records")

        elif event_type in ("suggestion_accepted", "suggestion_dismissed"):
            suggestion_type = data.get("suggestion_type")
            if suggestion_type:
                conn.execute(
                    """
                    INSERT INTO suggestion_history
                    (id, user_id, suggestion_type, outcome, reason, hour, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        f"sh_{uuid.uuid4().hex[:12]}",
                        user_id,
                        suggestion_type,
                        "accepted" if event_type == "suggestion_accepted" else "dismissed",
                        data.get("reason"),
                        timestamp.hour,
                        _ts(timestamp),
                    ),
                )
                derived.append("suggestion_history")

        elif event_type in ("notification_clicked", "notification_ignored"):
            notification_type = data.get("notification_type")
            if notification_type:
                conn.execute(
                    """
                    INSERT INTO notification_engagement
                    (id, user_id, notification_type, outcome, channel, hour, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        f"ne_{uuid.uuid4().hex[:12]}",
                        user_id,
                        notification_type,
                        "clicked" if event_type == "notification_clicked" else "ignored",
                        data.get("channel"),
                        timestamp.hour,
                        _ts(timestamp),
                    ),
                )
                derived.append("notification_engagement")

        elif event_type == "user_message":
            content = data.get("content") or ""
            word_count = len(content.split())
            conn.execute(
                """
                INSERT INTO message_style_records
                (id, user_id, word_count, has_emoji, is_brief, is_detailed, is_technical, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    f"ms_{uuid.uuid4().hex[:12]}",
                    user_id,
                    word_count,
                    int(bool(re.search(EMOJI_PATTERN, content))),
                    int(word_count < 10),
                    int(word_count > 50),
                    int(bool(TECHNICAL_PATTERN.search(content))),
                    _ts(timestamp),
                ),
            )
            derived.append("message_style_records")

        elif event_type == "preference_set":
            for key, value in validate_explicit_preferences(data).items():
                if key in EXPLICIT_PREFERENCE_KEYS:
                    conn.execute(
                        """
                        INSERT INTO explicit_preferences (user_id, key, value, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(user_id, key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = excluded.updated_at
                        """,
                        (user_id, key, json.dumps(value), _ts(timestamp)),
                    )
            derived.append("explicit_preferences")

        return derived

    def _insert_productivity(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        record_type: str,
        timestamp: datetime,
        duration: float | None = None,
        completed_count: int | None = None,
        was_interrupted: bool = False,
        item_type: str | None = None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO productivity_records
            (id, user_id, record_type, hour, day_of_week, duration, completed_count,
             was_interrupted, item_type, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                f"pr_{uuid.uuid4().hex[:12]}",
                user_id,
                record_type,
                timestamp.hour,
                DAY_NAMES[timestamp.weekday()],
                duration,
                completed_count,
                int(was_interrupted),
                item_type,
                _ts(timestamp),
            ),
        )

    def _insert_estimation(self, conn: sqlite3.Connection, record: EstimationRecord) -> None:
        conn.execute(
            """
            INSERT INTO estimation_records
            (id, user_id, task_id, task_type, task_size, estimated_minutes, actual_minutes,
             title, project_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.user_id,
                record.task_id,
                record.task_type,
                record.task_size,
                record.estimated_minutes,
                record.actual_minutes,
                record.title,
                record.project_id,
                _ts(record.created_at),
            ),
        )

    def record_actual_completion(
        self,
        user_id: str,
        estimated_minutes: float,
        actual_minutes: float,
        task_id: str | None = None,
        task_type: str | None = None,
        task_size: str | None = None,
        title: str | None = None,
        project_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> EstimationRecord:
        """Append an estimation record directly, without a raw event."""
        if estimated_minutes <= 0 or actual_minutes <= 0:
            raise InvalidInput("estimated_minutes and actual_minutes must be positive")

        record = EstimationRecord(
            id=EstimationRecord.generate_id(),
            user_id=user_id,
            task_id=task_id,
            task_type=task_type,
            task_size=task_size or size_for_minutes(estimated_minutes),
            estimated_minutes=float(estimated_minutes),
            actual_minutes=float(actual_minutes),
            title=title,
            project_id=project_id,
            created_at=to_local_naive(timestamp or datetime.now()),
        )
        with self._transaction() as conn:
            self._insert_estimation(conn, record)
        return record

    def record_feedback(
        self,
        user_id: str,
        feedback_type: str,
        context: dict[str, Any] | None = None,
        rating: int | None = None,
        comment: str | None = None,
        correction: Any = None,
        timestamp: datetime | None = None,
    ) -> str:
        """Append one learning_feedback row. Returns its ID."""
        feedback_id = f"fb_{uuid.uuid4().hex[:12]}"
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO learning_feedback
                    (id, user_id, feedback_type, context, rating, comment, correction, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    feedback_id,
                    user_id,
                    feedback_type,
                    json.dumps(context or {}, default=str),
                    rating,
                    comment,
                    json.dumps(correction, default=str) if correction is not None else None,
                    _ts(timestamp or datetime.now()),
                ),
            )
        return feedback_id

    def flag_low_value_suggestion(
        self,
        user_id: str,
        suggestion_type: str,
        rating: int | None = None,
        reason: str | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO low_value_suggestions
                    (user_id, suggestion_type, rating, reason, flagged_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, suggestion_type) DO UPDATE SET
                    rating = excluded.rating,
                    reason = excluded.reason,
                    flagged_at = excluded.flagged_at
                """,
                (user_id, suggestion_type, rating, reason, _ts(timestamp or datetime.now())),
            )

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────

    def _select(self, sql: str, params: tuple) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]

    def get_events(
        self,
        user_id: str,
        since: datetime | None = None,
        event_type: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        sql = "SELECT * FROM learning_events WHERE user_id = ?"
        params: list[Any] = [user_id]
        if since:
            sql += " AND created_at >= ?"
            params.append(_ts(since))
        if event_type:
            sql += " AND event_type = ?"
            params.append(event_type)
        sql += " ORDER BY created_at, rowid"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)

        events = self._select(sql, tuple(params))
        for event in events:
            event["data"] = json.loads(event["data"]) if event["data"] else {}
        return events

    def count_events(self, user_id: str) -> int:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM learning_events WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row["n"]

    def get_estimation_records(
        self,
        user_id: str,
        since: datetime | None = None,
        project_id: str | None = None,
        keywords: list[str] | None = None,
    ) -> list[EstimationRecord]:
        """Estimation records, oldest first. keywords match titles case-insensitively (any of)."""
        sql = "SELECT * FROM estimation_records WHERE user_id = ?"
        params: list[Any] = [user_id]
        if since:
            sql += " AND created_at >= ?"
            params.append(_ts(since))
        if project_id:
            sql += " AND project_id = ?"
            params.append(project_id)
        if keywords:
            sql += " AND (" + " OR ".join("LOWER(title) LIKE ?" for _ in keywords) + ")"
            params.extend(f"%{k.lower()}%" for k in keywords)
        sql += " ORDER BY created_at, rowid"

        return [EstimationRecord.from_dict(row) for row in self._select(sql, tuple(params))]

    def _window(self, table: str, user_id: str, since: datetime | None) -> list[dict[str, Any]]:
        sql = f"SELECT * FROM {table} WHERE user_id = ?"
        params: list[Any] = [user_id]
        if since:
            sql += " AND created_at >= ?"
            params.append(_ts(since))
        return self._select(sql + " ORDER BY created_at, rowid", tuple(params))

    def get_productivity_records(self, user_id: str, since: datetime | None = None) -> list[dict]:
        return self._window("productivity_records", user_id, since)

    def get_suggestion_history(self, user_id: str, since: datetime | None = None) -> list[dict]:
        return self._window("suggestion_history", user_id, since)

    def get_notification_engagement(self, user_id: str, since: datetime | None = None) -> list[dict]:
        return self._window("notification_engagement", user_id, since)

    def get_message_style_records(self, user_id: str, since: datetime | None = None) -> list[dict]:
        return self._window("message_style_records", user_id, since)

    def get_explicit_preferences(self, user_id: str) -> dict[str, Any]:
        rows = self._select(
            "SELECT key, value FROM explicit_preferences WHERE user_id = ?", (user_id,)
        )
        explicit: dict[str, Any] = {}
        for row in rows:
            try:
                explicit[row["key"]] = json.loads(row["value"])
            except (TypeError, ValueError):
                logger.warning("explicit_preference_unreadable", user_id=user_id, key=row["key"])
        return explicit

    def get_feedback(
        self,
        user_id: str,
        feedback_type: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Feedback rows, newest first."""
        sql = "SELECT * FROM learning_feedback WHERE user_id = ?"
        params: list[Any] = [user_id]
        if feedback_type:
            sql += " AND feedback_type = ?"
            params.append(feedback_type)
        if since:
            sql += " AND created_at >= ?"
            params.append(_ts(since))
        sql += " ORDER BY created_at DESC, rowid DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)

        rows = self._select(sql, tuple(params))
        for row in rows:
            row["context"] = json.loads(row["context"]) if row["context"] else {}
            row["correction"] = json.loads(row["correction"]) if row["correction"] else None
        return rows

    def get_low_value_suggestion_types(self, user_id: str) -> list[str]:
        rows = self._select(
            "SELECT suggestion_type FROM low_value_suggestions WHERE user_id = ? "
            "ORDER BY suggestion_type",
            (user_id,),
        )
        return [row["suggestion_type"] for row in rows]

    def clear_user(self, user_id: str) -> dict[str, int]:
        """Delete everything recorded for a user. Returns rows removed per table."""
        tables = [
            "learning_events",
            "estimation_records",
            "productivity_records",
            "suggestion_history",
            "notification_engagement",
            "message_style_records",
            "explicit_preferences",
            "learning_feedback",
            "low_value_suggestions",
        ]
        removed = {}
        with self._transaction() as conn:
            for table in tables:
                removed[table] = conn.execute(
                    f"DELETE FROM {table} WHERE user_id = ?", (user_id,)
                ).rowcount
        logger.info("learning_data_cleared", user_id=user_id, removed=removed)
        return removed
