"""
Tool: Personalization Engine
Purpose: One entry point wiring the learning stores to the adaptive decisions

The engine owns the event store, model store, model builder, rate limiter and
pending-notification queue for one data directory. Every public method
validates its payload first, then reads the user's model exactly once and
hands that snapshot to the pure adaptive functions.

Usage:
    from personalize.engine import PersonalizationEngine

    engine = PersonalizationEngine()
    engine.record_event("alice", "item_completed", {...})
    engine.estimate("alice", {"type": "coding", "estimated_minutes": 60})
    engine.deliver_notification("alice", {"type": "reminder", "message": "Standup"})

Output:
    Plain dicts, ready for json.dumps(..., default=str)
"""

import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from personalize.adaptive import DB_PATH as NOTIFICATIONS_DB_PATH
from personalize.adaptive import notification_queue
from personalize.adaptive.estimates import (
    calculate_total_time,
    calibrate,
    get_estimation_tips,
    suggest_better_estimate,
)
from personalize.adaptive.notifications import (
    adapt_notification,
    create_digest,
    has_reached_limit,
    optimal_frequency,
)
from personalize.adaptive.ratelimit import NotificationRateLimiter
from personalize.adaptive.suggestions import adapt_suggestions
from personalize.config import PersonalizationConfig, load_config
from personalize.errors import InvalidInput, StoreUnavailable
from personalize.learning import DB_PATH as LEARNING_DB_PATH
from personalize.learning.event_store import EventStore
from personalize.learning.feedback import FeedbackCollector, detect_implicit_feedback
from personalize.learning.model_builder import ModelBuilder
from personalize.learning.model_store import ModelStore
from personalize.learning.models import (
    AdaptedNotification,
    EstimationRecord,
    NotificationRequest,
    Priority,
    UserModel,
    format_hour,
)
from personalize.logging_config import get_logger
from personalize.schemas import (
    validate_completion,
    validate_event,
    validate_feedback,
    validate_notification,
    validate_notifications,
    validate_suggestions,
    validate_task,
    validate_tasks,
)

logger = get_logger(__name__)


class PersonalizationEngine:
    """Facade over the learning stores and the adaptive decision functions.

    Args:
        config: Engine configuration; loaded from args/personalization.yaml when omitted.
        data_dir: Directory for learning.db and notifications.db. Defaults to
            config.storage.data_dir, then the project's data/ directory.
    """

    def __init__(
        self,
        config: PersonalizationConfig | None = None,
        data_dir: Path | str | None = None,
    ):
        self.config = config or load_config()
        data_dir = data_dir or self.config.storage.data_dir
        timeout = self.config.storage.timeout_seconds

        if data_dir:
            learning_db = Path(data_dir) / "learning.db"
            self.notifications_db = Path(data_dir) / "notifications.db"
        else:
            learning_db = LEARNING_DB_PATH
            self.notifications_db = NOTIFICATIONS_DB_PATH

        self.event_store = EventStore(learning_db, timeout)
        self.model_store = ModelStore(learning_db, timeout)
        self.builder = ModelBuilder(self.event_store, self.model_store, self.config)
        self.limiter = NotificationRateLimiter(self.notifications_db, timeout)
        self.feedback = FeedbackCollector(self.event_store)

        self._counter_lock = threading.Lock()
        self._events_since_build: dict[str, int] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Learning
    # ─────────────────────────────────────────────────────────────────────

    def record_event(
        self,
        user_id: str,
        event_type: str,
        data: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> dict[str, Any]:
        """Append an event; every N events the user's model is rebuilt."""
        event = validate_event({"type": event_type, "data": data or {}, "timestamp": timestamp})
        result = self.event_store.record_event(user_id, event.type, event.data, event.timestamp)
        result["model_rebuilt"] = self._maybe_rebuild(user_id)
        return result

    def record_actual_completion(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        completion = validate_completion(payload)
        record = self.event_store.record_actual_completion(user_id, **completion.model_dump())
        return {
            "success": True,
            "record": record.to_dict(),
            "model_rebuilt": self._maybe_rebuild(user_id),
        }

    def _maybe_rebuild(self, user_id: str) -> bool:
        every = self.config.model.rebuild_every_events
        if every <= 0:
            return False
        with self._counter_lock:
            count = self._events_since_build.get(user_id, 0) + 1
            due = count >= every
            self._events_since_build[user_id] = 0 if due else count
        if due:
            self.builder.build(user_id)
        return due

    def get_model(self, user_id: str) -> UserModel:
        return self.model_store.get(user_id)

    def rebuild(self, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        result = self.builder.rebuild(user_id, now)
        if result["success"]:
            with self._counter_lock:
                self._events_since_build[user_id] = 0
        return result

    def _history(self, user_id: str, now: datetime) -> list[EstimationRecord]:
        """Estimation records the context factor may draw on."""
        since = now - timedelta(days=self.config.lookback.context_keyword_days)
        try:
            return self.event_store.get_estimation_records(user_id, since=since)
        except StoreUnavailable as e:
            logger.warning("estimation_history_unavailable", user_id=user_id, error=str(e))
            return []

    # ─────────────────────────────────────────────────────────────────────
    # Estimates
    # ─────────────────────────────────────────────────────────────────────

    def estimate(
        self, user_id: str, task_payload: Any, now: datetime | None = None
    ) -> dict[str, Any]:
        task = validate_task(task_payload)
        now = now or datetime.now()
        model = self.get_model(user_id)
        prediction = calibrate(task, model, self._history(user_id, now), now, self.config)
        return prediction.to_dict()

    def total_time(
        self, user_id: str, tasks_payload: Any, now: datetime | None = None
    ) -> dict[str, Any]:
        tasks = validate_tasks(tasks_payload)
        now = now or datetime.now()
        model = self.get_model(user_id)
        return calculate_total_time(tasks, model, self._history(user_id, now), now, self.config)

    def suggest_better_estimate(
        self, user_id: str, task_payload: Any, now: datetime | None = None
    ) -> dict[str, Any]:
        task = validate_task(task_payload)
        now = now or datetime.now()
        model = self.get_model(user_id)
        return suggest_better_estimate(task, model, self._history(user_id, now), now, self.config)

    def estimation_tips(self, user_id: str) -> list[str]:
        return get_estimation_tips(self.get_model(user_id))

    # ─────────────────────────────────────────────────────────────────────
    # Suggestions
    # ─────────────────────────────────────────────────────────────────────

    def adapt_suggestions(
        self, user_id: str, suggestions_payload: Any, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        suggestions = validate_suggestions(suggestions_payload)
        model = self.get_model(user_id)
        adapted = adapt_suggestions(suggestions, model, now, self.config)
        return [s.to_dict() for s in adapted]

    # ─────────────────────────────────────────────────────────────────────
    # Notifications
    # ─────────────────────────────────────────────────────────────────────

    def _pending_lookup(self, user_id: str, notification_type: str, now: datetime) -> list[str]:
        try:
            return notification_queue.find_similar_pending(
                user_id,
                notification_type,
                now,
                window_minutes=self.config.notifications.grouping_window_minutes,
                db_path=self.notifications_db,
            )
        except StoreUnavailable as e:
            logger.warning("pending_lookup_failed", user_id=user_id, error=str(e))
            return []

    def adapt_notification(
        self, user_id: str, notification_payload: Any, now: datetime | None = None
    ) -> dict[str, Any]:
        notification = validate_notification(notification_payload)
        model = self.get_model(user_id)
        adapted = adapt_notification(
            notification, model, now, pending_lookup=self._pending_lookup, config=self.config
        )
        return adapted.to_dict()

    def deliver_notification(
        self, user_id: str, notification_payload: Any, now: datetime | None = None
    ) -> dict[str, Any]:
        """
        Adapt a notification and act on the decision.

        Immediate deliveries claim a rate-limit slot atomically; deferred or
        grouped ones are queued as pending. Urgent notifications are counted
        but never blocked by the caps.

        Returns:
            {"status": "sent" | "scheduled" | "skipped", "reason": ..., "adapted": {...}}
        """
        notification = validate_notification(notification_payload)
        now = now or datetime.now()
        model = self.get_model(user_id)
        adapted = adapt_notification(
            notification, model, now, pending_lookup=self._pending_lookup, config=self.config
        )

        if adapted.skip:
            return {"status": "skipped", "reason": adapted.reason, "adapted": adapted.to_dict()}

        if adapted.group_with or (adapted.deliver_at and adapted.deliver_at > now):
            return self._schedule(user_id, notification, adapted, now)

        limits = optimal_frequency(model, self.config)
        claim = self.limiter.try_acquire(
            user_id,
            limits,
            now,
            notification_id=notification.id,
            notification_type=notification.type,
            priority=notification.priority,
            channel=adapted.channel,
            force=notification.priority == Priority.URGENT,
        )
        if not claim["allowed"]:
            logger.info("notification_rate_limited", user_id=user_id, reason=claim["reason"])
            return {"status": "skipped", "reason": claim["reason"], "adapted": adapted.to_dict()}

        return {
            "status": "sent",
            "reason": None,
            "adapted": adapted.to_dict(),
            "degraded": claim["degraded"],
        }

    def _schedule(
        self,
        user_id: str,
        notification: NotificationRequest,
        adapted: AdaptedNotification,
        now: datetime,
    ) -> dict[str, Any]:
        reason = "grouped" if adapted.group_with else "deferred"
        try:
            queued = notification_queue.enqueue(
                user_id, notification, adapted, now, db_path=self.notifications_db
            )
        except StoreUnavailable as e:
            logger.warning("notification_queue_failed", user_id=user_id, error=str(e))
            return {
                "status": "scheduled",
                "reason": reason,
                "adapted": adapted.to_dict(),
                "queued": False,
                "degraded": True,
            }
        return {
            "status": "scheduled",
            "reason": reason,
            "adapted": adapted.to_dict(),
            "queued": True,
            "notification_id": queued["notification_id"],
        }

    def pending_notifications(
        self, user_id: str, due_only: bool = False, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Queued notifications not yet delivered, shown or dismissed."""
        due_before = (now or datetime.now()) if due_only else None
        return notification_queue.get_pending(
            user_id, due_before=due_before, db_path=self.notifications_db
        )

    def release_due_notifications(
        self, user_id: str, now: datetime | None = None
    ) -> dict[str, Any]:
        """
        Deliver queued notifications whose time has come.

        Each one claims a rate-limit slot first, oldest first. Urgent ones are
        forced through; the rest stay queued once a cap is reached.

        Returns:
            {"released": [...], "held": [ids], "reason": str | None}
        """
        now = now or datetime.now()
        due = self.pending_notifications(user_id, due_only=True, now=now)
        limits = optimal_frequency(self.get_model(user_id), self.config)

        released: list[dict[str, Any]] = []
        held: list[str] = []
        reason = None
        for item in due:
            claim = self.limiter.try_acquire(
                user_id,
                limits,
                now,
                notification_id=item["id"],
                notification_type=item["notification_type"],
                priority=item["priority"],
                channel=item["channel"],
                force=item["priority"] == Priority.URGENT,
            )
            if not claim["allowed"]:
                held.append(item["id"])
                reason = claim["reason"]
                continue
            notification_queue.mark_delivered(
                user_id, item["id"], now, db_path=self.notifications_db
            )
            released.append(item)

        if held:
            logger.info("notifications_held", user_id=user_id, held=len(held), reason=reason)
        return {"released": released, "held": held, "reason": reason}

    def mark_notification(self, user_id: str, notification_id: str, outcome: str) -> dict[str, Any]:
        """Record that a queued notification was shown or dismissed."""
        if outcome == "shown":
            found = notification_queue.mark_shown(user_id, notification_id, self.notifications_db)
        elif outcome == "dismissed":
            found = notification_queue.mark_dismissed(
                user_id, notification_id, self.notifications_db
            )
        else:
            raise InvalidInput(
                f"Unknown notification outcome: {outcome}",
                [{"loc": ["outcome"], "msg": "must be one of ['shown', 'dismissed']"}],
            )
        return {"success": found, "notification_id": notification_id, "outcome": outcome}

    def notification_digest(self, user_id: str, notifications_payload: Any) -> dict[str, Any]:
        notifications: list[NotificationRequest] = validate_notifications(notifications_payload)
        return create_digest(notifications, self.get_model(user_id))

    def optimal_frequency(self, user_id: str) -> dict[str, int]:
        return optimal_frequency(self.get_model(user_id), self.config).to_dict()

    def has_reached_limit(self, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        return has_reached_limit(user_id, self.get_model(user_id), self.limiter, now, self.config)

    # ─────────────────────────────────────────────────────────────────────
    # Feedback
    # ─────────────────────────────────────────────────────────────────────

    def submit_feedback(self, user_id: str, payload: Any) -> dict[str, Any]:
        feedback = validate_feedback(payload)

        if feedback.type == "suggestion":
            result = self.feedback.suggestion_feedback(
                user_id,
                feedback.suggestion_id,
                feedback.suggestion_type,
                feedback.outcome,
                rating=feedback.rating,
                reason=feedback.reason,
                timestamp=feedback.timestamp,
            )
        elif feedback.type == "prediction":
            result = self.feedback.prediction_feedback(
                user_id,
                feedback.prediction_type,
                feedback.predicted,
                feedback.actual,
                context=feedback.context,
                timestamp=feedback.timestamp,
            )
        elif feedback.type == "preference_correction":
            result = self.feedback.preference_correction(
                user_id,
                feedback.key,
                feedback.value,
                previous=feedback.previous,
                timestamp=feedback.timestamp,
            )
        else:
            result = self.feedback.general_feedback(
                user_id,
                feedback.rating,
                comment=feedback.comment,
                context=feedback.context,
                timestamp=feedback.timestamp,
            )

        result["model_rebuilt"] = self._maybe_rebuild(user_id)
        return result

    def feedback_history(
        self,
        user_id: str,
        feedback_type: str | None = None,
        days: int = 30,
        limit: int = 100,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        return self.feedback.history(user_id, feedback_type, days=days, limit=limit, now=now)

    def implicit_feedback(
        self, user_id: str, days: int = 30, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        since = (now or datetime.now()) - timedelta(days=days)
        return detect_implicit_feedback(self.event_store.get_events(user_id, since=since))

    # ─────────────────────────────────────────────────────────────────────
    # Views and data management
    # ─────────────────────────────────────────────────────────────────────

    def model_summary(self, user_id: str) -> dict[str, Any]:
        """Client projection of the model: top hours and days instead of full score maps."""
        model = self.get_model(user_id)
        pattern = model.productivity_pattern
        estimation = model.estimation_model
        prefs = model.preferences
        notification_prefs = prefs.notification_preferences

        top_hours = sorted(pattern.hourly_scores.items(), key=lambda kv: (-kv[1], kv[0]))[:3]
        top_days = sorted(pattern.day_of_week_scores.items(), key=lambda kv: -kv[1])[:2]

        return {
            "user_id": model.user_id,
            "last_updated": model.last_updated.isoformat(),
            "samples_used": model.samples_used,
            "overall_confidence": model.overall_confidence,
            "productivity": {
                "peak_hours": [hour for hour, _ in top_hours],
                "peak_days": [day for day, _ in top_days],
                "peak_windows": [w.to_dict() for w in pattern.peak_productivity_windows],
                "optimal_focus_duration": pattern.optimal_focus_duration,
            },
            "estimation": {
                "global_accuracy": estimation.global_accuracy,
                "by_task_type": {t: e.to_dict() for t, e in estimation.by_task_type.items()},
                "by_size": {s: e.to_dict() for s, e in estimation.by_size.items()},
                "suggestions": list(estimation.improvement_suggestions),
            },
            "preferences": {
                "communication_style": prefs.communication_style.to_dict(),
                "notification_preferences": {
                    "peak_engagement_hour": notification_prefs.peak_engagement_hour,
                    "grouping_preference": notification_prefs.grouping_preference,
                    "quiet_hours": (
                        notification_prefs.quiet_hours.to_dict()
                        if notification_prefs.quiet_hours
                        else None
                    ),
                },
                "work_style": prefs.work_style.to_dict(),
                "top_suggestion_types": list(prefs.suggestion_preferences.most_valuable_suggestions),
                "least_valuable_suggestion_types": list(
                    prefs.suggestion_preferences.least_valuable_suggestions
                ),
            },
        }

    def get_learning_insights(self, user_id: str) -> dict[str, Any]:
        """Short human-readable summary of what the engine has learned."""
        model = self.get_model(user_id)
        pattern = model.productivity_pattern
        accuracy = model.estimation_model.global_accuracy
        prefs = model.preferences

        if accuracy > 1.1:
            bias = "overestimate"
        elif accuracy < 0.9:
            bias = "underestimate"
        else:
            bias = "accurate"

        best_days = sorted(pattern.day_of_week_scores.items(), key=lambda kv: -kv[1])[:2]

        return {
            "productivity_summary": {
                "peak_hours": [
                    f"{format_hour(w.start_hour)}-{format_hour(w.end_hour)}"
                    for w in pattern.peak_productivity_windows[:3]
                ],
                "optimal_focus_duration": pattern.optimal_focus_duration,
                "best_days": [day for day, _ in best_days],
            },
            "estimation_summary": {
                "bias": bias,
                "adjustment_percent": round(abs(accuracy - 1) * 100),
                "accuracy": round(accuracy * 100),
            },
            "preference_summary": {
                "response_style": prefs.communication_style.preferred_length,
                "notification_tolerance": prefs.notification_preferences.grouping_preference,
                "work_style": prefs.work_style.chronotype,
            },
            "data_points": model.samples_used,
            "days_covered": model.days_covered,
            "overall_confidence": model.overall_confidence,
        }

    def clear_learning_data(self, user_id: str) -> dict[str, Any]:
        """Forget everything about a user: stored data, model, counters, queue and locks."""
        removed = self.event_store.clear_user(user_id)
        self.model_store.delete(user_id)
        removed["sent_notifications"] = self.limiter.reset(user_id)
        self.limiter.forget(user_id)
        removed["pending_notifications"] = notification_queue.clear_user(
            user_id, db_path=self.notifications_db
        )
        with self._counter_lock:
            self._events_since_build.pop(user_id, None)
        return {"success": True, "user_id": user_id, "removed": removed}

    def export_learning_data(self, user_id: str, days: int = 365) -> dict[str, Any]:
        since = datetime.now() - timedelta(days=days)
        return {
            "user_id": user_id,
            "events": self.event_store.get_events(user_id, since=since),
            "estimation_records": [
                r.to_dict() for r in self.event_store.get_estimation_records(user_id, since=since)
            ],
            "model": self.get_model(user_id).to_dict(),
        }
