"""
Tool: Feedback Collector
Purpose: Explicit feedback on suggestions and predictions, plus implicit signals

Explicit feedback is stored in learning_feedback and, where it carries a
learnable signal, fed back into the typed record tables:

    suggestion             -> suggestion_accepted / suggestion_dismissed event;
                              a rating of 2 or less flags the suggestion type
                              as low value
    prediction             -> accuracy score; a duration prediction with both
                              values positive becomes an estimation record
    preference_correction  -> preference_set event for the corrected key
    general                -> stored only

Implicit signals are read straight off the raw event log and never stored.

Usage:
    python -m personalize.cli --action feedback --user alice \\
        --data '{"type": "suggestion", "suggestion_type": "break", "outcome": "dismissed", "rating": 1}'

    collector = FeedbackCollector(event_store)
    collector.suggestion_feedback("alice", "sug_1", "break", "dismissed", rating=1)
    signals = detect_implicit_feedback(event_store.get_events("alice"))

Output:
    Every collect method returns {"success": True, "feedback_id": ..., ...}
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any

from personalize.errors import InvalidInput
from personalize.learning import EXPLICIT_PREFERENCE_KEYS
from personalize.learning.event_store import EventStore
from personalize.logging_config import get_logger

logger = get_logger(__name__)

FEEDBACK_TYPES = ["suggestion", "prediction", "preference_correction", "general"]

SUGGESTION_OUTCOMES = ["accepted", "dismissed", "modified"]

# Prediction types whose values are durations in minutes
DURATION_PREDICTIONS = ["duration", "time_estimate", "task_duration"]

LOW_RATING = 2

# Implicit signal thresholds
MIN_NOTIFICATION_EVENTS = 5
LOW_INTERACTION_RATE = 0.2
MIN_LATE_NIGHT_COMPLETIONS = 5
LATE_NIGHT_SHARE = 0.2


def prediction_accuracy(predicted: Any, actual: Any) -> float:
    """1.0 for a perfect prediction, falling with relative error; 0.5 when incomparable."""
    if isinstance(predicted, bool) or isinstance(actual, bool):
        return 1.0 if predicted == actual else 0.0
    if isinstance(predicted, (int, float)) and isinstance(actual, (int, float)):
        if actual == 0:
            return 1.0 if predicted == 0 else 0.0
        return round(max(0.0, 1 - abs(predicted - actual) / abs(actual)), 4)
    if isinstance(predicted, str) and isinstance(actual, str):
        return 1.0 if predicted == actual else 0.0
    return 0.5


def is_late_night(hour: int) -> bool:
    return hour >= 22 or hour < 6


def detect_implicit_feedback(events: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Read preference signals off raw events the user never stated.

    Args:
        events: Rows from EventStore.get_events (event_type, data, created_at)

    Returns:
        Signals as {type, strength, interpretation, action}
    """
    signals: list[dict[str, Any]] = []

    by_type: dict[str, list[str]] = defaultdict(list)
    for event in events:
        if event["event_type"] in ("notification_clicked", "notification_ignored"):
            notification_type = (event.get("data") or {}).get("notification_type")
            if notification_type:
                by_type[notification_type].append(event["event_type"])

    for notification_type, outcomes in sorted(by_type.items()):
        if len(outcomes) < MIN_NOTIFICATION_EVENTS:
            continue
        rate = outcomes.count("notification_clicked") / len(outcomes)
        if rate < LOW_INTERACTION_RATE:
            signals.append({
                "type": "notification_preference",
                "strength": "strong",
                "interpretation": (
                    f'User rarely engages with "{notification_type}" notifications '
                    f"({round(rate * 100)}% rate)"
                ),
                "action": "reduce_notification_frequency",
                "notification_type": notification_type,
            })

    completions = [e for e in events if e["event_type"] == "item_completed"]
    late = [
        e for e in completions
        if is_late_night(datetime.fromisoformat(e["created_at"]).hour)
    ]
    if len(late) > MIN_LATE_NIGHT_COMPLETIONS and len(late) > len(completions) * LATE_NIGHT_SHARE:
        signals.append({
            "type": "productivity_pattern",
            "strength": "medium",
            "interpretation": "User is productive during late night hours",
            "action": "recalibrate_productivity_model",
        })

    return signals


class FeedbackCollector:
    """Stores explicit feedback and routes its signal into the event store."""

    def __init__(self, event_store: EventStore):
        self.event_store = event_store

    def suggestion_feedback(
        self,
        user_id: str,
        suggestion_id: str | None,
        suggestion_type: str,
        outcome: str,
        rating: int | None = None,
        reason: str | None = None,
        timestamp: datetime | None = None,
    ) -> dict[str, Any]:
        if outcome not in SUGGESTION_OUTCOMES:
            raise InvalidInput(
                f"Unknown suggestion outcome: {outcome}",
                [{"loc": ["outcome"], "msg": f"must be one of {SUGGESTION_OUTCOMES}"}],
            )

        event_type = "suggestion_dismissed" if outcome == "dismissed" else "suggestion_accepted"
        event = self.event_store.record_event(
            user_id,
            event_type,
            {"suggestion_id": suggestion_id, "suggestion_type": suggestion_type, "reason": reason},
            timestamp=timestamp,
        )
        feedback_id = self.event_store.record_feedback(
            user_id,
            "suggestion",
            context={
                "suggestion_id": suggestion_id,
                "suggestion_type": suggestion_type,
                "outcome": outcome,
                "reason": reason,
            },
            rating=rating,
            timestamp=timestamp,
        )

        flagged = rating is not None and rating <= LOW_RATING
        if flagged:
            self.event_store.flag_low_value_suggestion(
                user_id, suggestion_type, rating=rating, reason=reason, timestamp=timestamp
            )
            logger.info("suggestion_type_flagged", user_id=user_id, suggestion_type=suggestion_type)

        return {
            "success": True,
            "feedback_id": feedback_id,
            "event_id": event["event_id"],
            "flagged_low_value": flagged,
        }

    def prediction_feedback(
        self,
        user_id: str,
        prediction_type: str,
        predicted: Any,
        actual: Any,
        context: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> dict[str, Any]:
        context = context or {}
        accuracy = prediction_accuracy(predicted, actual)
        feedback_id = self.event_store.record_feedback(
            user_id,
            "prediction",
            context={
                **context,
                "prediction_type": prediction_type,
                "predicted": predicted,
                "actual": actual,
                "accuracy": accuracy,
            },
            timestamp=timestamp,
        )

        record = None
        if (
            prediction_type in DURATION_PREDICTIONS
            and _is_positive_number(predicted)
            and _is_positive_number(actual)
        ):
            record = self.event_store.record_actual_completion(
                user_id,
                estimated_minutes=float(predicted),
                actual_minutes=float(actual),
                task_id=context.get("task_id"),
                task_type=context.get("task_type"),
                task_size=context.get("task_size"),
                title=context.get("title"),
                project_id=context.get("project_id"),
                timestamp=timestamp,
            )

        return {
            "success": True,
            "feedback_id": feedback_id,
            "accuracy": accuracy,
            "estimation_record_id": record.id if record else None,
        }

    def preference_correction(
        self,
        user_id: str,
        key: str,
        value: Any,
        previous: Any = None,
        timestamp: datetime | None = None,
    ) -> dict[str, Any]:
        """Store a corrected setting and apply it as a stated preference."""
        if key not in EXPLICIT_PREFERENCE_KEYS:
            raise InvalidInput(
                f"Unknown preference: {key}",
                [{"loc": ["key"], "msg": f"must be one of {EXPLICIT_PREFERENCE_KEYS}"}],
            )
        # record_event validates the value before anything is stored
        event = self.event_store.record_event(
            user_id, "preference_set", {key: value}, timestamp=timestamp
        )
        feedback_id = self.event_store.record_feedback(
            user_id,
            "preference_correction",
            context={"key": key},
            correction={"field": key, "old_value": previous, "new_value": value},
            timestamp=timestamp,
        )
        return {"success": True, "feedback_id": feedback_id, "event_id": event["event_id"]}

    def general_feedback(
        self,
        user_id: str,
        rating: int,
        comment: str | None = None,
        context: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> dict[str, Any]:
        feedback_id = self.event_store.record_feedback(
            user_id, "general", context=context, rating=rating, comment=comment, timestamp=timestamp
        )
        return {"success": True, "feedback_id": feedback_id}

    def history(
        self,
        user_id: str,
        feedback_type: str | None = None,
        days: int = 30,
        limit: int = 100,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Feedback from the last `days` days, newest first."""
        if feedback_type and feedback_type not in FEEDBACK_TYPES:
            raise InvalidInput(
                f"Unknown feedback type: {feedback_type}",
                [{"loc": ["type"], "msg": f"must be one of {FEEDBACK_TYPES}"}],
            )
        since = (now or datetime.now()) - timedelta(days=days)
        return self.event_store.get_feedback(
            user_id, feedback_type=feedback_type, since=since, limit=limit
        )


def _is_positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0
