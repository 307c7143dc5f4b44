"""Integration tests for the engine: events in, adapted decisions out.

These tests exercise the full path through real SQLite stores:
1. Events are recorded and routed to typed records
2. Every N events the model is rebuilt
3. Estimates, suggestions and notifications read the rebuilt model
4. Queued notifications are released through the frequency caps
5. Feedback reshapes the model
6. Clearing a user removes everything learned
"""

from datetime import datetime, timedelta, timezone

import pytest

from personalize.errors import InvalidInput

pytestmark = pytest.mark.integration


def record_slow_coding(engine, user_id, count=10):
    """`count` coding tasks, each taking twice the estimate."""
    results = []
    base = datetime.now()
    for i in range(count):
        results.append(
            engine.record_event(
                user_id,
                "item_completed",
                {"item": {"type": "coding", "estimated_minutes": 60}, "actual_duration": 120},
                timestamp=base - timedelta(minutes=i),
            )
        )
    return results


# ─────────────────────────────────────────────────────────────────────────────
# Learning
# ─────────────────────────────────────────────────────────────────────────────


class TestLearningFlow:
    """Tests for event recording and automatic rebuilds."""

    def test_tenth_event_rebuilds_model(self, engine, mock_user_id):
        results = record_slow_coding(engine, mock_user_id)

        assert [r["model_rebuilt"] for r in results] == [False] * 9 + [True]
        assert results[0]["derived"] == ["estimation_records", "productivity_records"]

        model = engine.get_model(mock_user_id)
        assert model.samples_used > 0
        assert model.estimation_model.by_task_type["coding"].accuracy == 0.5

    def test_unknown_event_rejected(self, engine, mock_user_id):
        with pytest.raises(InvalidInput):
            engine.record_event(mock_user_id, "item_teleported", {})

    def test_direct_completion_counts_towards_rebuild(self, engine, mock_user_id):
        result = engine.record_actual_completion(
            mock_user_id, {"estimated_minutes": 30, "actual_minutes": 45, "task_type": "writing"}
        )

        assert result["success"] is True
        assert result["record"]["task_size"] == "medium"

    def test_partial_quiet_hours_rejected(self, engine, mock_user_id):
        with pytest.raises(InvalidInput):
            engine.record_event(mock_user_id, "preference_set", {"quiet_hours": {"start": 22}})

        assert engine.rebuild(mock_user_id)["success"] is True
        assert engine.get_model(mock_user_id).preferences.notification_preferences.quiet_hours is None

    def test_aware_timestamps_do_not_break_estimates(self, engine, mock_user_id):
        """UTC event times are stored as local time, so history compares with the local clock."""
        aware = datetime.now(timezone.utc)
        for i in range(3):
            engine.record_event(
                mock_user_id,
                "item_completed",
                {
                    "item": {
                        "type": "coding",
                        "estimated_minutes": 60,
                        "title": "Fix login bug",
                        "project_id": "p1",
                    },
                    "actual_duration": 90,
                },
                timestamp=aware - timedelta(minutes=i),
            )

        prediction = engine.estimate(
            mock_user_id,
            {"type": "coding", "estimated_minutes": 60, "title": "Fix login page", "project_id": "p1"},
        )

        assert prediction["estimated_minutes"] > 0
        records = engine.event_store.get_estimation_records(mock_user_id)
        assert all(r.created_at.tzinfo is None for r in records)

    def test_manual_rebuild_reports_version(self, engine, mock_user_id):
        first = engine.rebuild(mock_user_id)
        second = engine.rebuild(mock_user_id)

        assert first["success"] is True
        assert second["version"] == first["version"] + 1


# ─────────────────────────────────────────────────────────────────────────────
# Adaptation
# ─────────────────────────────────────────────────────────────────────────────


class TestAdaptationFlow:
    def test_estimate_uses_learned_bias(self, engine, mock_user_id):
        record_slow_coding(engine, mock_user_id)

        prediction = engine.estimate(mock_user_id, {"type": "coding", "estimated_minutes": 60})

        assert prediction["estimated_minutes"] >= 120
        assert "Tasks of this type typically take longer than estimated" in prediction["factors"]

    def test_new_user_gets_own_estimate(self, engine):
        prediction = engine.estimate("newcomer", {"type": "coding", "estimated_minutes": 45})

        assert prediction["estimated_minutes"] == 45

    def test_dismissed_suggestion_type_suppressed(self, engine, mock_user_id):
        for _ in range(5):
            engine.record_event(
                mock_user_id, "suggestion_dismissed", {"suggestion_type": "hydrate"}
            )
        engine.rebuild(mock_user_id)

        adapted = engine.adapt_suggestions(
            mock_user_id,
            [
                {"type": "hydrate", "message": "Drink some water."},
                {"type": "break", "message": "Stretch for a minute."},
            ],
        )

        assert [s["type"] for s in adapted] == ["break"]

    def test_quiet_hours_defer_and_queue(self, engine, mock_user_id):
        engine.record_event(mock_user_id, "preference_set", {"quiet_hours": {"start": 22, "end": 7}})
        engine.rebuild(mock_user_id)
        late = datetime(2026, 3, 11, 23, 0)

        result = engine.deliver_notification(
            mock_user_id, {"type": "reminder", "message": "Water the plants."}, now=late
        )

        assert result["status"] == "scheduled"
        assert result["reason"] == "deferred"
        assert result["queued"] is True
        assert result["adapted"]["deliver_at"] == "2026-03-12T07:00:00"


class TestDeliveryFlow:
    """Tests for rate-limited delivery."""

    def test_sixth_send_in_an_hour_is_skipped(self, engine, mock_user_id, now):
        notification = {"type": "reminder", "message": "Check in.", "priority": "medium"}

        statuses = [
            engine.deliver_notification(mock_user_id, notification, now=now)["status"] for _ in range(6)
        ]

        assert statuses == ["sent"] * 5 + ["skipped"]
        assert engine.has_reached_limit(mock_user_id, now)["hourly_limit_reached"] is True

    def test_urgent_sent_over_the_cap(self, engine, mock_user_id, now):
        for _ in range(5):
            engine.deliver_notification(mock_user_id, {"type": "reminder", "message": "x"}, now=now)

        result = engine.deliver_notification(
            mock_user_id, {"type": "alert", "message": "Server down", "priority": "urgent"}, now=now
        )

        assert result["status"] == "sent"

    def test_invalid_priority_rejected(self, engine, mock_user_id):
        with pytest.raises(InvalidInput):
            engine.deliver_notification(
                mock_user_id, {"type": "reminder", "message": "x", "priority": "critical"}
            )


class TestPendingRelease:
    """Tests for queued notifications reaching the user."""

    LATE = datetime(2026, 3, 11, 23, 0)
    MORNING = datetime(2026, 3, 12, 7, 30)

    @pytest.fixture
    def queued_id(self, engine, mock_user_id):
        engine.record_event(mock_user_id, "preference_set", {"quiet_hours": {"start": 22, "end": 7}})
        engine.rebuild(mock_user_id)
        result = engine.deliver_notification(
            mock_user_id, {"type": "reminder", "message": "Water the plants."}, now=self.LATE
        )
        return result["notification_id"]

    def test_not_released_before_its_time(self, engine, mock_user_id, queued_id):
        early = datetime(2026, 3, 12, 6, 0)

        result = engine.release_due_notifications(mock_user_id, now=early)

        assert result["released"] == []
        assert engine.pending_notifications(mock_user_id, due_only=True, now=early) == []
        assert [p["id"] for p in engine.pending_notifications(mock_user_id)] == [queued_id]

    def test_released_once_due(self, engine, mock_user_id, queued_id):
        result = engine.release_due_notifications(mock_user_id, now=self.MORNING)

        assert [n["id"] for n in result["released"]] == [queued_id]
        assert engine.limiter.counts(mock_user_id, self.MORNING)["hourly"] == 1
        assert engine.pending_notifications(mock_user_id) == []
        assert engine.release_due_notifications(mock_user_id, now=self.MORNING)["released"] == []

    def test_held_when_cap_reached(self, engine, mock_user_id, queued_id):
        for _ in range(5):
            engine.deliver_notification(
                mock_user_id, {"type": "check_in", "message": "How is it going?"}, now=self.MORNING
            )

        result = engine.release_due_notifications(mock_user_id, now=self.MORNING)

        assert result["released"] == []
        assert result["held"] == [queued_id]
        assert result["reason"] == "hourly_limit_reached"
        assert [p["id"] for p in engine.pending_notifications(mock_user_id)] == [queued_id]

    def test_shown_and_dismissed(self, engine, mock_user_id, queued_id):
        assert engine.mark_notification(mock_user_id, queued_id, "shown")["success"] is True
        assert engine.mark_notification(mock_user_id, "missing", "dismissed")["success"] is False
        assert engine.pending_notifications(mock_user_id) == []
        with pytest.raises(InvalidInput):
            engine.mark_notification(mock_user_id, queued_id, "snoozed")


class TestFeedbackFlow:
    def test_low_rated_type_ranked_least_valuable(self, engine, mock_user_id):
        engine.submit_feedback(
            mock_user_id,
            {"type": "suggestion", "suggestion_type": "hydrate", "outcome": "accepted", "rating": 1},
        )
        engine.rebuild(mock_user_id)

        summary = engine.model_summary(mock_user_id)

        assert summary["preferences"]["least_valuable_suggestion_types"] == ["hydrate"]
        assert engine.feedback_history(mock_user_id, "suggestion")[0]["rating"] == 1

    def test_prediction_feedback_feeds_estimates(self, engine, mock_user_id):
        for _ in range(5):
            engine.submit_feedback(
                mock_user_id,
                {
                    "type": "prediction",
                    "prediction_type": "duration",
                    "predicted": 30,
                    "actual": 60,
                    "context": {"task_type": "email"},
                },
            )
        engine.rebuild(mock_user_id)

        assert engine.get_model(mock_user_id).estimation_model.by_task_type["email"].accuracy == 0.5

    def test_feedback_missing_fields_rejected(self, engine, mock_user_id):
        with pytest.raises(InvalidInput):
            engine.submit_feedback(mock_user_id, {"type": "suggestion", "rating": 2})

    def test_implicit_signal_from_ignored_notifications(self, engine, mock_user_id):
        for _ in range(5):
            engine.record_event(mock_user_id, "notification_ignored", {"notification_type": "digest"})

        signals = engine.implicit_feedback(mock_user_id)

        assert [s["action"] for s in signals] == ["reduce_notification_frequency"]


def test_clear_learning_data(engine, mock_user_id, now):
    record_slow_coding(engine, mock_user_id)
    engine.deliver_notification(mock_user_id, {"type": "reminder", "message": "x"}, now=now)

    result = engine.clear_learning_data(mock_user_id)

    assert result["removed"]["learning_events"] == 10
    assert result["removed"]["estimation_records"] == 10
    assert result["removed"]["sent_notifications"] == 1
    assert engine.get_model(mock_user_id).is_neutral
    assert engine.export_learning_data(mock_user_id)["events"] == []


def test_clear_learning_data_drops_user_locks(engine, mock_user_id, now):
    engine.deliver_notification(mock_user_id, {"type": "reminder", "message": "x"}, now=now)
    engine.rebuild(mock_user_id)
    assert mock_user_id in engine.limiter._user_locks
    assert mock_user_id in engine.model_store._build_locks

    engine.clear_learning_data(mock_user_id)

    assert mock_user_id not in engine.limiter._user_locks
    assert mock_user_id not in engine.model_store._build_locks
