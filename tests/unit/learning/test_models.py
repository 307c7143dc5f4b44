"""Tests for personalize/learning/models.py

The model dataclasses are frozen snapshots persisted as JSON. Key behaviors:
- Time windows and quiet hours wrap midnight when start > end
- A neutral model carries every default
- Estimation records expose accuracy (est/act) and ratio (act/est)
- Snapshots survive a to_dict / from_dict trip with int hour keys intact
"""

import dataclasses
import json
from datetime import datetime

import pytest

from personalize.learning.models import (
    EstimationRecord,
    ProductivityPattern,
    QuietHours,
    Suggestion,
    TimePrediction,
    TimeWindow,
    UserModel,
    format_hour,
)


class TestTimeWindow:
    """Tests for peak productivity windows."""

    def test_contains_is_end_exclusive(self):
        """A 9 -> 12 window covers 9, 10 and 11 but not 12."""
        window = TimeWindow(start_hour=9, end_hour=12)

        assert window.contains(9)
        assert window.contains(11)
        assert not window.contains(12)
        assert not window.contains(8)

    def test_wrapping_window(self):
        """22 -> 2 covers late evening and the first hours after midnight."""
        window = TimeWindow(start_hour=22, end_hour=2)

        assert window.wraps_midnight
        assert window.hours() == [22, 23, 0, 1]
        assert window.contains(23)
        assert window.contains(1)
        assert not window.contains(2)
        assert not window.contains(12)

    def test_day_specific_window(self):
        """A window tied to a day only matches that day."""
        window = TimeWindow(start_hour=9, end_hour=11, day="monday")

        assert window.contains(10, "monday")
        assert not window.contains(10, "tuesday")


class TestQuietHours:
    """Tests for quiet hour ranges."""

    def test_overnight_range(self):
        """22:00 -> 07:00 wraps midnight."""
        quiet = QuietHours(start=22, end=7)

        assert quiet.contains(23)
        assert quiet.contains(3)
        assert not quiet.contains(7)
        assert not quiet.contains(12)

    def test_daytime_range(self):
        quiet = QuietHours(start=12, end=14)

        assert quiet.contains(13)
        assert not quiet.contains(14)

    def test_equal_start_and_end_is_empty(self):
        """start == end means no quiet hours at all."""
        quiet = QuietHours(start=8, end=8)

        assert not any(quiet.contains(h) for h in range(24))


class TestUserModel:
    """Tests for the user model snapshot."""

    def test_neutral_model_has_defaults(self):
        """A brand-new user gets a neutral model."""
        model = UserModel.neutral("alice")

        assert model.is_neutral
        assert model.overall_confidence == 0.0
        assert model.estimation_model.global_accuracy == 1.0
        assert model.productivity_pattern.optimal_focus_duration == 25
        assert model.preferences.communication_style.preferred_length == "moderate"
        assert model.preferences.notification_preferences.quiet_hours is None

    def test_snapshot_is_frozen(self):
        """Snapshots cannot be edited in place."""
        model = UserModel.neutral("alice")

        with pytest.raises(dataclasses.FrozenInstanceError):
            model.samples_used = 5

    def test_json_persistence_keeps_hour_keys(self):
        """Hour keys become strings in JSON and come back as ints."""
        model = dataclasses.replace(
            UserModel.neutral("alice"),
            samples_used=12,
            productivity_pattern=ProductivityPattern(
                hourly_scores={9: 1.0, 14: 0.5},
                peak_productivity_windows=(TimeWindow(9, 10, 1.0, label="Morning"),),
            ),
        )

        restored = UserModel.from_dict(json.loads(json.dumps(model.to_dict())))

        assert restored.productivity_pattern.hourly_scores == {9: 1.0, 14: 0.5}
        assert restored.productivity_pattern.peak_productivity_windows[0].label == "Morning"
        assert restored.samples_used == 12
        assert restored.last_updated == model.last_updated


class TestEstimationRecord:
    """Tests for estimation record arithmetic."""

    def test_accuracy_and_ratio(self):
        """A 60 minute estimate that took 120 has accuracy 0.5 and ratio 2.0."""
        record = EstimationRecord(
            id="est_1", user_id="alice", estimated_minutes=60, actual_minutes=120
        )

        assert record.accuracy == 0.5
        assert record.ratio == 2.0
        assert record.error == 60

    def test_from_dict_parses_timestamp(self):
        record = EstimationRecord.from_dict(
            {
                "id": "est_1",
                "user_id": "alice",
                "estimated_minutes": 30,
                "actual_minutes": 45,
                "created_at": "2026-03-11T10:00:00",
                "unknown_column": "ignored",
            }
        )

        assert record.created_at == datetime(2026, 3, 11, 10, 0)

    def test_generated_ids_are_unique(self):
        assert EstimationRecord.generate_id() != EstimationRecord.generate_id()


class TestOutputShapes:
    """Tests for the dict shapes returned to callers."""

    def test_time_prediction_range(self):
        prediction = TimePrediction(estimated_minutes=60, confidence=0.7, low=45, high=75)

        assert prediction.to_dict()["range"] == {"low": 45, "high": 75}

    def test_suggestion_gets_an_id(self):
        suggestion = Suggestion(type="take_break", message="Time for a break.")

        assert suggestion.id.startswith("sug_")
        assert suggestion.to_dict()["personalization_applied"] == []


@pytest.mark.parametrize(
    "hour,label",
    [(0, "12am"), (9, "9am"), (12, "12pm"), (17, "5pm"), (24, "12am")],
)
def test_format_hour(hour, label):
    assert format_hour(hour) == label
