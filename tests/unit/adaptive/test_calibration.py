"""Tests for personalize/adaptive/calibration.py

Every factor must be neutral (value 1.0, is_neutral=True) when the model has
too little data, and must stay inside its clamp otherwise.
"""

from datetime import datetime, timedelta

import pytest

from personalize.adaptive.calibration import (
    Calibrated,
    complexity_factor,
    context_factor,
    day_of_week_factor,
    extract_keywords,
    size_factor,
    time_of_day_factor,
    type_factor,
)
from personalize.learning.models import (
    EstimationModel,
    ProductivityPattern,
    SizeEstimation,
    Task,
    TypeEstimation,
)


def estimation(accuracy: float, samples: int) -> EstimationModel:
    return EstimationModel(
        by_task_type={"coding": TypeEstimation(accuracy=accuracy, sample_size=samples)},
        by_size={"large": SizeEstimation(accuracy=accuracy, sample_size=samples)},
    )


class TestCalibrated:
    def test_neutral_value(self):
        neutral = Calibrated.neutral("no data")

        assert neutral.value == 1.0
        assert neutral.is_neutral
        assert neutral.reason == "no data"


class TestTypeAndSizeFactors:
    """Tests for task type and size calibration."""

    def test_unknown_type_is_neutral(self):
        assert type_factor(Task(type="design"), estimation(0.5, 10)).is_neutral

    def test_too_few_samples_is_neutral(self):
        assert type_factor(Task(type="coding"), estimation(0.5, 2)).is_neutral

    def test_accuracy_inside_band_is_neutral(self):
        assert type_factor(Task(type="coding"), estimation(1.1, 10)).is_neutral

    def test_underestimated_type_doubles(self):
        factor = type_factor(Task(type="coding"), estimation(0.5, 10))

        assert not factor.is_neutral
        assert factor.value == 2.0

    def test_size_band_is_wider(self):
        """0.75 is outside the type band but inside the size band."""
        model = estimation(0.75, 10)

        assert not type_factor(Task(type="coding"), model).is_neutral
        assert size_factor(Task(size="large"), model).is_neutral

    def test_size_factor_outside_band(self):
        factor = size_factor(Task(size="large"), estimation(0.5, 4))

        assert factor.value == 2.0


class TestTimeFactors:
    """Tests for time-of-day and day-of-week calibration."""

    @pytest.fixture
    def pattern(self):
        return ProductivityPattern(
            hourly_scores={9: 1.0, 14: 0.5, 20: 0.0},
            day_of_week_scores={"monday": 1.0, "friday": 0.5},
        )

    def test_missing_hour_is_neutral(self, pattern):
        assert time_of_day_factor(pattern, datetime(2026, 3, 11, 11)).is_neutral

    def test_slow_hour_stretches_estimate(self, pattern):
        """Average 0.5 over a 0.5 slot is 1.0; over a 1.0 slot it is 0.7 (clamped)."""
        assert time_of_day_factor(pattern, datetime(2026, 3, 11, 14)).value == 1.0
        assert time_of_day_factor(pattern, datetime(2026, 3, 11, 9)).value == 0.7

    def test_zero_score_hour_uses_upper_clamp(self, pattern):
        assert time_of_day_factor(pattern, datetime(2026, 3, 11, 20)).value == 1.5

    def test_day_factor_clamped(self, pattern):
        friday = datetime(2026, 3, 13, 10)
        monday = datetime(2026, 3, 9, 10)

        assert day_of_week_factor(pattern, friday).value == 1.3
        assert day_of_week_factor(pattern, monday).value == 0.8

    def test_empty_pattern_is_neutral(self):
        now = datetime(2026, 3, 11, 10)

        assert time_of_day_factor(ProductivityPattern(), now).is_neutral
        assert day_of_week_factor(ProductivityPattern(), now).is_neutral


class TestComplexityFactor:
    @pytest.mark.parametrize(
        "complexity,value,neutral",
        [("simple", 0.8, False), ("moderate", 1.0, True), ("complex", 1.4, False), (None, 1.0, True)],
    )
    def test_multipliers(self, complexity, value, neutral):
        factor = complexity_factor(Task(complexity=complexity))

        assert factor.value == value
        assert factor.is_neutral is neutral


class TestContextFactor:
    """Tests for similar-task history."""

    def test_no_similar_history_is_neutral(self, make_record, now):
        history = [make_record(30, 60, title="Unrelated chore")]

        factor = context_factor(Task(title="Write quarterly report"), history, now)

        assert factor.is_neutral

    def test_project_ratio(self, make_record, now):
        history = [make_record(30, 45, project_id="p1") for _ in range(3)]

        factor = context_factor(Task(project_id="p1"), history, now)

        assert factor.value == 1.5

    def test_keyword_ratio_blends_with_project(self, make_record, now):
        """(project 1.0 + keyword 2.0) / 2 = 1.5."""
        history = [
            make_record(60, 60, project_id="p1", title="Sprint planning"),
            make_record(30, 60, title="Refactor billing module"),
        ]

        factor = context_factor(
            Task(project_id="p1", title="Billing export"), history, now
        )

        assert factor.value == 1.5

    def test_records_outside_window_ignored(self, make_record, now):
        old = now - timedelta(days=90)
        history = [make_record(30, 90, title="Billing export", created_at=old)]

        assert context_factor(Task(title="Billing export"), history, now).is_neutral

    def test_clamped(self, make_record, now):
        history = [make_record(10, 100, project_id="p1")]

        assert context_factor(Task(project_id="p1"), history, now).value == 2.0


def test_extract_keywords_drops_stopwords_and_short_words():
    assert extract_keywords("Fix the login bug on the billing page") == ["login", "billing", "page"]
    assert extract_keywords(None) == []
