"""Tests for personalize/adaptive/estimates.py

Key behaviors:
- A user who takes twice as long on coding gets a doubled estimate
- Sparse data returns the user's own estimate unchanged
- Batch totals discount confidence for larger batches, but not for one task
- Better-estimate advice and tips read the model
"""

from datetime import datetime

import pytest

from personalize.adaptive.estimates import (
    base_estimate,
    calculate_total_time,
    calibrate,
    calibration_factors,
    estimation_confidence,
    get_estimation_tips,
    suggest_better_estimate,
)
from personalize.learning.models import (
    EstimationModel,
    ProductivityPattern,
    Task,
    TimeWindow,
    TypeEstimation,
    UserModel,
)


@pytest.fixture
def slow_coder(make_model):
    """Ten coding tasks, each taking twice the estimate."""
    return make_model(
        estimation_model=EstimationModel(
            global_accuracy=1.0,
            by_task_type={
                "coding": TypeEstimation(
                    accuracy=0.5, bias="underestimate", sample_size=10, average_error=20
                )
            },
        )
    )


class TestCalibrate:
    """Tests for single-task calibration."""

    def test_underestimated_type_doubles_estimate(self, slow_coder, now):
        """60 minutes of coding becomes 120 with confidence 0.5 + 0.2."""
        prediction = calibrate(Task(type="coding", estimated_minutes=60), slow_coder, now=now)

        assert prediction.estimated_minutes == 120
        assert prediction.confidence == 0.7
        assert "Tasks of this type typically take longer than estimated" in prediction.factors

    def test_range_from_average_error(self, slow_coder, now):
        """average_error 20 gives a variance of 1/3."""
        prediction = calibrate(Task(type="coding", estimated_minutes=60), slow_coder, now=now)

        assert prediction.low == 80
        assert prediction.high == 160

    def test_sparse_model_returns_own_estimate(self, mock_user_id, now):
        model = UserModel.neutral(mock_user_id)

        prediction = calibrate(Task(type="coding", estimated_minutes=45), model, now=now)

        assert prediction.estimated_minutes == 45
        assert prediction.factors == ()
        assert all(f.is_neutral for f in calibration_factors(Task(type="coding"), model, now=now).values())

    def test_size_default_without_estimate(self, mock_user_id, now):
        prediction = calibrate(Task(size="large"), UserModel.neutral(mock_user_id), now=now)

        assert prediction.estimated_minutes == 120

    def test_complexity_explained(self, mock_user_id, now):
        prediction = calibrate(
            Task(estimated_minutes=50, complexity="complex"), UserModel.neutral(mock_user_id), now=now
        )

        assert prediction.estimated_minutes == 70
        assert "Adjusted for high complexity" in prediction.factors

    def test_slow_hour_explained(self, make_model):
        model = make_model(
            productivity_pattern=ProductivityPattern(hourly_scores={9: 1.0, 15: 0.4})
        )

        prediction = calibrate(
            Task(estimated_minutes=60), model, now=datetime(2026, 3, 11, 15)
        )

        assert prediction.estimated_minutes == 90
        assert "Adjusted for lower productivity at this time of day" in prediction.factors

    def test_estimate_never_below_one_minute(self, mock_user_id, now):
        prediction = calibrate(
            Task(estimated_minutes=0.2, complexity="simple"), UserModel.neutral(mock_user_id), now=now
        )

        assert prediction.estimated_minutes == 1
        assert prediction.low >= 1


class TestConfidence:
    def test_clamped_to_range(self, mock_user_id):
        model = EstimationModel(global_accuracy=0.05)

        assert estimation_confidence(Task(), model) == 0.1

    def test_large_error_discounts(self):
        model = EstimationModel(
            by_task_type={"coding": TypeEstimation(accuracy=0.5, sample_size=10, average_error=45)}
        )

        assert estimation_confidence(Task(type="coding"), model) == 0.56


class TestTotalTime:
    """Tests for batch totals."""

    def test_empty_batch(self, slow_coder, now):
        result = calculate_total_time([], slow_coder, now=now)

        assert result["total"] == 0
        assert result["confidence"] == 0.0

    def test_single_task_keeps_its_confidence(self, slow_coder, now):
        task = Task(type="coding", estimated_minutes=60)

        result = calculate_total_time([task], slow_coder, now=now)

        assert result["total"] == 120
        assert result["confidence"] == calibrate(task, slow_coder, now=now).confidence

    def test_batch_penalty(self, slow_coder, now):
        """Five tasks: average 0.7 times max(0.7, 1 - 0.1) = 0.63."""
        tasks = [Task(type="coding", estimated_minutes=30)] * 5

        result = calculate_total_time(tasks, slow_coder, now=now)

        assert result["total"] == 300
        assert result["confidence"] == 0.63
        assert len(result["breakdown"]) == 5


class TestSuggestBetterEstimate:
    def test_significantly_longer(self, slow_coder, now):
        advice = suggest_better_estimate(Task(type="coding", estimated_minutes=60), slow_coder, now=now)

        assert advice["suggested_minutes"] == 120
        assert advice["current_minutes"] == 60
        assert "significantly longer" in advice["reason"]

    def test_aligned(self, mock_user_id, now):
        advice = suggest_better_estimate(
            Task(estimated_minutes=30), UserModel.neutral(mock_user_id), now=now
        )

        assert advice["reason"] == "Your estimate aligns well with your historical performance."


class TestTips:
    def test_tips_for_slow_coder_with_peak_window(self, make_model):
        model = make_model(
            estimation_model=EstimationModel(
                global_accuracy=0.45,
                by_task_type={"coding": TypeEstimation(accuracy=0.5, sample_size=10)},
            ),
            productivity_pattern=ProductivityPattern(
                peak_productivity_windows=(TimeWindow(9, 12, 1.0),)
            ),
        )

        tips = get_estimation_tips(model)

        assert any('underestimate "coding"' in t for t in tips)
        assert any("accuracy varies" in t for t in tips)
        assert any("09:00-12:00" in t for t in tips)

    def test_no_tips_for_neutral_model(self, mock_user_id):
        assert get_estimation_tips(UserModel.neutral(mock_user_id)) == []


def test_base_estimate_fallback():
    assert base_estimate(Task()) == 30
