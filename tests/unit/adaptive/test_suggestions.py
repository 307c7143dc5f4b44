"""Tests for personalize/adaptive/suggestions.py and timing.py

Key behaviors:
- Types accepted less than 15% of the time are suppressed, urgent included
- Suggestions far from their preferred time are delayed to its next occurrence
- Detailed planners never see "urgent"
- Output is ranked by predicted acceptance, ties in input order
- Inputs are never modified
"""

from datetime import datetime

import pytest

from personalize.adaptive.suggestions import (
    adapt_suggestions,
    generate_personalized_suggestion,
    predicted_acceptance,
    preferred_delay,
)
from personalize.adaptive.timing import hour_distance, minute_distance, next_occurrence, parse_hhmm
from personalize.learning.models import (
    CommunicationStyle,
    NotificationPreferences,
    Suggestion,
    SuggestionPreferences,
    WorkStyle,
)


class TestTiming:
    """Hour arithmetic on the 24-hour circle."""

    @pytest.mark.parametrize("a,b,distance", [(23, 1, 2), (1, 23, 2), (9, 15, 6), (0, 12, 12), (5, 5, 0)])
    def test_hour_distance(self, a, b, distance):
        assert hour_distance(a, b) == distance

    def test_next_occurrence_later_today(self):
        assert next_occurrence(datetime(2026, 3, 11, 10, 30), 15) == datetime(2026, 3, 11, 15, 0)

    def test_next_occurrence_is_strictly_after_now(self):
        now = datetime(2026, 3, 11, 15, 0)

        assert next_occurrence(now, 15) == datetime(2026, 3, 12, 15, 0)

    @pytest.mark.parametrize(
        "clock,target,distance",
        [((12, 5), (14, 30), 145), ((12, 31), (14, 30), 119), ((23, 50), (0, 10), 20)],
    )
    def test_minute_distance(self, clock, target, distance):
        now = datetime(2026, 3, 11, *clock)

        assert minute_distance(now, *target) == distance

    def test_parse_hhmm(self):
        assert parse_hhmm("09:30") == (9, 30)
        with pytest.raises(ValueError):
            parse_hhmm("25:00")


class TestSuppression:
    """Tests for low-acceptance suppression."""

    def test_low_acceptance_type_removed(self, make_model, now):
        model = make_model(
            suggestion_preferences=SuggestionPreferences(acceptance_rate_by_type={"habit": 0.1})
        )
        suggestions = [
            Suggestion(type="habit", message="Log your water intake."),
            Suggestion(type="break", message="Stretch for a minute."),
        ]

        adapted = adapt_suggestions(suggestions, model, now)

        assert [s.type for s in adapted] == ["break"]

    def test_urgent_is_still_suppressed(self, make_model, now):
        model = make_model(
            suggestion_preferences=SuggestionPreferences(acceptance_rate_by_type={"habit": 0.1})
        )

        adapted = adapt_suggestions([Suggestion(type="habit", message="Now!", priority="urgent")], model, now)

        assert adapted == []

    def test_unknown_type_is_kept(self, make_model, now):
        adapted = adapt_suggestions([Suggestion(type="new_kind", message="Hello.")], make_model(), now)

        assert len(adapted) == 1
        assert adapted[0].predicted_acceptance == 0.5


class TestDelay:
    """Tests for preferred-time delays."""

    @pytest.fixture
    def model(self, make_model):
        return make_model(
            suggestion_preferences=SuggestionPreferences(preferred_timing_by_type={"review": "16:00"})
        )

    def test_far_from_preferred_time_is_delayed(self, model, now):
        """At 10:00 a 16:00 preference is six hours away."""
        adapted = adapt_suggestions([Suggestion(type="review", message="Review your week.")], model, now)

        assert adapted[0].delay_until == datetime(2026, 3, 11, 16, 0)
        assert "timing" in adapted[0].personalization_applied

    def test_near_preferred_time_is_not_delayed(self, model):
        assert preferred_delay("review", model, datetime(2026, 3, 11, 15, 0)) is None

    def test_half_hour_preference_uses_minutes(self, make_model):
        """Both 12:05 and 12:31 are two clock hours from 14:30, but only one is within 120 minutes."""
        model = make_model(
            suggestion_preferences=SuggestionPreferences(preferred_timing_by_type={"review": "14:30"})
        )

        assert preferred_delay("review", model, datetime(2026, 3, 11, 12, 5)) == datetime(
            2026, 3, 11, 14, 30
        )
        assert preferred_delay("review", model, datetime(2026, 3, 11, 12, 31)) is None

    def test_invalid_stored_timing_ignored(self, make_model, now):
        model = make_model(
            suggestion_preferences=SuggestionPreferences(preferred_timing_by_type={"review": "later"})
        )

        assert preferred_delay("review", model, now) is None


class TestPriorityAndStyle:
    def test_detailed_planner_sees_high_not_urgent(self, make_model, now):
        model = make_model(work_style=WorkStyle(planning_style="detailed"))
        original = Suggestion(type="plan", message="Plan tomorrow.", priority="urgent")

        adapted = adapt_suggestions([original], model, now)[0]

        assert adapted.priority == "high"
        assert "priority" in adapted.personalization_applied
        assert original.priority == "urgent"
        assert original.personalization_applied == []

    def test_message_restyled(self, make_model, now):
        model = make_model(communication_style=CommunicationStyle(tone_preference="casual"))

        adapted = adapt_suggestions(
            [Suggestion(type="plan", message="Would you like to plan tomorrow?")], model, now
        )[0]

        assert adapted.message == "Want to plan tomorrow?"
        assert "style" in adapted.personalization_applied


class TestRanking:
    """Tests for predicted acceptance and ordering."""

    def test_sorted_by_predicted_acceptance(self, make_model, now):
        model = make_model(
            suggestion_preferences=SuggestionPreferences(
                acceptance_rate_by_type={"a": 0.3, "b": 0.9, "c": 0.6}
            )
        )
        suggestions = [Suggestion(type=t, message=f"{t}.") for t in ("a", "b", "c")]

        adapted = adapt_suggestions(suggestions, model, now)

        assert [s.type for s in adapted] == ["b", "c", "a"]

    def test_ties_keep_input_order(self, make_model, now):
        suggestions = [Suggestion(type="x", message=f"Item {i}.", id=f"s{i}") for i in range(5)]

        adapted = adapt_suggestions(suggestions, make_model(), now)

        assert [s.id for s in adapted] == ["s0", "s1", "s2", "s3", "s4"]

    def test_acceptance_bounded(self, make_model):
        model = make_model(
            suggestion_preferences=SuggestionPreferences(
                acceptance_rate_by_type={"focus": 1.0}, most_valuable_suggestions=("focus",)
            ),
            notification_preferences=NotificationPreferences(peak_engagement_hour=10),
        )
        suggestion = Suggestion(type="focus", message="Focus.", confidence=0.95)

        assert predicted_acceptance(suggestion, model, datetime(2026, 3, 11, 10)) == 1.0

    def test_far_from_peak_lowers_acceptance(self, make_model):
        model = make_model(notification_preferences=NotificationPreferences(peak_engagement_hour=9))
        suggestion = Suggestion(type="x", message="x.")

        assert predicted_acceptance(suggestion, model, datetime(2026, 3, 11, 21)) == 0.425


def test_generate_personalized_suggestion(make_model):
    model = make_model(communication_style=CommunicationStyle(tone_preference="casual"))

    text = generate_personalized_suggestion(
        "Would you like to start {task}?", model, {"task": "the report"}
    )

    assert text == "Want to start the report?"
