"""
Tool: Adaptive Suggestions
Purpose: Filter, time, re-prioritise, re-phrase and rank suggestions per user

For each candidate suggestion:
    1. Suppress it when the user accepts its type less than 15% of the time
    2. Delay it to the user's preferred time for that type when now is more
       than two hours away from it
    3. Lower "urgent" to "high" for detailed planners
    4. Rewrite the message in the user's communication style
    5. Predict how likely the user is to accept it

Survivors come back sorted by predicted acceptance, highest first; equal
predictions keep their input order.

Usage:
    from personalize.adaptive.suggestions import adapt_suggestions
    ranked = adapt_suggestions(candidates, model)
"""

import dataclasses
from datetime import datetime
from typing import Any

from personalize.adaptive.calibration import clamp
from personalize.adaptive.style import adapt_message, fill_template
from personalize.adaptive.timing import hour_distance, is_near, next_occurrence, parse_hhmm
from personalize.config import DEFAULT_CONFIG, PersonalizationConfig
from personalize.learning.models import Priority, Suggestion, UserModel, WorkStyle
from personalize.logging_config import get_logger

logger = get_logger(__name__)


def is_suppressed(
    suggestion: Suggestion, model: UserModel, config: PersonalizationConfig = DEFAULT_CONFIG
) -> bool:
    # Applies to urgent suggestions too
    rate = model.preferences.suggestion_preferences.acceptance_rate_by_type.get(suggestion.type)
    return rate is not None and rate < config.suggestions.suppress_below


def preferred_delay(
    suggestion_type: str,
    model: UserModel,
    now: datetime,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> datetime | None:
    """Next occurrence of the preferred time for this type, or None when now is close enough."""
    preferred = model.preferences.suggestion_preferences.preferred_timing_by_type.get(suggestion_type)
    if not preferred:
        return None
    try:
        hour, minute = parse_hhmm(preferred)
    except ValueError:
        logger.warning("invalid_preferred_timing", suggestion_type=suggestion_type, value=preferred)
        return None
    if is_near(now, hour, config.suggestions.timing_window_hours, minute):
        return None
    return next_occurrence(now, hour, minute)


def adjust_priority(priority: str, work_style: WorkStyle) -> str:
    if work_style.planning_style == "detailed" and priority == Priority.URGENT:
        return Priority.HIGH.value
    return priority


def predicted_acceptance(suggestion: Suggestion, model: UserModel, now: datetime) -> float:
    prefs = model.preferences.suggestion_preferences
    acceptance = prefs.acceptance_rate_by_type.get(suggestion.type, 0.5)

    if suggestion.confidence > 0.8:
        acceptance *= 1.1
    elif suggestion.confidence < 0.5:
        acceptance *= 0.9

    peak = model.preferences.notification_preferences.peak_engagement_hour
    if peak is not None:
        distance = hour_distance(now.hour, peak)
        if distance <= 1:
            acceptance *= 1.15
        elif distance >= 4:
            acceptance *= 0.85

    if suggestion.type in prefs.least_valuable_suggestions:
        acceptance *= 0.7
    if suggestion.type in prefs.most_valuable_suggestions:
        acceptance *= 1.2

    return round(clamp(acceptance, 0.0, 1.0), 4)


def adapt_suggestion(
    suggestion: Suggestion,
    model: UserModel,
    now: datetime,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> Suggestion | None:
    """Adapted copy of one suggestion, or None when its type is suppressed."""
    if is_suppressed(suggestion, model, config):
        logger.debug("suggestion_suppressed", user_id=model.user_id, suggestion_type=suggestion.type)
        return None

    applied = []
    delay_until = preferred_delay(suggestion.type, model, now, config)
    if delay_until:
        applied.append("timing")

    priority = adjust_priority(suggestion.priority, model.preferences.work_style)
    if priority != suggestion.priority:
        applied.append("priority")

    message = adapt_message(
        suggestion.message, model.preferences.communication_style, config.suggestions.modal_verbs
    )
    if message != suggestion.message:
        applied.append("style")

    return dataclasses.replace(
        suggestion,
        priority=priority,
        message=message,
        delay_until=delay_until or suggestion.delay_until,
        predicted_acceptance=predicted_acceptance(suggestion, model, now),
        personalization_applied=applied,
    )


def adapt_suggestions(
    suggestions: list[Suggestion],
    model: UserModel,
    now: datetime | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> list[Suggestion]:
    now = now or datetime.now()
    adapted = [adapt_suggestion(s, model, now, config) for s in suggestions]
    kept = [s for s in adapted if s is not None]
    # sorted() is stable, so ties keep input order
    return sorted(kept, key=lambda s: s.predicted_acceptance, reverse=True)


def generate_personalized_suggestion(
    template: str,
    model: UserModel,
    context: dict[str, Any],
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> str:
    """Fill {placeholders} from context, then restyle for the user."""
    return adapt_message(
        fill_template(template, context),
        model.preferences.communication_style,
        config.suggestions.modal_verbs,
    )
