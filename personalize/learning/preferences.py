"""
Tool: Preference Builder
Purpose: Infer suggestion, notification, communication and work-style preferences

Everything here is inferred from behaviour. Settings the user stated directly
(quiet hours, message length, tone, ...) arrive as "preference_set" events
and override whatever was inferred.
"""

from collections import Counter, defaultdict
from statistics import mean, pvariance
from typing import Any

from personalize.config import DEFAULT_CONFIG, PersonalizationConfig
from personalize.learning.models import (
    CommunicationStyle,
    Grouping,
    NotificationPreferences,
    Preferences,
    QuietHours,
    SuggestionPreferences,
    WorkStyle,
)
from personalize.logging_config import get_logger
from personalize.schemas import readable_explicit_preferences

logger = get_logger(__name__)


def build_preferences(
    suggestion_history: list[dict[str, Any]],
    notification_engagement: list[dict[str, Any]],
    message_records: list[dict[str, Any]],
    completions: list[dict[str, Any]],
    explicit: dict[str, Any] | None = None,
    low_value_types: list[str] | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> Preferences:
    explicit = explicit or {}
    thresholds = config.thresholds

    communication = communication_style(message_records, thresholds.min_style_samples)
    notifications = notification_preferences(
        notification_engagement,
        min_samples=thresholds.min_rate_samples,
        min_clicks=thresholds.min_engagement_clicks,
    )
    work = work_style(completions, thresholds.min_work_style_samples)
    suggestions = suggestion_preferences(
        suggestion_history,
        min_samples=thresholds.min_rate_samples,
        min_timing=thresholds.min_timing_samples,
        low_value_types=low_value_types,
    )

    return apply_explicit(
        Preferences(
            communication_style=communication,
            notification_preferences=notifications,
            work_style=work,
            suggestion_preferences=suggestions,
        ),
        explicit,
    )


def suggestion_preferences(
    records: list[dict[str, Any]],
    min_samples: int = 3,
    min_timing: int = 3,
    low_value_types: list[str] | None = None,
) -> SuggestionPreferences:
    """Acceptance and timing per type. Types the user rated poorly count as least valuable."""
    flagged = tuple(sorted(set(low_value_types or ())))
    by_type: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for record in records:
        by_type[record["suggestion_type"]].append(record)

    acceptance: dict[str, float] = {}
    timing: dict[str, str] = {}
    for suggestion_type, rows in sorted(by_type.items()):
        accepted = [r for r in rows if r["outcome"] == "accepted"]
        if len(rows) >= min_samples:
            acceptance[suggestion_type] = round(len(accepted) / len(rows), 4)
        if len(accepted) >= min_timing:
            hour = round(mean(r["hour"] for r in accepted)) % 24
            timing[suggestion_type] = f"{hour:02d}:00"

    reasons = Counter(
        r["reason"] for r in records if r["outcome"] == "dismissed" and r.get("reason")
    )

    ranked = sorted(acceptance.items(), key=lambda item: item[1], reverse=True)
    most = tuple(t for t, rate in ranked if rate >= 0.5 and t not in flagged)[:3]
    least = tuple(t for t, rate in reversed(ranked) if rate < 0.3)[:3]
    least += tuple(t for t in flagged if t not in least)

    return SuggestionPreferences(
        acceptance_rate_by_type=acceptance,
        preferred_timing_by_type=timing,
        dismissal_reasons=dict(reasons),
        most_valuable_suggestions=most,
        least_valuable_suggestions=least,
    )


def _click_rates(records: list[dict[str, Any]], key: str, min_samples: int) -> dict[str, float]:
    totals: Counter = Counter()
    clicked: Counter = Counter()
    for record in records:
        group = record.get(key) or "in_app"
        totals[group] += 1
        if record["outcome"] == "clicked":
            clicked[group] += 1
    return {
        group: round(clicked[group] / total, 4)
        for group, total in sorted(totals.items())
        if total >= min_samples
    }


def notification_preferences(
    records: list[dict[str, Any]],
    min_samples: int = 3,
    min_clicks: int = 5,
) -> NotificationPreferences:
    value_by_type = _click_rates(records, "notification_type", min_samples)
    channels = _click_rates(records, "channel", min_samples)

    clicked_hours = [r["hour"] for r in records if r["outcome"] == "clicked"]
    peak_hour = None
    if len(clicked_hours) >= min_clicks:
        # Mode, earliest hour on ties
        counts = Counter(clicked_hours)
        peak_hour = min(counts, key=lambda h: (-counts[h], h))

    grouping = Grouping.MODERATE.value
    if value_by_type:
        average = mean(value_by_type.values())
        if average < 0.2 and len(records) > 20:
            grouping = Grouping.AGGRESSIVE.value
        elif average > 0.6:
            grouping = Grouping.NONE.value

    return NotificationPreferences(
        peak_engagement_hour=peak_hour,
        grouping_preference=grouping,
        channel_preference=channels,
        value_by_type=value_by_type,
    )


def communication_style(records: list[dict[str, Any]], min_samples: int = 5) -> CommunicationStyle:
    if len(records) < min_samples:
        return CommunicationStyle()

    total = len(records)
    brief = sum(1 for r in records if r["is_brief"])
    detailed = sum(1 for r in records if r["is_detailed"])
    emoji = sum(1 for r in records if r["has_emoji"])
    technical = sum(1 for r in records if r["is_technical"])

    length = "moderate"
    if brief > total * 0.6:
        length = "brief"
    elif detailed > total * 0.4:
        length = "detailed"

    emoji_usage = "sometimes"
    if emoji == 0:
        emoji_usage = "never"
    elif emoji > total * 0.5:
        emoji_usage = "often"

    level = "moderate"
    if technical > total * 0.5:
        level = "technical"
    elif technical < total * 0.1:
        level = "simple"

    return CommunicationStyle(
        preferred_length=length,
        emoji_usage=emoji_usage,
        technical_level=level,
        confidence=round(min(total / 20, 1.0), 4),
    )


def work_style(completions: list[dict[str, Any]], min_samples: int = 10) -> WorkStyle:
    if len(completions) < min_samples:
        return WorkStyle()

    average_hour = mean(r["hour"] for r in completions)
    chronotype = "flexible"
    if average_hour < 11:
        chronotype = "morning_person"
    elif average_hour > 16:
        chronotype = "evening_person"

    # Steady output across weekdays reads as planned work
    per_day = Counter(r["day_of_week"] for r in completions)
    variance = pvariance(per_day.values()) if len(per_day) > 1 else 0.0
    planning = "balanced"
    if variance < 2:
        planning = "detailed"
    elif variance > 10:
        planning = "spontaneous"

    return WorkStyle(planning_style=planning, chronotype=chronotype)


def apply_explicit(preferences: Preferences, explicit: dict[str, Any]) -> Preferences:
    """Overlay stated settings on inferred ones."""
    if not explicit:
        return preferences

    explicit, unreadable = readable_explicit_preferences(explicit)
    if unreadable:
        logger.warning("explicit_preference_ignored", keys=unreadable)

    style = preferences.communication_style
    style_overrides = {
        key: explicit[key]
        for key in ("preferred_length", "emoji_usage", "tone_preference")
        if explicit.get(key)
    }
    if style_overrides:
        style = CommunicationStyle(**{**style.to_dict(), **style_overrides})

    notifications = preferences.notification_preferences
    quiet = explicit.get("quiet_hours")
    grouping = explicit.get("grouping_preference")
    if quiet or grouping:
        notifications = NotificationPreferences(
            peak_engagement_hour=notifications.peak_engagement_hour,
            grouping_preference=grouping or notifications.grouping_preference,
            channel_preference=notifications.channel_preference,
            quiet_hours=QuietHours.from_dict(quiet) if quiet else notifications.quiet_hours,
            value_by_type=notifications.value_by_type,
        )

    work = preferences.work_style
    if explicit.get("planning_style"):
        work = WorkStyle(**{**work.to_dict(), "planning_style": explicit["planning_style"]})

    return Preferences(
        communication_style=style,
        notification_preferences=notifications,
        work_style=work,
        suggestion_preferences=preferences.suggestion_preferences,
    )
