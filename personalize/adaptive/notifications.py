"""
Tool: Adaptive Notifications
Purpose: Decide whether, when, where and how a notification reaches a user

Usage:
    from personalize.adaptive.notifications import adapt_notification, optimal_frequency

    decision = adapt_notification(request, model, pending_lookup=lookup)
    limits = optimal_frequency(model)

Decision order for one notification:
    1. Skip non-urgent types the user engages with less than 20% of the time
    2. Channel: the user's best-engaged channel, else in_app
    3. Timing:
       - urgent goes now
       - inside quiet hours waits for their end (overnight ranges wrap)
       - more than two hours from the peak engagement hour, and not high
         priority, waits for that hour
       - low priority inside a peak productivity window waits for its end
       - otherwise now
    4. Grouping with similar pending notifications, per grouping preference
    5. Message restyled for the user
"""

import math
from collections.abc import Callable
from datetime import datetime
from typing import Any

from personalize.adaptive.ratelimit import NotificationRateLimiter
from personalize.adaptive.style import adapt_message
from personalize.adaptive.timing import hour_distance, next_occurrence
from personalize.config import DEFAULT_CONFIG, PersonalizationConfig
from personalize.learning import DAY_NAMES
from personalize.learning.models import (
    AdaptedNotification,
    FrequencyLimits,
    Grouping,
    NotificationPreferences,
    NotificationRequest,
    Priority,
    UserModel,
)
from personalize.logging_config import get_logger

logger = get_logger(__name__)

# (user_id, notification_type, now) -> ids of similar pending notifications
PendingLookup = Callable[[str, str, datetime], list[str]]


def optimal_channel(
    prefs: NotificationPreferences, config: PersonalizationConfig = DEFAULT_CONFIG
) -> str:
    if not prefs.channel_preference:
        return config.notifications.default_channel
    # Highest engagement, alphabetical on ties
    return min(prefs.channel_preference.items(), key=lambda item: (-item[1], item[0]))[0]


def optimal_delivery_time(
    notification: NotificationRequest, model: UserModel, now: datetime
) -> datetime:
    prefs = model.preferences.notification_preferences
    priority = notification.priority

    if priority == Priority.URGENT:
        return now

    if prefs.quiet_hours and prefs.quiet_hours.contains(now.hour):
        return next_occurrence(now, prefs.quiet_hours.end)

    peak = prefs.peak_engagement_hour
    if peak is not None and priority != Priority.HIGH and hour_distance(now.hour, peak) > 2:
        return next_occurrence(now, peak)

    if priority == Priority.LOW:
        today = DAY_NAMES[now.weekday()]
        for window in model.productivity_pattern.peak_productivity_windows:
            if window.contains(now.hour, today):
                return next_occurrence(now, window.end_hour % 24)

    return now


def should_group(notification: NotificationRequest, prefs: NotificationPreferences) -> bool:
    if notification.priority == Priority.URGENT:
        return False
    if prefs.grouping_preference == Grouping.AGGRESSIVE:
        return True
    if prefs.grouping_preference == Grouping.NONE:
        return False
    return notification.priority == Priority.LOW


def adapt_notification(
    notification: NotificationRequest,
    model: UserModel,
    now: datetime | None = None,
    pending_lookup: PendingLookup | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> AdaptedNotification:
    now = now or datetime.now()
    prefs = model.preferences.notification_preferences

    value = prefs.value_by_type.get(notification.type)
    if (
        value is not None
        and value < config.notifications.skip_below
        and notification.priority != Priority.URGENT
    ):
        logger.debug(
            "notification_skipped",
            user_id=model.user_id,
            notification_type=notification.type,
            engagement=value,
        )
        return AdaptedNotification(skip=True, reason="low_engagement_type")

    group_with: tuple[str, ...] = ()
    if pending_lookup is not None and should_group(notification, prefs):
        group_with = tuple(pending_lookup(model.user_id, notification.type, now))

    return AdaptedNotification(
        skip=False,
        channel=optimal_channel(prefs, config),
        deliver_at=optimal_delivery_time(notification, model, now),
        group_with=group_with,
        adapted_message=adapt_message(
            notification.message,
            model.preferences.communication_style,
            config.suggestions.modal_verbs,
        ),
    )


def create_digest(notifications: list[NotificationRequest], model: UserModel) -> dict[str, Any]:
    """Collapse several notifications into one summary message."""
    types = list(dict.fromkeys(n.type for n in notifications))
    count = len(notifications)
    important = sum(1 for n in notifications if n.priority in (Priority.HIGH, Priority.URGENT))

    if count == 0:
        message = "You have no new notifications."
    elif len(types) == 1:
        message = f"You have {count} {types[0]} notification{'s' if count != 1 else ''}."
    elif important:
        message = f"You have {count} notifications, including {important} high priority."
    else:
        message = f"You have {count} notifications across {len(types)} categories."

    return {
        "message": adapt_message(message, model.preferences.communication_style),
        "count": count,
        "types": types,
    }


def optimal_frequency(
    model: UserModel, config: PersonalizationConfig = DEFAULT_CONFIG
) -> FrequencyLimits:
    """Caps derived from engagement, then tightened or loosened by grouping preference."""
    prefs = model.preferences.notification_preferences
    settings = config.notifications
    profile = settings.frequency.default

    if prefs.value_by_type:
        average = sum(prefs.value_by_type.values()) / len(prefs.value_by_type)
        if average < settings.low_engagement_below:
            profile = settings.frequency.low_engagement
        elif average > settings.high_engagement_above:
            profile = settings.frequency.high_engagement

    per_hour, per_day, interval = profile.max_per_hour, profile.max_per_day, profile.batching_interval
    if prefs.grouping_preference == Grouping.AGGRESSIVE:
        per_hour = math.ceil(per_hour * 0.5)
        per_day = math.ceil(per_day * 0.5)
        interval = math.ceil(interval * 1.5)
    elif prefs.grouping_preference == Grouping.NONE:
        interval = 5

    return FrequencyLimits(max_per_hour=per_hour, max_per_day=per_day, batching_interval=interval)


def has_reached_limit(
    user_id: str,
    model: UserModel,
    limiter: NotificationRateLimiter,
    now: datetime | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> dict[str, Any]:
    limits = optimal_frequency(model, config)
    result = limiter.check(user_id, limits, now)
    return {**result, "limits": limits.to_dict()}
