"""Behaviour learning: event log, model building and the model store.

Philosophy:
    The engine never asks users to describe themselves. It watches what they
    do (tasks finished, estimates missed, suggestions dismissed, notifications
    ignored) and folds that history into one snapshot per user.

Components:
    models.py: UserModel snapshot and the records it is built from
    event_store.py: Append-only behavioural log and typed record tables
    productivity.py: Hour/day completion profile, peak windows, focus length
    estimation.py: Estimation accuracy by task type and size
    preferences.py: Suggestion, notification, communication and work-style preferences
    model_store.py: Cached, persisted current snapshot per user
    model_builder.py: Folds the event store into a new snapshot
    feedback.py: Explicit feedback on suggestions and predictions, implicit signals

Database: data/learning.db
    - learning_events: Raw behavioural events
    - estimation_records: Append-only estimated vs actual durations
    - productivity_records: Completions, focus sessions, work starts
    - suggestion_history: Accepted / dismissed suggestions
    - notification_engagement: Clicked / ignored notifications
    - message_style_records: Observed message length and emoji use
    - explicit_preferences: Settings the user stated directly
    - learning_feedback: Ratings, corrections and prediction outcomes
    - low_value_suggestions: Suggestion types the user rated 2 or less
    - user_models: One persisted snapshot per user
"""

from pathlib import Path


# Path constants
PROJECT_ROOT = Path(__file__).parent.parent.parent
DATA_PATH = PROJECT_ROOT / "data"
DB_PATH = DATA_PATH / "learning.db"

DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

TASK_SIZES = ["small", "medium", "large"]

PRIORITIES = ["low", "medium", "high", "urgent"]

EVENT_TYPES = [
    "item_created",
    "item_started",
    "item_completed",
    "item_deferred",
    "focus_session_started",
    "focus_session_ended",
    "suggestion_shown",
    "suggestion_accepted",
    "suggestion_dismissed",
    "notification_shown",
    "notification_clicked",
    "notification_ignored",
    "user_message",
    "preference_set",
]

# Explicit settings a "preference_set" event may carry
EXPLICIT_PREFERENCE_KEYS = [
    "quiet_hours",
    "preferred_length",
    "emoji_usage",
    "tone_preference",
    "grouping_preference",
    "planning_style",
]


def size_for_minutes(minutes: float) -> str:
    """Bucket an estimate into small / medium / large."""
    if minutes < 30:
        return "small"
    if minutes <= 120:
        return "medium"
    return "large"


# Emoji ranges recognised when observing and styling messages
EMOJI_PATTERN = r"[\U0001F300-\U0001FAFF\u2600-\u27BF]"
