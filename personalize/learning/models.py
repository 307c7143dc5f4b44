"""
Tool: Personalization Models
Purpose: Data structures for the per-user behaviour model and its inputs

A UserModel is a frozen snapshot. The model builder produces a new one and the
model store swaps it in whole; nothing downstream edits a snapshot in place.

Usage:
    from personalize.learning.models import (
        UserModel,
        EstimationRecord,
        Task,
        TimePrediction,
        Suggestion,
        NotificationRequest,
        AdaptedNotification,
    )
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Priority(str, Enum):
    """Priority shared by tasks, suggestions and notifications."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Bias(str, Enum):
    """Direction of a user's estimation error."""

    OVERESTIMATE = "overestimate"
    UNDERESTIMATE = "underestimate"
    ACCURATE = "accurate"


class Grouping(str, Enum):
    NONE = "none"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


def to_local_naive(value: datetime) -> datetime:
    """All stored and compared times are naive local time; aware values are converted."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _parse_dt(value: Any) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(value)
    return to_local_naive(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def format_hour(hour: int) -> str:
    """12am / 9am / 12pm / 5pm."""
    hour = hour % 24
    if hour == 0:
        return "12am"
    if hour == 12:
        return "12pm"
    return f"{hour - 12}pm" if hour > 12 else f"{hour}am"


# =============================================================================
# Productivity
# =============================================================================


@dataclass(frozen=True)
class TimeWindow:
    """
    Run of high-productivity hours.

    end_hour is exclusive. A window whose start_hour is greater than its
    end_hour wraps midnight (22 -> 2 covers 22, 23, 0 and 1). day=None means
    the window applies to every day.
    """

    start_hour: int
    end_hour: int
    score: float = 0.0
    day: str | None = None
    label: str = ""

    @property
    def wraps_midnight(self) -> bool:
        return self.start_hour > self.end_hour

    def contains(self, hour: int, day: str | None = None) -> bool:
        if self.day is not None and day is not None and self.day != day:
            return False
        if self.wraps_midnight:
            return hour >= self.start_hour or hour < self.end_hour
        return self.start_hour <= hour < self.end_hour

    def hours(self) -> list[int]:
        if self.wraps_midnight:
            return list(range(self.start_hour, 24)) + list(range(0, self.end_hour))
        return list(range(self.start_hour, self.end_hour))

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day,
            "start_hour": self.start_hour,
            "end_hour": self.end_hour,
            "score": self.score,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimeWindow":
        return cls(
            start_hour=int(data["start_hour"]),
            end_hour=int(data["end_hour"]),
            score=float(data.get("score", 0.0)),
            day=data.get("day"),
            label=data.get("label", ""),
        )


@dataclass(frozen=True)
class ProductivityPattern:
    hourly_scores: dict[int, float] = field(default_factory=dict)
    day_of_week_scores: dict[str, float] = field(default_factory=dict)
    peak_productivity_windows: tuple[TimeWindow, ...] = ()
    optimal_focus_duration: int = 25
    optimal_break_frequency: int = 5

    def to_dict(self) -> dict[str, Any]:
        return {
            "hourly_scores": {str(h): s for h, s in self.hourly_scores.items()},
            "day_of_week_scores": dict(self.day_of_week_scores),
            "peak_productivity_windows": [w.to_dict() for w in self.peak_productivity_windows],
            "optimal_focus_duration": self.optimal_focus_duration,
            "optimal_break_frequency": self.optimal_break_frequency,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductivityPattern":
        return cls(
            # JSON object keys are strings
            hourly_scores={int(h): float(s) for h, s in data.get("hourly_scores", {}).items()},
            day_of_week_scores={d: float(s) for d, s in data.get("day_of_week_scores", {}).items()},
            peak_productivity_windows=tuple(
                TimeWindow.from_dict(w) for w in data.get("peak_productivity_windows", [])
            ),
            optimal_focus_duration=int(data.get("optimal_focus_duration", 25)),
            optimal_break_frequency=int(data.get("optimal_break_frequency", 5)),
        )


# =============================================================================
# Estimation
# =============================================================================


@dataclass(frozen=True)
class TypeEstimation:
    """accuracy is estimated / actual: 0.5 means tasks take twice as long as planned."""

    accuracy: float = 1.0
    bias: str = Bias.ACCURATE.value
    sample_size: int = 0
    average_error: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "bias": self.bias,
            "sample_size": self.sample_size,
            "average_error": self.average_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TypeEstimation":
        return cls(
            accuracy=float(data.get("accuracy", 1.0)),
            bias=data.get("bias", Bias.ACCURATE.value),
            sample_size=int(data.get("sample_size", 0)),
            average_error=float(data.get("average_error", 0.0)),
        )


@dataclass(frozen=True)
class SizeEstimation:
    accuracy: float = 1.0
    bias: str = Bias.ACCURATE.value
    sample_size: int = 0
    average_actual: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "bias": self.bias,
            "sample_size": self.sample_size,
            "average_actual": self.average_actual,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SizeEstimation":
        return cls(
            accuracy=float(data.get("accuracy", 1.0)),
            bias=data.get("bias", Bias.ACCURATE.value),
            sample_size=int(data.get("sample_size", 0)),
            average_actual=float(data.get("average_actual", 0.0)),
        )


@dataclass(frozen=True)
class EstimationModel:
    global_accuracy: float = 1.0
    by_task_type: dict[str, TypeEstimation] = field(default_factory=dict)
    by_size: dict[str, SizeEstimation] = field(default_factory=dict)
    improvement_suggestions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "global_accuracy": self.global_accuracy,
            "by_task_type": {t: e.to_dict() for t, e in self.by_task_type.items()},
            "by_size": {s: e.to_dict() for s, e in self.by_size.items()},
            "improvement_suggestions": list(self.improvement_suggestions),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EstimationModel":
        return cls(
            global_accuracy=float(data.get("global_accuracy", 1.0)),
            by_task_type={
                t: TypeEstimation.from_dict(e) for t, e in data.get("by_task_type", {}).items()
            },
            by_size={s: SizeEstimation.from_dict(e) for s, e in data.get("by_size", {}).items()},
            improvement_suggestions=tuple(data.get("improvement_suggestions", [])),
        )


# =============================================================================
# Preferences
# =============================================================================


@dataclass(frozen=True)
class CommunicationStyle:
    preferred_length: str = "moderate"  # brief, moderate, detailed
    emoji_usage: str = "sometimes"  # never, sometimes, often
    tone_preference: str = "professional"  # professional, friendly, casual
    technical_level: str = "moderate"
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "preferred_length": self.preferred_length,
            "emoji_usage": self.emoji_usage,
            "tone_preference": self.tone_preference,
            "technical_level": self.technical_level,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommunicationStyle":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class QuietHours:
    """Hours 0-23. start > end wraps midnight; start == end is an empty range."""

    start: int
    end: int

    def contains(self, hour: int) -> bool:
        if self.start == self.end:
            return False
        if self.start > self.end:
            return hour >= self.start or hour < self.end
        return self.start <= hour < self.end

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuietHours":
        return cls(start=int(data["start"]), end=int(data["end"]))


@dataclass(frozen=True)
class NotificationPreferences:
    peak_engagement_hour: int | None = None
    grouping_preference: str = Grouping.MODERATE.value
    channel_preference: dict[str, float] = field(default_factory=dict)
    quiet_hours: QuietHours | None = None
    value_by_type: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "peak_engagement_hour": self.peak_engagement_hour,
            "grouping_preference": self.grouping_preference,
            "channel_preference": dict(self.channel_preference),
            "quiet_hours": self.quiet_hours.to_dict() if self.quiet_hours else None,
            "value_by_type": dict(self.value_by_type),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationPreferences":
        quiet = data.get("quiet_hours")
        return cls(
            peak_engagement_hour=data.get("peak_engagement_hour"),
            grouping_preference=data.get("grouping_preference", Grouping.MODERATE.value),
            channel_preference=dict(data.get("channel_preference", {})),
            quiet_hours=QuietHours.from_dict(quiet) if quiet else None,
            value_by_type=dict(data.get("value_by_type", {})),
        )


@dataclass(frozen=True)
class WorkStyle:
    planning_style: str = "balanced"  # detailed, spontaneous, balanced
    chronotype: str = "flexible"  # morning_person, evening_person, flexible
    batch_vs_switch: str = "mixed"
    focus_style: str = "varied"

    def to_dict(self) -> dict[str, Any]:
        return {
            "planning_style": self.planning_style,
            "chronotype": self.chronotype,
            "batch_vs_switch": self.batch_vs_switch,
            "focus_style": self.focus_style,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkStyle":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class SuggestionPreferences:
    acceptance_rate_by_type: dict[str, float] = field(default_factory=dict)
    preferred_timing_by_type: dict[str, str] = field(default_factory=dict)
    dismissal_reasons: dict[str, int] = field(default_factory=dict)
    most_valuable_suggestions: tuple[str, ...] = ()
    least_valuable_suggestions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "acceptance_rate_by_type": dict(self.acceptance_rate_by_type),
            "preferred_timing_by_type": dict(self.preferred_timing_by_type),
            "dismissal_reasons": dict(self.dismissal_reasons),
            "most_valuable_suggestions": list(self.most_valuable_suggestions),
            "least_valuable_suggestions": list(self.least_valuable_suggestions),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SuggestionPreferences":
        return cls(
            acceptance_rate_by_type=dict(data.get("acceptance_rate_by_type", {})),
            preferred_timing_by_type=dict(data.get("preferred_timing_by_type", {})),
            dismissal_reasons=dict(data.get("dismissal_reasons", {})),
            most_valuable_suggestions=tuple(data.get("most_valuable_suggestions", [])),
            least_valuable_suggestions=tuple(data.get("least_valuable_suggestions", [])),
        )


@dataclass(frozen=True)
class Preferences:
    communication_style: CommunicationStyle = field(default_factory=CommunicationStyle)
    notification_preferences: NotificationPreferences = field(
        default_factory=NotificationPreferences
    )
    work_style: WorkStyle = field(default_factory=WorkStyle)
    suggestion_preferences: SuggestionPreferences = field(default_factory=SuggestionPreferences)

    def to_dict(self) -> dict[str, Any]:
        return {
            "communication_style": self.communication_style.to_dict(),
            "notification_preferences": self.notification_preferences.to_dict(),
            "work_style": self.work_style.to_dict(),
            "suggestion_preferences": self.suggestion_preferences.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Preferences":
        return cls(
            communication_style=CommunicationStyle.from_dict(data.get("communication_style", {})),
            notification_preferences=NotificationPreferences.from_dict(
                data.get("notification_preferences", {})
            ),
            work_style=WorkStyle.from_dict(data.get("work_style", {})),
            suggestion_preferences=SuggestionPreferences.from_dict(
                data.get("suggestion_preferences", {})
            ),
        )


# =============================================================================
# User model snapshot
# =============================================================================


@dataclass(frozen=True)
class UserModel:
    """
    Per-user behaviour snapshot.

    Derived entirely from the event store and safe to rebuild at any time.
    """

    user_id: str
    last_updated: datetime = field(default_factory=datetime.now)
    samples_used: int = 0
    days_covered: int = 0
    overall_confidence: float = 0.0
    productivity_pattern: ProductivityPattern = field(default_factory=ProductivityPattern)
    estimation_model: EstimationModel = field(default_factory=EstimationModel)
    preferences: Preferences = field(default_factory=Preferences)

    @classmethod
    def neutral(cls, user_id: str) -> "UserModel":
        """Model for a user with no history: every factor it feeds is neutral."""
        return cls(user_id=user_id)

    @property
    def is_neutral(self) -> bool:
        return self.samples_used == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "last_updated": _iso(self.last_updated),
            "samples_used": self.samples_used,
            "days_covered": self.days_covered,
            "overall_confidence": self.overall_confidence,
            "productivity_pattern": self.productivity_pattern.to_dict(),
            "estimation_model": self.estimation_model.to_dict(),
            "preferences": self.preferences.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserModel":
        return cls(
            user_id=data["user_id"],
            last_updated=_parse_dt(data.get("last_updated")) or datetime.now(),
            samples_used=int(data.get("samples_used", 0)),
            days_covered=int(data.get("days_covered", 0)),
            overall_confidence=float(data.get("overall_confidence", 0.0)),
            productivity_pattern=ProductivityPattern.from_dict(
                data.get("productivity_pattern", {})
            ),
            estimation_model=EstimationModel.from_dict(data.get("estimation_model", {})),
            preferences=Preferences.from_dict(data.get("preferences", {})),
        )


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class EstimationRecord:
    """One finished task: what was planned against what it took. Never edited."""

    id: str
    user_id: str
    estimated_minutes: float
    actual_minutes: float
    task_id: str | None = None
    task_type: str | None = None
    task_size: str | None = None
    title: str | None = None
    project_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def accuracy(self) -> float:
        """estimated / actual, 1.0 = perfect."""
        return self.estimated_minutes / self.actual_minutes

    @property
    def ratio(self) -> float:
        """actual / estimated, the multiplier a similar estimate needs."""
        return self.actual_minutes / self.estimated_minutes

    @property
    def error(self) -> float:
        return abs(self.actual_minutes - self.estimated_minutes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "task_id": self.task_id,
            "task_type": self.task_type,
            "task_size": self.task_size,
            "estimated_minutes": self.estimated_minutes,
            "actual_minutes": self.actual_minutes,
            "title": self.title,
            "project_id": self.project_id,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EstimationRecord":
        data = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        data["created_at"] = _parse_dt(data.get("created_at")) or datetime.now()
        return cls(**data)

    @staticmethod
    def generate_id() -> str:
        return f"est_{uuid.uuid4().hex[:12]}"


# =============================================================================
# Adapter inputs and outputs
# =============================================================================


@dataclass(frozen=True)
class Task:
    type: str | None = None
    size: str | None = None
    complexity: str | None = None
    estimated_minutes: float | None = None
    title: str | None = None
    tags: tuple[str, ...] = ()
    project_id: str | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "size": self.size,
            "complexity": self.complexity,
            "estimated_minutes": self.estimated_minutes,
            "title": self.title,
            "tags": list(self.tags),
            "project_id": self.project_id,
        }


@dataclass(frozen=True)
class TimePrediction:
    estimated_minutes: int
    confidence: float
    low: int
    high: int
    factors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "estimated_minutes": self.estimated_minutes,
            "confidence": self.confidence,
            "range": {"low": self.low, "high": self.high},
            "factors": list(self.factors),
        }


@dataclass
class Suggestion:
    """Candidate suggestion. The adapter returns adapted copies, never the inputs."""

    type: str
    message: str
    priority: str = Priority.MEDIUM.value
    confidence: float = 0.5
    id: str = field(default_factory=lambda: f"sug_{uuid.uuid4().hex[:12]}")
    predicted_acceptance: float | None = None
    personalization_applied: list[str] = field(default_factory=list)
    delay_until: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "message": self.message,
            "priority": self.priority,
            "confidence": self.confidence,
            "predicted_acceptance": self.predicted_acceptance,
            "personalization_applied": list(self.personalization_applied),
            "delay_until": _iso(self.delay_until),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class NotificationRequest:
    type: str
    message: str
    priority: str = Priority.MEDIUM.value
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "priority": self.priority, "message": self.message}


@dataclass(frozen=True)
class AdaptedNotification:
    skip: bool
    reason: str | None = None
    channel: str | None = None
    deliver_at: datetime | None = None
    group_with: tuple[str, ...] = ()
    adapted_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "skip": self.skip,
            "reason": self.reason,
            "channel": self.channel,
            "deliver_at": _iso(self.deliver_at),
            "group_with": list(self.group_with),
            "adapted_message": self.adapted_message,
        }


@dataclass(frozen=True)
class FrequencyLimits:
    """Notification caps for one user. batching_interval is in minutes."""

    max_per_hour: int = 5
    max_per_day: int = 20
    batching_interval: int = 30

    def to_dict(self) -> dict[str, int]:
        return {
            "max_per_hour": self.max_per_hour,
            "max_per_day": self.max_per_day,
            "batching_interval": self.batching_interval,
        }
