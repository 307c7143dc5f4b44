"""
Pydantic models for personalization engine inputs.

Every task, suggestion, notification and event payload that enters the engine
passes through one of these models first. A payload that fails validation
raises InvalidInput before any model is read.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from personalize.errors import InvalidInput
from personalize.learning import EVENT_TYPES
from personalize.learning.models import NotificationRequest, Suggestion, Task, to_local_naive

PriorityName = Literal["low", "medium", "high", "urgent"]


# =============================================================================
# Request Models
# =============================================================================


class TaskInput(BaseModel):
    """Task to estimate."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(None, description="Caller's task ID")
    type: str | None = Field(None, description="Task category, e.g. coding, writing")
    size: Literal["small", "medium", "large"] | None = Field(None, description="Size bucket")
    complexity: Literal["simple", "moderate", "complex"] | None = Field(None)
    estimated_minutes: float | None = Field(None, gt=0, description="User's own estimate")
    title: str | None = Field(None, max_length=500)
    tags: list[str] = Field(default_factory=list)
    project_id: str | None = None

    def to_task(self) -> Task:
        return Task(
            id=self.id,
            type=self.type,
            size=self.size,
            complexity=self.complexity,
            estimated_minutes=self.estimated_minutes,
            title=self.title,
            tags=tuple(self.tags),
            project_id=self.project_id,
        )


class SuggestionInput(BaseModel):
    """Candidate suggestion to personalise."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    priority: PriorityName = "medium"
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_suggestion(self) -> Suggestion:
        fields = self.model_dump(exclude={"id"})
        if self.id:
            fields["id"] = self.id
        return Suggestion(**fields)


class NotificationInput(BaseModel):
    """Notification to schedule."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    priority: PriorityName = "medium"

    def to_request(self) -> NotificationRequest:
        return NotificationRequest(
            id=self.id, type=self.type, message=self.message, priority=self.priority
        )


class EventInput(BaseModel):
    """Behavioural event reported by a collaborator."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None

    @field_validator("type")
    @classmethod
    def known_type(cls, v: str) -> str:
        if v not in EVENT_TYPES:
            raise ValueError(f"unknown event type '{v}'")
        return v

    @field_validator("timestamp")
    @classmethod
    def local_time(cls, v: datetime | None) -> datetime | None:
        return to_local_naive(v) if v is not None else None


class QuietHoursInput(BaseModel):
    start: int = Field(..., ge=0, le=23)
    end: int = Field(..., ge=0, le=23)


class ExplicitPreferencesInput(BaseModel):
    """Settings a "preference_set" event may carry. Other keys are kept in the event only."""

    model_config = ConfigDict(extra="ignore")

    quiet_hours: QuietHoursInput | None = None
    preferred_length: Literal["brief", "moderate", "detailed"] | None = None
    emoji_usage: Literal["never", "sometimes", "often"] | None = None
    tone_preference: Literal["professional", "friendly", "casual"] | None = None
    grouping_preference: Literal["none", "moderate", "aggressive"] | None = None
    planning_style: Literal["detailed", "spontaneous", "balanced"] | None = None


class CompletionInput(BaseModel):
    """Finished task reported directly as estimated vs actual minutes."""

    estimated_minutes: float = Field(..., gt=0)
    actual_minutes: float = Field(..., gt=0)
    task_id: str | None = None
    task_type: str | None = None
    task_size: Literal["small", "medium", "large"] | None = None
    title: str | None = None
    project_id: str | None = None


class FeedbackInput(BaseModel):
    """Explicit feedback. Which fields are required depends on the type."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["suggestion", "prediction", "preference_correction", "general"]
    rating: int | None = Field(None, ge=1, le=5)
    comment: str | None = Field(None, max_length=2000)
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None

    # suggestion
    suggestion_id: str | None = None
    suggestion_type: str | None = None
    outcome: Literal["accepted", "dismissed", "modified"] | None = None
    reason: str | None = None

    # prediction
    prediction_type: str | None = None
    predicted: Any = None
    actual: Any = None

    # preference_correction
    key: str | None = None
    value: Any = None
    previous: Any = None

    ("timestamp")
    @classmethod
    def local_time(cls, v: datetime | None) -> datetime | None:
        return to_local_naive(v) if v is not None else None

    @model_validator(mode="after")
    def required_for_type(self) -> "FeedbackInput":
        required = {
            "suggestion": ("suggestion_type", "outcome"),
            "prediction": ("prediction_type", "predicted", "actual"),
            "preference_correction": ("key", "value"),
            "general": ("rating",),
        }[self.type]
        missing = [name for name in required if getattr(self, name) is None]
        if missing:
            raise ValueError(f"{self.type} feedback requires {', '.join(missing)}")
        return self


# =============================================================================
# Validation helpers
# =============================================================================


def _validate(model: type[BaseModel], payload: Any, what: str) -> Any:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidInput(
            f"Invalid {what}",
            e.errors(include_url=False, include_context=False, include_input=False),
        ) from e


def _validate_list(model: type[BaseModel], payload: Any, what: str) -> list[Any]:
    if not isinstance(payload, list):
        raise InvalidInput(f"Invalid {what} list", [{"loc": [], "msg": "expected a list"}])
    return [_validate(model, item, what) for item in payload]


def validate_task(payload: Any) -> Task:
    return _validate(TaskInput, payload, "task").to_task()


def validate_tasks(payload: Any) -> list[Task]:
    return [t.to_task() for t in _validate_list(TaskInput, payload, "task")]


def validate_suggestions(payload: Any) -> list[Suggestion]:
    return [s.to_suggestion() for s in _validate_list(SuggestionInput, payload, "suggestion")]


def validate_notification(payload: Any) -> NotificationRequest:
    return _validate(NotificationInput, payload, "notification").to_request()


def validate_notifications(payload: Any) -> list[NotificationRequest]:
    return [
        n.to_request() for n in _validate_list(NotificationInput, payload, "notification")
    ]


def validate_event(payload: Any) -> EventInput:
    return _validate(EventInput, payload, "event")


def validate_completion(payload: Any) -> CompletionInput:
    return _validate(CompletionInput, payload, "completion")


def validate_feedback(payload: Any) -> FeedbackInput:
    return _validate(FeedbackInput, payload, "feedback")


def validate_explicit_preferences(payload: Any) -> dict[str, Any]:
    """The explicit settings in a "preference_set" payload, with absent keys dropped."""
    return _validate(ExplicitPreferencesInput, payload, "preferences").model_dump(exclude_none=True)


def readable_explicit_preferences(stored: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """
    Split stored explicit settings into readable values and unreadable keys.

    Each key is checked on its own, so one bad row never hides the others.
    """
    readable: dict[str, Any] = {}
    unreadable: list[str] = []
    for key, value in stored.items():
        if key not in ExplicitPreferencesInput.model_fields:
            continue
        try:
            parsed = ExplicitPreferencesInput.model_validate({key: value})
        except ValidationError:
            unreadable.append(key)
            continue
        readable.update(parsed.model_dump(exclude_none=True))
    return readable, unreadable
