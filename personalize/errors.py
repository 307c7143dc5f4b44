"""Error types raised by the personalization engine.

Sparse data is never an error: calibration factors fall back to a neutral
``Calibrated`` value instead. Hitting a notification cap is never an error
either: it is a normal ``skip`` outcome.
"""

from typing import Any


class PersonalizationError(Exception):
    """Base class for engine errors."""


class InvalidInput(PersonalizationError, ValueError):
    """A task, suggestion, notification or event payload is malformed.

    Raised before any model read. ``errors`` carries the field-level details
    (pydantic's error list when validation produced it).
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "details": self.errors}


class StoreUnavailable(PersonalizationError):
    """The event store or the notification counters could not be read or written."""


class ModelUnavailable(StoreUnavailable):
    """The model store failed, or a per-user build lock could not be acquired in time."""
