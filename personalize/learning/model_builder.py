"""
Tool: Model Builder
Purpose: Fold the event store into a fresh UserModel snapshot

build_model() is a pure fold: the same records and the same `now` always give
the same model. ModelBuilder wraps it with the store reads, the per-user build
lock and the atomic swap into the model store.

Usage:
    python -m personalize.cli --action rebuild --user alice

    builder = ModelBuilder(event_store, model_store)
    model = builder.build("alice")

Output:
    rebuild() returns {"success": True, "user_id": ..., "samples_used": ..., ...}
"""

from datetime import datetime, timedelta
from typing import Any

from personalize.config import DEFAULT_CONFIG, PersonalizationConfig
from personalize.errors import StoreUnavailable
from personalize.learning.estimation import build_estimation_model
from personalize.learning.event_store import EventStore
from personalize.learning.model_store import ModelStore
from personalize.learning.models import EstimationRecord, UserModel
from personalize.learning.preferences import build_preferences
from personalize.learning.productivity import build_productivity_pattern
from personalize.logging_config import get_logger

logger = get_logger(__name__)

# Storage failures, plus stored rows too damaged to fold
BUILD_ERRORS = (StoreUnavailable, KeyError, TypeError, ValueError)


def build_model(
    user_id: str,
    estimation_records: list[EstimationRecord],
    productivity_records: list[dict[str, Any]],
    suggestion_history: list[dict[str, Any]],
    notification_engagement: list[dict[str, Any]],
    message_records: list[dict[str, Any]],
    explicit_preferences: dict[str, Any] | None = None,
    low_value_suggestions: list[str] | None = None,
    now: datetime | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> UserModel:
    completions = [r for r in productivity_records if r["record_type"] == "completion"]

    samples = (
        len(estimation_records)
        + len(productivity_records)
        + len(suggestion_history)
        + len(notification_engagement)
        + len(message_records)
    )
    days = {r.created_at.date().isoformat() for r in estimation_records}
    for rows in (productivity_records, suggestion_history, notification_engagement, message_records):
        days.update(r["created_at"][:10] for r in rows)

    return UserModel(
        user_id=user_id,
        last_updated=now or datetime.now(),
        samples_used=samples,
        days_covered=len(days),
        overall_confidence=round(min(samples / 100, 1.0), 4),
        productivity_pattern=build_productivity_pattern(productivity_records, config),
        estimation_model=build_estimation_model(estimation_records, config),
        preferences=build_preferences(
            suggestion_history,
            notification_engagement,
            message_records,
            completions,
            explicit_preferences,
            low_value_suggestions,
            config,
        ),
    )


class ModelBuilder:
    def __init__(
        self,
        event_store: EventStore,
        model_store: ModelStore,
        config: PersonalizationConfig = DEFAULT_CONFIG,
    ):
        self.event_store = event_store
        self.model_store = model_store
        self.config = config

    def collect(self, user_id: str, now: datetime) -> dict[str, Any]:
        """Read every record family inside its lookback window."""
        lookback = self.config.lookback
        store = self.event_store
        return {
            "estimation_records": store.get_estimation_records(
                user_id, since=now - timedelta(days=lookback.estimation_days)
            ),
            "productivity_records": store.get_productivity_records(
                user_id, since=now - timedelta(days=lookback.productivity_days)
            ),
            "suggestion_history": store.get_suggestion_history(
                user_id, since=now - timedelta(days=lookback.preferences_days)
            ),
            "notification_engagement": store.get_notification_engagement(
                user_id, since=now - timedelta(days=lookback.preferences_days)
            ),
            "message_records": store.get_message_style_records(
                user_id, since=now - timedelta(days=lookback.preferences_days)
            ),
            "explicit_preferences": store.get_explicit_preferences(user_id),
            "low_value_suggestions": store.get_low_value_suggestion_types(user_id),
        }

    def _build_and_swap(self, user_id: str, now: datetime) -> tuple[UserModel, int]:
        with self.model_store.build_lock(user_id):
            records = self.collect(user_id, now)
            model = build_model(user_id, now=now, config=self.config, **records)
            version = self.model_store.replace(model)
        return model, version

    def build(self, user_id: str, now: datetime | None = None) -> UserModel:
        """Rebuild and swap in a user's model.

        On a storage failure or unreadable records the previous snapshot stays
        current and is returned; the failure is logged, never raised.
        """
        try:
            model, _ = self._build_and_swap(user_id, now or datetime.now())
        except BUILD_ERRORS as e:
            logger.warning("model_build_failed", user_id=user_id, error=str(e))
            return self.model_store.get(user_id)

        logger.info(
            "model_rebuilt",
            user_id=user_id,
            samples=model.samples_used,
            confidence=model.overall_confidence,
        )
        return model

    def rebuild(self, user_id: str, now: datetime | None = None) -> dict[str, Any]:
        """build() with a result dict for the CLI and API."""
        try:
            model, version = self._build_and_swap(user_id, now or datetime.now())
        except BUILD_ERRORS as e:
            logger.warning("model_build_failed", user_id=user_id, error=str(e))
            return {"success": False, "user_id": user_id, "error": str(e), "degraded": True}

        return {
            "success": True,
            "user_id": user_id,
            "version": version,
            "samples_used": model.samples_used,
            "days_covered": model.days_covered,
            "overall_confidence": model.overall_confidence,
            "last_updated": model.last_updated.isoformat(),
        }
