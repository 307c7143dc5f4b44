"""Shared test fixtures for the personalization engine tests.

This module provides common fixtures used across all test modules:
- Database isolation with temporary files
- Stores and an engine wired to a temporary data directory
- Factories for user models and estimation records

Usage:
    def test_something(event_store, mock_user_id):
        event_store.record_event(mock_user_id, "item_started")
"""

import os
import tempfile
from collections.abc import Generator
from datetime import datetime
from pathlib import Path

import pytest

from personalize.config import PersonalizationConfig
from personalize.engine import PersonalizationEngine
from personalize.learning.event_store import EventStore
from personalize.learning.model_store import ModelStore
from personalize.learning.models import (
    EstimationModel,
    EstimationRecord,
    NotificationPreferences,
    Preferences,
    ProductivityPattern,
    SuggestionPreferences,
    UserModel,
)


# ─────────────────────────────────────────────────────────────────────────────
# Path Constants
# ─────────────────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).parent.parent

# A Wednesday, mid-morning
FIXED_NOW = datetime(2026, 3, 11, 10, 0, 0)


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_db() -> Generator[Path, None, None]:
    """Create a temporary database file for testing.

    The database file is automatically deleted after the test completes.

    Yields:
        Path to the temporary database file
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup
    if db_path.exists():
        os.unlink(db_path)


@pytest.fixture
def temp_data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory structure.

    Returns:
        Path to temporary data directory
    """
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


@pytest.fixture
def event_store(temp_db: Path) -> EventStore:
    return EventStore(temp_db)


@pytest.fixture
def model_store(temp_db: Path) -> ModelStore:
    return ModelStore(temp_db, timeout=1.0)


@pytest.fixture
def config() -> PersonalizationConfig:
    """Default configuration, independent of args/personalization.yaml."""
    return PersonalizationConfig()


@pytest.fixture
def engine(temp_data_dir: Path, config: PersonalizationConfig) -> PersonalizationEngine:
    return PersonalizationEngine(config=config, data_dir=temp_data_dir)


# ─────────────────────────────────────────────────────────────────────────────
# User Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_user_id() -> str:
    """Standard test user ID."""
    return "test_user_123"


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


# ─────────────────────────────────────────────────────────────────────────────
# Model Factories
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def make_model(mock_user_id: str):
    """Factory building a UserModel from just the parts a test cares about.

    Usage:
        model = make_model(notification_preferences=NotificationPreferences(...))
    """

    def _make(
        productivity_pattern: ProductivityPattern | None = None,
        estimation_model: EstimationModel | None = None,
        notification_preferences: NotificationPreferences | None = None,
        suggestion_preferences: SuggestionPreferences | None = None,
        **preference_parts,
    ) -> UserModel:
        preferences = Preferences(
            notification_preferences=notification_preferences or NotificationPreferences(),
            suggestion_preferences=suggestion_preferences or SuggestionPreferences(),
            **preference_parts,
        )
        return UserModel(
            user_id=mock_user_id,
            last_updated=FIXED_NOW,
            samples_used=50,
            days_covered=10,
            overall_confidence=0.5,
            productivity_pattern=productivity_pattern or ProductivityPattern(),
            estimation_model=estimation_model or EstimationModel(),
            preferences=preferences,
        )

    return _make


@pytest.fixture
def make_record(mock_user_id: str):
    """Factory for EstimationRecord rows."""

    def _make(
        estimated: float,
        actual: float,
        task_type: str | None = "coding",
        created_at: datetime = FIXED_NOW,
        **fields,
    ) -> EstimationRecord:
        return EstimationRecord(
            id=EstimationRecord.generate_id(),
            user_id=mock_user_id,
            estimated_minutes=estimated,
            actual_minutes=actual,
            task_type=task_type,
            created_at=created_at,
            **fields,
        )

    return _make
