from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
ARGS_DIR = PROJECT_ROOT / "args"
CONFIG_PATH = ARGS_DIR / "personalization.yaml"


# =============================================================================
# PersonalizationConfig (args/personalization.yaml)
# =============================================================================

class LookbackConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    estimation_days: int = Field(default=30, ge=1)
    productivity_days: int = Field(default=30, ge=1)
    preferences_days: int = Field(default=30, ge=1)
    context_project_days: int = Field(default=30, ge=1)
    context_keyword_days: int = Field(default=60, ge=1)


class ThresholdsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    min_type_samples: int = Field(default=3, ge=1)
    min_size_samples: int = Field(default=3, ge=1)
    min_hour_samples: int = Field(default=3, ge=1)
    min_day_samples: int = Field(default=3, ge=1)
    min_estimation_records: int = Field(default=5, ge=1)
    min_rate_samples: int = Field(default=3, ge=1)
    min_timing_samples: int = Field(default=3, ge=1)
    min_engagement_clicks: int = Field(default=5, ge=1)
    min_style_samples: int = Field(default=5, ge=1)
    min_work_style_samples: int = Field(default=10, ge=1)
    type_neutral_band: tuple[float, float] = (0.8, 1.2)
    size_neutral_band: tuple[float, float] = (0.7, 1.3)
    peak_window_ratio: float = Field(default=0.7, gt=0.0, le=1.0)
    max_peak_windows: int = Field(default=3, ge=1)


class ClampsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    time_of_day: tuple[float, float] = (0.7, 1.5)
    day_of_week: tuple[float, float] = (0.8, 1.3)
    context: tuple[float, float] = (0.5, 2.0)
    confidence: tuple[float, float] = (0.1, 0.95)


class EstimatesConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    default_minutes: dict[str, float] = Field(
        default_factory=lambda: {"small": 15, "medium": 45, "large": 120}
    )
    fallback_minutes: float = Field(default=30, gt=0)
    complexity: dict[str, float] = Field(
        default_factory=lambda: {"simple": 0.8, "moderate": 1.0, "complex": 1.4}
    )
    size_variance: dict[str, float] = Field(
        default_factory=lambda: {"small": 0.3, "medium": 0.4, "large": 0.5}
    )
    fallback_variance: float = Field(default=0.35, ge=0.0, le=1.0)
    base_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class SuggestionsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    suppress_below: float = Field(default=0.15, ge=0.0, le=1.0)
    timing_window_hours: int = Field(default=2, ge=0, le=12)
    modal_verbs: list[str] = Field(
        default_factory=lambda: ["would", "could", "should", "might", "must", "can"]
    )


class FrequencyProfile(BaseModel):
    model_config = ConfigDict(extra="allow")
    max_per_hour: int = Field(default=5, ge=0)
    max_per_day: int = Field(default=20, ge=0)
    batching_interval: int = Field(default=30, ge=1)


class FrequencyConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    default: FrequencyProfile = Field(default_factory=FrequencyProfile)
    low_engagement: FrequencyProfile = Field(
        default_factory=lambda: FrequencyProfile(max_per_hour=2, max_per_day=8, batching_interval=60)
    )
    high_engagement: FrequencyProfile = Field(
        default_factory=lambda: FrequencyProfile(max_per_hour=8, max_per_day=30, batching_interval=15)
    )


class NotificationsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    skip_below: float = Field(default=0.2, ge=0.0, le=1.0)
    default_channel: str = Field(default="in_app")
    grouping_window_minutes: int = Field(default=60, ge=1)
    frequency: FrequencyConfig = Field(default_factory=FrequencyConfig)
    low_engagement_below: float = Field(default=0.3, ge=0.0, le=1.0)
    high_engagement_above: float = Field(default=0.7, ge=0.0, le=1.0)


class ModelConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    rebuild_every_events: int = Field(default=10, ge=0)


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    data_dir: str | None = None
    timeout_seconds: float = Field(default=5.0, gt=0)


class PersonalizationConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    lookback: LookbackConfig = Field(default_factory=LookbackConfig)
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    clamps: ClampsConfig = Field(default_factory=ClampsConfig)
    estimates: EstimatesConfig = Field(default_factory=EstimatesConfig)
    suggestions: SuggestionsConfig = Field(default_factory=SuggestionsConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


DEFAULT_CONFIG = PersonalizationConfig()


def config_path() -> Path:
    override = os.environ.get("PERSONALIZE_CONFIG")
    return Path(override) if override else CONFIG_PATH


def load_config(path: Path | str | None = None) -> PersonalizationConfig:
    """Load args/personalization.yaml, falling back to defaults.

    A missing file yields the defaults silently; an invalid file is logged
    and also yields the defaults.
    """
    yaml_path = Path(path) if path else config_path()

    try:
        if yaml_path.exists():
            with open(yaml_path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            raw = {}

        if not isinstance(raw, dict):
            raise ValueError(f"expected a mapping at the top level, got {type(raw).__name__}")

        return PersonalizationConfig.model_validate(raw.get("personalization", raw))
    except (OSError, yaml.YAMLError, ValueError) as e:
        logger.warning(f"Config validation failed for {yaml_path}: {e}, using defaults")
        return PersonalizationConfig()
