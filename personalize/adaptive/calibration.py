"""
Calibrated values and the multipliers behind a calibrated estimate.

Each factor returns a ``Calibrated`` multiplier. When the model has too little
data for a factor it returns ``Calibrated.neutral()`` (value 1.0,
``is_neutral=True``) rather than raising or guessing, so callers and tests can
see exactly which factors had something to say.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from statistics import mean
from typing import Generic, TypeVar

from personalize.config import DEFAULT_CONFIG, PersonalizationConfig
from personalize.learning import DAY_NAMES
from personalize.learning.models import (
    EstimationModel,
    EstimationRecord,
    ProductivityPattern,
    Task,
)

T = TypeVar("T")

STOPWORDS = frozenset(
    """
    the a an and or but in on at to for of with by from as is was are were been
    be have has had do does did will would could should may might must shall can
    need this that these those i you he she it we they what which who when where
    why how
    """.split()
)


@dataclass(frozen=True)
class Calibrated(Generic[T]):
    value: T
    is_neutral: bool = False
    reason: str | None = None

    @classmethod
    def neutral(cls, reason: str | None = None, value: float = 1.0) -> "Calibrated":
        return cls(value=value, is_neutral=True, reason=reason)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def type_factor(
    task: Task, estimation: EstimationModel, config: PersonalizationConfig = DEFAULT_CONFIG
) -> Calibrated[float]:
    data = estimation.by_task_type.get(task.type) if task.type else None
    if data is None or data.sample_size < config.thresholds.min_type_samples:
        return Calibrated.neutral("not enough history for this task type")

    low, high = config.thresholds.type_neutral_band
    if low <= data.accuracy <= high or data.accuracy <= 0:
        return Calibrated.neutral("estimates for this task type are on target")
    return Calibrated(1 / data.accuracy)


def size_factor(
    task: Task, estimation: EstimationModel, config: PersonalizationConfig = DEFAULT_CONFIG
) -> Calibrated[float]:
    data = estimation.by_size.get(task.size) if task.size else None
    if data is None or data.sample_size < config.thresholds.min_size_samples:
        return Calibrated.neutral("not enough history for this task size")

    low, high = config.thresholds.size_neutral_band
    if low <= data.accuracy <= high or data.accuracy <= 0:
        return Calibrated.neutral("estimates for this task size are on target")
    return Calibrated(1 / data.accuracy)


def _relative_factor(scores: dict, key, bounds: tuple[float, float], what: str) -> Calibrated[float]:
    """Average score divided by the score for `key`: slow slots stretch the estimate."""
    if not scores or key not in scores:
        return Calibrated.neutral(f"no productivity data for this {what}")

    average = mean(scores.values())
    if average <= 0:
        return Calibrated.neutral(f"no completions recorded for any {what}")

    current = scores[key]
    low, high = bounds
    if current <= 0:
        return Calibrated(high)
    return Calibrated(clamp(average / current, low, high))


def time_of_day_factor(
    pattern: ProductivityPattern, now: datetime, config: PersonalizationConfig = DEFAULT_CONFIG
) -> Calibrated[float]:
    return _relative_factor(pattern.hourly_scores, now.hour, config.clamps.time_of_day, "hour")


def day_of_week_factor(
    pattern: ProductivityPattern, now: datetime, config: PersonalizationConfig = DEFAULT_CONFIG
) -> Calibrated[float]:
    return _relative_factor(
        pattern.day_of_week_scores, DAY_NAMES[now.weekday()], config.clamps.day_of_week, "day"
    )


def complexity_factor(task: Task, config: PersonalizationConfig = DEFAULT_CONFIG) -> Calibrated[float]:
    multiplier = config.estimates.complexity.get(task.complexity or "moderate", 1.0)
    if multiplier == 1.0:
        return Calibrated.neutral("moderate or unknown complexity")
    return Calibrated(multiplier)


def extract_keywords(title: str | None, limit: int = 3) -> list[str]:
    """First few meaningful words of a title: lowercase, longer than 3 chars, no stopwords."""
    if not title:
        return []
    words = re.findall(r"[\w'-]+", title.lower())
    return [w for w in words if len(w) > 3 and w not in STOPWORDS][:limit]


def _average_ratio(records: list[EstimationRecord]) -> float | None:
    ratios = [r.ratio for r in records if r.estimated_minutes > 0 and r.actual_minutes > 0]
    return mean(ratios) if ratios else None


def context_factor(
    task: Task,
    history: Iterable[EstimationRecord],
    now: datetime,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> Calibrated[float]:
    """How long similar past work ran against its estimate.

    Same-project records (30 days by default) set the multiplier; records
    whose titles share a keyword with the task (60 days) are blended in 50/50.
    """
    history = list(history)
    lookback = config.lookback
    low, high = config.clamps.context
    multiplier = 1.0
    used = False

    if task.project_id:
        since = now - timedelta(days=lookback.context_project_days)
        project_ratio = _average_ratio(
            [r for r in history if r.project_id == task.project_id and r.created_at >= since]
        )
        if project_ratio:
            multiplier *= clamp(project_ratio, low, high)
            used = True

    keywords = extract_keywords(task.title)
    if keywords:
        since = now - timedelta(days=lookback.context_keyword_days)
        similar = [
            r
            for r in history
            if r.title and r.created_at >= since and any(k in r.title.lower() for k in keywords)
        ]
        keyword_ratio = _average_ratio(similar)
        if keyword_ratio:
            multiplier = (multiplier + keyword_ratio) / 2
            used = True

    if not used:
        return Calibrated.neutral("no similar tasks in history")
    return Calibrated(clamp(multiplier, low, high))
