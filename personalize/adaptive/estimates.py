"""
Tool: Adaptive Time Estimates
Purpose: Calibrate task duration estimates against a user's own history

The base estimate (the task's own minutes, or a size default) is multiplied by
six factors: task type, task size, time of day, day of week, complexity and
similar-task context. Factors without enough data are neutral, so a new user
gets their own estimate back unchanged.

Usage:
    from personalize.adaptive.estimates import calibrate, calculate_total_time

    prediction = calibrate(Task(type="coding", size="medium", estimated_minutes=60), model)
    prediction.estimated_minutes, prediction.confidence, prediction.factors

Output:
    TimePrediction(estimated_minutes, confidence, low, high, factors)
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from personalize.adaptive.calibration import (
    Calibrated,
    clamp,
    complexity_factor,
    context_factor,
    day_of_week_factor,
    size_factor,
    time_of_day_factor,
    type_factor,
)
from personalize.config import DEFAULT_CONFIG, PersonalizationConfig
from personalize.learning.models import (
    EstimationModel,
    EstimationRecord,
    Task,
    TimePrediction,
    UserModel,
)


def base_estimate(task: Task, config: PersonalizationConfig = DEFAULT_CONFIG) -> float:
    if task.estimated_minutes and task.estimated_minutes > 0:
        return float(task.estimated_minutes)
    estimates = config.estimates
    return float(estimates.default_minutes.get(task.size or "", estimates.fallback_minutes))


def calibration_factors(
    task: Task,
    model: UserModel,
    history: Iterable[EstimationRecord] = (),
    now: datetime | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> dict[str, Calibrated[float]]:
    now = now or datetime.now()
    estimation = model.estimation_model
    pattern = model.productivity_pattern
    return {
        "type": type_factor(task, estimation, config),
        "size": size_factor(task, estimation, config),
        "time_of_day": time_of_day_factor(pattern, now, config),
        "day_of_week": day_of_week_factor(pattern, now, config),
        "complexity": complexity_factor(task, config),
        "context": context_factor(task, history, now, config),
    }


def estimation_confidence(
    task: Task, estimation: EstimationModel, config: PersonalizationConfig = DEFAULT_CONFIG
) -> float:
    confidence = config.estimates.base_confidence

    type_data = estimation.by_task_type.get(task.type) if task.type else None
    if type_data:
        confidence += min(type_data.sample_size / 20, 0.2)

    size_data = estimation.by_size.get(task.size) if task.size else None
    if size_data:
        confidence += min(size_data.sample_size / 20, 0.15)

    if type_data and type_data.average_error > 30:
        confidence *= 0.8

    confidence *= estimation.global_accuracy
    low, high = config.clamps.confidence
    return round(clamp(confidence, low, high), 4)


def estimation_variance(
    task: Task, estimation: EstimationModel, config: PersonalizationConfig = DEFAULT_CONFIG
) -> float:
    type_data = estimation.by_task_type.get(task.type) if task.type else None
    if type_data and type_data.average_error > 0:
        return min(type_data.average_error / 60, 0.5)
    return config.estimates.size_variance.get(task.size or "", config.estimates.fallback_variance)


def explain(factors: dict[str, Calibrated[float]], base: float, final: int) -> list[str]:
    """One short reason per factor that moved the estimate."""
    reasons = []
    value = {name: factor.value for name, factor in factors.items()}

    if not factors["type"].is_neutral and value["type"] != 1.0:
        direction = "longer" if value["type"] > 1 else "shorter"
        reasons.append(f"Tasks of this type typically take {direction} than estimated")

    if not factors["size"].is_neutral and value["size"] != 1.0:
        if value["size"] > 1:
            reasons.append("Tasks of this size tend to take longer")
        else:
            reasons.append("Tasks of this size tend to take less time")

    if value["time_of_day"] > 1.1:
        reasons.append("Adjusted for lower productivity at this time of day")
    elif value["time_of_day"] < 0.9:
        reasons.append("Adjusted for higher productivity at this time of day")

    if value["day_of_week"] > 1.1:
        reasons.append("Adjusted for typically slower day of week")
    elif value["day_of_week"] < 0.9:
        reasons.append("Adjusted for typically productive day of week")

    if not factors["complexity"].is_neutral:
        level = "high" if value["complexity"] > 1 else "low"
        reasons.append(f"Adjusted for {level} complexity")

    if not factors["context"].is_neutral and value["context"] != 1.0:
        reasons.append("Adjusted based on similar task history")

    if not reasons and final != round(base):
        reasons.append("Calibrated based on historical accuracy")

    return reasons


def calibrate(
    task: Task,
    model: UserModel,
    history: Iterable[EstimationRecord] = (),
    now: datetime | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> TimePrediction:
    """Calibrated estimate, confidence and range for one task."""
    base = base_estimate(task, config)
    factors = calibration_factors(task, model, history, now, config)

    multiplier = 1.0
    for factor in factors.values():
        multiplier *= factor.value
    minutes = max(1, round(base * multiplier))

    variance = estimation_variance(task, model.estimation_model, config)
    return TimePrediction(
        estimated_minutes=minutes,
        confidence=estimation_confidence(task, model.estimation_model, config),
        low=max(1, round(minutes * (1 - variance))),
        high=round(minutes * (1 + variance)),
        factors=tuple(explain(factors, base, minutes)),
    )


def calibrate_many(
    tasks: list[Task],
    model: UserModel,
    history: Iterable[EstimationRecord] = (),
    now: datetime | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> list[TimePrediction]:
    history = list(history)
    now = now or datetime.now()
    return [calibrate(task, model, history, now, config) for task in tasks]


def calculate_total_time(
    tasks: list[Task],
    model: UserModel,
    history: Iterable[EstimationRecord] = (),
    now: datetime | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> dict[str, Any]:
    """Sum of calibrated estimates with a confidence discounted for larger batches.

    The batch penalty is max(0.7, 1 - n * 0.02), applied from the second task
    on: a one-task batch has exactly that task's confidence.
    """
    predictions = calibrate_many(tasks, model, history, now, config)
    if not predictions:
        return {"total": 0, "range": {"low": 0, "high": 0}, "confidence": 0.0, "breakdown": []}

    average = sum(p.confidence for p in predictions) / len(predictions)
    penalty = 1.0 if len(predictions) == 1 else max(0.7, 1 - len(predictions) * 0.02)

    return {
        "total": sum(p.estimated_minutes for p in predictions),
        "range": {
            "low": sum(p.low for p in predictions),
            "high": sum(p.high for p in predictions),
        },
        "confidence": round(average * penalty, 4),
        "breakdown": [
            {"task": task.to_dict(), "estimate": prediction.to_dict()}
            for task, prediction in zip(tasks, predictions)
        ],
    }


def suggest_better_estimate(
    task: Task,
    model: UserModel,
    history: Iterable[EstimationRecord] = (),
    now: datetime | None = None,
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> dict[str, Any]:
    prediction = calibrate(task, model, history, now, config)
    current = base_estimate(task, config)
    suggested = prediction.estimated_minutes
    difference = abs(suggested - current) / current

    if suggested > current:
        if difference > 0.5:
            reason = (
                "Based on your history, this task will likely take significantly longer. "
                f"Consider {suggested} minutes."
            )
        else:
            reason = (
                "You tend to slightly underestimate tasks like this. "
                f"{suggested} minutes may be more realistic."
            )
    elif suggested < current:
        if difference > 0.3:
            reason = f"You're usually faster with tasks like this. {suggested} minutes should be sufficient."
        else:
            reason = "Your estimate looks reasonable, though you might finish a bit earlier."
    else:
        reason = "Your estimate aligns well with your historical performance."

    return {
        "suggested_minutes": suggested,
        "current_minutes": round(current),
        "reason": reason,
        "confidence": prediction.confidence,
    }


def get_estimation_tips(model: UserModel) -> list[str]:
    tips = []
    estimation = model.estimation_model

    for task_type, data in estimation.by_task_type.items():
        if data.sample_size < 5:
            continue
        if data.accuracy < 0.6:
            tips.append(
                f'You consistently underestimate "{task_type}" tasks. '
                "Try adding 50% buffer to your estimates."
            )
        elif data.accuracy > 1.5:
            tips.append(
                f'You often overestimate "{task_type}" tasks. Your estimates can be more aggressive.'
            )

    for size, data in estimation.by_size.items():
        if data.sample_size >= 5 and data.accuracy < 0.7:
            tips.append(
                f"{size.capitalize()} tasks often take longer than expected. "
                "Break them into smaller pieces."
            )

    if estimation.global_accuracy < 0.5:
        tips.append(
            "Your estimation accuracy varies. Try tracking actual time spent to improve calibration."
        )

    windows = model.productivity_pattern.peak_productivity_windows
    if windows:
        hours = ", ".join(f"{w.start_hour:02d}:00-{w.end_hour % 24:02d}:00" for w in windows)
        tips.append(f"Schedule complex tasks during your peak hours ({hours}) for better accuracy.")

    return tips
