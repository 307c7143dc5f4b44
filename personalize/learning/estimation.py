"""
Tool: Estimation Model Builder
Purpose: Measure how far a user's time estimates drift, by task type and size

accuracy = estimated / actual. Above 1.2 the user overestimates, below 0.8
they underestimate. A type or size with fewer than three records keeps the
neutral accuracy of 1.0 so the calibrator never corrects on noise.
"""

from collections import defaultdict
from statistics import mean

from personalize.config import DEFAULT_CONFIG, PersonalizationConfig
from personalize.learning import TASK_SIZES, size_for_minutes
from personalize.learning.models import (
    Bias,
    EstimationModel,
    EstimationRecord,
    SizeEstimation,
    TypeEstimation,
)


def bias_for(accuracy: float) -> str:
    if accuracy > 1.2:
        return Bias.OVERESTIMATE.value
    if accuracy < 0.8:
        return Bias.UNDERESTIMATE.value
    return Bias.ACCURATE.value


def build_estimation_model(
    records: list[EstimationRecord],
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> EstimationModel:
    thresholds = config.thresholds
    usable = [r for r in records if r.actual_minutes > 0 and r.estimated_minutes > 0]
    if len(usable) < thresholds.min_estimation_records:
        return EstimationModel()

    by_type_records: dict[str, list[EstimationRecord]] = defaultdict(list)
    for record in usable:
        by_type_records[record.task_type or "task"].append(record)

    by_task_type = {
        task_type: type_estimation(type_records, thresholds.min_type_samples)
        for task_type, type_records in sorted(by_type_records.items())
    }
    by_size = size_estimations(usable, thresholds.min_size_samples)

    return EstimationModel(
        global_accuracy=round(mean(r.accuracy for r in usable), 4),
        by_task_type=by_task_type,
        by_size=by_size,
        improvement_suggestions=tuple(improvement_suggestions(by_task_type, by_size)),
    )


def type_estimation(records: list[EstimationRecord], min_samples: int = 3) -> TypeEstimation:
    if len(records) < min_samples:
        return TypeEstimation(sample_size=len(records))

    accuracy = mean(r.accuracy for r in records)
    return TypeEstimation(
        accuracy=round(accuracy, 4),
        bias=bias_for(accuracy),
        sample_size=len(records),
        average_error=round(mean(r.error for r in records), 2),
    )


def size_estimations(
    records: list[EstimationRecord], min_samples: int = 3
) -> dict[str, SizeEstimation]:
    result = {}
    for size in TASK_SIZES:
        size_records = [
            r for r in records if (r.task_size or size_for_minutes(r.estimated_minutes)) == size
        ]
        if len(size_records) < min_samples:
            result[size] = SizeEstimation(sample_size=len(size_records))
            continue

        accuracy = mean(r.accuracy for r in size_records)
        result[size] = SizeEstimation(
            accuracy=round(accuracy, 4),
            bias=bias_for(accuracy),
            sample_size=len(size_records),
            average_actual=round(mean(r.actual_minutes for r in size_records), 2),
        )
    return result


def improvement_suggestions(
    by_type: dict[str, TypeEstimation],
    by_size: dict[str, SizeEstimation],
) -> list[str]:
    suggestions = []

    over = {t: e for t, e in by_type.items() if e.bias == Bias.OVERESTIMATE and e.sample_size >= 3}
    if over:
        multiplier = mean(1 / e.accuracy for e in over.values())
        suggestions.append(
            f"You tend to overestimate {', '.join(over)} tasks. "
            f"Try reducing estimates by ~{round((1 - multiplier) * 100)}%."
        )

    under = {t: e for t, e in by_type.items() if e.bias == Bias.UNDERESTIMATE and e.sample_size >= 3}
    if under:
        multiplier = mean(1 / e.accuracy for e in under.values())
        suggestions.append(
            f"You tend to underestimate {', '.join(under)} tasks. "
            f"Consider adding ~{round((multiplier - 1) * 100)}% buffer time."
        )

    large = by_size.get("large")
    if large and large.bias == Bias.UNDERESTIMATE and large.sample_size >= 3:
        suggestions.append(
            "Large tasks (2+ hours) often take longer than expected. "
            "Consider breaking them into smaller pieces."
        )

    small = by_size.get("small")
    if small and small.bias == Bias.OVERESTIMATE and small.sample_size >= 3:
        suggestions.append(
            "You're overestimating small tasks. You're faster than you think on quick items."
        )

    measured = [e.accuracy for e in by_type.values() if e.sample_size >= 3]
    if measured and 0.9 <= mean(measured) <= 1.1:
        suggestions.append("Your estimates are generally accurate within 10%.")

    return suggestions
