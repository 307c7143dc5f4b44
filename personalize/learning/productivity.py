"""
Tool: Productivity Pattern Builder
Purpose: Fold productivity records into hour/day completion profiles

Scores are completion rates normalised against the user's best hour (or day),
so 1.0 marks their most productive slot. Hours and days with too few samples
are left out of the maps entirely; the calibrator reads a missing key as "no
data" and stays neutral for it.

Peak windows are runs of consecutive hours at or above 70% of the best hour.
A run that reaches midnight is joined to a run starting at midnight, giving a
window such as 22 -> 2.
"""

from collections import Counter, defaultdict
from statistics import mean
from typing import Any

from personalize.config import DEFAULT_CONFIG, PersonalizationConfig
from personalize.learning import DAY_NAMES
from personalize.learning.models import ProductivityPattern, TimeWindow, format_hour


def build_productivity_pattern(
    records: list[dict[str, Any]],
    config: PersonalizationConfig = DEFAULT_CONFIG,
) -> ProductivityPattern:
    thresholds = config.thresholds
    completions = [r for r in records if r["record_type"] == "completion"]
    focus_sessions = [r for r in records if r["record_type"] == "focus_session"]

    hourly_scores = hourly_completion_scores(completions, focus_sessions, thresholds.min_hour_samples)
    day_scores = day_completion_scores(completions, thresholds.min_day_samples)
    windows = identify_peak_windows(
        hourly_scores, thresholds.peak_window_ratio, thresholds.max_peak_windows
    )

    successful = [
        r["duration"] for r in focus_sessions if (r.get("completed_count") or 0) > 0 and r.get("duration")
    ]
    focus = optimal_focus_duration(successful)

    return ProductivityPattern(
        hourly_scores=hourly_scores,
        day_of_week_scores=day_scores,
        peak_productivity_windows=tuple(windows),
        optimal_focus_duration=focus,
        optimal_break_frequency=round(focus / 25) * 5,
    )


def hourly_completion_scores(
    completions: list[dict[str, Any]],
    focus_sessions: list[dict[str, Any]],
    min_samples: int = 3,
) -> dict[int, float]:
    """Completions per active day for each hour, scaled so the best hour is 1.0."""
    raw: dict[int, float] = {}
    for hour in range(24):
        hour_completions = [r for r in completions if r["hour"] == hour]
        hour_focus = [r for r in focus_sessions if r["hour"] == hour]
        if len(hour_completions) + len(hour_focus) < min_samples:
            continue
        active_days = {r["created_at"][:10] for r in hour_completions + hour_focus}
        raw[hour] = len(hour_completions) / max(len(active_days), 1)

    return _normalise(raw)


def day_completion_scores(completions: list[dict[str, Any]], min_samples: int = 3) -> dict[str, float]:
    """Completions per calendar day for each weekday, scaled so the best weekday is 1.0."""
    counts = Counter(r["day_of_week"] for r in completions)
    dates: dict[str, set[str]] = defaultdict(set)
    for r in completions:
        dates[r["day_of_week"]].add(r["created_at"][:10])

    raw = {
        day: counts[day] / max(len(dates[day]), 1)
        for day in DAY_NAMES
        if counts[day] >= min_samples
    }
    return _normalise(raw)


def _normalise(raw: dict) -> dict:
    if not raw:
        return {}
    top = max(raw.values())
    if top <= 0:
        return {k: 0.0 for k in raw}
    return {k: round(v / top, 4) for k, v in raw.items()}


def identify_peak_windows(
    hourly_scores: dict[int, float],
    ratio: float = 0.7,
    limit: int = 3,
) -> list[TimeWindow]:
    if not hourly_scores:
        return []

    threshold = max(hourly_scores.values()) * ratio
    runs: list[list[int]] = []
    current: list[int] = []
    for hour in range(24):
        if hour in hourly_scores and hourly_scores[hour] >= threshold:
            current.append(hour)
        elif current:
            runs.append(current)
            current = []
    if current:
        runs.append(current)

    # Join a run ending at 23 with one starting at 0
    if len(runs) > 1 and runs[0][0] == 0 and runs[-1][-1] == 23:
        runs[0] = runs.pop() + runs[0]

    windows = []
    for run in runs:
        start, end = run[0], run[-1] + 1
        windows.append(
            TimeWindow(
                start_hour=start,
                end_hour=end,
                score=round(mean(hourly_scores[h] for h in run), 4),
                label=label_window(start, end),
            )
        )

    return sorted(windows, key=lambda w: w.score, reverse=True)[:limit]


def label_window(start: int, end: int) -> str:
    """Morning / Afternoon / Evening / Night, or an explicit hour range."""
    if start < end:
        if start >= 6 and end <= 12:
            return "Morning"
        if start >= 12 and end <= 17:
            return "Afternoon"
        if start >= 17 and end <= 21:
            return "Evening"
    if start >= 21 or end <= 6:
        return "Night"
    return f"{format_hour(start)} - {format_hour(end)}"


def optimal_focus_duration(durations: list[float], default: int = 25) -> int:
    """Median successful focus session after IQR outlier removal, to the nearest 5 minutes."""
    if not durations:
        return default

    ordered = sorted(durations)
    q1 = ordered[int(len(ordered) * 0.25)]
    q3 = ordered[int(len(ordered) * 0.75)]
    iqr = q3 - q1
    kept = [d for d in ordered if q1 - 1.5 * iqr <= d <= q3 + 1.5 * iqr]
    if not kept:
        return default

    median = kept[len(kept) // 2]
    return int(round(median / 5) * 5)
