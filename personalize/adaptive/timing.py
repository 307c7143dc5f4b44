"""Hour-of-day arithmetic shared by the suggestion and notification adapters.

Hours live on a 24-hour circle: 23:00 and 01:00 are two hours apart.
"""

from datetime import datetime, timedelta


def hour_distance(a: int, b: int) -> int:
    diff = abs(a - b) % 24
    return min(diff, 24 - diff)


def parse_hhmm(value: str) -> tuple[int, int]:
    """ "09:30" -> (9, 30). Raises ValueError on anything else."""
    hours, _, minutes = value.partition(":")
    hour, minute = int(hours), int(minutes or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time of day: {value}")
    return hour, minute


def next_occurrence(now: datetime, hour: int, minute: int = 0) -> datetime:
    """Next moment strictly after `now` whose clock reads hour:minute."""
    scheduled = now.replace(hour=hour % 24, minute=minute, second=0, microsecond=0)
    if scheduled <= now:
        scheduled += timedelta(days=1)
    return scheduled


def minute_distance(now: datetime, hour: int, minute: int = 0) -> int:
    """Minutes between now's clock time and hour:minute, the short way round the day."""
    diff = abs(now.hour * 60 + now.minute - (hour % 24) * 60 - minute) % 1440
    return min(diff, 1440 - diff)


def is_near(now: datetime, hour: int, window_hours: int, minute: int = 0) -> bool:
    return minute_distance(now, hour, minute) <= window_hours * 60
