"""Schedule descriptor -> next trigger instant.

All computation happens in UTC. Time-of-day and weekday are authored in UTC;
any local-timezone conversion happens before a descriptor is stored.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from croniter import croniter

from promptloop.core.datetime_utils import to_naive_utc

ScheduleType = Literal["daily", "weekly", "cron"]

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class InvalidScheduleError(ValueError):
    """Raised when a schedule descriptor cannot produce a next run time."""


@dataclass(frozen=True)
class ScheduleDescriptor:
    """How often a job fires."""

    schedule_type: ScheduleType
    schedule_time: str | None = None
    day_of_week: int | None = None  # 0=Sunday .. 6=Saturday
    cron: str | None = None


def assert_time_format(value: str | None) -> tuple[int, int]:
    """Validate an `HH:mm` string and return (hour, minute)."""
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise InvalidScheduleError("Time must be HH:mm format")
    return int(match.group(1)), int(match.group(2))


def _utc_weekday(dt: datetime) -> int:
    # datetime.weekday() is Monday=0; descriptors use Sunday=0
    return (dt.weekday() + 1) % 7


def compute_next_run_at(descriptor: ScheduleDescriptor, base: datetime) -> datetime:
    """
    Return the next trigger instant strictly after `base`.

    Args:
        descriptor: Schedule to evaluate
        base: Reference instant (naive UTC or aware)

    Returns:
        Naive UTC datetime

    Raises:
        InvalidScheduleError: malformed time, missing cron expression,
            out-of-range weekday or unknown schedule type
    """
    base = to_naive_utc(base)

    if descriptor.schedule_type == "cron":
        expression = (descriptor.cron or "").strip()
        if not expression:
            raise InvalidScheduleError("Cron expression is required")
        if not croniter.is_valid(expression):
            raise InvalidScheduleError(f"Invalid cron expression: {expression}")
        try:
            return croniter(expression, base).get_next(datetime)
        except (ValueError, KeyError) as e:
            raise InvalidScheduleError(f"Invalid cron expression: {expression}") from e

    if descriptor.schedule_type not in ("daily", "weekly"):
        raise InvalidScheduleError(f"Unknown schedule type: {descriptor.schedule_type}")

    hour, minute = assert_time_format(descriptor.schedule_time)
    today_at = base.replace(hour=hour, minute=minute, second=0, microsecond=0)

    if descriptor.schedule_type == "daily":
        return today_at if today_at > base else today_at + timedelta(days=1)

    day = descriptor.day_of_week
    if day is None or isinstance(day, bool) or not 0 <= day <= 6:
        raise InvalidScheduleError("Day of week must be 0-6 for weekly schedule")

    delta_days = (day - _utc_weekday(base) + 7) % 7
    candidate = today_at + timedelta(days=delta_days)
    return candidate if candidate > base else candidate + timedelta(days=7)
