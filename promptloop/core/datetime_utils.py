"""Centralized datetime utilities for consistent UTC handling.

All functions return naive datetimes for database compatibility
(SQLAlchemy models store naive UTC).

Usage:
    from promptloop.core.datetime_utils import utc_now, lock_token_now

    now = utc_now()
    token = lock_token_now()
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC time as naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def lock_token_now() -> datetime:
    """Current UTC time truncated to milliseconds.

    Used as the `locked_at` lock token. Truncation keeps the value stable
    across datastores with coarser timestamp precision, so the token read
    back from a row compares equal to the one written.
    """
    now = utc_now()
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def start_of_utc_day(at: datetime | None = None) -> datetime:
    """Midnight (naive UTC) of the day containing `at` (default: now)."""
    at = to_naive_utc(at) if at is not None else utc_now()
    return at.replace(hour=0, minute=0, second=0, microsecond=0)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def to_aware_utc(dt: datetime) -> datetime:
    """Attach UTC tzinfo to a naive UTC datetime (aware input is converted)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def isoformat_utc(dt: datetime) -> str:
    """ISO-8601 string with millisecond precision and a `Z` suffix."""
    return to_aware_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_run_title(name: str, at: datetime, tz_label: str | None = None) -> str:
    """Build the delivery title for a run, e.g. `[Morning brief] 2026-01-01 09:00 +00:00 UTC`."""
    aware = to_aware_utc(at)
    label = tz_label.strip() if tz_label and tz_label.strip() else "UTC"
    offset = aware.strftime("%z")
    offset = f"{offset[:3]}:{offset[3:]}"
    return f"[{name}] {aware.strftime('%Y-%m-%d %H:%M')} {offset} {label}"
