"""Timestamps: lax input -> strict UTC output."""

from __future__ import annotations

from datetime import UTC, datetime

import pendulum

# Partition names for the day-partitioned logs.
PARTITION_FORMAT = "%Y-%m-%d"


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax timestamp into a timezone-aware datetime.

    Accepts ISO 8601 with ``Z`` or numeric offsets, space separators and
    date-only strings. A missing timezone defaults to ``default_tz``.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 in UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def now_iso() -> str:
    """Current UTC time as ISO 8601."""
    return format_iso(now_utc())


def partition_name(value: str | datetime) -> str:
    """Day partition (``YYYY-MM-DD``, UTC) a timestamp belongs to."""
    return parse_datetime(value).astimezone(UTC).strftime(PARTITION_FORMAT)


def sort_key(value: str) -> float:
    """Comparable key for an ISO timestamp; unparseable values sort first."""
    try:
        return parse_datetime(value).timestamp()
    except (ValueError, TypeError):
        return float("-inf")
