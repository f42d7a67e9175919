"""
Time Utilities

Rate limit windows and diagnostic results both need a wall clock:
- The rate limiter counts in epoch milliseconds (reset_at, window_ms)
- Diagnostic results carry an ISO-8601 UTC "fetched_at" stamp
- Rate limit responses report the reset instant in epoch seconds

All helpers here work in UTC.
"""

import math
from datetime import datetime, timezone


def datetime_to_timestamp(dt: datetime, milliseconds: bool = False) -> int:
    """
    Convert a datetime object to Unix timestamp.

    Args:
        dt: Datetime object (can be naive or timezone-aware)
        milliseconds: If True, return milliseconds; if False, return seconds

    Returns:
        int: Unix timestamp in seconds or milliseconds

    Examples:
        >>> dt = datetime(2024, 1, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)
        >>> datetime_to_timestamp(dt)
        1704110400

        >>> datetime_to_timestamp(dt, milliseconds=True)
        1704110400250

    Notes:
        - If datetime is naive (no timezone), UTC is assumed
        - Millisecond results keep sub-second precision
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    if milliseconds:
        return int(dt.timestamp() * 1000)

    return int(dt.timestamp())


def current_utc_timestamp(milliseconds: bool = False) -> int:
    """
    Get current UTC timestamp.

    Examples:
        >>> current_utc_timestamp(milliseconds=True)
        1704110400250
    """
    return datetime_to_timestamp(datetime.now(timezone.utc), milliseconds)


def current_utc_millis() -> int:
    """Current epoch time in milliseconds (the rate limiter's default clock)."""
    return current_utc_timestamp(milliseconds=True)


def current_utc_datetime() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """
    Current UTC time as an ISO-8601 string with millisecond precision.

    Example:
        >>> utc_now_iso()
        '2024-01-01T12:00:00.250Z'
    """
    now = current_utc_datetime()
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def millis_to_epoch_seconds(timestamp_ms: int) -> int:
    """Epoch milliseconds to epoch seconds, rounded up."""
    return math.ceil(timestamp_ms / 1000)
