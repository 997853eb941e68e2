"""Datetime utilities for timezone-aware UTC timestamps.

Share payloads and backups carry epoch-millisecond timestamps; recipe rows
and schema records carry epoch seconds. Keep the conversions here so every
module agrees on units.

Usage:
    from src.utils.datetime_utils import utc_now, now_ms

    timestamp = now_ms()
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Return the current time as epoch milliseconds."""
    return int(utc_now().timestamp() * 1000)


def now_seconds() -> int:
    """Return the current time as epoch seconds."""
    return int(utc_now().timestamp())


def ms_to_date_string(epoch_ms: int) -> str:
    """Format epoch milliseconds as a UTC ``YYYY-MM-DD`` date."""
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
