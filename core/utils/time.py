"""
Time Utilities

This module provides utilities for handling timestamps from different providers.

Different providers return timestamps in different formats:
- Binance / OKX: milliseconds since epoch (e.g., 1704110400000)
- Gate.io, some endpoints: seconds since epoch (e.g., 1704110400)
- CoinGecko: ISO 8601 strings (e.g., "2024-01-01T12:00:00.000Z")
- We need: Python datetime objects in UTC

The utilities in this module normalize all timestamp formats into
consistent UTC datetime objects for use in our Pydantic schemas.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from dateutil import parser as dateparser


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_utc_datetime(timestamp: Union[int, float]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Detection Logic:
        - If timestamp > 1e12 (1 trillion): Assumed to be milliseconds
        - Otherwise: Assumed to be seconds

    Args:
        timestamp: Unix timestamp in seconds or milliseconds

    Returns:
        datetime: Timezone-aware datetime object in UTC

    Raises:
        ValueError: If timestamp is negative or invalid

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

        >>> to_utc_datetime(1704110400)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    # Current time in seconds: ~1.7 billion, in milliseconds: ~1.7 trillion
    if timestamp > 1e12:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def parse_timestamp(value, default: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a provider timestamp of unknown format into a UTC datetime.

    Accepts datetimes, epoch numbers (seconds or milliseconds), numeric strings
    and ISO 8601 strings. Anything unparseable yields ``default``.

    Examples:
        >>> parse_timestamp("2024-01-01T12:00:00.000Z")
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

        >>> parse_timestamp(None, default=EPOCH)
        datetime.datetime(1970, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    if value is None or value == "":
        return default

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        return default
    elif isinstance(value, (int, float)):
        try:
            return to_utc_datetime(value)
        except ValueError:
            return default
    elif isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return parse_timestamp(int(stripped), default)
        try:
            dt = dateparser.isoparse(stripped)
        except (ValueError, OverflowError):
            return default
    else:
        return default

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def current_utc_datetime() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        datetime: Current time as timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)
