"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import datetime
from typing import Optional, Union


def to_datetime(timestamp: Optional[float] = None) -> datetime:
    """Convert timestamp to datetime object.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        datetime object
    """
    if timestamp is None:
        timestamp = time.time()
    return datetime.fromtimestamp(timestamp)


def parse_datetime(value: Union[str, int, float, datetime]) -> datetime:
    """Parse a stored ISO-8601 string or unix timestamp.

    Raises:
        ValueError: If the value is not a recognised timestamp
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return to_datetime(value)
    return datetime.fromisoformat(str(value))


def format_relative_time(created_at: datetime, now: Optional[datetime] = None) -> str:
    """Human readable age of a memory.

    Under a minute is 刚刚, then whole minutes, hours and days up to 30 days;
    older entries show their date.
    """
    if now is None:
        now = datetime.now(created_at.tzinfo)
    seconds = (now - created_at).total_seconds()

    if seconds < 60:
        return '刚刚'
    if seconds < 3600:
        return f'{int(seconds // 60)}分钟'
    if seconds < 86400:
        return f'{int(seconds // 3600)}小时'
    if seconds < 30 * 86400:
        return f'{int(seconds // 86400)}天'
    return created_at.strftime('%Y-%m-%d')
