"""
Utility functions for the Strava request governor
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional


def chunked(items: Iterable, size: int) -> List[list]:
    """
    Split items into consecutive groups

    Args:
        items: Items to split
        size: Maximum group size (must be positive)

    Returns:
        List of groups, the last one possibly shorter
    """
    if size <= 0:
        raise ValueError("size must be positive")
    items = list(items)
    return [items[i:i + size] for i in range(0, len(items), size)]


def format_duration(seconds: int) -> str:
    """
    Format duration in seconds to human readable string

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "30m", "1h 15m")
    """
    if seconds < 60:
        return f"{seconds}s"

    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"

    hours = minutes // 60
    remaining_minutes = minutes % 60

    if remaining_minutes == 0:
        return f"{hours}h"

    return f"{hours}h {remaining_minutes}m"


def format_timestamp(timestamp: Optional[float]) -> str:
    """
    Format Unix timestamp to readable date string

    Args:
        timestamp: Unix timestamp (None gives an empty string)

    Returns:
        Formatted date string
    """
    if timestamp is None:
        return ""
    dt = datetime.fromtimestamp(timestamp)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def seconds_until(iso_string: str, now: Optional[float] = None) -> int:
    """
    Seconds from now until an ISO-8601 instant, never negative

    Args:
        iso_string: Target instant (e.g. a window's reset_at)
        now: Current epoch seconds (defaults to the current time)
    """
    target = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)
    current = now if now is not None else datetime.now(timezone.utc).timestamp()
    return max(0, int(target.timestamp() - current))


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning default if denominator is 0

    Args:
        numerator: Numerator
        denominator: Denominator
        default: Default value if division by zero

    Returns:
        Result of division or default
    """
    return numerator / denominator if denominator != 0 else default
