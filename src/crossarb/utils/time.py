"""
Time utilities.

Provides millisecond timestamps for exchange APIs and price
freshness checks, plus a small latency timer.
"""

import time
from datetime import UTC, datetime


def get_timestamp_us() -> int:
    """
    Get current timestamp in microseconds.

    Returns:
        Current Unix timestamp in microseconds.
    """
    return time.time_ns() // 1000


def get_timestamp_ms() -> int:
    """
    Get current timestamp in milliseconds.

    Used for exchange request signing and quote timestamps.

    Returns:
        Current Unix timestamp in milliseconds.
    """
    return time.time_ns() // 1_000_000


def get_timestamp_s() -> int:
    """Get current Unix timestamp in whole seconds."""
    return time.time_ns() // 1_000_000_000


def format_timestamp_ms(timestamp_ms: int) -> str:
    """
    Format a millisecond timestamp as an ISO-8601 UTC string.

    Args:
        timestamp_ms: Timestamp in milliseconds.

    Returns:
        ISO formatted string.

    Example:
        >>> format_timestamp_ms(1704067200123)
        '2024-01-01T00:00:00.123000+00:00'
    """
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).isoformat()


class LatencyTimer:
    """
    Context manager for measuring operation latency.

    Example:
        >>> with LatencyTimer() as timer:
        ...     do_something()
        >>> print(f"Took {timer.elapsed_ms}ms")
    """

    __slots__ = ("start_ms", "end_ms")

    def __init__(self) -> None:
        self.start_ms: int = 0
        self.end_ms: int = 0

    def __enter__(self) -> "LatencyTimer":
        self.start_ms = get_timestamp_ms()
        return self

    def __exit__(self, *args: object) -> None:
        self.end_ms = get_timestamp_ms()

    @property
    def elapsed_ms(self) -> int:
        """Elapsed milliseconds, running if the block has not exited yet."""
        end = self.end_ms or get_timestamp_ms()
        return end - self.start_ms
