"""Utility functions for the arbitrage engine."""

from crossarb.utils.math import (
    floor_to_precision,
    format_decimal,
    percent,
    safe_divide,
    to_decimal,
)
from crossarb.utils.time import (
    LatencyTimer,
    format_timestamp_ms,
    get_timestamp_ms,
    get_timestamp_s,
    get_timestamp_us,
)


__all__ = [
    "LatencyTimer",
    "floor_to_precision",
    "format_decimal",
    "format_timestamp_ms",
    "get_timestamp_ms",
    "get_timestamp_s",
    "get_timestamp_us",
    "percent",
    "safe_divide",
    "to_decimal",
]
