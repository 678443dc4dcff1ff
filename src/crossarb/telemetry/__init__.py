"""Logging and metrics."""

from crossarb.telemetry.logger import QueueLogging, setup_logging
from crossarb.telemetry.metrics import LatencyStats, MetricsCollector, TradingStats


__all__ = [
    "LatencyStats",
    "MetricsCollector",
    "QueueLogging",
    "TradingStats",
    "setup_logging",
]
