"""
Trading statistics and execution metrics.

Aggregate trade counters are shared by concurrently running trades,
so every update goes through an asyncio lock. Latency samples and
plain counters are only touched from the event loop thread.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from decimal import Decimal

from crossarb.core.types import TradingMode


@dataclass
class LatencyStats:
    """Aggregated latency statistics."""

    min_ms: int = 0
    max_ms: int = 0
    avg_ms: float = 0.0
    p50_ms: int = 0
    p99_ms: int = 0
    count: int = 0


@dataclass
class TradingStats:
    """Trade outcome totals."""

    total_trades: int = 0
    successful_trades: int = 0
    partial_failures: int = 0
    total_profit: Decimal = Decimal("0")
    total_fees: Decimal = Decimal("0")

    @property
    def failed_trades(self) -> int:
        return self.total_trades - self.successful_trades

    @property
    def success_rate(self) -> Decimal:
        """Successful share of all trades, in percent."""
        if self.total_trades == 0:
            return Decimal("0")
        return Decimal(self.successful_trades) * 100 / Decimal(self.total_trades)


class MetricsCollector:
    """
    Collects trade statistics.

    Features:
    - Lock-guarded trade totals
    - Rolling window of execution latencies
    - Named event counters
    """

    def __init__(
        self,
        mode: TradingMode = TradingMode.TESTNET,
        latency_window_size: int = 1000,
    ) -> None:
        """
        Initialize metrics collector.

        Args:
            mode: Trading mode reported with the stats.
            latency_window_size: Number of samples to keep for latency stats.
        """
        self._mode = mode
        self._lock = asyncio.Lock()
        self._stats = TradingStats()
        self._window_size = latency_window_size
        self._latencies: dict[str, deque[int]] = {}
        self._counters: dict[str, int] = {}
        self._start_time = time.time()

    async def record_trade(
        self,
        success: bool,
        profit: Decimal = Decimal("0"),
        fees: Decimal = Decimal("0"),
        partial_failure: bool = False,
    ) -> None:
        """
        Record the terminal outcome of one trade.

        Args:
            success: Whether the trade completed.
            profit: Realized profit, counted for successful trades only.
            fees: Fees paid.
            partial_failure: Whether funds were left split across exchanges.
        """
        async with self._lock:
            self._stats.total_trades += 1
            if success:
                self._stats.successful_trades += 1
                self._stats.total_profit += profit
            if partial_failure:
                self._stats.partial_failures += 1
            self._stats.total_fees += fees

    def set_mode(self, mode: TradingMode) -> None:
        """Update the reported trading mode."""
        self._mode = mode

    def record_latency(self, name: str, latency_ms: int) -> None:
        """
        Record a latency measurement.

        Args:
            name: Metric name (e.g., "execution", "price_refresh").
            latency_ms: Latency in milliseconds.
        """
        if name not in self._latencies:
            self._latencies[name] = deque(maxlen=self._window_size)
        self._latencies[name].append(latency_ms)

    def increment_counter(self, name: str, value: int = 1) -> None:
        """Increment a named counter."""
        self._counters[name] = self._counters.get(name, 0) + value

    def get_counter(self, name: str) -> int:
        """Get counter value."""
        return self._counters.get(name, 0)

    def get_latency_stats(self, name: str) -> LatencyStats:
        """Latency statistics for one metric."""
        samples = self._latencies.get(name)
        if not samples:
            return LatencyStats()

        ordered = sorted(samples)
        n = len(ordered)
        return LatencyStats(
            min_ms=ordered[0],
            max_ms=ordered[-1],
            avg_ms=sum(ordered) / n,
            p50_ms=ordered[n // 2],
            p99_ms=ordered[int(n * 0.99)] if n > 1 else ordered[-1],
            count=n,
        )

    async def get_stats(self) -> dict[str, object]:
        """
        Consistent copy of the trade totals.

        Returns:
            Dict with total_trades, successful_trades, success_rate,
            total_profit and mode.
        """
        async with self._lock:
            stats = self._stats
            return {
                "total_trades": stats.total_trades,
                "successful_trades": stats.successful_trades,
                "failed_trades": stats.failed_trades,
                "partial_failures": stats.partial_failures,
                "success_rate": stats.success_rate,
                "total_profit": stats.total_profit,
                "total_fees": stats.total_fees,
                "mode": self._mode.value,
            }

    @property
    def trading_stats(self) -> TradingStats:
        """Get trading statistics (unlocked view)."""
        return self._stats

    @property
    def uptime_seconds(self) -> float:
        """Get uptime in seconds."""
        return time.time() - self._start_time

    def to_dict(self) -> dict[str, object]:
        """Counters and latencies for periodic reporting."""
        return {
            "uptime_seconds": self.uptime_seconds,
            "counters": dict(self._counters),
            "latencies": {
                name: {
                    "min": s.min_ms,
                    "max": s.max_ms,
                    "avg": s.avg_ms,
                    "p99": s.p99_ms,
                    "count": s.count,
                }
                for name, s in ((n, self.get_latency_stats(n)) for n in self._latencies)
            },
        }

    async def reset(self) -> None:
        """Reset all metrics."""
        async with self._lock:
            self._stats = TradingStats()
        self._latencies.clear()
        self._counters.clear()
        self._start_time = time.time()
