"""
Shared price table.

Polling and streaming tasks push PriceQuotes into one asyncio queue; a
single consumer applies them to a table keyed by (exchange, symbol).
The detector never touches transports, it reads a copied snapshot.
"""

import asyncio
import logging
from collections.abc import Iterable
from decimal import Decimal
from types import MappingProxyType

from crossarb.config.constants import (
    DEFAULT_POLL_INTERVAL_S,
    PRICE_CHANGE_THRESHOLD,
    PRICE_QUEUE_SIZE,
)
from crossarb.core.errors import ExchangeError
from crossarb.core.event_bus import Event, EventBus, EventType
from crossarb.core.types import ExchangeAdapter, PriceKey, PriceQuote, PriceSnapshot
from crossarb.utils.time import get_timestamp_ms


logger = logging.getLogger(__name__)


class PriceAggregator:
    """
    Latest price per (exchange, symbol).

    Features:
    - Queue-based ingestion decoupled from detection cadence
    - Last-write-wins per key
    - Sub-threshold changes only refresh freshness
    - Copy-on-read snapshots
    """

    def __init__(
        self,
        change_threshold: Decimal = PRICE_CHANGE_THRESHOLD,
        queue_size: int = PRICE_QUEUE_SIZE,
        event_bus: EventBus | None = None,
    ) -> None:
        """
        Initialize aggregator.

        Args:
            change_threshold: Relative change below which the stored
                price is kept and only its timestamp refreshed.
            queue_size: Capacity of the ingest channel.
            event_bus: Optional bus for PRICE_UPDATE events.
        """
        self._change_threshold = change_threshold
        self._queue: asyncio.Queue[PriceQuote] = asyncio.Queue(maxsize=queue_size)
        self._event_bus = event_bus
        self._prices: dict[PriceKey, PriceQuote] = {}
        self._tasks: list[asyncio.Task[None]] = []

        self._updates_applied = 0
        self._updates_dropped = 0

    # =========================================================================
    # Ingestion
    # =========================================================================

    def publish(self, quote: PriceQuote) -> bool:
        """
        Queue a quote for the consumer.

        Non-blocking so transport callbacks never stall.

        Returns:
            False if the channel is full and the quote was dropped.
        """
        try:
            self._queue.put_nowait(quote)
            return True
        except asyncio.QueueFull:
            self._updates_dropped += 1
            if self._updates_dropped % 1000 == 1:
                logger.warning(f"Price channel full, dropped {self._updates_dropped} updates")
            return False

    def apply(self, quote: PriceQuote) -> bool:
        """
        Write a quote into the table.

        Returns:
            True if the stored price changed.
        """
        if quote.price <= 0:
            return False

        key = (quote.exchange, quote.symbol)
        current = self._prices.get(key)
        self._updates_applied += 1

        if current is not None and not self._is_significant(current.price, quote.price):
            self._prices[key] = PriceQuote(
                exchange=quote.exchange,
                symbol=quote.symbol,
                price=current.price,
                observed_at_ms=quote.observed_at_ms,
            )
            return False

        self._prices[key] = quote
        return True

    def _is_significant(self, old: Decimal, new: Decimal) -> bool:
        """Relative change at or above the threshold."""
        if old == 0:
            return True
        return abs(new - old) / old >= self._change_threshold

    async def consume(self) -> None:
        """Apply queued quotes until cancelled."""
        while True:
            quote = await self._queue.get()
            try:
                changed = self.apply(quote)
                if changed and self._event_bus is not None:
                    await self._event_bus.publish(
                        Event(EventType.PRICE_UPDATE, quote, source=quote.exchange)
                    )
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued quote has been applied."""
        await self._queue.join()

    # =========================================================================
    # Polling
    # =========================================================================

    async def poll_once(self, adapter: ExchangeAdapter, symbols: list[str]) -> int:
        """
        Fetch prices from one adapter and queue them.

        Returns:
            Number of quotes queued.
        """
        prices = await adapter.fetch_prices(symbols)
        observed = get_timestamp_ms()
        queued = 0
        for symbol, price in prices.items():
            quote = PriceQuote(
                exchange=adapter.name,
                symbol=symbol,
                price=price,
                observed_at_ms=observed,
            )
            if self.publish(quote):
                queued += 1
        return queued

    async def poll_forever(
        self,
        adapter: ExchangeAdapter,
        symbols: list[str],
        interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ) -> None:
        """Poll one adapter on a fixed interval until cancelled."""
        logger.info(f"Polling {adapter.name} every {interval_s}s for {len(symbols)} symbols")
        while True:
            try:
                count = await self.poll_once(adapter, symbols)
                logger.debug(f"{adapter.name}: queued {count} prices")
            except ExchangeError as e:
                logger.warning(f"Price poll failed: {e}")
            await asyncio.sleep(interval_s)

    # =========================================================================
    # Task Lifecycle
    # =========================================================================

    def start(
        self,
        adapters: Iterable[ExchangeAdapter],
        symbols: list[str],
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ) -> None:
        """Start the consumer and one polling task per adapter."""
        self._tasks.append(asyncio.create_task(self.consume(), name="prices-consumer"))
        for adapter in adapters:
            self._tasks.append(
                asyncio.create_task(
                    self.poll_forever(adapter, symbols, poll_interval_s),
                    name=f"prices-poll-{adapter.name}",
                )
            )

    def add_task(self, task: asyncio.Task[None]) -> None:
        """Track an extra ingestion task, such as a stream, for shutdown."""
        self._tasks.append(task)

    async def stop(self) -> None:
        """Cancel all ingestion tasks."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # =========================================================================
    # Reads
    # =========================================================================

    def snapshot(self) -> PriceSnapshot:
        """Read-only copy of the table."""
        return MappingProxyType(dict(self._prices))

    def get(self, exchange: str, symbol: str) -> PriceQuote | None:
        """Latest quote for one key."""
        return self._prices.get((exchange, symbol))

    def remove_exchange(self, exchange: str) -> int:
        """
        Drop all quotes of an exchange.

        Returns:
            Number of quotes removed.
        """
        keys = [key for key in self._prices if key[0] == exchange]
        for key in keys:
            del self._prices[key]
        return len(keys)

    def clear(self) -> None:
        """Drop every stored quote."""
        self._prices.clear()

    @property
    def stats(self) -> dict[str, int]:
        """Ingestion counters."""
        return {
            "quotes": len(self._prices),
            "applied": self._updates_applied,
            "dropped": self._updates_dropped,
            "queued": self._queue.qsize(),
        }

    def __len__(self) -> int:
        return len(self._prices)
