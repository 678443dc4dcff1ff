"""
Cross-exchange opportunity detection.

Turns a price snapshot into a ranked list of fee-adjusted buy/sell
pairs, one per symbol. The scan is a full recomputation every cycle;
with tens of exchange/symbol combinations there is no incremental state
worth keeping.
"""

import logging
from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass
from decimal import Decimal

from crossarb.config.constants import DEFAULT_MAX_UPDATE_AGE_MS, MIN_TRADE_USDT, QUANTITY_PRECISION
from crossarb.core.types import FeeSchedule, Opportunity, PriceQuote, PriceSnapshot
from crossarb.strategy.calculator import gross_spread, net_profit_fraction, trade_quantity
from crossarb.utils.time import get_timestamp_ms


logger = logging.getLogger(__name__)


OpportunityCallback = Callable[[Opportunity], None]
PrecisionLookup = Callable[[str, str], int]  # (exchange, symbol) -> decimal places


@dataclass
class DetectionStats:
    """Counters for detection cycles."""

    total_scans: int = 0
    opportunities_found: int = 0
    symbols_skipped: int = 0
    best_net_profit: Decimal = Decimal("0")

    def record(self, opportunities: list[Opportunity], skipped: int) -> None:
        """Record the outcome of one scan."""
        self.total_scans += 1
        self.symbols_skipped += skipped
        self.opportunities_found += len(opportunities)
        if opportunities and opportunities[0].net_profit > self.best_net_profit:
            self.best_net_profit = opportunities[0].net_profit


class OpportunityDetector:
    """
    Finds the best profitable exchange pair for every symbol.

    Features:
    - Ignores stale quotes and disabled exchanges
    - Evaluates every ordered (buy, sell) exchange pair
    - Keeps a single best pair per symbol
    - Deterministic ranking: net profit desc, then symbol asc
    """

    def __init__(self, precision_lookup: PrecisionLookup | None = None) -> None:
        """
        Initialize detector.

        Args:
            precision_lookup: Quantity precision per (exchange, symbol);
                defaults to 8 decimal places everywhere.
        """
        self._precision_lookup = precision_lookup
        self._callbacks: list[OpportunityCallback] = []
        self._stats = DetectionStats()

    def register_callback(self, callback: OpportunityCallback) -> None:
        """Register callback for opportunity notifications."""
        self._callbacks.append(callback)

    def unregister_callback(self, callback: OpportunityCallback) -> None:
        """Unregister a callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def detect(
        self,
        snapshot: PriceSnapshot,
        symbols: Iterable[str],
        fee_schedule: FeeSchedule,
        min_profit_threshold: Decimal,
        capital_amount: Decimal,
        *,
        now_ms: int | None = None,
        max_update_age_ms: int = DEFAULT_MAX_UPDATE_AGE_MS,
        enabled_exchanges: Collection[str] | None = None,
        min_trade_usdt: Decimal = MIN_TRADE_USDT,
    ) -> list[Opportunity]:
        """
        Scan a price snapshot for opportunities.

        Never raises: malformed, missing or stale data only removes
        candidates.

        Args:
            snapshot: Quotes keyed by (exchange, symbol).
            symbols: Canonical symbols to scan.
            fee_schedule: Taker fee per exchange.
            min_profit_threshold: Minimum net profit fraction (inclusive).
            capital_amount: Quote-currency amount used to size trades.
            now_ms: Reference time for staleness, defaults to now.
            max_update_age_ms: Maximum quote age.
            enabled_exchanges: Exchanges allowed to participate; None
                allows every exchange present in the fee schedule.
            min_trade_usdt: Dust floor for the sized trade value.

        Returns:
            Opportunities, best first.
        """
        now = get_timestamp_ms() if now_ms is None else now_ms
        by_symbol = self._group_fresh_quotes(
            snapshot, fee_schedule, now, max_update_age_ms, enabled_exchanges
        )

        opportunities: list[Opportunity] = []
        skipped = 0

        for symbol in dict.fromkeys(symbols):
            quotes = by_symbol.get(symbol, [])
            if len(quotes) < 2:
                skipped += 1
                continue

            try:
                best = self._best_pair(
                    symbol, quotes, fee_schedule, min_profit_threshold, capital_amount, now
                )
            except Exception as e:
                logger.warning(f"Skipping {symbol}: {e}")
                continue

            if best is None:
                continue
            if best.quantity * best.buy_price < min_trade_usdt:
                logger.debug(f"Skipping {symbol}: trade value below dust floor")
                continue

            opportunities.append(best)

        opportunities.sort(key=lambda o: (-o.net_profit, o.symbol))
        self._stats.record(opportunities, skipped)
        self._notify(opportunities)

        return opportunities

    def _group_fresh_quotes(
        self,
        snapshot: PriceSnapshot,
        fee_schedule: FeeSchedule,
        now_ms: int,
        max_update_age_ms: int,
        enabled_exchanges: Collection[str] | None,
    ) -> dict[str, list[PriceQuote]]:
        """Index usable quotes by symbol."""
        grouped: dict[str, list[PriceQuote]] = {}

        for (exchange, symbol), quote in snapshot.items():
            if enabled_exchanges is not None and exchange not in enabled_exchanges:
                continue
            if exchange not in fee_schedule:
                continue
            if not isinstance(quote, PriceQuote) or not isinstance(quote.price, Decimal):
                continue
            if not quote.price.is_finite() or quote.price <= 0:
                continue
            if quote.is_stale(now_ms, max_update_age_ms):
                continue
            grouped.setdefault(symbol, []).append(quote)

        for quotes in grouped.values():
            quotes.sort(key=lambda q: q.exchange)

        return grouped

    def _best_pair(
        self,
        symbol: str,
        quotes: list[PriceQuote],
        fee_schedule: FeeSchedule,
        min_profit_threshold: Decimal,
        capital_amount: Decimal,
        now_ms: int,
    ) -> Opportunity | None:
        """Evaluate all ordered pairs for one symbol and return the best."""
        best: tuple[Decimal, PriceQuote, PriceQuote] | None = None

        for buy in quotes:
            buy_fee = fee_schedule.get(buy.exchange)
            for sell in quotes:
                if sell.exchange == buy.exchange:
                    continue
                sell_fee = fee_schedule.get(sell.exchange)
                if buy_fee is None or sell_fee is None:
                    continue

                net = net_profit_fraction(buy.price, sell.price, buy_fee, sell_fee)
                if net < min_profit_threshold:
                    continue
                if best is None or net > best[0]:
                    best = (net, buy, sell)

        if best is None:
            return None

        net, buy, sell = best
        precision = self._precision(buy.exchange, symbol)
        return Opportunity(
            symbol=symbol,
            buy_exchange=buy.exchange,
            sell_exchange=sell.exchange,
            buy_price=buy.price,
            sell_price=sell.price,
            buy_fee=fee_schedule.fees[buy.exchange],
            sell_fee=fee_schedule.fees[sell.exchange],
            gross_spread=gross_spread(buy.price, sell.price),
            net_profit=net,
            net_profit_usdt=capital_amount * net,
            capital_amount=capital_amount,
            quantity=trade_quantity(capital_amount, buy.price, precision),
            detected_at_ms=now_ms,
        )

    def _precision(self, exchange: str, symbol: str) -> int:
        """Quantity precision with the default fallback."""
        if self._precision_lookup is None:
            return QUANTITY_PRECISION
        return self._precision_lookup(exchange, symbol)

    def _notify(self, opportunities: list[Opportunity]) -> None:
        """Send opportunities to registered callbacks."""
        for opportunity in opportunities:
            for callback in self._callbacks:
                try:
                    callback(opportunity)
                except Exception as e:
                    logger.error(f"Opportunity callback error: {e}")

    @property
    def stats(self) -> DetectionStats:
        """Get detection statistics."""
        return self._stats
