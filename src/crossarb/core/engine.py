"""
Main arbitrage engine orchestrator.

Wires the exchange registry, price aggregation, opportunity detection
and trade execution together, and exposes the operations used by the
command line and any outer surface: detect, execute, stats, mode
switching and runtime configuration updates.
"""

import asyncio
import contextlib
import logging
import signal
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from crossarb.config.constants import STATS_REPORT_INTERVAL
from crossarb.config.exchanges import EXCHANGES
from crossarb.config.settings import Settings
from crossarb.core.context import TradingContext
from crossarb.core.event_bus import Event, EventBus, EventType
from crossarb.core.types import (
    ExecutionOptions,
    Opportunity,
    TradeHistoryPage,
    TradeHistoryQuery,
    TradeResult,
    TradingMode,
)
from crossarb.exchange.base import BaseExchangeAdapter
from crossarb.exchange.registry import ExchangeRegistry
from crossarb.execution.executor import TradeExecutor
from crossarb.history.store import InMemoryTradeHistoryStore, JsonlTradeHistoryStore
from crossarb.market.prices import PriceAggregator
from crossarb.market.websocket import BinanceTickerStream
from crossarb.strategy.opportunity import OpportunityDetector
from crossarb.telemetry.metrics import MetricsCollector
from crossarb.utils.time import LatencyTimer


logger = logging.getLogger(__name__)


# Settings that may change while the engine runs
RUNTIME_FIELDS = frozenset(
    {
        "symbols",
        "min_profit_threshold",
        "capital_amount",
        "min_trade_usdt",
        "max_trade_usdt",
        "max_update_age_ms",
        "dry_run",
        "auto_execute",
        "max_concurrent_trades",
        "execution_mode",
        "user_id",
        "adjust_capital",
        "safe_balance_fraction",
        "max_adjusted_trade_usdt",
        "transfer_timeout_ms",
        "transfer_poll_interval_ms",
        "withdrawal_network",
        "detection_interval_s",
    }
)

DETECTION_PARAMS = frozenset(
    {"symbols", "min_profit_threshold", "capital_amount", "max_update_age_ms", "min_trade_usdt"}
)


class ArbitrageEngine:
    """
    Main trading engine orchestrator.

    Manages the complete lifecycle of:
    - Exchange adapters per trading mode
    - Price polling and streaming
    - Periodic opportunity detection
    - Manual and automatic trade execution
    - Trade history and statistics
    """

    def __init__(
        self,
        settings: Settings,
        registry: ExchangeRegistry | None = None,
        store: InMemoryTradeHistoryStore | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            settings: Application settings.
            registry: Exchange registry, built from settings if omitted.
            store: Trade history store; defaults to a JSON-lines file at
                ``settings.history_path`` or memory when that is unset.
            event_bus: Shared event bus.
        """
        self._settings = settings
        self._running = False
        self._closed = False
        self._shutdown_event = asyncio.Event()

        self._event_bus = event_bus or EventBus()
        self._registry = registry or ExchangeRegistry(settings)
        if store is None:
            store = (
                JsonlTradeHistoryStore(settings.history_path)
                if settings.history_path
                else InMemoryTradeHistoryStore()
            )
        self._store = store

        self._context = TradingContext.from_settings(settings, self._registry.fee_schedule())
        self._metrics = MetricsCollector(mode=self._context.trading_mode)
        self._prices = PriceAggregator(event_bus=self._event_bus)
        self._detector = OpportunityDetector(precision_lookup=self._registry.precision_lookup)
        self._executor = TradeExecutor(
            registry=self._registry,
            store=self._store,
            metrics=self._metrics,
            context_provider=lambda: self._context,
            event_bus=self._event_bus,
        )

        self._streams: list[BinanceTickerStream] = []
        self._market_data_running = False
        self._trade_slots = asyncio.Semaphore(settings.max_concurrent_trades)
        self._active_symbols: set[str] = set()
        self._auto_tasks: set[asyncio.Task[None]] = set()

    async def setup(self) -> None:
        """Load persisted history and report exchange status."""
        logger.info("Initializing arbitrage engine...")

        if isinstance(self._store, JsonlTradeHistoryStore):
            await self._store.load()

        for capability in self._registry.capabilities():
            logger.info(
                f"{capability.name}: enabled={capability.enabled} "
                f"trading={capability.trading_enabled} fee={capability.fee}"
            )
        if not self._registry.get_trading_enabled():
            logger.warning("No exchange has credentials for this mode; detection only")

        logger.info("Engine initialization complete")

    # =========================================================================
    # Market Data
    # =========================================================================

    async def start_market_data(self) -> None:
        """Start polling every enabled exchange and the optional streams."""
        if self._market_data_running:
            return

        symbols = list(self._context.symbols)
        adapters = list(self._registry.get_enabled().values())
        self._prices.start(adapters, symbols, self._settings.poll_interval_s)

        if self._settings.use_streaming:
            for adapter in adapters:
                stream = self._build_stream(adapter, symbols)
                if stream is not None:
                    self._streams.append(stream)
                    self._prices.add_task(stream.start())

        self._market_data_running = True
        logger.info(
            f"Market data started: {len(adapters)} pollers, {len(self._streams)} streams, "
            f"{len(symbols)} symbols"
        )

    def _build_stream(self, adapter: Any, symbols: list[str]) -> BinanceTickerStream | None:
        """Ticker stream for exchanges that publish one."""
        if adapter.name != "binance" or not isinstance(adapter, BaseExchangeAdapter):
            return None
        url = EXCHANGES["binance"].stream_url(adapter.testnet)
        if url is None:
            return None
        return BinanceTickerStream(url, adapter.mapper, self._prices.publish, symbols)

    async def stop_market_data(self) -> None:
        """Stop streams and polling tasks."""
        for stream in self._streams:
            await stream.stop()
        self._streams.clear()
        await self._prices.stop()
        self._market_data_running = False

    # =========================================================================
    # Detection & Execution
    # =========================================================================

    def detect_opportunities(self, **params: Any) -> list[Opportunity]:
        """
        Scan the current price snapshot.

        Args:
            **params: Optional overrides of ``symbols``,
                ``min_profit_threshold``, ``capital_amount``,
                ``max_update_age_ms`` and ``min_trade_usdt``.

        Returns:
            Opportunities, best first.

        Raises:
            ValueError: On unknown parameter names.
        """
        unknown = set(params) - DETECTION_PARAMS
        if unknown:
            raise ValueError(f"Unknown detection parameters: {sorted(unknown)}")

        context = self._context
        with LatencyTimer() as timer:
            opportunities = self._detector.detect(
                self._prices.snapshot(),
                params.get("symbols", context.symbols),
                context.fee_schedule,
                params.get("min_profit_threshold", context.min_profit_threshold),
                params.get("capital_amount", context.capital_amount),
                max_update_age_ms=params.get("max_update_age_ms", context.max_update_age_ms),
                enabled_exchanges=set(self._registry.get_enabled()),
                min_trade_usdt=params.get("min_trade_usdt", context.min_trade_usdt),
            )

        self._metrics.record_latency("detection", timer.elapsed_ms)
        self._metrics.increment_counter("detection_cycles")
        if opportunities:
            self._metrics.increment_counter("opportunities_found", len(opportunities))
        return opportunities

    async def execute_trade(
        self,
        opportunity: Opportunity,
        options: ExecutionOptions | None = None,
    ) -> TradeResult:
        """Execute one opportunity; never raises except on cancellation."""
        return await self._executor.execute(opportunity, options)

    async def _detection_loop(self) -> None:
        """Detect on a fixed cadence and optionally auto-execute the best pick."""
        while not self._shutdown_event.is_set():
            opportunities = self.detect_opportunities()
            if opportunities:
                best = opportunities[0]
                logger.info(
                    f"Best: {best.symbol} {best.buy_exchange}->{best.sell_exchange} "
                    f"net={best.net_profit_percent:.4f}% (~{best.net_profit_usdt:.4f} USDT)"
                )
                await self._event_bus.publish(
                    Event(type=EventType.OPPORTUNITY_FOUND, payload=best, source="engine")
                )
                if self._settings.auto_execute:
                    self._schedule_execution(best)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    self._shutdown_event.wait(), timeout=self._settings.detection_interval_s
                )

    def _schedule_execution(self, opportunity: Opportunity) -> None:
        """Start an auto-execution if a slot is free and the symbol is idle."""
        if self._trade_slots.locked() or opportunity.symbol in self._active_symbols:
            logger.debug(f"Skipping auto-execution of {opportunity.symbol}: busy")
            return

        self._active_symbols.add(opportunity.symbol)
        task = asyncio.create_task(self._auto_execute(opportunity))
        self._auto_tasks.add(task)
        task.add_done_callback(self._auto_tasks.discard)

    async def _auto_execute(self, opportunity: Opportunity) -> None:
        try:
            async with self._trade_slots:
                result = await self.execute_trade(opportunity)
            if not result.success:
                logger.info(f"Auto-execution of {opportunity.symbol} failed: {result.message}")
        finally:
            self._active_symbols.discard(opportunity.symbol)

    async def _report_loop(self) -> None:
        """Log aggregate stats periodically."""
        while not self._shutdown_event.is_set():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=STATS_REPORT_INTERVAL)
            stats = await self.get_stats()
            logger.info(
                f"Stats: trades={stats['total_trades']} ok={stats['successful_trades']} "
                f"rate={stats['success_rate']:.1f}% profit={stats['total_profit']} "
                f"mode={stats['mode']} prices={self._prices.stats}"
            )

    # =========================================================================
    # Control Surface
    # =========================================================================

    async def get_stats(self) -> dict[str, Any]:
        """Aggregate trade statistics."""
        return await self._metrics.get_stats()

    async def set_trading_mode(self, mode: TradingMode | str) -> None:
        """
        Switch between testnet and live.

        Waits for in-flight trades, rebuilds every adapter, clears the
        price table and restarts market data if it was running.

        Args:
            mode: New trading mode.
        """
        new_mode = TradingMode(mode)
        if new_mode == self._context.trading_mode:
            return

        logger.warning(f"Switching trading mode {self._context.trading_mode.value} -> {new_mode.value}")
        restart = self._market_data_running
        if restart:
            await self.stop_market_data()
        await self._executor.wait_for_pending()

        await self._registry.set_trading_mode(new_mode)
        self._settings = self._settings.model_copy(update={"trading_mode": new_mode.value})
        self._context = TradingContext.from_settings(self._settings, self._registry.fee_schedule())
        self._metrics.set_mode(new_mode)
        self._prices.clear()

        if restart:
            await self.start_market_data()
        await self._event_bus.publish(
            Event(type=EventType.MODE_CHANGED, payload=new_mode, source="engine")
        )

    async def update_config(self, **changes: Any) -> dict[str, Any]:
        """
        Update runtime settings.

        Args:
            **changes: Settings fields from ``RUNTIME_FIELDS``, plus
                ``trading_mode`` which is routed to ``set_trading_mode``.

        Returns:
            The applied changes, validated.

        Raises:
            ValueError: On unknown or non-runtime fields, or values that
                fail settings validation.
        """
        mode = changes.pop("trading_mode", None)
        rejected = set(changes) - RUNTIME_FIELDS
        if rejected:
            raise ValueError(f"Cannot change at runtime: {sorted(rejected)}")

        merged = {**self._settings.model_dump(), **changes}
        settings = type(self._settings).model_validate(merged)

        self._settings = settings
        self._context = TradingContext.from_settings(settings, self._registry.fee_schedule())
        if "max_concurrent_trades" in changes:
            self._trade_slots = asyncio.Semaphore(settings.max_concurrent_trades)

        applied = {name: getattr(settings, name) for name in changes}
        if mode is not None:
            await self.set_trading_mode(mode)
            applied["trading_mode"] = self._context.trading_mode.value

        logger.info(f"Configuration updated: {applied}")
        await self._event_bus.publish(
            Event(type=EventType.CONFIG_UPDATED, payload=applied, source="engine")
        )
        return applied

    async def get_trade_history(self, query: TradeHistoryQuery | None = None) -> TradeHistoryPage:
        """Paged trade history, newest first."""
        return await self._store.get_trade_history(query or TradeHistoryQuery())

    async def get_trade_stats(self, user_id: str | None = None) -> dict[str, Any]:
        """Per-user statistics from persisted history."""
        return await self._store.get_trade_stats(user_id)

    def get_status(self) -> dict[str, Any]:
        """Engine status for display."""
        return {
            "running": self._running,
            "mode": self._context.trading_mode.value,
            "execution_mode": self._context.execution_mode.value,
            "dry_run": self._context.dry_run,
            "auto_execute": self._settings.auto_execute,
            "exchanges": self._registry.get_status(),
            "prices": self._prices.stats,
            "trades_in_flight": self._executor.in_flight,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        """Run market data and detection until shutdown."""
        self._running = True

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self._handle_shutdown)

        try:
            logger.info("Starting arbitrage engine...")
            await self.start_market_data()
            await asyncio.gather(self._detection_loop(), self._report_loop())

        except Exception as e:
            logger.error(f"Engine error: {e}")
            raise

        finally:
            await self.shutdown()

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal."""
        logger.info("Shutdown signal received")
        self._running = False
        self._shutdown_event.set()

    async def shutdown(self) -> None:
        """Gracefully shut down the engine."""
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down engine...")

        self._running = False
        self._shutdown_event.set()

        for task in list(self._auto_tasks):
            task.cancel()
        await asyncio.gather(*self._auto_tasks, return_exceptions=True)
        await self._executor.wait_for_pending()

        await self.stop_market_data()
        await self._registry.close()

        await self._event_bus.publish(Event(type=EventType.SHUTDOWN, payload=None, source="engine"))
        logger.info("Engine shutdown complete")

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def is_running(self) -> bool:
        """Check if engine is running."""
        return self._running

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def context(self) -> TradingContext:
        """Current trading context."""
        return self._context

    @property
    def prices(self) -> PriceAggregator:
        return self._prices

    @property
    def registry(self) -> ExchangeRegistry:
        return self._registry

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def metrics(self) -> MetricsCollector:
        """Get metrics collector."""
        return self._metrics


@asynccontextmanager
async def create_engine(settings: Settings) -> AsyncIterator[ArbitrageEngine]:
    """
    Create and manage engine lifecycle.

    Usage:
        async with create_engine(settings) as engine:
            await engine.run()
    """
    engine = ArbitrageEngine(settings)

    try:
        await engine.setup()
        yield engine
    finally:
        await engine.shutdown()
