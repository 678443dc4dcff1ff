"""
Two-leg trade execution.

Runs one opportunity through the trade state machine:

    Validate -> PriceRefresh -> RecordPending -> BalanceCheck
    -> BuyLeg -> Bridge -> SellLeg -> Settle | Failed

Every attempt ends with exactly one terminal TradeRecord and a
TradeResult value; exceptions never cross ``execute`` except task
cancellation before the buy order is placed.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Protocol
from uuid import uuid4

from crossarb.config.constants import TERMINAL_RECORD_WRITE_ATTEMPTS
from crossarb.core.context import TradingContext
from crossarb.core.errors import (
    BalanceFetchError,
    BuyOrderFailed,
    ExchangeError,
    InsufficientBalance,
    PriceFetchError,
    SellOrderFailed,
    TradeError,
    TransferTimeout,
    UnknownSymbolError,
    ValidationError,
)
from crossarb.core.event_bus import Event, EventBus, EventType
from crossarb.core.types import (
    ErrorKind,
    ExchangeAdapter,
    ExecutionMode,
    ExecutionOptions,
    Opportunity,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderStatus,
    TradeCompleted,
    TradeFailed,
    TradeHistoryStore,
    TradeRecord,
    TradeResult,
    TradeStatus,
)
from crossarb.execution.risk import CapitalPolicy
from crossarb.execution.transfer import TransferBridge
from crossarb.market.symbols import SymbolMapper
from crossarb.strategy.calculator import (
    estimate_trade,
    net_profit_fraction,
    settle_fills,
    trade_quantity,
)
from crossarb.telemetry.metrics import MetricsCollector
from crossarb.utils.math import floor_to_precision
from crossarb.utils.time import get_timestamp_ms


logger = logging.getLogger(__name__)


ContextProvider = Callable[[], TradingContext]


class AdapterLookup(Protocol):
    """Anything that resolves exchange names to adapters."""

    def get(self, name: str) -> ExchangeAdapter | None: ...


@dataclass(slots=True)
class _Trade:
    """Mutable state of one execution attempt."""

    trade_id: str
    opportunity: Opportunity
    context: TradingContext
    user_id: str
    dry_run: bool
    capital: Decimal
    started: float
    buy_price: Decimal
    sell_price: Decimal
    quantity: Decimal
    expected_profit: Decimal
    expected_profit_percent: Decimal
    buy_adapter: ExchangeAdapter | None = None
    sell_adapter: ExchangeAdapter | None = None
    sell_quantity: Decimal | None = None
    record_saved: bool = False
    buy_order: OrderResult | None = None
    sell_order: OrderResult | None = None

    @property
    def elapsed_ms(self) -> int:
        """Milliseconds since the attempt started."""
        return int((time.monotonic() - self.started) * 1000)

    @property
    def symbol(self) -> str:
        """Canonical symbol being traded."""
        return self.opportunity.symbol

    @property
    def buyer(self) -> ExchangeAdapter:
        """Buy-side adapter, resolved during validation."""
        if self.buy_adapter is None:
            raise RuntimeError(f"Trade {self.trade_id} used before validation")
        return self.buy_adapter

    @property
    def seller(self) -> ExchangeAdapter:
        """Sell-side adapter, resolved during validation."""
        if self.sell_adapter is None:
            raise RuntimeError(f"Trade {self.trade_id} used before validation")
        return self.sell_adapter


class TradeExecutor:
    """
    Executes cross-exchange arbitrage opportunities.

    Features:
    - Re-validation and price refresh before committing
    - Pending audit record written before any order
    - Balance-driven capital adjustment
    - Simultaneous or transfer bridging between the legs
    - Partial failures flagged for manual reconciliation
    - Dry-run simulation at refreshed prices
    """

    def __init__(
        self,
        registry: AdapterLookup,
        store: TradeHistoryStore,
        metrics: MetricsCollector,
        context_provider: ContextProvider,
        event_bus: EventBus | None = None,
    ) -> None:
        """
        Initialize executor.

        Args:
            registry: Exchange adapters by name.
            store: Trade history persistence.
            metrics: Shared trade statistics.
            context_provider: Returns the current trading context.
            event_bus: Optional bus for trade lifecycle events.
        """
        self._registry = registry
        self._store = store
        self._metrics = metrics
        self._context_provider = context_provider
        self._event_bus = event_bus
        self._leg_tasks: set[asyncio.Task[TradeResult]] = set()

    async def execute(
        self,
        opportunity: Opportunity,
        options: ExecutionOptions | None = None,
    ) -> TradeResult:
        """
        Execute an opportunity.

        Args:
            opportunity: Opportunity to execute.
            options: Per-call overrides of user, capital and dry-run.

        Returns:
            TradeCompleted or TradeFailed.

        Raises:
            asyncio.CancelledError: If cancelled. Before the buy order the
                trade is recorded as cancelled; afterwards the legs keep
                running to a terminal state in the background.
        """
        options = options or ExecutionOptions()
        context = self._context_provider()
        trade = _Trade(
            trade_id=str(uuid4()),
            opportunity=opportunity,
            context=context,
            user_id=options.user_id or context.user_id,
            dry_run=context.dry_run if options.dry_run is None else options.dry_run,
            capital=(
                options.capital_amount
                if options.capital_amount is not None
                else context.capital_amount
            ),
            started=time.monotonic(),
            buy_price=opportunity.buy_price,
            sell_price=opportunity.sell_price,
            quantity=opportunity.quantity,
            expected_profit=opportunity.net_profit_usdt,
            expected_profit_percent=opportunity.net_profit_percent,
        )
        logger.info(
            f"Trade {trade.trade_id}: {opportunity.symbol} buy {opportunity.buy_exchange} "
            f"sell {opportunity.sell_exchange}, capital {trade.capital}"
            f"{' [DRY RUN]' if trade.dry_run else ''}"
        )

        try:
            await self._validate(trade)
            await self._refresh_prices(trade)
            await self._record_pending(trade)
            await self._check_balances(trade)
        except TradeError as e:
            return await self._fail(trade, e.kind, e.message)
        except asyncio.CancelledError:
            await self._fail(trade, ErrorKind.CANCELLED, "Cancelled before the buy order was placed")
            raise
        except Exception as e:
            logger.exception(f"Trade {trade.trade_id}: unexpected error before buy leg")
            return await self._fail(trade, ErrorKind.INTERNAL_ERROR, f"Internal error: {e}")

        task = asyncio.ensure_future(self._run_legs(trade))
        self._leg_tasks.add(task)
        task.add_done_callback(self._leg_tasks.discard)
        return await asyncio.shield(task)

    # =========================================================================
    # Pre-trade States
    # =========================================================================

    async def _validate(self, trade: _Trade) -> None:
        """Check adapters, profitability and trade size."""
        opportunity = trade.opportunity
        context = trade.context

        try:
            SymbolMapper.split(opportunity.symbol)
        except UnknownSymbolError:
            raise ValidationError(f"Unsupported symbol {opportunity.symbol}") from None

        buyer = trade.buy_adapter = self._trading_adapter(opportunity.buy_exchange)
        seller = trade.sell_adapter = self._trading_adapter(opportunity.sell_exchange)

        if opportunity.net_profit < context.min_profit_threshold:
            raise ValidationError(
                f"Opportunity no longer profitable: net {opportunity.net_profit} "
                f"below threshold {context.min_profit_threshold}"
            )

        sizing = CapitalPolicy.from_context(context).check_requested(trade.capital)
        if not sizing:
            raise ValidationError(sizing.reason)

        checks = await asyncio.gather(
            buyer.check_trading_pair_available(trade.symbol),
            seller.check_trading_pair_available(trade.symbol),
            return_exceptions=True,
        )
        for adapter, available in zip((buyer, seller), checks, strict=True):
            if isinstance(available, ExchangeError):
                raise ValidationError(
                    f"Could not verify {trade.symbol} on {adapter.name}: {available}"
                )
            if isinstance(available, BaseException):
                raise available
            if not available:
                raise ValidationError(f"{trade.symbol} is not tradable on {adapter.name}")

    def _trading_adapter(self, name: str) -> ExchangeAdapter:
        adapter = self._registry.get(name)
        if adapter is None:
            raise ValidationError(f"Exchange {name} is not available")
        if not adapter.is_trading_enabled():
            raise ValidationError(f"Trading is not enabled on {name}")
        return adapter

    async def _refresh_prices(self, trade: _Trade) -> None:
        """Re-fetch both prices and re-size the trade."""
        buyer, seller = trade.buyer, trade.seller
        try:
            buy_price, sell_price = await asyncio.gather(
                buyer.get_ticker_price(trade.symbol),
                seller.get_ticker_price(trade.symbol),
            )
        except ExchangeError as e:
            raise PriceFetchError(f"Price refresh failed: {e}") from e

        if buy_price <= 0 or sell_price <= 0:
            raise PriceFetchError(f"Invalid refreshed prices {buy_price}/{sell_price}")

        net = net_profit_fraction(buy_price, sell_price, buyer.fee, seller.fee)
        if net < trade.context.min_profit_threshold:
            raise ValidationError(
                f"Opportunity no longer profitable at current prices: "
                f"buy {buy_price} sell {sell_price} net {net}"
            )

        trade.buy_price = buy_price
        trade.sell_price = sell_price
        self._size(trade)

    def _size(self, trade: _Trade) -> None:
        """Quantity and expectations for the current capital and prices."""
        buyer, seller = trade.buyer, trade.seller
        trade.quantity = trade_quantity(
            trade.capital, trade.buy_price, buyer.quantity_precision(trade.symbol)
        )
        estimate = estimate_trade(
            trade.quantity,
            trade.buy_price,
            trade.sell_price,
            buyer.fee,
            seller.fee,
        )
        trade.expected_profit = estimate.profit
        trade.expected_profit_percent = estimate.profit_percent

    async def _record_pending(self, trade: _Trade) -> None:
        """Persist the pending record; failures only lose the audit entry."""
        record = self._new_record(trade, TradeStatus.PENDING)
        try:
            await self._store.save_trade_record(record)
            trade.record_saved = True
        except Exception as e:
            logger.error(f"Trade {trade.trade_id}: failed to persist pending record: {e}")

        await self._publish(EventType.TRADE_STARTED, record)

    async def _check_balances(self, trade: _Trade) -> None:
        """
        Verify funds on both exchanges and apply the capital policy.

        The buy exchange must hold the quote currency and the sell
        exchange the base currency, in either execution mode.
        """
        buyer, seller = trade.buyer, trade.seller
        base, quote = SymbolMapper.split(trade.symbol)

        try:
            quote_balances, base_balances = await asyncio.gather(
                buyer.get_balance(quote),
                seller.get_balance(base),
            )
        except ExchangeError as e:
            raise BalanceFetchError(f"Balance fetch failed: {e}") from e

        quote_available = quote_balances.get(quote, Decimal("0"))
        base_available = base_balances.get(base, Decimal("0"))
        logger.debug(
            f"Trade {trade.trade_id}: {buyer.name} {quote} {quote_available}, "
            f"{seller.name} {base} {base_available}"
        )

        sizing = CapitalPolicy.from_context(trade.context).size_for_balances(
            trade.capital, quote_available, base_available * trade.buy_price
        )
        if not sizing:
            raise InsufficientBalance(
                f"{sizing.reason} ({buyer.name} {quote} {quote_available}, "
                f"{seller.name} {base} {base_available})"
            )

        if sizing.capital != trade.capital:
            trade.capital = sizing.capital
            self._size(trade)

        if trade.quantity <= 0:
            raise InsufficientBalance(f"Trade quantity rounds to zero for capital {trade.capital}")

    # =========================================================================
    # Legs
    # =========================================================================

    async def _run_legs(self, trade: _Trade) -> TradeResult:
        """Buy, bridge, sell and settle; always returns a result."""
        try:
            if trade.dry_run:
                buy, sell = self._simulate_legs(trade)
            else:
                buy = await self._buy(trade)
                sell_quantity = await self._bridge(trade, buy)
                sell = await self._sell(trade, buy, sell_quantity)
            return await self._settle(trade, buy, sell)
        except TradeError as e:
            return await self._fail(trade, e.kind, e.message)
        except Exception as e:
            logger.exception(f"Trade {trade.trade_id}: unexpected error during legs")
            return await self._fail(
                trade,
                ErrorKind.INTERNAL_ERROR,
                f"Internal error: {e}",
                partial_failure=trade.buy_order is not None and trade.sell_order is None,
            )

    async def _buy(self, trade: _Trade) -> OrderResult:
        buyer = trade.buyer
        request = OrderRequest(
            symbol=trade.symbol,
            side=OrderSide.BUY,
            quantity=trade.quantity,
            price=trade.buy_price,
        )
        try:
            order = await buyer.create_order(request)
        except (ExchangeError, ValueError) as e:
            raise BuyOrderFailed(f"Buy order on {buyer.name} failed: {e}") from e

        if order.is_rejected:
            raise BuyOrderFailed(
                f"Buy order {order.order_id} on {buyer.name} was {order.status.value}"
            )
        trade.buy_order = order
        logger.info(
            f"Trade {trade.trade_id}: bought {order.filled_quantity or trade.quantity} "
            f"{trade.symbol} on {buyer.name} (order {order.order_id})"
        )
        return order

    async def _bridge(self, trade: _Trade, buy: OrderResult) -> Decimal:
        """Make the bought quantity sellable; returns the sell quantity."""
        buyer, seller = trade.buyer, trade.seller

        acquired = buy.filled_quantity
        if acquired is None or acquired <= 0:
            acquired = trade.quantity
        sell_quantity = floor_to_precision(acquired, seller.quantity_precision(trade.symbol))

        if trade.context.execution_mode == ExecutionMode.SIMULTANEOUS:
            return sell_quantity

        base, _ = SymbolMapper.split(trade.symbol)
        bridge = TransferBridge(
            timeout_ms=trade.context.transfer_timeout_ms,
            poll_interval_ms=trade.context.transfer_poll_interval_ms,
            default_network=trade.context.withdrawal_network,
        )
        outcome = await bridge.transfer(buyer, seller, base, sell_quantity)

        if outcome.timed_out:
            if trade.context.is_testnet:
                logger.warning(
                    f"Trade {trade.trade_id}: deposit not confirmed after "
                    f"{outcome.elapsed_ms}ms, proceeding in testnet"
                )
            else:
                raise TransferTimeout(
                    f"Deposit of {sell_quantity} {base} to {seller.name} not confirmed "
                    f"within {trade.context.transfer_timeout_ms}ms; buy order "
                    f"{buy.order_id} on {buyer.name} already filled"
                )
        elif outcome.deposit is not None and outcome.deposit.amount < sell_quantity:
            sell_quantity = floor_to_precision(
                outcome.deposit.amount, seller.quantity_precision(trade.symbol)
            )
        return sell_quantity

    async def _sell(self, trade: _Trade, buy: OrderResult, quantity: Decimal) -> OrderResult:
        seller = trade.seller
        buy_ref = f"buy order {buy.order_id} on {trade.opportunity.buy_exchange}"
        request = OrderRequest(
            symbol=trade.symbol,
            side=OrderSide.SELL,
            quantity=quantity,
            price=trade.sell_price,
        )
        try:
            order = await seller.create_order(request)
        except (ExchangeError, ValueError) as e:
            raise SellOrderFailed(
                f"Sell order on {seller.name} failed after {buy_ref} succeeded: {e}"
            ) from e

        if order.is_rejected:
            raise SellOrderFailed(
                f"Sell order {order.order_id} on {seller.name} was "
                f"{order.status.value} after {buy_ref} succeeded"
            )
        trade.sell_quantity = quantity
        trade.sell_order = order
        return order

    def _simulate_legs(self, trade: _Trade) -> tuple[OrderResult, OrderResult]:
        """Fill both legs at the refreshed prices without touching the exchanges."""
        tag = trade.trade_id[:8]
        trade.sell_quantity = trade.quantity
        trade.buy_order = OrderResult(
            order_id=f"dry-{tag}-buy",
            symbol=trade.symbol,
            side=OrderSide.BUY,
            status=OrderStatus.FILLED,
            filled_quantity=trade.quantity,
            average_price=trade.buy_price,
            fee=trade.quantity * trade.buy_price * trade.buyer.fee,
        )
        trade.sell_order = OrderResult(
            order_id=f"dry-{tag}-sell",
            symbol=trade.symbol,
            side=OrderSide.SELL,
            status=OrderStatus.FILLED,
            filled_quantity=trade.quantity,
            average_price=trade.sell_price,
            fee=trade.quantity * trade.sell_price * trade.seller.fee,
        )
        logger.info(
            f"[DRY RUN] Trade {trade.trade_id}: {trade.quantity} {trade.symbol} "
            f"{trade.buy_price} -> {trade.sell_price}"
        )
        return trade.buy_order, trade.sell_order

    # =========================================================================
    # Terminal States
    # =========================================================================

    async def _settle(self, trade: _Trade, buy: OrderResult, sell: OrderResult) -> TradeCompleted:
        """Compute realized profit from fills and close the record."""
        settled = settle_fills(
            buy_quantity=buy.filled_quantity or trade.quantity,
            buy_price=buy.average_price or trade.buy_price,
            sell_quantity=sell.filled_quantity or trade.sell_quantity or trade.quantity,
            sell_price=sell.average_price or trade.sell_price,
            buy_fee=trade.buyer.fee,
            sell_fee=trade.seller.fee,
        )
        elapsed = trade.elapsed_ms

        await self._finish_record(
            trade,
            {
                "status": TradeStatus.COMPLETED,
                "actual_profit": settled.profit,
                "actual_profit_percent": settled.profit_percent,
                "execution_time_ms": elapsed,
                "buy_order_response": buy.to_dict(),
                "sell_order_response": sell.to_dict(),
                "fees": settled.fees,
                "completed_at_ms": get_timestamp_ms(),
            },
        )
        await self._metrics.record_trade(True, settled.profit, settled.fees)
        self._metrics.record_latency("execution", elapsed)

        result = TradeCompleted(
            trade_id=trade.trade_id,
            actual_profit=settled.profit,
            actual_profit_percent=settled.profit_percent,
            buy_order=buy,
            sell_order=sell,
            execution_time_ms=elapsed,
            fees=settled.fees,
            dry_run=trade.dry_run,
        )
        logger.info(
            f"Trade {trade.trade_id} completed: profit {settled.profit:.8f} "
            f"({settled.profit_percent:.4f}%) in {elapsed}ms"
        )
        await self._publish(EventType.TRADE_COMPLETED, result)
        return result

    async def _fail(
        self,
        trade: _Trade,
        kind: ErrorKind,
        message: str,
        partial_failure: bool | None = None,
    ) -> TradeFailed:
        """Close the record as failed and report."""
        partial = kind.is_partial_failure if partial_failure is None else partial_failure
        elapsed = trade.elapsed_ms

        if partial:
            logger.critical(
                f"Trade {trade.trade_id} PARTIAL FAILURE ({kind.value}): {message}; "
                f"manual reconciliation required"
            )
        else:
            logger.warning(f"Trade {trade.trade_id} failed ({kind.value}): {message}")

        await self._finish_record(
            trade,
            {
                "status": TradeStatus.FAILED,
                "error_kind": kind,
                "error_message": message,
                "partial_failure": partial,
                "execution_time_ms": elapsed,
                "buy_order_response": trade.buy_order.to_dict() if trade.buy_order else None,
                "sell_order_response": trade.sell_order.to_dict() if trade.sell_order else None,
                "completed_at_ms": get_timestamp_ms(),
            },
        )
        await self._metrics.record_trade(False, partial_failure=partial)

        result = TradeFailed(
            trade_id=trade.trade_id,
            error_kind=kind,
            message=message,
            execution_time_ms=elapsed,
            partial_failure=partial,
        )
        await self._publish(EventType.TRADE_FAILED, result)
        return result

    async def _finish_record(self, trade: _Trade, changes: dict[str, Any]) -> None:
        """
        Move the record to its terminal state.

        Creates the record when the pending write never happened. Store
        failures are logged and retried; they never fail the trade.
        """
        changes = {**changes, "capital_amount": trade.capital, "quantity": trade.quantity}
        for attempt in range(1, TERMINAL_RECORD_WRITE_ATTEMPTS + 1):
            try:
                await self._write_terminal_record(trade, changes)
                return
            except Exception as e:
                logger.error(
                    f"Trade {trade.trade_id}: failed to persist terminal record "
                    f"(attempt {attempt}/{TERMINAL_RECORD_WRITE_ATTEMPTS}): {e}"
                )

    async def _write_terminal_record(self, trade: _Trade, changes: dict[str, Any]) -> None:
        if not trade.record_saved:
            trade.record_saved = await self._store.get_trade_record(trade.trade_id) is not None

        if trade.record_saved:
            await self._store.update_trade_record(trade.trade_id, changes)
            return

        record = replace(self._new_record(trade, TradeStatus.PENDING), **changes)
        await self._store.save_trade_record(record)
        trade.record_saved = True

    def _new_record(self, trade: _Trade, status: TradeStatus) -> TradeRecord:
        opportunity = trade.opportunity
        return TradeRecord(
            trade_id=trade.trade_id,
            user_id=trade.user_id,
            symbol=opportunity.symbol,
            buy_exchange=opportunity.buy_exchange,
            sell_exchange=opportunity.sell_exchange,
            buy_price=trade.buy_price,
            sell_price=trade.sell_price,
            quantity=trade.quantity,
            capital_amount=trade.capital,
            expected_profit=trade.expected_profit,
            expected_profit_percent=trade.expected_profit_percent,
            trading_mode=trade.context.trading_mode,
            execution_mode=trade.context.execution_mode,
            created_at_ms=get_timestamp_ms(),
            status=status,
            dry_run=trade.dry_run,
        )

    async def _publish(self, event_type: EventType, payload: object) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(Event(type=event_type, payload=payload, source="executor"))

    async def wait_for_pending(self) -> None:
        """Wait for shielded leg tasks left running by cancelled callers."""
        if self._leg_tasks:
            await asyncio.gather(*self._leg_tasks, return_exceptions=True)

    @property
    def in_flight(self) -> int:
        """Number of trades currently past the buy order."""
        return len(self._leg_tasks)
