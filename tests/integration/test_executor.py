"""
Integration tests for the trade executor.

Runs opportunities through the full state machine against mock
exchanges, covering every terminal outcome.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from decimal import Decimal

import pytest

from crossarb.core.context import TradingContext
from crossarb.core.errors import ExchangeAPIError, ExchangeNetworkError
from crossarb.core.event_bus import Event, EventBus, EventType
from crossarb.core.types import (
    ErrorKind,
    ExecutionMode,
    ExecutionOptions,
    Opportunity,
    OrderSide,
    OrderStatus,
    TradeCompleted,
    TradeFailed,
    TradeStatus,
    TradingMode,
)
from crossarb.execution.executor import TradeExecutor
from crossarb.history.store import InMemoryTradeHistoryStore
from crossarb.telemetry.metrics import MetricsCollector
from tests.mocks.exchange import LinkedExchangePair, MockExchangeAdapter
from tests.mocks.store import FailingTradeHistoryStore


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestExecutorBase:
    """Shared executor wiring."""

    @pytest.fixture
    def context(self, trading_context: TradingContext) -> TradingContext:
        return trading_context

    @pytest.fixture
    def events(self) -> list[Event]:
        return []

    @pytest.fixture
    def executor(
        self,
        adapters: dict[str, MockExchangeAdapter],
        store: InMemoryTradeHistoryStore,
        metrics: MetricsCollector,
        context: TradingContext,
        events: list[Event],
    ) -> TradeExecutor:
        bus = EventBus()
        for event_type in (EventType.TRADE_STARTED, EventType.TRADE_COMPLETED, EventType.TRADE_FAILED):
            bus.subscribe_sync(event_type, events.append)
        return TradeExecutor(adapters, store, metrics, lambda: context, event_bus=bus)


class TestSuccessfulExecution(TestExecutorBase):
    """Tests for trades that complete."""

    @pytest.mark.asyncio
    async def test_reference_trade(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
        metrics: MetricsCollector,
        events: list[Event],
    ) -> None:
        """Buy 0.002 BTC at 50000, sell at 50200, 0.1% fees on both legs."""
        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        assert result.success
        assert result.actual_profit == Decimal("0.1996")
        assert result.fees == Decimal("0.2004")
        assert not result.dry_run

        buy = binance_mock.orders[0]
        sell = gateio_mock.orders[0]
        assert (buy.side, buy.quantity, buy.price) == (OrderSide.BUY, Decimal("0.002"), Decimal("50000"))
        assert (sell.side, sell.quantity) == (OrderSide.SELL, Decimal("0.002"))

        record = await store.get_trade_record(result.trade_id)
        assert record.status == TradeStatus.COMPLETED
        assert record.user_id == "tester"
        assert record.actual_profit == Decimal("0.1996")
        assert record.expected_profit == Decimal("0.1996")
        assert record.buy_order_response["order_id"] == "binance-1"
        assert record.completed_at_ms is not None

        stats = await metrics.get_stats()
        assert stats["successful_trades"] == 1
        assert [e.type for e in events] == [EventType.TRADE_STARTED, EventType.TRADE_COMPLETED]

    @pytest.mark.asyncio
    async def test_dry_run_places_no_orders(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        result = await executor.execute(btc_opportunity, ExecutionOptions(dry_run=True))

        assert isinstance(result, TradeCompleted)
        assert result.dry_run
        assert result.buy_order.order_id == f"dry-{result.trade_id[:8]}-buy"
        assert result.actual_profit == Decimal("0.1996")
        assert binance_mock.orders == []
        assert gateio_mock.orders == []

        record = await store.get_trade_record(result.trade_id)
        assert record.dry_run
        assert record.status == TradeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_options_override_user_and_capital(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        result = await executor.execute(
            btc_opportunity, ExecutionOptions(user_id="alice", capital_amount=Decimal("50"))
        )

        record = await store.get_trade_record(result.trade_id)
        assert record.user_id == "alice"
        assert record.capital_amount == Decimal("50")
        assert record.quantity == Decimal("0.001")

    @pytest.mark.asyncio
    async def test_trade_ids_are_unique(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        first = await executor.execute(btc_opportunity)
        second = await executor.execute(btc_opportunity)

        assert first.trade_id != second.trade_id
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_settlement_without_reported_fills(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        gateio_mock: MockExchangeAdapter,
    ) -> None:
        """Missing fill details fall back to the requested quantity and refreshed prices."""
        binance_mock.report_fills = False
        gateio_mock.report_fills = False

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        assert result.actual_profit == Decimal("0.1996")

    @pytest.mark.asyncio
    async def test_profit_uses_refreshed_prices(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        gateio_mock: MockExchangeAdapter,
    ) -> None:
        gateio_mock.prices["BTCUSDT"] = Decimal("50300")

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        assert result.actual_profit > Decimal("0.1996")


class TestCapitalAdjustment(TestExecutorBase):
    """Tests for balance-driven sizing."""

    @pytest.fixture
    def context(self, trading_context: TradingContext) -> TradingContext:
        return trading_context.with_changes(adjust_capital=True)

    @pytest.mark.asyncio
    async def test_shrinks_to_available_balance(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        binance_mock.balances["USDT"] = Decimal("40")

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        assert binance_mock.orders[0].quantity == Decimal("0.00072")
        record = await store.get_trade_record(result.trade_id)
        assert record.capital_amount == Decimal("36.0")


class TestFailedExecution(TestExecutorBase):
    """Tests for trades that fail before any money moves."""

    async def assert_failed(
        self,
        result: TradeFailed | TradeCompleted,
        kind: ErrorKind,
        store: InMemoryTradeHistoryStore,
    ) -> TradeFailed:
        assert isinstance(result, TradeFailed)
        assert result.error_kind == kind
        assert not result.partial_failure
        record = await store.get_trade_record(result.trade_id)
        assert record is not None
        assert record.status == TradeStatus.FAILED
        assert record.error_kind == kind
        return result

    @pytest.mark.asyncio
    async def test_trading_disabled(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        gateio_mock.trading_enabled = False

        result = await executor.execute(btc_opportunity)

        failed = await self.assert_failed(result, ErrorKind.VALIDATION_ERROR, store)
        assert "gateio" in failed.message
        assert gateio_mock.price_calls == 0

    @pytest.mark.asyncio
    async def test_unknown_exchange(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        opportunity = replace(btc_opportunity, sell_exchange="kraken")

        result = await executor.execute(opportunity)

        await self.assert_failed(result, ErrorKind.VALIDATION_ERROR, store)

    @pytest.mark.asyncio
    async def test_below_threshold(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        opportunity = replace(btc_opportunity, net_profit=Decimal("0.0005"))

        result = await executor.execute(opportunity)

        failed = await self.assert_failed(result, ErrorKind.VALIDATION_ERROR, store)
        assert "no longer profitable" in failed.message

    @pytest.mark.asyncio
    async def test_capital_below_dust_floor(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        result = await executor.execute(btc_opportunity, ExecutionOptions(capital_amount=Decimal("5")))

        await self.assert_failed(result, ErrorKind.VALIDATION_ERROR, store)

    @pytest.mark.asyncio
    async def test_pair_unavailable(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        gateio_mock.unavailable_pairs.add("BTCUSDT")

        result = await executor.execute(btc_opportunity)

        failed = await self.assert_failed(result, ErrorKind.VALIDATION_ERROR, store)
        assert "not tradable on gateio" in failed.message

    @pytest.mark.asyncio
    async def test_price_refresh_error(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        binance_mock.price_error = ExchangeNetworkError("binance", "timeout")

        result = await executor.execute(btc_opportunity)

        await self.assert_failed(result, ErrorKind.PRICE_FETCH_ERROR, store)

    @pytest.mark.asyncio
    async def test_spread_closed_on_refresh(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        gateio_mock.prices["BTCUSDT"] = Decimal("50000")

        result = await executor.execute(btc_opportunity)

        failed = await self.assert_failed(result, ErrorKind.VALIDATION_ERROR, store)
        assert "at current prices" in failed.message
        assert gateio_mock.orders == []

    @pytest.mark.asyncio
    async def test_balance_fetch_error(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        binance_mock.balance_error = ExchangeAPIError("binance", "unavailable", status=503)

        result = await executor.execute(btc_opportunity)

        await self.assert_failed(result, ErrorKind.BALANCE_FETCH_ERROR, store)

    @pytest.mark.asyncio
    async def test_insufficient_quote_balance(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        binance_mock.balances["USDT"] = Decimal("50")

        result = await executor.execute(btc_opportunity)

        await self.assert_failed(result, ErrorKind.INSUFFICIENT_BALANCE, store)
        assert binance_mock.orders == []

    @pytest.mark.asyncio
    async def test_insufficient_sell_inventory(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        gateio_mock.balances["BTC"] = Decimal("0.001")

        result = await executor.execute(btc_opportunity)

        await self.assert_failed(result, ErrorKind.INSUFFICIENT_BALANCE, store)

    @pytest.mark.asyncio
    async def test_buy_order_error(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
        metrics: MetricsCollector,
    ) -> None:
        binance_mock.order_errors[OrderSide.BUY] = ExchangeAPIError("binance", "rejected", status=400)

        result = await executor.execute(btc_opportunity)

        await self.assert_failed(result, ErrorKind.BUY_ORDER_FAILED, store)
        assert gateio_mock.orders == []
        assert (await metrics.get_stats())["failed_trades"] == 1

    @pytest.mark.asyncio
    async def test_buy_order_rejected_status(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        binance_mock.order_status[OrderSide.BUY] = OrderStatus.REJECTED

        result = await executor.execute(btc_opportunity)

        await self.assert_failed(result, ErrorKind.BUY_ORDER_FAILED, store)


class TestPartialFailure(TestExecutorBase):
    """Tests for failures after the buy leg filled."""

    @pytest.mark.asyncio
    async def test_sell_order_error(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
        metrics: MetricsCollector,
    ) -> None:
        gateio_mock.order_errors[OrderSide.SELL] = ExchangeNetworkError("gateio", "connection reset")

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeFailed)
        assert result.error_kind == ErrorKind.SELL_ORDER_FAILED
        assert result.partial_failure
        assert "after buy order binance-1 on binance succeeded" in result.message

        record = await store.get_trade_record(result.trade_id)
        assert record.partial_failure
        assert record.buy_order_response["order_id"] == "binance-1"
        assert record.sell_order_response is None
        assert (await metrics.get_stats())["partial_failures"] == 1

    @pytest.mark.asyncio
    async def test_sell_order_rejected_status(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        gateio_mock: MockExchangeAdapter,
    ) -> None:
        gateio_mock.order_status[OrderSide.SELL] = OrderStatus.EXPIRED

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeFailed)
        assert result.error_kind == ErrorKind.SELL_ORDER_FAILED
        assert result.partial_failure


class TestCancellation(TestExecutorBase):
    """Tests for caller cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_buy(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        binance_mock.price_gate = asyncio.Event()
        task = asyncio.create_task(executor.execute(btc_opportunity))
        await wait_until(lambda: binance_mock.price_calls > 0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        page = await store.get_trade_history()
        assert page.total == 1
        assert page.records[0].status == TradeStatus.FAILED
        assert page.records[0].error_kind == ErrorKind.CANCELLED
        assert binance_mock.orders == []

    @pytest.mark.asyncio
    async def test_cancel_after_buy_finishes_trade(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        """Once the buy order is out, the legs run to a terminal state."""
        binance_mock.order_gate = asyncio.Event()
        task = asyncio.create_task(executor.execute(btc_opportunity))
        await wait_until(lambda: len(binance_mock.orders) == 1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert executor.in_flight == 1

        binance_mock.order_gate.set()
        await asyncio.wait_for(executor.wait_for_pending(), timeout=1)

        assert len(gateio_mock.orders) == 1
        page = await store.get_trade_history()
        assert page.records[0].status == TradeStatus.COMPLETED
        assert executor.in_flight == 0


class TestTransferExecution(TestExecutorBase):
    """Tests for trades bridged by an on-chain transfer."""

    @pytest.fixture
    def context(self, trading_context: TradingContext) -> TradingContext:
        return trading_context.with_changes(execution_mode=ExecutionMode.TRANSFER)

    @pytest.fixture
    def pair(
        self, binance_mock: MockExchangeAdapter, gateio_mock: MockExchangeAdapter
    ) -> LinkedExchangePair:
        return LinkedExchangePair(binance_mock, gateio_mock)

    @pytest.mark.asyncio
    async def test_transfer_then_sell(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        pair: LinkedExchangePair,
        binance_mock: MockExchangeAdapter,
        gateio_mock: MockExchangeAdapter,
    ) -> None:
        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        withdrawal = binance_mock.withdrawals[0]
        assert withdrawal.currency == "BTC"
        assert withdrawal.amount == Decimal("0.002")
        assert gateio_mock.orders[0].quantity == Decimal("0.002")

    @pytest.mark.asyncio
    async def test_sell_exchange_needs_base_balance(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        pair: LinkedExchangePair,
        binance_mock: MockExchangeAdapter,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        """The sell exchange's base balance is checked before anything moves."""
        gateio_mock.balances.pop("BTC")

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeFailed)
        assert result.error_kind == ErrorKind.INSUFFICIENT_BALANCE
        assert not result.partial_failure
        assert "gateio BTC 0" in result.message
        assert binance_mock.orders == []
        assert binance_mock.withdrawals == []
        record = await store.get_trade_record(result.trade_id)
        assert record.status == TradeStatus.FAILED

    @pytest.mark.asyncio
    async def test_sells_received_amount(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        pair: LinkedExchangePair,
        gateio_mock: MockExchangeAdapter,
    ) -> None:
        """A deposit reduced by the withdrawal fee is what gets sold."""
        pair.received_amount = Decimal("0.00199")

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        assert gateio_mock.orders[0].quantity == Decimal("0.00199")

    @pytest.mark.asyncio
    async def test_testnet_timeout_proceeds(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        pair: LinkedExchangePair,
        gateio_mock: MockExchangeAdapter,
    ) -> None:
        pair.delay_deposits = True

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        assert len(gateio_mock.orders) == 1


class TestLiveTransferTimeout(TestExecutorBase):
    """Tests for unconfirmed deposits in live mode."""

    @pytest.fixture
    def context(self, trading_context: TradingContext) -> TradingContext:
        return trading_context.with_changes(
            execution_mode=ExecutionMode.TRANSFER,
            trading_mode=TradingMode.LIVE,
        )

    @pytest.mark.asyncio
    async def test_timeout_is_partial_failure(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
        gateio_mock: MockExchangeAdapter,
        store: InMemoryTradeHistoryStore,
    ) -> None:
        pair = LinkedExchangePair(binance_mock, gateio_mock)
        pair.delay_deposits = True

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeFailed)
        assert result.error_kind == ErrorKind.TRANSFER_TIMEOUT
        assert result.partial_failure
        assert "binance-1" in result.message
        assert gateio_mock.orders == []
        record = await store.get_trade_record(result.trade_id)
        assert record.partial_failure

    @pytest.mark.asyncio
    async def test_withdrawal_failure(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        binance_mock: MockExchangeAdapter,
    ) -> None:
        binance_mock.withdraw_error = ExchangeAPIError("binance", "withdrawals suspended", status=400)

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeFailed)
        assert result.error_kind == ErrorKind.TRANSFER_FAILED
        assert result.partial_failure


class TestRecordPersistence(TestExecutorBase):
    """Tests for trades whose history writes fail."""

    @pytest.fixture
    def store(self) -> FailingTradeHistoryStore:
        return FailingTradeHistoryStore()

    @pytest.mark.asyncio
    async def test_pending_write_failure_does_not_abort(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        gateio_mock: MockExchangeAdapter,
        store: FailingTradeHistoryStore,
        events: list[Event],
    ) -> None:
        """The terminal write creates the record the pending write lost."""
        store.failing_writes = {1}

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        assert len(gateio_mock.orders) == 1
        record = await store.get_trade_record(result.trade_id)
        assert record is not None
        assert record.status == TradeStatus.COMPLETED
        assert record.actual_profit == Decimal("0.1996")
        assert len(store) == 1
        assert [e.type for e in events] == [EventType.TRADE_STARTED, EventType.TRADE_COMPLETED]

    @pytest.mark.asyncio
    async def test_pending_write_failure_on_failed_trade(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        gateio_mock: MockExchangeAdapter,
        store: FailingTradeHistoryStore,
    ) -> None:
        store.failing_writes = {1}
        gateio_mock.order_errors[OrderSide.SELL] = ExchangeAPIError(
            "gateio", "market closed", status=400
        )

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeFailed)
        assert result.error_kind == ErrorKind.SELL_ORDER_FAILED
        record = await store.get_trade_record(result.trade_id)
        assert record.status == TradeStatus.FAILED
        assert record.partial_failure
        assert record.buy_order_response["order_id"] == "binance-1"

    @pytest.mark.asyncio
    async def test_terminal_write_is_retried(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        store: FailingTradeHistoryStore,
    ) -> None:
        store.failing_writes = {2}

        result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        record = await store.get_trade_record(result.trade_id)
        assert record.status == TradeStatus.COMPLETED
        assert store.writes == 3

    @pytest.mark.asyncio
    async def test_store_outage_still_returns_result(
        self,
        executor: TradeExecutor,
        btc_opportunity: Opportunity,
        store: FailingTradeHistoryStore,
        metrics: MetricsCollector,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Losing the audit entry is logged; the trade outcome is still reported."""
        store.fail_all = True

        with caplog.at_level(logging.ERROR, logger="crossarb.execution.executor"):
            result = await executor.execute(btc_opportunity)

        assert isinstance(result, TradeCompleted)
        assert await store.get_trade_record(result.trade_id) is None
        assert "failed to persist pending record" in caplog.text
        assert "failed to persist terminal record (attempt 2/2)" in caplog.text
        stats = await metrics.get_stats()
        assert stats["successful_trades"] == 1
