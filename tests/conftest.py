"""
Pytest configuration and shared fixtures.

Provides reusable test fixtures for all test modules.
"""

from collections.abc import Callable
from decimal import Decimal

import pytest

from crossarb.config.settings import Settings
from crossarb.core.context import TradingContext
from crossarb.core.types import (
    ExecutionMode,
    FeeSchedule,
    Opportunity,
    PriceQuote,
    TradingMode,
)
from crossarb.history.store import InMemoryTradeHistoryStore
from crossarb.strategy.calculator import gross_spread, net_profit_fraction, trade_quantity
from crossarb.telemetry.metrics import MetricsCollector
from crossarb.utils.time import get_timestamp_ms
from tests.mocks.exchange import MockExchangeAdapter


# =============================================================================
# Market Data Fixtures
# =============================================================================


@pytest.fixture
def now_ms() -> int:
    """Fixed reference time for staleness checks."""
    return 1_704_067_200_000


@pytest.fixture
def make_quote(now_ms: int) -> Callable[..., PriceQuote]:
    """Factory for fresh quotes."""

    def _make(exchange: str, symbol: str, price: str | Decimal, age_ms: int = 0) -> PriceQuote:
        return PriceQuote(
            exchange=exchange,
            symbol=symbol,
            price=Decimal(price),
            observed_at_ms=now_ms - age_ms,
        )

    return _make


@pytest.fixture
def fee_schedule() -> FeeSchedule:
    """Taker fees of the two default exchanges."""
    return FeeSchedule({"binance": Decimal("0.001"), "gateio": Decimal("0.001")})


# =============================================================================
# Context Fixtures
# =============================================================================


@pytest.fixture
def trading_context(fee_schedule: FeeSchedule) -> TradingContext:
    """Testnet context trading from inventory with real orders."""
    return TradingContext(
        trading_mode=TradingMode.TESTNET,
        execution_mode=ExecutionMode.SIMULTANEOUS,
        fee_schedule=fee_schedule,
        symbols=("BTCUSDT", "ETHUSDT"),
        min_profit_threshold=Decimal("0.001"),
        capital_amount=Decimal("100"),
        min_trade_usdt=Decimal("10"),
        max_trade_usdt=Decimal("1000"),
        max_update_age_ms=30_000,
        dry_run=False,
        user_id="tester",
        adjust_capital=False,
        safe_balance_fraction=Decimal("0.9"),
        max_adjusted_trade_usdt=Decimal("50"),
        transfer_timeout_ms=200,
        transfer_poll_interval_ms=10,
        withdrawal_network="TRX",
    )


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        symbols=["BTCUSDT", "ETHUSDT"],
        dry_run=False,
        history_path=None,
        use_streaming=False,
        binance_testnet_api_key="bn-test-key",
        binance_testnet_api_secret="bn-test-secret",
        gateio_testnet_api_key="gt-test-key",
        gateio_testnet_api_secret="gt-test-secret",
    )


# =============================================================================
# Exchange Fixtures
# =============================================================================


@pytest.fixture
def binance_mock() -> MockExchangeAdapter:
    """Cheaper exchange: buy side of the default opportunity."""
    return MockExchangeAdapter(
        "binance",
        prices={"BTCUSDT": Decimal("50000"), "ETHUSDT": Decimal("3000")},
        balances={"USDT": Decimal("1000"), "BTC": Decimal("1"), "ETH": Decimal("10")},
    )


@pytest.fixture
def gateio_mock() -> MockExchangeAdapter:
    """Dearer exchange: sell side of the default opportunity."""
    return MockExchangeAdapter(
        "gateio",
        prices={"BTCUSDT": Decimal("50200"), "ETHUSDT": Decimal("3000")},
        balances={"USDT": Decimal("1000"), "BTC": Decimal("1"), "ETH": Decimal("10")},
    )


@pytest.fixture
def adapters(
    binance_mock: MockExchangeAdapter,
    gateio_mock: MockExchangeAdapter,
) -> dict[str, MockExchangeAdapter]:
    """Adapters by name; a plain dict satisfies the executor's lookup."""
    return {"binance": binance_mock, "gateio": gateio_mock}


# =============================================================================
# Execution Fixtures
# =============================================================================


@pytest.fixture
def store() -> InMemoryTradeHistoryStore:
    """Empty in-memory trade history."""
    return InMemoryTradeHistoryStore()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh metrics collector."""
    return MetricsCollector()


@pytest.fixture
def btc_opportunity() -> Opportunity:
    """Buy BTC on binance at 50000, sell on gateio at 50200."""
    buy_price = Decimal("50000")
    sell_price = Decimal("50200")
    fee = Decimal("0.001")
    net = net_profit_fraction(buy_price, sell_price, fee, fee)
    return Opportunity(
        symbol="BTCUSDT",
        buy_exchange="binance",
        sell_exchange="gateio",
        buy_price=buy_price,
        sell_price=sell_price,
        buy_fee=fee,
        sell_fee=fee,
        gross_spread=gross_spread(buy_price, sell_price),
        net_profit=net,
        net_profit_usdt=Decimal("100") * net,
        capital_amount=Decimal("100"),
        quantity=trade_quantity(Decimal("100"), buy_price),
        detected_at_ms=get_timestamp_ms(),
    )
