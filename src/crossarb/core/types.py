"""
Type definitions for the arbitrage engine.

This module contains the dataclasses, enums and Protocol definitions
shared by the detector, the executor and the exchange adapters. All
prices and amounts are Decimal.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol

from crossarb.utils.math import to_decimal


# =============================================================================
# Enums
# =============================================================================


class TradingMode(str, Enum):
    """Exchange environment."""

    TESTNET = "testnet"
    LIVE = "live"


class ExecutionMode(str, Enum):
    """How the sell leg is funded."""

    SIMULTANEOUS = "simultaneous"  # sell from inventory already on the sell exchange
    TRANSFER = "transfer"  # withdraw bought coins to the sell exchange first


class OrderSide(str, Enum):
    """Order side enumeration."""

    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(str, Enum):
    """Normalized order status across exchanges."""

    NEW = "NEW"
    FILLED = "FILLED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class TradeStatus(str, Enum):
    """Trade record lifecycle."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Why a trade ended in the failed state."""

    VALIDATION_ERROR = "ValidationError"
    PRICE_FETCH_ERROR = "PriceFetchError"
    BALANCE_FETCH_ERROR = "BalanceFetchError"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    BUY_ORDER_FAILED = "BuyOrderFailed"
    TRANSFER_TIMEOUT = "TransferTimeout"
    TRANSFER_FAILED = "TransferFailed"
    SELL_ORDER_FAILED = "SellOrderFailed"
    CANCELLED = "Cancelled"
    INTERNAL_ERROR = "InternalError"

    @property
    def is_partial_failure(self) -> bool:
        """Funds are split across exchanges and need manual reconciliation."""
        return self in PARTIAL_FAILURE_KINDS


PARTIAL_FAILURE_KINDS = frozenset(
    {
        ErrorKind.TRANSFER_TIMEOUT,
        ErrorKind.TRANSFER_FAILED,
        ErrorKind.SELL_ORDER_FAILED,
    }
)


# =============================================================================
# Market Data Types
# =============================================================================


@dataclass(slots=True, frozen=True)
class PriceQuote:
    """
    Last observed price for one symbol on one exchange.

    Frozen so snapshots can be shared between tasks without copying.
    """

    exchange: str
    symbol: str
    price: Decimal
    observed_at_ms: int

    def is_stale(self, now_ms: int, max_age_ms: int) -> bool:
        """Check whether the quote is older than the allowed age."""
        return now_ms - self.observed_at_ms > max_age_ms


PriceKey = tuple[str, str]  # (exchange, symbol)
PriceSnapshot = Mapping[PriceKey, PriceQuote]


@dataclass(slots=True, frozen=True)
class FeeSchedule:
    """
    Taker fee fraction per exchange.

    Immutable; build a new schedule to change fees.
    """

    fees: Mapping[str, Decimal]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fees", MappingProxyType(dict(self.fees)))

    def get(self, exchange: str) -> Decimal | None:
        """Fee for an exchange, or None when unknown."""
        return self.fees.get(exchange)

    def __contains__(self, exchange: object) -> bool:
        return exchange in self.fees


# =============================================================================
# Opportunity Types
# =============================================================================


@dataclass(slots=True, frozen=True)
class Opportunity:
    """
    Best fee-adjusted buy/sell exchange pair for one symbol.

    Derived on every detection cycle and never persisted; only executed
    trades become TradeRecords.
    """

    symbol: str
    buy_exchange: str
    sell_exchange: str
    buy_price: Decimal
    sell_price: Decimal
    buy_fee: Decimal
    sell_fee: Decimal
    gross_spread: Decimal
    net_profit: Decimal
    net_profit_usdt: Decimal
    capital_amount: Decimal
    quantity: Decimal
    detected_at_ms: int

    def __post_init__(self) -> None:
        if self.buy_exchange == self.sell_exchange:
            raise ValueError("buy and sell exchange must differ")

    @property
    def net_profit_percent(self) -> Decimal:
        """Net profit as a percentage."""
        return self.net_profit * 100

    def to_dict(self) -> dict[str, Any]:
        """Plain dict for events and logging."""
        return asdict(self)


# =============================================================================
# Exchange Types
# =============================================================================


@dataclass(slots=True, frozen=True)
class OrderRequest:
    """Order to place on an exchange; symbol is canonical."""

    symbol: str
    side: OrderSide
    quantity: Decimal
    order_type: str = "MARKET"
    price: Decimal | None = None


@dataclass(slots=True)
class OrderResult:
    """
    Normalized order placement response.

    ``filled_quantity`` and ``average_price`` are None when the exchange
    did not report them.
    """

    order_id: str
    symbol: str
    side: OrderSide
    status: OrderStatus
    filled_quantity: Decimal | None = None
    average_price: Decimal | None = None
    fee: Decimal | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_rejected(self) -> bool:
        """Order did not execute at all."""
        if self.status in (OrderStatus.REJECTED, OrderStatus.EXPIRED):
            return True
        return self.status == OrderStatus.CANCELLED and not self.filled_quantity

    def to_dict(self) -> dict[str, Any]:
        """Audit representation stored on trade records."""
        return {
            "order_id": self.order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "status": self.status.value,
            "filled_quantity": self.filled_quantity,
            "average_price": self.average_price,
            "fee": self.fee,
            "raw": self.raw,
        }


@dataclass(slots=True, frozen=True)
class DepositAddress:
    """Deposit target for a currency."""

    currency: str
    address: str
    network: str
    tag: str | None = None


@dataclass(slots=True, frozen=True)
class WithdrawalRequest:
    """On-chain withdrawal parameters."""

    currency: str
    address: str
    network: str
    amount: Decimal
    tag: str | None = None


@dataclass(slots=True, frozen=True)
class WithdrawalResult:
    """Withdrawal acknowledgement."""

    status: str
    tx_id: str | None
    withdrawal_id: str | None = None


@dataclass(slots=True, frozen=True)
class Deposit:
    """One entry of an exchange deposit history."""

    currency: str
    amount: Decimal
    status: str  # pending | completed | failed
    timestamp_ms: int
    tx_id: str | None = None

    @property
    def is_completed(self) -> bool:
        """Deposit has been credited."""
        return self.status == "completed"


@dataclass(slots=True, frozen=True)
class ExchangeCapability:
    """Public status of one configured adapter."""

    name: str
    enabled: bool
    trading_enabled: bool
    testnet: bool
    fee: Decimal
    quantity_precision: int


# =============================================================================
# Trade Types
# =============================================================================


@dataclass(slots=True)
class ExecutionOptions:
    """
    Per-call execution options.

    None values fall back to the trading context defaults.
    """

    user_id: str | None = None
    capital_amount: Decimal | None = None
    dry_run: bool | None = None


@dataclass(slots=True)
class TradeRecord:
    """
    Persisted audit record for one execution attempt.

    Created as pending before any order is placed and updated exactly
    once to completed or failed.
    """

    trade_id: str
    user_id: str
    symbol: str
    buy_exchange: str
    sell_exchange: str
    buy_price: Decimal
    sell_price: Decimal
    quantity: Decimal
    capital_amount: Decimal
    expected_profit: Decimal
    expected_profit_percent: Decimal
    trading_mode: TradingMode
    execution_mode: ExecutionMode
    created_at_ms: int
    status: TradeStatus = TradeStatus.PENDING
    dry_run: bool = False
    actual_profit: Decimal | None = None
    actual_profit_percent: Decimal | None = None
    execution_time_ms: int | None = None
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    partial_failure: bool = False
    buy_order_response: dict[str, Any] | None = None
    sell_order_response: dict[str, Any] | None = None
    fees: Decimal | None = None
    completed_at_ms: int | None = None

    @property
    def is_terminal(self) -> bool:
        """Record has reached completed or failed."""
        return self.status != TradeStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Dict representation; Decimals are kept as Decimal."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TradeRecord":
        """Rebuild a record from its serialized form."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}

        for name in _DECIMAL_FIELDS:
            if values.get(name) is not None:
                values[name] = to_decimal(values[name])

        values["status"] = TradeStatus(values.get("status", TradeStatus.PENDING))
        values["trading_mode"] = TradingMode(values["trading_mode"])
        values["execution_mode"] = ExecutionMode(values["execution_mode"])
        if values.get("error_kind") is not None:
            values["error_kind"] = ErrorKind(values["error_kind"])

        return cls(**values)


_DECIMAL_FIELDS = (
    "buy_price",
    "sell_price",
    "quantity",
    "capital_amount",
    "expected_profit",
    "expected_profit_percent",
    "actual_profit",
    "actual_profit_percent",
    "fees",
)


@dataclass(slots=True, frozen=True)
class TradeCompleted:
    """Successful execution outcome."""

    trade_id: str
    actual_profit: Decimal
    actual_profit_percent: Decimal
    buy_order: OrderResult
    sell_order: OrderResult
    execution_time_ms: int
    fees: Decimal = Decimal("0")
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return True


@dataclass(slots=True, frozen=True)
class TradeFailed:
    """Failed execution outcome."""

    trade_id: str
    error_kind: ErrorKind
    message: str
    execution_time_ms: int
    partial_failure: bool = False

    @property
    def success(self) -> bool:
        return False


TradeResult = TradeCompleted | TradeFailed


@dataclass(slots=True)
class TradeHistoryQuery:
    """Filters and paging for trade history reads."""

    user_id: str | None = None
    status: TradeStatus | None = None
    symbol: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(slots=True)
class TradeHistoryPage:
    """One page of trade history, newest first."""

    records: list[TradeRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        """More records exist past this page."""
        return self.offset + len(self.records) < self.total


# =============================================================================
# Protocols (Interfaces)
# =============================================================================


class ExchangeAdapter(Protocol):
    """Common capability surface of one exchange; symbols are canonical."""

    @property
    def name(self) -> str:
        """Exchange identifier."""
        ...

    @property
    def testnet(self) -> bool:
        """Whether this adapter talks to the test environment."""
        ...

    @property
    def fee(self) -> Decimal:
        """Taker fee fraction."""
        ...

    def quantity_precision(self, symbol: str) -> int:
        """Decimal places accepted for order quantities."""
        ...

    def is_trading_enabled(self) -> bool:
        """Enabled and holding credentials for the current mode."""
        ...

    async def get_ticker_price(self, symbol: str) -> Decimal:
        """Fetch the last traded price."""
        ...

    async def fetch_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        """Fetch last prices for many symbols in one call where possible."""
        ...

    async def get_balance(self, asset: str | None = None) -> dict[str, Decimal]:
        """Free balances, optionally for one asset."""
        ...

    async def create_order(self, request: OrderRequest) -> OrderResult:
        """Place an order."""
        ...

    async def get_deposit_address(self, currency: str, network: str | None = None) -> DepositAddress:
        """Fetch a deposit address."""
        ...

    async def withdraw(self, request: WithdrawalRequest) -> WithdrawalResult:
        """Initiate a withdrawal."""
        ...

    async def get_deposits(self, currency: str) -> list[Deposit]:
        """Recent deposit history for a currency."""
        ...

    async def check_trading_pair_available(self, symbol: str) -> bool:
        """Whether the symbol is currently tradable."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...


class TradeHistoryStore(Protocol):
    """Persistence for trade records."""

    async def save_trade_record(self, record: TradeRecord) -> None:
        """Persist a new record."""
        ...

    async def update_trade_record(self, trade_id: str, changes: Mapping[str, Any]) -> TradeRecord:
        """Apply a partial update to an existing record."""
        ...

    async def get_trade_record(self, trade_id: str) -> TradeRecord | None:
        """Fetch one record."""
        ...

    async def get_trade_history(self, query: TradeHistoryQuery) -> TradeHistoryPage:
        """Paged, filtered history, newest first."""
        ...
