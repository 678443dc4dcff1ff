"""
Trading constants and configuration values.

This module contains all hardcoded values used throughout the arbitrage engine.
Values are organized by category for easy maintenance and auditing.
"""

from decimal import Decimal
from typing import Final


# =============================================================================
# Binance API Endpoints
# =============================================================================

BINANCE_REST_URL: Final[str] = "https://api.binance.com"
BINANCE_REST_TESTNET_URL: Final[str] = "https://testnet.binance.vision"

BINANCE_WS_URL: Final[str] = "wss://stream.binance.com:9443"
BINANCE_WS_TESTNET_URL: Final[str] = "wss://testnet.binance.vision"

BINANCE_ENDPOINT_TICKER_PRICE: Final[str] = "/api/v3/ticker/price"
BINANCE_ENDPOINT_EXCHANGE_INFO: Final[str] = "/api/v3/exchangeInfo"
BINANCE_ENDPOINT_ACCOUNT: Final[str] = "/api/v3/account"
BINANCE_ENDPOINT_ORDER: Final[str] = "/api/v3/order"
BINANCE_ENDPOINT_DEPOSIT_ADDRESS: Final[str] = "/sapi/v1/capital/deposit/address"
BINANCE_ENDPOINT_WITHDRAW: Final[str] = "/sapi/v1/capital/withdraw/apply"
BINANCE_ENDPOINT_DEPOSITS: Final[str] = "/sapi/v1/capital/deposit/hisrec"

# Binance deposit history status codes
BINANCE_DEPOSIT_STATUS: Final[dict[int, str]] = {
    0: "pending",
    1: "completed",
    6: "completed",
    7: "failed",
    8: "pending",
}


# =============================================================================
# Gate.io API Endpoints
# =============================================================================

GATEIO_REST_URL: Final[str] = "https://api.gateio.ws"
GATEIO_REST_TESTNET_URL: Final[str] = "https://api-testnet.gateapi.io"
GATEIO_API_PREFIX: Final[str] = "/api/v4"

GATEIO_ENDPOINT_TICKERS: Final[str] = "/spot/tickers"
GATEIO_ENDPOINT_CURRENCY_PAIR: Final[str] = "/spot/currency_pairs"
GATEIO_ENDPOINT_ACCOUNTS: Final[str] = "/spot/accounts"
GATEIO_ENDPOINT_ORDERS: Final[str] = "/spot/orders"
GATEIO_ENDPOINT_DEPOSIT_ADDRESS: Final[str] = "/wallet/deposit_address"
GATEIO_ENDPOINT_WITHDRAWALS: Final[str] = "/withdrawals"
GATEIO_ENDPOINT_DEPOSITS: Final[str] = "/wallet/deposits"


# =============================================================================
# Bybit API Endpoints (v5)
# =============================================================================

BYBIT_REST_URL: Final[str] = "https://api.bybit.com"
BYBIT_REST_TESTNET_URL: Final[str] = "https://api-testnet.bybit.com"

BYBIT_WS_URL: Final[str] = "wss://stream.bybit.com/v5/public/spot"
BYBIT_WS_TESTNET_URL: Final[str] = "wss://stream-testnet.bybit.com/v5/public/spot"

BYBIT_ENDPOINT_TICKERS: Final[str] = "/v5/market/tickers"
BYBIT_ENDPOINT_INSTRUMENTS: Final[str] = "/v5/market/instruments-info"
BYBIT_ENDPOINT_WALLET_BALANCE: Final[str] = "/v5/account/wallet-balance"
BYBIT_ENDPOINT_ORDER_CREATE: Final[str] = "/v5/order/create"
BYBIT_ENDPOINT_ORDER_REALTIME: Final[str] = "/v5/order/realtime"
BYBIT_ENDPOINT_DEPOSIT_ADDRESS: Final[str] = "/v5/asset/deposit/query-address"
BYBIT_ENDPOINT_WITHDRAW: Final[str] = "/v5/asset/withdraw/create"
BYBIT_ENDPOINT_DEPOSITS: Final[str] = "/v5/asset/deposit/query-record"

BYBIT_RECV_WINDOW_MS: Final[int] = 5000

# Bybit deposit record status codes
BYBIT_DEPOSIT_STATUS: Final[dict[int, str]] = {
    0: "pending",
    1: "pending",
    2: "pending",
    3: "completed",
    4: "failed",
    10011: "pending",
    10012: "completed",
}


# =============================================================================
# Trading Fees (taker, as fractions)
# =============================================================================

DEFAULT_FEE_RATE: Final[Decimal] = Decimal("0.001")

DEFAULT_FEE_SCHEDULE: Final[dict[str, Decimal]] = {
    "binance": Decimal("0.001"),
    "gateio": Decimal("0.002"),
    "bybit": Decimal("0.001"),
    "kraken": Decimal("0.0026"),
    "mexc": Decimal("0.002"),
}


# =============================================================================
# Trading Constraints
# =============================================================================

# Minimum net profit fraction to report or execute (0.1%)
DEFAULT_MIN_PROFIT_THRESHOLD: Final[Decimal] = Decimal("0.001")

# Default trade size in quote currency
DEFAULT_CAPITAL_AMOUNT: Final[Decimal] = Decimal("100")

# Dust floor in USDT
MIN_TRADE_USDT: Final[Decimal] = Decimal("10")

# Upper bound on a single trade in quote currency
MAX_TRADE_USDT: Final[Decimal] = Decimal("1000")

# Capital adjustment: fraction of free balance used and its cap
SAFE_BALANCE_FRACTION: Final[Decimal] = Decimal("0.9")
MAX_ADJUSTED_TRADE_USDT: Final[Decimal] = Decimal("50")

# Quote currency all symbols are priced in
QUOTE_CURRENCY: Final[str] = "USDT"


# =============================================================================
# Market Data
# =============================================================================

# Quotes older than this are ignored by the detector
DEFAULT_MAX_UPDATE_AGE_MS: Final[int] = 30_000

# Interval between REST price polls per exchange
DEFAULT_POLL_INTERVAL_S: Final[float] = 5.0

# Interval between detection cycles
DEFAULT_DETECTION_INTERVAL_S: Final[float] = 1.0

# Streaming updates smaller than this relative change only refresh freshness
PRICE_CHANGE_THRESHOLD: Final[Decimal] = Decimal("0.0001")

# Ingest channel capacity
PRICE_QUEUE_SIZE: Final[int] = 10_000


# =============================================================================
# Transfer Bridge
# =============================================================================

TRANSFER_TIMEOUT_TESTNET_MS: Final[int] = 5_000
TRANSFER_TIMEOUT_LIVE_MS: Final[int] = 300_000

TRANSFER_POLL_INTERVAL_TESTNET_MS: Final[int] = 100
TRANSFER_POLL_INTERVAL_LIVE_MS: Final[int] = 10_000

# Deposits this much older than the withdrawal are never matched
DEPOSIT_MATCH_WINDOW_MS: Final[int] = 60_000

# Relative tolerance when matching a deposit by amount
DEPOSIT_AMOUNT_TOLERANCE: Final[Decimal] = Decimal("0.01")

DEFAULT_WITHDRAWAL_NETWORK: Final[str] = "TRX"


# =============================================================================
# Network / Retry
# =============================================================================

DEFAULT_REQUEST_TIMEOUT_S: Final[float] = 10.0
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_RETRY_BACKOFF_S: Final[float] = 1.0
MAX_RETRY_BACKOFF_S: Final[float] = 30.0

# Writes of a trade's terminal record before giving up on the audit entry
TERMINAL_RECORD_WRITE_ATTEMPTS: Final[int] = 2


# =============================================================================
# Reconnection Strategy
# =============================================================================

MIN_RECONNECT_DELAY: Final[float] = 1.0  # seconds
MAX_RECONNECT_DELAY: Final[float] = 30.0  # seconds
RECONNECT_MULTIPLIER: Final[float] = 2.0


# =============================================================================
# Rate Limiting
# =============================================================================

DEFAULT_REQUESTS_PER_SECOND: Final[int] = 10
DEFAULT_ORDERS_PER_SECOND: Final[int] = 5
REQUEST_WEIGHT_PER_MINUTE: Final[int] = 1200


# =============================================================================
# WebSocket Configuration
# =============================================================================

WS_PING_INTERVAL: Final[float] = 20.0  # seconds
WS_PING_TIMEOUT: Final[float] = 60.0  # seconds
WS_MAX_MESSAGE_SIZE: Final[int] = 10 * 1024 * 1024  # 10MB
WS_CLOSE_TIMEOUT: Final[float] = 5.0  # seconds


# =============================================================================
# Order Configuration
# =============================================================================

ORDER_TYPE_MARKET: Final[str] = "MARKET"
ORDER_TYPE_LIMIT: Final[str] = "LIMIT"

SIDE_BUY: Final[str] = "BUY"
SIDE_SELL: Final[str] = "SELL"


# =============================================================================
# Precision & Formatting
# =============================================================================

QUANTITY_PRECISION: Final[int] = 8
PRICE_PRECISION: Final[int] = 8


# =============================================================================
# Logging & Telemetry
# =============================================================================

LOG_FORMAT: Final[str] = "%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

# Maximum log queue size
MAX_LOG_QUEUE_SIZE: Final[int] = 10_000

# Interval between stats log lines (seconds)
STATS_REPORT_INTERVAL: Final[float] = 60.0
