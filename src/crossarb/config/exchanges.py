"""
Static per-exchange configuration.

Endpoints, fees, retry budgets and the declarative symbol tables that map
canonical symbols (``BTCUSDT``) to each exchange's native spelling.
Everything here is immutable; runtime switches (enabled, credentials)
come from Settings.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Final, Mapping

from crossarb.config.constants import (
    BINANCE_REST_TESTNET_URL,
    BINANCE_REST_URL,
    BINANCE_WS_TESTNET_URL,
    BINANCE_WS_URL,
    BYBIT_REST_TESTNET_URL,
    BYBIT_REST_URL,
    BYBIT_WS_TESTNET_URL,
    BYBIT_WS_URL,
    DEFAULT_FEE_SCHEDULE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT_S,
    DEFAULT_RETRY_BACKOFF_S,
    GATEIO_REST_TESTNET_URL,
    GATEIO_REST_URL,
    QUANTITY_PRECISION,
)


# =============================================================================
# Canonical Symbols
# =============================================================================

# canonical symbol -> (base asset, quote asset)
SUPPORTED_SYMBOLS: Final[Mapping[str, tuple[str, str]]] = MappingProxyType(
    {
        "BTCUSDT": ("BTC", "USDT"),
        "ETHUSDT": ("ETH", "USDT"),
        "BNBUSDT": ("BNB", "USDT"),
        "SOLUSDT": ("SOL", "USDT"),
        "XRPUSDT": ("XRP", "USDT"),
        "ADAUSDT": ("ADA", "USDT"),
        "DOGEUSDT": ("DOGE", "USDT"),
        "TRXUSDT": ("TRX", "USDT"),
        "LTCUSDT": ("LTC", "USDT"),
        "LINKUSDT": ("LINK", "USDT"),
        "DOTUSDT": ("DOT", "USDT"),
        "AVAXUSDT": ("AVAX", "USDT"),
    }
)


# =============================================================================
# Exchange Definitions
# =============================================================================


@dataclass(slots=True, frozen=True)
class ExchangeConfig:
    """
    Immutable description of one exchange.

    Symbol tables are written out per exchange rather than derived by
    string manipulation, and validated by SymbolMapper at startup.
    """

    name: str
    display_name: str
    fee: Decimal
    rest_url: str
    rest_testnet_url: str
    symbols: Mapping[str, str]
    ws_url: str | None = None
    ws_testnet_url: str | None = None
    quantity_precision: int = QUANTITY_PRECISION
    timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff_s: float = DEFAULT_RETRY_BACKOFF_S
    precision_overrides: Mapping[str, int] = field(default_factory=dict)

    def base_url(self, testnet: bool) -> str:
        """REST base URL for the given mode."""
        return self.rest_testnet_url if testnet else self.rest_url

    def stream_url(self, testnet: bool) -> str | None:
        """WebSocket base URL for the given mode, if the exchange streams."""
        return self.ws_testnet_url if testnet else self.ws_url

    def precision_for(self, symbol: str) -> int:
        """Quantity precision for a canonical symbol."""
        return self.precision_overrides.get(symbol, self.quantity_precision)


BINANCE: Final[ExchangeConfig] = ExchangeConfig(
    name="binance",
    display_name="Binance",
    fee=DEFAULT_FEE_SCHEDULE["binance"],
    rest_url=BINANCE_REST_URL,
    rest_testnet_url=BINANCE_REST_TESTNET_URL,
    ws_url=BINANCE_WS_URL,
    ws_testnet_url=BINANCE_WS_TESTNET_URL,
    timeout_s=5.0,
    symbols=MappingProxyType({symbol: symbol for symbol in SUPPORTED_SYMBOLS}),
    precision_overrides=MappingProxyType(
        {
            "BTCUSDT": 5,
            "ETHUSDT": 4,
            "BNBUSDT": 3,
            "SOLUSDT": 3,
            "XRPUSDT": 1,
            "ADAUSDT": 1,
            "DOGEUSDT": 0,
            "TRXUSDT": 1,
            "LTCUSDT": 3,
            "LINKUSDT": 2,
            "DOTUSDT": 2,
            "AVAXUSDT": 2,
        }
    ),
)

GATEIO: Final[ExchangeConfig] = ExchangeConfig(
    name="gateio",
    display_name="Gate.io",
    fee=DEFAULT_FEE_SCHEDULE["gateio"],
    rest_url=GATEIO_REST_URL,
    rest_testnet_url=GATEIO_REST_TESTNET_URL,
    timeout_s=10.0,
    symbols=MappingProxyType(
        {
            "BTCUSDT": "BTC_USDT",
            "ETHUSDT": "ETH_USDT",
            "BNBUSDT": "BNB_USDT",
            "SOLUSDT": "SOL_USDT",
            "XRPUSDT": "XRP_USDT",
            "ADAUSDT": "ADA_USDT",
            "DOGEUSDT": "DOGE_USDT",
            "TRXUSDT": "TRX_USDT",
            "LTCUSDT": "LTC_USDT",
            "LINKUSDT": "LINK_USDT",
            "DOTUSDT": "DOT_USDT",
            "AVAXUSDT": "AVAX_USDT",
        }
    ),
)

BYBIT: Final[ExchangeConfig] = ExchangeConfig(
    name="bybit",
    display_name="Bybit",
    fee=DEFAULT_FEE_SCHEDULE["bybit"],
    rest_url=BYBIT_REST_URL,
    rest_testnet_url=BYBIT_REST_TESTNET_URL,
    ws_url=BYBIT_WS_URL,
    ws_testnet_url=BYBIT_WS_TESTNET_URL,
    timeout_s=5.0,
    symbols=MappingProxyType({symbol: symbol for symbol in SUPPORTED_SYMBOLS}),
    precision_overrides=MappingProxyType(
        {
            "BTCUSDT": 6,
            "ETHUSDT": 5,
            "BNBUSDT": 3,
            "SOLUSDT": 3,
            "XRPUSDT": 2,
            "ADAUSDT": 2,
            "DOGEUSDT": 1,
            "TRXUSDT": 2,
            "LTCUSDT": 5,
            "LINKUSDT": 2,
            "DOTUSDT": 3,
            "AVAXUSDT": 3,
        }
    ),
)

EXCHANGES: Final[Mapping[str, ExchangeConfig]] = MappingProxyType(
    {
        BINANCE.name: BINANCE,
        GATEIO.name: GATEIO,
        BYBIT.name: BYBIT,
    }
)


def get_exchange_config(name: str) -> ExchangeConfig:
    """
    Look up the static configuration for an exchange.

    Raises:
        KeyError: If the exchange is not known.
    """
    try:
        return EXCHANGES[name.lower()]
    except KeyError:
        raise KeyError(f"Unknown exchange: {name}") from None
