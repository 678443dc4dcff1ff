"""Exchange adapters and registry."""

from crossarb.exchange.base import BaseExchangeAdapter, PreparedRequest
from crossarb.exchange.binance import BinanceAdapter
from crossarb.exchange.bybit import BybitAdapter
from crossarb.exchange.gateio import GateioAdapter
from crossarb.exchange.rate_limiter import RateLimiter, TokenBucket
from crossarb.exchange.registry import ADAPTER_CLASSES, ExchangeRegistry, build_adapter


__all__ = [
    "ADAPTER_CLASSES",
    "BaseExchangeAdapter",
    "BinanceAdapter",
    "BybitAdapter",
    "ExchangeRegistry",
    "GateioAdapter",
    "PreparedRequest",
    "RateLimiter",
    "TokenBucket",
    "build_adapter",
]
