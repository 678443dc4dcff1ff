"""Configuration module for the arbitrage engine."""

from crossarb.config.constants import (
    DEFAULT_FEE_SCHEDULE,
    DEFAULT_MAX_UPDATE_AGE_MS,
    DEFAULT_MIN_PROFIT_THRESHOLD,
    MIN_TRADE_USDT,
)
from crossarb.config.exchanges import EXCHANGES, SUPPORTED_SYMBOLS, ExchangeConfig
from crossarb.config.settings import Settings, get_settings


__all__ = [
    "DEFAULT_FEE_SCHEDULE",
    "DEFAULT_MAX_UPDATE_AGE_MS",
    "DEFAULT_MIN_PROFIT_THRESHOLD",
    "EXCHANGES",
    "ExchangeConfig",
    "MIN_TRADE_USDT",
    "SUPPORTED_SYMBOLS",
    "Settings",
    "get_settings",
]
