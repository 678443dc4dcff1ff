"""
Application settings with environment variable support.

Uses Pydantic Settings for type-safe configuration with automatic
environment variable loading and validation.
"""

import warnings
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crossarb.config.constants import (
    DEFAULT_CAPITAL_AMOUNT,
    DEFAULT_DETECTION_INTERVAL_S,
    DEFAULT_MAX_UPDATE_AGE_MS,
    DEFAULT_MIN_PROFIT_THRESHOLD,
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_WITHDRAWAL_NETWORK,
    MAX_ADJUSTED_TRADE_USDT,
    MAX_TRADE_USDT,
    MIN_TRADE_USDT,
    SAFE_BALANCE_FRACTION,
    TRANSFER_POLL_INTERVAL_LIVE_MS,
    TRANSFER_POLL_INTERVAL_TESTNET_MS,
    TRANSFER_TIMEOUT_LIVE_MS,
    TRANSFER_TIMEOUT_TESTNET_MS,
)
from crossarb.config.exchanges import EXCHANGES, SUPPORTED_SYMBOLS


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Sensitive values use SecretStr for safe handling. Credentials are
    kept per trading mode so switching mode swaps the key set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Exchange Credentials
    # =========================================================================

    binance_api_key: SecretStr | None = Field(default=None, description="Binance live API key")
    binance_api_secret: SecretStr | None = Field(default=None, description="Binance live API secret")
    binance_testnet_api_key: SecretStr | None = Field(
        default=None,
        description="Binance testnet API key",
    )
    binance_testnet_api_secret: SecretStr | None = Field(
        default=None,
        description="Binance testnet API secret",
    )

    gateio_api_key: SecretStr | None = Field(default=None, description="Gate.io live API key")
    gateio_api_secret: SecretStr | None = Field(default=None, description="Gate.io live API secret")
    gateio_testnet_api_key: SecretStr | None = Field(
        default=None,
        description="Gate.io testnet API key",
    )
    gateio_testnet_api_secret: SecretStr | None = Field(
        default=None,
        description="Gate.io testnet API secret",
    )

    bybit_api_key: SecretStr | None = Field(default=None, description="Bybit live API key")
    bybit_api_secret: SecretStr | None = Field(default=None, description="Bybit live API secret")
    bybit_testnet_api_key: SecretStr | None = Field(
        default=None,
        description="Bybit testnet API key",
    )
    bybit_testnet_api_secret: SecretStr | None = Field(
        default=None,
        description="Bybit testnet API secret",
    )

    # =========================================================================
    # Exchange Selection
    # =========================================================================

    binance_enabled: bool = Field(default=True, description="Poll and trade on Binance")
    gateio_enabled: bool = Field(default=True, description="Poll and trade on Gate.io")
    bybit_enabled: bool = Field(default=False, description="Poll and trade on Bybit")

    binance_fee: Decimal | None = Field(
        default=None,
        ge=0,
        le=Decimal("0.01"),
        description="Override Binance taker fee fraction",
    )
    gateio_fee: Decimal | None = Field(
        default=None,
        ge=0,
        le=Decimal("0.01"),
        description="Override Gate.io taker fee fraction",
    )
    bybit_fee: Decimal | None = Field(
        default=None,
        ge=0,
        le=Decimal("0.01"),
        description="Override Bybit taker fee fraction",
    )

    # =========================================================================
    # Trading Configuration
    # =========================================================================

    trading_mode: Literal["testnet", "live"] = Field(
        default="testnet",
        description="Exchange environment used for prices and orders",
    )

    execution_mode: Literal["simultaneous", "transfer"] = Field(
        default="simultaneous",
        description="Bridge between legs: pre-funded inventory or on-chain transfer",
    )

    symbols: list[str] = Field(
        default_factory=lambda: list(SUPPORTED_SYMBOLS),
        description="Canonical symbols to watch",
    )

    min_profit_threshold: Decimal = Field(
        default=DEFAULT_MIN_PROFIT_THRESHOLD,
        ge=0,
        le=Decimal("0.1"),
        description="Minimum net profit fraction (e.g., 0.001 = 0.1%)",
    )

    capital_amount: Decimal = Field(
        default=DEFAULT_CAPITAL_AMOUNT,
        gt=0,
        description="Default trade size in quote currency",
    )

    min_trade_usdt: Decimal = Field(
        default=MIN_TRADE_USDT,
        gt=0,
        description="Dust floor: trades below this value are never attempted",
    )

    max_trade_usdt: Decimal = Field(
        default=MAX_TRADE_USDT,
        gt=0,
        description="Largest capital amount accepted for one trade",
    )

    dry_run: bool = Field(
        default=True,
        description="Simulate order legs without sending real orders",
    )

    auto_execute: bool = Field(
        default=False,
        description="Execute the best opportunity of each detection cycle",
    )

    max_concurrent_trades: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Upper bound on trades in flight when auto-executing",
    )

    user_id: str = Field(default="default", description="Owner recorded on trade records")

    # =========================================================================
    # Capital Adjustment
    # =========================================================================

    adjust_capital: bool | None = Field(
        default=None,
        description="Shrink trades to available balance (defaults to on in testnet)",
    )

    safe_balance_fraction: Decimal = Field(
        default=SAFE_BALANCE_FRACTION,
        gt=0,
        le=1,
        description="Fraction of free quote balance used when shrinking a trade",
    )

    max_adjusted_trade_usdt: Decimal = Field(
        default=MAX_ADJUSTED_TRADE_USDT,
        gt=0,
        description="Cap on a shrunk trade",
    )

    # =========================================================================
    # Market Data
    # =========================================================================

    max_update_age_ms: int = Field(
        default=DEFAULT_MAX_UPDATE_AGE_MS,
        ge=1000,
        description="Quotes older than this are ignored",
    )

    poll_interval_s: float = Field(
        default=DEFAULT_POLL_INTERVAL_S,
        gt=0,
        description="REST price polling interval per exchange",
    )

    detection_interval_s: float = Field(
        default=DEFAULT_DETECTION_INTERVAL_S,
        gt=0,
        description="Interval between detection cycles",
    )

    use_streaming: bool = Field(
        default=True,
        description="Subscribe to WebSocket tickers where the exchange offers them",
    )

    # =========================================================================
    # Transfer Bridge
    # =========================================================================

    transfer_timeout_ms: int | None = Field(
        default=None,
        ge=100,
        description="Deposit wait timeout (defaults depend on trading mode)",
    )

    transfer_poll_interval_ms: int | None = Field(
        default=None,
        ge=10,
        description="Deposit poll interval (defaults depend on trading mode)",
    )

    withdrawal_network: str = Field(
        default=DEFAULT_WITHDRAWAL_NETWORK,
        description="Chain used for withdrawals between exchanges",
    )

    # =========================================================================
    # Persistence & Logging
    # =========================================================================

    history_path: Path | None = Field(
        default=Path("data/trades.jsonl"),
        description="Trade history file (JSON lines); unset for in-memory only",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )

    log_file: Path | None = Field(default=None, description="Optional log file")

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("symbols", mode="after")
    @classmethod
    def validate_symbols(cls, v: list[str]) -> list[str]:
        """Normalize and reject unknown symbols."""
        normalized = [s.strip().upper() for s in v if s.strip()]
        unknown = [s for s in normalized if s not in SUPPORTED_SYMBOLS]
        if unknown:
            raise ValueError(f"Unsupported symbols: {', '.join(unknown)}")
        if not normalized:
            raise ValueError("At least one symbol is required")
        return normalized

    @field_validator("min_profit_threshold", mode="after")
    @classmethod
    def validate_profit_threshold(cls, v: Decimal) -> Decimal:
        """Warn if profit threshold is very low."""
        if v < Decimal("0.0001"):
            warnings.warn(
                f"Profit threshold {v} is very low, may result in losses after slippage",
                stacklevel=2,
            )
        return v

    @model_validator(mode="after")
    def validate_trade_bounds(self) -> "Settings":
        """Ensure the capital bounds are consistent."""
        if self.min_trade_usdt > self.max_trade_usdt:
            raise ValueError("min_trade_usdt cannot exceed max_trade_usdt")
        if self.capital_amount > self.max_trade_usdt:
            raise ValueError("capital_amount cannot exceed max_trade_usdt")
        return self

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_testnet(self) -> bool:
        """Whether the engine talks to exchange test environments."""
        return self.trading_mode == "testnet"

    @property
    def capital_adjustment_enabled(self) -> bool:
        """Capital adjustment defaults to on in testnet and off in live."""
        if self.adjust_capital is None:
            return self.is_testnet
        return self.adjust_capital

    @property
    def effective_transfer_timeout_ms(self) -> int:
        """Deposit wait timeout for the current mode."""
        if self.transfer_timeout_ms is not None:
            return self.transfer_timeout_ms
        return TRANSFER_TIMEOUT_TESTNET_MS if self.is_testnet else TRANSFER_TIMEOUT_LIVE_MS

    @property
    def effective_transfer_poll_interval_ms(self) -> int:
        """Deposit poll interval for the current mode."""
        if self.transfer_poll_interval_ms is not None:
            return self.transfer_poll_interval_ms
        if self.is_testnet:
            return TRANSFER_POLL_INTERVAL_TESTNET_MS
        return TRANSFER_POLL_INTERVAL_LIVE_MS

    def is_exchange_enabled(self, exchange: str) -> bool:
        """Check the enabled flag of a known exchange."""
        return bool(getattr(self, f"{exchange}_enabled", False))

    def fee_for(self, exchange: str) -> Decimal:
        """Taker fee for an exchange, honouring overrides."""
        override = getattr(self, f"{exchange}_fee", None)
        if override is not None:
            return override
        return EXCHANGES[exchange].fee

    def credentials_for(
        self,
        exchange: str,
        trading_mode: str | None = None,
    ) -> tuple[str, str] | None:
        """
        Resolve API credentials for an exchange and mode.

        Args:
            exchange: Exchange name.
            trading_mode: Mode to resolve for, defaults to the current one.

        Returns:
            (key, secret) when both are present and non-empty, else None.
        """
        mode = trading_mode or self.trading_mode
        prefix = f"{exchange}_testnet" if mode == "testnet" else exchange
        key: SecretStr | None = getattr(self, f"{prefix}_api_key", None)
        secret: SecretStr | None = getattr(self, f"{prefix}_api_secret", None)
        if key is None or secret is None:
            return None
        key_value = key.get_secret_value().strip()
        secret_value = secret.get_secret_value().strip()
        if not key_value or not secret_value:
            return None
        return key_value, secret_value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are loaded only once.
    Clear cache with `get_settings.cache_clear()` if needed.
    """
    return Settings()
