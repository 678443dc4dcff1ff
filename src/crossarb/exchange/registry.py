"""
Exchange registry.

Owns one adapter per configured exchange for the current trading mode.
Switching mode closes every adapter and builds a fresh set, so
credentials and endpoints always match the mode.
"""

import asyncio
import logging
from collections.abc import Callable
from decimal import Decimal
from typing import Any

from crossarb.config.exchanges import EXCHANGES
from crossarb.config.settings import Settings
from crossarb.core.errors import ExchangeError
from crossarb.core.types import ExchangeAdapter, ExchangeCapability, FeeSchedule, TradingMode
from crossarb.exchange.base import BaseExchangeAdapter
from crossarb.exchange.binance import BinanceAdapter
from crossarb.exchange.bybit import BybitAdapter
from crossarb.exchange.gateio import GateioAdapter


logger = logging.getLogger(__name__)


ADAPTER_CLASSES: dict[str, type[BaseExchangeAdapter]] = {
    "binance": BinanceAdapter,
    "gateio": GateioAdapter,
    "bybit": BybitAdapter,
}

AdapterFactory = Callable[[str, Settings, TradingMode], ExchangeAdapter]


def build_adapter(name: str, settings: Settings, mode: TradingMode) -> ExchangeAdapter:
    """
    Build the REST adapter for one exchange.

    Args:
        name: Exchange name.
        settings: Application settings.
        mode: Trading mode selecting endpoints and credentials.

    Returns:
        Configured adapter; without credentials it can still read prices.
    """
    adapter_cls = ADAPTER_CLASSES[name]
    credentials = settings.credentials_for(name, mode.value)
    api_key, api_secret = credentials if credentials else (None, None)

    return adapter_cls(
        testnet=mode == TradingMode.TESTNET,
        enabled=settings.is_exchange_enabled(name),
        api_key=api_key,
        api_secret=api_secret,
        fee=settings.fee_for(name),
    )


class ExchangeRegistry:
    """
    Lookup of exchange adapters by name.

    Features:
    - One adapter per exchange for the active trading mode
    - Enabled / trading-enabled views
    - Fee schedule and quantity precision for the detector
    - Atomic rebuild on trading mode change
    """

    def __init__(
        self,
        settings: Settings,
        factory: AdapterFactory | None = None,
        names: list[str] | None = None,
    ) -> None:
        """
        Initialize registry and build adapters.

        Args:
            settings: Application settings.
            factory: Adapter constructor, defaults to the REST adapters.
            names: Exchanges to build, defaults to every supported one.
        """
        self._settings = settings
        self._factory = factory or build_adapter
        self._names = list(names) if names is not None else list(ADAPTER_CLASSES)
        self._mode = TradingMode(settings.trading_mode)
        self._adapters: dict[str, ExchangeAdapter] = self._build(self._mode)

    def _build(self, mode: TradingMode) -> dict[str, ExchangeAdapter]:
        adapters = {}
        for name in self._names:
            adapter = self._factory(name, self._settings, mode)
            adapters[name] = adapter
            logger.info(
                f"Registered {name} ({mode.value}), "
                f"trading {'enabled' if adapter.is_trading_enabled() else 'disabled'}"
            )
        return adapters

    # =========================================================================
    # Lookups
    # =========================================================================

    @property
    def mode(self) -> TradingMode:
        """Current trading mode."""
        return self._mode

    @property
    def settings(self) -> Settings:
        """Settings the adapters were built from."""
        return self._settings

    def names(self) -> list[str]:
        """Names of all registered exchanges."""
        return list(self._adapters)

    def get(self, name: str) -> ExchangeAdapter | None:
        """Get adapter by name."""
        return self._adapters.get(name)

    def is_enabled(self, name: str) -> bool:
        """Whether an exchange participates in price polling and detection."""
        return name in self._adapters and self._settings.is_exchange_enabled(name)

    def get_enabled(self) -> dict[str, ExchangeAdapter]:
        """Adapters of enabled exchanges."""
        return {n: a for n, a in self._adapters.items() if self.is_enabled(n)}

    def get_trading_enabled(self) -> dict[str, ExchangeAdapter]:
        """Adapters that can place orders right now."""
        return {n: a for n, a in self._adapters.items() if a.is_trading_enabled()}

    def fee_schedule(self) -> FeeSchedule:
        """Taker fees of all registered exchanges."""
        return FeeSchedule({n: a.fee for n, a in self._adapters.items()})

    def precision_lookup(self, exchange: str, symbol: str) -> int:
        """Quantity precision for an exchange/symbol pair."""
        adapter = self._adapters.get(exchange)
        if adapter is None:
            return EXCHANGES[exchange].quantity_precision if exchange in EXCHANGES else 8
        return adapter.quantity_precision(symbol)

    # =========================================================================
    # Status
    # =========================================================================

    def capabilities(self) -> list[ExchangeCapability]:
        """Capability summary per exchange."""
        result = []
        for name, adapter in self._adapters.items():
            config = EXCHANGES.get(name)
            result.append(
                ExchangeCapability(
                    name=name,
                    enabled=self.is_enabled(name),
                    trading_enabled=adapter.is_trading_enabled(),
                    testnet=adapter.testnet,
                    fee=adapter.fee,
                    quantity_precision=config.quantity_precision if config else 8,
                )
            )
        return result

    def get_status(self) -> dict[str, Any]:
        """Registry status for display."""
        return {
            "mode": self._mode.value,
            "exchanges": {
                c.name: {
                    "enabled": c.enabled,
                    "trading_enabled": c.trading_enabled,
                    "testnet": c.testnet,
                    "fee": str(c.fee),
                }
                for c in self.capabilities()
            },
            "trading_enabled_count": len(self.get_trading_enabled()),
        }

    async def get_all_balances(self, asset: str | None = None) -> dict[str, dict[str, Decimal]]:
        """
        Fetch balances from every trading-enabled exchange concurrently.

        Exchanges whose call fails are reported with an empty mapping.
        """
        adapters = self.get_trading_enabled()
        results = await asyncio.gather(
            *(a.get_balance(asset) for a in adapters.values()),
            return_exceptions=True,
        )

        balances: dict[str, dict[str, Decimal]] = {}
        for name, result in zip(adapters, results, strict=True):
            if isinstance(result, ExchangeError):
                logger.warning(f"Balance fetch failed on {name}: {result}")
                balances[name] = {}
            elif isinstance(result, BaseException):
                raise result
            else:
                balances[name] = result
        return balances

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def set_trading_mode(self, mode: TradingMode | str) -> None:
        """
        Switch trading mode, rebuilding every adapter.

        Args:
            mode: New trading mode.
        """
        new_mode = TradingMode(mode)
        if new_mode == self._mode:
            return

        await self.close()
        self._settings = self._settings.model_copy(update={"trading_mode": new_mode.value})
        self._adapters = self._build(new_mode)
        self._mode = new_mode
        logger.info(f"Trading mode switched to {new_mode.value}")

    async def close(self) -> None:
        """Close all adapters."""
        for name, adapter in self._adapters.items():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing {name}: {e}")

    def __len__(self) -> int:
        return len(self._adapters)
