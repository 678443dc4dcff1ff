"""
Shared async REST plumbing for exchange adapters.

Optimized for many small calls with:
- One pooled aiohttp session per adapter
- Fast JSON parsing with orjson
- Per-adapter rate limiting
- Bounded retries with exponential backoff
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import aiohttp
import orjson

from crossarb.config.constants import MAX_RETRY_BACKOFF_S
from crossarb.config.exchanges import ExchangeConfig
from crossarb.core.errors import (
    AuthenticationRequired,
    ExchangeAPIError,
    ExchangeError,
    ExchangeNetworkError,
)
from crossarb.core.types import (
    Deposit,
    DepositAddress,
    ExchangeCapability,
    OrderRequest,
    OrderResult,
    WithdrawalRequest,
    WithdrawalResult,
)
from crossarb.exchange.rate_limiter import RateLimiter
from crossarb.market.symbols import SymbolMapper


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PreparedRequest:
    """Request ready to send; rebuilt on every attempt so signatures stay fresh."""

    method: str
    url: str
    params: dict[str, Any] | None = None
    body: str | None = None
    headers: dict[str, str] = field(default_factory=dict)


class BaseExchangeAdapter(ABC):
    """
    Base class for REST exchange adapters.

    Subclasses implement request preparation (URL layout and signing)
    and the capability methods; retries, rate limiting and response
    decoding live here.
    """

    def __init__(
        self,
        config: ExchangeConfig,
        testnet: bool,
        enabled: bool = True,
        api_key: str | None = None,
        api_secret: str | None = None,
        fee: Decimal | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            config: Static exchange configuration.
            testnet: Use testnet endpoints.
            enabled: Whether the exchange participates at all.
            api_key: API key for the selected mode.
            api_secret: API secret for the selected mode.
            fee: Taker fee override.
            rate_limiter: Optional rate limiter instance.
        """
        self._config = config
        self._testnet = testnet
        self._enabled = enabled
        self._api_key = api_key or None
        self._api_secret = api_secret or None
        self._fee = config.fee if fee is None else fee
        self._base_url = config.base_url(testnet)
        self._rate_limiter = rate_limiter or RateLimiter()
        self._mapper = SymbolMapper.from_config(config)
        self._session: aiohttp.ClientSession | None = None

    # =========================================================================
    # Identity & Capability
    # =========================================================================

    @property
    def name(self) -> str:
        """Exchange identifier."""
        return self._config.name

    @property
    def testnet(self) -> bool:
        """Whether this adapter talks to the test environment."""
        return self._testnet

    @property
    def enabled(self) -> bool:
        """Whether the exchange participates in detection."""
        return self._enabled

    @property
    def fee(self) -> Decimal:
        """Taker fee fraction."""
        return self._fee

    @property
    def base_url(self) -> str:
        """REST base URL in use."""
        return self._base_url

    @property
    def mapper(self) -> SymbolMapper:
        """Symbol table of this exchange."""
        return self._mapper

    @property
    def has_credentials(self) -> bool:
        """API key and secret are both present."""
        return bool(self._api_key and self._api_secret)

    def quantity_precision(self, symbol: str) -> int:
        """Decimal places accepted for order quantities."""
        return self._config.precision_for(symbol)

    def is_trading_enabled(self) -> bool:
        """Enabled and holding credentials for the current mode."""
        return self._enabled and self.has_credentials

    def capability(self) -> ExchangeCapability:
        """Public status of this adapter."""
        return ExchangeCapability(
            name=self.name,
            enabled=self._enabled,
            trading_enabled=self.is_trading_enabled(),
            testnet=self._testnet,
            fee=self._fee,
            quantity_precision=self._config.quantity_precision,
        )

    def _require_credentials(self) -> None:
        """Raise if a signed endpoint cannot be called."""
        if not self.has_credentials:
            raise AuthenticationRequired(self.name, "API credentials not configured")

    # =========================================================================
    # Session Management
    # =========================================================================

    def _default_headers(self) -> dict[str, str]:
        """Headers sent with every request."""
        return {"Accept": "application/json"}

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=50,
                limit_per_host=20,
                keepalive_timeout=30,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers=self._default_headers(),
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_s),
                json_serialize=lambda x: orjson.dumps(x).decode(),
            )
        return self._session

    async def close(self) -> None:
        """Close the adapter session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "BaseExchangeAdapter":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # =========================================================================
    # Request Pipeline
    # =========================================================================

    @abstractmethod
    def _prepare(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        signed: bool,
    ) -> PreparedRequest:
        """Build URL, query, body and auth headers for one attempt."""

    @abstractmethod
    def _error_from_payload(self, status: int, data: Any, text: str) -> ExchangeAPIError:
        """Translate an error response into an ExchangeAPIError."""

    def _unwrap(self, data: Any) -> Any:
        """
        Extract the payload from a successful HTTP response.

        Exchanges that wrap errors in a 200 envelope raise here so the
        retry policy sees them.
        """
        return data

    async def _send(self, request: PreparedRequest) -> Any:
        """
        Send one HTTP request and decode the JSON response.

        Raises:
            ExchangeAPIError: On error responses.
            ExchangeNetworkError: On transport errors or timeouts.
        """
        session = await self._get_session()
        try:
            async with session.request(
                request.method,
                request.url,
                params=request.params,
                data=request.body,
                headers=request.headers,
            ) as response:
                text = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExchangeNetworkError(self.name, f"Network error: {e}") from e

        try:
            data = orjson.loads(text) if text else None
        except orjson.JSONDecodeError as e:
            if status >= 400:
                raise ExchangeAPIError(self.name, text[:200], status=status) from e
            raise ExchangeAPIError(self.name, f"Invalid JSON response: {e}", status=status) from e

        if status >= 400:
            raise self._error_from_payload(status, data, text)

        return data

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        signed: bool = False,
        weight: int = 1,
        order: bool = False,
        idempotent: bool = True,
    ) -> Any:
        """
        Make an API request with rate limiting and retries.

        Non-idempotent calls (orders, withdrawals) are only retried when
        the exchange rejected them for rate limiting, never on transport
        errors where the request may already have been processed.

        Args:
            method: HTTP method.
            path: Endpoint path relative to the base URL.
            params: Request parameters.
            signed: Whether the request requires authentication.
            weight: Request weight for rate limiting.
            order: Whether the request places an order.
            idempotent: Whether a repeat is harmless.

        Returns:
            Decoded JSON response.
        """
        if signed:
            self._require_credentials()

        max_retries = self._config.max_retries
        for attempt in range(max_retries + 1):
            await self._rate_limiter.acquire(weight, order=order)
            request = self._prepare(method, path, params, signed)
            try:
                return self._unwrap(await self._send(request))
            except ExchangeError as e:
                if attempt >= max_retries or not self._should_retry(e, idempotent):
                    raise
                delay = min(self._config.retry_backoff_s * (2**attempt), MAX_RETRY_BACKOFF_S)
                logger.warning(
                    f"{self.name} {method} {path} failed ({e}), "
                    f"retry {attempt + 1}/{max_retries} in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        raise ExchangeError(self.name, "retry loop exhausted")

    @staticmethod
    def _should_retry(error: ExchangeError, idempotent: bool) -> bool:
        """Decide whether an error is worth another attempt."""
        if isinstance(error, ExchangeAPIError):
            if error.status == 429:
                return True
            return idempotent and error.is_retryable
        if isinstance(error, ExchangeNetworkError):
            return idempotent
        return False

    # =========================================================================
    # Capability Surface
    # =========================================================================

    async def get_ticker_price(self, symbol: str) -> Decimal:
        """
        Fetch the last traded price of one symbol.

        Raises:
            ExchangeError: If the price is missing or the call fails.
        """
        prices = await self.fetch_prices([symbol])
        try:
            return prices[symbol]
        except KeyError:
            raise ExchangeError(self.name, f"No price for {symbol}") from None

    @abstractmethod
    async def fetch_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        """Last prices for canonical symbols; unknown ones are omitted."""

    @abstractmethod
    async def get_balance(self, asset: str | None = None) -> dict[str, Decimal]:
        """Free balances, optionally limited to one asset."""

    @abstractmethod
    async def create_order(self, request: OrderRequest) -> OrderResult:
        """Place an order."""

    @abstractmethod
    async def get_deposit_address(self, currency: str, network: str | None = None) -> DepositAddress:
        """Fetch a deposit address."""

    @abstractmethod
    async def withdraw(self, request: WithdrawalRequest) -> WithdrawalResult:
        """Initiate a withdrawal."""

    @abstractmethod
    async def get_deposits(self, currency: str) -> list[Deposit]:
        """Recent deposit history for a currency."""

    @abstractmethod
    async def check_trading_pair_available(self, symbol: str) -> bool:
        """Whether the symbol is currently tradable."""

    def __repr__(self) -> str:
        mode = "testnet" if self._testnet else "live"
        return f"<{type(self).__name__} {self.name} {mode} trading={self.is_trading_enabled()}>"
