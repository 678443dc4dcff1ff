"""
Binance spot adapter.

REST surface needed by the arbitrage pipeline: tickers, account
balances, market orders and the capital (deposit/withdraw) endpoints.
Signed requests use HMAC-SHA256 over the url-encoded parameters.
"""

import logging
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

from crossarb.config.constants import (
    BINANCE_DEPOSIT_STATUS,
    BINANCE_ENDPOINT_ACCOUNT,
    BINANCE_ENDPOINT_DEPOSIT_ADDRESS,
    BINANCE_ENDPOINT_DEPOSITS,
    BINANCE_ENDPOINT_EXCHANGE_INFO,
    BINANCE_ENDPOINT_ORDER,
    BINANCE_ENDPOINT_TICKER_PRICE,
    BINANCE_ENDPOINT_WITHDRAW,
    ORDER_TYPE_MARKET,
)
from crossarb.config.exchanges import BINANCE, ExchangeConfig
from crossarb.core.errors import ExchangeAPIError, UnknownSymbolError
from crossarb.core.types import (
    Deposit,
    DepositAddress,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderStatus,
    WithdrawalRequest,
    WithdrawalResult,
)
from crossarb.exchange.base import BaseExchangeAdapter, PreparedRequest
from crossarb.exchange.models import (
    BinanceAccount,
    BinanceDeposit,
    BinanceDepositAddress,
    BinanceExchangeInfo,
    BinanceOrder,
    BinanceTickerPrice,
    BinanceWithdrawal,
)
from crossarb.exchange.rate_limiter import RateLimiter
from crossarb.execution.signer import RequestSigner
from crossarb.utils.math import format_decimal


logger = logging.getLogger(__name__)


# Binance error code for an unknown symbol
INVALID_SYMBOL_CODE = -1121

_ORDER_STATUS = {
    "NEW": OrderStatus.NEW,
    "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELLED,
    "PENDING_CANCEL": OrderStatus.CANCELLED,
    "REJECTED": OrderStatus.REJECTED,
    "EXPIRED": OrderStatus.EXPIRED,
    "EXPIRED_IN_MATCH": OrderStatus.EXPIRED,
}


class BinanceAdapter(BaseExchangeAdapter):
    """Binance implementation of the exchange adapter interface."""

    def __init__(
        self,
        testnet: bool,
        enabled: bool = True,
        api_key: str | None = None,
        api_secret: str | None = None,
        fee: Decimal | None = None,
        rate_limiter: RateLimiter | None = None,
        config: ExchangeConfig = BINANCE,
    ) -> None:
        super().__init__(
            config=config,
            testnet=testnet,
            enabled=enabled,
            api_key=api_key,
            api_secret=api_secret,
            fee=fee,
            rate_limiter=rate_limiter,
        )
        self._signer = RequestSigner(api_secret) if api_secret else None

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        if self._api_key:
            headers["X-MBX-APIKEY"] = self._api_key
        return headers

    def _prepare(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        signed: bool,
    ) -> PreparedRequest:
        """Sign if needed; POST parameters travel as a form body."""
        payload = dict(params or {})
        if signed and self._signer is not None:
            payload = self._signer.create_signed_params(payload, recv_window=5000)

        url = f"{self._base_url}{path}"
        if method == "POST":
            return PreparedRequest(
                method=method,
                url=url,
                body=urlencode(payload),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        return PreparedRequest(method=method, url=url, params=payload or None)

    def _error_from_payload(self, status: int, data: Any, text: str) -> ExchangeAPIError:
        if isinstance(data, dict):
            code = data.get("code", status)
            msg = data.get("msg", text)
        else:
            code, msg = status, text
        return ExchangeAPIError(self.name, f"API error {code}: {msg}", code=code, status=status)

    # =========================================================================
    # Market Data
    # =========================================================================

    async def fetch_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        """Last prices from the all-symbols ticker, filtered to ``symbols``."""
        data = await self._request("GET", BINANCE_ENDPOINT_TICKER_PRICE, weight=4)
        wanted = set(symbols)

        prices: dict[str, Decimal] = {}
        for entry in data:
            ticker = BinanceTickerPrice.model_validate(entry)
            canonical = self._mapper.to_canonical(ticker.symbol)
            if canonical in wanted and ticker.price > 0:
                prices[canonical] = ticker.price
        return prices

    async def check_trading_pair_available(self, symbol: str) -> bool:
        """Check the symbol's trading status in exchange info."""
        try:
            native = self._mapper.to_native(symbol)
            data = await self._request(
                "GET", BINANCE_ENDPOINT_EXCHANGE_INFO, {"symbol": native}, weight=2
            )
        except UnknownSymbolError:
            return False
        except ExchangeAPIError as e:
            if e.code == INVALID_SYMBOL_CODE:
                return False
            raise

        info = BinanceExchangeInfo.model_validate(data)
        return any(s.symbol == native and s.is_trading for s in info.symbols)

    # =========================================================================
    # Account & Orders
    # =========================================================================

    async def get_balance(self, asset: str | None = None) -> dict[str, Decimal]:
        """Free balances from the account endpoint."""
        data = await self._request("GET", BINANCE_ENDPOINT_ACCOUNT, signed=True, weight=20)
        balances = BinanceAccount.model_validate(data).free_balances()
        if asset is not None:
            key = asset.upper()
            return {key: balances.get(key, Decimal("0"))}
        return {k: v for k, v in balances.items() if v > 0}

    async def create_order(self, request: OrderRequest) -> OrderResult:
        """Place a market order for a base-asset quantity."""
        precision = self.quantity_precision(request.symbol)
        params = {
            "symbol": self._mapper.to_native(request.symbol),
            "side": request.side.value,
            "type": ORDER_TYPE_MARKET,
            "quantity": format_decimal(request.quantity, precision),
            "newOrderRespType": "FULL",
        }

        data = await self._request(
            "POST", BINANCE_ENDPOINT_ORDER, params, signed=True, order=True, idempotent=False
        )
        order = BinanceOrder.model_validate(data)
        logger.info(
            f"binance order {order.order_id} {order.side} {params['quantity']} "
            f"{order.symbol}: {order.status}"
        )

        return OrderResult(
            order_id=str(order.order_id),
            symbol=request.symbol,
            side=OrderSide(order.side),
            status=_ORDER_STATUS.get(order.status, OrderStatus.REJECTED),
            filled_quantity=order.executed_qty,
            average_price=order.avg_fill_price,
            fee=order.total_commission if order.fills else None,
            raw=data,
        )

    # =========================================================================
    # Capital (Deposits / Withdrawals)
    # =========================================================================

    async def get_deposit_address(self, currency: str, network: str | None = None) -> DepositAddress:
        """Deposit address for a coin on a network."""
        params = {"coin": currency.upper()}
        if network:
            params["network"] = network

        data = await self._request("GET", BINANCE_ENDPOINT_DEPOSIT_ADDRESS, params, signed=True)
        address = BinanceDepositAddress.model_validate(data)
        return DepositAddress(
            currency=address.coin,
            address=address.address,
            network=network or "",
            tag=address.tag or None,
        )

    async def withdraw(self, request: WithdrawalRequest) -> WithdrawalResult:
        """Submit a withdrawal; Binance returns an id, the tx hash comes later."""
        params = {
            "coin": request.currency.upper(),
            "address": request.address,
            "network": request.network,
            "amount": format_decimal(request.amount),
        }
        if request.tag:
            params["addressTag"] = request.tag

        data = await self._request(
            "POST", BINANCE_ENDPOINT_WITHDRAW, params, signed=True, idempotent=False
        )
        result = BinanceWithdrawal.model_validate(data)
        return WithdrawalResult(status="pending", tx_id=None, withdrawal_id=result.id)

    async def get_deposits(self, currency: str) -> list[Deposit]:
        """Recent deposits of a coin."""
        data = await self._request(
            "GET", BINANCE_ENDPOINT_DEPOSITS, {"coin": currency.upper()}, signed=True
        )
        deposits = []
        for entry in data:
            deposit = BinanceDeposit.model_validate(entry)
            deposits.append(
                Deposit(
                    currency=deposit.coin,
                    amount=deposit.amount,
                    status=BINANCE_DEPOSIT_STATUS.get(deposit.status, "pending"),
                    timestamp_ms=deposit.insert_time,
                    tx_id=deposit.tx_id,
                )
            )
        return deposits
