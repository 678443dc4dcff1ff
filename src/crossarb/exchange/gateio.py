"""
Gate.io spot adapter (API v4).

Signed requests carry KEY/Timestamp/SIGN headers, where SIGN is an
HMAC-SHA512 over method, path, query, body hash and timestamp. GET
parameters are sent as a pre-encoded query string so the signed text
and the wire text are identical.
"""

import logging
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

import orjson

from crossarb.config.constants import (
    GATEIO_API_PREFIX,
    GATEIO_ENDPOINT_ACCOUNTS,
    GATEIO_ENDPOINT_CURRENCY_PAIR,
    GATEIO_ENDPOINT_DEPOSIT_ADDRESS,
    GATEIO_ENDPOINT_DEPOSITS,
    GATEIO_ENDPOINT_ORDERS,
    GATEIO_ENDPOINT_TICKERS,
    GATEIO_ENDPOINT_WITHDRAWALS,
)
from crossarb.config.exchanges import GATEIO, ExchangeConfig
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
    GateioAccount,
    GateioCurrencyPair,
    GateioDeposit,
    GateioDepositAddress,
    GateioOrder,
    GateioTicker,
    GateioWithdrawal,
)
from crossarb.exchange.rate_limiter import RateLimiter
from crossarb.execution.signer import GateioSigner
from crossarb.utils.math import format_decimal, safe_divide


logger = logging.getLogger(__name__)


# Market buys are sized in quote currency on Gate.io
QUOTE_AMOUNT_PRECISION = 6

_DEPOSIT_STATUS = {
    "DONE": "completed",
    "CANCEL": "failed",
    "FAIL": "failed",
    "INVALID": "failed",
}


class GateioAdapter(BaseExchangeAdapter):
    """Gate.io implementation of the exchange adapter interface."""

    def __init__(
        self,
        testnet: bool,
        enabled: bool = True,
        api_key: str | None = None,
        api_secret: str | None = None,
        fee: Decimal | None = None,
        rate_limiter: RateLimiter | None = None,
        config: ExchangeConfig = GATEIO,
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
        self._signer = GateioSigner(api_key, api_secret) if api_key and api_secret else None

    def _prepare(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        signed: bool,
    ) -> PreparedRequest:
        full_path = f"{GATEIO_API_PREFIX}{path}"
        url = f"{self._base_url}{full_path}"
        headers: dict[str, str] = {}
        query = ""
        body = ""

        if method == "POST":
            body = orjson.dumps(params or {}).decode()
            headers["Content-Type"] = "application/json"
        elif params:
            query = urlencode(params)
            url = f"{url}?{query}"

        if signed and self._signer is not None:
            headers.update(self._signer.headers(method, full_path, query, body))

        return PreparedRequest(method=method, url=url, body=body or None, headers=headers)

    def _error_from_payload(self, status: int, data: Any, text: str) -> ExchangeAPIError:
        if isinstance(data, dict):
            label = data.get("label", status)
            message = data.get("message", text)
        else:
            label, message = status, text
        return ExchangeAPIError(self.name, f"API error {label}: {message}", code=label, status=status)

    # =========================================================================
    # Market Data
    # =========================================================================

    async def fetch_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        """Last prices from the spot tickers list, filtered to ``symbols``."""
        data = await self._request("GET", GATEIO_ENDPOINT_TICKERS)
        wanted = set(symbols)

        prices: dict[str, Decimal] = {}
        for entry in data:
            ticker = GateioTicker.model_validate(entry)
            canonical = self._mapper.to_canonical(ticker.currency_pair)
            if canonical in wanted and ticker.last is not None and ticker.last > 0:
                prices[canonical] = ticker.last
        return prices

    async def check_trading_pair_available(self, symbol: str) -> bool:
        """Look up the currency pair and check its trade status."""
        try:
            native = self._mapper.to_native(symbol)
            data = await self._request("GET", f"{GATEIO_ENDPOINT_CURRENCY_PAIR}/{native}")
        except UnknownSymbolError:
            return False
        except ExchangeAPIError as e:
            if e.status is not None and 400 <= e.status < 500:
                return False
            raise
        return GateioCurrencyPair.model_validate(data).is_trading

    # =========================================================================
    # Account & Orders
    # =========================================================================

    async def get_balance(self, asset: str | None = None) -> dict[str, Decimal]:
        """Available spot balances."""
        params = {"currency": asset.upper()} if asset else None
        data = await self._request("GET", GATEIO_ENDPOINT_ACCOUNTS, params, signed=True)
        balances = {}
        for entry in data:
            account = GateioAccount.model_validate(entry)
            balances[account.currency.upper()] = account.available

        if asset is not None:
            key = asset.upper()
            return {key: balances.get(key, Decimal("0"))}
        return {k: v for k, v in balances.items() if v > 0}

    async def create_order(self, request: OrderRequest) -> OrderResult:
        """
        Place an IOC market order.

        Sells are sized in base currency. Buys are sized in quote
        currency, so ``request.price`` is required to convert the base
        quantity into a spend amount.
        """
        if request.side == OrderSide.BUY:
            if request.price is None:
                raise ValueError("Gate.io market buy needs a reference price")
            amount = format_decimal(request.quantity * request.price, QUOTE_AMOUNT_PRECISION)
        else:
            amount = format_decimal(request.quantity, self.quantity_precision(request.symbol))

        params = {
            "currency_pair": self._mapper.to_native(request.symbol),
            "side": request.side.value.lower(),
            "type": "market",
            "amount": amount,
            "time_in_force": "ioc",
        }

        data = await self._request(
            "POST", GATEIO_ENDPOINT_ORDERS, params, signed=True, order=True, idempotent=False
        )
        order = GateioOrder.model_validate(data)
        logger.info(
            f"gateio order {order.id} {order.side} {amount} {order.currency_pair}: "
            f"{order.status}/{order.finish_as}"
        )

        filled = self._filled_base(order)
        average = order.avg_deal_price
        if (average is None or average <= 0) and filled and order.filled_total:
            average = safe_divide(order.filled_total, filled)

        return OrderResult(
            order_id=order.id,
            symbol=request.symbol,
            side=request.side,
            status=self._order_status(order, filled),
            filled_quantity=filled,
            average_price=average if average and average > 0 else None,
            fee=order.fee,
            raw=data,
        )

    @staticmethod
    def _filled_base(order: GateioOrder) -> Decimal | None:
        """Filled base quantity, derived from the quote total when absent."""
        if order.filled_amount is not None:
            return order.filled_amount
        if order.side == "sell":
            return order.amount
        if order.filled_total is not None and order.avg_deal_price:
            return order.filled_total / order.avg_deal_price
        return None

    @staticmethod
    def _order_status(order: GateioOrder, filled: Decimal | None) -> OrderStatus:
        if order.status == "open":
            return OrderStatus.NEW
        if order.status == "closed" or order.finish_as == "filled":
            return OrderStatus.FILLED
        if filled:
            return OrderStatus.PARTIALLY_FILLED
        return OrderStatus.CANCELLED

    # =========================================================================
    # Wallet (Deposits / Withdrawals)
    # =========================================================================

    async def get_deposit_address(self, currency: str, network: str | None = None) -> DepositAddress:
        """Deposit address, picking the requested chain when listed."""
        data = await self._request(
            "GET", GATEIO_ENDPOINT_DEPOSIT_ADDRESS, {"currency": currency.upper()}, signed=True
        )
        result = GateioDepositAddress.model_validate(data)

        chain = result.for_chain(network) if network else None
        if chain is not None:
            return DepositAddress(
                currency=result.currency,
                address=chain.address,
                network=chain.chain,
                tag=chain.payment_id or None,
            )
        return DepositAddress(currency=result.currency, address=result.address, network=network or "")

    async def withdraw(self, request: WithdrawalRequest) -> WithdrawalResult:
        """Submit an on-chain withdrawal."""
        params = {
            "currency": request.currency.upper(),
            "address": request.address,
            "amount": format_decimal(request.amount),
            "chain": request.network,
        }
        if request.tag:
            params["memo"] = request.tag

        data = await self._request(
            "POST", GATEIO_ENDPOINT_WITHDRAWALS, params, signed=True, idempotent=False
        )
        result = GateioWithdrawal.model_validate(data)
        status = "completed" if result.status == "DONE" else "pending"
        return WithdrawalResult(status=status, tx_id=result.txid or None, withdrawal_id=result.id)

    async def get_deposits(self, currency: str) -> list[Deposit]:
        """Recent deposits of a currency."""
        data = await self._request(
            "GET",
            GATEIO_ENDPOINT_DEPOSITS,
            {"currency": currency.upper(), "limit": 100},
            signed=True,
        )
        return [
            Deposit(
                currency=d.currency,
                amount=d.amount,
                status=_DEPOSIT_STATUS.get(d.status, "pending"),
                timestamp_ms=d.timestamp * 1000,
                tx_id=d.txid or None,
            )
            for d in (GateioDeposit.model_validate(entry) for entry in data)
        ]
