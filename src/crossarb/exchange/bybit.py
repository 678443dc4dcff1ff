"""
Bybit spot adapter (API v5).

Every response is wrapped in a ``retCode``/``retMsg``/``result``
envelope, usually with HTTP 200 even on errors; the envelope is opened
in ``_unwrap`` so rejected calls go through the shared retry policy.
Signed requests carry X-BAPI-* headers with an HMAC-SHA256 over
timestamp, key, receive window and the query string or JSON body.
"""

import logging
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

import orjson

from crossarb.config.constants import (
    BYBIT_DEPOSIT_STATUS,
    BYBIT_ENDPOINT_DEPOSIT_ADDRESS,
    BYBIT_ENDPOINT_DEPOSITS,
    BYBIT_ENDPOINT_INSTRUMENTS,
    BYBIT_ENDPOINT_ORDER_CREATE,
    BYBIT_ENDPOINT_ORDER_REALTIME,
    BYBIT_ENDPOINT_TICKERS,
    BYBIT_ENDPOINT_WALLET_BALANCE,
    BYBIT_ENDPOINT_WITHDRAW,
    BYBIT_RECV_WINDOW_MS,
)
from crossarb.config.exchanges import BYBIT, ExchangeConfig
from crossarb.core.errors import ExchangeAPIError, ExchangeError, UnknownSymbolError
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
    BybitDeposit,
    BybitDepositAddress,
    BybitInstrument,
    BybitOrder,
    BybitOrderAck,
    BybitTicker,
    BybitWalletAccount,
    BybitWithdrawal,
)
from crossarb.exchange.rate_limiter import RateLimiter
from crossarb.execution.signer import BybitSigner
from crossarb.utils.math import format_decimal
from crossarb.utils.time import get_timestamp_ms


logger = logging.getLogger(__name__)


SPOT_CATEGORY = "spot"
ACCOUNT_TYPE = "UNIFIED"

# retCode values mapped to the HTTP status the retry policy understands
_RET_CODE_STATUS = {
    10006: 429,  # too many visits
    10018: 429,  # IP rate limit
    10016: 500,  # internal server error
}

_ORDER_STATUS = {
    "Created": OrderStatus.NEW,
    "New": OrderStatus.NEW,
    "PartiallyFilled": OrderStatus.PARTIALLY_FILLED,
    "PartiallyFilledCanceled": OrderStatus.PARTIALLY_FILLED,
    "Filled": OrderStatus.FILLED,
    "Cancelled": OrderStatus.CANCELLED,
    "Deactivated": OrderStatus.CANCELLED,
    "Rejected": OrderStatus.REJECTED,
}


class BybitAdapter(BaseExchangeAdapter):
    """Bybit implementation of the exchange adapter interface."""

    def __init__(
        self,
        testnet: bool,
        enabled: bool = False,
        api_key: str | None = None,
        api_secret: str | None = None,
        fee: Decimal | None = None,
        rate_limiter: RateLimiter | None = None,
        config: ExchangeConfig = BYBIT,
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
        self._signer = None
        if api_key and api_secret:
            self._signer = BybitSigner(api_key, api_secret, BYBIT_RECV_WINDOW_MS)

    def _prepare(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        signed: bool,
    ) -> PreparedRequest:
        """GET parameters are pre-encoded so the signed and sent query match."""
        url = f"{self._base_url}{path}"
        headers: dict[str, str] = {}
        payload = ""

        if method == "POST":
            payload = orjson.dumps(params or {}).decode()
            headers["Content-Type"] = "application/json"
        elif params:
            payload = urlencode(params)
            url = f"{url}?{payload}"

        if signed and self._signer is not None:
            headers.update(self._signer.headers(payload))

        body = payload if method == "POST" else None
        return PreparedRequest(method=method, url=url, body=body, headers=headers)

    def _error_from_payload(self, status: int, data: Any, text: str) -> ExchangeAPIError:
        if isinstance(data, dict) and "retCode" in data:
            code = data["retCode"]
            message = data.get("retMsg", text)
        else:
            code, message = status, text
        return ExchangeAPIError(self.name, f"API error {code}: {message}", code=code, status=status)

    def _unwrap(self, data: Any) -> Any:
        """Return ``result`` of a successful envelope, raise on a non-zero retCode."""
        if not isinstance(data, dict) or "retCode" not in data:
            raise ExchangeAPIError(self.name, f"Unexpected response: {str(data)[:200]}")
        code = data["retCode"]
        if code != 0:
            raise self._error_from_payload(_RET_CODE_STATUS.get(code, 400), data, "")
        return data.get("result") or {}

    # =========================================================================
    # Market Data
    # =========================================================================

    async def fetch_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        """Last prices from the spot tickers list, filtered to ``symbols``."""
        data = await self._request("GET", BYBIT_ENDPOINT_TICKERS, {"category": SPOT_CATEGORY})
        wanted = set(symbols)

        prices: dict[str, Decimal] = {}
        for entry in data.get("list", []):
            ticker = BybitTicker.model_validate(entry)
            canonical = self._mapper.to_canonical(ticker.symbol)
            if canonical in wanted and ticker.last_price is not None and ticker.last_price > 0:
                prices[canonical] = ticker.last_price
        return prices

    async def check_trading_pair_available(self, symbol: str) -> bool:
        """Look up the spot instrument and check its status."""
        try:
            native = self._mapper.to_native(symbol)
            data = await self._request(
                "GET", BYBIT_ENDPOINT_INSTRUMENTS, {"category": SPOT_CATEGORY, "symbol": native}
            )
        except UnknownSymbolError:
            return False
        except ExchangeAPIError as e:
            if e.status is not None and 400 <= e.status < 500 and e.status != 429:
                return False
            raise

        instruments = [BybitInstrument.model_validate(entry) for entry in data.get("list", [])]
        return any(i.symbol == native and i.is_trading for i in instruments)

    # =========================================================================
    # Account & Orders
    # =========================================================================

    async def get_balance(self, asset: str | None = None) -> dict[str, Decimal]:
        """Free balances of the unified trading account."""
        params = {"accountType": ACCOUNT_TYPE}
        if asset:
            params["coin"] = asset.upper()
        data = await self._request("GET", BYBIT_ENDPOINT_WALLET_BALANCE, params, signed=True)

        balances: dict[str, Decimal] = {}
        for entry in data.get("list", []):
            for coin in BybitWalletAccount.model_validate(entry).coin:
                balances[coin.coin.upper()] = coin.free

        if asset is not None:
            key = asset.upper()
            return {key: balances.get(key, Decimal("0"))}
        return {k: v for k, v in balances.items() if v > 0}

    async def create_order(self, request: OrderRequest) -> OrderResult:
        """
        Place a market order for a base-asset quantity.

        Market buys default to quote sizing on Bybit, so they are sent
        with ``marketUnit=baseCoin``. The create call only acknowledges
        the order; fills come from one follow-up order query.
        """
        native = self._mapper.to_native(request.symbol)
        params = {
            "category": SPOT_CATEGORY,
            "symbol": native,
            "side": request.side.value.capitalize(),
            "orderType": "Market",
            "qty": format_decimal(request.quantity, self.quantity_precision(request.symbol)),
        }
        if request.side == OrderSide.BUY:
            params["marketUnit"] = "baseCoin"

        data = await self._request(
            "POST", BYBIT_ENDPOINT_ORDER_CREATE, params, signed=True, order=True, idempotent=False
        )
        ack = BybitOrderAck.model_validate(data)
        order = await self._fetch_order(native, ack.order_id)

        if order is None:
            logger.info(
                f"bybit order {ack.order_id} {params['side']} {params['qty']} {native}: accepted"
            )
            return OrderResult(
                order_id=ack.order_id,
                symbol=request.symbol,
                side=request.side,
                status=OrderStatus.NEW,
                raw=data,
            )

        logger.info(
            f"bybit order {order.order_id} {order.side} {params['qty']} {native}: "
            f"{order.order_status}"
        )
        return OrderResult(
            order_id=order.order_id,
            symbol=request.symbol,
            side=request.side,
            status=_ORDER_STATUS.get(order.order_status, OrderStatus.REJECTED),
            filled_quantity=order.cum_exec_qty,
            average_price=order.average_price,
            fee=order.cum_exec_fee,
            raw={**data, "order": order.model_dump(by_alias=True, mode="json")},
        )

    async def _fetch_order(self, native: str, order_id: str) -> BybitOrder | None:
        """Current state of a placed order; None when the lookup fails."""
        try:
            data = await self._request(
                "GET",
                BYBIT_ENDPOINT_ORDER_REALTIME,
                {"category": SPOT_CATEGORY, "symbol": native, "orderId": order_id},
                signed=True,
            )
        except ExchangeError as e:
            logger.warning(f"bybit order {order_id} placed but lookup failed: {e}")
            return None

        entries = data.get("list", [])
        return BybitOrder.model_validate(entries[0]) if entries else None

    # =========================================================================
    # Wallet (Deposits / Withdrawals)
    # =========================================================================

    async def get_deposit_address(self, currency: str, network: str | None = None) -> DepositAddress:
        """Deposit address, picking the requested chain when listed."""
        params = {"coin": currency.upper()}
        if network:
            params["chainType"] = network
        data = await self._request("GET", BYBIT_ENDPOINT_DEPOSIT_ADDRESS, params, signed=True)
        result = BybitDepositAddress.model_validate(data)

        chain = result.for_chain(network) if network else None
        if chain is None and result.chains:
            chain = result.chains[0]
        if chain is None:
            raise ExchangeAPIError(self.name, f"No deposit address for {currency.upper()}")

        return DepositAddress(
            currency=result.coin,
            address=chain.address_deposit,
            network=chain.chain or network or "",
            tag=chain.tag_deposit or None,
        )

    async def withdraw(self, request: WithdrawalRequest) -> WithdrawalResult:
        """Submit an on-chain withdrawal from the funding account."""
        params: dict[str, Any] = {
            "coin": request.currency.upper(),
            "chain": request.network,
            "address": request.address,
            "amount": format_decimal(request.amount),
            "timestamp": get_timestamp_ms(),
            "forceChain": 0,
            "accountType": "FUND",
        }
        if request.tag:
            params["tag"] = request.tag

        data = await self._request(
            "POST", BYBIT_ENDPOINT_WITHDRAW, params, signed=True, idempotent=False
        )
        result = BybitWithdrawal.model_validate(data)
        return WithdrawalResult(status="pending", tx_id=None, withdrawal_id=result.id)

    async def get_deposits(self, currency: str) -> list[Deposit]:
        """Recent deposits of a coin."""
        data = await self._request(
            "GET", BYBIT_ENDPOINT_DEPOSITS, {"coin": currency.upper(), "limit": 50}, signed=True
        )
        return [
            Deposit(
                currency=d.coin,
                amount=d.amount,
                status=BYBIT_DEPOSIT_STATUS.get(d.status, "pending"),
                timestamp_ms=d.success_at,
                tx_id=d.tx_id or None,
            )
            for d in (BybitDeposit.model_validate(entry) for entry in data.get("rows", []))
        ]
