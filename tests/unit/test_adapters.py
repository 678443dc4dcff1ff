"""
Unit tests for the Binance, Gate.io and Bybit adapters.

The HTTP layer is replaced by patching ``_send``, so these tests cover
request preparation, response parsing and the retry policy.
"""

from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from crossarb.config.exchanges import BINANCE, BYBIT, GATEIO
from crossarb.core.errors import AuthenticationRequired, ExchangeAPIError, ExchangeNetworkError
from crossarb.core.types import OrderRequest, OrderSide, OrderStatus, WithdrawalRequest
from crossarb.exchange.base import PreparedRequest
from crossarb.exchange.binance import BinanceAdapter
from crossarb.exchange.bybit import BybitAdapter
from crossarb.exchange.gateio import GateioAdapter
from tests.mocks.exchange import order_payload


@pytest.fixture
def binance() -> BinanceAdapter:
    return BinanceAdapter(
        testnet=True,
        api_key="key",
        api_secret="secret",
        config=replace(BINANCE, retry_backoff_s=0.0),
    )


@pytest.fixture
def gateio() -> GateioAdapter:
    return GateioAdapter(
        testnet=True,
        api_key="key",
        api_secret="secret",
        config=replace(GATEIO, retry_backoff_s=0.0),
    )


@pytest.fixture
def bybit() -> BybitAdapter:
    return BybitAdapter(
        testnet=True,
        enabled=True,
        api_key="key",
        api_secret="secret",
        config=replace(BYBIT, retry_backoff_s=0.0),
    )


def envelope(result: object, ret_code: int = 0, ret_msg: str = "OK") -> dict:
    """Bybit v5 response wrapper."""
    return {"retCode": ret_code, "retMsg": ret_msg, "result": result, "time": 1700000000000}


class TestAdapterIdentity:
    """Tests for capability reporting."""

    def test_trading_requires_credentials(self) -> None:
        adapter = BinanceAdapter(testnet=True)

        assert not adapter.is_trading_enabled()
        assert adapter.capability().trading_enabled is False

    def test_disabled_adapter_cannot_trade(self) -> None:
        adapter = BinanceAdapter(testnet=True, enabled=False, api_key="k", api_secret="s")
        assert not adapter.is_trading_enabled()

    def test_mode_selects_base_url(self) -> None:
        assert BinanceAdapter(testnet=True).base_url == BINANCE.rest_testnet_url
        assert BinanceAdapter(testnet=False).base_url == BINANCE.rest_url
        assert GateioAdapter(testnet=False).base_url == GATEIO.rest_url
        assert BybitAdapter(testnet=True).base_url == "https://api-testnet.bybit.com"

    def test_fee_override(self) -> None:
        assert GateioAdapter(testnet=True).fee == GATEIO.fee
        assert GateioAdapter(testnet=True, fee=Decimal("0.001")).fee == Decimal("0.001")

    def test_precision(self, binance: BinanceAdapter, gateio: GateioAdapter) -> None:
        assert binance.quantity_precision("BTCUSDT") == 5
        assert gateio.quantity_precision("BTCUSDT") == 8

    @pytest.mark.asyncio
    async def test_signed_call_without_credentials(self) -> None:
        adapter = BinanceAdapter(testnet=True)
        adapter._send = AsyncMock()  # type: ignore[method-assign]

        with pytest.raises(AuthenticationRequired):
            await adapter.get_balance()

        adapter._send.assert_not_called()


class TestBinanceAdapter:
    """Tests for BinanceAdapter."""

    @pytest.mark.asyncio
    async def test_fetch_prices_filters_symbols(self, binance: BinanceAdapter) -> None:
        binance._send = AsyncMock(  # type: ignore[method-assign]
            return_value=[
                {"symbol": "BTCUSDT", "price": "50000.01"},
                {"symbol": "ETHUSDT", "price": "3000.5"},
                {"symbol": "PEPEUSDT", "price": "0.00001"},
                {"symbol": "SOLUSDT", "price": "0"},
            ]
        )

        prices = await binance.fetch_prices(["BTCUSDT", "SOLUSDT", "PEPEUSDT"])

        assert prices == {"BTCUSDT": Decimal("50000.01")}

    @pytest.mark.asyncio
    async def test_create_order_parses_fills(self, binance: BinanceAdapter) -> None:
        binance._send = AsyncMock(return_value=order_payload())  # type: ignore[method-assign]

        result = await binance.create_order(
            OrderRequest(symbol="BTCUSDT", side=OrderSide.BUY, quantity=Decimal("0.0020001"))
        )

        assert result.order_id == "12345"
        assert result.status == OrderStatus.FILLED
        assert result.filled_quantity == Decimal("0.002")
        assert result.average_price == Decimal("50000")
        assert result.fee == Decimal("0.000002")

        request: PreparedRequest = binance._send.call_args.args[0]
        assert request.method == "POST"
        assert request.url.endswith("/api/v3/order")
        assert "quantity=0.002&" in request.body
        assert "signature=" in request.body

    @pytest.mark.asyncio
    async def test_order_not_retried_on_network_error(self, binance: BinanceAdapter) -> None:
        """An order that may have reached the exchange is never resent."""
        binance._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=ExchangeNetworkError("binance", "timeout")
        )

        with pytest.raises(ExchangeNetworkError):
            await binance.create_order(
                OrderRequest(symbol="BTCUSDT", side=OrderSide.SELL, quantity=Decimal("0.002"))
            )

        assert binance._send.call_count == 1

    @pytest.mark.asyncio
    async def test_order_retried_on_rate_limit(self, binance: BinanceAdapter) -> None:
        binance._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=[ExchangeAPIError("binance", "too many", code=-1003, status=429), order_payload()]
        )

        result = await binance.create_order(
            OrderRequest(symbol="BTCUSDT", side=OrderSide.BUY, quantity=Decimal("0.002"))
        )

        assert result.status == OrderStatus.FILLED
        assert binance._send.call_count == 2

    @pytest.mark.asyncio
    async def test_reads_retried_until_budget_spent(self, binance: BinanceAdapter) -> None:
        binance._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=ExchangeAPIError("binance", "unavailable", status=503)
        )

        with pytest.raises(ExchangeAPIError):
            await binance.fetch_prices(["BTCUSDT"])

        assert binance._send.call_count == BINANCE.max_retries + 1

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, binance: BinanceAdapter) -> None:
        binance._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=ExchangeAPIError("binance", "bad request", status=400)
        )

        with pytest.raises(ExchangeAPIError):
            await binance.fetch_prices(["BTCUSDT"])

        assert binance._send.call_count == 1

    @pytest.mark.asyncio
    async def test_pair_check(self, binance: BinanceAdapter) -> None:
        binance._send = AsyncMock(  # type: ignore[method-assign]
            return_value={"symbols": [{"symbol": "BTCUSDT", "status": "TRADING"}]}
        )
        assert await binance.check_trading_pair_available("BTCUSDT")

        binance._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=ExchangeAPIError("binance", "Invalid symbol", code=-1121, status=400)
        )
        assert not await binance.check_trading_pair_available("BTCUSDT")

    @pytest.mark.asyncio
    async def test_balance(self, binance: BinanceAdapter) -> None:
        binance._send = AsyncMock(  # type: ignore[method-assign]
            return_value={
                "canTrade": True,
                "balances": [
                    {"asset": "USDT", "free": "150.5", "locked": "0"},
                    {"asset": "BTC", "free": "0", "locked": "0.1"},
                ],
            }
        )

        assert await binance.get_balance() == {"USDT": Decimal("150.5")}
        assert await binance.get_balance("btc") == {"BTC": Decimal("0")}

    @pytest.mark.asyncio
    async def test_deposits_map_status(self, binance: BinanceAdapter) -> None:
        binance._send = AsyncMock(  # type: ignore[method-assign]
            return_value=[
                {"coin": "BTC", "amount": "0.002", "status": 1, "txId": "abc", "insertTime": 5},
                {"coin": "BTC", "amount": "0.1", "status": 7, "insertTime": 6},
            ]
        )

        deposits = await binance.get_deposits("BTC")

        assert [d.status for d in deposits] == ["completed", "failed"]
        assert deposits[0].tx_id == "abc"
        assert deposits[0].timestamp_ms == 5

    @pytest.mark.asyncio
    async def test_withdraw(self, binance: BinanceAdapter) -> None:
        binance._send = AsyncMock(return_value={"id": "w-9"})  # type: ignore[method-assign]

        result = await binance.withdraw(
            WithdrawalRequest(
                currency="btc", address="addr", network="BTC", amount=Decimal("0.00200000")
            )
        )

        assert result.withdrawal_id == "w-9"
        assert result.tx_id is None
        request: PreparedRequest = binance._send.call_args.args[0]
        assert "coin=BTC" in request.body
        assert "amount=0.002&" in request.body


class TestGateioAdapter:
    """Tests for GateioAdapter."""

    @pytest.mark.asyncio
    async def test_fetch_prices_maps_native_symbols(self, gateio: GateioAdapter) -> None:
        gateio._send = AsyncMock(  # type: ignore[method-assign]
            return_value=[
                {"currency_pair": "BTC_USDT", "last": "50200"},
                {"currency_pair": "ETH_USDT", "last": None},
                {"currency_pair": "FOO_USDT", "last": "1"},
            ]
        )

        prices = await gateio.fetch_prices(["BTCUSDT", "ETHUSDT"])

        assert prices == {"BTCUSDT": Decimal("50200")}

    @pytest.mark.asyncio
    async def test_market_buy_needs_price(self, gateio: GateioAdapter) -> None:
        gateio._send = AsyncMock()  # type: ignore[method-assign]

        with pytest.raises(ValueError, match="reference price"):
            await gateio.create_order(
                OrderRequest(symbol="BTCUSDT", side=OrderSide.BUY, quantity=Decimal("0.002"))
            )

        gateio._send.assert_not_called()

    @pytest.mark.asyncio
    async def test_market_buy_spends_quote_amount(self, gateio: GateioAdapter) -> None:
        gateio._send = AsyncMock(  # type: ignore[method-assign]
            return_value={
                "id": "777",
                "currency_pair": "BTC_USDT",
                "side": "buy",
                "amount": "100.4",
                "status": "closed",
                "finish_as": "filled",
                "filled_total": "100.4",
                "avg_deal_price": "50200",
                "fee": "0.000002",
            }
        )

        result = await gateio.create_order(
            OrderRequest(
                symbol="BTCUSDT",
                side=OrderSide.BUY,
                quantity=Decimal("0.002"),
                price=Decimal("50200"),
            )
        )

        assert result.status == OrderStatus.FILLED
        assert result.filled_quantity == Decimal("0.002")
        assert result.average_price == Decimal("50200")

        request: PreparedRequest = gateio._send.call_args.args[0]
        assert '"amount":"100.4"' in request.body
        assert '"currency_pair":"BTC_USDT"' in request.body
        assert {"KEY", "Timestamp", "SIGN"} <= set(request.headers)

    @pytest.mark.asyncio
    async def test_sell_sized_in_base(self, gateio: GateioAdapter) -> None:
        gateio._send = AsyncMock(  # type: ignore[method-assign]
            return_value={
                "id": "778",
                "currency_pair": "BTC_USDT",
                "side": "sell",
                "amount": "0.002",
                "status": "closed",
                "filled_total": "100.4",
            }
        )

        result = await gateio.create_order(
            OrderRequest(symbol="BTCUSDT", side=OrderSide.SELL, quantity=Decimal("0.002"))
        )

        assert result.filled_quantity == Decimal("0.002")
        assert result.average_price == Decimal("50200")
        request: PreparedRequest = gateio._send.call_args.args[0]
        assert '"amount":"0.002"' in request.body

    @pytest.mark.asyncio
    async def test_open_order_is_new(self, gateio: GateioAdapter) -> None:
        gateio._send = AsyncMock(  # type: ignore[method-assign]
            return_value={
                "id": "779",
                "currency_pair": "BTC_USDT",
                "side": "sell",
                "amount": "0.002",
                "status": "open",
            }
        )

        result = await gateio.create_order(
            OrderRequest(symbol="BTCUSDT", side=OrderSide.SELL, quantity=Decimal("0.002"))
        )

        assert result.status == OrderStatus.NEW

    @pytest.mark.asyncio
    async def test_get_request_signs_query(self, gateio: GateioAdapter) -> None:
        gateio._send = AsyncMock(  # type: ignore[method-assign]
            return_value=[{"currency": "usdt", "available": "250"}]
        )

        assert await gateio.get_balance("USDT") == {"USDT": Decimal("250")}

        request: PreparedRequest = gateio._send.call_args.args[0]
        assert request.url.endswith("/api/v4/spot/accounts?currency=USDT")
        assert request.body is None
        assert "SIGN" in request.headers

    @pytest.mark.asyncio
    async def test_pair_check_client_error(self, gateio: GateioAdapter) -> None:
        gateio._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=ExchangeAPIError("gateio", "not found", code="INVALID_CURRENCY_PAIR", status=404)
        )

        assert not await gateio.check_trading_pair_available("BTCUSDT")

    @pytest.mark.asyncio
    async def test_deposit_address_prefers_chain(self, gateio: GateioAdapter) -> None:
        gateio._send = AsyncMock(  # type: ignore[method-assign]
            return_value={
                "currency": "USDT",
                "address": "default-addr",
                "multichain_addresses": [
                    {"chain": "ETH", "address": "eth-addr"},
                    {"chain": "TRX", "address": "trx-addr", "payment_id": "memo"},
                ],
            }
        )

        address = await gateio.get_deposit_address("USDT", "trx")

        assert address.address == "trx-addr"
        assert address.network == "TRX"
        assert address.tag == "memo"

    @pytest.mark.asyncio
    async def test_deposits_convert_seconds(self, gateio: GateioAdapter) -> None:
        gateio._send = AsyncMock(  # type: ignore[method-assign]
            return_value=[
                {"currency": "BTC", "amount": "0.002", "status": "DONE", "timestamp": 1700000000, "txid": "t"},
            ]
        )

        deposits = await gateio.get_deposits("BTC")

        assert deposits[0].status == "completed"
        assert deposits[0].timestamp_ms == 1_700_000_000_000


class TestBybitAdapter:
    """Tests for BybitAdapter."""

    @pytest.mark.asyncio
    async def test_fetch_prices_unwraps_envelope(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            return_value=envelope(
                {
                    "category": "spot",
                    "list": [
                        {"symbol": "BTCUSDT", "lastPrice": "50100.5"},
                        {"symbol": "ETHUSDT", "lastPrice": ""},
                        {"symbol": "PEPEUSDT", "lastPrice": "0.00001"},
                    ],
                }
            )
        )

        prices = await bybit.fetch_prices(["BTCUSDT", "ETHUSDT"])

        assert prices == {"BTCUSDT": Decimal("50100.5")}
        request: PreparedRequest = bybit._send.call_args.args[0]
        assert request.url.endswith("/v5/market/tickers?category=spot")
        assert "X-BAPI-SIGN" not in request.headers

    @pytest.mark.asyncio
    async def test_error_envelope_not_retried(self, bybit: BybitAdapter) -> None:
        """A non-zero retCode on HTTP 200 is a client error."""
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            return_value=envelope({}, ret_code=10001, ret_msg="params error")
        )

        with pytest.raises(ExchangeAPIError) as exc_info:
            await bybit.fetch_prices(["BTCUSDT"])

        assert exc_info.value.code == 10001
        assert exc_info.value.status == 400
        assert bybit._send.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limited_envelope_retried(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=[
                envelope({}, ret_code=10006, ret_msg="Too many visits"),
                envelope({"list": [{"symbol": "BTCUSDT", "lastPrice": "50000"}]}),
            ]
        )

        assert await bybit.fetch_prices(["BTCUSDT"]) == {"BTCUSDT": Decimal("50000")}
        assert bybit._send.call_count == 2

    @pytest.mark.asyncio
    async def test_market_buy_sized_in_base(self, bybit: BybitAdapter) -> None:
        """The create call only acknowledges; fills come from the order query."""
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=[
                envelope({"orderId": "by-1", "orderLinkId": ""}),
                envelope(
                    {
                        "list": [
                            {
                                "orderId": "by-1",
                                "symbol": "BTCUSDT",
                                "side": "Buy",
                                "orderStatus": "Filled",
                                "qty": "0.002",
                                "cumExecQty": "0.002",
                                "cumExecValue": "100.2",
                                "avgPrice": "",
                                "cumExecFee": "0.000002",
                            }
                        ]
                    }
                ),
            ]
        )

        result = await bybit.create_order(
            OrderRequest(symbol="BTCUSDT", side=OrderSide.BUY, quantity=Decimal("0.0020004"))
        )

        assert result.order_id == "by-1"
        assert result.status == OrderStatus.FILLED
        assert result.filled_quantity == Decimal("0.002")
        assert result.average_price == Decimal("50100")
        assert result.fee == Decimal("0.000002")

        create: PreparedRequest = bybit._send.call_args_list[0].args[0]
        assert create.method == "POST"
        assert create.url.endswith("/v5/order/create")
        assert '"side":"Buy"' in create.body
        assert '"qty":"0.002"' in create.body
        assert '"marketUnit":"baseCoin"' in create.body
        assert {"X-BAPI-API-KEY", "X-BAPI-SIGN", "X-BAPI-TIMESTAMP"} <= set(create.headers)

        lookup: PreparedRequest = bybit._send.call_args_list[1].args[0]
        assert "/v5/order/realtime?" in lookup.url
        assert "orderId=by-1" in lookup.url

    @pytest.mark.asyncio
    async def test_sell_has_no_market_unit(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=[envelope({"orderId": "by-2"}), envelope({"list": []})]
        )

        result = await bybit.create_order(
            OrderRequest(symbol="BTCUSDT", side=OrderSide.SELL, quantity=Decimal("0.002"))
        )

        assert result.status == OrderStatus.NEW
        create: PreparedRequest = bybit._send.call_args_list[0].args[0]
        assert '"side":"Sell"' in create.body
        assert "marketUnit" not in create.body

    @pytest.mark.asyncio
    async def test_order_kept_when_lookup_fails(self, bybit: BybitAdapter) -> None:
        """A placed order is reported even if its fills cannot be read."""
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=[envelope({"orderId": "by-3"})]
            + [ExchangeNetworkError("bybit", "timeout")] * (BYBIT.max_retries + 1)
        )

        result = await bybit.create_order(
            OrderRequest(symbol="BTCUSDT", side=OrderSide.SELL, quantity=Decimal("0.002"))
        )

        assert result.order_id == "by-3"
        assert result.status == OrderStatus.NEW
        assert result.filled_quantity is None
        assert bybit._send.call_count == BYBIT.max_retries + 2

    @pytest.mark.asyncio
    async def test_order_not_retried_on_network_error(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            side_effect=ExchangeNetworkError("bybit", "timeout")
        )

        with pytest.raises(ExchangeNetworkError):
            await bybit.create_order(
                OrderRequest(symbol="BTCUSDT", side=OrderSide.BUY, quantity=Decimal("0.002"))
            )

        assert bybit._send.call_count == 1

    @pytest.mark.asyncio
    async def test_balance_subtracts_locked(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            return_value=envelope(
                {
                    "list": [
                        {
                            "accountType": "UNIFIED",
                            "coin": [
                                {"coin": "USDT", "walletBalance": "150", "locked": "50"},
                                {"coin": "BTC", "walletBalance": "0.01", "locked": ""},
                                {"coin": "ETH", "walletBalance": "0", "locked": "0"},
                            ],
                        }
                    ]
                }
            )
        )

        assert await bybit.get_balance() == {"USDT": Decimal("100"), "BTC": Decimal("0.01")}

        request: PreparedRequest = bybit._send.call_args.args[0]
        assert "accountType=UNIFIED" in request.url
        assert "X-BAPI-SIGN" in request.headers

    @pytest.mark.asyncio
    async def test_balance_of_missing_asset(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            return_value=envelope({"list": [{"accountType": "UNIFIED", "coin": []}]})
        )

        assert await bybit.get_balance("sol") == {"SOL": Decimal("0")}
        assert "coin=SOL" in bybit._send.call_args.args[0].url

    @pytest.mark.asyncio
    async def test_pair_check(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            return_value=envelope({"list": [{"symbol": "BTCUSDT", "status": "Trading"}]})
        )
        assert await bybit.check_trading_pair_available("BTCUSDT")

        bybit._send = AsyncMock(return_value=envelope({"list": []}))  # type: ignore[method-assign]
        assert not await bybit.check_trading_pair_available("BTCUSDT")

        bybit._send = AsyncMock(  # type: ignore[method-assign]
            return_value=envelope({}, ret_code=10001, ret_msg="Not supported symbols")
        )
        assert not await bybit.check_trading_pair_available("BTCUSDT")

    @pytest.mark.asyncio
    async def test_deposit_address_by_chain(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            return_value=envelope(
                {
                    "coin": "USDT",
                    "chains": [
                        {"chainType": "ERC20", "chain": "ETH", "addressDeposit": "eth-addr"},
                        {
                            "chainType": "TRC20",
                            "chain": "TRX",
                            "addressDeposit": "trx-addr",
                            "tagDeposit": "",
                        },
                    ],
                }
            )
        )

        address = await bybit.get_deposit_address("usdt", "TRX")

        assert address.address == "trx-addr"
        assert address.network == "TRX"
        assert address.tag is None

    @pytest.mark.asyncio
    async def test_withdraw(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(return_value=envelope({"id": "10195"}))  # type: ignore[method-assign]

        result = await bybit.withdraw(
            WithdrawalRequest(
                currency="btc", address="addr", network="BTC", amount=Decimal("0.00200000")
            )
        )

        assert result.withdrawal_id == "10195"
        assert result.status == "pending"
        request: PreparedRequest = bybit._send.call_args.args[0]
        assert '"coin":"BTC"' in request.body
        assert '"amount":"0.002"' in request.body
        assert '"chain":"BTC"' in request.body

    @pytest.mark.asyncio
    async def test_deposits_map_status(self, bybit: BybitAdapter) -> None:
        bybit._send = AsyncMock(  # type: ignore[method-assign]
            return_value=envelope(
                {
                    "rows": [
                        {
                            "coin": "BTC",
                            "amount": "0.002",
                            "status": 3,
                            "txID": "abc",
                            "successAt": "1700000000000",
                        },
                        {"coin": "BTC", "amount": "0.1", "status": 1, "txID": "", "successAt": ""},
                    ]
                }
            )
        )

        deposits = await bybit.get_deposits("BTC")

        assert [d.status for d in deposits] == ["completed", "pending"]
        assert deposits[0].timestamp_ms == 1_700_000_000_000
        assert deposits[0].tx_id == "abc"
        assert deposits[1].tx_id is None
