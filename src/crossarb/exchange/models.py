"""
Pydantic models for exchange API responses.

These models provide type-safe parsing of Binance, Gate.io and Bybit responses
with automatic validation. Numeric strings are parsed straight to
Decimal.
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Binance
# =============================================================================


class BinanceModel(BaseModel):
    """Base for Binance payloads with camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)


class BinanceTickerPrice(BinanceModel):
    """Entry of /api/v3/ticker/price."""

    symbol: str
    price: Decimal


class BinanceSymbolStatus(BinanceModel):
    """Trading status of a symbol from exchange info."""

    symbol: str
    status: str

    @property
    def is_trading(self) -> bool:
        return self.status == "TRADING"


class BinanceExchangeInfo(BinanceModel):
    """Exchange information response, reduced to symbol status."""

    symbols: list[BinanceSymbolStatus] = Field(default_factory=list)


class BinanceBalance(BinanceModel):
    """Account balance for a single asset."""

    asset: str
    free: Decimal
    locked: Decimal = Decimal("0")


class BinanceAccount(BinanceModel):
    """Account information response."""

    can_trade: bool = Field(default=True, alias="canTrade")
    balances: list[BinanceBalance] = Field(default_factory=list)

    def free_balances(self) -> dict[str, Decimal]:
        """Free balance by asset."""
        return {b.asset.upper(): b.free for b in self.balances}


class BinanceFill(BinanceModel):
    """Single fill in an order response."""

    price: Decimal
    qty: Decimal
    commission: Decimal = Decimal("0")
    commission_asset: str = Field(default="", alias="commissionAsset")


class BinanceOrder(BinanceModel):
    """Order placement response (FULL response type)."""

    symbol: str
    order_id: int = Field(alias="orderId")
    client_order_id: str = Field(default="", alias="clientOrderId")
    transact_time: int = Field(default=0, alias="transactTime")
    price: Decimal = Decimal("0")
    orig_qty: Decimal = Field(default=Decimal("0"), alias="origQty")
    executed_qty: Decimal | None = Field(default=None, alias="executedQty")
    cummulative_quote_qty: Decimal | None = Field(default=None, alias="cummulativeQuoteQty")
    status: str
    type: str = "MARKET"
    side: str
    fills: list[BinanceFill] = Field(default_factory=list)

    @property
    def avg_fill_price(self) -> Decimal | None:
        """Average execution price, None when nothing is reported."""
        if self.executed_qty and self.cummulative_quote_qty:
            return self.cummulative_quote_qty / self.executed_qty

        total_qty = sum((f.qty for f in self.fills), Decimal("0"))
        if total_qty == 0:
            return None
        return sum((f.price * f.qty for f in self.fills), Decimal("0")) / total_qty

    @property
    def total_commission(self) -> Decimal:
        """Commission across all fills, in whatever assets they were charged."""
        return sum((f.commission for f in self.fills), Decimal("0"))


class BinanceDepositAddress(BinanceModel):
    """Deposit address response."""

    coin: str
    address: str
    tag: str = ""


class BinanceDeposit(BinanceModel):
    """Deposit history entry."""

    coin: str
    amount: Decimal
    status: int
    tx_id: str | None = Field(default=None, alias="txId")
    insert_time: int = Field(default=0, alias="insertTime")


class BinanceWithdrawal(BinanceModel):
    """Withdraw apply response."""

    id: str


# =============================================================================
# Gate.io
# =============================================================================


class GateioTicker(BaseModel):
    """Entry of /spot/tickers."""

    currency_pair: str
    last: Decimal | None = None


class GateioCurrencyPair(BaseModel):
    """Currency pair details."""

    id: str
    trade_status: str = "tradable"

    @property
    def is_trading(self) -> bool:
        return self.trade_status == "tradable"


class GateioAccount(BaseModel):
    """Spot account balance for one currency."""

    currency: str
    available: Decimal
    locked: Decimal = Decimal("0")


class GateioOrder(BaseModel):
    """Spot order response."""

    id: str
    text: str = ""
    currency_pair: str
    side: str
    type: str = "market"
    amount: Decimal = Decimal("0")
    status: str
    finish_as: str | None = None
    filled_amount: Decimal | None = None
    filled_total: Decimal | None = None
    avg_deal_price: Decimal | None = None
    fee: Decimal | None = None
    fee_currency: str | None = None


class GateioChainAddress(BaseModel):
    """Address on one chain."""

    chain: str
    address: str
    payment_id: str = ""
    obtain_failed: int = 0


class GateioDepositAddress(BaseModel):
    """Deposit address response."""

    currency: str
    address: str = ""
    multichain_addresses: list[GateioChainAddress] = Field(default_factory=list)

    def for_chain(self, chain: str) -> GateioChainAddress | None:
        """Address entry of one chain."""
        for entry in self.multichain_addresses:
            if entry.chain.upper() == chain.upper() and not entry.obtain_failed:
                return entry
        return None


class GateioDeposit(BaseModel):
    """Deposit history entry."""

    id: str = ""
    txid: str | None = None
    currency: str
    amount: Decimal
    status: str
    timestamp: int = 0  # seconds


class GateioWithdrawal(BaseModel):
    """Withdrawal response."""

    id: str
    txid: str | None = None
    status: str = "REQUEST"


# =============================================================================
# Bybit
# =============================================================================


class BybitModel(BaseModel):
    """Base for Bybit v5 payloads with camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)


class BybitTicker(BybitModel):
    """Entry of /v5/market/tickers."""

    symbol: str
    last_price: Decimal | None = Field(default=None, alias="lastPrice")

    @field_validator("last_price", mode="before")
    @classmethod
    def _blank_price(cls, value: object) -> object:
        return None if value == "" else value


class BybitInstrument(BybitModel):
    """Entry of /v5/market/instruments-info."""

    symbol: str
    status: str = "Trading"

    @property
    def is_trading(self) -> bool:
        return self.status == "Trading"


class BybitCoinBalance(BybitModel):
    """Coin entry of a wallet balance account."""

    coin: str
    wallet_balance: Decimal = Field(default=Decimal("0"), alias="walletBalance")
    locked: Decimal = Decimal("0")

    @field_validator("wallet_balance", "locked", mode="before")
    @classmethod
    def _blank_amount(cls, value: object) -> object:
        return "0" if value == "" else value

    @property
    def free(self) -> Decimal:
        return max(self.wallet_balance - self.locked, Decimal("0"))


class BybitWalletAccount(BybitModel):
    """Account entry of /v5/account/wallet-balance."""

    account_type: str = Field(default="UNIFIED", alias="accountType")
    coin: list[BybitCoinBalance] = Field(default_factory=list)


class BybitOrderAck(BybitModel):
    """Response of /v5/order/create; fills are reported by the order query."""

    order_id: str = Field(alias="orderId")
    order_link_id: str = Field(default="", alias="orderLinkId")


class BybitOrder(BybitModel):
    """Entry of /v5/order/realtime."""

    order_id: str = Field(alias="orderId")
    symbol: str
    side: str
    order_status: str = Field(alias="orderStatus")
    qty: Decimal = Decimal("0")
    cum_exec_qty: Decimal | None = Field(default=None, alias="cumExecQty")
    cum_exec_value: Decimal | None = Field(default=None, alias="cumExecValue")
    avg_price: Decimal | None = Field(default=None, alias="avgPrice")
    cum_exec_fee: Decimal | None = Field(default=None, alias="cumExecFee")

    @field_validator("cum_exec_qty", "cum_exec_value", "avg_price", "cum_exec_fee", mode="before")
    @classmethod
    def _blank_amount(cls, value: object) -> object:
        return None if value == "" else value

    @property
    def average_price(self) -> Decimal | None:
        """Average fill price, derived from the executed value when absent."""
        if self.avg_price:
            return self.avg_price
        if self.cum_exec_qty and self.cum_exec_value:
            return self.cum_exec_value / self.cum_exec_qty
        return None


class BybitChainAddress(BybitModel):
    """Address on one chain."""

    chain_type: str = Field(default="", alias="chainType")
    chain: str = ""
    address_deposit: str = Field(alias="addressDeposit")
    tag_deposit: str = Field(default="", alias="tagDeposit")


class BybitDepositAddress(BybitModel):
    """Response of /v5/asset/deposit/query-address."""

    coin: str
    chains: list[BybitChainAddress] = Field(default_factory=list)

    def for_chain(self, chain: str) -> BybitChainAddress | None:
        """Address entry matching a chain code or chain type."""
        wanted = chain.upper()
        for entry in self.chains:
            if wanted in (entry.chain.upper(), entry.chain_type.upper()):
                return entry
        return None


class BybitDeposit(BybitModel):
    """Entry of /v5/asset/deposit/query-record."""

    coin: str
    amount: Decimal
    status: int
    tx_id: str = Field(default="", alias="txID")
    success_at: int = Field(default=0, alias="successAt")  # milliseconds

    @field_validator("success_at", mode="before")
    @classmethod
    def _blank_time(cls, value: object) -> object:
        return 0 if value == "" else value


class BybitWithdrawal(BybitModel):
    """Response of /v5/asset/withdraw/create."""

    id: str
