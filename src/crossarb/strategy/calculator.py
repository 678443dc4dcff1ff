"""
Fee-adjusted profit calculations.

All arithmetic is Decimal: profit thresholds are fractions of a percent,
where binary floating point error is enough to flip a trade decision.
"""

from dataclasses import dataclass
from decimal import Decimal

from crossarb.config.constants import QUANTITY_PRECISION
from crossarb.utils.math import ONE, ZERO, floor_to_precision, percent, safe_divide


def effective_buy_price(price: Decimal, fee: Decimal) -> Decimal:
    """Cost of one unit bought at taker fee."""
    return price * (ONE + fee)


def effective_sell_price(price: Decimal, fee: Decimal) -> Decimal:
    """Proceeds of one unit sold at taker fee."""
    return price * (ONE - fee)


def gross_spread(buy_price: Decimal, sell_price: Decimal) -> Decimal:
    """Raw price gap as a fraction of the buy price."""
    return safe_divide(sell_price - buy_price, buy_price)


def net_profit_fraction(
    buy_price: Decimal,
    sell_price: Decimal,
    buy_fee: Decimal,
    sell_fee: Decimal,
) -> Decimal:
    """
    Profit per unit of capital after both taker fees.

    Args:
        buy_price: Price on the buy exchange.
        sell_price: Price on the sell exchange.
        buy_fee: Taker fee fraction on the buy exchange.
        sell_fee: Taker fee fraction on the sell exchange.

    Returns:
        ``(sell*(1-sellFee) - buy*(1+buyFee)) / (buy*(1+buyFee))``

    Example:
        >>> round(net_profit_fraction(Decimal(100), Decimal(102), Decimal("0.001"), Decimal("0.002")), 4)
        Decimal('0.0169')
    """
    cost = effective_buy_price(buy_price, buy_fee)
    proceeds = effective_sell_price(sell_price, sell_fee)
    return safe_divide(proceeds - cost, cost)


def trade_quantity(
    capital: Decimal,
    buy_price: Decimal,
    precision: int = QUANTITY_PRECISION,
) -> Decimal:
    """
    Quantity purchasable with ``capital`` at ``buy_price``.

    Floored to ``precision`` decimal places.
    """
    if buy_price <= 0:
        return ZERO
    return floor_to_precision(capital / buy_price, precision)


@dataclass(slots=True, frozen=True)
class TradeEstimate:
    """Quote-currency totals of a buy/sell pair."""

    quantity: Decimal
    buy_total: Decimal
    sell_total: Decimal
    fees: Decimal

    @property
    def profit(self) -> Decimal:
        """Sell proceeds minus buy cost."""
        return self.sell_total - self.buy_total

    @property
    def profit_percent(self) -> Decimal:
        """Profit as a percentage of the buy cost."""
        return percent(safe_divide(self.profit, self.buy_total))


def estimate_trade(
    quantity: Decimal,
    buy_price: Decimal,
    sell_price: Decimal,
    buy_fee: Decimal,
    sell_fee: Decimal,
) -> TradeEstimate:
    """
    Settle a buy/sell pair of the same quantity in quote currency.

    Used both for pre-trade expectations and for settling actual fills,
    since market orders always pay the taker fee.

    Example:
        >>> est = estimate_trade(Decimal("0.002"), Decimal(50000), Decimal(50200),
        ...                      Decimal("0.001"), Decimal("0.001"))
        >>> est.buy_total, est.sell_total
        (Decimal('100.100000'), Decimal('100.299600'))
    """
    return settle_fills(quantity, buy_price, quantity, sell_price, buy_fee, sell_fee)


def settle_fills(
    buy_quantity: Decimal,
    buy_price: Decimal,
    sell_quantity: Decimal,
    sell_price: Decimal,
    buy_fee: Decimal,
    sell_fee: Decimal,
) -> TradeEstimate:
    """
    Settle two legs whose filled quantities may differ.

    Args:
        buy_quantity: Base quantity bought.
        buy_price: Average buy price.
        sell_quantity: Base quantity sold.
        sell_price: Average sell price.
        buy_fee: Taker fee fraction of the buy leg.
        sell_fee: Taker fee fraction of the sell leg.

    Returns:
        TradeEstimate keyed on the bought quantity.
    """
    gross_buy = buy_quantity * buy_price
    gross_sell = sell_quantity * sell_price
    buy_total = effective_buy_price(gross_buy, buy_fee)
    sell_total = effective_sell_price(gross_sell, sell_fee)
    fees = (buy_total - gross_buy) + (gross_sell - sell_total)
    return TradeEstimate(
        quantity=buy_quantity,
        buy_total=buy_total,
        sell_total=sell_total,
        fees=fees,
    )
