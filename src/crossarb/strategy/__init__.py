"""Opportunity detection and profit calculations."""

from crossarb.strategy.calculator import (
    TradeEstimate,
    estimate_trade,
    net_profit_fraction,
    settle_fills,
    trade_quantity,
)
from crossarb.strategy.opportunity import OpportunityDetector


__all__ = [
    "OpportunityDetector",
    "TradeEstimate",
    "estimate_trade",
    "net_profit_fraction",
    "settle_fills",
    "trade_quantity",
]
