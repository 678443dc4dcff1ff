"""Core module containing the event bus, error taxonomy and type definitions."""

from crossarb.core.errors import ExchangeError, TradeError
from crossarb.core.event_bus import Event, EventBus, EventType
from crossarb.core.types import (
    ErrorKind,
    ExecutionMode,
    ExecutionOptions,
    FeeSchedule,
    Opportunity,
    OrderSide,
    OrderStatus,
    PriceQuote,
    TradeCompleted,
    TradeFailed,
    TradeRecord,
    TradeStatus,
    TradingMode,
)


__all__ = [
    "ErrorKind",
    "Event",
    "EventBus",
    "EventType",
    "ExchangeError",
    "ExecutionMode",
    "ExecutionOptions",
    "FeeSchedule",
    "Opportunity",
    "OrderSide",
    "OrderStatus",
    "PriceQuote",
    "TradeCompleted",
    "TradeError",
    "TradeFailed",
    "TradeRecord",
    "TradeStatus",
    "TradingMode",
]
