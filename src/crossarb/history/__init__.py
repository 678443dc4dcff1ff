"""Trade history stores."""

from crossarb.history.store import (
    InMemoryTradeHistoryStore,
    JsonlTradeHistoryStore,
    TradeNotFoundError,
)


__all__ = [
    "InMemoryTradeHistoryStore",
    "JsonlTradeHistoryStore",
    "TradeNotFoundError",
]
