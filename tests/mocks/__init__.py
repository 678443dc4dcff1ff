"""Mock implementations for testing."""

from tests.mocks.exchange import LinkedExchangePair, MockExchangeAdapter, order_payload
from tests.mocks.store import FailingTradeHistoryStore


__all__ = [
    "FailingTradeHistoryStore",
    "LinkedExchangePair",
    "MockExchangeAdapter",
    "order_payload",
]
