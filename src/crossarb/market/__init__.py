"""Market data: symbol tables, price table and streaming feeds."""

from crossarb.market.prices import PriceAggregator
from crossarb.market.symbols import SymbolMapper, SymbolMappingError
from crossarb.market.websocket import BinanceTickerStream, WebSocketConnection


__all__ = [
    "BinanceTickerStream",
    "PriceAggregator",
    "SymbolMapper",
    "SymbolMappingError",
    "WebSocketConnection",
]
