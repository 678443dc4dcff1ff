"""
Streaming price feeds.

A reconnecting WebSocket connection plus exchange-specific parsers that
turn ticker messages into PriceQuotes for the aggregator channel.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from enum import Enum, auto
from typing import Any

import aiohttp
import orjson

from crossarb.config.constants import (
    MAX_RECONNECT_DELAY,
    MIN_RECONNECT_DELAY,
    RECONNECT_MULTIPLIER,
    WS_CLOSE_TIMEOUT,
    WS_MAX_MESSAGE_SIZE,
    WS_PING_INTERVAL,
    WS_PING_TIMEOUT,
)
from crossarb.core.types import PriceQuote
from crossarb.market.symbols import SymbolMapper
from crossarb.utils.math import to_decimal
from crossarb.utils.time import get_timestamp_ms


logger = logging.getLogger(__name__)


MessageHandler = Callable[[Any], Coroutine[Any, Any, None]]
QuoteSink = Callable[[PriceQuote], bool]


class ConnectionState(Enum):
    """WebSocket connection state."""

    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    RECONNECTING = auto()
    CLOSED = auto()


class WebSocketConnection:
    """
    Single reconnecting WebSocket connection.

    Handles connection lifecycle, exponential backoff and routing of
    decoded JSON messages to one handler.
    """

    def __init__(self, url: str, message_handler: MessageHandler, name: str = "ws") -> None:
        """
        Initialize WebSocket connection.

        Args:
            url: Full stream URL.
            message_handler: Async callback for decoded messages.
            name: Identifier for logging.
        """
        self._url = url
        self._message_handler = message_handler
        self._name = name

        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._session: aiohttp.ClientSession | None = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_delay = MIN_RECONNECT_DELAY
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._message_count = 0

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def message_count(self) -> int:
        """Get total messages received."""
        return self._message_count

    async def connect(self) -> bool:
        """
        Establish WebSocket connection.

        Returns:
            True if connected successfully.
        """
        if self._state == ConnectionState.CONNECTED:
            return True

        self._state = ConnectionState.CONNECTING

        try:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()

            logger.info(f"[{self._name}] Connecting to {self._url}")
            self._ws = await self._session.ws_connect(
                self._url,
                heartbeat=WS_PING_INTERVAL,
                receive_timeout=WS_PING_TIMEOUT,
                max_msg_size=WS_MAX_MESSAGE_SIZE,
            )

            self._state = ConnectionState.CONNECTED
            self._reconnect_delay = MIN_RECONNECT_DELAY
            logger.info(f"[{self._name}] Connected")
            return True

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[{self._name}] Connection failed: {e}")
            self._state = ConnectionState.DISCONNECTED
            return False

    async def disconnect(self) -> None:
        """Close WebSocket connection."""
        self._running = False
        self._state = ConnectionState.CLOSED

        if self._ws and not self._ws.closed:
            await self._ws.close()

        if self._session and not self._session.closed:
            await self._session.close()

        self._ws = None
        self._session = None

    async def _reconnect(self) -> None:
        """Attempt reconnection with exponential backoff."""
        self._state = ConnectionState.RECONNECTING

        while self._running and self._state != ConnectionState.CONNECTED:
            logger.info(f"[{self._name}] Reconnecting in {self._reconnect_delay:.1f}s")
            await asyncio.sleep(self._reconnect_delay)

            if await self.connect():
                break

            self._reconnect_delay = min(
                self._reconnect_delay * RECONNECT_MULTIPLIER,
                MAX_RECONNECT_DELAY,
            )

    async def _handle_message(self, msg: aiohttp.WSMessage) -> bool:
        """
        Process a WebSocket message.

        Returns:
            False if the connection should be re-established.
        """
        if msg.type == aiohttp.WSMsgType.TEXT:
            try:
                data = orjson.loads(msg.data)
            except orjson.JSONDecodeError as e:
                logger.warning(f"[{self._name}] Invalid JSON: {e}")
                return True

            self._message_count += 1
            try:
                await self._message_handler(data)
            except Exception as e:
                logger.error(f"[{self._name}] Handler error: {e}")

        elif msg.type == aiohttp.WSMsgType.ERROR:
            logger.error(f"[{self._name}] Error: {msg.data}")
            return False

        elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
            logger.warning(f"[{self._name}] Connection closed")
            return False

        return True

    async def run(self) -> None:
        """Main message loop with auto-reconnection."""
        self._running = True

        while self._running:
            if self._state != ConnectionState.CONNECTED:
                if not await self.connect():
                    await self._reconnect()
                    continue

            try:
                if self._ws is None:
                    await self._reconnect()
                    continue

                async for msg in self._ws:
                    if not self._running:
                        break
                    if not await self._handle_message(msg):
                        break

            except asyncio.CancelledError:
                break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"[{self._name}] Error in message loop: {e}")

            if self._running:
                self._state = ConnectionState.DISCONNECTED
                await self._reconnect()

    def start(self) -> asyncio.Task[None]:
        """Start the message loop as a task."""
        self._task = asyncio.create_task(self.run(), name=f"stream-{self._name}")
        return self._task

    async def stop(self) -> None:
        """Stop the message loop and disconnect."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=WS_CLOSE_TIMEOUT)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                pass
            self._task = None

        await self.disconnect()


class BinanceTickerStream:
    """
    Binance all-market mini ticker stream.

    Subscribes to ``!miniTicker@arr`` and forwards close prices of the
    watched symbols to a quote sink.
    """

    STREAM_PATH = "/ws/!miniTicker@arr"

    def __init__(
        self,
        base_url: str,
        mapper: SymbolMapper,
        sink: QuoteSink,
        symbols: list[str],
        exchange: str = "binance",
    ) -> None:
        """
        Initialize the stream.

        Args:
            base_url: WebSocket base URL.
            mapper: Symbol table of the exchange.
            sink: Callable receiving quotes (usually PriceAggregator.publish).
            symbols: Canonical symbols to forward.
            exchange: Exchange name stamped on quotes.
        """
        self._exchange = exchange
        self._mapper = mapper
        self._sink = sink
        self._watched = frozenset(mapper.filter_supported(symbols))
        self._connection = WebSocketConnection(
            url=f"{base_url}{self.STREAM_PATH}",
            message_handler=self.handle_message,
            name=f"{exchange}-tickers",
        )

    async def handle_message(self, data: Any) -> None:
        """Parse one stream payload."""
        tickers = data if isinstance(data, list) else [data]
        observed = get_timestamp_ms()

        for ticker in tickers:
            quote = self.parse_ticker(ticker, observed)
            if quote is not None:
                self._sink(quote)

    def parse_ticker(self, ticker: Any, observed_at_ms: int) -> PriceQuote | None:
        """Convert one mini ticker entry, None if unusable or unwatched."""
        if not isinstance(ticker, dict):
            return None

        symbol = self._mapper.to_canonical(str(ticker.get("s", "")))
        if symbol is None or symbol not in self._watched:
            return None

        price = to_decimal(ticker.get("c"))
        if price is None or price <= 0:
            return None

        return PriceQuote(
            exchange=self._exchange,
            symbol=symbol,
            price=price,
            observed_at_ms=observed_at_ms,
        )

    def start(self) -> asyncio.Task[None]:
        """Start streaming."""
        return self._connection.start()

    async def stop(self) -> None:
        """Stop streaming."""
        await self._connection.stop()

    @property
    def state(self) -> ConnectionState:
        """Underlying connection state."""
        return self._connection.state
