"""
Token bucket rate limiting for exchange REST calls.

Each adapter owns its own limiter; limits are never shared between
exchanges.
"""

import asyncio
import time
from dataclasses import dataclass, field

from crossarb.config.constants import (
    DEFAULT_ORDERS_PER_SECOND,
    DEFAULT_REQUESTS_PER_SECOND,
    REQUEST_WEIGHT_PER_MINUTE,
)


@dataclass
class TokenBucket:
    """
    Token bucket implementation for rate limiting.

    Tokens are added at a constant rate up to a maximum capacity.
    Each request consumes one or more tokens.
    """

    capacity: int
    refill_rate: float  # tokens per second
    tokens: float = field(init=False)
    last_refill: float = field(init=False)  # monotonic seconds
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        """Initialize with full bucket."""
        self.tokens = float(self.capacity)
        self.last_refill = time.monotonic()

    def _refill(self) -> None:
        """Add tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: int = 1) -> None:
        """
        Take tokens, waiting until enough are available.

        Args:
            tokens: Number of tokens to acquire.
        """
        async with self._lock:
            self._refill()

            if self.tokens < tokens:
                wait_seconds = (tokens - self.tokens) / self.refill_rate
                await asyncio.sleep(wait_seconds)
                self._refill()

            self.tokens -= tokens

    async def try_acquire(self, tokens: int = 1) -> bool:
        """
        Take tokens without waiting.

        Returns:
            True if tokens were acquired, False if not enough available.
        """
        async with self._lock:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return True
            return False


class RateLimiter:
    """
    Per-adapter rate limiter.

    Separate buckets for general requests and order placement, both
    drawing on a shared per-minute weight budget.
    """

    def __init__(
        self,
        requests_per_second: int = DEFAULT_REQUESTS_PER_SECOND,
        orders_per_second: int = DEFAULT_ORDERS_PER_SECOND,
        weight_per_minute: int = REQUEST_WEIGHT_PER_MINUTE,
    ) -> None:
        """
        Initialize rate limiter with specified limits.

        Args:
            requests_per_second: Maximum general requests per second.
            orders_per_second: Maximum order requests per second.
            weight_per_minute: Maximum request weight per minute.
        """
        self._request_bucket = TokenBucket(
            capacity=requests_per_second * 2,
            refill_rate=float(requests_per_second),
        )
        self._order_bucket = TokenBucket(
            capacity=orders_per_second * 2,
            refill_rate=float(orders_per_second),
        )
        self._weight_bucket = TokenBucket(
            capacity=weight_per_minute,
            refill_rate=weight_per_minute / 60.0,
        )

    async def acquire(self, weight: int = 1, order: bool = False) -> None:
        """
        Wait for permission to send one request.

        Args:
            weight: Request weight (varies by endpoint).
            order: Whether the request places an order.
        """
        bucket = self._order_bucket if order else self._request_bucket
        await asyncio.gather(
            bucket.acquire(1),
            self._weight_bucket.acquire(weight),
        )

    @property
    def available_requests(self) -> float:
        """Approximate number of request tokens left."""
        return min(self._request_bucket.tokens, self._weight_bucket.tokens)
