"""
Exception hierarchy.

Exchange errors are raised by adapters and retried there when transient.
Trade errors are raised inside the executor and converted into
TradeFailed values at its boundary; they never reach callers.
"""

from crossarb.core.types import ErrorKind


# =============================================================================
# Exchange Errors
# =============================================================================


class ExchangeError(Exception):
    """Base exception for exchange adapter errors."""

    def __init__(self, exchange: str, message: str, code: int | str | None = None) -> None:
        super().__init__(f"[{exchange}] {message}")
        self.exchange = exchange
        self.code = code


class ExchangeNetworkError(ExchangeError):
    """Transport failure or timeout; retried by the adapter."""

    pass


class ExchangeAPIError(ExchangeError):
    """Error response from the exchange API."""

    def __init__(
        self,
        exchange: str,
        message: str,
        code: int | str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(exchange, message, code)
        self.status = status

    @property
    def is_retryable(self) -> bool:
        """Server-side and rate-limit errors are worth retrying."""
        return self.status is not None and (self.status >= 500 or self.status == 429)


class AuthenticationRequired(ExchangeError):
    """A signed endpoint was called without credentials."""

    pass


class UnknownSymbolError(KeyError):
    """Canonical symbol has no mapping on an exchange."""

    def __init__(self, exchange: str, symbol: str) -> None:
        super().__init__(f"{symbol} is not listed for {exchange}")
        self.exchange = exchange
        self.symbol = symbol


# =============================================================================
# Trade Errors
# =============================================================================


class TradeError(Exception):
    """
    Failure inside one trade execution.

    Carries the error kind recorded on the TradeRecord.
    """

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def partial_failure(self) -> bool:
        """The buy leg executed and the position needs manual reconciliation."""
        return self.kind.is_partial_failure


class ValidationError(TradeError):
    """Opportunity no longer valid or an exchange is unavailable."""

    kind = ErrorKind.VALIDATION_ERROR


class PriceFetchError(TradeError):
    """Price refresh failed after adapter retries."""

    kind = ErrorKind.PRICE_FETCH_ERROR


class BalanceFetchError(TradeError):
    """Balance lookup failed after adapter retries."""

    kind = ErrorKind.BALANCE_FETCH_ERROR


class InsufficientBalance(TradeError):
    """Not enough funds for the trade, even after adjustment."""

    kind = ErrorKind.INSUFFICIENT_BALANCE


class BuyOrderFailed(TradeError):
    """Buy order rejected; nothing was bought."""

    kind = ErrorKind.BUY_ORDER_FAILED


class TransferTimeout(TradeError):
    """Deposit did not arrive before the timeout."""

    kind = ErrorKind.TRANSFER_TIMEOUT


class TransferFailed(TradeError):
    """Withdrawal or deposit lookup failed after the buy leg."""

    kind = ErrorKind.TRANSFER_FAILED


class SellOrderFailed(TradeError):
    """Sell order rejected after a successful buy."""

    kind = ErrorKind.SELL_ORDER_FAILED
