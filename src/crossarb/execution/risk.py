"""
Capital sizing for trade execution.

Checks the requested trade capital against the configured bounds and,
once balances are known, against what the exchanges actually hold.
With capital adjustment active the trade is shrunk to a safe fraction
of the available balance instead of failing outright.
"""

import logging
from decimal import Decimal

from crossarb.core.context import TradingContext
from crossarb.utils.math import ZERO


logger = logging.getLogger(__name__)


class CapitalCheckResult:
    """Result of a capital check."""

    __slots__ = ("passed", "reason", "capital", "adjusted")

    def __init__(
        self,
        passed: bool,
        reason: str = "",
        capital: Decimal = ZERO,
        adjusted: bool = False,
    ) -> None:
        self.passed = passed
        self.reason = reason
        self.capital = capital
        self.adjusted = adjusted

    def __bool__(self) -> bool:
        return self.passed

    def __repr__(self) -> str:
        return f"CapitalCheckResult(passed={self.passed}, capital={self.capital}, reason={self.reason!r})"


class CapitalPolicy:
    """
    Trade capital limits.

    Features:
    - Dust floor and upper bound on requested capital
    - Balance check on the buy exchange (quote currency)
    - Optional inventory check on the sell exchange (base currency)
    - Balance-driven shrinking when adjustment is enabled
    """

    def __init__(
        self,
        min_trade_usdt: Decimal,
        max_trade_usdt: Decimal,
        adjust: bool = False,
        safe_fraction: Decimal = Decimal("0.9"),
        max_adjusted_usdt: Decimal = Decimal("50"),
    ) -> None:
        """
        Initialize policy.

        Args:
            min_trade_usdt: Smallest trade worth placing.
            max_trade_usdt: Largest trade allowed.
            adjust: Shrink to available balance instead of failing.
            safe_fraction: Share of the balance an adjusted trade may use.
            max_adjusted_usdt: Cap on adjusted trade capital.
        """
        self._min_trade = min_trade_usdt
        self._max_trade = max_trade_usdt
        self._adjust = adjust
        self._safe_fraction = safe_fraction
        self._max_adjusted = max_adjusted_usdt

    @classmethod
    def from_context(cls, context: TradingContext) -> "CapitalPolicy":
        """Build a policy from the trading context."""
        return cls(
            min_trade_usdt=context.min_trade_usdt,
            max_trade_usdt=context.max_trade_usdt,
            adjust=context.adjust_capital,
            safe_fraction=context.safe_balance_fraction,
            max_adjusted_usdt=context.max_adjusted_trade_usdt,
        )

    @property
    def adjust(self) -> bool:
        """Whether balance-driven shrinking is active."""
        return self._adjust

    def check_requested(self, capital: Decimal) -> CapitalCheckResult:
        """
        Validate requested capital before any network call.

        Args:
            capital: Requested trade capital in quote currency.

        Returns:
            CapitalCheckResult with pass/fail and reason.
        """
        if not capital.is_finite() or capital <= 0:
            return CapitalCheckResult(False, f"Invalid capital amount {capital}")
        if capital < self._min_trade:
            return CapitalCheckResult(
                False, f"Capital {capital} below minimum trade size {self._min_trade}"
            )
        if capital > self._max_trade:
            return CapitalCheckResult(
                False, f"Capital {capital} above maximum trade size {self._max_trade}"
            )
        return CapitalCheckResult(True, capital=capital)

    def size_for_balances(
        self,
        capital: Decimal,
        quote_available: Decimal,
        base_value_available: Decimal | None = None,
    ) -> CapitalCheckResult:
        """
        Fit trade capital to available balances.

        Args:
            capital: Requested trade capital in quote currency.
            quote_available: Free quote balance on the buy exchange.
            base_value_available: Free base balance on the sell exchange,
                valued in quote currency; None when the sell leg does not
                draw on existing inventory.

        Returns:
            CapitalCheckResult carrying the capital to trade.
        """
        limits = [quote_available]
        if base_value_available is not None:
            limits.append(base_value_available)
        available = min(limits)

        if not self._adjust:
            if available < capital:
                return CapitalCheckResult(
                    False,
                    f"Insufficient balance: need {capital}, available {available}",
                )
            return CapitalCheckResult(True, capital=capital)

        adjusted = min(capital, available * self._safe_fraction, self._max_adjusted)
        if adjusted < self._min_trade:
            return CapitalCheckResult(
                False,
                f"Insufficient balance: adjusted capital {adjusted} below "
                f"minimum trade size {self._min_trade}",
            )

        if adjusted != capital:
            logger.info(f"Capital adjusted from {capital} to {adjusted} (available {available})")
        return CapitalCheckResult(True, capital=adjusted, adjusted=adjusted != capital)
