"""
Decimal helpers for price and quantity calculations.

Exchange prices arrive as strings or floats; everything downstream
works in Decimal so fee-sized differences are not lost to binary
floating point.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Final


ZERO: Final[Decimal] = Decimal("0")
ONE: Final[Decimal] = Decimal("1")
HUNDRED: Final[Decimal] = Decimal("100")


def to_decimal(value: object, default: Decimal | None = None) -> Decimal | None:
    """
    Convert an exchange value to Decimal.

    Floats go through ``str`` first so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Args:
        value: String, int, float or Decimal.
        default: Value returned when conversion is not possible.

    Returns:
        Decimal value, or default for missing/unparseable input.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default
    return result if result.is_finite() else default


def floor_to_precision(value: Decimal, precision: int) -> Decimal:
    """
    Round a quantity down to a fixed number of decimal places.

    Uses floor so an order never spends more than the available capital.

    Args:
        value: Quantity to round.
        precision: Number of decimal places.

    Returns:
        Quantity rounded down.

    Example:
        >>> floor_to_precision(Decimal("0.0019999999"), 8)
        Decimal('0.00199999')
    """
    quantum = Decimal(1).scaleb(-precision)
    return value.quantize(quantum, rounding=ROUND_DOWN)


def safe_divide(numerator: Decimal, denominator: Decimal, default: Decimal = ZERO) -> Decimal:
    """
    Divide two Decimals, returning default on division by zero.

    Args:
        numerator: The dividend.
        denominator: The divisor.
        default: Value to return if denominator is zero.

    Returns:
        Result of division or default value.
    """
    if denominator == 0:
        return default
    return numerator / denominator


def format_decimal(value: Decimal, precision: int = 8) -> str:
    """
    Format a Decimal for an order payload.

    Rounds down to ``precision`` places and strips trailing zeros.

    Example:
        >>> format_decimal(Decimal("0.00200000"))
        '0.002'
    """
    text = format(floor_to_precision(value, precision), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def percent(fraction: Decimal) -> Decimal:
    """Convert a fraction into a percentage value."""
    return fraction * HUNDRED
