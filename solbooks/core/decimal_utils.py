"""
Utility functions for Decimal conversions at boundaries.

Amounts and prices are kept as Decimal internally and only converted to or
from floats and strings when crossing JSON, RPC or display boundaries.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union


def float_to_decimal(value: Optional[Union[float, str, int, Decimal]]) -> Decimal:
    """
    Safely convert a number-like value to Decimal.

    Args:
        value: Float, string, int, Decimal or None to convert

    Returns:
        Decimal value, or Decimal('0') if value is None or invalid
    """
    if value is None:
        return Decimal('0')

    if isinstance(value, Decimal):
        return value

    if isinstance(value, bool):
        return Decimal('0')

    if isinstance(value, str):
        try:
            return Decimal(value)
        except (InvalidOperation, ValueError):
            return Decimal('0')

    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return Decimal('0')
        # String conversion avoids binary float artefacts
        return Decimal(str(value))

    return Decimal('0')


def parse_finite_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse an external numeric value, rejecting anything non-finite.

    Unlike ``float_to_decimal`` this does not default to zero: malformed,
    NaN and infinite inputs yield None so the caller can decide on a fallback.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def scale_raw_amount(raw: Union[int, str], decimals: int) -> Decimal:
    """Convert a raw integer base-unit amount into UI units."""
    return Decimal(int(raw)).scaleb(-int(decimals))


def safe_decimal_divide(numerator: Decimal, denominator: Decimal, default: Decimal = Decimal('0')) -> Decimal:
    """
    Safely divide two Decimals, returning default if denominator is zero.
    """
    if denominator == Decimal('0'):
        return default
    return numerator / denominator
