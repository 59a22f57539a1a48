"""Money helpers.

All amounts are ``Decimal`` quantized to cents with ROUND_HALF_UP, which in the
decimal module rounds halves away from zero (-0.005 -> -0.01).
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Decimal | int | str) -> Decimal:
    """Quantize a value to 2 decimal places, rounding half away from zero."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal | None:
    """Convert a loosely typed value to Decimal, or None when not numeric.

    Floats go through ``str`` so 0.1 becomes Decimal("0.1") rather than its
    binary expansion. Strings may carry thousands separators.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None

    if not result.is_finite():
        return None
    return result


def format_amount(value: Decimal | None) -> str:
    """Render an amount as a fixed 2-decimal string (``1234.50``)."""
    return f"{round_money(value if value is not None else ZERO):.2f}"
