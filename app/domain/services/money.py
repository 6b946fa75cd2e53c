"""
Currency helpers.

All amounts are Decimal and every rounding step goes to the nearest whole
currency unit, halves away from zero.
"""
from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")
_UNIT = Decimal("1")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    """Convert through str() so floats like 4.2 do not drag binary noise along"""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_currency(value: Decimal | int | float | str) -> Decimal:
    return to_decimal(value).quantize(_UNIT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """round(amount * percent / 100)"""
    return round_currency(to_decimal(amount) * to_decimal(percent) / HUNDRED)
