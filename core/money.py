"""
Money helpers

Fixed-precision Decimal arithmetic shared by the pricing engine, invoices and
payments. Every monetary amount is rounded to the currency minor unit with
ROUND_HALF_UP, exactly once per computed component.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Union

ZERO = Decimal("0")

# ISO 4217 currencies without the usual two-digit minor unit
_MINOR_UNITS = {
    "JPY": 0,
    "KRW": 0,
    "VND": 0,
    "CLP": 0,
    "ISK": 0,
    "BHD": 3,
    "KWD": 3,
    "JOD": 3,
    "OMR": 3,
    "TND": 3,
}


def minor_units(currency: str) -> int:
    return _MINOR_UNITS.get((currency or "").upper(), 2)


def round_money(amount: Decimal, currency: str = "USD") -> Decimal:
    """Round to the currency's minor unit (2 places for most currencies)"""
    exponent = Decimal(1).scaleb(-minor_units(currency))
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def to_decimal(value: Union[Decimal, int, str, float, None, Any]) -> Decimal:
    """Convert a stored or wire value to Decimal without float artifacts"""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_minor_units(amount: Decimal, currency: str = "USD") -> int:
    """Amount as an integer count of minor units (what Stripe expects)"""
    return int(round_money(amount, currency).scaleb(minor_units(currency)))


def from_minor_units(amount: int, currency: str = "USD") -> Decimal:
    return Decimal(amount).scaleb(-minor_units(currency))


__all__ = [
    "ZERO",
    "minor_units",
    "round_money",
    "to_decimal",
    "to_minor_units",
    "from_minor_units",
]
