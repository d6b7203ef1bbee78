"""
Money helpers.

Every amount in the database is an integer count of minor units
(centimes for CHF). Decimals only appear at the edges: settings,
serializers and human readable messages.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from django.conf import settings

MINOR_UNITS = 100
TWO_PLACES = Decimal("0.01")


def round_half_away(value: Decimal) -> int:
    """
    Round to the nearest integer, halves away from zero.
    Decimal's ROUND_HALF_UP is exactly that (-2.5 -> -3).
    """
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_minor(amount) -> int:
    """
    Decimal/str/int major units -> int minor units.
    Refuses floats so binary noise never enters the ledger.
    """
    if isinstance(amount, float):
        raise TypeError("Use Decimal or str for money, not float.")
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid money amount: {amount!r}")
    return round_half_away(value * MINOR_UNITS)


def to_decimal(minor: int) -> Decimal:
    return (Decimal(minor) / MINOR_UNITS).quantize(TWO_PLACES)


def format_money(minor: int) -> str:
    currency = getattr(settings, "CURRENCY", "CHF")
    return f"{to_decimal(minor)} {currency}"
