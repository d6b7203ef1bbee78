"""
Platform commission.

Amounts are integer minor units. The fee is withheld from what the
producer receives; the buyer never pays it on top of the lines.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import NamedTuple

from django.conf import settings

from apps.utils.money import round_half_away

logger = logging.getLogger(__name__)

DEFAULT_FEE_PERCENT = Decimal("5")


class CommissionBreakdown(NamedTuple):
    subtotal: int
    platform_fee: int
    producer_amount: int
    fee_percent: Decimal
    delivery_fee: int
    buyer_total: int


def get_fee_percent() -> Decimal:
    raw = getattr(settings, "PLATFORM_FEE_PERCENT", None)
    if raw is None or raw == "":
        logger.warning(f"PLATFORM_FEE_PERCENT not set, using {DEFAULT_FEE_PERCENT}%")
        return DEFAULT_FEE_PERCENT

    try:
        percent = Decimal(str(raw))
    except InvalidOperation:
        percent = None

    if percent is None or not percent.is_finite() or percent < 0 or percent > 100:
        logger.warning(f"PLATFORM_FEE_PERCENT={raw!r} is invalid, using {DEFAULT_FEE_PERCENT}%")
        return DEFAULT_FEE_PERCENT
    return percent


def fee(amount: int, percent: Decimal = None) -> int:
    percent = get_fee_percent() if percent is None else percent
    return round_half_away(Decimal(amount) * percent / 100)


def producer_share(amount: int, percent: Decimal = None) -> int:
    return amount - fee(amount, percent)


def breakdown(subtotal: int, delivery_fee: int = 0) -> CommissionBreakdown:
    percent = get_fee_percent()
    platform_fee = fee(subtotal, percent)
    return CommissionBreakdown(
        subtotal=subtotal,
        platform_fee=platform_fee,
        producer_amount=subtotal - platform_fee,
        fee_percent=percent,
        delivery_fee=delivery_fee,
        buyer_total=subtotal + delivery_fee,
    )
