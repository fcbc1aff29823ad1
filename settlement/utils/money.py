# settlement/utils/money.py

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0.00")
PAISE_PER_RUPEE = Decimal("100")


def q(amount) -> Decimal:
    """Quantize to paise (2 dp, half-up)."""
    return Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def round_rupees(amount) -> Decimal:
    """Round to whole rupees (half-up), kept at 2 dp for storage."""
    return Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP).quantize(Decimal("0.01"))


def rate(value) -> Decimal:
    return Decimal(str(value))


def to_paise(amount) -> int:
    """
    Razorpay expects integer minor units (paise).
    """
    return int((q(amount) * PAISE_PER_RUPEE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_paise(amount_minor: int) -> Decimal:
    return q(Decimal(str(int(amount_minor))) / PAISE_PER_RUPEE)


def split_commission(service_amount, commission_rate) -> tuple[Decimal, Decimal]:
    """
    Returns (salon_share, platform_share) of a service amount.
    The platform share is the remainder, so the two always add up exactly.
    """
    service_amount = q(service_amount)
    salon_share = q(service_amount * (Decimal("1") - rate(commission_rate)))
    return salon_share, service_amount - salon_share
