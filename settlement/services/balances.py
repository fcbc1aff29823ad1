# settlement/services/balances.py

"""
Payout balance calculator.

Pure read-side arithmetic over the append-only tables. Never cache a result
beyond the request validation that asked for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from django.db.models import DecimalField, ExpressionWrapper, F, Sum

from settlement.models import CancellationPenalty, Payment, Salon, SalonPayout
from settlement.utils.money import ZERO, q

EARNING_STATUSES = ("captured", "settled")

_OBLIGATION = ExpressionWrapper(
    F("amount") + F("penalty_deduction"),
    output_field=DecimalField(max_digits=14, decimal_places=2),
)


@dataclass(frozen=True)
class BalanceSnapshot:
    salon_id: int
    total_earned: Decimal
    settled_earnings: Decimal
    pending_settlement: Decimal
    total_paid_out: Decimal
    pending_requested: Decimal
    unremitted_cash_penalties: Decimal
    available: Decimal

    def as_dict(self) -> dict:
        return {
            "salon_id": self.salon_id,
            "total_earned": str(self.total_earned),
            "settled_earnings": str(self.settled_earnings),
            "pending_settlement": str(self.pending_settlement),
            "total_paid_out": str(self.total_paid_out),
            "pending_requested": str(self.pending_requested),
            "unremitted_cash_penalties": str(self.unremitted_cash_penalties),
            "available": str(self.available),
        }


def _salon_id(salon) -> int:
    return salon.pk if isinstance(salon, Salon) else int(salon)


def _sum(qs, expr) -> Decimal:
    return q(qs.aggregate(s=Sum(expr))["s"] or ZERO)


def balance_snapshot(salon) -> BalanceSnapshot:
    salon_id = _salon_id(salon)

    payments = Payment.objects.filter(salon_id=salon_id, status__in=EARNING_STATUSES)
    settled = _sum(payments.filter(status="settled"), "salon_amount")
    captured = _sum(payments.filter(status="captured"), "salon_amount")
    total_earned = settled + captured

    payouts = SalonPayout.objects.filter(salon_id=salon_id)
    paid_out = _sum(payouts.filter(status=SalonPayout.STATUS_COMPLETED), _OBLIGATION)
    pending = _sum(payouts.filter(status__in=SalonPayout.ACTIVE_STATUSES), _OBLIGATION)

    # netted penalties already sit inside a payout's obligation
    unremitted = _sum(
        CancellationPenalty.objects.filter(
            collecting_salon_id=salon_id,
            paid_via="cash",
            is_paid=True,
            remitted_to_platform=False,
            remitted_payout__isnull=True,
        ),
        "penalty_amount",
    )

    available = max(ZERO, total_earned - paid_out - pending - unremitted)

    return BalanceSnapshot(
        salon_id=salon_id,
        total_earned=total_earned,
        settled_earnings=settled,
        pending_settlement=captured,
        total_paid_out=paid_out,
        pending_requested=pending,
        unremitted_cash_penalties=unremitted,
        available=available,
    )


def available_balance(salon) -> Decimal:
    return balance_snapshot(salon).available
