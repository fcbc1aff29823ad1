# settlement/services/penalties.py

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, List

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from settlement.exceptions import InvalidTransition, ValidationError
from settlement.models import CancellationPenalty, PenaltyRemittance, SalonPayout
from settlement.utils.money import ZERO, q, round_rupees
from settlement.utils.notifications import dispatch_on_commit, notify_penalty_waived

logger = logging.getLogger(__name__)

CHANNEL_PLATFORM = "platform"
CHANNEL_CASH = "cash"
CHANNELS = (CHANNEL_PLATFORM, CHANNEL_CASH)


# =============================================================================
# ACCRUAL
# =============================================================================

def accrue(user, originating_salon, amount, *, booking=None, percentage=ZERO,
           original_price=ZERO) -> CancellationPenalty:
    """Create an unpaid penalty. There is no cap on how many a customer can owe."""
    amount = q(amount)
    if amount <= ZERO:
        raise ValidationError("Penalty amount must be greater than zero")

    penalty = CancellationPenalty.objects.create(
        user=user,
        booking=booking,
        originating_salon=originating_salon,
        penalty_amount=amount,
        penalty_percentage=q(percentage),
        original_service_price=q(original_price),
    )
    logger.info("Penalty %s of %s accrued for user %s (salon %s)",
                penalty.id, amount, user.pk, originating_salon.pk)
    return penalty


def accrue_for_cancellation(booking, percentage) -> CancellationPenalty | None:
    """
    Penalty for a late cancellation: `percentage` of the service price, rounded
    to whole rupees. Returns None when the policy yields nothing to charge.
    """
    percentage = Decimal(str(percentage))
    if percentage < ZERO or percentage > Decimal("100"):
        raise ValidationError("Penalty percentage must be between 0 and 100")

    amount = round_rupees(Decimal(str(booking.service_price)) * percentage / Decimal("100"))
    if amount <= ZERO:
        return None

    return accrue(
        booking.user,
        booking.salon,
        amount,
        booking=booking,
        percentage=percentage,
        original_price=booking.service_price,
    )


def outstanding_penalties(user):
    return CancellationPenalty.objects.filter(
        user=user,
        is_paid=False,
        is_waived=False,
    ).order_by("created_at", "id")


def outstanding_total(user) -> Decimal:
    total = outstanding_penalties(user).aggregate(s=Sum("penalty_amount"))["s"]
    return q(total or ZERO)


# =============================================================================
# SETTLEMENT
# =============================================================================

def settle(penalty_ids: Iterable[int], collecting_salon=None, channel: str = CHANNEL_PLATFORM,
           *, paid_booking=None) -> int:
    """
    Flip outstanding penalties to paid via `channel`.

    The update is conditional on `is_paid=False`, so settling an already-paid
    penalty is a silent no-op. Returns how many rows actually changed.
    """
    if channel not in CHANNELS:
        raise ValidationError(f"Unknown penalty channel {channel!r}")
    if channel == CHANNEL_CASH and collecting_salon is None:
        raise ValidationError("Cash penalties need the collecting salon")

    ids = [int(pk) for pk in penalty_ids]
    if not ids:
        return 0

    with transaction.atomic():
        changed = CancellationPenalty.objects.filter(
            pk__in=ids,
            is_paid=False,
            is_waived=False,
        ).update(
            is_paid=True,
            paid_at=timezone.now(),
            paid_via=channel,
            collecting_salon=collecting_salon if channel == CHANNEL_CASH else None,
            paid_booking=paid_booking,
            updated_at=timezone.now(),
        )

    if changed:
        logger.info("Settled %s penalties via %s", changed, channel)
    if changed != len(ids):
        logger.info("%s of %s penalties were already settled or waived", len(ids) - changed, len(ids))
    return changed


def waive(penalty: CancellationPenalty, admin, reason: str = "") -> CancellationPenalty:
    with transaction.atomic():
        penalty = CancellationPenalty.objects.select_for_update().get(pk=penalty.pk)
        if penalty.is_waived:
            return penalty
        if penalty.is_paid:
            raise InvalidTransition("A paid penalty cannot be waived")

        penalty.is_waived = True
        penalty.waived_at = timezone.now()
        penalty.waived_by = admin
        penalty.waived_reason = reason or ""
        penalty.save(update_fields=["is_waived", "waived_at", "waived_by", "waived_reason", "updated_at"])
        dispatch_on_commit(notify_penalty_waived, penalty)

    logger.info("Penalty %s waived by %s", penalty.id, getattr(admin, "pk", None))
    return penalty


# =============================================================================
# REMITTANCE
# =============================================================================

def unremitted_cash_penalties(salon):
    """Cash the salon collected for the platform and has not handed over or netted yet."""
    return CancellationPenalty.objects.filter(
        collecting_salon=salon,
        is_paid=True,
        paid_via=CHANNEL_CASH,
        remitted_to_platform=False,
        remitted_payout__isnull=True,
    )


def mark_remitted(penalty_ids: Iterable[int], recorded_by=None, note: str = "") -> List[PenaltyRemittance]:
    """
    Record that salons handed over the cash penalties they collected.

    One remittance row is written per collecting salon. Penalties that were
    already remitted are skipped; ones currently netted against an open payout
    are refused since that payout will remit them itself.
    """
    ids = [int(pk) for pk in penalty_ids]
    if not ids:
        return []

    remittances = []
    with transaction.atomic():
        penalties = list(
            CancellationPenalty.objects.select_for_update()
            .filter(pk__in=ids)
            .order_by("collecting_salon_id", "id")
        )
        if len(penalties) != len(set(ids)):
            raise ValidationError("Unknown penalty id")

        by_salon = {}
        for p in penalties:
            if p.remitted_to_platform:
                continue
            if not p.is_paid or p.paid_via != CHANNEL_CASH:
                raise InvalidTransition(f"Penalty {p.id} was not collected in cash")
            if p.remitted_payout_id:
                raise InvalidTransition(f"Penalty {p.id} is being netted against payout {p.remitted_payout_id}")
            by_salon.setdefault(p.collecting_salon_id, []).append(p)

        now = timezone.now()
        for salon_id, group in by_salon.items():
            CancellationPenalty.objects.filter(pk__in=[p.pk for p in group]).update(
                remitted_to_platform=True,
                remitted_at=now,
                updated_at=now,
            )
            remittance = PenaltyRemittance.objects.create(
                salon_id=salon_id,
                total_amount=q(sum((p.penalty_amount for p in group), ZERO)),
                note=note or "",
                recorded_by=recorded_by,
            )
            remittance.penalties.set(group)
            remittances.append(remittance)
            logger.info("Salon %s remitted %s cash penalties (%s)", salon_id, len(group), remittance.total_amount)

    return remittances


# =============================================================================
# PAYOUT NETTING
# =============================================================================
# Called from inside the payout state machine's atomic blocks.

def attach_to_payout(payout: SalonPayout) -> Decimal:
    """Net the salon's unremitted cash penalties against a new payout."""
    penalties = list(unremitted_cash_penalties(payout.salon).select_for_update())
    if not penalties:
        return ZERO

    CancellationPenalty.objects.filter(pk__in=[p.pk for p in penalties]).update(
        remitted_payout=payout,
        updated_at=timezone.now(),
    )
    total = q(sum((p.penalty_amount for p in penalties), ZERO))
    logger.info("Netting %s cash penalties (%s) against payout %s", len(penalties), total, payout.id)
    return total


def release_from_payout(payout: SalonPayout) -> int:
    """A failed payout hands its netted penalties back to the unremitted pool."""
    return CancellationPenalty.objects.filter(
        remitted_payout=payout,
        remitted_to_platform=False,
    ).update(remitted_payout=None, updated_at=timezone.now())


def remit_for_payout(payout: SalonPayout) -> PenaltyRemittance | None:
    penalties = list(
        CancellationPenalty.objects.select_for_update().filter(
            remitted_payout=payout,
            remitted_to_platform=False,
        )
    )
    if not penalties:
        return None

    now = timezone.now()
    CancellationPenalty.objects.filter(pk__in=[p.pk for p in penalties]).update(
        remitted_to_platform=True,
        remitted_at=now,
        updated_at=now,
    )
    remittance = PenaltyRemittance.objects.create(
        salon=payout.salon,
        payout=payout,
        total_amount=q(sum((p.penalty_amount for p in penalties), ZERO)),
        note=f"Deducted from payout #{payout.id}",
        recorded_by=payout.processed_by,
    )
    remittance.penalties.set(penalties)
    return remittance
