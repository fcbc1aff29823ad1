# settlement/services/payout_approval.py

"""
Payout approval state machine.

    pending    --approve-->   processing --complete--> completed
    pending    --reject--->   failed
    processing --fail----->   failed

Every transition locks the payout row, checks the current state and commits
the new one in a single atomic unit, so a terminal state is reached exactly
once. Notifications are queued for after the commit. The payout rail is only
ever called after the `processing` commit, outside every lock.
"""

from __future__ import annotations

import logging
from typing import Optional

from django.db import OperationalError, transaction
from django.utils import timezone

from settlement.exceptions import ConcurrencyConflict, InvalidTransition
from settlement.models import SalonPayout
from settlement.rails import PayoutRail, PayoutRailError, generate_reference, get_payout_rail
from settlement.services import penalties as penalty_ledger
from settlement.utils.notifications import dispatch_on_commit, notify_payout_status

logger = logging.getLogger(__name__)

RAIL_SUCCESS_STATUSES = {"processed"}
RAIL_FAILURE_STATUSES = {"failed", "reversed", "rejected", "cancelled"}


def _transition(payout, allowed_from, to_status, apply=None) -> SalonPayout:
    try:
        with transaction.atomic():
            locked = SalonPayout.objects.select_for_update(of=("self",)).select_related("salon").get(pk=payout.pk)
            if locked.status not in allowed_from:
                raise InvalidTransition(
                    f"Payout {locked.pk} cannot move from {locked.status} to {to_status}"
                )

            from_status = locked.status
            locked.status = to_status
            if apply is not None:
                apply(locked)
            locked.save()

            if to_status == SalonPayout.STATUS_COMPLETED:
                penalty_ledger.remit_for_payout(locked)
            elif to_status == SalonPayout.STATUS_FAILED:
                released = penalty_ledger.release_from_payout(locked)
                if released:
                    logger.info("Payout %s released %s netted penalties", locked.pk, released)

            dispatch_on_commit(notify_payout_status, locked)
    except OperationalError as e:
        raise ConcurrencyConflict(f"Payout {payout.pk} is locked, retry") from e

    logger.info("Payout %s: %s -> %s", locked.pk, from_status, to_status)
    return locked


def approve_payout(payout: SalonPayout, admin=None, *, rail: Optional[PayoutRail] = None) -> SalonPayout:
    """
    pending -> processing, then hand the net amount to the payout rail.
    A rail that refuses the transfer moves the payout straight to failed.
    """
    def apply(p):
        p.approved_at = timezone.now()
        p.processed_by = admin
        p.rail_reference = p.rail_reference or generate_reference(p.pk)

    payout = _transition(payout, (SalonPayout.STATUS_PENDING,), SalonPayout.STATUS_PROCESSING, apply)

    rail = rail or get_payout_rail()
    try:
        result = rail.initiate(payout)
    except PayoutRailError as e:
        logger.error("Payout %s rail initiation failed: %s", payout.pk, e)
        return fail_payout(payout, str(e), admin=admin)

    SalonPayout.objects.filter(pk=payout.pk).update(
        rail_reference=result.reference or payout.rail_reference,
        rail_payout_id=result.rail_payout_id,
        rail_status=result.status,
        updated_at=timezone.now(),
    )
    payout.refresh_from_db()

    if result.status in RAIL_SUCCESS_STATUSES | RAIL_FAILURE_STATUSES:
        return finalize_payout_from_rail(payout.rail_reference, result.status) or payout
    return payout


def reject_payout(payout: SalonPayout, admin=None, reason: str = "") -> SalonPayout:
    def apply(p):
        p.processed_by = admin
        p.processed_at = timezone.now()
        p.failure_reason = reason or "Rejected by admin"

    return _transition(payout, (SalonPayout.STATUS_PENDING,), SalonPayout.STATUS_FAILED, apply)


def complete_payout(payout: SalonPayout, admin=None, transaction_reference: str = "") -> SalonPayout:
    def apply(p):
        if admin is not None:
            p.processed_by = admin
        p.processed_at = timezone.now()
        if transaction_reference:
            p.transaction_reference = transaction_reference

    return _transition(payout, (SalonPayout.STATUS_PROCESSING,), SalonPayout.STATUS_COMPLETED, apply)


def fail_payout(payout: SalonPayout, reason: str, admin=None) -> SalonPayout:
    def apply(p):
        if admin is not None:
            p.processed_by = admin
        p.processed_at = timezone.now()
        p.failure_reason = reason or "Transfer failed"

    return _transition(payout, (SalonPayout.STATUS_PROCESSING,), SalonPayout.STATUS_FAILED, apply)


def finalize_payout_from_rail(reference: str, rail_status: str, *, failure_reason: str = "",
                              utr: str = "") -> Optional[SalonPayout]:
    """
    Apply a rail outcome (webhook or poll). Safe to call repeatedly: once a
    payout is terminal only its `rail_status` is refreshed.
    """
    rail_status = (rail_status or "").lower().strip()
    payout = (
        SalonPayout.objects.filter(rail_reference=reference).first()
        or SalonPayout.objects.filter(rail_payout_id=reference).first()
    )
    if payout is None:
        logger.warning("Rail update for unknown payout reference %s (%s)", reference, rail_status)
        return None

    if payout.is_terminal or payout.status != SalonPayout.STATUS_PROCESSING:
        SalonPayout.objects.filter(pk=payout.pk).update(rail_status=rail_status, updated_at=timezone.now())
        payout.rail_status = rail_status
        return payout

    if rail_status in RAIL_SUCCESS_STATUSES:
        def apply(p):
            p.rail_status = rail_status
            p.processed_at = timezone.now()
            if utr:
                p.transaction_reference = utr
        target = SalonPayout.STATUS_COMPLETED
    elif rail_status in RAIL_FAILURE_STATUSES:
        def apply(p):
            p.rail_status = rail_status
            p.processed_at = timezone.now()
            p.failure_reason = failure_reason or f"Transfer {rail_status} by the bank"
        target = SalonPayout.STATUS_FAILED
    else:
        SalonPayout.objects.filter(pk=payout.pk).update(rail_status=rail_status, updated_at=timezone.now())
        payout.rail_status = rail_status
        return payout

    try:
        return _transition(payout, (SalonPayout.STATUS_PROCESSING,), target, apply)
    except InvalidTransition:
        # another webhook delivery won the race
        payout.refresh_from_db()
        return payout


def sync_processing_payouts(rail: Optional[PayoutRail] = None) -> dict:
    rail = rail or get_payout_rail()
    stats = {"checked": 0, "completed": 0, "failed": 0, "unchanged": 0}

    qs = SalonPayout.objects.filter(status=SalonPayout.STATUS_PROCESSING).exclude(rail_payout_id="")
    for payout in qs.iterator():
        stats["checked"] += 1
        status = rail.fetch_status(payout)
        if not status:
            stats["unchanged"] += 1
            continue

        updated = finalize_payout_from_rail(payout.rail_reference or payout.rail_payout_id, status)
        if updated is not None and updated.status == SalonPayout.STATUS_COMPLETED:
            stats["completed"] += 1
        elif updated is not None and updated.status == SalonPayout.STATUS_FAILED:
            stats["failed"] += 1
        else:
            stats["unchanged"] += 1

    logger.info("Payout status sync: %s", stats)
    return stats
