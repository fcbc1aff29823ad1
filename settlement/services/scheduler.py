# settlement/services/scheduler.py

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from django.db.models import Q
from django.utils import timezone

from settlement.exceptions import SettlementError
from settlement.models import PayoutScheduleSettings, Salon, SalonPayout
from settlement.rails import PayoutRail
from settlement.services.balances import available_balance
from settlement.services.bank_accounts import primary_destination
from settlement.services.payout_approval import approve_payout
from settlement.services.payouts import create_payout_request

logger = logging.getLogger(__name__)


def compute_next_run(day_of_week: int, now):
    """Next occurrence of `day_of_week` (0=Sunday) strictly after `now`'s date, at 00:00 local."""
    local = timezone.localtime(now) if timezone.is_aware(now) else now
    days_ahead = (day_of_week - local.isoweekday() % 7) % 7 or 7
    return (local + timedelta(days=days_ahead)).replace(hour=0, minute=0, second=0, microsecond=0)


def _local_date(dt):
    return timezone.localtime(dt).date() if timezone.is_aware(dt) else dt.date()


def already_ran_this_period(schedule: PayoutScheduleSettings, now) -> bool:
    return bool(schedule.last_run_at) and _local_date(schedule.last_run_at) >= _local_date(now)


def eligible_salons():
    return Salon.objects.filter(is_active=True, status="approved").filter(
        Q(bank_accounts__is_verified=True)
    ).distinct().order_by("id")


def _method_for(account) -> str:
    if account.upi_id:
        return SalonPayout.METHOD_UPI
    return SalonPayout.METHOD_BANK_TRANSFER


def run_scheduled_payouts(schedule: PayoutScheduleSettings, now=None, *, force: bool = False,
                          rail: Optional[PayoutRail] = None) -> dict:
    """
    One scheduler tick. `schedule` is loaded once by the caller and passed in.

    Creates a payout for the full available balance of every eligible salon at
    or above the schedule minimum, auto-approving those at or below the
    threshold. Re-running within the same period creates nothing.
    """
    now = now or timezone.now()
    stats = {
        "ran": False,
        "reason": "",
        "salons_checked": 0,
        "created": 0,
        "auto_approved": 0,
        "left_pending": 0,
        "skipped_below_minimum": 0,
        "skipped_no_destination": 0,
        "skipped_existing": 0,
        "errors": 0,
        "payout_ids": [],
    }

    if not force:
        if not schedule.is_enabled:
            stats["reason"] = "disabled"
            return stats
        if not schedule.is_scheduled_day(timezone.localtime(now) if timezone.is_aware(now) else now):
            stats["reason"] = "not_scheduled_day"
            return stats
        if already_ran_this_period(schedule, now):
            stats["reason"] = "already_ran"
            logger.info("Scheduled payouts already ran on %s", _local_date(schedule.last_run_at))
            return stats

    today = _local_date(now)
    period_start = _local_date(schedule.last_run_at) if schedule.last_run_at else today - timedelta(days=7)
    minimum = schedule.minimum_payout_amount
    threshold = schedule.auto_approve_threshold

    for salon in eligible_salons():
        stats["salons_checked"] += 1

        if SalonPayout.objects.filter(salon=salon, is_automated=True, period_end=today).exists():
            stats["skipped_existing"] += 1
            continue

        account = primary_destination(salon, verified_only=True)
        if account is None:
            stats["skipped_no_destination"] += 1
            continue

        amount = available_balance(salon)
        if amount < minimum:
            stats["skipped_below_minimum"] += 1
            continue

        try:
            payout = create_payout_request(
                salon,
                amount,
                _method_for(account),
                bank_account=account,
                note="Scheduled payout",
                minimum_amount=minimum,
                is_automated=True,
                period_start=period_start,
                period_end=today,
            )
        except SettlementError as e:
            stats["errors"] += 1
            logger.warning("Scheduled payout for salon %s skipped: %s", salon.pk, e)
            continue

        stats["created"] += 1
        stats["payout_ids"].append(payout.pk)

        if threshold is not None and payout.amount <= threshold:
            try:
                payout = approve_payout(payout, admin=None, rail=rail)
                stats["auto_approved"] += 1
            except SettlementError as e:
                stats["errors"] += 1
                logger.error("Auto-approval of payout %s failed: %s", payout.pk, e)
        else:
            stats["left_pending"] += 1

    schedule.last_run_at = now
    schedule.next_run_at = compute_next_run(schedule.day_of_week, now)
    schedule.save(update_fields=["last_run_at", "next_run_at", "updated_at"])

    stats["ran"] = True
    logger.info("Scheduled payout run finished: %s", {k: v for k, v in stats.items() if k != "payout_ids"})
    return stats
