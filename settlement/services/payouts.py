# settlement/services/payouts.py

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from django.conf import settings
from django.db import OperationalError, transaction

from settlement.exceptions import ConcurrencyConflict, InsufficientBalance, ValidationError
from settlement.models import Salon, SalonBankAccount, SalonPayout
from settlement.services import penalties as penalty_ledger
from settlement.services.balances import balance_snapshot
from settlement.services.bank_accounts import is_valid_upi, primary_destination
from settlement.utils.money import ZERO, q, rate, round_rupees
from settlement.utils.notifications import dispatch_on_commit, notify_payout_status

logger = logging.getLogger(__name__)

PAYOUT_METHODS = {c for c, _ in SalonPayout.METHOD_CHOICES}
UPI_METHODS = (SalonPayout.METHOD_UPI, SalonPayout.METHOD_INSTANT_UPI)


def minimum_payout_amount() -> Decimal:
    return q(getattr(settings, "MINIMUM_PAYOUT_AMOUNT", "100.00"))


def compute_instant_fee(amount) -> Decimal:
    fee_rate = rate(getattr(settings, "INSTANT_PAYOUT_FEE_RATE", "0.01"))
    fee = round_rupees(q(amount) * fee_rate)
    return min(fee, q(amount))


def payout_breakdown(amount, method: str) -> Tuple[Decimal, Decimal]:
    """(fee, net) for a gross payout amount."""
    amount = q(amount)
    fee = compute_instant_fee(amount) if method == SalonPayout.METHOD_INSTANT_UPI else ZERO
    return fee, amount - fee


def resolve_destination(salon: Salon, method: str, bank_account: Optional[SalonBankAccount] = None,
                        upi_id: str = "") -> Tuple[Optional[SalonBankAccount], str]:
    upi_id = (upi_id or "").strip()

    if bank_account is not None and bank_account.salon_id != salon.pk:
        raise ValidationError("Bank account does not belong to this salon")

    if method == SalonPayout.METHOD_BANK_TRANSFER:
        account = bank_account
        if account is None:
            account = primary_destination(salon)
        if account is None or account.account_type != "bank" or not account.account_number:
            raise ValidationError("Bank transfer payouts need a bank account")
        return account, ""

    # UPI rails
    if not upi_id:
        account = bank_account or primary_destination(salon)
        if account is not None and account.upi_id:
            return account, account.upi_id
        raise ValidationError("UPI payouts need a UPI id")
    if not is_valid_upi(upi_id):
        raise ValidationError("Invalid UPI id format")
    return bank_account, upi_id


def create_payout_request(
    salon: Salon,
    amount,
    method: str,
    *,
    bank_account: Optional[SalonBankAccount] = None,
    upi_id: str = "",
    note: str = "",
    requested_by=None,
    minimum_amount=None,
    is_automated: bool = False,
    period_start=None,
    period_end=None,
) -> SalonPayout:
    """
    Validate and insert a `pending` payout for the gross `amount`.

    The balance check and the insert run under a lock on the salon row, so
    two concurrent requests can never jointly overdraw the balance. The fee
    and net are recorded alongside the gross; the gross is what the balance
    calculator discharges.
    """
    if method not in PAYOUT_METHODS:
        raise ValidationError(f"Unknown payout method {method!r}")

    try:
        amount = q(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid amount") from None

    minimum = q(minimum_amount) if minimum_amount is not None else minimum_payout_amount()
    if amount < minimum:
        raise ValidationError(f"Minimum payout amount is ₹{minimum}")

    if not salon.is_active or salon.status != "approved":
        raise ValidationError("Salon is not eligible for payouts")

    account, upi = resolve_destination(salon, method, bank_account=bank_account, upi_id=upi_id)
    fee, net = payout_breakdown(amount, method)
    if net <= ZERO:
        raise ValidationError("Payout amount does not cover the fee")

    try:
        with transaction.atomic():
            Salon.objects.select_for_update().get(pk=salon.pk)

            snapshot = balance_snapshot(salon)
            if amount > snapshot.available:
                raise InsufficientBalance(
                    f"Requested ₹{amount} exceeds available balance ₹{snapshot.available}",
                    requested=amount,
                    available=snapshot.available,
                )

            payout = SalonPayout.objects.create(
                salon=salon,
                amount=amount,
                fee_amount=fee,
                net_amount=net,
                payout_method=method,
                bank_account=account,
                upi_id=upi,
                notes=note or "",
                requested_by=requested_by,
                is_automated=is_automated,
                period_start=period_start,
                period_end=period_end,
            )

            deduction = penalty_ledger.attach_to_payout(payout)
            if deduction > ZERO:
                payout.penalty_deduction = deduction
                payout.save(update_fields=["penalty_deduction", "updated_at"])

            dispatch_on_commit(notify_payout_status, payout)
    except OperationalError as e:
        raise ConcurrencyConflict(f"Salon {salon.pk} balance is locked, retry") from e

    logger.info(
        "Payout %s requested for salon %s: gross %s, fee %s, net %s via %s%s",
        payout.pk, salon.pk, amount, fee, net, method, " (automated)" if is_automated else "",
    )
    return payout
