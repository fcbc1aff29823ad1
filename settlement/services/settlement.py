# settlement/services/settlement.py

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from django.conf import settings
from django.db import OperationalError, transaction
from django.utils import timezone

from settlement.exceptions import ConcurrencyConflict, PartialFailure, ReconciliationRequired, ValidationError
from settlement.gateways import AuthorizationResult, PaymentAuthorizationService, get_payment_authorization_service
from settlement.models import Booking, CancellationPenalty, Payment
from settlement.services import penalties as penalty_ledger
from settlement.services import wallet as wallet_ledger
from settlement.utils.money import ZERO, q, rate, split_commission
from settlement.utils.notifications import dispatch_on_commit, notify_admins

logger = logging.getLogger(__name__)

WALLET_CATEGORY = "booking_payment"
PAYMENT_METHODS = {c for c, _ in Payment.METHOD_CHOICES}


def commission_rate() -> Decimal:
    return rate(getattr(settings, "PLATFORM_COMMISSION_RATE", "0.08"))


def compute_split(service_amount, penalty_amount, payment_method: str) -> dict:
    """
    Platform/salon split of a single charge.

    The commission applies to the service amount only and never to cash
    bookings. Penalties are platform revenue on every channel.
    """
    service_amount = q(service_amount)
    penalty_amount = q(penalty_amount)

    if payment_method == Payment.METHOD_CASH_AT_SALON:
        salon_amount = service_amount
        fee_percentage = ZERO
    elif payment_method in (Payment.METHOD_UPI, Payment.METHOD_WALLET_ONLY):
        salon_amount, _ = split_commission(service_amount, commission_rate())
        fee_percentage = q(commission_rate() * Decimal("100"))
    else:
        raise ValidationError(f"Unknown payment method {payment_method!r}")

    gross = service_amount + penalty_amount
    return {
        "gross_amount": gross,
        "salon_amount": salon_amount,
        "platform_fee": gross - salon_amount,
        "fee_percentage": fee_percentage,
    }


def _prior_wallet_debit(booking: Booking):
    return wallet_ledger.find_debit(booking.user, WALLET_CATEGORY, str(booking.id))


def capture_booking(
    booking: Booking,
    payment_method: str,
    wallet_amount=ZERO,
    *,
    metadata: Optional[dict] = None,
    gateway: Optional[PaymentAuthorizationService] = None,
) -> Payment:
    """
    Capture a booking's payment and apply the settlement split.

    Order of effects:
      1. the wallet portion (if any) is debited in its own atomic unit,
         deduplicated by booking so a retry never debits twice
      2. the online remainder is authorized, holding no lock
      3. payment insert + penalty settlement + booking update commit together

    Idempotent by booking: a second call returns the existing Payment.
    Raises GatewayDeclined, or PartialFailure when step 1 already committed.
    Raises ReconciliationRequired when step 2 charged the customer but step 3
    could not commit; that error must not be retried.
    """
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method {payment_method!r}")

    existing = Payment.objects.filter(booking_id=booking.pk).first()
    if existing:
        logger.info("Booking %s already captured as payment %s", booking.pk, existing.pk)
        return existing

    if booking.status == "cancelled":
        raise ValidationError("A cancelled booking cannot be paid for")

    try:
        wallet_amount = q(wallet_amount or ZERO)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid wallet amount") from None
    if wallet_amount < ZERO:
        raise ValidationError("Wallet amount cannot be negative")

    service_amount = q(booking.service_price)
    pending = list(penalty_ledger.outstanding_penalties(booking.user))
    penalty_amount = q(sum((p.penalty_amount for p in pending), ZERO))
    total = service_amount + penalty_amount

    # a deduction from an earlier attempt (e.g. "pay at salon" after a decline)
    prior = _prior_wallet_debit(booking)
    if prior is not None:
        if wallet_amount and wallet_amount != prior.amount:
            logger.warning("Booking %s: ignoring wallet amount %s, %s was already deducted",
                           booking.pk, wallet_amount, prior.amount)
        wallet_amount = prior.amount

    if payment_method == Payment.METHOD_WALLET_ONLY:
        wallet_amount = wallet_amount or total
        if wallet_amount != total:
            raise ValidationError("Wallet-only payments must cover the full amount")
    if wallet_amount > total:
        raise ValidationError("Wallet amount exceeds the amount due")

    charge = total - wallet_amount if payment_method == Payment.METHOD_UPI else ZERO
    if payment_method == Payment.METHOD_UPI and charge <= ZERO:
        raise ValidationError("Nothing left to charge online; pay with the wallet instead")

    if wallet_amount > ZERO and prior is None:
        wallet_ledger.debit(
            booking.user,
            wallet_amount,
            WALLET_CATEGORY,
            reference_id=str(booking.id),
            description=f"Payment for booking #{booking.id}",
            dedupe=True,
        )

    gateway_payment_id = ""
    if charge > ZERO:
        gateway = gateway or get_payment_authorization_service()
        try:
            result = gateway.authorize(
                charge,
                str(booking.user_id),
                {
                    **(metadata or {}),
                    "booking_id": booking.id,
                    "salon_id": booking.salon_id,
                    "service_amount": str(service_amount),
                    "penalty_amount": str(penalty_amount),
                    "wallet_amount": str(wallet_amount),
                },
            )
        except Exception as e:
            logger.exception("Booking %s: payment gateway raised during authorization", booking.pk)
            result = AuthorizationResult.declined(
                "GATEWAY_ERROR",
                f"Payment gateway error: {e}",
                source="gateway",
                step="payment_authorization",
                retryable=True,
            )

        if not result.success:
            declined = result.to_exception()
            if wallet_amount > ZERO:
                logger.error(
                    "PARTIAL FAILURE booking %s: wallet debited %s but charge of %s declined (%s: %s)",
                    booking.pk, wallet_amount, charge, declined.error_code, declined.reason,
                )
                dispatch_on_commit(
                    notify_admins,
                    f"Booking #{booking.id}: wallet ₹{wallet_amount} deducted but online payment "
                    f"failed ({declined.reason}). Manual reconciliation needed.",
                    "partial_failure",
                )
                raise PartialFailure(wallet_amount=wallet_amount, declined=declined, booking_id=booking.id)

            logger.warning("Booking %s: charge of %s declined (%s: %s)",
                           booking.pk, charge, declined.error_code, declined.reason)
            raise declined
        gateway_payment_id = result.payment_id

    try:
        with transaction.atomic():
            locked = Booking.objects.select_for_update().get(pk=booking.pk)

            existing = Payment.objects.filter(booking_id=locked.pk).first()
            if existing:
                logger.warning("Booking %s was captured concurrently (payment %s)", locked.pk, existing.pk)
                return existing

            # penalties another booking settled since they were priced stay with that booking
            settled = []
            if pending:
                settled = list(
                    CancellationPenalty.objects.select_for_update()
                    .filter(pk__in=[p.id for p in pending], is_paid=False, is_waived=False)
                    .order_by("created_at", "id")
                )
            applied_penalty = q(sum((p.penalty_amount for p in settled), ZERO))
            unapplied_penalty = penalty_amount - applied_penalty

            split = compute_split(service_amount, applied_penalty, payment_method)
            payment_metadata = {"serviceAmount": str(service_amount)}
            if settled:
                payment_metadata["penaltyAmount"] = str(applied_penalty)
                payment_metadata["penaltyIds"] = [p.id for p in settled]
            if unapplied_penalty > ZERO:
                payment_metadata["unappliedPenaltyAmount"] = str(unapplied_penalty)
                payment_metadata["unappliedPenaltyIds"] = sorted({p.id for p in pending} - {p.id for p in settled})

            payment = Payment.objects.create(
                booking=locked,
                payer=locked.user,
                salon=locked.salon,
                gross_amount=split["gross_amount"],
                platform_fee=split["platform_fee"],
                salon_amount=split["salon_amount"],
                fee_percentage=split["fee_percentage"],
                wallet_amount=wallet_amount,
                charged_amount=charge,
                status="captured",
                payment_method=payment_method,
                gateway_payment_id=gateway_payment_id,
                metadata=payment_metadata,
                captured_at=timezone.now(),
            )

            if settled:
                if payment_method == Payment.METHOD_CASH_AT_SALON:
                    penalty_ledger.settle([p.id for p in settled], locked.salon,
                                          penalty_ledger.CHANNEL_CASH, paid_booking=locked)
                else:
                    penalty_ledger.settle([p.id for p in settled], None,
                                          penalty_ledger.CHANNEL_PLATFORM, paid_booking=locked)

            if unapplied_penalty > ZERO and payment_method != Payment.METHOD_CASH_AT_SALON:
                logger.error(
                    "Booking %s collected %s for penalties already settled elsewhere (payment %s)",
                    locked.pk, unapplied_penalty, payment.pk,
                )
                dispatch_on_commit(
                    notify_admins,
                    f"Booking #{locked.id}: customer paid ₹{unapplied_penalty} for penalties another "
                    f"booking already settled. Refund or credit needed.",
                    "penalty_overcharge",
                )
            elif unapplied_penalty > ZERO:
                logger.info("Booking %s: %s of penalties were settled elsewhere, not collecting at salon",
                            locked.pk, unapplied_penalty)

            locked.payment_status = "pay_at_salon" if payment_method == Payment.METHOD_CASH_AT_SALON else "paid"
            if locked.status == "pending":
                locked.status = "confirmed"
            locked.save(update_fields=["payment_status", "status"])
    except OperationalError as e:
        if gateway_payment_id:
            logger.error(
                "Booking %s: charge %s of %s captured but the payment could not be recorded: %s",
                booking.pk, gateway_payment_id, charge, e,
            )
            dispatch_on_commit(
                notify_admins,
                f"Booking #{booking.id}: gateway payment {gateway_payment_id} (₹{charge}) was captured "
                f"but could not be recorded. Manual reconciliation needed.",
                "reconciliation_required",
            )
            raise ReconciliationRequired(
                booking_id=booking.id,
                gateway_payment_id=gateway_payment_id,
                charged_amount=charge,
            ) from e
        raise ConcurrencyConflict(f"Booking {booking.pk} is being captured elsewhere, retry") from e

    logger.info(
        "Captured booking %s as payment %s via %s: gross %s, platform %s, salon %s",
        booking.pk, payment.pk, payment_method, payment.gross_amount, payment.platform_fee, payment.salon_amount,
    )
    return payment


def mark_payments_settled(payment_ids: Iterable[int], settlement_id: str) -> int:
    """captured -> settled; the only mutation a Payment ever sees."""
    ids = [int(pk) for pk in payment_ids]
    if not ids:
        return 0
    if not settlement_id:
        raise ValidationError("settlement_id is required")

    updated = Payment.objects.filter(pk__in=ids, status="captured").update(
        status="settled",
        settled_at=timezone.now(),
        settlement_id=settlement_id,
    )
    logger.info("Marked %s/%s payments settled under %s", updated, len(ids), settlement_id)
    return updated
