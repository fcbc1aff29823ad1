# settlement/tests/test_settlement.py

from decimal import Decimal
from unittest import mock

from django.db import OperationalError
from django.test import TestCase

from settlement.exceptions import (
    ConcurrencyConflict, GatewayDeclined, PartialFailure, ReconciliationRequired, ValidationError,
)
from settlement.models import Booking, CancellationPenalty, Payment, WalletTransaction
from settlement.services import penalties as penalty_ledger
from settlement.services import wallet as wallet_ledger
from settlement.services.balances import available_balance
from settlement.services.settlement import capture_booking, compute_split, mark_payments_settled

from .factories import FakeGateway, make_booking, make_salon, make_user


class RaisingGateway(FakeGateway):
    def authorize(self, amount, payer_ref, metadata):
        super().authorize(amount, payer_ref, metadata)
        raise RuntimeError("connection reset by peer")


class InterleavingGateway(FakeGateway):
    """Runs `during_charge` while the online charge is in flight."""

    def __init__(self, during_charge):
        super().__init__()
        self.during_charge = during_charge

    def authorize(self, amount, payer_ref, metadata):
        self.during_charge()
        return super().authorize(amount, payer_ref, metadata)


class CaptureBookingTests(TestCase):
    def setUp(self):
        self.customer = make_user('customer')
        self.salon = make_salon()
        self.other_salon = make_salon()
        self.booking = make_booking(user=self.customer, salon=self.salon, price="500.00")
        self.gateway = FakeGateway()

    def test_upi_without_penalty_splits_92_8(self):
        payment = capture_booking(self.booking, Payment.METHOD_UPI, gateway=self.gateway)

        self.assertEqual(payment.gross_amount, Decimal("500.00"))
        self.assertEqual(payment.platform_fee, Decimal("40.00"))
        self.assertEqual(payment.salon_amount, Decimal("460.00"))
        self.assertEqual(payment.status, "captured")
        self.assertTrue(payment.is_balanced())
        self.assertEqual(self.gateway.calls[0]["amount"], Decimal("500.00"))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, "paid")
        self.assertEqual(self.booking.status, "confirmed")

    def test_upi_with_pending_penalty_charges_it_as_platform_revenue(self):
        penalty = penalty_ledger.accrue(self.customer, self.other_salon, "50.00")

        payment = capture_booking(self.booking, Payment.METHOD_UPI, gateway=self.gateway)

        self.assertEqual(payment.gross_amount, Decimal("550.00"))
        self.assertEqual(payment.platform_fee, Decimal("90.00"))
        self.assertEqual(payment.salon_amount, Decimal("460.00"))
        self.assertEqual(payment.penalty_amount, Decimal("50.00"))
        self.assertEqual(payment.metadata["penaltyIds"], [penalty.id])
        self.assertEqual(self.gateway.calls[0]["amount"], Decimal("550.00"))

        penalty.refresh_from_db()
        self.assertTrue(penalty.is_paid)
        self.assertEqual(penalty.paid_via, "platform")
        self.assertIsNone(penalty.collecting_salon)
        self.assertEqual(penalty.paid_booking_id, self.booking.id)

    def test_cash_at_salon_leaves_penalty_with_collecting_salon(self):
        penalty = penalty_ledger.accrue(self.customer, self.other_salon, "50.00")

        payment = capture_booking(self.booking, Payment.METHOD_CASH_AT_SALON, gateway=self.gateway)

        self.assertEqual(payment.salon_amount, Decimal("500.00"))
        self.assertEqual(payment.platform_fee, Decimal("50.00"))
        self.assertEqual(payment.gross_amount, Decimal("550.00"))
        self.assertEqual(self.gateway.calls, [])

        penalty.refresh_from_db()
        self.assertTrue(penalty.is_paid)
        self.assertEqual(penalty.paid_via, "cash")
        self.assertEqual(penalty.collecting_salon, self.salon)
        self.assertFalse(penalty.remitted_to_platform)

        # 500 earned, 50 owed back to the platform until remitted
        self.assertEqual(available_balance(self.salon), Decimal("450.00"))

        penalty_ledger.mark_remitted([penalty.id])
        self.assertEqual(available_balance(self.salon), Decimal("500.00"))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, "pay_at_salon")

    def test_second_capture_is_a_no_op(self):
        first = capture_booking(self.booking, Payment.METHOD_UPI, gateway=self.gateway)
        second = capture_booking(self.booking, Payment.METHOD_UPI, gateway=self.gateway)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(len(self.gateway.calls), 1)
        self.assertEqual(Payment.objects.filter(booking=self.booking).count(), 1)

    def test_split_payment_debits_wallet_and_charges_remainder(self):
        wallet_ledger.credit(self.customer, "120.00", "referral_bonus")

        payment = capture_booking(self.booking, Payment.METHOD_UPI, "120.00", gateway=self.gateway)

        self.assertEqual(payment.wallet_amount, Decimal("120.00"))
        self.assertEqual(payment.charged_amount, Decimal("380.00"))
        self.assertEqual(self.gateway.calls[0]["amount"], Decimal("380.00"))
        self.assertEqual(payment.salon_amount, Decimal("460.00"))

        wallet = self.customer.wallet
        wallet.refresh_from_db()
        self.assertEqual(wallet.balance, Decimal("0.00"))

    def test_wallet_only_covers_full_amount_without_gateway(self):
        wallet_ledger.credit(self.customer, "600.00", "promo_code")

        payment = capture_booking(self.booking, Payment.METHOD_WALLET_ONLY, gateway=self.gateway)

        self.assertEqual(payment.wallet_amount, Decimal("500.00"))
        self.assertEqual(payment.charged_amount, Decimal("0.00"))
        self.assertEqual(payment.platform_fee, Decimal("40.00"))
        self.assertEqual(self.gateway.calls, [])

    def test_wallet_only_rejects_partial_cover(self):
        wallet_ledger.credit(self.customer, "600.00", "promo_code")
        with self.assertRaises(ValidationError):
            capture_booking(self.booking, Payment.METHOD_WALLET_ONLY, "100.00", gateway=self.gateway)

    def test_decline_without_wallet_mutates_nothing(self):
        penalty = penalty_ledger.accrue(self.customer, self.other_salon, "50.00")
        gateway = FakeGateway(approve=False)

        with self.assertRaises(GatewayDeclined) as ctx:
            capture_booking(self.booking, Payment.METHOD_UPI, gateway=gateway)

        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(ctx.exception.error_code, "BAD_REQUEST_ERROR")
        self.assertEqual(ctx.exception.step, "payment_authorization")
        self.assertFalse(Payment.objects.exists())
        penalty.refresh_from_db()
        self.assertFalse(penalty.is_paid)

    def test_server_error_decline_is_retryable(self):
        gateway = FakeGateway(approve=False, error_code="SERVER_ERROR", reason="Gateway unavailable")
        with self.assertRaises(GatewayDeclined) as ctx:
            capture_booking(self.booking, Payment.METHOD_UPI, gateway=gateway)
        self.assertTrue(ctx.exception.retryable)

    def test_decline_after_wallet_debit_is_partial_failure(self):
        wallet_ledger.credit(self.customer, "100.00", "cashback")
        gateway = FakeGateway(approve=False)

        with self.assertRaises(PartialFailure) as ctx:
            capture_booking(self.booking, Payment.METHOD_UPI, "100.00", gateway=gateway)

        self.assertEqual(ctx.exception.wallet_amount, Decimal("100.00"))
        self.assertTrue(ctx.exception.to_dict()["requires_reconciliation"])
        self.assertFalse(Payment.objects.exists())

        # the wallet portion stays committed
        wallet = self.customer.wallet
        wallet.refresh_from_db()
        self.assertEqual(wallet.balance, Decimal("0.00"))

    def test_pay_at_salon_fallback_reuses_committed_wallet_debit(self):
        wallet_ledger.credit(self.customer, "100.00", "cashback")
        with self.assertRaises(PartialFailure):
            capture_booking(self.booking, Payment.METHOD_UPI, "100.00", gateway=FakeGateway(approve=False))

        payment = capture_booking(self.booking, Payment.METHOD_CASH_AT_SALON, gateway=self.gateway)

        self.assertEqual(payment.wallet_amount, Decimal("100.00"))
        self.assertEqual(
            WalletTransaction.objects.filter(user=self.customer, type="debit").count(), 1,
        )

    def test_retry_after_partial_failure_does_not_debit_again(self):
        wallet_ledger.credit(self.customer, "100.00", "cashback")
        with self.assertRaises(PartialFailure):
            capture_booking(self.booking, Payment.METHOD_UPI, "100.00", gateway=FakeGateway(approve=False))

        payment = capture_booking(self.booking, Payment.METHOD_UPI, "100.00", gateway=self.gateway)

        self.assertEqual(payment.charged_amount, Decimal("400.00"))
        self.assertEqual(WalletTransaction.objects.filter(user=self.customer, type="debit").count(), 1)

    def test_wallet_amount_above_total_is_rejected(self):
        wallet_ledger.credit(self.customer, "1000.00", "manual")
        with self.assertRaises(ValidationError):
            capture_booking(self.booking, Payment.METHOD_UPI, "600.00", gateway=self.gateway)

    def test_cancelled_booking_cannot_be_captured(self):
        self.booking.status = "cancelled"
        self.booking.save()
        with self.assertRaises(ValidationError):
            capture_booking(self.booking, Payment.METHOD_UPI, gateway=self.gateway)

    def test_unknown_method_is_rejected(self):
        with self.assertRaises(ValidationError):
            capture_booking(self.booking, "crypto", gateway=self.gateway)

    def test_waived_penalty_is_not_collected(self):
        admin = make_user('admin')
        penalty = penalty_ledger.accrue(self.customer, self.other_salon, "50.00")
        penalty_ledger.waive(penalty, admin, reason="first time")

        payment = capture_booking(self.booking, Payment.METHOD_UPI, gateway=self.gateway)

        self.assertEqual(payment.gross_amount, Decimal("500.00"))
        penalty.refresh_from_db()
        self.assertFalse(penalty.is_paid)

    def test_odd_amounts_still_balance(self):
        booking = make_booking(user=self.customer, salon=self.salon, price="333.33")
        penalty_ledger.accrue(self.customer, self.other_salon, "17.00")

        payment = capture_booking(booking, Payment.METHOD_UPI, gateway=self.gateway)

        self.assertEqual(payment.salon_amount, Decimal("306.66"))
        self.assertEqual(payment.platform_fee, Decimal("43.67"))
        self.assertTrue(payment.is_balanced())

    def test_gateway_exception_without_wallet_is_retryable_decline(self):
        gateway = RaisingGateway()

        with self.assertRaises(GatewayDeclined) as ctx:
            capture_booking(self.booking, Payment.METHOD_UPI, gateway=gateway)

        self.assertEqual(ctx.exception.error_code, "GATEWAY_ERROR")
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(len(gateway.calls), 1)
        self.assertFalse(Payment.objects.exists())

    @mock.patch("settlement.services.settlement.notify_admins")
    def test_gateway_exception_after_wallet_debit_is_partial_failure(self, notify_admins):
        wallet_ledger.credit(self.customer, "100.00", "cashback")

        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(PartialFailure) as ctx:
                capture_booking(self.booking, Payment.METHOD_UPI, "100.00", gateway=RaisingGateway())

        self.assertEqual(ctx.exception.wallet_amount, Decimal("100.00"))
        self.assertEqual(ctx.exception.declined.error_code, "GATEWAY_ERROR")
        self.assertFalse(Payment.objects.exists())
        notify_admins.assert_called_once()
        self.assertEqual(notify_admins.call_args[0][1], "partial_failure")

    @mock.patch("settlement.services.settlement.notify_admins")
    def test_penalty_settled_by_another_booking_during_charge_is_not_counted_twice(self, notify_admins):
        penalty = penalty_ledger.accrue(self.customer, self.other_salon, "50.00")
        cash_booking = make_booking(user=self.customer, salon=self.other_salon, price="300.00")
        gateway = InterleavingGateway(
            lambda: capture_booking(cash_booking, Payment.METHOD_CASH_AT_SALON, gateway=FakeGateway())
        )

        with self.captureOnCommitCallbacks(execute=True):
            payment = capture_booking(self.booking, Payment.METHOD_UPI, gateway=gateway)

        self.assertEqual(payment.charged_amount, Decimal("550.00"))
        self.assertEqual(payment.gross_amount, Decimal("500.00"))
        self.assertEqual(payment.platform_fee, Decimal("40.00"))
        self.assertEqual(payment.salon_amount, Decimal("460.00"))
        self.assertTrue(payment.is_balanced())
        self.assertNotIn("penaltyIds", payment.metadata)
        self.assertEqual(payment.metadata["unappliedPenaltyAmount"], "50.00")
        self.assertEqual(payment.metadata["unappliedPenaltyIds"], [penalty.id])

        penalty.refresh_from_db()
        self.assertEqual(penalty.paid_booking, cash_booking)
        self.assertEqual(penalty.paid_via, penalty_ledger.CHANNEL_CASH)
        self.assertEqual(penalty.collecting_salon, self.other_salon)

        notify_admins.assert_called_once()
        self.assertEqual(notify_admins.call_args[0][1], "penalty_overcharge")

    @mock.patch("settlement.services.settlement.notify_admins")
    def test_record_failure_after_charge_requires_reconciliation(self, notify_admins):
        with mock.patch.object(Booking.objects, "select_for_update",
                               side_effect=OperationalError("database is locked")):
            with self.captureOnCommitCallbacks(execute=True):
                with self.assertRaises(ReconciliationRequired) as ctx:
                    capture_booking(self.booking, Payment.METHOD_UPI, gateway=self.gateway)

        self.assertEqual(ctx.exception.gateway_payment_id, "pay_test_1")
        self.assertEqual(ctx.exception.charged_amount, Decimal("500.00"))
        self.assertTrue(ctx.exception.to_dict()["requires_reconciliation"])
        self.assertEqual(len(self.gateway.calls), 1)
        self.assertFalse(Payment.objects.exists())
        notify_admins.assert_called_once()
        self.assertEqual(notify_admins.call_args[0][1], "reconciliation_required")

    def test_record_failure_without_charge_is_a_retryable_conflict(self):
        with mock.patch.object(Booking.objects, "select_for_update",
                               side_effect=OperationalError("database is locked")):
            with self.assertRaises(ConcurrencyConflict):
                capture_booking(self.booking, Payment.METHOD_CASH_AT_SALON, gateway=self.gateway)

        self.assertEqual(self.gateway.calls, [])
        self.assertFalse(Payment.objects.exists())


class ComputeSplitTests(TestCase):
    def test_cash_takes_no_commission(self):
        split = compute_split("500.00", "0.00", Payment.METHOD_CASH_AT_SALON)
        self.assertEqual(split["salon_amount"], Decimal("500.00"))
        self.assertEqual(split["platform_fee"], Decimal("0.00"))
        self.assertEqual(split["fee_percentage"], Decimal("0.00"))

    def test_online_fee_percentage_is_recorded(self):
        split = compute_split("500.00", "0.00", Payment.METHOD_UPI)
        self.assertEqual(split["fee_percentage"], Decimal("8.00"))


class MarkPaymentsSettledTests(TestCase):
    def test_only_captured_rows_move_to_settled(self):
        customer = make_user('customer')
        salon = make_salon()
        gateway = FakeGateway()
        p1 = capture_booking(make_booking(user=customer, salon=salon), Payment.METHOD_UPI, gateway=gateway)
        p2 = capture_booking(make_booking(user=customer, salon=salon), Payment.METHOD_UPI, gateway=gateway)

        self.assertEqual(mark_payments_settled([p1.id], "setl_001"), 1)
        self.assertEqual(mark_payments_settled([p1.id, p2.id], "setl_002"), 1)

        p1.refresh_from_db()
        p2.refresh_from_db()
        self.assertEqual(p1.status, "settled")
        self.assertEqual(p1.settlement_id, "setl_001")
        self.assertEqual(p2.settlement_id, "setl_002")
        self.assertIsNotNone(p2.settled_at)

    def test_settlement_id_required(self):
        with self.assertRaises(ValidationError):
            mark_payments_settled([1], "")

    def test_penalty_only_counts_once_across_two_bookings(self):
        customer = make_user('customer')
        salon = make_salon()
        penalty_ledger.accrue(customer, salon, "50.00")
        gateway = FakeGateway()

        first = capture_booking(make_booking(user=customer, salon=salon), Payment.METHOD_UPI, gateway=gateway)
        second = capture_booking(make_booking(user=customer, salon=salon), Payment.METHOD_UPI, gateway=gateway)

        self.assertEqual(first.penalty_amount, Decimal("50.00"))
        self.assertEqual(second.penalty_amount, Decimal("0.00"))
        self.assertEqual(CancellationPenalty.objects.filter(is_paid=True).count(), 1)
