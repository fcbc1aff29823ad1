# settlement/tests/test_api.py

import hashlib
import hmac
import json
from decimal import Decimal
from unittest import mock

from django.db import OperationalError
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from settlement.gateways import AuthorizationResult
from settlement.models import Booking, Payment, PayoutScheduleSettings, SalonBankAccount, SalonPayout
from settlement.services import penalties as penalty_ledger
from settlement.services import wallet as wallet_ledger
from settlement.services.payout_approval import approve_payout
from settlement.services.payouts import create_payout_request

from .factories import FakeRail, make_bank_account, make_booking, make_earnings, make_salon, make_user

WEBHOOK_SECRET = "whsec_test"


@override_settings(
    PAYMENT_AUTHORIZATION_BACKEND='settlement.tests.factories.ApprovingGateway',
    BANK_DIRECTORY_BACKEND='settlement.tests.factories.OfflineDirectory',
    PAYOUT_RAIL_BACKEND='settlement.rails.ManualPayoutRail',
    RAZORPAY_WEBHOOK_SECRET=WEBHOOK_SECRET,
)
class ApiTestCase(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.customer = make_user('customer')
        self.owner = make_user('salon_owner', phone_number="")
        self.admin = make_user('admin')
        self.salon = make_salon(owner=self.owner)

    def as_user(self, user):
        self.client.force_authenticate(user=user)
        return self.client


class CaptureApiTests(ApiTestCase):
    def test_capture_upi_booking(self):
        booking = make_booking(user=self.customer, salon=self.salon, price="500.00")

        r = self.as_user(self.customer).post(f'/api/bookings/{booking.id}/capture/',
                                             {'payment_method': 'upi', 'razorpay_payment_id': 'pay_1'},
                                             format='json')

        self.assertEqual(r.status_code, 201)
        self.assertEqual(r.data['gross_amount'], '500.00')
        self.assertEqual(r.data['platform_fee'], '40.00')
        self.assertEqual(r.data['salon_amount'], '460.00')

    def test_capture_twice_returns_same_payment(self):
        booking = make_booking(user=self.customer, salon=self.salon)
        client = self.as_user(self.customer)
        first = client.post(f'/api/bookings/{booking.id}/capture/', {'payment_method': 'upi'}, format='json')
        second = client.post(f'/api/bookings/{booking.id}/capture/', {'payment_method': 'upi'}, format='json')
        self.assertEqual(first.data['id'], second.data['id'])

    def test_wallet_short_of_wallet_only_amount(self):
        booking = make_booking(user=self.customer, salon=self.salon, price="300.00")
        wallet_ledger.credit(self.customer, "100.00", "cashback")

        r = self.as_user(self.customer).post(f'/api/bookings/{booking.id}/capture/',
                                             {'payment_method': 'wallet_only', 'wallet_amount': '300.00'},
                                             format='json')

        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['code'], 'insufficient_balance')

    def test_other_customers_booking_is_not_found(self):
        booking = make_booking(salon=self.salon)
        r = self.as_user(self.customer).post(f'/api/bookings/{booking.id}/capture/',
                                             {'payment_method': 'upi'}, format='json')
        self.assertEqual(r.status_code, 404)

    def test_salon_owner_cannot_capture(self):
        booking = make_booking(user=self.customer, salon=self.salon)
        r = self.as_user(self.owner).post(f'/api/bookings/{booking.id}/capture/',
                                          {'payment_method': 'upi'}, format='json')
        self.assertEqual(r.status_code, 403)

    def test_unknown_payment_method(self):
        booking = make_booking(user=self.customer, salon=self.salon)
        r = self.as_user(self.customer).post(f'/api/bookings/{booking.id}/capture/',
                                             {'payment_method': 'crypto'}, format='json')
        self.assertEqual(r.status_code, 400)

    def test_charge_that_cannot_be_recorded_is_not_retried(self):
        booking = make_booking(user=self.customer, salon=self.salon, price="500.00")

        with mock.patch("settlement.tests.factories.ApprovingGateway.authorize", autospec=True,
                        return_value=AuthorizationResult.ok("pay_once")) as authorize, \
                mock.patch.object(Booking.objects, "select_for_update",
                                  side_effect=OperationalError("database is locked")):
            r = self.as_user(self.customer).post(f'/api/bookings/{booking.id}/capture/',
                                                 {'payment_method': 'upi', 'razorpay_payment_id': 'pay_once'},
                                                 format='json')

        self.assertEqual(authorize.call_count, 1)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.data['code'], 'reconciliation_required')
        self.assertEqual(r.data['gateway_payment_id'], 'pay_once')
        self.assertTrue(r.data['requires_reconciliation'])
        self.assertFalse(Payment.objects.filter(booking=booking).exists())


class WalletAndPenaltyApiTests(ApiTestCase):
    def test_wallet_summary_and_transactions(self):
        wallet_ledger.credit(self.customer, "120.00", "referral_bonus")
        wallet_ledger.debit(self.customer, "20.00", "booking_payment", reference_id="9")
        client = self.as_user(self.customer)

        summary = client.get('/api/wallet/')
        self.assertEqual(summary.data['balance'], '100.00')

        txns = client.get('/api/wallet/transactions/')
        self.assertEqual(txns.data['count'], 2)
        self.assertEqual(txns.data['results'][0]['signed_amount'], '-20.00')

    def test_outstanding_penalties(self):
        penalty_ledger.accrue(self.customer, self.salon, "40")
        penalty_ledger.accrue(self.customer, self.salon, "10")

        r = self.as_user(self.customer).get('/api/penalties/')

        self.assertEqual(r.data['total'], '50.00')
        self.assertEqual(len(r.data['penalties']), 2)
        self.assertEqual(r.data['penalties'][0]['originating_salon_name'], self.salon.name)


class SalonPayoutApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        make_bank_account(self.salon)
        make_earnings(self.salon, "1000.00")

    def test_balance(self):
        r = self.as_user(self.owner).get(f'/api/salons/{self.salon.id}/balance/')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['available'], '1000.00')

    def test_other_owner_sees_nothing(self):
        r = self.as_user(make_user('salon_owner')).get(f'/api/salons/{self.salon.id}/balance/')
        self.assertEqual(r.status_code, 404)

    def test_instant_payout_request(self):
        r = self.as_user(self.owner).post(f'/api/salons/{self.salon.id}/payouts/',
                                          {'amount': '1000.00', 'payout_method': 'instant_upi'}, format='json')

        self.assertEqual(r.status_code, 201)
        self.assertEqual(r.data['amount'], '1000.00')
        self.assertEqual(r.data['fee_amount'], '10.00')
        self.assertEqual(r.data['net_amount'], '990.00')
        self.assertEqual(r.data['status'], 'pending')

        balance = self.client.get(f'/api/salons/{self.salon.id}/balance/')
        self.assertEqual(balance.data['available'], '0.00')

    def test_payout_over_balance(self):
        r = self.as_user(self.owner).post(f'/api/salons/{self.salon.id}/payouts/',
                                          {'amount': '1500.00', 'payout_method': 'upi'}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['code'], 'insufficient_balance')
        self.assertEqual(r.data['available'], '1000.00')

    def test_payout_below_minimum(self):
        r = self.as_user(self.owner).post(f'/api/salons/{self.salon.id}/payouts/',
                                          {'amount': '50.00', 'payout_method': 'upi'}, format='json')
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.data['code'], 'validation_error')

    def test_payout_history(self):
        create_payout_request(self.salon, "300.00", SalonPayout.METHOD_UPI)
        r = self.as_user(self.owner).get(f'/api/salons/{self.salon.id}/payouts/')
        self.assertEqual(r.data['count'], 1)
        self.assertEqual(r.data['results'][0]['destination'], 'asha@okhdfc')

    def test_add_bank_account_while_directory_is_offline(self):
        r = self.as_user(self.owner).post(f'/api/salons/{self.salon.id}/bank-accounts/', {
            'account_holder_name': 'Asha Verma',
            'account_number': '998877665544',
            'ifsc_code': 'ICIC0000001',
        }, format='json')

        self.assertEqual(r.status_code, 201)
        self.assertEqual(r.data['bank_name'], '')
        self.assertEqual(r.data['masked_account_number'], '****5544')
        self.assertNotIn('account_number', r.data)
        self.assertFalse(r.data['is_primary'])

    def test_set_primary(self):
        second = make_bank_account(self.salon, is_primary=False, account_number="5555")
        r = self.as_user(self.owner).post(f'/api/salons/{self.salon.id}/bank-accounts/{second.id}/primary/')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(SalonBankAccount.objects.get(salon=self.salon, is_primary=True), second)

    def test_statement_pdf(self):
        create_payout_request(self.salon, "300.00", SalonPayout.METHOD_UPI)
        r = self.as_user(self.owner).get(f'/api/salons/{self.salon.id}/earnings/statement/')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r['Content-Type'], 'application/pdf')
        self.assertTrue(r.content.startswith(b'%PDF'))


class AdminApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        make_bank_account(self.salon)
        make_earnings(self.salon, "1000.00")
        self.payout = create_payout_request(self.salon, "600.00", SalonPayout.METHOD_UPI)

    def test_non_admin_is_forbidden(self):
        r = self.as_user(self.owner).post(f'/api/admin/payouts/{self.payout.id}/approve/')
        self.assertEqual(r.status_code, 403)

    def test_list_filters_by_status(self):
        client = self.as_user(self.admin)
        self.assertEqual(client.get('/api/admin/payouts/?status=pending').data['count'], 1)
        self.assertEqual(client.get('/api/admin/payouts/?status=completed').data['count'], 0)

    def test_approve_then_complete(self):
        client = self.as_user(self.admin)

        r = client.post(f'/api/admin/payouts/{self.payout.id}/approve/')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['status'], 'processing')
        self.assertEqual(r.data['rail_status'], 'manual')

        r = client.post(f'/api/admin/payouts/{self.payout.id}/complete/',
                        {'transaction_reference': 'UTR4455'}, format='json')
        self.assertEqual(r.data['status'], 'completed')
        self.assertEqual(r.data['transaction_reference'], 'UTR4455')

    def test_invalid_transition_is_409(self):
        r = self.as_user(self.admin).post(f'/api/admin/payouts/{self.payout.id}/complete/')
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.data['code'], 'invalid_transition')

    def test_unknown_action(self):
        r = self.as_user(self.admin).post(f'/api/admin/payouts/{self.payout.id}/teleport/')
        self.assertEqual(r.status_code, 400)

    def test_remit_cash_penalties(self):
        penalty = penalty_ledger.accrue(self.customer, make_salon(), "50")
        penalty_ledger.settle([penalty.id], make_salon(), "cash")

        r = self.as_user(self.admin).post('/api/admin/penalties/remit/', {'penalty_ids': [penalty.id]},
                                          format='json')

        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['remittances'][0]['total_amount'], '50.00')

    def test_remit_requires_ids(self):
        r = self.as_user(self.admin).post('/api/admin/penalties/remit/', {'penalty_ids': []}, format='json')
        self.assertEqual(r.status_code, 400)

    def test_waive_penalty(self):
        penalty = penalty_ledger.accrue(self.customer, self.salon, "25")
        r = self.as_user(self.admin).post(f'/api/admin/penalties/{penalty.id}/waive/', {'reason': 'goodwill'},
                                          format='json')
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.data['is_waived'])

    def test_verify_bank_account(self):
        account = make_bank_account(make_salon(), is_verified=False)
        r = self.as_user(self.admin).post(f'/api/admin/bank-accounts/{account.id}/verify/')
        self.assertTrue(r.data['is_verified'])

    def test_schedule_settings(self):
        client = self.as_user(self.admin)
        r = client.patch('/api/admin/payout-schedule/',
                         {'is_enabled': True, 'day_of_week': 3, 'auto_approve_threshold': '5000.00'},
                         format='json')
        self.assertEqual(r.status_code, 200)

        schedule = PayoutScheduleSettings.load()
        self.assertTrue(schedule.is_enabled)
        self.assertEqual(schedule.day_of_week, 3)
        self.assertEqual(schedule.auto_approve_threshold, Decimal("5000.00"))

        r = client.patch('/api/admin/payout-schedule/', {'day_of_week': 7}, format='json')
        self.assertEqual(r.status_code, 400)

    def test_forced_schedule_run(self):
        r = self.as_user(self.admin).post('/api/admin/payout-schedule/run/', {'force': True}, format='json')
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.data['ran'])
        # the pending request already holds 600 of the 1000
        self.assertEqual(r.data['created'], 0)
        self.assertEqual(r.data['skipped_below_minimum'], 1)


class PayoutWebhookTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        make_bank_account(self.salon)
        make_earnings(self.salon, "1000.00")
        payout = create_payout_request(self.salon, "600.00", SalonPayout.METHOD_UPI)
        self.payout = approve_payout(payout, rail=FakeRail())

    def post_event(self, event, secret=WEBHOOK_SECRET):
        body = json.dumps(event).encode('utf-8')
        signature = hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()
        return self.client.post('/api/webhooks/payouts/', data=body, content_type='application/json',
                                HTTP_X_RAZORPAY_SIGNATURE=signature)

    def event(self, status, **entity):
        entity.setdefault('reference_id', self.payout.rail_reference)
        entity['status'] = status
        return {'event': f'payout.{status}', 'payload': {'payout': {'entity': entity}}}

    def test_processed_event_completes_payout(self):
        r = self.post_event(self.event('processed', utr='UTR777'))

        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['status'], 'completed')
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.transaction_reference, 'UTR777')

    def test_reversed_event_fails_payout(self):
        r = self.post_event(self.event('reversed', failure_reason='Beneficiary account closed'))
        self.assertEqual(r.data['status'], 'failed')
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.failure_reason, 'Beneficiary account closed')

    def test_bad_signature_is_rejected(self):
        r = self.post_event(self.event('processed'), secret='wrong')
        self.assertEqual(r.status_code, 400)
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, SalonPayout.STATUS_PROCESSING)

    def test_unknown_reference_is_acknowledged(self):
        r = self.post_event(self.event('processed', reference_id='GRM_PAYOUT_0_UNKNOWN'))
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.data['detail'], 'Unknown payout.')
