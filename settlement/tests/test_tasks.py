# settlement/tests/test_tasks.py

from io import StringIO

from django.core.management import call_command
from django.test import TestCase, override_settings

from settlement.models import PayoutScheduleSettings, SalonPayout
from settlement.services.payouts import create_payout_request
from settlement.tasks import approve_payout_task, run_scheduled_payouts_task, sync_processing_payouts_task

from .factories import make_bank_account, make_earnings, make_salon, make_user


@override_settings(PAYOUT_RAIL_BACKEND='settlement.rails.ManualPayoutRail')
class PayoutTaskTests(TestCase):
    def setUp(self):
        self.salon = make_salon()
        make_bank_account(self.salon)
        make_earnings(self.salon, "700.00")

    def test_scheduled_task_respects_disabled_schedule(self):
        stats = run_scheduled_payouts_task()
        self.assertEqual(stats["reason"], "disabled")
        self.assertNotIn("payout_ids", stats)

    def test_approve_task(self):
        admin = make_user('admin')
        payout = create_payout_request(self.salon, "500.00", SalonPayout.METHOD_UPI)

        result = approve_payout_task(payout.id, admin.id)

        self.assertEqual(result, {'success': True, 'status': SalonPayout.STATUS_PROCESSING})
        payout.refresh_from_db()
        self.assertEqual(payout.processed_by, admin)

    def test_approve_task_reports_bad_transition(self):
        payout = create_payout_request(self.salon, "500.00", SalonPayout.METHOD_UPI)
        approve_payout_task(payout.id)
        self.assertFalse(approve_payout_task(payout.id)['success'])

    def test_approve_task_unknown_payout(self):
        self.assertEqual(approve_payout_task(424242)['error'], 'Payout not found')

    def test_sync_task_skips_manual_payouts_without_rail_id(self):
        payout = create_payout_request(self.salon, "500.00", SalonPayout.METHOD_UPI)
        approve_payout_task(payout.id)

        stats = sync_processing_payouts_task()

        self.assertEqual(stats, {"checked": 0, "completed": 0, "failed": 0, "unchanged": 0})
        payout.refresh_from_db()
        self.assertEqual(payout.status, SalonPayout.STATUS_PROCESSING)


@override_settings(PAYOUT_RAIL_BACKEND='settlement.rails.ManualPayoutRail')
class ManagementCommandTests(TestCase):
    def test_forced_run(self):
        salon = make_salon()
        make_bank_account(salon)
        make_earnings(salon, "700.00")

        out = StringIO()
        call_command("run_scheduled_payouts", "--force", stdout=out)

        self.assertIn("created=1", out.getvalue())
        self.assertIsNotNone(PayoutScheduleSettings.load().last_run_at)

    def test_skipped_run(self):
        out = StringIO()
        call_command("run_scheduled_payouts", stdout=out)
        self.assertIn("skipped: disabled", out.getvalue())

    def test_sync(self):
        out = StringIO()
        call_command("sync_payout_statuses", stdout=out)
        self.assertIn("checked=0", out.getvalue())
