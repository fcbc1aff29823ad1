# settlement/management/commands/run_scheduled_payouts.py


from django.core.management.base import BaseCommand
from django.utils import timezone

from settlement.models import PayoutScheduleSettings
from settlement.services.scheduler import run_scheduled_payouts


class Command(BaseCommand):
    help = "Run one scheduled payout tick according to PayoutScheduleSettings."

    def add_arguments(self, parser):
        parser.add_argument(
            "--force",
            action="store_true",
            help="Run even if the schedule is disabled, it is not the payout day, or this period already ran.",
        )

    def handle(self, *args, **options):
        schedule = PayoutScheduleSettings.load()
        stats = run_scheduled_payouts(schedule, now=timezone.now(), force=options["force"])

        if not stats["ran"]:
            self.stdout.write(f"Scheduled payouts skipped: {stats['reason']}")
            return

        self.stdout.write(self.style.SUCCESS(
            f"Scheduled payout run complete. "
            f"salons_checked={stats['salons_checked']} "
            f"created={stats['created']} "
            f"auto_approved={stats['auto_approved']} "
            f"left_pending={stats['left_pending']} "
            f"below_minimum={stats['skipped_below_minimum']} "
            f"no_destination={stats['skipped_no_destination']} "
            f"errors={stats['errors']}"
        ))
