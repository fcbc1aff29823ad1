# settlement/management/commands/sync_payout_statuses.py


from django.core.management.base import BaseCommand

from settlement.services.payout_approval import sync_processing_payouts


class Command(BaseCommand):
    help = "Poll the payout rail for processing payouts and finalize the ones it has settled."

    def handle(self, *args, **options):
        stats = sync_processing_payouts()
        self.stdout.write(self.style.SUCCESS(
            f"Payout sync complete. checked={stats['checked']} "
            f"completed={stats['completed']} failed={stats['failed']} unchanged={stats['unchanged']}"
        ))
