# settlement/tasks.py

from celery import shared_task
from django.utils import timezone
import logging

logger = logging.getLogger(__name__)


@shared_task
def run_scheduled_payouts_task():
    """
    Hourly beat entry point. The run itself decides whether today is the
    configured payout day and whether this period already ran.
    """
    from settlement.models import PayoutScheduleSettings
    from settlement.services.scheduler import run_scheduled_payouts

    schedule = PayoutScheduleSettings.load()
    stats = run_scheduled_payouts(schedule, now=timezone.now())
    stats.pop('payout_ids', None)
    return stats


@shared_task
def sync_processing_payouts_task():
    """Poll the payout rail for every payout still `processing`."""
    from settlement.services.payout_approval import sync_processing_payouts

    return sync_processing_payouts()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def approve_payout_task(self, payout_id: int, admin_id=None):
    """
    Approve a payout off the request thread (admin bulk actions).
    """
    from django.contrib.auth import get_user_model
    from settlement.exceptions import ConcurrencyConflict, InvalidTransition
    from settlement.models import SalonPayout
    from settlement.services.payout_approval import approve_payout

    try:
        payout = SalonPayout.objects.get(id=payout_id)
    except SalonPayout.DoesNotExist:
        logger.error("Payout %s not found", payout_id)
        return {'success': False, 'error': 'Payout not found'}

    admin = get_user_model().objects.filter(pk=admin_id).first() if admin_id else None

    try:
        payout = approve_payout(payout, admin=admin)
    except InvalidTransition as e:
        logger.info("Payout %s not approved: %s", payout_id, e)
        return {'success': False, 'error': str(e)}
    except ConcurrencyConflict as e:
        raise self.retry(exc=e)

    return {'success': True, 'status': payout.status}
