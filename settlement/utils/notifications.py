# settlement/utils/notifications.py

"""
Fire-and-forget notification dispatcher.

Every entry point here is safe to call after a money-moving commit: failures are
logged and never propagate, so they can never roll back the state change that
triggered them.
"""

import logging
from functools import partial

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone
from twilio.rest import Client

logger = logging.getLogger(__name__)


PAYOUT_STATUS_MESSAGES = {
    "pending": "Your payout of ₹{amount} has been requested and is awaiting approval.",
    "processing": "Your payout of ₹{amount} has been approved and is being processed to {destination}.",
    "completed": "Your payout of ₹{net} has been credited to {destination}.",
    "failed": "Your payout of ₹{amount} could not be processed. The amount is available again. {reason}",
}


def send_websocket_notification(user, message, notification_type='info'):
    """
    Save an in-app notification and push it to the user's websocket group.
    """
    from settlement.models import Notification

    try:
        Notification.objects.create(
            user=user,
            message=message,
            notification_type=notification_type,
        )
    except Exception:
        logger.exception("Failed to store %s notification for user %s", notification_type, user.pk)
        return

    try:
        channel_layer = get_channel_layer()
        async_to_sync(channel_layer.group_send)(
            f'notifications_{user.id}',
            {
                'type': 'send_notification',
                'message': {
                    'type': notification_type,
                    'text': message,
                    'timestamp': timezone.now().isoformat(),
                },
            },
        )
    except Exception:
        # websocket might not be connected
        logger.debug("Websocket push skipped for user %s", user.pk, exc_info=True)


def send_sms(to_number: str, body: str) -> bool:
    sid = getattr(settings, "TWILIO_ACCOUNT_SID", "")
    token = getattr(settings, "TWILIO_AUTH_TOKEN", "")
    from_number = getattr(settings, "TWILIO_FROM_NUMBER", "")
    if not (sid and token and from_number and to_number):
        return False

    try:
        client = Client(sid, token)
        client.messages.create(body=body, from_=from_number, to=to_number)
        return True
    except Exception:
        logger.exception("SMS to %s failed", to_number)
        return False


def notify_payout_status(payout):
    owner = payout.salon.owner
    template = PAYOUT_STATUS_MESSAGES.get(payout.status, "Your payout status changed to {status}.")
    message = template.format(
        amount=payout.amount,
        net=payout.net_amount,
        destination=payout.destination_label or "your primary account",
        reason=payout.failure_reason,
        status=payout.status,
    ).strip()

    send_websocket_notification(owner, message, notification_type=f"payout_{payout.status}")
    if owner.phone_number:
        send_sms(owner.phone_number, f"Grumming: {message}")


def notify_penalty_waived(penalty):
    message = (
        f"Good news! Your ₹{penalty.penalty_amount} cancellation penalty for "
        f"{penalty.originating_salon.name} has been waived. No extra charges on your next booking!"
    )
    send_websocket_notification(penalty.user, message, notification_type="penalty_waived")


def notify_admins(message, notification_type='admin_alert'):
    User = get_user_model()
    for admin in User.objects.filter(role='admin', is_active=True):
        send_websocket_notification(admin, message, notification_type=notification_type)


def _run_safely(func, *args, **kwargs):
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception("Notification %s failed", getattr(func, "__name__", func))


def dispatch_on_commit(func, *args, **kwargs):
    """
    Queue a notification for after the surrounding transaction commits.
    Outside a transaction it runs immediately.
    """
    transaction.on_commit(partial(_run_safely, func, *args, **kwargs))
