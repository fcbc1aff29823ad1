# settlement/consumers.py

import json
import logging

from channels.generic.websocket import AsyncWebsocketConsumer

logger = logging.getLogger(__name__)


class NotificationConsumer(AsyncWebsocketConsumer):
    """
    Per-user push channel for payout, penalty and reconciliation notifications.
    Joins the `notifications_<user_id>` group that the dispatcher sends to.
    """

    async def connect(self):
        self.user_id = str(self.scope['url_route']['kwargs']['user_id'])
        user = self.scope.get('user')

        if user is None or not user.is_authenticated or str(user.pk) != self.user_id:
            await self.close()
            return

        self.room_group_name = f'notifications_{self.user_id}'
        await self.channel_layer.group_add(self.room_group_name, self.channel_name)
        await self.accept()

        await self.send(text_data=json.dumps({
            'message': f'Connected to notifications for user {self.user_id}'
        }))
        logger.debug("Notification socket opened for user %s", self.user_id)

    async def disconnect(self, close_code):
        group = getattr(self, 'room_group_name', None)
        if group:
            await self.channel_layer.group_discard(group, self.channel_name)

    async def send_notification(self, event):
        await self.send(text_data=json.dumps({
            'message': event['message']
        }))
