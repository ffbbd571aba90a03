"""Push sender: publishes to the Redis notification bus for the push gateway."""

from __future__ import annotations

import structlog

from modules.reminders.errors import AddressResolutionError
from modules.reminders.providers.base import ChannelSender, DeliveryReceipt, metadata_of
from shared.models.notification import Notification
from shared.models.user import User
from shared.schemas.notifications import PushMessage

logger = structlog.get_logger()

PUSH_CHANNEL = "notifications:push"


class PushSender(ChannelSender):
    channel = "PUSH"

    def __init__(self, redis_client):
        self.redis = redis_client

    def resolve_address(self, notification: Notification, user: User | None) -> str:
        token = metadata_of(notification).push_token or (user.push_token if user else None)
        if not token:
            raise AddressResolutionError(self.channel, "Push token not found")
        return token

    async def send(self, notification: Notification, user: User | None) -> DeliveryReceipt:
        token = self.resolve_address(notification, user)
        message = PushMessage(
            token=token,
            title=notification.subject,
            body=notification.content,
            user_id=str(notification.user_id),
            notification_id=str(notification.id),
        )
        receivers = await self.redis.publish(PUSH_CHANNEL, message.model_dump_json())
        if not receivers:
            # Nobody subscribed: the gateway is down, the push is lost
            raise RuntimeError("No push gateway subscribed to the notification bus")
        logger.info("push_published", notification_id=str(notification.id), receivers=receivers)
        return DeliveryReceipt(address=token)
