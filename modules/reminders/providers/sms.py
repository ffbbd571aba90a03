"""SMS sender: SendPulse SMS API."""

from __future__ import annotations

from modules.reminders.errors import AddressResolutionError
from modules.reminders.providers.base import ChannelSender, DeliveryReceipt, metadata_of
from modules.reminders.sendpulse.client import SendPulseClient
from shared.models.notification import Notification
from shared.models.user import User

# Single-segment SMS length
MAX_SMS_LENGTH = 160


class SmsSender(ChannelSender):
    channel = "SMS"

    def __init__(self, client: SendPulseClient, sender_name: str):
        self.client = client
        self.sender_name = sender_name

    def resolve_address(self, notification: Notification, user: User | None) -> str:
        phone = (user.phone if user else None) or metadata_of(notification).phone
        if not phone:
            raise AddressResolutionError(self.channel, "User phone not found")
        return phone

    async def send(self, notification: Notification, user: User | None) -> DeliveryReceipt:
        phone = self.resolve_address(notification, user)
        result = await self.client.send_sms(
            phone, notification.content[:MAX_SMS_LENGTH], self.sender_name
        )
        return DeliveryReceipt(message_id=result.get("message_id"), address=phone)
