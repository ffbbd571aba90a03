"""Channel sender interface.

Each sender delivers one message to one resolved address.  Senders are
independent: a failing WhatsApp sender never affects email delivery.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from shared.models.notification import Notification
from shared.models.user import User
from shared.schemas.reminders import ReminderMetadata


@dataclass
class DeliveryReceipt:
    """What a provider told us about an accepted message."""

    message_id: str | None = None
    address: str | None = None


def metadata_of(notification: Notification) -> ReminderMetadata:
    return ReminderMetadata.model_validate(notification.meta or {})


class ChannelSender(ABC):
    """Deliver a notification on one channel."""

    channel: str

    @abstractmethod
    def resolve_address(self, notification: Notification, user: User | None) -> str:
        """Return the delivery address or raise AddressResolutionError."""

    @abstractmethod
    async def send(self, notification: Notification, user: User | None) -> DeliveryReceipt:
        """Deliver the notification; raise on failure."""

    async def close(self) -> None:
        """Release any held connections."""
