"""Email sender: Resend-compatible JSON API over httpx."""

from __future__ import annotations

import httpx
import structlog

from modules.reminders.errors import AddressResolutionError
from modules.reminders.providers.base import ChannelSender, DeliveryReceipt, metadata_of
from modules.reminders.sendpulse.retry import RetryManager
from shared.models.notification import Notification
from shared.models.user import User

logger = structlog.get_logger()


class EmailSender(ChannelSender):
    channel = "EMAIL"

    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_address: str,
        retry_manager: RetryManager | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.from_address = from_address
        self.retry_manager = retry_manager
        self._http = http_client or httpx.AsyncClient(timeout=30.0)

    def resolve_address(self, notification: Notification, user: User | None) -> str:
        address = (user.email if user else None) or metadata_of(notification).email
        if not address:
            raise AddressResolutionError(self.channel, "User email not found")
        return address

    async def _post(self, payload: dict) -> dict:
        resp = await self._http.post(
            self.api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        resp.raise_for_status()
        return resp.json() if resp.content else {}

    async def send(self, notification: Notification, user: User | None) -> DeliveryReceipt:
        address = self.resolve_address(notification, user)
        if not self.api_key:
            raise RuntimeError("Email API key is not configured")

        payload = {
            "from": self.from_address,
            "to": [address],
            "subject": notification.subject or "Reminder",
            "text": notification.content,
        }
        if self.retry_manager is not None:
            data = await self.retry_manager.execute(
                lambda: self._post(payload), operation_id=f"email:{notification.id}"
            )
        else:
            data = await self._post(payload)

        logger.info("email_sent", notification_id=str(notification.id))
        return DeliveryReceipt(message_id=data.get("id"), address=address)

    async def close(self) -> None:
        await self._http.aclose()
