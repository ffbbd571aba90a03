"""Notification lifecycle: create, send through a channel sender, record engagement."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import structlog

from modules.reminders.errors import InvalidTransitionError, NotificationNotFoundError
from modules.reminders.providers.base import ChannelSender
from modules.reminders.store import ReminderStore
from shared.models.notification import Interaction, Notification
from shared.schemas.reminders import CreateNotificationInput, NotificationSendResult

logger = structlog.get_logger()

# Forward-only order of the delivery statuses an interaction can move to
STATUS_RANK: dict[str, int] = {
    "SCHEDULED": 0,
    "SENDING": 1,
    "SENT": 2,
    "DELIVERED": 3,
    "OPENED": 4,
    "CLICKED": 5,
}

# Interactions that advance the notification status
STATUS_ACTIONS = ("DELIVERED", "OPENED", "CLICKED")

CANCELLABLE_STATUSES = ("SCHEDULED",)


def statuses_below(target: str) -> tuple[str, ...]:
    """Post-send statuses ranked lower than ``target``."""
    rank = STATUS_RANK[target]
    return tuple(s for s, r in STATUS_RANK.items() if STATUS_RANK["SENT"] <= r < rank)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationService:
    """Owns every status change of a notification row."""

    def __init__(
        self,
        store: ReminderStore,
        senders: dict[str, ChannelSender],
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.senders = senders
        self._now = now

    async def create_notification(self, payload: CreateNotificationInput) -> str:
        notification = await self.store.create_notification(
            user_id=payload.user_id,
            channel=payload.channel,
            type=payload.type,
            subject=payload.subject,
            content=payload.content,
            meta=payload.metadata.model_dump(exclude_none=True) if payload.metadata else None,
            scheduled_at=payload.scheduled_at,
            status="SCHEDULED",
        )
        logger.info(
            "notification_created",
            notification_id=str(notification.id),
            user_id=payload.user_id,
            channel=payload.channel,
            scheduled_at=payload.scheduled_at.isoformat(),
        )
        return str(notification.id)

    async def get_notification(self, notification_id: str) -> Notification | None:
        return await self.store.get_notification(notification_id)

    async def get_notifications_by_user(self, user_id: str, limit: int = 50) -> list[Notification]:
        return await self.store.list_notifications_by_user(user_id, limit=limit)

    async def get_scheduled_notifications(self, limit: int = 100) -> list[Notification]:
        """Due SCHEDULED notifications, oldest ``scheduled_at`` first."""
        return await self.store.list_due_notifications(self._now(), limit=limit)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_notification(self, notification_id: str) -> NotificationSendResult:
        """SCHEDULED -> SENDING -> SENT or FAILED.

        Sender failures are captured on the row and in the result; they are
        never raised.  A missing notification raises NotificationNotFoundError,
        one that is no longer SCHEDULED raises InvalidTransitionError.
        """
        notification = await self.store.get_notification(notification_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)

        channel = notification.channel
        if not await self.store.transition_status(notification_id, ("SCHEDULED",), "SENDING"):
            # Cancelled, or claimed by another sender since it was read
            raise InvalidTransitionError(notification_id, notification.status, "SENDING")

        sender = self.senders.get(channel)
        try:
            if sender is None:
                raise ValueError(f"No sender configured for channel {channel}")
            user = await self.store.get_user(notification.user_id)
            receipt = await sender.send(notification, user)
        except Exception as e:
            await self.store.transition_status(
                notification_id, ("SENDING",), "FAILED", error_message=str(e)
            )
            logger.warning(
                "notification_send_failed",
                notification_id=notification_id,
                channel=channel,
                error_type=type(e).__name__,
                error=str(e),
            )
            return NotificationSendResult(
                success=False, notification_id=notification_id, channel=channel, error=str(e)
            )

        meta = dict(notification.meta or {})
        if receipt.message_id:
            meta["provider_message_id"] = receipt.message_id
        await self.store.transition_status(
            notification_id,
            ("SENDING",),
            "SENT",
            sent_at=self._now(),
            error_message=None,
            meta=meta or None,
        )
        await self.store.add_interaction(
            notification_id,
            notification.user_id,
            "SENT",
            {"message_id": receipt.message_id} if receipt.message_id else None,
        )
        logger.info(
            "notification_sent",
            notification_id=notification_id,
            channel=channel,
            message_id=receipt.message_id,
        )
        return NotificationSendResult(
            success=True,
            notification_id=notification_id,
            channel=channel,
            message_id=receipt.message_id,
        )

    # ------------------------------------------------------------------
    # Engagement
    # ------------------------------------------------------------------

    async def record_interaction(
        self,
        notification_id: str,
        user_id: str | None,
        action_type: str,
        metadata: dict | None = None,
    ) -> Interaction:
        """Append an interaction; delivery actions also move the status forward.

        A late DELIVERED after CLICKED is stored but leaves the status alone.
        """
        notification = await self.store.get_notification(notification_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)

        interaction = await self.store.add_interaction(
            notification_id, user_id or notification.user_id, action_type, metadata
        )

        if action_type in STATUS_ACTIONS:
            advanced = await self.store.transition_status(
                notification_id, statuses_below(action_type), action_type
            )
            if not advanced:
                logger.debug(
                    "notification_status_kept",
                    notification_id=notification_id,
                    status=notification.status,
                    action=action_type,
                )
        logger.info(
            "interaction_recorded",
            notification_id=notification_id,
            action=action_type,
        )
        return interaction

    async def cancel_notification(self, notification_id: str) -> None:
        notification = await self.store.get_notification(notification_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)
        if not await self.store.transition_status(
            notification_id, CANCELLABLE_STATUSES, "CANCELLED"
        ):
            raise InvalidTransitionError(notification_id, notification.status, "CANCELLED")
        logger.info("notification_cancelled", notification_id=notification_id)

    async def close(self) -> None:
        for sender in self.senders.values():
            try:
                await sender.close()
            except Exception as e:
                logger.warning("sender_close_failed", channel=sender.channel, error=str(e))
