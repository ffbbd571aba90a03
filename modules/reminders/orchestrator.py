"""High-level reminder flows: gated creation, send with one fallback, batch passes."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable

import pydantic
import structlog

from modules.reminders.behavior import BehaviorService
from modules.reminders.errors import (
    FatigueLimitError,
    NoChannelAvailableError,
    UserNotFoundError,
    ValidationError,
)
from modules.reminders.ml import MLService
from modules.reminders.notifications import NotificationService
from modules.reminders.store import ReminderStore
from shared.error_capture import capture_error
from shared.models.notification import Notification
from shared.schemas.reminders import (
    BatchResult,
    CreateNotificationInput,
    CreateReminderInput,
    FallbackSendResult,
    ReminderMetadata,
    UserPreferences,
)

logger = structlog.get_logger()

# Interaction kinds that lower / raise the stored fatigue score
ENGAGING_ACTIONS = ("OPENED", "CLICKED")
DISENGAGING_ACTIONS = ("DISMISSED", "OPTED_OUT")

# Provider delivery status -> interaction action
PROVIDER_STATUS_ACTIONS = {
    "delivered": "DELIVERED",
    "read": "OPENED",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReminderOrchestrator:
    """Coordinates the send gate, ML choices and the notification lifecycle."""

    def __init__(
        self,
        store: ReminderStore,
        ml: MLService,
        behavior: BehaviorService,
        notifications: NotificationService,
        send_concurrency: int = 10,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.ml = ml
        self.behavior = behavior
        self.notifications = notifications
        self.send_concurrency = max(1, send_concurrency)
        self._now = now

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_intelligent_reminder(self, payload: CreateReminderInput) -> str:
        """Create a SCHEDULED notification on the best channel at the best time.

        An explicit ``preferred_channel`` / ``scheduled_at`` from the caller
        wins over the model.  Raises FatigueLimitError when the gate refuses.
        """
        decision = await self.ml.evaluate_send_gate(payload.user_id)
        if not decision.allowed:
            logger.info("reminder_refused", user_id=payload.user_id, reason=decision.reason)
            raise FatigueLimitError(payload.user_id, decision.reason)

        metadata = payload.metadata or ReminderMetadata()
        if payload.preferred_channel:
            channel = payload.preferred_channel
            scheduled_at = payload.scheduled_at or self._now()
        else:
            prediction = await self.ml.predict_optimal_channel(payload.user_id)
            selection = await self.ml.select_channel_with_fallback(
                payload.user_id, prediction=prediction
            )
            channel = selection.primary
            scheduled_at = payload.scheduled_at or prediction.time
            metadata = metadata.model_copy(
                update={
                    "predicted_channel": prediction.channel,
                    "confidence": prediction.confidence,
                    "prediction_id": prediction.prediction_id,
                }
            )

        return await self.notifications.create_notification(
            CreateNotificationInput(
                user_id=payload.user_id,
                channel=channel,
                type=payload.type,
                subject=payload.subject,
                content=payload.content,
                metadata=metadata,
                scheduled_at=scheduled_at,
            )
        )

    async def create_batch_reminders(
        self,
        user_ids: list[str],
        content: str,
        type: str = "REMINDER",
        metadata: dict | None = None,
        subject: str | None = None,
    ) -> list[str]:
        """One reminder per user; users the gate refuses are skipped."""
        created: list[str] = []
        for user_id in user_ids:
            try:
                notification_id = await self.create_intelligent_reminder(
                    CreateReminderInput(
                        user_id=user_id,
                        type=type,
                        subject=subject,
                        content=content,
                        metadata=ReminderMetadata.model_validate(metadata or {}),
                    )
                )
            except FatigueLimitError:
                continue
            except Exception as e:
                logger.error("batch_reminder_failed", user_id=user_id, error=str(e))
                continue
            created.append(notification_id)
        logger.info("batch_reminders_created", requested=len(user_ids), created=len(created))
        return created

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_with_fallback(self, notification_id: str) -> FallbackSendResult:
        """Send; if that fails, try exactly one other channel.

        The fallback is a new notification carrying ``original_notification_id``
        and ``is_fallback``.  A failed fallback is not retried elsewhere.
        """
        original = await self.notifications.get_notification(notification_id)
        result = await self.notifications.send_notification(notification_id)
        if result.success:
            await self._score_prediction(original, result.channel)
            return FallbackSendResult(
                success=True, notification_id=notification_id, channel=result.channel
            )

        user_id = str(original.user_id)
        try:
            selection = await self.ml.select_channel_with_fallback(
                user_id, exclude=[result.channel]
            )
        except NoChannelAvailableError:
            logger.info("no_fallback_channel", notification_id=notification_id, user_id=user_id)
            return FallbackSendResult(
                success=False,
                notification_id=notification_id,
                channel=result.channel,
                error=result.error,
            )

        fallback_id = await self.notifications.create_notification(
            self._fallback_input(original, selection.primary)
        )
        fallback = await self.notifications.send_notification(fallback_id)
        if fallback.success:
            await self._score_prediction(original, fallback.channel)
        logger.info(
            "fallback_attempted",
            notification_id=notification_id,
            fallback_notification_id=fallback_id,
            failed_channel=result.channel,
            fallback_channel=selection.primary,
            success=fallback.success,
        )
        return FallbackSendResult(
            success=fallback.success,
            notification_id=notification_id,
            channel=fallback.channel,
            used_fallback=True,
            fallback_notification_id=fallback_id,
            error=fallback.error,
        )

    async def _score_prediction(self, original: Notification, channel: str) -> None:
        """Compare the channel and time actually used with the ML prediction, if any."""
        prediction_id = (original.meta or {}).get("prediction_id")
        if not prediction_id:
            return
        try:
            await self.ml.update_prediction_accuracy(prediction_id, channel, self._now())
        except Exception as e:
            logger.warning(
                "prediction_accuracy_update_failed",
                notification_id=str(original.id),
                prediction_id=prediction_id,
                error=str(e),
            )

    def _fallback_input(self, original: Notification, channel: str) -> CreateNotificationInput:
        meta = ReminderMetadata.model_validate(original.meta or {}).model_copy(
            update={
                "original_notification_id": str(original.id),
                "is_fallback": True,
                "provider_message_id": None,
            }
        )
        return CreateNotificationInput(
            user_id=str(original.user_id),
            channel=channel,
            type=original.type,
            subject=original.subject,
            content=original.content,
            metadata=meta,
            scheduled_at=self._now(),
        )

    async def process_scheduled_notifications(self, limit: int = 100) -> BatchResult:
        """Send every due notification; one failure never stops the batch."""
        due = await self.notifications.get_scheduled_notifications(limit)
        if not due:
            return BatchResult()

        logger.info("processing_due_notifications", count=len(due))
        semaphore = asyncio.Semaphore(self.send_concurrency)

        async def _send(notification: Notification) -> bool:
            async with semaphore:
                try:
                    outcome = await self.send_with_fallback(str(notification.id))
                except Exception as e:
                    logger.error(
                        "notification_processing_error",
                        notification_id=str(notification.id),
                        error=str(e),
                    )
                    await capture_error(
                        self.store.session_factory,
                        service="reminders",
                        error_type="scheduled_send",
                        error_message=str(e),
                        operation="process_scheduled_notifications",
                        user_id=str(notification.user_id),
                        notification_id=str(notification.id),
                    )
                    return False
                return outcome.success

        outcomes = await asyncio.gather(*(_send(n) for n in due))
        succeeded = sum(1 for ok in outcomes if ok)
        result = BatchResult(processed=len(due), succeeded=succeeded, failed=len(due) - succeeded)
        logger.info("scheduled_batch_done", **result.model_dump())
        return result

    # ------------------------------------------------------------------
    # Engagement feedback
    # ------------------------------------------------------------------

    async def handle_interaction(
        self,
        notification_id: str,
        user_id: str | None,
        action_type: str,
        metadata: dict | None = None,
    ) -> None:
        """Record, recompute the behavior profile, then nudge fatigue."""
        interaction = await self.notifications.record_interaction(
            notification_id, user_id, action_type, metadata
        )
        user_id = str(interaction.user_id)

        await self.behavior.update_user_behavior(user_id)
        if action_type in ENGAGING_ACTIONS:
            await self.behavior.decrease_fatigue_score(user_id)
        elif action_type in DISENGAGING_ACTIONS:
            await self.behavior.increment_fatigue_score(user_id)
        self.ml.invalidate(user_id)

    async def handle_provider_status(
        self, message_id: str, status: str, metadata: dict | None = None
    ) -> bool:
        """Map a provider delivery receipt onto its notification.

        Returns False when the status is not tracked or the message id is
        not one of ours.
        """
        action = PROVIDER_STATUS_ACTIONS.get(status.lower())
        if action is None:
            return False
        notification = await self.store.find_notification_by_provider_message(message_id)
        if notification is None:
            logger.debug("provider_status_unmatched", message_id=message_id, status=status)
            return False
        await self.handle_interaction(
            str(notification.id), str(notification.user_id), action, metadata
        )
        return True

    # ------------------------------------------------------------------
    # History and preferences
    # ------------------------------------------------------------------

    async def get_user_history(self, user_id: str, limit: int = 50) -> list[Notification]:
        return await self.notifications.get_notifications_by_user(user_id, limit=limit)

    async def cancel_reminder(self, notification_id: str) -> None:
        await self.notifications.cancel_notification(notification_id)

    async def get_user_preferences(self, user_id: str) -> UserPreferences:
        return await self.ml.get_preferences(user_id)

    async def update_user_preferences(self, user_id: str, preferences: dict) -> UserPreferences:
        try:
            prefs = UserPreferences.model_validate(preferences)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid preferences: {e}") from e

        user = await self.store.update_user_preferences(
            user_id, prefs.model_dump(mode="json", exclude_none=True)
        )
        if user is None:
            raise UserNotFoundError(user_id)
        self.ml.invalidate(user_id)
        logger.info("user_preferences_updated", user_id=user_id)
        return prefs
