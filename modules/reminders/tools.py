"""Reminders module tool implementations."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog

from modules.reminders.services import ReminderServices
from shared.models.notification import Notification
from shared.schemas.reminders import CreateReminderInput, ReminderMetadata

logger = structlog.get_logger()


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require_user(user_id: str | None) -> str:
    if not user_id:
        raise ValueError("user_id is required")
    return str(uuid.UUID(user_id))


def _serialize(n: Notification) -> dict:
    return {
        "notification_id": str(n.id),
        "channel": n.channel,
        "type": n.type,
        "subject": n.subject,
        "content": n.content,
        "status": n.status,
        "scheduled_at": n.scheduled_at.isoformat() if n.scheduled_at else None,
        "sent_at": n.sent_at.isoformat() if n.sent_at else None,
        "error_message": n.error_message,
        "metadata": n.meta,
    }


class ReminderTools:
    """Tool entry points; each one delegates to the service graph."""

    def __init__(self, services: ReminderServices):
        self.services = services

    async def _owned(self, notification_id: str, user_id: str) -> Notification:
        notification = await self.services.notifications.get_notification(notification_id)
        if notification is None or str(notification.user_id) != user_id:
            raise ValueError(f"Notification not found: {notification_id}")
        return notification

    async def create_reminder(
        self,
        content: str,
        subject: str | None = None,
        type: str = "REMINDER",
        channel: str | None = None,
        scheduled_at: str | None = None,
        metadata: dict | None = None,
        user_id: str | None = None,
    ) -> dict:
        uid = _require_user(user_id)
        notification_id = await self.services.orchestrator.create_intelligent_reminder(
            CreateReminderInput(
                user_id=uid,
                type=type,
                subject=subject,
                content=content,
                metadata=ReminderMetadata.model_validate(metadata) if metadata else None,
                preferred_channel=channel.upper() if channel else None,
                scheduled_at=_parse_datetime(scheduled_at),
            )
        )
        notification = await self.services.notifications.get_notification(notification_id)
        return {
            **_serialize(notification),
            "message": f"Reminder scheduled on {notification.channel}.",
        }

    async def list_reminders(self, limit: int = 50, user_id: str | None = None) -> list[dict]:
        uid = _require_user(user_id)
        history = await self.services.orchestrator.get_user_history(uid, limit=limit)
        return [_serialize(n) for n in history]

    async def cancel_reminder(self, notification_id: str, user_id: str | None = None) -> dict:
        uid = _require_user(user_id)
        await self._owned(notification_id, uid)
        await self.services.orchestrator.cancel_reminder(notification_id)
        return {"notification_id": notification_id, "status": "CANCELLED"}

    async def send_now(self, notification_id: str, user_id: str | None = None) -> dict:
        uid = _require_user(user_id)
        await self._owned(notification_id, uid)
        result = await self.services.orchestrator.send_with_fallback(notification_id)
        return result.model_dump()

    async def record_interaction(
        self,
        notification_id: str,
        action_type: str,
        metadata: dict | None = None,
        user_id: str | None = None,
    ) -> dict:
        uid = _require_user(user_id)
        await self._owned(notification_id, uid)
        await self.services.orchestrator.handle_interaction(
            notification_id, uid, action_type.upper(), metadata
        )
        return {"notification_id": notification_id, "action_type": action_type.upper()}

    async def get_preferences(self, user_id: str | None = None) -> dict:
        uid = _require_user(user_id)
        prefs = await self.services.orchestrator.get_user_preferences(uid)
        return prefs.model_dump(mode="json", exclude_none=True)

    async def update_preferences(self, preferences: dict, user_id: str | None = None) -> dict:
        uid = _require_user(user_id)
        prefs = await self.services.orchestrator.update_user_preferences(uid, preferences)
        return prefs.model_dump(mode="json", exclude_none=True)

    async def get_behavior(self, user_id: str | None = None) -> dict:
        uid = _require_user(user_id)
        metrics = await self.services.behavior.get_user_behavior(uid)
        if metrics is None:
            return {"user_id": uid, "message": "No engagement history yet."}
        return metrics.model_dump(mode="json")

    async def pause_subscription(self, days: int = 30, user_id: str | None = None) -> dict:
        uid = _require_user(user_id)
        result = await self.services.subscriptions.pause_subscription(uid, days=days)
        return result.model_dump()

    async def reactivate_subscription(self, user_id: str | None = None) -> dict:
        uid = _require_user(user_id)
        result = await self.services.subscriptions.reactivate_subscription(uid)
        return result.model_dump()

    async def get_analytics(
        self,
        start: str,
        end: str,
        channels: list[str] | None = None,
        types: list[str] | None = None,
    ) -> dict:
        analytics = await self.services.analytics.get_engagement_analytics(
            _parse_datetime(start), _parse_datetime(end), channels=channels, types=types
        )
        return analytics.model_dump(mode="json")

    async def dashboard(self) -> dict:
        return await self.services.analytics.get_dashboard_metrics()

    async def export_report(self, format: str, start: str, end: str) -> dict:
        report = await self.services.analytics.export_report(
            format, _parse_datetime(start), _parse_datetime(end)
        )
        return {"format": format.upper(), "report": report}

    async def model_accuracy(self) -> dict:
        return await self.services.ml.get_model_accuracy()
