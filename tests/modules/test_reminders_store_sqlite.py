"""ReminderStore and services against a real SQLite session.

Covers:
- A failing send is counted as FAILED for its channel in the period it failed
- Engagement analytics report that failure without counting it as sent
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.reminders.analytics import AnalyticsService
from modules.reminders.notifications import NotificationService
from modules.reminders.providers.base import ChannelSender
from modules.reminders.store import ReminderStore
from shared.database import create_engine, create_session_factory
from shared.models.base import Base


async def _store(tmp_path) -> tuple[ReminderStore, object]:
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'reminders.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return ReminderStore(create_session_factory(engine)), engine


def _failing_sender(channel: str) -> ChannelSender:
    sender = MagicMock(spec=ChannelSender)
    sender.channel = channel
    sender.send = AsyncMock(side_effect=RuntimeError("provider down"))
    return sender


class TestFailedSends:
    @pytest.mark.asyncio
    async def test_failed_send_counted_per_channel(self, tmp_path):
        store, engine = await _store(tmp_path)
        try:
            now = datetime.now(timezone.utc)
            notification = await store.create_notification(
                user_id=uuid.uuid4(),
                channel="EMAIL",
                type="REMINDER",
                content="Dentist at 10",
                scheduled_at=now - timedelta(minutes=1),
                status="SCHEDULED",
            )
            service = NotificationService(store, {"EMAIL": _failing_sender("EMAIL")})

            result = await service.send_notification(str(notification.id))

            assert result.success is False
            stored = await store.get_notification(notification.id)
            assert stored.status == "FAILED"
            assert stored.sent_at is None

            start, end = now - timedelta(hours=1), now + timedelta(hours=1)
            assert await store.count_failed_by_channel(start, end) == {"EMAIL": 1}
            assert await store.count_failed_by_channel(start, end, channels=["SMS"]) == {}
            assert await store.count_failed_by_channel(now + timedelta(hours=2), now + timedelta(hours=3)) == {}
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_analytics_report_failure(self, tmp_path):
        store, engine = await _store(tmp_path)
        try:
            now = datetime.now(timezone.utc)
            notification = await store.create_notification(
                user_id=uuid.uuid4(),
                channel="WHATSAPP",
                type="REMINDER",
                content="Pay rent",
                scheduled_at=now,
                status="SCHEDULED",
            )
            service = NotificationService(store, {"WHATSAPP": _failing_sender("WHATSAPP")})
            await service.send_notification(str(notification.id))
            ml = MagicMock()
            ml.tz = timezone.utc
            analytics = AnalyticsService(store, ml, now=lambda: now)

            report = await analytics.get_engagement_analytics(now - timedelta(hours=1), now + timedelta(hours=1))

            by_channel = {c.channel: c for c in report.by_channel}
            assert by_channel["WHATSAPP"].failed == 1
            assert by_channel["WHATSAPP"].sent == 0
            assert report.global_metrics.total_sent == 0
        finally:
            await engine.dispose()
