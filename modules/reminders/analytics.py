"""Engagement analytics, daily snapshots and report export."""

from __future__ import annotations

import csv
import io
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterable

import structlog

from modules.reminders.behavior import average_response_minutes
from modules.reminders.ml import MLService
from modules.reminders.store import ReminderStore
from shared.models.notification import Notification
from shared.schemas.reminders import (
    CHANNELS,
    NOTIFICATION_TYPES,
    ChannelMetrics,
    EngagementAnalytics,
    GlobalMetrics,
    TypeMetrics,
)

logger = structlog.get_logger()

EXPORT_FORMATS = ("CSV", "JSON")


def _has(notification: Notification, action: str) -> bool:
    return any(i.action_type == action for i in notification.interactions)


def _count(notifications: Iterable[Notification], action: str) -> int:
    return sum(1 for n in notifications if _has(n, action))


def _rate(part: int, whole: int) -> float:
    return part / whole if whole else 0.0


def channel_metrics(
    notifications: list[Notification], failed: dict[str, int] | None = None
) -> list[ChannelMetrics]:
    """Per-channel counts; ``failed`` maps channel to its FAILED count for the period."""
    failed = failed or {}
    metrics = []
    for channel in CHANNELS:
        rows = [n for n in notifications if n.channel == channel]
        sent = len(rows)
        delivered = _count(rows, "DELIVERED")
        opened = _count(rows, "OPENED")
        clicked = _count(rows, "CLICKED")
        metrics.append(
            ChannelMetrics(
                channel=channel,
                sent=sent,
                delivered=delivered,
                opened=opened,
                clicked=clicked,
                failed=failed.get(channel, 0),
                open_rate=_rate(opened, sent),
                click_rate=_rate(clicked, sent),
                delivery_rate=_rate(delivered, sent),
                avg_response_time=average_response_minutes(rows) or 0,
            )
        )
    return metrics


def _pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def render_csv(analytics: EngagementAnalytics) -> str:
    g = analytics.global_metrics
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Metric", "Value"])
    writer.writerow(["Period Start", analytics.period_start.isoformat()])
    writer.writerow(["Period End", analytics.period_end.isoformat()])
    writer.writerow(["Total Sent", g.total_sent])
    writer.writerow(["Total Delivered", g.total_delivered])
    writer.writerow(["Total Opened", g.total_opened])
    writer.writerow(["Total Clicked", g.total_clicked])
    writer.writerow(["Total Converted", g.total_converted])
    writer.writerow(["Engagement Rate", _pct(g.engagement_rate)])
    writer.writerow(["Opt-Out Rate", _pct(g.opt_out_rate)])
    writer.writerow(["Avg Response Time", f"{g.avg_response_time} minutes"])
    writer.writerow([])
    writer.writerow(
        ["Channel", "Sent", "Delivered", "Opened", "Clicked", "Failed",
         "Open Rate", "Click Rate", "Delivery Rate"]
    )
    for c in analytics.by_channel:
        writer.writerow(
            [c.channel, c.sent, c.delivered, c.opened, c.clicked, c.failed,
             _pct(c.open_rate), _pct(c.click_rate), _pct(c.delivery_rate)]
        )
    return buf.getvalue().rstrip("\n")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalyticsService:
    def __init__(
        self,
        store: ReminderStore,
        ml: MLService,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.ml = ml
        self._now = now

    async def get_engagement_analytics(
        self,
        start: datetime,
        end: datetime,
        user_id: str | None = None,
        channels: list[str] | None = None,
        types: list[str] | None = None,
    ) -> EngagementAnalytics:
        """Aggregate notifications sent in [start, end] and their interactions."""
        notifications = await self.store.list_notifications_in_range(
            start, end, user_id=user_id, channels=channels, types=types
        )
        opt_outs = await self.store.count_interactions(
            start, ("OPTED_OUT",), user_id=user_id, until=end
        )
        failed = await self.store.count_failed_by_channel(
            start, end, user_id=user_id, channels=channels, types=types
        )

        total = len(notifications)
        opened = _count(notifications, "OPENED")
        clicked = _count(notifications, "CLICKED")
        global_metrics = GlobalMetrics(
            total_sent=total,
            total_delivered=_count(notifications, "DELIVERED"),
            total_opened=opened,
            total_clicked=clicked,
            total_converted=_count(notifications, "CONVERTED"),
            engagement_rate=_rate(opened + clicked, total),
            opt_out_rate=_rate(opt_outs, total),
            avg_response_time=average_response_minutes(notifications) or 0,
        )

        by_type = {}
        for type_ in NOTIFICATION_TYPES:
            rows = [n for n in notifications if n.type == type_]
            by_type[type_] = TypeMetrics(
                sent=len(rows),
                opened=_count(rows, "OPENED"),
                converted=_count(rows, "CONVERTED"),
            )

        return EngagementAnalytics(
            period_start=start,
            period_end=end,
            global_metrics=global_metrics,
            by_channel=channel_metrics(notifications, failed),
            by_type=by_type,
        )

    async def get_dashboard_metrics(self) -> dict:
        """Last 24 hours of engagement plus model accuracy and queue depth."""
        now = self._now()
        analytics = await self.get_engagement_analytics(now - timedelta(hours=24), now)
        model = await self.ml.get_model_accuracy()
        active_users = await self.store.count_users()
        pending = await self.store.count_due_notifications(now)
        return {
            **analytics.model_dump(mode="json"),
            "ml_model": model,
            "active_users": active_users,
            "pending_notifications": pending,
            "timestamp": now.isoformat(),
        }

    async def create_daily_snapshot(self, day: date) -> None:
        """Upsert the snapshot row for one calendar day in the reminder timezone."""
        start = datetime.combine(day, time.min, tzinfo=self.ml.tz)
        end = datetime.combine(day, time.max, tzinfo=self.ml.tz)
        analytics = await self.get_engagement_analytics(start, end)
        by_channel = {c.channel: c.model_dump() for c in analytics.by_channel}
        g = analytics.global_metrics

        await self.store.upsert_snapshot(
            day,
            total_sent=g.total_sent,
            total_delivered=g.total_delivered,
            total_opened=g.total_opened,
            total_clicked=g.total_clicked,
            email_metrics=by_channel.get("EMAIL", {}),
            whatsapp_metrics=by_channel.get("WHATSAPP", {}),
            sms_metrics=by_channel.get("SMS", {}),
            push_metrics=by_channel.get("PUSH", {}),
            avg_response_time=g.avg_response_time,
            opt_out_rate=g.opt_out_rate,
        )
        logger.info("analytics_snapshot_saved", date=day.isoformat(), total_sent=g.total_sent)

    async def export_report(self, format: str, start: datetime, end: datetime) -> str:
        fmt = format.upper()
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {format}")
        analytics = await self.get_engagement_analytics(start, end)
        if fmt == "JSON":
            return analytics.model_dump_json(indent=2)
        return render_csv(analytics)
