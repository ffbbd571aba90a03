"""Tests for engagement analytics, snapshots and report export.

Covers:
- Global, per-channel and per-type aggregation
- Per-channel failures from their own count, not the sent rows
- Opt-out rate from interactions in the period
- Dashboard payload
- Daily snapshot bounds and upsert fields
- CSV / JSON export and unsupported formats
"""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.reminders.analytics import AnalyticsService, channel_metrics
from tests.conftest import NOW

START = NOW - timedelta(days=7)


@pytest.fixture
def history(make_notification, make_interaction):
    sent_at = NOW - timedelta(days=1)

    def _n(channel, type="REMINDER", actions=(), status="SENT"):
        interactions = [make_interaction(a, timestamp=sent_at + timedelta(minutes=20)) for a in actions]
        return make_notification(
            channel=channel, type=type, status=status, sent_at=sent_at, interactions=interactions
        )

    return [
        _n("EMAIL", actions=("DELIVERED", "OPENED", "CLICKED")),
        _n("EMAIL", actions=("DELIVERED",)),
        _n("EMAIL"),
        _n("WHATSAPP", type="PROMOTION", actions=("DELIVERED", "OPENED", "CONVERTED")),
    ]


def _service(store) -> AnalyticsService:
    ml = MagicMock()
    ml.tz = timezone.utc
    ml.get_model_accuracy = AsyncMock(
        return_value={"model_version": "1.0.0-mvp", "accuracy": 0.75, "accurate_predictions": 3, "total_predictions": 4}
    )
    # Failures carry no sent_at; they come from their own per-channel count
    store.count_failed_by_channel.return_value = {"EMAIL": 1}
    return AnalyticsService(store, ml, now=lambda: NOW)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class TestEngagementAnalytics:
    @pytest.mark.asyncio
    async def test_global_metrics(self, mock_store, history):
        mock_store.list_notifications_in_range.return_value = history
        mock_store.count_interactions.return_value = 1
        service = _service(mock_store)

        analytics = await service.get_engagement_analytics(START, NOW)

        g = analytics.global_metrics
        assert g.total_sent == 4
        assert g.total_delivered == 3
        assert g.total_opened == 2
        assert g.total_clicked == 1
        assert g.total_converted == 1
        assert g.engagement_rate == 0.75
        assert g.opt_out_rate == 0.25
        assert g.avg_response_time == 20
        mock_store.count_interactions.assert_awaited_once_with(
            START, ("OPTED_OUT",), user_id=None, until=NOW
        )

    @pytest.mark.asyncio
    async def test_filters_forwarded(self, mock_store, sample_user_id):
        mock_store.list_notifications_in_range.return_value = []
        mock_store.count_interactions.return_value = 0
        service = _service(mock_store)

        analytics = await service.get_engagement_analytics(
            START, NOW, user_id=sample_user_id, channels=["EMAIL"], types=["ALERT"]
        )

        kwargs = mock_store.list_notifications_in_range.call_args.kwargs
        assert kwargs == {"user_id": sample_user_id, "channels": ["EMAIL"], "types": ["ALERT"]}
        failed_kwargs = mock_store.count_failed_by_channel.call_args.kwargs
        assert failed_kwargs == kwargs
        assert analytics.global_metrics.engagement_rate == 0.0

    @pytest.mark.asyncio
    async def test_by_type(self, mock_store, history):
        mock_store.list_notifications_in_range.return_value = history
        mock_store.count_interactions.return_value = 0
        service = _service(mock_store)

        analytics = await service.get_engagement_analytics(START, NOW)

        assert analytics.by_type["REMINDER"].sent == 3
        assert analytics.by_type["PROMOTION"].converted == 1
        assert analytics.by_type["ALERT"].sent == 0

    def test_channel_metrics(self, history):
        by_channel = {m.channel: m for m in channel_metrics(history, {"EMAIL": 1})}

        email = by_channel["EMAIL"]
        assert (email.sent, email.delivered, email.opened, email.clicked, email.failed) == (3, 2, 1, 1, 1)
        assert email.open_rate == pytest.approx(1 / 3)
        assert by_channel["SMS"].sent == 0
        assert by_channel["SMS"].open_rate == 0.0

    def test_failed_defaults_to_zero(self, history):
        by_channel = {m.channel: m for m in channel_metrics(history)}

        assert by_channel["EMAIL"].failed == 0
        assert by_channel["EMAIL"].sent == 3


# ---------------------------------------------------------------------------
# Dashboard and snapshot
# ---------------------------------------------------------------------------


class TestDashboardAndSnapshot:
    @pytest.mark.asyncio
    async def test_dashboard(self, mock_store, history):
        mock_store.list_notifications_in_range.return_value = history
        mock_store.count_interactions.return_value = 0
        mock_store.count_users.return_value = 12
        mock_store.count_due_notifications.return_value = 5
        service = _service(mock_store)

        dashboard = await service.get_dashboard_metrics()

        assert dashboard["ml_model"]["accuracy"] == 0.75
        assert dashboard["active_users"] == 12
        assert dashboard["pending_notifications"] == 5
        assert dashboard["global_metrics"]["total_sent"] == 4
        assert dashboard["timestamp"] == NOW.isoformat()
        start, end = mock_store.list_notifications_in_range.call_args.args
        assert end - start == timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_daily_snapshot(self, mock_store, history):
        mock_store.list_notifications_in_range.return_value = history
        mock_store.count_interactions.return_value = 0
        service = _service(mock_store)

        await service.create_daily_snapshot(date(2026, 3, 3))

        start, end = mock_store.list_notifications_in_range.call_args.args
        assert start == datetime(2026, 3, 3, 0, 0, tzinfo=timezone.utc)
        assert end.date() == date(2026, 3, 3)
        assert (end.hour, end.minute) == (23, 59)
        day = mock_store.upsert_snapshot.call_args.args[0]
        fields = mock_store.upsert_snapshot.call_args.kwargs
        assert day == date(2026, 3, 3)
        assert fields["total_sent"] == 4
        assert fields["email_metrics"]["sent"] == 3
        assert fields["email_metrics"]["failed"] == 1
        assert fields["push_metrics"]["sent"] == 0


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class TestExport:
    @pytest.mark.asyncio
    async def test_csv(self, mock_store, history):
        mock_store.list_notifications_in_range.return_value = history
        mock_store.count_interactions.return_value = 0
        service = _service(mock_store)

        report = await service.export_report("csv", START, NOW)

        lines = report.split("\n")
        assert lines[0] == "Metric,Value"
        assert "Total Sent,4" in lines
        assert "Engagement Rate,75.00%" in lines
        assert "" in lines
        assert lines[-4].startswith("EMAIL,3,2,1,1,1,")
        assert lines[-1].startswith("PUSH,0,")

    @pytest.mark.asyncio
    async def test_json(self, mock_store, history):
        mock_store.list_notifications_in_range.return_value = history
        mock_store.count_interactions.return_value = 0
        service = _service(mock_store)

        report = json.loads(await service.export_report("JSON", START, NOW))

        assert report["global_metrics"]["total_sent"] == 4
        assert len(report["by_channel"]) == 4

    @pytest.mark.asyncio
    async def test_unsupported_format(self, mock_store):
        service = _service(mock_store)

        with pytest.raises(ValueError, match="Unsupported export format"):
            await service.export_report("XML", START, NOW)
        mock_store.list_notifications_in_range.assert_not_awaited()
