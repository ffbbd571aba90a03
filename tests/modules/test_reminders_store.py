"""Tests for ReminderStore against a mocked async session.

Covers:
- Fatigue adjustment clamped to [0, 100], no-op without a behavior row
- Conditional status transitions reported through rowcount
- Prediction accuracy counts
- Snapshot upsert by day
"""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.reminders.store import ReminderStore
from shared.models.analytics_snapshot import AnalyticsSnapshot
from tests.conftest import NOW, make_execute_side_effect


def _scalar_result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


# ---------------------------------------------------------------------------
# Fatigue
# ---------------------------------------------------------------------------


class TestAdjustFatigue:
    @pytest.mark.asyncio
    async def test_increment_capped_at_100(self, mock_session_factory, mock_db_session, make_behavior, sample_user_id):
        behavior = make_behavior(sample_user_id, current_fatigue_score=98.0)
        mock_db_session.execute = AsyncMock(return_value=_scalar_result(behavior))
        store = ReminderStore(mock_session_factory)

        assert await store.adjust_fatigue(sample_user_id, 5) == 100.0
        assert behavior.current_fatigue_score == 100.0
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_decrement_floored_at_zero(self, mock_session_factory, mock_db_session, make_behavior, sample_user_id):
        behavior = make_behavior(sample_user_id, current_fatigue_score=3.0)
        mock_db_session.execute = AsyncMock(return_value=_scalar_result(behavior))
        store = ReminderStore(mock_session_factory)

        assert await store.adjust_fatigue(sample_user_id, -10) == 0.0

    @pytest.mark.asyncio
    async def test_no_behavior_row(self, mock_session_factory, mock_db_session, sample_user_id):
        store = ReminderStore(mock_session_factory)

        assert await store.adjust_fatigue(sample_user_id, 5) is None
        mock_db_session.commit.assert_not_awaited()


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


class TestTransitionStatus:
    @pytest.mark.asyncio
    async def test_row_updated(self, mock_session_factory, mock_db_session, sample_user_id):
        mock_db_session.execute = AsyncMock(return_value=MagicMock(rowcount=1))
        store = ReminderStore(mock_session_factory)

        assert await store.transition_status(sample_user_id, ("SCHEDULED",), "SENDING") is True

    @pytest.mark.asyncio
    async def test_row_not_in_expected_status(self, mock_session_factory, mock_db_session, sample_user_id):
        mock_db_session.execute = AsyncMock(return_value=MagicMock(rowcount=0))
        store = ReminderStore(mock_session_factory)

        assert await store.transition_status(sample_user_id, ("SCHEDULED",), "CANCELLED") is False


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class TestAggregates:
    @pytest.mark.asyncio
    async def test_prediction_accuracy_counts(self, mock_session_factory, mock_db_session):
        result = MagicMock()
        result.one.return_value = (4, 3)
        mock_db_session.execute = AsyncMock(return_value=result)
        store = ReminderStore(mock_session_factory)

        assert await store.prediction_accuracy_counts() == (3, 4)

    @pytest.mark.asyncio
    async def test_snapshot_insert_then_update(self, mock_session_factory, mock_db_session):
        existing = AnalyticsSnapshot(snapshot_date=date(2026, 3, 3), total_sent=1)
        mock_db_session.execute = AsyncMock(
            side_effect=make_execute_side_effect(_scalar_result(None), _scalar_result(existing))
        )
        store = ReminderStore(mock_session_factory)

        created = await store.upsert_snapshot(date(2026, 3, 3), total_sent=5)
        mock_db_session.add.assert_called_once_with(created)
        assert created.total_sent == 5

        updated = await store.upsert_snapshot(date(2026, 3, 3), total_sent=7)
        assert updated is existing
        assert existing.total_sent == 7
        assert mock_db_session.add.call_count == 1

    @pytest.mark.asyncio
    async def test_count_sent_since_handles_null(self, mock_session_factory, mock_db_session, sample_user_id):
        result = MagicMock()
        result.scalar_one.return_value = None
        mock_db_session.execute = AsyncMock(return_value=result)
        store = ReminderStore(mock_session_factory)

        assert await store.count_sent_since(sample_user_id, NOW) == 0
