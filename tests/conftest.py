"""Shared test fixtures for the reminder service test suite.

Provides mock database sessions, Redis clients, a mocked ReminderStore and
model factories so service tests can run without Docker infrastructure.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.reminders.store import ReminderStore
from shared.config import Settings
from shared.models.notification import Interaction, Notification
from shared.models.user import User
from shared.models.user_behavior import UserBehavior

# Fixed "now" used across service tests: a Wednesday, 10:00 UTC
NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Database mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db_session():
    """Mock async SQLAlchemy session.

    Supports the common patterns used in store code:
        session.execute(stmt) -> result
        session.add(obj)
        session.commit()
        session.refresh(obj)
    """
    session = AsyncMock()
    session.add = MagicMock()
    # Default: execute returns a result with no rows
    default_result = MagicMock()
    default_result.scalar_one_or_none.return_value = None
    default_result.scalars.return_value.all.return_value = []
    session.execute = AsyncMock(return_value=default_result)
    return session


@pytest.fixture
def mock_session_factory(mock_db_session):
    """Mock async session factory compatible with ``async with factory() as session:``."""

    @asynccontextmanager
    async def _session_ctx():
        yield mock_db_session

    factory = MagicMock(side_effect=lambda: _session_ctx())
    return factory


# ---------------------------------------------------------------------------
# Redis mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis():
    """Mock async Redis client with common operations."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.delete = AsyncMock()
    redis.publish = AsyncMock()
    return redis


# ---------------------------------------------------------------------------
# Settings and store
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    """Settings pinned to UTC so local hours match the fixed clock."""
    return Settings(
        reminder_timezone="UTC",
        service_auth_token="test-service-token",
        sendpulse_webhook_token="test-webhook-token",
    )


@pytest.fixture
def mock_store(mock_session_factory):
    """ReminderStore with every query mocked; error capture still gets a factory."""
    store = AsyncMock(spec=ReminderStore)
    store.session_factory = mock_session_factory
    return store


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_user_id():
    """Return a stable UUID string for test user."""
    return str(uuid.uuid4())


@pytest.fixture
def make_user():
    """Factory for creating User instances."""

    def _make(
        user_id: uuid.UUID | str | None = None,
        email: str | None = "user@example.com",
        whatsapp: str | None = "+5511999990000",
        phone: str | None = "+5511999990000",
        push_token: str | None = "push-token",
        preferences: dict | None = None,
    ) -> User:
        return User(
            id=uuid.UUID(str(user_id)) if user_id else uuid.uuid4(),
            name="Test User",
            email=email,
            phone=phone,
            whatsapp=whatsapp,
            push_token=push_token,
            preferences=preferences,
            created_at=NOW,
        )

    return _make


@pytest.fixture
def make_interaction():
    """Factory for creating Interaction instances."""

    def _make(
        action_type: str = "OPENED",
        timestamp: datetime | None = None,
        notification_id: uuid.UUID | None = None,
        user_id: uuid.UUID | None = None,
        meta: dict | None = None,
    ) -> Interaction:
        return Interaction(
            id=uuid.uuid4(),
            notification_id=notification_id or uuid.uuid4(),
            user_id=user_id or uuid.uuid4(),
            action_type=action_type,
            meta=meta,
            timestamp=timestamp or NOW,
        )

    return _make


@pytest.fixture
def make_notification():
    """Factory for creating Notification instances."""

    def _make(
        user_id: uuid.UUID | str | None = None,
        channel: str = "EMAIL",
        status: str = "SCHEDULED",
        type: str = "REMINDER",
        content: str = "Your appointment is tomorrow",
        subject: str | None = "Reminder",
        meta: dict | None = None,
        scheduled_at: datetime | None = None,
        sent_at: datetime | None = None,
        interactions: list[Interaction] | None = None,
    ) -> Notification:
        notification = Notification(
            id=uuid.uuid4(),
            user_id=uuid.UUID(str(user_id)) if user_id else uuid.uuid4(),
            channel=channel,
            type=type,
            subject=subject,
            content=content,
            meta=meta,
            scheduled_at=scheduled_at or NOW - timedelta(minutes=1),
            sent_at=sent_at,
            status=status,
            error_message=None,
            created_at=NOW - timedelta(hours=1),
            updated_at=NOW - timedelta(hours=1),
        )
        notification.interactions = interactions or []
        return notification

    return _make


@pytest.fixture
def make_behavior():
    """Factory for creating UserBehavior instances."""

    def _make(user_id: uuid.UUID | str | None = None, **fields) -> UserBehavior:
        values = {
            "email_open_rate": 0.0,
            "email_click_rate": 0.0,
            "whatsapp_open_rate": 0.0,
            "whatsapp_click_rate": 0.0,
            "sms_open_rate": 0.0,
            "sms_click_rate": 0.0,
            "push_open_rate": 0.0,
            "push_click_rate": 0.0,
            "best_hour_of_day": None,
            "average_response_time": None,
            "preferred_frequency": 3,
            "current_fatigue_score": 0.0,
            "conversion_rate": 0.0,
        }
        values.update(fields)
        return UserBehavior(
            id=uuid.uuid4(),
            user_id=uuid.UUID(str(user_id)) if user_id else uuid.uuid4(),
            updated_at=NOW,
            **values,
        )

    return _make


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_execute_side_effect(*results):
    """Create a side_effect function that returns results in order.

    Usage:
        session.execute = AsyncMock(side_effect=make_execute_side_effect(
            result_for_first_call,
            result_for_second_call,
        ))
    """
    call_count = 0

    async def _side_effect(*args, **kwargs):
        nonlocal call_count
        idx = min(call_count, len(results) - 1)
        call_count += 1
        return results[idx]

    return _side_effect
