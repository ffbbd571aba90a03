"""Persistence API for the reminder service.

Every method opens its own short session from the injected factory, the
same way the module tools do, so callers never hold a session across an
outbound provider call.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

import structlog
from sqlalchemy import distinct, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.models.analytics_snapshot import AnalyticsSnapshot
from shared.models.ml_prediction import MLPrediction
from shared.models.notification import Interaction, Notification
from shared.models.subscription import Subscription
from shared.models.user import User
from shared.models.user_behavior import UserBehavior

logger = structlog.get_logger()

ENGAGED_ACTIONS = ("OPENED", "CLICKED")


def _uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class ReminderStore:
    """CRUD and aggregate queries over the reminder tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str | uuid.UUID) -> User | None:
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.id == _uuid(user_id)))
            return result.scalar_one_or_none()

    async def update_user_preferences(self, user_id: str | uuid.UUID, preferences: dict) -> User | None:
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.id == _uuid(user_id)))
            user = result.scalar_one_or_none()
            if user is None:
                return None
            user.preferences = preferences
            await session.commit()
            return user

    async def count_users(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count(User.id)))
            return int(result.scalar_one() or 0)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def create_notification(self, **fields) -> Notification:
        fields["user_id"] = _uuid(fields["user_id"])
        notification = Notification(**fields)
        async with self.session_factory() as session:
            session.add(notification)
            await session.commit()
            await session.refresh(notification)
        return notification

    async def get_notification(self, notification_id: str | uuid.UUID) -> Notification | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Notification).where(Notification.id == _uuid(notification_id))
            )
            return result.scalar_one_or_none()

    async def update_notification(self, notification_id: str | uuid.UUID, **fields) -> None:
        fields["updated_at"] = datetime.now(timezone.utc)
        async with self.session_factory() as session:
            await session.execute(
                update(Notification)
                .where(Notification.id == _uuid(notification_id))
                .values(**fields)
            )
            await session.commit()

    async def transition_status(
        self,
        notification_id: str | uuid.UUID,
        from_statuses: tuple[str, ...],
        to_status: str,
        **fields,
    ) -> bool:
        """Conditional status change; False if the row was not in ``from_statuses``.

        The WHERE clause makes the check and the write a single statement, so
        two writers can never both move the same notification.
        """
        values = {"status": to_status, "updated_at": datetime.now(timezone.utc), **fields}
        async with self.session_factory() as session:
            result = await session.execute(
                update(Notification)
                .where(
                    Notification.id == _uuid(notification_id),
                    Notification.status.in_(from_statuses),
                )
                .values(**values)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def list_notifications_by_user(
        self, user_id: str | uuid.UUID, limit: int = 50
    ) -> list[Notification]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Notification)
                .where(Notification.user_id == _uuid(user_id))
                .order_by(Notification.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_due_notifications(self, now: datetime, limit: int = 100) -> list[Notification]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Notification)
                .where(Notification.status == "SCHEDULED", Notification.scheduled_at <= now)
                .order_by(Notification.scheduled_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count_due_notifications(self, now: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(Notification.id)).where(
                    Notification.status == "SCHEDULED", Notification.scheduled_at <= now
                )
            )
            return int(result.scalar_one() or 0)

    async def list_sent_notifications(
        self,
        user_id: str | uuid.UUID,
        since: datetime,
        statuses: tuple[str, ...] | None = None,
    ) -> list[Notification]:
        """Notifications sent since ``since``, interactions eagerly loaded."""
        conditions = [Notification.user_id == _uuid(user_id), Notification.sent_at >= since]
        if statuses:
            conditions.append(Notification.status.in_(statuses))
        async with self.session_factory() as session:
            result = await session.execute(
                select(Notification).where(*conditions).order_by(Notification.sent_at.asc())
            )
            return list(result.scalars().all())

    async def list_notifications_in_range(
        self,
        start: datetime,
        end: datetime,
        user_id: str | uuid.UUID | None = None,
        channels: list[str] | None = None,
        types: list[str] | None = None,
    ) -> list[Notification]:
        conditions = [Notification.sent_at >= start, Notification.sent_at <= end]
        if user_id:
            conditions.append(Notification.user_id == _uuid(user_id))
        if channels:
            conditions.append(Notification.channel.in_(channels))
        if types:
            conditions.append(Notification.type.in_(types))
        async with self.session_factory() as session:
            result = await session.execute(select(Notification).where(*conditions))
            return list(result.scalars().all())

    async def count_failed_by_channel(
        self,
        start: datetime,
        end: datetime,
        user_id: str | uuid.UUID | None = None,
        channels: list[str] | None = None,
        types: list[str] | None = None,
    ) -> dict[str, int]:
        """FAILED notifications per channel, bucketed by when they failed.

        Failures never get a ``sent_at``, so the range is applied to ``updated_at``.
        """
        conditions = [
            Notification.status == "FAILED",
            Notification.updated_at >= start,
            Notification.updated_at <= end,
        ]
        if user_id:
            conditions.append(Notification.user_id == _uuid(user_id))
        if channels:
            conditions.append(Notification.channel.in_(channels))
        if types:
            conditions.append(Notification.type.in_(types))
        async with self.session_factory() as session:
            result = await session.execute(
                select(Notification.channel, func.count(Notification.id))
                .where(*conditions)
                .group_by(Notification.channel)
            )
            return {channel: int(count) for channel, count in result.all()}

    async def count_sent_since(
        self,
        user_id: str | uuid.UUID,
        since: datetime,
        statuses: tuple[str, ...] | None = None,
    ) -> int:
        conditions = [Notification.user_id == _uuid(user_id), Notification.sent_at >= since]
        if statuses:
            conditions.append(Notification.status.in_(statuses))
        async with self.session_factory() as session:
            result = await session.execute(select(func.count(Notification.id)).where(*conditions))
            return int(result.scalar_one() or 0)

    async def count_engaged_since(self, user_id: str | uuid.UUID, since: datetime) -> int:
        """Notifications sent since ``since`` with at least one open or click."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(distinct(Notification.id)))
                .join(Interaction, Interaction.notification_id == Notification.id)
                .where(
                    Notification.user_id == _uuid(user_id),
                    Notification.sent_at >= since,
                    Interaction.action_type.in_(ENGAGED_ACTIONS),
                )
            )
            return int(result.scalar_one() or 0)

    async def engaged_counts_by_channel(
        self, user_id: str | uuid.UUID, since: datetime
    ) -> dict[str, int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Notification.channel, func.count(distinct(Notification.id)))
                .join(Interaction, Interaction.notification_id == Notification.id)
                .where(
                    Notification.user_id == _uuid(user_id),
                    Notification.sent_at >= since,
                    Interaction.action_type.in_(ENGAGED_ACTIONS),
                )
                .group_by(Notification.channel)
            )
            return {channel: int(count) for channel, count in result.all()}

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    async def add_interaction(
        self,
        notification_id: str | uuid.UUID,
        user_id: str | uuid.UUID,
        action_type: str,
        meta: dict | None = None,
    ) -> Interaction:
        interaction = Interaction(
            notification_id=_uuid(notification_id),
            user_id=_uuid(user_id),
            action_type=action_type,
            meta=meta,
        )
        async with self.session_factory() as session:
            session.add(interaction)
            await session.commit()
        return interaction

    async def count_interactions(
        self,
        since: datetime,
        action_types: tuple[str, ...] | None = None,
        user_id: str | uuid.UUID | None = None,
        until: datetime | None = None,
    ) -> int:
        conditions = [Interaction.timestamp >= since]
        if until is not None:
            conditions.append(Interaction.timestamp <= until)
        if user_id is not None:
            conditions.append(Interaction.user_id == _uuid(user_id))
        if action_types:
            conditions.append(Interaction.action_type.in_(action_types))
        async with self.session_factory() as session:
            result = await session.execute(select(func.count(Interaction.id)).where(*conditions))
            return int(result.scalar_one() or 0)

    async def find_notification_by_provider_message(self, message_id: str) -> Notification | None:
        """Look up the notification a provider message id belongs to."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Notification)
                .where(Notification.meta["provider_message_id"].as_string() == message_id)
                .limit(1)
            )
            return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Behavior
    # ------------------------------------------------------------------

    async def get_behavior(self, user_id: str | uuid.UUID) -> UserBehavior | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserBehavior).where(UserBehavior.user_id == _uuid(user_id))
            )
            return result.scalar_one_or_none()

    async def upsert_behavior(self, user_id: str | uuid.UUID, **fields) -> UserBehavior:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserBehavior).where(UserBehavior.user_id == _uuid(user_id))
            )
            behavior = result.scalar_one_or_none()
            if behavior is None:
                behavior = UserBehavior(user_id=_uuid(user_id), **fields)
                session.add(behavior)
            else:
                for key, value in fields.items():
                    setattr(behavior, key, value)
            await session.commit()
            return behavior

    async def adjust_fatigue(
        self, user_id: str | uuid.UUID, delta: float, floor: float = 0.0, cap: float = 100.0
    ) -> float | None:
        """Add ``delta`` to the stored fatigue score, clamped. None if no row."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(UserBehavior)
                .where(UserBehavior.user_id == _uuid(user_id))
                .with_for_update()
            )
            behavior = result.scalar_one_or_none()
            if behavior is None:
                return None
            behavior.current_fatigue_score = max(
                floor, min(cap, (behavior.current_fatigue_score or 0.0) + delta)
            )
            await session.commit()
            return behavior.current_fatigue_score

    # ------------------------------------------------------------------
    # ML predictions
    # ------------------------------------------------------------------

    async def add_prediction(self, **fields) -> MLPrediction:
        fields["user_id"] = _uuid(fields["user_id"])
        prediction = MLPrediction(**fields)
        async with self.session_factory() as session:
            session.add(prediction)
            await session.commit()
        return prediction

    async def get_prediction(self, prediction_id: str | uuid.UUID) -> MLPrediction | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(MLPrediction).where(MLPrediction.id == _uuid(prediction_id))
            )
            return result.scalar_one_or_none()

    async def update_prediction(self, prediction_id: str | uuid.UUID, **fields) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(MLPrediction).where(MLPrediction.id == _uuid(prediction_id)).values(**fields)
            )
            await session.commit()

    async def prediction_accuracy_counts(self) -> tuple[int, int]:
        """(accurate, evaluated) over predictions whose outcome is known."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    func.count(MLPrediction.id),
                    func.count(MLPrediction.id).filter(MLPrediction.was_accurate.is_(True)),
                ).where(MLPrediction.was_accurate.is_not(None))
            )
            total, accurate = result.one()
            return int(accurate or 0), int(total or 0)

    # ------------------------------------------------------------------
    # Analytics snapshots
    # ------------------------------------------------------------------

    async def upsert_snapshot(self, snapshot_date: date, **fields) -> AnalyticsSnapshot:
        async with self.session_factory() as session:
            result = await session.execute(
                select(AnalyticsSnapshot).where(AnalyticsSnapshot.snapshot_date == snapshot_date)
            )
            snapshot = result.scalar_one_or_none()
            if snapshot is None:
                snapshot = AnalyticsSnapshot(snapshot_date=snapshot_date, **fields)
                session.add(snapshot)
            else:
                for key, value in fields.items():
                    setattr(snapshot, key, value)
            await session.commit()
            return snapshot

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def get_latest_subscription(self, user_id: str | uuid.UUID) -> Subscription | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Subscription)
                .where(Subscription.user_id == _uuid(user_id))
                .order_by(Subscription.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def update_subscription(self, subscription_id: str | uuid.UUID, **fields) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Subscription)
                .where(Subscription.id == _uuid(subscription_id))
                .values(**fields)
            )
            await session.commit()
