"""Notification and interaction models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.models.base import Base


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"))

    channel: Mapped[str] = mapped_column(String)  # EMAIL | WHATSAPP | SMS | PUSH
    type: Mapped[str] = mapped_column(String, default="REMINDER")  # REMINDER | PROMOTION | UPDATE | ALERT
    subject: Mapped[str | None] = mapped_column(String, default=None)
    content: Mapped[str] = mapped_column(Text)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, default=None)

    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    # SCHEDULED -> SENDING -> SENT | FAILED -> DELIVERED -> OPENED -> CLICKED,
    # or CANCELLED before SENT
    status: Mapped[str] = mapped_column(String, default="SCHEDULED")
    error_message: Mapped[str | None] = mapped_column(Text, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    interactions: Mapped[list[Interaction]] = relationship(
        back_populates="notification", lazy="selectin", order_by="Interaction.timestamp"
    )

    __table_args__ = (
        Index("ix_notifications_status_scheduled_at", "status", "scheduled_at"),
        Index("ix_notifications_user_sent_at", "user_id", "sent_at"),
    )


class Interaction(Base):
    """Append-only engagement event for a notification."""

    __tablename__ = "interactions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    notification_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("notifications.id"))
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"))
    # SENT | DELIVERED | OPENED | CLICKED | DISMISSED | CONVERTED | OPTED_OUT
    action_type: Mapped[str] = mapped_column(String)
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, default=None)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    notification: Mapped[Notification] = relationship(back_populates="interactions")

    __table_args__ = (
        Index("ix_interactions_user_timestamp", "user_id", "timestamp"),
    )
