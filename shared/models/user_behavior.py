"""Per-user engagement profile, recomputed from interaction history."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class UserBehavior(Base):
    __tablename__ = "user_behaviors"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), unique=True)

    email_open_rate: Mapped[float] = mapped_column(Float, default=0.0)
    email_click_rate: Mapped[float] = mapped_column(Float, default=0.0)
    whatsapp_open_rate: Mapped[float] = mapped_column(Float, default=0.0)
    whatsapp_click_rate: Mapped[float] = mapped_column(Float, default=0.0)
    sms_open_rate: Mapped[float] = mapped_column(Float, default=0.0)
    sms_click_rate: Mapped[float] = mapped_column(Float, default=0.0)
    push_open_rate: Mapped[float] = mapped_column(Float, default=0.0)
    push_click_rate: Mapped[float] = mapped_column(Float, default=0.0)

    best_hour_of_day: Mapped[int | None] = mapped_column(Integer, default=None)  # 0-23
    average_response_time: Mapped[int | None] = mapped_column(Integer, default=None)  # minutes
    preferred_frequency: Mapped[int] = mapped_column(Integer, default=3)  # 1 | 3 | 5 per day
    current_fatigue_score: Mapped[float] = mapped_column(Float, default=0.0)  # 0-100
    conversion_rate: Mapped[float] = mapped_column(Float, default=0.0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
