"""Audit trail of channel/time predictions, used only to measure accuracy."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class MLPrediction(Base):
    __tablename__ = "ml_predictions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"))

    predicted_channel: Mapped[str] = mapped_column(String)
    predicted_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    confidence_score: Mapped[float] = mapped_column(Float)
    model_version: Mapped[str] = mapped_column(String)
    features: Mapped[dict] = mapped_column(JSON)  # snapshot at prediction time

    # Filled in once the outcome is known
    actual_channel: Mapped[str | None] = mapped_column(String, default=None)
    actual_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    was_accurate: Mapped[bool | None] = mapped_column(Boolean, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
