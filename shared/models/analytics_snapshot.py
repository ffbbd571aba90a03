"""Daily aggregate of reminder delivery and engagement."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import JSON, Date, DateTime, Float, Integer
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class AnalyticsSnapshot(Base):
    __tablename__ = "analytics_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    snapshot_date: Mapped[date] = mapped_column("date", Date, unique=True)

    total_sent: Mapped[int] = mapped_column(Integer, default=0)
    total_delivered: Mapped[int] = mapped_column(Integer, default=0)
    total_opened: Mapped[int] = mapped_column(Integer, default=0)
    total_clicked: Mapped[int] = mapped_column(Integer, default=0)

    # ChannelMetrics dumps
    email_metrics: Mapped[dict] = mapped_column(JSON, default=dict)
    whatsapp_metrics: Mapped[dict] = mapped_column(JSON, default=dict)
    sms_metrics: Mapped[dict] = mapped_column(JSON, default=dict)
    push_metrics: Mapped[dict] = mapped_column(JSON, default=dict)

    avg_response_time: Mapped[int] = mapped_column(Integer, default=0)  # minutes
    opt_out_rate: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
