"""User model: reminder recipients and their delivery addresses."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from shared.models.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str | None] = mapped_column(String, default=None)

    # Delivery addresses (any may be missing)
    email: Mapped[str | None] = mapped_column(String, default=None)
    phone: Mapped[str | None] = mapped_column(String, default=None)
    whatsapp: Mapped[str | None] = mapped_column(String, default=None)
    push_token: Mapped[str | None] = mapped_column(String, default=None)

    # Channel toggles, frequency cap, quiet hours (see UserPreferences schema)
    preferences: Mapped[dict | None] = mapped_column(JSON, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
