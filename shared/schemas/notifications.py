"""Push payload published on the Redis notification bus."""

from __future__ import annotations

from pydantic import BaseModel


class PushMessage(BaseModel):
    """A push notification for a single device, consumed by the push gateway."""

    token: str  # device push token
    title: str | None = None
    body: str
    user_id: str | None = None  # internal user UUID (for logging)
    notification_id: str | None = None  # reminder that produced this push
    data: dict | None = None
