"""Pause / reactivate commands on a user's latest subscription.

Commands answer with a CommandResult instead of raising, because they are
driven by inbound chat messages that always need a reply.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from modules.reminders.store import ReminderStore
from shared.schemas.reminders import CommandResult

logger = structlog.get_logger()

DEFAULT_PAUSE_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionCommands:
    def __init__(self, store: ReminderStore, now: Callable[[], datetime] = _utcnow):
        self.store = store
        self._now = now

    async def pause_subscription(self, user_id: str, days: int = DEFAULT_PAUSE_DAYS) -> CommandResult:
        """PAUSE for ``days``; an already paused subscription is left untouched."""
        try:
            subscription = await self.store.get_latest_subscription(user_id)
            if subscription is None:
                return CommandResult(
                    success=False,
                    error="no_subscriptions",
                    message="You have no active subscription to pause.",
                )
            if subscription.status == "PAUSED":
                return CommandResult(
                    success=False,
                    error="already_paused",
                    message="Your subscription is already paused.",
                )

            now = self._now()
            pause_until = now + timedelta(days=days)
            await self.store.update_subscription(
                subscription.id, status="PAUSED", pause_until=pause_until, paused_at=now
            )
        except Exception as e:
            logger.error("subscription_pause_failed", user_id=user_id, error=str(e))
            return CommandResult(
                success=False, error=str(e), message="Could not pause the subscription."
            )

        logger.info(
            "subscription_paused",
            user_id=user_id,
            subscription_id=str(subscription.id),
            days=days,
        )
        return CommandResult(
            success=True,
            message=f"Subscription paused for {days} days, until {pause_until.date().isoformat()}.",
            data={"subscription_id": str(subscription.id), "pause_until": pause_until.isoformat()},
        )

    async def reactivate_subscription(self, user_id: str) -> CommandResult:
        try:
            subscription = await self.store.get_latest_subscription(user_id)
            if subscription is None:
                return CommandResult(
                    success=False,
                    error="no_subscriptions",
                    message="You have no subscription to reactivate.",
                )
            if subscription.status != "PAUSED":
                return CommandResult(
                    success=False,
                    error="already_active",
                    message="Your subscription is already active.",
                )

            await self.store.update_subscription(
                subscription.id, status="ACTIVE", pause_until=None, paused_at=None
            )
        except Exception as e:
            logger.error("subscription_reactivate_failed", user_id=user_id, error=str(e))
            return CommandResult(
                success=False, error=str(e), message="Could not reactivate the subscription."
            )

        logger.info(
            "subscription_reactivated", user_id=user_id, subscription_id=str(subscription.id)
        )
        return CommandResult(
            success=True,
            message="Subscription reactivated.",
            data={"subscription_id": str(subscription.id)},
        )
