"""Per-user engagement profile built from the last 90 days of notifications."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone, tzinfo
from typing import Callable, Iterable

import structlog

from modules.reminders.ml import HISTORY_WINDOW, SENT_STATUSES, MLService
from modules.reminders.store import ReminderStore
from shared.models.notification import Notification
from shared.schemas.reminders import CHANNELS, UserBehaviorMetrics

logger = structlog.get_logger()

# Hours with fewer samples are ignored when picking the best hour
MIN_HOUR_SAMPLES = 3

# Responses slower than this are not counted
MAX_RESPONSE_MINUTES = 24 * 60

FATIGUE_INCREMENT = 5
FATIGUE_DECREMENT = 10

_ENGAGED = ("OPENED", "CLICKED")


def _actions(notification: Notification) -> set[str]:
    return {i.action_type for i in notification.interactions}


def _is_engaged(notification: Notification) -> bool:
    return bool(_actions(notification) & set(_ENGAGED))


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def channel_rates(notifications: Iterable[Notification]) -> dict[str, tuple[float, float]]:
    """(open_rate, click_rate) per channel; zero for channels with no sends."""
    totals: dict[str, int] = defaultdict(int)
    opened: dict[str, int] = defaultdict(int)
    clicked: dict[str, int] = defaultdict(int)
    for n in notifications:
        totals[n.channel] += 1
        actions = _actions(n)
        if "OPENED" in actions:
            opened[n.channel] += 1
        if "CLICKED" in actions:
            clicked[n.channel] += 1

    rates = {}
    for channel in CHANNELS:
        total = totals.get(channel, 0)
        rates[channel] = (
            (opened[channel] / total, clicked[channel] / total) if total else (0.0, 0.0)
        )
    return rates


def best_hour_of_day(notifications: Iterable[Notification], tz: tzinfo = timezone.utc) -> int | None:
    """Hour with the highest engagement rate among hours with enough samples."""
    sent: dict[int, int] = defaultdict(int)
    engaged: dict[int, int] = defaultdict(int)
    for n in notifications:
        if n.sent_at is None:
            continue
        hour = _aware(n.sent_at).astimezone(tz).hour
        sent[hour] += 1
        if _is_engaged(n):
            engaged[hour] += 1

    # A never-engaged hour is not a best hour
    best_hour, best_rate = None, 0.0
    for hour in sorted(sent):
        if sent[hour] < MIN_HOUR_SAMPLES:
            continue
        rate = engaged[hour] / sent[hour]
        if rate > best_rate:
            best_hour, best_rate = hour, rate
    return best_hour


def average_response_minutes(notifications: Iterable[Notification]) -> int | None:
    """Rounded mean minutes from send to first open/click, within 24h."""
    samples = []
    for n in notifications:
        if n.sent_at is None:
            continue
        engagements = sorted(
            (_aware(i.timestamp) for i in n.interactions if i.action_type in _ENGAGED)
        )
        if not engagements:
            continue
        minutes = (engagements[0] - _aware(n.sent_at)).total_seconds() / 60
        if 0 <= minutes < MAX_RESPONSE_MINUTES:
            samples.append(minutes)
    if not samples:
        return None
    return round(sum(samples) / len(samples))


def preferred_frequency(notifications: Iterable[Notification], tz: tzinfo = timezone.utc) -> int:
    """Daily volume tier (1, 3 or 5) with the best average per-day engagement.

    Days with one send fall in tier 1, up to three in tier 3, more in tier 5.
    Ties, missing data and tiers without any engagement resolve to 3.
    """
    per_day: dict[str, list[Notification]] = defaultdict(list)
    for n in notifications:
        if n.sent_at is None:
            continue
        per_day[_aware(n.sent_at).astimezone(tz).date().isoformat()].append(n)

    tier_rates: dict[int, list[float]] = {1: [], 3: [], 5: []}
    for day_notifications in per_day.values():
        count = len(day_notifications)
        tier = 1 if count == 1 else 3 if count <= 3 else 5
        engaged = sum(1 for n in day_notifications if _is_engaged(n))
        tier_rates[tier].append(engaged / count)

    averages = {t: sum(r) / len(r) for t, r in tier_rates.items() if r}
    if not averages:
        return 3
    top = max(averages.values())
    if top <= 0:
        return 3
    winners = [t for t, avg in averages.items() if avg == top]
    return winners[0] if len(winners) == 1 else 3


def conversion_rate(notifications: list[Notification]) -> float:
    if not notifications:
        return 0.0
    converted = sum(1 for n in notifications if "CONVERTED" in _actions(n))
    return converted / len(notifications)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BehaviorService:
    """Recomputes and nudges the UserBehavior row."""

    def __init__(
        self,
        store: ReminderStore,
        ml: MLService,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.ml = ml
        self._now = now

    async def update_user_behavior(self, user_id: str) -> UserBehaviorMetrics:
        """Full recompute from the 90-day history, upserted by user."""
        since = self._now() - HISTORY_WINDOW
        notifications = await self.store.list_sent_notifications(user_id, since, SENT_STATUSES)

        # The fatigue score must reflect the interaction that triggered this recompute
        self.ml.invalidate(user_id)
        fatigue = await self.ml.calculate_fatigue_score(user_id)

        rates = channel_rates(notifications)
        fields = {
            "email_open_rate": rates["EMAIL"][0],
            "email_click_rate": rates["EMAIL"][1],
            "whatsapp_open_rate": rates["WHATSAPP"][0],
            "whatsapp_click_rate": rates["WHATSAPP"][1],
            "sms_open_rate": rates["SMS"][0],
            "sms_click_rate": rates["SMS"][1],
            "push_open_rate": rates["PUSH"][0],
            "push_click_rate": rates["PUSH"][1],
            "best_hour_of_day": best_hour_of_day(notifications, self.ml.tz),
            "average_response_time": average_response_minutes(notifications),
            "preferred_frequency": preferred_frequency(notifications, self.ml.tz),
            "current_fatigue_score": fatigue,
            "conversion_rate": conversion_rate(notifications),
        }
        behavior = await self.store.upsert_behavior(user_id, **fields)
        logger.info(
            "user_behavior_updated",
            user_id=user_id,
            samples=len(notifications),
            best_hour=fields["best_hour_of_day"],
            fatigue=fatigue,
        )
        return UserBehaviorMetrics.model_validate(behavior)

    async def get_user_behavior(self, user_id: str) -> UserBehaviorMetrics | None:
        behavior = await self.store.get_behavior(user_id)
        return UserBehaviorMetrics.model_validate(behavior) if behavior is not None else None

    async def increment_fatigue_score(self, user_id: str) -> float | None:
        """+5, capped at 100. No-op (None) when the user has no behavior row."""
        return await self.store.adjust_fatigue(user_id, FATIGUE_INCREMENT)

    async def decrease_fatigue_score(self, user_id: str) -> float | None:
        """-10, floored at 0. No-op (None) when the user has no behavior row."""
        return await self.store.adjust_fatigue(user_id, -FATIGUE_DECREMENT)
