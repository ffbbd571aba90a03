"""Channel / send-time prediction and the fatigue send gate.

The model is a fixed linear scorer over per-user engagement history:

    score(channel) = (base_weight * 0.3 + min(engaged / 10, 1) * 0.7)
                     * (1 - min(fatigue, 200) / 200)

The highest score wins; ties go to the first channel in CHANNELS order.
Every prediction is written to ml_predictions in the background so that
accuracy can be measured later; that write never blocks a decision.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

import structlog

from modules.reminders.cache import TTLCache
from modules.reminders.errors import NoChannelAvailableError
from modules.reminders.store import ReminderStore
from shared.config import Settings, parse_list
from shared.error_capture import capture_error
from shared.schemas.reminders import (
    CHANNELS,
    ChannelSelection,
    MLFeatures,
    MLPredictionResult,
    QuietHours,
    SendGateDecision,
    UserPreferences,
)

logger = structlog.get_logger()

MODEL_VERSION = "1.0.0-mvp"

# Prior engagement per channel across all users
BASE_WEIGHTS: dict[str, float] = {
    "EMAIL": 0.3,
    "WHATSAPP": 0.4,
    "SMS": 0.2,
    "PUSH": 0.25,
}

# Notification statuses that count as "sent" for daily limits
SENT_STATUSES = ("SENT", "DELIVERED", "OPENED", "CLICKED")

# Sendable hours when the user has no quiet-hours preference (inclusive)
DEFAULT_ALLOWED_WINDOW = (8, 21)

# A prediction is accurate if the real send used the same channel within this window
ACCURACY_WINDOW = timedelta(minutes=30)

HISTORY_WINDOW = timedelta(days=90)
RECENT_WINDOW = timedelta(days=7)
DAY = timedelta(hours=24)
OPT_OUT_WINDOW = timedelta(days=7)


# ---------------------------------------------------------------------------
# Pure scoring helpers
# ---------------------------------------------------------------------------


def score_channel(channel: str, engaged_count: int, fatigue_score: float) -> float:
    history_factor = min(engaged_count / 10, 1.0)
    fatigue_factor = 1 - min(fatigue_score, 200) / 200
    return (BASE_WEIGHTS[channel] * 0.3 + history_factor * 0.7) * fatigue_factor


def pick_channel(features: MLFeatures) -> tuple[str, float]:
    """Best channel and its score (used as confidence)."""
    best_channel, best_score = CHANNELS[0], -1.0
    for channel in CHANNELS:
        score = score_channel(channel, features.channel_history.get(channel, 0), features.fatigue_score)
        if score > best_score:
            best_channel, best_score = channel, score
    return best_channel, best_score


def fatigue_from_counts(sent_24h: int, engaged_24h: int, opt_outs_7d: int) -> float:
    """Tiered fatigue score in [0, 100].

    Nothing sent counts as a zero engagement rate.
    """
    score = 0
    if sent_24h > 5:
        score += 30
    elif sent_24h > 3:
        score += 20
    elif sent_24h > 1:
        score += 10

    rate = engaged_24h / sent_24h if sent_24h else 0.0
    if rate < 0.2:
        score += 30
    elif rate < 0.4:
        score += 20
    elif rate < 0.6:
        score += 10

    if opt_outs_7d > 0:
        score += 40

    return float(min(100, score))


def allowed_window(quiet_hours: QuietHours | None) -> tuple[int, int]:
    """Inclusive (first, last) sendable hour; first > last means it wraps midnight."""
    if quiet_hours is None:
        return DEFAULT_ALLOWED_WINDOW
    if quiet_hours.start == quiet_hours.end:
        return (0, 23)
    return (quiet_hours.end, (quiet_hours.start - 1) % 24)


def clamp_hour(hour: int, window: tuple[int, int]) -> int:
    """Move ``hour`` to the nearest sendable hour."""
    first, last = window
    if first <= last:
        return min(max(hour, first), last)
    # Wrapping window, e.g. (20, 6): sendable if hour >= 20 or hour <= 6
    if hour >= first or hour <= last:
        return hour
    return last if hour - last <= first - hour else first


def next_send_time(hour: int, now_local: datetime, window: tuple[int, int]) -> datetime:
    """Today at the clamped hour, or tomorrow if that hour has already passed."""
    target_hour = clamp_hour(hour, window)
    target = now_local.replace(hour=target_hour, minute=0, second=0, microsecond=0)
    if target_hour <= now_local.hour:
        target += timedelta(days=1)
    return target


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MLService:
    """Feature extraction, channel/time prediction and the send gate."""

    def __init__(
        self,
        store: ReminderStore,
        settings: Settings,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.settings = settings
        self.tz = ZoneInfo(settings.reminder_timezone)
        self.fatigue_threshold = settings.reminder_fatigue_threshold
        self.default_daily_limit = settings.reminder_default_daily_limit
        self.channel_order = [c.upper() for c in parse_list(settings.reminder_channel_order)] or list(CHANNELS)
        self._now = now
        self._features: TTLCache[MLFeatures] = TTLCache("features")
        self._fatigue: TTLCache[float] = TTLCache("fatigue")
        self._preferences: TTLCache[UserPreferences] = TTLCache("preferences")
        self._audit_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    async def get_preferences(self, user_id: str) -> UserPreferences:
        cached = self._preferences.get(user_id)
        if cached is not None:
            return cached
        user = await self.store.get_user(user_id)
        raw = (user.preferences if user else None) or {}
        try:
            prefs = UserPreferences.model_validate(raw)
        except ValueError as e:
            logger.warning("invalid_user_preferences", user_id=user_id, error=str(e))
            prefs = UserPreferences()
        self._preferences.set(user_id, prefs)
        return prefs

    async def calculate_fatigue_score(self, user_id: str) -> float:
        cached = self._fatigue.get(user_id)
        if cached is not None:
            return cached

        now = self._now()
        sent_24h, engaged_24h, opt_outs = await asyncio.gather(
            self.store.count_sent_since(user_id, now - DAY),
            self.store.count_interactions(now - DAY, ("OPENED", "CLICKED"), user_id=user_id),
            self.store.count_interactions(now - OPT_OUT_WINDOW, ("OPTED_OUT",), user_id=user_id),
        )
        score = fatigue_from_counts(sent_24h, engaged_24h, opt_outs)
        self._fatigue.set(user_id, score)
        return score

    async def extract_features(self, user_id: str) -> MLFeatures:
        cached = self._features.get(user_id)
        if cached is not None:
            return cached

        now = self._now()
        now_local = now.astimezone(self.tz)
        behavior, history, total_7d, engaged_7d, fatigue = await asyncio.gather(
            self.store.get_behavior(user_id),
            self.store.engaged_counts_by_channel(user_id, now - HISTORY_WINDOW),
            self.store.count_sent_since(user_id, now - RECENT_WINDOW),
            self.store.count_engaged_since(user_id, now - RECENT_WINDOW),
            self.calculate_fatigue_score(user_id),
        )

        best_hour = behavior.best_hour_of_day if behavior is not None else None
        features = MLFeatures(
            hour_of_day=best_hour if best_hour is not None else now_local.hour,
            day_of_week=now_local.weekday(),
            channel_history={c: int(history.get(c, 0)) for c in CHANNELS},
            recent_engagement=engaged_7d / total_7d if total_7d else 0.0,
            fatigue_score=fatigue,
            avg_response_time=behavior.average_response_time if behavior is not None else None,
            preferred_frequency=(behavior.preferred_frequency if behavior is not None else None) or 3,
        )
        self._features.set(user_id, features)
        return features

    def invalidate(self, user_id: str) -> None:
        """Drop cached features, fatigue and preferences for a user."""
        self._features.delete(user_id)
        self._fatigue.delete(user_id)
        self._preferences.delete(user_id)

    def clear_expired(self) -> int:
        return sum(c.clear_expired() for c in (self._features, self._fatigue, self._preferences))

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    async def predict_optimal_time(
        self, user_id: str, features: MLFeatures, prefs: UserPreferences | None = None
    ) -> datetime:
        prefs = prefs or await self.get_preferences(user_id)
        now_local = self._now().astimezone(self.tz)
        window = allowed_window(prefs.quiet_hours)
        return next_send_time(features.hour_of_day, now_local, window).astimezone(timezone.utc)

    async def predict_optimal_channel(self, user_id: str) -> MLPredictionResult:
        features = await self.extract_features(user_id)
        channel, confidence = pick_channel(features)
        send_time = await self.predict_optimal_time(user_id, features)
        result = MLPredictionResult(
            channel=channel, time=send_time, confidence=confidence, features=features,
            prediction_id=str(uuid.uuid4()),
        )
        logger.info(
            "ml_prediction",
            user_id=user_id,
            prediction_id=result.prediction_id,
            channel=channel,
            confidence=round(confidence, 4),
            send_time=send_time.isoformat(),
        )
        self._audit(user_id, result)
        return result

    def _audit(self, user_id: str, result: MLPredictionResult) -> None:
        task = asyncio.create_task(self._store_prediction(user_id, result))
        self._audit_tasks.add(task)
        task.add_done_callback(self._audit_tasks.discard)

    async def _store_prediction(self, user_id: str, result: MLPredictionResult) -> None:
        try:
            await self.store.add_prediction(
                id=uuid.UUID(result.prediction_id),
                user_id=user_id,
                predicted_channel=result.channel,
                predicted_time=result.time,
                confidence_score=result.confidence,
                model_version=MODEL_VERSION,
                features=result.features.model_dump(),
            )
        except Exception as e:
            logger.warning("prediction_audit_failed", user_id=user_id, error=str(e))
            await capture_error(
                self.store.session_factory,
                service="reminders",
                error_type="prediction_audit",
                error_message=str(e),
                operation="store_prediction",
                user_id=user_id,
            )

    async def drain(self) -> None:
        """Wait for in-flight audit writes (shutdown and tests)."""
        if self._audit_tasks:
            await asyncio.gather(*list(self._audit_tasks), return_exceptions=True)

    async def select_channel_with_fallback(
        self,
        user_id: str,
        exclude: list[str] | None = None,
        prediction: MLPredictionResult | None = None,
    ) -> ChannelSelection:
        """ML choice unless disabled, else the first enabled channel in fixed order.

        The fallback list is every other enabled channel in the same fixed
        order; it is not re-scored.
        """
        prediction = prediction or await self.predict_optimal_channel(user_id)
        prefs = await self.get_preferences(user_id)
        excluded = {c.upper() for c in exclude or []}

        enabled = [c for c in self.channel_order if prefs.is_channel_enabled(c) and c not in excluded]
        if not enabled:
            raise NoChannelAvailableError(user_id)

        if prediction.channel in enabled:
            primary = prediction.channel
            reason = f"ML prediction ({prediction.confidence:.2f} confidence)"
        else:
            primary = enabled[0]
            reason = f"{prediction.channel} unavailable, using first enabled channel"

        return ChannelSelection(
            primary=primary,
            fallback=[c for c in enabled if c != primary],
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Send gate
    # ------------------------------------------------------------------

    async def evaluate_send_gate(self, user_id: str) -> SendGateDecision:
        """Single gate: fatigue threshold first, then the daily count limit."""
        fatigue = await self.calculate_fatigue_score(user_id)
        if fatigue > self.fatigue_threshold:
            return SendGateDecision(
                allowed=False,
                reason=f"fatigue score {fatigue:.0f} above {self.fatigue_threshold}",
                fatigue_score=fatigue,
            )

        prefs, behavior, sent_24h = await asyncio.gather(
            self.get_preferences(user_id),
            self.store.get_behavior(user_id),
            self.store.count_sent_since(user_id, self._now() - DAY, SENT_STATUSES),
        )
        limit = prefs.max_per_day
        if limit is None and behavior is not None:
            limit = behavior.preferred_frequency
        if limit is None:
            limit = self.default_daily_limit

        allowed = sent_24h < limit
        return SendGateDecision(
            allowed=allowed,
            reason="ok" if allowed else f"daily limit reached ({sent_24h}/{limit})",
            fatigue_score=fatigue,
            sent_last_24h=sent_24h,
            daily_limit=limit,
        )

    async def should_send_notification(self, user_id: str) -> bool:
        decision = await self.evaluate_send_gate(user_id)
        if not decision.allowed:
            logger.info("send_gate_denied", user_id=user_id, reason=decision.reason)
        return decision.allowed

    # ------------------------------------------------------------------
    # Accuracy
    # ------------------------------------------------------------------

    async def update_prediction_accuracy(
        self, prediction_id: str, actual_channel: str, actual_time: datetime
    ) -> bool | None:
        """Record the real outcome; None if the prediction does not exist."""
        prediction = await self.store.get_prediction(prediction_id)
        if prediction is None:
            return None
        predicted_time = prediction.predicted_time
        if predicted_time.tzinfo is None:
            predicted_time = predicted_time.replace(tzinfo=timezone.utc)
        accurate = (
            prediction.predicted_channel == actual_channel
            and abs(actual_time - predicted_time) < ACCURACY_WINDOW
        )
        await self.store.update_prediction(
            prediction_id,
            actual_channel=actual_channel,
            actual_time=actual_time,
            was_accurate=accurate,
        )
        return accurate

    async def get_model_accuracy(self) -> dict:
        accurate, total = await self.store.prediction_accuracy_counts()
        return {
            "model_version": MODEL_VERSION,
            "accuracy": accurate / total if total else 0.0,
            "accurate_predictions": accurate,
            "total_predictions": total,
        }
