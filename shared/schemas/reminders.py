"""Reminder domain schemas: preferences, metadata, decisions and results."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Channel = Literal["EMAIL", "WHATSAPP", "SMS", "PUSH"]
NotificationType = Literal["REMINDER", "PROMOTION", "UPDATE", "ALERT"]
NotificationStatus = Literal[
    "SCHEDULED", "SENDING", "SENT", "DELIVERED", "OPENED", "CLICKED", "FAILED", "CANCELLED"
]
ActionType = Literal[
    "SENT", "DELIVERED", "OPENED", "CLICKED", "DISMISSED", "CONVERTED", "OPTED_OUT"
]

# Scoring iteration order; ties go to the earliest entry.
CHANNELS: tuple[str, ...] = ("EMAIL", "WHATSAPP", "SMS", "PUSH")
NOTIFICATION_TYPES: tuple[str, ...] = ("REMINDER", "PROMOTION", "UPDATE", "ALERT")


# ---------------------------------------------------------------------------
# User preferences
# ---------------------------------------------------------------------------


class ChannelPreference(BaseModel):
    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    address: str | None = None  # email
    number: str | None = None  # whatsapp / sms
    token: str | None = None  # push


class QuietHours(BaseModel):
    """Hours during which nothing is sent. Wraps midnight when start > end."""

    start: int = Field(default=22, ge=0, le=23)
    end: int = Field(default=8, ge=0, le=23)


class FrequencyPreference(BaseModel):
    max_per_day: int | None = Field(default=None, ge=0)
    quiet_hours: QuietHours | None = None


class UserPreferences(BaseModel):
    """Stored in ``users.preferences``; every field is optional."""

    model_config = ConfigDict(extra="allow")

    channels: dict[str, ChannelPreference] = Field(default_factory=dict)
    frequency: FrequencyPreference | None = None
    types: dict[str, bool] | None = None

    def is_channel_enabled(self, channel: str) -> bool:
        """A channel is enabled unless explicitly switched off."""
        pref = self.channels.get(channel.lower())
        return pref is None or pref.enabled

    @property
    def max_per_day(self) -> int | None:
        return self.frequency.max_per_day if self.frequency else None

    @property
    def quiet_hours(self) -> QuietHours | None:
        return self.frequency.quiet_hours if self.frequency else None


# ---------------------------------------------------------------------------
# Notification metadata
# ---------------------------------------------------------------------------


class ReminderMetadata(BaseModel):
    """Known keys of ``notifications.metadata``; unknown keys are preserved."""

    model_config = ConfigDict(extra="allow")

    # Address overrides
    email: str | None = None
    phone: str | None = None
    push_token: str | None = None

    # WhatsApp
    quick_replies: list[str] | None = None
    template_name: str | None = None
    template_language: str | None = None
    template_params: list[str] | None = None
    provider_message_id: str | None = None

    # Fallback lineage
    original_notification_id: str | None = None
    is_fallback: bool = False

    # ML lineage
    predicted_channel: str | None = None
    confidence: float | None = None
    prediction_id: str | None = None


class CreateNotificationInput(BaseModel):
    user_id: str
    channel: Channel
    type: NotificationType = "REMINDER"
    subject: str | None = None
    content: str
    metadata: ReminderMetadata | None = None
    scheduled_at: datetime


class CreateReminderInput(BaseModel):
    user_id: str
    type: NotificationType = "REMINDER"
    subject: str | None = None
    content: str
    metadata: ReminderMetadata | None = None
    preferred_channel: Channel | None = None
    scheduled_at: datetime | None = None


# ---------------------------------------------------------------------------
# Decision engine
# ---------------------------------------------------------------------------


class MLFeatures(BaseModel):
    hour_of_day: int
    day_of_week: int  # 0 = Monday
    channel_history: dict[str, int]  # engaged notifications per channel, 90 days
    recent_engagement: float  # 7-day engaged / total
    fatigue_score: float
    avg_response_time: int | None = None
    preferred_frequency: int = 3


class MLPredictionResult(BaseModel):
    channel: Channel
    time: datetime
    confidence: float
    features: MLFeatures
    # Row id of the audit record in ml_predictions
    prediction_id: str | None = None


class ChannelSelection(BaseModel):
    primary: Channel
    fallback: list[Channel]
    reason: str


class SendGateDecision(BaseModel):
    allowed: bool
    reason: str
    fatigue_score: float
    sent_last_24h: int = 0
    daily_limit: int | None = None


class UserBehaviorMetrics(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: Any
    email_open_rate: float = 0.0
    email_click_rate: float = 0.0
    whatsapp_open_rate: float = 0.0
    whatsapp_click_rate: float = 0.0
    sms_open_rate: float = 0.0
    sms_click_rate: float = 0.0
    push_open_rate: float = 0.0
    push_click_rate: float = 0.0
    best_hour_of_day: int | None = None
    average_response_time: int | None = None
    preferred_frequency: int = 3
    current_fatigue_score: float = 0.0
    conversion_rate: float = 0.0


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class NotificationSendResult(BaseModel):
    success: bool
    notification_id: str
    channel: str
    message_id: str | None = None
    error: str | None = None


class FallbackSendResult(BaseModel):
    success: bool
    notification_id: str
    channel: str
    used_fallback: bool = False
    fallback_notification_id: str | None = None
    error: str | None = None


class BatchResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


class CommandResult(BaseModel):
    success: bool
    error: str | None = None
    message: str | None = None
    data: dict | None = None


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class ChannelMetrics(BaseModel):
    channel: str
    sent: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    failed: int = 0
    open_rate: float = 0.0
    click_rate: float = 0.0
    delivery_rate: float = 0.0
    avg_response_time: int = 0


class TypeMetrics(BaseModel):
    sent: int = 0
    opened: int = 0
    converted: int = 0


class GlobalMetrics(BaseModel):
    total_sent: int = 0
    total_delivered: int = 0
    total_opened: int = 0
    total_clicked: int = 0
    total_converted: int = 0
    engagement_rate: float = 0.0
    opt_out_rate: float = 0.0
    avg_response_time: int = 0


class EngagementAnalytics(BaseModel):
    period_start: datetime
    period_end: datetime
    global_metrics: GlobalMetrics
    by_channel: list[ChannelMetrics]
    by_type: dict[str, TypeMetrics]


# ---------------------------------------------------------------------------
# Provider webhooks
# ---------------------------------------------------------------------------


class WebhookEvent(BaseModel):
    """Normalized inbound provider event."""

    model_config = ConfigDict(extra="allow")

    event: str
    bot_id: str
    contact_id: str | None = None
    timestamp: str
    data: dict = Field(default_factory=dict)
