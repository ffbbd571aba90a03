"""Domain errors for the reminder service.

All of these are local, business-rule failures: they are reported to the
caller and never retried.
"""

from __future__ import annotations


class ReminderError(Exception):
    """Base class for reminder domain errors."""

    code = "reminder_error"


class ValidationError(ReminderError):
    code = "validation_error"


class FatigueLimitError(ReminderError):
    """The send gate refused a new reminder for this user."""

    code = "fatigue_limit"

    def __init__(self, user_id: str, reason: str):
        super().__init__(f"Notification limit reached for user {user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason


class NotificationNotFoundError(ReminderError):
    code = "not_found"

    def __init__(self, notification_id: str):
        super().__init__(f"Notification not found: {notification_id}")
        self.notification_id = notification_id


class UserNotFoundError(ReminderError):
    code = "not_found"

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class InvalidTransitionError(ReminderError):
    code = "invalid_transition"

    def __init__(self, notification_id: str, current: str, target: str):
        super().__init__(
            f"Notification {notification_id} cannot move from {current} to {target}"
        )
        self.current = current
        self.target = target


class AddressResolutionError(ReminderError):
    """No delivery address for the channel on the user or the notification."""

    code = "missing_address"

    def __init__(self, channel: str, detail: str | None = None):
        super().__init__(detail or f"No delivery address for channel {channel}")
        self.channel = channel


class NoChannelAvailableError(ReminderError):
    """Every channel is disabled in preferences or excluded by the caller."""

    code = "no_channel"

    def __init__(self, user_id: str):
        super().__init__(f"No enabled delivery channel for user {user_id}")
        self.user_id = user_id
