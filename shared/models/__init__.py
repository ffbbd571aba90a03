"""SQLAlchemy models."""

from shared.models.analytics_snapshot import AnalyticsSnapshot
from shared.models.base import Base
from shared.models.error_log import ErrorLog
from shared.models.ml_prediction import MLPrediction
from shared.models.notification import Interaction, Notification
from shared.models.subscription import Subscription
from shared.models.user import User
from shared.models.user_behavior import UserBehavior

__all__ = [
    "AnalyticsSnapshot",
    "Base",
    "ErrorLog",
    "Interaction",
    "MLPrediction",
    "Notification",
    "Subscription",
    "User",
    "UserBehavior",
]
