"""Reminder schema: users, notifications, interactions, behavior, predictions, snapshots.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("whatsapp", sa.String(), nullable=True),
        sa.Column("push_token", sa.String(), nullable=True),
        sa.Column("preferences", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    # Notifications
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False, server_default="REMINDER"),
        sa.Column("subject", sa.String(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="SCHEDULED"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_notifications_status_scheduled_at", "notifications", ["status", "scheduled_at"]
    )
    op.create_index("ix_notifications_user_sent_at", "notifications", ["user_id", "sent_at"])

    # Interactions (append-only)
    op.create_table(
        "interactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "notification_id", sa.Uuid(), sa.ForeignKey("notifications.id"), nullable=False
        ),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_interactions_user_timestamp", "interactions", ["user_id", "timestamp"])
    op.create_index("ix_interactions_notification_id", "interactions", ["notification_id"])

    # User behavior (one row per user)
    op.create_table(
        "user_behaviors",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("email_open_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("email_click_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("whatsapp_open_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("whatsapp_click_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("sms_open_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("sms_click_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("push_open_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("push_click_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("best_hour_of_day", sa.Integer(), nullable=True),
        sa.Column("average_response_time", sa.Integer(), nullable=True),
        sa.Column("preferred_frequency", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("current_fatigue_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("conversion_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", name="uq_user_behaviors_user_id"),
    )

    # ML prediction audit
    op.create_table(
        "ml_predictions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("predicted_channel", sa.String(), nullable=False),
        sa.Column("predicted_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("model_version", sa.String(), nullable=False),
        sa.Column("features", sa.JSON(), nullable=False),
        sa.Column("actual_channel", sa.String(), nullable=True),
        sa.Column("actual_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("was_accurate", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_ml_predictions_user_id", "ml_predictions", ["user_id"])

    # Daily analytics snapshots
    op.create_table(
        "analytics_snapshots",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_sent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_delivered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_opened", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_clicked", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("email_metrics", sa.JSON(), nullable=False),
        sa.Column("whatsapp_metrics", sa.JSON(), nullable=False),
        sa.Column("sms_metrics", sa.JSON(), nullable=False),
        sa.Column("push_metrics", sa.JSON(), nullable=False),
        sa.Column("avg_response_time", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("opt_out_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("date", name="uq_analytics_snapshots_date"),
    )

    # Subscriptions (pause / reactivate only)
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="ACTIVE"),
        sa.Column("pause_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])

    # Error logs
    op.create_table(
        "error_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("service", sa.String(), nullable=False),
        sa.Column("error_type", sa.String(), nullable=False),
        sa.Column("operation", sa.String(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("stack_trace", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "notification_id", sa.Uuid(), sa.ForeignKey("notifications.id"), nullable=True
        ),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_error_logs_status", "error_logs", ["status"])
    op.create_index("ix_error_logs_created_at", "error_logs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_error_logs_created_at", table_name="error_logs")
    op.drop_index("ix_error_logs_status", table_name="error_logs")
    op.drop_table("error_logs")
    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("analytics_snapshots")
    op.drop_index("ix_ml_predictions_user_id", table_name="ml_predictions")
    op.drop_table("ml_predictions")
    op.drop_table("user_behaviors")
    op.drop_index("ix_interactions_notification_id", table_name="interactions")
    op.drop_index("ix_interactions_user_timestamp", table_name="interactions")
    op.drop_table("interactions")
    op.drop_index("ix_notifications_user_sent_at", table_name="notifications")
    op.drop_index("ix_notifications_status_scheduled_at", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("users")
