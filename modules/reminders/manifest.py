"""Reminders module manifest: tool definitions."""

from shared.schemas.tools import ModuleManifest, ToolDefinition, ToolParameter

_CHANNELS = ["EMAIL", "WHATSAPP", "SMS", "PUSH"]
_TYPES = ["REMINDER", "PROMOTION", "UPDATE", "ALERT"]

_USER_ID = ToolParameter(
    name="user_id",
    type="string",
    description="The user ID (injected by orchestrator).",
    required=False,
)

MANIFEST = ModuleManifest(
    module_name="reminders",
    description=(
        "Intelligent multi-channel reminders. Picks the channel (email, WhatsApp, "
        "SMS, push) and send time per user from engagement history, refuses to "
        "over-notify fatigued users, and falls back to a second channel once when "
        "delivery fails."
    ),
    tools=[
        # ------------------------------------------------------------------
        # create_reminder
        # ------------------------------------------------------------------
        ToolDefinition(
            name="reminders.create_reminder",
            description=(
                "Schedule a reminder for the user. Channel and time are chosen by the "
                "model unless given explicitly. Fails when the user has reached their "
                "notification limit."
            ),
            parameters=[
                ToolParameter(name="content", type="string", description="Message body."),
                ToolParameter(
                    name="subject",
                    type="string",
                    description="Subject line (used by email).",
                    required=False,
                ),
                ToolParameter(
                    name="type",
                    type="string",
                    description="Why the reminder is sent.",
                    required=False,
                    enum=_TYPES,
                ),
                ToolParameter(
                    name="channel",
                    type="string",
                    description="Force a delivery channel instead of the predicted one.",
                    required=False,
                    enum=_CHANNELS,
                ),
                ToolParameter(
                    name="scheduled_at",
                    type="string",
                    description="ISO 8601 send time. Defaults to the predicted best time.",
                    required=False,
                ),
                ToolParameter(
                    name="metadata",
                    type="object",
                    description=(
                        "Optional delivery hints: {\"email\", \"phone\", \"push_token\", "
                        "\"quick_replies\": [..], \"template_name\", \"template_params\": [..]}."
                    ),
                    required=False,
                ),
                _USER_ID,
            ],
            required_permission="user",
        ),
        # ------------------------------------------------------------------
        # list_reminders / cancel_reminder
        # ------------------------------------------------------------------
        ToolDefinition(
            name="reminders.list_reminders",
            description="List the user's most recent notifications, newest first.",
            parameters=[
                ToolParameter(
                    name="limit",
                    type="integer",
                    description="Maximum number of notifications (default 50).",
                    required=False,
                ),
                _USER_ID,
            ],
            required_permission="user",
        ),
        ToolDefinition(
            name="reminders.cancel_reminder",
            description="Cancel a reminder that has not been sent yet.",
            parameters=[
                ToolParameter(
                    name="notification_id", type="string", description="Notification UUID."
                ),
                _USER_ID,
            ],
            required_permission="user",
        ),
        ToolDefinition(
            name="reminders.send_now",
            description="Send a scheduled reminder immediately, with one channel fallback.",
            parameters=[
                ToolParameter(
                    name="notification_id", type="string", description="Notification UUID."
                ),
                _USER_ID,
            ],
            required_permission="user",
        ),
        # ------------------------------------------------------------------
        # Engagement feedback
        # ------------------------------------------------------------------
        ToolDefinition(
            name="reminders.record_interaction",
            description="Record how the user reacted to a notification.",
            parameters=[
                ToolParameter(
                    name="notification_id", type="string", description="Notification UUID."
                ),
                ToolParameter(
                    name="action_type",
                    type="string",
                    description="What the user did.",
                    enum=["DELIVERED", "OPENED", "CLICKED", "DISMISSED", "CONVERTED", "OPTED_OUT"],
                ),
                ToolParameter(
                    name="metadata",
                    type="object",
                    description="Optional context stored with the interaction.",
                    required=False,
                ),
                _USER_ID,
            ],
            required_permission="user",
        ),
        # ------------------------------------------------------------------
        # Preferences and profile
        # ------------------------------------------------------------------
        ToolDefinition(
            name="reminders.get_preferences",
            description="Get the user's notification preferences.",
            parameters=[_USER_ID],
            required_permission="user",
        ),
        ToolDefinition(
            name="reminders.update_preferences",
            description=(
                "Replace the user's notification preferences. Shape: "
                "{\"channels\": {\"email\": {\"enabled\": true}, \"whatsapp\": {...}}, "
                "\"frequency\": {\"max_per_day\": 3, \"quiet_hours\": {\"start\": 22, \"end\": 8}}, "
                "\"types\": {\"PROMOTION\": false}}."
            ),
            parameters=[
                ToolParameter(name="preferences", type="object", description="Preferences object."),
                _USER_ID,
            ],
            required_permission="user",
        ),
        ToolDefinition(
            name="reminders.get_behavior",
            description="Get the user's engagement profile (open rates, best hour, fatigue).",
            parameters=[_USER_ID],
            required_permission="user",
        ),
        # ------------------------------------------------------------------
        # Subscription commands
        # ------------------------------------------------------------------
        ToolDefinition(
            name="reminders.pause_subscription",
            description="Pause the user's subscription for a number of days.",
            parameters=[
                ToolParameter(
                    name="days",
                    type="integer",
                    description="Pause length in days (default 30).",
                    required=False,
                ),
                _USER_ID,
            ],
            required_permission="user",
        ),
        ToolDefinition(
            name="reminders.reactivate_subscription",
            description="Reactivate a paused subscription.",
            parameters=[_USER_ID],
            required_permission="user",
        ),
        # ------------------------------------------------------------------
        # Analytics (admin)
        # ------------------------------------------------------------------
        ToolDefinition(
            name="reminders.get_analytics",
            description="Engagement analytics for a period, globally and per channel and type.",
            parameters=[
                ToolParameter(name="start", type="string", description="ISO 8601 period start."),
                ToolParameter(name="end", type="string", description="ISO 8601 period end."),
                ToolParameter(
                    name="channels",
                    type="array",
                    description="Only these channels.",
                    required=False,
                ),
                ToolParameter(
                    name="types",
                    type="array",
                    description="Only these notification types.",
                    required=False,
                ),
            ],
            required_permission="admin",
        ),
        ToolDefinition(
            name="reminders.dashboard",
            description="Last 24 hours of engagement, model accuracy and pending queue size.",
            parameters=[],
            required_permission="admin",
        ),
        ToolDefinition(
            name="reminders.export_report",
            description="Export engagement analytics for a period as CSV or JSON text.",
            parameters=[
                ToolParameter(
                    name="format",
                    type="string",
                    description="Report format.",
                    enum=["CSV", "JSON"],
                ),
                ToolParameter(name="start", type="string", description="ISO 8601 period start."),
                ToolParameter(name="end", type="string", description="ISO 8601 period end."),
            ],
            required_permission="admin",
        ),
        ToolDefinition(
            name="reminders.model_accuracy",
            description="Share of audited channel/time predictions that matched the real send.",
            parameters=[],
            required_permission="admin",
        ),
    ],
)
