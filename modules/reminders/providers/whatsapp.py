"""WhatsApp sender: SendPulse bot messages within the conversation window."""

from __future__ import annotations

import structlog

from modules.reminders.errors import AddressResolutionError
from modules.reminders.providers.base import ChannelSender, DeliveryReceipt, metadata_of
from modules.reminders.sendpulse.bots import BotManager
from modules.reminders.sendpulse.client import SendPulseClient
from modules.reminders.sendpulse.errors import TEMPLATE_NOT_APPROVED, TemplateNotApprovedError
from modules.reminders.sendpulse.templates import (
    DEFAULT_LANGUAGE,
    TemplateManager,
    build_template_message,
    validate_template_parameters,
)
from shared.models.notification import Notification
from shared.models.user import User

logger = structlog.get_logger()


class WhatsAppSender(ChannelSender):
    channel = "WHATSAPP"

    def __init__(self, client: SendPulseClient, bots: BotManager, templates: TemplateManager):
        self.client = client
        self.bots = bots
        self.templates = templates

    def resolve_address(self, notification: Notification, user: User | None) -> str:
        phone = None
        if user is not None:
            phone = user.whatsapp or user.phone
        phone = phone or metadata_of(notification).phone
        if not phone:
            raise AddressResolutionError(self.channel, "User WhatsApp number not found")
        return phone

    async def _template_for(self, bot_id: str, notification: Notification) -> dict | None:
        meta = metadata_of(notification)
        if not meta.template_name:
            return None
        template = await self.templates.get_template(bot_id, meta.template_name)
        if template is None:
            raise TemplateNotApprovedError(f"{TEMPLATE_NOT_APPROVED} ({meta.template_name})")
        valid, errors = validate_template_parameters(template, body=meta.template_params)
        if not valid:
            raise TemplateNotApprovedError("; ".join(errors))
        return build_template_message(
            meta.template_name,
            meta.template_language or template.get("language") or DEFAULT_LANGUAGE,
            body=meta.template_params,
        )

    async def send(self, notification: Notification, user: User | None) -> DeliveryReceipt:
        phone = self.resolve_address(notification, user)
        bot_id = await self.bots.get_default_bot_id()
        template = await self._template_for(bot_id, notification)
        result = await self.client.send_message(
            bot_id,
            phone,
            notification.content,
            quick_replies=metadata_of(notification).quick_replies,
            template=template,
        )
        return DeliveryReceipt(message_id=result.get("message_id"), address=phone)
