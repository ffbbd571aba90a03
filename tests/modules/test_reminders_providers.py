"""Tests for the per-channel senders.

Covers:
- Address resolution from the user record and metadata overrides
- Email delivery over httpx (with and without retries)
- Push publication on the Redis notification bus
- SMS truncation and WhatsApp template handling
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from modules.reminders.errors import AddressResolutionError
from modules.reminders.providers.email import EmailSender
from modules.reminders.providers.push import PUSH_CHANNEL, PushSender
from modules.reminders.providers.sms import MAX_SMS_LENGTH, SmsSender
from modules.reminders.providers.whatsapp import WhatsAppSender
from modules.reminders.sendpulse.errors import TemplateNotApprovedError
from modules.reminders.sendpulse.retry import RetryManager


def _email_sender(handler, retry_manager=None) -> EmailSender:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EmailSender(
        "https://mail.test/emails",
        "mail-key",
        "Reminders <noreply@example.com>",
        retry_manager=retry_manager,
        http_client=http,
    )


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


class TestEmailSender:
    @pytest.mark.asyncio
    async def test_sends_to_user_email(self, make_user, make_notification):
        seen = []

        def _handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "email-1"})

        sender = _email_sender(_handler)
        receipt = await sender.send(make_notification(), make_user(email="ana@example.com"))

        assert receipt.message_id == "email-1"
        body = json.loads(seen[0].content)
        assert body["to"] == ["ana@example.com"]
        assert body["subject"] == "Reminder"
        assert seen[0].headers["Authorization"] == "Bearer mail-key"
        await sender.close()

    @pytest.mark.asyncio
    async def test_metadata_email_used_when_user_has_none(self, make_user, make_notification):
        sender = _email_sender(lambda r: httpx.Response(200, json={"id": "x"}))
        notification = make_notification(meta={"email": "override@example.com"})

        assert sender.resolve_address(notification, make_user(email=None)) == "override@example.com"
        await sender.close()

    def test_missing_address(self, make_user, make_notification):
        sender = EmailSender("https://mail.test", "k", "from@example.com", http_client=MagicMock())

        with pytest.raises(AddressResolutionError, match="User email not found"):
            sender.resolve_address(make_notification(), make_user(email=None))

    @pytest.mark.asyncio
    async def test_server_error_retried(self, make_user, make_notification):
        statuses = [503, 200]

        def _handler(request):
            status = statuses.pop(0)
            return httpx.Response(status, json={"id": "email-2"} if status == 200 else {})

        sender = _email_sender(_handler, RetryManager(initial_delay=0.0, rng=lambda: 0.5))
        receipt = await sender.send(make_notification(), make_user())

        assert receipt.message_id == "email-2"
        assert statuses == []
        await sender.close()


# ---------------------------------------------------------------------------
# Push
# ---------------------------------------------------------------------------


class TestPushSender:
    @pytest.mark.asyncio
    async def test_publishes_to_bus(self, mock_redis, make_user, make_notification):
        mock_redis.publish = AsyncMock(return_value=1)
        sender = PushSender(mock_redis)
        notification = make_notification(channel="PUSH")

        receipt = await sender.send(notification, make_user(push_token="device-1"))

        assert receipt.address == "device-1"
        channel, payload = mock_redis.publish.call_args.args
        assert channel == PUSH_CHANNEL
        message = json.loads(payload)
        assert message["token"] == "device-1"
        assert message["notification_id"] == str(notification.id)

    @pytest.mark.asyncio
    async def test_no_subscriber_is_a_failure(self, mock_redis, make_user, make_notification):
        mock_redis.publish = AsyncMock(return_value=0)
        sender = PushSender(mock_redis)

        with pytest.raises(RuntimeError):
            await sender.send(make_notification(channel="PUSH"), make_user())

    def test_metadata_token_takes_precedence(self, mock_redis, make_user, make_notification):
        sender = PushSender(mock_redis)
        notification = make_notification(channel="PUSH", meta={"push_token": "meta-token"})

        assert sender.resolve_address(notification, make_user(push_token="user-token")) == "meta-token"


# ---------------------------------------------------------------------------
# SMS
# ---------------------------------------------------------------------------


class TestSmsSender:
    @pytest.mark.asyncio
    async def test_truncates_to_single_segment(self, make_user, make_notification):
        client = MagicMock()
        client.send_sms = AsyncMock(return_value={"message_id": "sms-1"})
        sender = SmsSender(client, "Reminders")

        receipt = await sender.send(
            make_notification(channel="SMS", content="x" * 400), make_user(phone="11999990000")
        )

        phone, text, sender_name = client.send_sms.call_args.args
        assert phone == "11999990000"
        assert len(text) == MAX_SMS_LENGTH
        assert sender_name == "Reminders"
        assert receipt.message_id == "sms-1"

    def test_missing_phone(self, make_user, make_notification):
        sender = SmsSender(MagicMock(), "Reminders")
        with pytest.raises(AddressResolutionError):
            sender.resolve_address(make_notification(channel="SMS"), make_user(phone=None))


# ---------------------------------------------------------------------------
# WhatsApp
# ---------------------------------------------------------------------------


def _whatsapp_sender(template: dict | None = None):
    client = MagicMock()
    client.send_message = AsyncMock(return_value={"message_id": "wa-1", "contact_id": "c1"})
    bots = MagicMock()
    bots.get_default_bot_id = AsyncMock(return_value="bot-1")
    templates = MagicMock()
    templates.get_template = AsyncMock(return_value=template)
    return WhatsAppSender(client, bots, templates), client


class TestWhatsAppSender:
    @pytest.mark.asyncio
    async def test_free_text_with_quick_replies(self, make_user, make_notification):
        sender, client = _whatsapp_sender()
        notification = make_notification(channel="WHATSAPP", meta={"quick_replies": ["Yes", "No"]})

        receipt = await sender.send(notification, make_user(whatsapp="5511988887777"))

        assert receipt.message_id == "wa-1"
        args, kwargs = client.send_message.call_args
        assert args[:2] == ("bot-1", "5511988887777")
        assert kwargs["quick_replies"] == ["Yes", "No"]
        assert kwargs["template"] is None

    @pytest.mark.asyncio
    async def test_approved_template_is_built(self, make_user, make_notification):
        template = {
            "name": "reminder_v1",
            "status": "APPROVED",
            "language": "pt_BR",
            "components": [{"type": "BODY", "example": {"body_text": [["Ana"]]}}],
        }
        sender, client = _whatsapp_sender(template)
        notification = make_notification(
            channel="WHATSAPP", meta={"template_name": "reminder_v1", "template_params": ["Ana"]}
        )

        await sender.send(notification, make_user())

        sent_template = client.send_message.call_args.kwargs["template"]
        assert sent_template["name"] == "reminder_v1"
        assert sent_template["language"] == {"code": "pt_BR"}

    @pytest.mark.asyncio
    async def test_unknown_template_rejected(self, make_user, make_notification):
        sender, client = _whatsapp_sender(None)
        notification = make_notification(channel="WHATSAPP", meta={"template_name": "missing"})

        with pytest.raises(TemplateNotApprovedError):
            await sender.send(notification, make_user())
        client.send_message.assert_not_awaited()

    def test_falls_back_to_phone(self, make_user, make_notification):
        sender, _ = _whatsapp_sender()
        user = make_user(whatsapp=None, phone="5511900000000")

        assert sender.resolve_address(make_notification(channel="WHATSAPP"), user) == "5511900000000"
