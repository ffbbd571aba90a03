"""Tests for the notification lifecycle service.

Covers:
- Creation stores SCHEDULED rows with typed metadata
- send_notification: SENDING claim, SENT with provider id, FAILED with error text
- Sender failures isolated per channel
- Interactions move status forward only (CLICKED never regresses)
- Cancellation only before sending
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from modules.reminders.errors import (
    AddressResolutionError,
    InvalidTransitionError,
    NotificationNotFoundError,
)
from modules.reminders.notifications import NotificationService, statuses_below
from modules.reminders.providers.base import ChannelSender, DeliveryReceipt
from shared.schemas.reminders import CreateNotificationInput, ReminderMetadata
from tests.conftest import NOW


def _sender(channel: str, receipt: DeliveryReceipt | None = None, error: Exception | None = None):
    sender = MagicMock(spec=ChannelSender)
    sender.channel = channel
    sender.send = AsyncMock(return_value=receipt or DeliveryReceipt(), side_effect=error)
    sender.close = AsyncMock()
    return sender


def _service(store, **senders) -> NotificationService:
    return NotificationService(store, senders, now=lambda: NOW)


def _transition_calls(store) -> list[tuple]:
    return [(c.args[1], c.args[2]) for c in store.transition_status.await_args_list]


# ---------------------------------------------------------------------------
# Status ordering
# ---------------------------------------------------------------------------


class TestStatusesBelow:
    def test_clicked_overrides_everything_after_send(self):
        assert statuses_below("CLICKED") == ("SENT", "DELIVERED", "OPENED")

    def test_delivered_only_moves_from_sent(self):
        assert statuses_below("DELIVERED") == ("SENT",)


# ---------------------------------------------------------------------------
# Create / query
# ---------------------------------------------------------------------------


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_scheduled_row(self, mock_store, make_notification, sample_user_id):
        created = make_notification(user_id=sample_user_id)
        mock_store.create_notification.return_value = created
        service = _service(mock_store)

        notification_id = await service.create_notification(
            CreateNotificationInput(
                user_id=sample_user_id,
                channel="EMAIL",
                content="Dentist at 10",
                metadata=ReminderMetadata(email="alt@example.com"),
                scheduled_at=NOW,
            )
        )

        assert notification_id == str(created.id)
        kwargs = mock_store.create_notification.call_args.kwargs
        assert kwargs["status"] == "SCHEDULED"
        assert kwargs["meta"] == {"email": "alt@example.com", "is_fallback": False}

    @pytest.mark.asyncio
    async def test_scheduled_query_uses_now(self, mock_store):
        mock_store.list_due_notifications.return_value = []
        service = _service(mock_store)

        await service.get_scheduled_notifications(limit=25)

        mock_store.list_due_notifications.assert_awaited_once_with(NOW, limit=25)


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------


class TestSend:
    @pytest.mark.asyncio
    async def test_success_marks_sent_and_records_interaction(self, mock_store, make_notification, make_user):
        notification = make_notification(channel="WHATSAPP", meta={"quick_replies": ["OK"]})
        mock_store.get_notification.return_value = notification
        mock_store.get_user.return_value = make_user()
        mock_store.transition_status.return_value = True
        sender = _sender("WHATSAPP", DeliveryReceipt(message_id="wa-1"))
        service = _service(mock_store, WHATSAPP=sender)

        result = await service.send_notification(str(notification.id))

        assert result.success is True
        assert result.message_id == "wa-1"
        assert _transition_calls(mock_store) == [(("SCHEDULED",), "SENDING"), (("SENDING",), "SENT")]
        sent_kwargs = mock_store.transition_status.await_args_list[1].kwargs
        assert sent_kwargs["sent_at"] == NOW
        assert sent_kwargs["meta"] == {"quick_replies": ["OK"], "provider_message_id": "wa-1"}
        interaction = mock_store.add_interaction.call_args.args
        assert interaction[2] == "SENT"
        assert interaction[3] == {"message_id": "wa-1"}

    @pytest.mark.asyncio
    async def test_sender_error_marks_failed(self, mock_store, make_notification, make_user):
        notification = make_notification(channel="EMAIL")
        mock_store.get_notification.return_value = notification
        mock_store.get_user.return_value = make_user(email=None)
        mock_store.transition_status.return_value = True
        sender = _sender("EMAIL", error=AddressResolutionError("EMAIL", "User email not found"))
        service = _service(mock_store, EMAIL=sender)

        result = await service.send_notification(str(notification.id))

        assert result.success is False
        assert result.error == "User email not found"
        assert _transition_calls(mock_store)[-1] == (("SENDING",), "FAILED")
        assert mock_store.transition_status.await_args_list[-1].kwargs["error_message"] == "User email not found"
        mock_store.add_interaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_channel_failure_does_not_affect_another(self, mock_store, make_notification, make_user):
        email = make_notification(channel="EMAIL")
        push = make_notification(channel="PUSH")
        mock_store.get_notification.side_effect = lambda nid: email if nid == str(email.id) else push
        mock_store.get_user.return_value = make_user()
        mock_store.transition_status.return_value = True
        service = _service(
            mock_store,
            EMAIL=_sender("EMAIL", error=RuntimeError("smtp down")),
            PUSH=_sender("PUSH", DeliveryReceipt(address="device")),
        )

        failed = await service.send_notification(str(email.id))
        succeeded = await service.send_notification(str(push.id))

        assert failed.success is False
        assert succeeded.success is True

    @pytest.mark.asyncio
    async def test_missing_sender_fails_cleanly(self, mock_store, make_notification):
        notification = make_notification(channel="SMS")
        mock_store.get_notification.return_value = notification
        mock_store.transition_status.return_value = True
        service = _service(mock_store)

        result = await service.send_notification(str(notification.id))

        assert result.success is False
        assert "No sender configured" in result.error

    @pytest.mark.asyncio
    async def test_not_scheduled_raises(self, mock_store, make_notification):
        notification = make_notification(status="CANCELLED")
        mock_store.get_notification.return_value = notification
        mock_store.transition_status.return_value = False
        sender = _sender("EMAIL")
        service = _service(mock_store, EMAIL=sender)

        with pytest.raises(InvalidTransitionError):
            await service.send_notification(str(notification.id))
        sender.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_notification(self, mock_store):
        mock_store.get_notification.return_value = None
        service = _service(mock_store)

        with pytest.raises(NotificationNotFoundError):
            await service.send_notification(str(uuid.uuid4()))


# ---------------------------------------------------------------------------
# Interactions
# ---------------------------------------------------------------------------


class TestRecordInteraction:
    @pytest.mark.asyncio
    async def test_open_advances_status(self, mock_store, make_notification):
        notification = make_notification(status="DELIVERED")
        mock_store.get_notification.return_value = notification
        mock_store.transition_status.return_value = True
        service = _service(mock_store)

        await service.record_interaction(str(notification.id), None, "OPENED")

        add_args = mock_store.add_interaction.call_args.args
        assert add_args[1] == notification.user_id
        assert _transition_calls(mock_store) == [(("SENT", "DELIVERED"), "OPENED")]

    @pytest.mark.asyncio
    async def test_late_delivered_does_not_regress_clicked(self, mock_store, make_notification):
        notification = make_notification(status="CLICKED")
        mock_store.get_notification.return_value = notification
        # The conditional update matches nothing: CLICKED is not below DELIVERED
        mock_store.transition_status.return_value = False
        service = _service(mock_store)

        await service.record_interaction(str(notification.id), None, "DELIVERED")

        mock_store.add_interaction.assert_awaited_once()
        from_statuses, target = _transition_calls(mock_store)[0]
        assert "CLICKED" not in from_statuses
        assert target == "DELIVERED"

    @pytest.mark.asyncio
    async def test_non_status_action_only_appends(self, mock_store, make_notification):
        notification = make_notification(status="OPENED")
        mock_store.get_notification.return_value = notification
        service = _service(mock_store)

        await service.record_interaction(str(notification.id), str(notification.user_id), "CONVERTED", {"value": 10})

        mock_store.transition_status.assert_not_awaited()
        assert mock_store.add_interaction.call_args.args[3] == {"value": 10}

    @pytest.mark.asyncio
    async def test_unknown_notification(self, mock_store):
        mock_store.get_notification.return_value = None
        service = _service(mock_store)

        with pytest.raises(NotificationNotFoundError):
            await service.record_interaction(str(uuid.uuid4()), None, "OPENED")
        mock_store.add_interaction.assert_not_awaited()


# ---------------------------------------------------------------------------
# Cancel / close
# ---------------------------------------------------------------------------


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_scheduled(self, mock_store, make_notification):
        notification = make_notification(status="SCHEDULED")
        mock_store.get_notification.return_value = notification
        mock_store.transition_status.return_value = True
        service = _service(mock_store)

        await service.cancel_notification(str(notification.id))

        assert _transition_calls(mock_store) == [(("SCHEDULED",), "CANCELLED")]

    @pytest.mark.asyncio
    async def test_cancel_after_send_rejected(self, mock_store, make_notification):
        notification = make_notification(status="SENT")
        mock_store.get_notification.return_value = notification
        mock_store.transition_status.return_value = False
        service = _service(mock_store)

        with pytest.raises(InvalidTransitionError, match="SENT"):
            await service.cancel_notification(str(notification.id))

    @pytest.mark.asyncio
    async def test_close_survives_sender_errors(self, mock_store):
        broken = _sender("EMAIL")
        broken.close.side_effect = RuntimeError("already closed")
        ok = _sender("PUSH")
        service = _service(mock_store, EMAIL=broken, PUSH=ok)

        await service.close()

        ok.close.assert_awaited_once()
