"""Inbound SendPulse webhook validation, deduplication and dispatch."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

from shared.auth import tokens_match
from shared.schemas.reminders import WebhookEvent

logger = structlog.get_logger()

# Event kinds delivered by SendPulse
MESSAGE_NEW = "message.new"
MESSAGE_STATUS = "message.status"
CONTACT_CREATED = "contact.created"
CONTACT_UPDATED = "contact.updated"
CONVERSATION_OPENED = "conversation.opened"
CONVERSATION_CLOSED = "conversation.closed"
EVENT_TYPES = (
    MESSAGE_NEW,
    MESSAGE_STATUS,
    CONTACT_CREATED,
    CONTACT_UPDATED,
    CONVERSATION_OPENED,
    CONVERSATION_CLOSED,
)
# Handlers registered under this key see every event
WILDCARD = "*"

DEFAULT_MAX_PROCESSED = 1000
# Share of the dedup set dropped (oldest first) when it overflows
_EVICTION_FRACTION = 0.2

EventHandler = Callable[[WebhookEvent], Awaitable[None]]


class WebhookValidationError(ValueError):
    """Malformed webhook payload."""


def parse_payload(body: dict) -> WebhookEvent:
    """Normalize a raw webhook body; ``event``, ``bot_id`` and ``timestamp`` are required."""
    if not isinstance(body, dict):
        raise WebhookValidationError("Webhook body must be a JSON object")

    missing = [f for f in ("event", "bot_id", "timestamp") if not body.get(f)]
    if missing:
        raise WebhookValidationError(f"Missing required fields: {', '.join(missing)}")

    contact = body.get("contact") if isinstance(body.get("contact"), dict) else None
    contact_id = body.get("contact_id") or (contact or {}).get("id")

    data = body.get("data")
    if not isinstance(data, dict):
        if isinstance(body.get("message"), dict):
            data = {"message": body["message"], **({"contact": contact} if contact else {})}
        elif contact:
            data = {"contact": contact}
        else:
            data = {k: v for k, v in body.items() if k not in ("event", "bot_id", "timestamp", "contact_id")}

    return WebhookEvent(
        event=str(body["event"]),
        bot_id=str(body["bot_id"]),
        contact_id=str(contact_id) if contact_id else None,
        timestamp=str(body["timestamp"]),
        data=data,
    )


def event_key(event: WebhookEvent) -> str:
    return f"{event.event}:{event.contact_id}:{event.timestamp}"


class WebhookHandler:
    """Event-kind keyed handler registry with exactly-once dispatch."""

    def __init__(self, token: str | None = None, max_processed: int = DEFAULT_MAX_PROCESSED):
        self.token = token or None
        self.max_processed = max_processed
        self._handlers: dict[str, list[EventHandler]] = {}
        # dict preserves insertion order: first key is the oldest
        self._processed: dict[str, None] = {}
        self._duplicates = 0
        self._handler_failures = 0

    def validate_token(self, provided: str | None) -> bool:
        """No configured token means validation is disabled."""
        if not self.token:
            return True
        return tokens_match(provided, self.token)

    def register(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unregister(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def is_processed(self, event: WebhookEvent) -> bool:
        return event_key(event) in self._processed

    def _mark_processed(self, key: str) -> None:
        self._processed[key] = None
        if len(self._processed) > self.max_processed:
            evict = max(1, int(self.max_processed * _EVICTION_FRACTION))
            for old in list(self._processed)[:evict]:
                del self._processed[old]
            logger.debug("webhook_dedup_evicted", count=evict)

    async def process(self, event: WebhookEvent) -> bool:
        """Dispatch to specific + wildcard handlers. False if already seen.

        The event is marked processed before any handler is awaited, so a
        concurrent redelivery is dropped.
        """
        key = event_key(event)
        if key in self._processed:
            self._duplicates += 1
            logger.info("webhook_duplicate_ignored", event_type=event.event, contact_id=event.contact_id)
            return False
        self._mark_processed(key)

        handlers = [*self._handlers.get(event.event, []), *self._handlers.get(WILDCARD, [])]
        if not handlers:
            logger.debug("webhook_no_handlers", event_type=event.event)
            return True

        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                self._handler_failures += 1
                logger.error(
                    "webhook_handler_error",
                    event_type=event.event,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(result),
                )
        return True

    async def handle(self, body: dict, token: str | None = None) -> bool:
        """Validate token, parse, and dispatch one raw webhook body."""
        if not self.validate_token(token):
            raise PermissionError("Invalid webhook token")
        return await self.process(parse_payload(body))

    def stats(self) -> dict:
        return {
            "processed": len(self._processed),
            "duplicates": self._duplicates,
            "handler_failures": self._handler_failures,
            "handlers": {k: len(v) for k, v in self._handlers.items()},
        }

    def clear(self) -> None:
        self._processed.clear()
