"""SendPulse REST client: OAuth, WhatsApp contacts and messages, SMS."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import httpx
import structlog

from modules.reminders.sendpulse.contact_cache import CachedContact, ContactCache, normalize_phone
from modules.reminders.sendpulse.errors import (
    CONTACT_NOT_FOUND,
    CONVERSATION_WINDOW_EXPIRED,
    ContactNotFoundError,
    ConversationWindowClosedError,
    ProviderAuthError,
    ProviderError,
    ProviderNetworkError,
    create_provider_error,
)
from modules.reminders.sendpulse.rate_limiter import RateLimiter
from modules.reminders.sendpulse.retry import RetryManager

logger = structlog.get_logger()

_DEFAULT_BASE = "https://api.sendpulse.com"

# Refresh the OAuth token this long before the provider expires it
TOKEN_EXPIRY_MARGIN_SECONDS = 60
DEFAULT_TOKEN_EXPIRY_SECONDS = 3600

# WhatsApp interactive message limits
MAX_QUICK_REPLY_BUTTONS = 3
MAX_BUTTON_TITLE_LENGTH = 20
MAX_TEXT_LENGTH = 4096

BRAZIL_COUNTRY_CODE = "55"


def clean_phone(phone: str) -> str:
    """Digits only, with the Brazilian country code added to bare 10/11-digit numbers."""
    digits = normalize_phone(phone)
    if len(digits) in (10, 11):
        digits = BRAZIL_COUNTRY_CODE + digits
    return digits


def build_quick_reply_buttons(replies: list[str]) -> list[dict]:
    """At most three reply buttons, titles truncated to WhatsApp's 20 characters."""
    buttons = []
    for i, title in enumerate(replies[:MAX_QUICK_REPLY_BUTTONS]):
        buttons.append(
            {
                "type": "reply",
                "reply": {"id": f"reply_{i + 1}", "title": title[:MAX_BUTTON_TITLE_LENGTH]},
            }
        )
    return buttons


class SendPulseClient:
    """Async client for the SendPulse API.

    Every outbound request takes a rate-limiter token first and runs through
    the retry manager, so retries are throttled like first attempts.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        rate_limiter: RateLimiter,
        retry_manager: RetryManager,
        contact_cache: ContactCache,
        base_url: str = _DEFAULT_BASE,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.rate_limiter = rate_limiter
        self.retry_manager = retry_manager
        self.contact_cache = contact_cache
        self.base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=30.0)
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def get_access_token(self) -> str:
        """Return a cached OAuth token, fetching a new one when near expiry."""
        if self._token and self._clock() < self._token_expires_at:
            return self._token

        async with self._token_lock:
            # Another coroutine may have refreshed while we waited
            if self._token and self._clock() < self._token_expires_at:
                return self._token

            if not self.configured:
                raise ProviderAuthError("SendPulse client credentials are not configured")

            await self.rate_limiter.acquire()
            try:
                resp = await self._http.post(
                    "/oauth/access_token",
                    json={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    },
                )
            except httpx.TransportError as e:
                raise ProviderNetworkError(f"SendPulse OAuth request failed: {e}") from e

            if resp.status_code >= 400:
                raise create_provider_error(resp)

            data = resp.json()
            token = data.get("access_token")
            if not token:
                raise ProviderAuthError("SendPulse OAuth response did not include an access token")

            expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_EXPIRY_SECONDS)
            self._token = token
            self._token_expires_at = self._clock() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            logger.info("sendpulse_token_refreshed", expires_in=expires_in)
            return token

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request_once(self, method: str, path: str, **kwargs: Any) -> dict:
        token = await self.get_access_token()
        await self.rate_limiter.acquire()
        try:
            resp = await self._http.request(
                method, path, headers={"Authorization": f"Bearer {token}"}, **kwargs
            )
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"SendPulse request failed: {e}") from e

        if resp.status_code == 401:
            self.invalidate_token()
        if resp.status_code >= 400:
            raise create_provider_error(resp)
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    async def _request(self, method: str, path: str, operation: str | None = None, **kwargs: Any) -> dict:
        return await self.retry_manager.execute(
            lambda: self._request_once(method, path, **kwargs),
            operation_id=operation,
        )

    # ------------------------------------------------------------------
    # Bots and templates
    # ------------------------------------------------------------------

    async def list_bots(self) -> list[dict]:
        data = await self._request("GET", "/whatsapp/bots", operation="list_bots")
        return list(data.get("data") or [])

    async def list_templates(self, bot_id: str) -> list[dict]:
        data = await self._request(
            "GET", "/whatsapp/templates", operation=f"list_templates:{bot_id}", params={"bot_id": bot_id}
        )
        return list(data.get("data") or [])

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def get_contact_by_phone(self, bot_id: str, phone: str) -> dict | None:
        """Fetch a contact from the API; None if the provider does not know the phone."""
        try:
            data = await self._request(
                "GET",
                "/whatsapp/contacts/getByPhone",
                operation=f"get_contact:{bot_id}",
                params={"bot_id": bot_id, "phone": clean_phone(phone)},
            )
        except ContactNotFoundError:
            return None
        contact = data.get("data")
        if isinstance(contact, list):
            contact = contact[0] if contact else None
        return contact or None

    async def resolve_contact(self, bot_id: str, phone: str) -> CachedContact | None:
        """Cached contact with a fresh conversation-window flag."""
        phone = clean_phone(phone)
        cached = self.contact_cache.get(bot_id, phone)
        if cached is not None and self.contact_cache.is_conversation_status_fresh(bot_id, phone):
            return cached

        contact = await self.get_contact_by_phone(bot_id, phone)
        if contact is None:
            return None
        if cached is not None:
            self.contact_cache.update_conversation_window(
                bot_id, phone, bool(contact.get("is_chat_opened"))
            )
            return self.contact_cache.get(bot_id, phone)
        contact.setdefault("phone", phone)
        return self.contact_cache.set_from_api(bot_id, contact)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_text(
        self, bot_id: str, contact_id: str, text: str, quick_replies: list[str] | None = None
    ) -> dict:
        if quick_replies:
            message = {
                "type": "interactive",
                "interactive": {
                    "type": "button",
                    "body": {"text": text[:MAX_TEXT_LENGTH]},
                    "action": {"buttons": build_quick_reply_buttons(quick_replies)},
                },
            }
        else:
            message = {"type": "text", "text": {"body": text[:MAX_TEXT_LENGTH]}}
        return await self._request(
            "POST",
            "/whatsapp/contacts/send",
            operation=f"send:{contact_id}",
            json={"bot_id": bot_id, "contact_id": contact_id, "message": message},
        )

    async def send_template(self, bot_id: str, contact_id: str, template: dict) -> dict:
        return await self._request(
            "POST",
            "/whatsapp/contacts/sendTemplate",
            operation=f"send_template:{contact_id}",
            json={"bot_id": bot_id, "contact_id": contact_id, "template": template},
        )

    async def send_message(
        self,
        bot_id: str,
        phone: str,
        text: str,
        *,
        quick_replies: list[str] | None = None,
        template: dict | None = None,
    ) -> dict:
        """Send to a phone number, honoring the 24h conversation window.

        Free-form text needs an open window; a template message may be sent
        at any time.  Raises ConversationWindowClosedError (never retried)
        when the window is closed and no template was supplied.
        """
        contact = await self.resolve_contact(bot_id, phone)
        if contact is None:
            raise ContactNotFoundError(CONTACT_NOT_FOUND)

        if template is not None:
            data = await self.send_template(bot_id, contact.contact_id, template)
        elif not contact.is_chat_opened:
            raise ConversationWindowClosedError(CONVERSATION_WINDOW_EXPIRED)
        else:
            data = await self.send_text(bot_id, contact.contact_id, text, quick_replies)

        payload = data.get("data") if isinstance(data.get("data"), dict) else {}
        message_id = payload.get("id")
        logger.info(
            "whatsapp_message_sent",
            bot_id=bot_id,
            contact_id=contact.contact_id,
            template=bool(template),
            message_id=message_id,
        )
        return {"message_id": message_id, "contact_id": contact.contact_id}

    async def send_sms(self, phone: str, text: str, sender: str) -> dict:
        data = await self._request(
            "POST",
            "/sms/send",
            operation=f"sms:{clean_phone(phone)}",
            json={"phones": [clean_phone(phone)], "message": text, "sender": sender},
        )
        if data and data.get("result") is False:
            raise ProviderError(f"SendPulse SMS rejected: {data}")
        return {"message_id": str(data.get("id")) if data.get("id") else None}

    async def close(self) -> None:
        await self._http.aclose()
