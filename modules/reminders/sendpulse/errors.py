"""Provider error hierarchy and classification of raw HTTP failures."""

from __future__ import annotations

import httpx

CONVERSATION_WINDOW_EXPIRED = "24-hour conversation window expired. Use template messages."
TEMPLATE_NOT_APPROVED = "Template not approved for sending."
CONTACT_NOT_FOUND = "Contact not found in SendPulse."
BOT_NOT_CONFIGURED = "No WhatsApp bot configured. Set SENDPULSE_BOT_ID."
AUTH_FAILED = "Authentication failed. Check SENDPULSE_CLIENT_ID and SENDPULSE_CLIENT_SECRET."

# Status codes worth another attempt
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ProviderError(Exception):
    """Base class for messaging provider failures."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after  # seconds
        self.details = details or {}


class ProviderNetworkError(ProviderError):
    retryable = True


class ProviderServerError(ProviderError):
    retryable = True


class ProviderRateLimitError(ProviderError):
    retryable = True


class ProviderAuthError(ProviderError):
    pass


class ProviderBotError(ProviderError):
    pass


class ContactNotFoundError(ProviderError):
    pass


class ConversationWindowClosedError(ProviderError):
    """Free-form message outside the 24h window; only templates may be sent."""


class TemplateNotApprovedError(ProviderError):
    pass


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after")
    if not raw:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        for key in ("message", "error", "error_description"):
            if body.get(key):
                return str(body[key])
    return str(body)[:500]


def create_provider_error(response: httpx.Response) -> ProviderError:
    """Map a non-2xx provider response onto the error hierarchy."""
    status = response.status_code
    text = _error_text(response)
    lowered = text.lower()

    if status == 429:
        return ProviderRateLimitError(
            f"SendPulse rate limit: {text}",
            status_code=status,
            retry_after=_retry_after_seconds(response),
        )
    if status in (401, 403):
        return ProviderAuthError(f"{AUTH_FAILED} ({text})", status_code=status)
    if "window" in lowered or "24 hour" in lowered or "24-hour" in lowered:
        return ConversationWindowClosedError(CONVERSATION_WINDOW_EXPIRED, status_code=status)
    if "template" in lowered and ("approv" in lowered or "not found" in lowered):
        return TemplateNotApprovedError(f"{TEMPLATE_NOT_APPROVED} ({text})", status_code=status)
    if status == 404:
        return ContactNotFoundError(f"{CONTACT_NOT_FOUND} ({text})", status_code=status)
    if status in RETRYABLE_STATUS_CODES:
        return ProviderServerError(f"SendPulse API error {status}: {text}", status_code=status)
    return ProviderError(f"SendPulse API error {status}: {text}", status_code=status)
