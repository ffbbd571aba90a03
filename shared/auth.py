"""Inter-service authentication for the reminder API.

Callers (the core orchestrator, cron runners, admin tools) share a single
``SERVICE_AUTH_TOKEN`` and send ``Authorization: Bearer <token>``.  Provider
webhooks are not covered here: they carry their own shared secret, checked
by the webhook handler.

Usage::

    from shared.auth import require_service_auth

    @app.post("/execute")
    async def execute(call: ToolCall, _=Depends(require_service_auth)):
        ...
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import HTTPException, Request

from shared.config import get_settings

logger = structlog.get_logger()


def tokens_match(provided: str | None, expected: str) -> bool:
    """Constant-time comparison of a presented secret with the configured one."""
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


async def require_service_auth(request: Request) -> None:
    """FastAPI dependency that validates the inter-service auth token.

    Raises 401 if the token is missing or incorrect.
    Skips validation when ``service_auth_token`` is empty (dev mode).
    """
    expected = get_settings().service_auth_token
    if not expected:
        logger.warning(
            "service_auth_disabled",
            path=request.url.path,
            hint="Set SERVICE_AUTH_TOKEN in .env for production",
        )
        return

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing service auth token")

    if not tokens_match(auth_header[7:], expected):
        logger.warning(
            "service_auth_failed",
            path=request.url.path,
            remote=request.client.host if request.client else "unknown",
        )
        raise HTTPException(status_code=401, detail="Invalid service auth token")
