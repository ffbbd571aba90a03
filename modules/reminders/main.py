"""Reminders module - FastAPI service with the scheduler and provider webhooks."""

from __future__ import annotations

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from modules.reminders.manifest import MANIFEST
from modules.reminders.sendpulse.webhook import WebhookValidationError
from modules.reminders.services import ReminderServices, build_services
from modules.reminders.tools import ReminderTools
from shared.auth import require_service_auth
from shared.config import get_settings
from shared.database import dispose_engine, get_session_factory
from shared.redis import close_redis, get_redis
from shared.schemas.common import HealthResponse
from shared.schemas.tools import ModuleManifest, ToolCall, ToolResult

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Reminders Module", version="1.0.0")

services: ReminderServices | None = None
tools: ReminderTools | None = None

# Tools that act on the whole system and take no user_id
_SYSTEM_TOOLS = ("get_analytics", "dashboard", "export_report", "model_accuracy")


@app.on_event("startup")
async def startup():
    global services, tools
    settings = get_settings()
    services = build_services(settings, get_session_factory(), get_redis(settings.redis_url))
    tools = ReminderTools(services)
    services.start()
    logger.info("reminders_module_ready")


@app.on_event("shutdown")
async def shutdown():
    global services, tools
    if services is not None:
        await services.close()
    services = None
    tools = None
    await close_redis()
    await dispose_engine()
    logger.info("reminders_module_shutdown")


@app.get("/manifest", response_model=ModuleManifest)
async def manifest(_=Depends(require_service_auth)):
    """Return the module manifest."""
    return MANIFEST


@app.post("/execute", response_model=ToolResult)
async def execute(call: ToolCall, _=Depends(require_service_auth)):
    """Execute a tool call."""
    if tools is None:
        return ToolResult(tool_name=call.tool_name, success=False, error="Module not ready")

    try:
        tool_name = call.tool_name.split(".")[-1]
        args = dict(call.arguments)
        if call.user_id and tool_name not in _SYSTEM_TOOLS:
            args["user_id"] = call.user_id
        elif tool_name in _SYSTEM_TOOLS:
            args.pop("user_id", None)

        method = getattr(tools, tool_name, None)
        if tool_name.startswith("_") or method is None:
            return ToolResult(
                tool_name=call.tool_name,
                success=False,
                error=f"Unknown tool: {call.tool_name}",
            )

        result = await method(**args)
        return ToolResult(tool_name=call.tool_name, success=True, result=result)
    except Exception as e:
        logger.error("tool_execution_error", tool=call.tool_name, error=str(e), exc_info=True)
        return ToolResult(tool_name=call.tool_name, success=False, error=str(e))


# ---------------------------------------------------------------------------
# SendPulse webhooks
# ---------------------------------------------------------------------------


@app.get("/webhook/whatsapp", response_class=PlainTextResponse)
async def verify_webhook(
    token: str | None = Query(None),
    challenge: str | None = Query(None),
):
    """Webhook registration check: echo the challenge when the token matches."""
    if services is None:
        raise HTTPException(status_code=503, detail="Module not ready")
    if not services.webhook.validate_token(token):
        raise HTTPException(status_code=401, detail="Invalid webhook token")
    return challenge or "ok"


@app.post("/webhook/whatsapp")
async def receive_webhook(request: Request):
    """Receive SendPulse events.

    Unauthenticated for the service token because SendPulse calls it; the
    shared webhook token (header or ``token`` query param) is checked instead.
    """
    if services is None:
        raise HTTPException(status_code=503, detail="Module not ready")

    token = request.headers.get("X-Webhook-Token") or request.query_params.get("token")
    if not services.webhook.validate_token(token):
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be JSON")

    # SendPulse may batch several events in one POST
    events = body if isinstance(body, list) else [body]
    processed = 0
    try:
        for raw in events:
            if await services.webhook.handle(raw, token):
                processed += 1
    except WebhookValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"received": len(events), "processed": processed}


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok")
