"""Approved WhatsApp template lookup and message building."""

from __future__ import annotations

import time
from typing import Callable

import structlog

from modules.reminders.sendpulse.client import SendPulseClient

logger = structlog.get_logger()

TEMPLATE_CACHE_TTL_SECONDS = 24 * 3600
APPROVED_STATUS = "APPROVED"
DEFAULT_LANGUAGE = "pt_BR"

# Name fragments tried in order when picking a re-engagement template
REENGAGEMENT_NAMES = ("reengagement", "notification", "update", "hello", "ola")


def build_template_message(
    name: str,
    language: str = DEFAULT_LANGUAGE,
    *,
    header: list[str] | None = None,
    body: list[str] | None = None,
    buttons: list[dict] | None = None,
) -> dict:
    """Template payload with positional text parameters per component."""
    components: list[dict] = []
    if header:
        components.append(
            {"type": "header", "parameters": [{"type": "text", "text": t} for t in header]}
        )
    if body:
        components.append(
            {"type": "body", "parameters": [{"type": "text", "text": t} for t in body]}
        )
    for button in buttons or []:
        component = {"type": "button", "sub_type": "quick_reply", "index": button.get("index", 0)}
        if button.get("text"):
            component["parameters"] = [{"type": "text", "text": button["text"]}]
        components.append(component)

    template: dict = {"name": name, "language": {"code": language}}
    if components:
        template["components"] = components
    return template


def validate_template_parameters(
    template: dict,
    header: list[str] | None = None,
    body: list[str] | None = None,
) -> tuple[bool, list[str]]:
    """Check approval and that parameter counts match the template examples."""
    errors: list[str] = []
    if template.get("status") != APPROVED_STATUS:
        errors.append(
            f'Template "{template.get("name")}" is not approved (status: {template.get("status")})'
        )
        return False, errors

    components = template.get("components") or []
    header_comp = next((c for c in components if c.get("type") == "HEADER"), None)
    if header_comp and header_comp.get("format") == "TEXT":
        examples = (header_comp.get("example") or {}).get("header_text")
        if examples:
            expected, provided = len(examples), len(header or [])
            if provided != expected:
                errors.append(f"Header expects {expected} parameters, but {provided} provided")

    body_comp = next((c for c in components if c.get("type") == "BODY"), None)
    if body_comp:
        examples = (body_comp.get("example") or {}).get("body_text")
        if examples and examples[0]:
            expected, provided = len(examples[0]), len(body or [])
            if provided != expected:
                errors.append(f"Body expects {expected} parameters, but {provided} provided")

    return not errors, errors


class TemplateManager:
    """Per-bot template cache (24h)."""

    def __init__(
        self,
        client: SendPulseClient,
        ttl_seconds: float = TEMPLATE_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._templates: dict[str, list[dict]] = {}
        self._expires_at: dict[str, float] = {}

    async def get_templates(self, bot_id: str, force_refresh: bool = False) -> list[dict]:
        if (
            not force_refresh
            and bot_id in self._templates
            and self._clock() < self._expires_at.get(bot_id, 0.0)
        ):
            return self._templates[bot_id]
        templates = await self.client.list_templates(bot_id)
        self._templates[bot_id] = templates
        self._expires_at[bot_id] = self._clock() + self.ttl_seconds
        logger.debug("sendpulse_templates_loaded", bot_id=bot_id, count=len(templates))
        return templates

    async def get_approved_templates(self, bot_id: str) -> list[dict]:
        return [t for t in await self.get_templates(bot_id) if t.get("status") == APPROVED_STATUS]

    async def get_template(self, bot_id: str, name: str) -> dict | None:
        for template in await self.get_templates(bot_id):
            if template.get("name") == name:
                return template
        return None

    async def is_template_approved(self, bot_id: str, name: str) -> bool:
        template = await self.get_template(bot_id, name)
        return template is not None and template.get("status") == APPROVED_STATUS

    async def get_default_reengagement_template(self, bot_id: str) -> dict | None:
        templates = await self.get_approved_templates(bot_id)
        for fragment in REENGAGEMENT_NAMES:
            for template in templates:
                if fragment in str(template.get("name", "")).lower() and template.get("category") == "UTILITY":
                    return template
        for template in templates:
            if template.get("category") == "UTILITY":
                return template
        return templates[0] if templates else None

    def clear_cache(self, bot_id: str | None = None) -> None:
        if bot_id is None:
            self._templates.clear()
            self._expires_at.clear()
        else:
            self._templates.pop(bot_id, None)
            self._expires_at.pop(bot_id, None)
