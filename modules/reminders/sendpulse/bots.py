"""Discovery and caching of SendPulse WhatsApp bots."""

from __future__ import annotations

import time
from typing import Callable

import structlog

from modules.reminders.sendpulse.client import SendPulseClient
from modules.reminders.sendpulse.errors import BOT_NOT_CONFIGURED, ProviderBotError

logger = structlog.get_logger()

BOT_CACHE_TTL_SECONDS = 300
BOT_STATUS_ACTIVE = 3


class BotManager:
    """Lists bots once per TTL and picks the one to send from."""

    def __init__(
        self,
        client: SendPulseClient,
        default_bot_id: str | None = None,
        ttl_seconds: float = BOT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.default_bot_id = default_bot_id or None
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._bots: list[dict] | None = None
        self._expires_at = 0.0

    async def get_bots(self, force_refresh: bool = False) -> list[dict]:
        if not force_refresh and self._bots is not None and self._clock() < self._expires_at:
            return self._bots
        bots = await self.client.list_bots()
        self._bots = bots
        self._expires_at = self._clock() + self.ttl_seconds
        logger.debug("sendpulse_bots_loaded", count=len(bots))
        return bots

    async def get_bot(self, bot_id: str) -> dict:
        for bot in await self.get_bots():
            if bot.get("id") == bot_id:
                return bot
        raise ProviderBotError(f"Bot not found: {bot_id}")

    async def get_default_bot(self) -> dict:
        """Configured bot, else the first active one, else the first one listed."""
        bots = await self.get_bots()
        if self.default_bot_id:
            for bot in bots:
                if bot.get("id") == self.default_bot_id:
                    return bot
            logger.warning("configured_bot_missing", bot_id=self.default_bot_id)
        for bot in bots:
            if bot.get("status") == BOT_STATUS_ACTIVE:
                return bot
        if bots:
            return bots[0]
        raise ProviderBotError(BOT_NOT_CONFIGURED)

    async def get_default_bot_id(self) -> str:
        return str((await self.get_default_bot())["id"])

    async def get_bot_by_name(self, name: str) -> dict:
        wanted = name.lower()
        for bot in await self.get_bots():
            channel = bot.get("channel_data") or {}
            if wanted in (str(bot.get("name", "")).lower(), str(channel.get("name", "")).lower()):
                return bot
        raise ProviderBotError(f"Bot not found: {name}")

    async def is_bot_active(self, bot_id: str) -> bool:
        try:
            bot = await self.get_bot(bot_id)
        except ProviderBotError:
            return False
        return bot.get("status") == BOT_STATUS_ACTIVE

    async def get_bot_stats(self, bot_id: str) -> dict:
        bot = await self.get_bot(bot_id)
        return {
            "id": bot.get("id"),
            "name": (bot.get("channel_data") or {}).get("name") or bot.get("name"),
            "status": bot.get("status"),
            "inbox": bot.get("inbox") or {},
            "created_at": bot.get("created_at"),
        }

    def clear_cache(self) -> None:
        self._bots = None
        self._expires_at = 0.0
