"""In-memory phone -> SendPulse contact cache with two freshness clocks.

Contact identity is stable for a long time (``ttl_seconds``), while the 24h
conversation window opens and closes far more often, so the "is the chat
open" flag is trusted only for ``conversation_freshness_seconds`` after it
was last checked.  Both clocks live on the same entry and are independent.

All methods are synchronous: under asyncio each call runs without
interruption, so a freshness check and the write that extends it can never
interleave with another coroutine.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

import structlog

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 3600
DEFAULT_CONVERSATION_FRESHNESS_SECONDS = 300

_NON_DIGITS = re.compile(r"\D")


@dataclass
class CachedContact:
    contact_id: str
    phone: str
    bot_id: str
    is_chat_opened: bool
    status: int  # 0 = new, 1 = active, 2 = inactive
    expires_at: float
    conversation_checked_at: float
    name: str | None = None


def normalize_phone(phone: str) -> str:
    return _NON_DIGITS.sub("", phone or "")


def _cache_key(bot_id: str, phone: str) -> str:
    return f"{bot_id}:{normalize_phone(phone)}"


class ContactCache:
    """TTL cache of resolved contacts keyed by ``bot_id:digits``."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        conversation_freshness_seconds: float = DEFAULT_CONVERSATION_FRESHNESS_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.conversation_freshness_seconds = conversation_freshness_seconds
        self._clock = clock
        self._entries: dict[str, CachedContact] = {}
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _live(self, key: str) -> CachedContact | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def get(self, bot_id: str, phone: str) -> CachedContact | None:
        """Return the live entry, dropping it if its identity TTL has passed."""
        entry = self._live(_cache_key(bot_id, phone))
        if entry is None:
            self._misses += 1
        else:
            self._hits += 1
        return entry

    def get_contact_id(self, bot_id: str, phone: str) -> str | None:
        entry = self.get(bot_id, phone)
        return entry.contact_id if entry else None

    def has(self, bot_id: str, phone: str) -> bool:
        return self._live(_cache_key(bot_id, phone)) is not None

    def is_contact_active(self, bot_id: str, phone: str) -> bool | None:
        """Conversation-open flag if still fresh, else None (caller must re-check)."""
        entry = self._live(_cache_key(bot_id, phone))
        if entry is None or not self._conversation_fresh(entry):
            return None
        return entry.is_chat_opened

    def is_conversation_status_fresh(self, bot_id: str, phone: str) -> bool:
        entry = self._live(_cache_key(bot_id, phone))
        return entry is not None and self._conversation_fresh(entry)

    def _conversation_fresh(self, entry: CachedContact) -> bool:
        return self._clock() - entry.conversation_checked_at < self.conversation_freshness_seconds

    def get_stale_conversation_contacts(self, bot_id: str | None = None) -> list[CachedContact]:
        """Live entries whose conversation status needs a refresh."""
        now = self._clock()
        stale = []
        for entry in self._entries.values():
            if bot_id is not None and entry.bot_id != bot_id:
                continue
            if now >= entry.expires_at:
                continue
            if now - entry.conversation_checked_at >= self.conversation_freshness_seconds:
                stale.append(entry)
        return stale

    def get_by_bot_id(self, bot_id: str) -> list[CachedContact]:
        now = self._clock()
        return [e for e in self._entries.values() if e.bot_id == bot_id and now < e.expires_at]

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def set(
        self,
        bot_id: str,
        phone: str,
        contact_id: str,
        *,
        is_chat_opened: bool = False,
        status: int = 1,
        name: str | None = None,
        ttl_seconds: float | None = None,
    ) -> CachedContact:
        now = self._clock()
        entry = CachedContact(
            contact_id=contact_id,
            phone=normalize_phone(phone),
            bot_id=bot_id,
            is_chat_opened=is_chat_opened,
            status=status,
            name=name,
            expires_at=now + (ttl_seconds if ttl_seconds is not None else self.ttl_seconds),
            conversation_checked_at=now,
        )
        self._entries[_cache_key(bot_id, phone)] = entry
        logger.debug("contact_cache_set", bot_id=bot_id, contact_id=contact_id)
        return entry

    def set_from_api(self, bot_id: str, contact: dict) -> CachedContact | None:
        """Cache a contact object as returned by the SendPulse API."""
        phone = (contact.get("channel_data") or {}).get("phone") or contact.get("phone")
        contact_id = contact.get("id")
        if not phone or not contact_id:
            return None
        return self.set(
            bot_id,
            str(phone),
            str(contact_id),
            is_chat_opened=bool(contact.get("is_chat_opened")),
            status=int(contact.get("status", 1)),
            name=(contact.get("channel_data") or {}).get("name") or contact.get("name"),
        )

    def update_conversation_window(self, bot_id: str, phone: str, is_open: bool) -> bool:
        """Record a fresh conversation-window observation. False if not cached."""
        entry = self._live(_cache_key(bot_id, phone))
        if entry is None:
            return False
        entry.is_chat_opened = is_open
        entry.conversation_checked_at = self._clock()
        return True

    def mark_conversation_checked(self, bot_id: str, phone: str) -> bool:
        """Extend conversation freshness without changing the flag."""
        entry = self._live(_cache_key(bot_id, phone))
        if entry is None:
            return False
        entry.conversation_checked_at = self._clock()
        return True

    def set_conversation_by_contact_id(self, contact_id: str, is_open: bool) -> bool:
        """Webhook path: events carry the contact id, not the phone."""
        now = self._clock()
        found = False
        for entry in self._entries.values():
            if entry.contact_id == contact_id and now < entry.expires_at:
                entry.is_chat_opened = is_open
                entry.conversation_checked_at = now
                found = True
        return found

    def delete(self, bot_id: str, phone: str) -> bool:
        return self._entries.pop(_cache_key(bot_id, phone), None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def clear_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("contact_cache_expired_cleared", count=len(expired))
        return len(expired)

    async def prefetch(
        self,
        bot_id: str,
        phones: Iterable[str],
        fetch: Callable[[str, str], Awaitable[dict | None]],
    ) -> int:
        """Resolve and cache contacts not already cached. Failures are skipped."""
        loaded = 0
        for phone in phones:
            if self.has(bot_id, phone):
                continue
            try:
                contact = await fetch(bot_id, phone)
            except Exception as e:
                logger.warning("contact_prefetch_error", bot_id=bot_id, error=str(e))
                continue
            if contact and self.set_from_api(bot_id, contact):
                loaded += 1
        return loaded

    def stats(self) -> dict:
        now = self._clock()
        live = [e for e in self._entries.values() if now < e.expires_at]
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "live": len(live),
            "expired": len(self._entries) - len(live),
            "stale_conversations": sum(
                1 for e in live if now - e.conversation_checked_at >= self.conversation_freshness_seconds
            ),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
        }
