"""Tests for the SendPulse contact cache.

Covers:
- Identity TTL vs. conversation-window freshness (independent clocks)
- Phone normalization in cache keys
- Webhook-driven conversation updates by contact id
- Prefetch skipping cached and failing lookups
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from modules.reminders.sendpulse.contact_cache import ContactCache, normalize_phone


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _cache(clock: FakeClock) -> ContactCache:
    return ContactCache(ttl_seconds=3600, conversation_freshness_seconds=300, clock=clock)


# ---------------------------------------------------------------------------
# Keys and TTL
# ---------------------------------------------------------------------------


class TestIdentity:
    def test_normalize_phone(self):
        assert normalize_phone("+55 (11) 99999-0000") == "5511999990000"

    def test_lookup_ignores_phone_formatting(self):
        cache = _cache(FakeClock())
        cache.set("bot1", "+55 11 99999-0000", "c1")

        assert cache.get_contact_id("bot1", "5511999990000") == "c1"
        assert cache.get_contact_id("bot2", "5511999990000") is None

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = _cache(clock)
        cache.set("bot1", "5511999990000", "c1")

        clock.advance(3599)
        assert cache.has("bot1", "5511999990000")
        clock.advance(1)
        assert cache.get("bot1", "5511999990000") is None

    def test_set_from_api_reads_channel_data(self):
        cache = _cache(FakeClock())
        entry = cache.set_from_api(
            "bot1",
            {"id": "c9", "status": 1, "is_chat_opened": True, "channel_data": {"phone": "5511988887777", "name": "Ana"}},
        )

        assert entry is not None
        assert entry.name == "Ana"
        assert cache.is_contact_active("bot1", "5511988887777") is True

    def test_set_from_api_without_phone_is_skipped(self):
        cache = _cache(FakeClock())
        assert cache.set_from_api("bot1", {"id": "c9"}) is None


# ---------------------------------------------------------------------------
# Conversation freshness
# ---------------------------------------------------------------------------


class TestConversationFreshness:
    def test_stale_conversation_flag_reads_as_unknown(self):
        clock = FakeClock()
        cache = _cache(clock)
        cache.set("bot1", "5511999990000", "c1", is_chat_opened=True)

        clock.advance(301)
        # Identity is still valid, conversation status is not
        assert cache.has("bot1", "5511999990000")
        assert cache.is_contact_active("bot1", "5511999990000") is None
        assert [e.contact_id for e in cache.get_stale_conversation_contacts()] == ["c1"]

    def test_update_conversation_window_refreshes_clock(self):
        clock = FakeClock()
        cache = _cache(clock)
        cache.set("bot1", "5511999990000", "c1", is_chat_opened=True)

        clock.advance(301)
        assert cache.update_conversation_window("bot1", "5511999990000", False) is True
        assert cache.is_contact_active("bot1", "5511999990000") is False

    def test_update_unknown_contact_returns_false(self):
        cache = _cache(FakeClock())
        assert cache.update_conversation_window("bot1", "5511999990000", True) is False

    def test_set_conversation_by_contact_id(self):
        clock = FakeClock()
        cache = _cache(clock)
        cache.set("bot1", "5511999990000", "c1", is_chat_opened=False)
        clock.advance(400)

        assert cache.set_conversation_by_contact_id("c1", True) is True
        assert cache.is_contact_active("bot1", "5511999990000") is True
        assert cache.set_conversation_by_contact_id("missing", True) is False


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class TestMaintenance:
    def test_clear_expired_and_stats(self):
        clock = FakeClock()
        cache = _cache(clock)
        cache.set("bot1", "111", "c1")
        cache.set("bot1", "222", "c2", ttl_seconds=10)
        clock.advance(20)

        assert cache.stats()["expired"] == 1
        assert cache.clear_expired() == 1
        assert cache.stats()["size"] == 1

    def test_hit_rate(self):
        cache = _cache(FakeClock())
        cache.set("bot1", "111", "c1")
        cache.get("bot1", "111")
        cache.get("bot1", "999")

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_prefetch_skips_cached_and_failures(self):
        cache = _cache(FakeClock())
        cache.set("bot1", "111", "c1")

        async def _fetch(bot_id, phone):
            if phone == "333":
                raise RuntimeError("provider down")
            return {"id": f"c-{phone}", "channel_data": {"phone": phone}}

        fetch = AsyncMock(side_effect=_fetch)
        loaded = await cache.prefetch("bot1", ["111", "222", "333"], fetch)

        assert loaded == 1
        assert fetch.await_count == 2
        assert cache.get_contact_id("bot1", "222") == "c-222"
