"""Reminder background worker: periodic send pass and the daily snapshot."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Protocol

import structlog

from modules.reminders.analytics import AnalyticsService
from modules.reminders.orchestrator import ReminderOrchestrator
from shared.schemas.reminders import BatchResult

logger = structlog.get_logger()


class ExpiringCache(Protocol):
    def clear_expired(self) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    """Runs ``process_scheduled_notifications`` on an interval.

    Only one pass runs at a time; a call that arrives while a pass is in
    flight returns None without touching the database.
    """

    def __init__(
        self,
        orchestrator: ReminderOrchestrator,
        analytics: AnalyticsService,
        interval_seconds: float = 60,
        batch_size: int = 100,
        now: Callable[[], datetime] = _utcnow,
        caches: Iterable[ExpiringCache] = (),
    ):
        self.orchestrator = orchestrator
        self.analytics = analytics
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self._now = now
        self.caches = list(caches)
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> BatchResult | None:
        # Check and set happen without an await in between
        if self._running:
            logger.debug("scheduler_pass_skipped")
            return None
        self._running = True
        try:
            result = await self.orchestrator.process_scheduled_notifications(self.batch_size)
            self.evict_expired()
            return result
        finally:
            self._running = False

    def evict_expired(self) -> int:
        """Drop expired entries from the in-process caches; they are otherwise only evicted on read."""
        evicted = sum(cache.clear_expired() for cache in self.caches)
        if evicted:
            logger.debug("cache_entries_evicted", count=evicted)
        return evicted

    async def scheduler_loop(self) -> None:
        logger.info("reminder_scheduler_started", interval=self.interval_seconds)
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("scheduler_loop_error", error=str(e))

            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.scheduler_loop())

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("reminder_scheduler_stopped")

    async def create_daily_snapshot(self, day: date | None = None) -> date:
        """Snapshot ``day``, yesterday in the reminder timezone by default."""
        if day is None:
            day = (self._now().astimezone(self.analytics.ml.tz) - timedelta(days=1)).date()
        await self.analytics.create_daily_snapshot(day)
        return day
