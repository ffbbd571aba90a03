"""Explicit construction of the reminder service graph.

Nothing here is a module-level singleton: ``build_services`` returns one
``ReminderServices`` bundle per process (or per test) and the caller owns
its lifecycle through ``start`` / ``close``.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from modules.reminders.analytics import AnalyticsService
from modules.reminders.behavior import BehaviorService
from modules.reminders.ml import MLService
from modules.reminders.notifications import NotificationService
from modules.reminders.orchestrator import ReminderOrchestrator
from modules.reminders.providers.base import ChannelSender
from modules.reminders.providers.email import EmailSender
from modules.reminders.providers.push import PushSender
from modules.reminders.providers.sms import SmsSender
from modules.reminders.providers.whatsapp import WhatsAppSender
from modules.reminders.sendpulse.bots import BotManager
from modules.reminders.sendpulse.client import SendPulseClient
from modules.reminders.sendpulse.contact_cache import ContactCache
from modules.reminders.sendpulse.rate_limiter import RateLimiter
from modules.reminders.sendpulse.retry import RetryManager
from modules.reminders.sendpulse.templates import TemplateManager
from modules.reminders.sendpulse.webhook import (
    CONVERSATION_CLOSED,
    CONVERSATION_OPENED,
    MESSAGE_NEW,
    MESSAGE_STATUS,
    WebhookHandler,
)
from modules.reminders.store import ReminderStore
from modules.reminders.subscriptions import SubscriptionCommands
from modules.reminders.worker import Scheduler
from shared.config import Settings
from shared.schemas.reminders import WebhookEvent

logger = structlog.get_logger()


@dataclass
class ReminderServices:
    store: ReminderStore
    rate_limiter: RateLimiter
    retry_manager: RetryManager
    contact_cache: ContactCache
    client: SendPulseClient
    bots: BotManager
    templates: TemplateManager
    ml: MLService
    behavior: BehaviorService
    notifications: NotificationService
    orchestrator: ReminderOrchestrator
    analytics: AnalyticsService
    subscriptions: SubscriptionCommands
    scheduler: Scheduler
    webhook: WebhookHandler

    def start(self) -> None:
        self.scheduler.start()

    async def close(self) -> None:
        await self.scheduler.stop()
        # Waiters on the limiter or a retry back-off must not outlive shutdown
        self.rate_limiter.close()
        self.retry_manager.close()
        await self.ml.drain()
        await self.notifications.close()
        await self.client.close()


def _status_of(event: WebhookEvent) -> tuple[str | None, str | None]:
    """(provider message id, delivery status) from a message.status event."""
    message = event.data.get("message") if isinstance(event.data.get("message"), dict) else {}
    message_id = event.data.get("message_id") or message.get("id")
    status = event.data.get("status") or message.get("status")
    return (str(message_id) if message_id else None, str(status) if status else None)


def register_default_handlers(services: ReminderServices) -> None:
    """Feed provider events back into the orchestrator and the contact cache."""

    async def on_message_status(event: WebhookEvent) -> None:
        message_id, status = _status_of(event)
        if not message_id or not status:
            logger.debug("webhook_status_incomplete", contact_id=event.contact_id)
            return
        await services.orchestrator.handle_provider_status(message_id, status, {"event": event.event})

    async def on_conversation_opened(event: WebhookEvent) -> None:
        if event.contact_id:
            services.contact_cache.set_conversation_by_contact_id(event.contact_id, True)

    async def on_conversation_closed(event: WebhookEvent) -> None:
        if event.contact_id:
            services.contact_cache.set_conversation_by_contact_id(event.contact_id, False)

    services.webhook.register(MESSAGE_STATUS, on_message_status)
    services.webhook.register(CONVERSATION_OPENED, on_conversation_opened)
    services.webhook.register(CONVERSATION_CLOSED, on_conversation_closed)
    # An inbound message opens a fresh 24h window
    services.webhook.register(MESSAGE_NEW, on_conversation_opened)


def build_senders(
    settings: Settings,
    client: SendPulseClient,
    bots: BotManager,
    templates: TemplateManager,
    retry_manager: RetryManager,
    redis,
) -> dict[str, ChannelSender]:
    senders: list[ChannelSender] = [
        EmailSender(
            settings.email_api_url,
            settings.email_api_key,
            settings.email_from,
            retry_manager=retry_manager,
        ),
        WhatsAppSender(client, bots, templates),
        SmsSender(client, settings.sendpulse_sms_sender),
        PushSender(redis),
    ]
    return {s.channel: s for s in senders}


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis,
) -> ReminderServices:
    """Wire every reminder component from settings."""
    store = ReminderStore(session_factory)

    rate_limiter = RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        burst_size=settings.rate_limit_burst_size,
    )
    retry_manager = RetryManager(
        max_retries=settings.retry_max_retries,
        initial_delay=settings.retry_initial_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
        backoff_multiplier=settings.retry_backoff_multiplier,
    )
    contact_cache = ContactCache(
        ttl_seconds=settings.contact_cache_ttl_seconds,
        conversation_freshness_seconds=settings.conversation_freshness_seconds,
    )
    client = SendPulseClient(
        settings.sendpulse_client_id,
        settings.sendpulse_client_secret,
        rate_limiter=rate_limiter,
        retry_manager=retry_manager,
        contact_cache=contact_cache,
        base_url=settings.sendpulse_api_url,
    )
    bots = BotManager(client, default_bot_id=settings.sendpulse_bot_id)
    templates = TemplateManager(client)

    ml = MLService(store, settings)
    behavior = BehaviorService(store, ml)
    notifications = NotificationService(
        store, build_senders(settings, client, bots, templates, retry_manager, redis)
    )
    orchestrator = ReminderOrchestrator(
        store,
        ml,
        behavior,
        notifications,
        send_concurrency=settings.reminder_send_concurrency,
    )
    analytics = AnalyticsService(store, ml)
    scheduler = Scheduler(
        orchestrator,
        analytics,
        interval_seconds=settings.reminder_scheduler_interval_seconds,
        batch_size=settings.reminder_batch_size,
        caches=[ml, contact_cache],
    )

    services = ReminderServices(
        store=store,
        rate_limiter=rate_limiter,
        retry_manager=retry_manager,
        contact_cache=contact_cache,
        client=client,
        bots=bots,
        templates=templates,
        ml=ml,
        behavior=behavior,
        notifications=notifications,
        orchestrator=orchestrator,
        analytics=analytics,
        subscriptions=SubscriptionCommands(store),
        scheduler=scheduler,
        webhook=WebhookHandler(token=settings.sendpulse_webhook_token),
    )
    register_default_handlers(services)
    return services
