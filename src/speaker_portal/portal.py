"""Wiring of the realtime core for one application instance."""

from typing import Optional

import structlog

from .config import Settings
from .realtime.bus import LiveBus, create_bus
from .realtime.delivery import DeliveryQueue
from .realtime.gateway import LiveGateway
from .realtime.presence import PresenceRegistry
from .repositories.base import EventStore, Store
from .repositories.memory import InMemoryEventStore, InMemoryStore
from .services.conversations import ConversationResolver, ConversationService
from .services.dispatcher import MessageDispatcher
from .services.mailer import ConsoleMailer, Mailer, ResendMailer
from .services.notifications import NotificationCenter

logger = structlog.get_logger()


class Portal:
    """Owns the store, the presence registry and every service built on them.

    Created at process start; ``start``/``stop`` bracket the background
    machinery (bus listener, delivery queue).
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[Store] = None,
        events: Optional[EventStore] = None,
        mailer: Optional[Mailer] = None,
    ) -> None:
        self.settings = settings
        self.store = store or InMemoryStore()
        self.events = events or InMemoryEventStore()
        self.mailer = mailer or self._default_mailer(settings)

        self.registry = PresenceRegistry()
        self.delivery = DeliveryQueue(job_timeout=settings.delivery_timeout)
        self.bus: LiveBus = create_bus(self.registry, self.delivery, settings.redis_url)

        self.resolver = ConversationResolver(self.store)
        self.dispatcher = MessageDispatcher(self.store, self.bus)
        self.conversations = ConversationService(self.store, self.resolver, self.dispatcher)
        self.notifications = NotificationCenter(
            self.store,
            self.bus,
            self.mailer,
            directory=self.store,
            events=self.events,
            email_timeout=settings.email_timeout,
        )
        self.gateway = LiveGateway(self.store, self.registry, self.bus, settings)

    @staticmethod
    def _default_mailer(settings: Settings) -> Mailer:
        if settings.resend_api_key:
            return ResendMailer(settings.resend_api_key, settings.mail_from)
        logger.info("mailer_console_mode")
        return ConsoleMailer()

    async def start(self) -> None:
        await self.bus.start()

    async def stop(self) -> None:
        await self.delivery.wait_idle()
        await self.delivery.cleanup()
        await self.bus.stop()
