"""Topic publishing for live events, in-process or relayed through Redis."""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from uuid import UUID

import redis.asyncio as redis
import structlog

from ..domain.errors import DeliveryWarning
from ..metrics import LIVE_DELIVERY_FAILURES
from .channel import LiveChannel
from .delivery import DeliveryQueue
from .presence import PresenceRegistry

logger = structlog.get_logger()


class LiveBus(ABC):
    """Publishes events to named topics.

    ``emit`` is the entry point for services: it hands the publish to the
    delivery queue and returns immediately. ``publish`` does the actual work
    and is what the queue runs.
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        delivery: DeliveryQueue,
        send_timeout: float = 2.0,
    ) -> None:
        self.registry = registry
        self.delivery = delivery
        self.send_timeout = send_timeout

    def emit(self, topic: str, event: Dict[str, Any], exclude_user: Optional[UUID] = None) -> None:
        self.delivery.submit(topic, self.publish, topic, event, exclude_user)

    @abstractmethod
    async def publish(
        self, topic: str, event: Dict[str, Any], exclude_user: Optional[UUID] = None
    ) -> None:
        pass

    async def start(self) -> None:
        return

    async def stop(self) -> None:
        return

    async def deliver_local(
        self, topic: str, event: Dict[str, Any], exclude_user: Optional[UUID] = None
    ) -> int:
        """Push to this process's subscribers of ``topic``; returns successful sends."""
        channels = [
            c for c in self.registry.subscribers(topic) if exclude_user is None or c.user_id != exclude_user
        ]
        if not channels:
            return 0
        results = await asyncio.gather(*(self._send(c, event) for c in channels))
        return sum(1 for ok in results if ok)

    async def _send(self, channel: LiveChannel, event: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(channel.send(event), timeout=self.send_timeout)
            return True
        except Exception as e:
            warning = DeliveryWarning(str(e) or type(e).__name__, target=channel.id)
            LIVE_DELIVERY_FAILURES.inc()
            logger.warning(
                "delivery_warning",
                target=warning.target,
                user_id=str(channel.user_id),
                event_type=event.get("type"),
                error=warning.message,
            )
            return False


class LocalBus(LiveBus):
    """Single-process bus: topics resolve against the local registry only."""

    async def publish(
        self, topic: str, event: Dict[str, Any], exclude_user: Optional[UUID] = None
    ) -> None:
        await self.deliver_local(topic, event, exclude_user)


class RedisBus(LiveBus):
    """Relays every publish through Redis pub/sub so each process can fan out
    to the channels attached to it."""

    def __init__(
        self,
        registry: PresenceRegistry,
        delivery: DeliveryQueue,
        url: Optional[str] = None,
        prefix: str = "portal:",
        send_timeout: float = 2.0,
        client: Optional[redis.Redis] = None,
    ) -> None:
        super().__init__(registry, delivery, send_timeout)
        if client is None and not url:
            raise ValueError("RedisBus needs a url or a client")
        self._redis = client if client is not None else redis.from_url(url)
        self._prefix = prefix
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None

    async def publish(
        self, topic: str, event: Dict[str, Any], exclude_user: Optional[UUID] = None
    ) -> None:
        envelope = {
            "topic": topic,
            "event": event,
            "exclude_user": str(exclude_user) if exclude_user else None,
        }
        await self._redis.publish(f"{self._prefix}{topic}", json.dumps(envelope))

    async def start(self) -> None:
        if self._listener is not None:
            return
        self._pubsub = self._redis.pubsub()
        await self._pubsub.psubscribe(f"{self._prefix}*")
        self._listener = asyncio.create_task(self._listen())
        logger.info("redis_bus_started", prefix=self._prefix)

    async def _listen(self) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if not message or message.get("type") != "pmessage":
                    continue
                data = message.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                envelope = json.loads(data)
                exclude = envelope.get("exclude_user")
                await self.deliver_local(
                    envelope["topic"], envelope["event"], UUID(exclude) if exclude else None
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("redis_bus_listen_error", error=str(e))
                await asyncio.sleep(0.5)

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.punsubscribe(f"{self._prefix}*")
            await self._pubsub.aclose()
            self._pubsub = None
        await self._redis.aclose()
        logger.info("redis_bus_stopped")


def create_bus(
    registry: PresenceRegistry, delivery: DeliveryQueue, redis_url: Optional[str] = None
) -> LiveBus:
    if redis_url:
        return RedisBus(registry, delivery, url=redis_url)
    return LocalBus(registry, delivery)
