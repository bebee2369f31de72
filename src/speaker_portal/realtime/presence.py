"""Registry of attached live channels and their topic subscriptions."""

from typing import Dict, List, Set
from uuid import UUID

import structlog

from ..metrics import LIVE_CHANNELS
from .channel import LiveChannel
from .events import conversation_topic, user_topic

logger = structlog.get_logger()


class PresenceRegistry:
    """Who is connected and which topics each channel listens to.

    Owned by one application instance. Methods never await, so every
    mutation is atomic with respect to the event loop.
    """

    def __init__(self) -> None:
        self._channels: Dict[str, LiveChannel] = {}
        self._user_channels: Dict[UUID, Set[str]] = {}
        self._topics: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}

    def attach(self, channel: LiveChannel) -> None:
        """Register a freshly authenticated channel on its personal topic."""
        self._channels[channel.id] = channel
        self._user_channels.setdefault(channel.user_id, set()).add(channel.id)
        self._memberships[channel.id] = set()
        self._subscribe(channel.id, user_topic(channel.user_id))
        LIVE_CHANNELS.inc()
        logger.info("channel_attached", channel_id=channel.id, user_id=str(channel.user_id))

    def detach(self, channel: LiveChannel) -> None:
        """Drop the channel and every subscription it held."""
        if self._channels.pop(channel.id, None) is None:
            return
        for topic in self._memberships.pop(channel.id, set()):
            subscribers = self._topics.get(topic)
            if subscribers is not None:
                subscribers.discard(channel.id)
                if not subscribers:
                    del self._topics[topic]
        user_channels = self._user_channels.get(channel.user_id)
        if user_channels is not None:
            user_channels.discard(channel.id)
            if not user_channels:
                del self._user_channels[channel.user_id]
        LIVE_CHANNELS.dec()
        logger.info("channel_detached", channel_id=channel.id, user_id=str(channel.user_id))

    def _subscribe(self, channel_id: str, topic: str) -> None:
        self._topics.setdefault(topic, set()).add(channel_id)
        self._memberships[channel_id].add(topic)

    def join(self, channel: LiveChannel, conversation_id: UUID) -> bool:
        """Subscribe to a conversation room; False if the channel already detached."""
        if channel.id not in self._channels:
            return False
        self._subscribe(channel.id, conversation_topic(conversation_id))
        return True

    def leave(self, channel: LiveChannel, conversation_id: UUID) -> None:
        topic = conversation_topic(conversation_id)
        self._memberships.get(channel.id, set()).discard(topic)
        subscribers = self._topics.get(topic)
        if subscribers is not None:
            subscribers.discard(channel.id)
            if not subscribers:
                del self._topics[topic]

    def is_member(self, channel: LiveChannel, conversation_id: UUID) -> bool:
        return conversation_topic(conversation_id) in self._memberships.get(channel.id, set())

    def subscribers(self, topic: str) -> List[LiveChannel]:
        return [self._channels[cid] for cid in self._topics.get(topic, set()) if cid in self._channels]

    def topics_of(self, channel: LiveChannel) -> Set[str]:
        return set(self._memberships.get(channel.id, set()))

    def is_online(self, user_id: UUID) -> bool:
        return bool(self._user_channels.get(user_id))

    def __len__(self) -> int:
        return len(self._channels)
