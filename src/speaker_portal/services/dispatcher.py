"""Write path for new messages."""

from typing import Optional
from uuid import UUID

import structlog

from ..domain.models import Message, MessageKind
from ..metrics import MESSAGES_SENT
from ..realtime.bus import LiveBus
from ..realtime.events import (
    build_message_notification_event,
    build_new_message_event,
    conversation_topic,
    user_topic,
)
from ..repositories.base import Store

logger = structlog.get_logger()


class MessageDispatcher:
    """Persists a message, then fans it out without waiting on delivery.

    Storage errors propagate to the caller. Live delivery is handed to the
    bus and can only fail in the background, where it is logged.
    """

    def __init__(self, store: Store, bus: LiveBus) -> None:
        self.store = store
        self.bus = bus

    async def send(
        self,
        sender_id: UUID,
        conversation_id: UUID,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        receiver_id: Optional[UUID] = None,
    ) -> Message:
        message = await self.store.add_message(
            Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                kind=kind,
            )
        )
        MESSAGES_SENT.inc()
        logger.info(
            "message_sent",
            conversation_id=str(conversation_id),
            message_id=str(message.id),
            direct=receiver_id is not None,
        )

        # Senders never get their own events echoed, on any device.
        self.bus.emit(
            conversation_topic(conversation_id),
            build_new_message_event(message),
            exclude_user=sender_id,
        )
        if receiver_id is not None:
            self.bus.delivery.submit(user_topic(receiver_id), self._ping_receiver, message)
        return message

    async def _ping_receiver(self, message: Message) -> None:
        # Runs on the delivery queue, so a failed sender lookup only drops the ping.
        sender = await self.store.get_user(message.sender_id)
        await self.bus.publish(
            user_topic(message.receiver_id),
            build_message_notification_event(message, sender.name if sender else None),
        )
