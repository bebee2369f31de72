"""In-memory repository implementation."""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

import structlog

from ..domain.errors import NotFound
from ..domain.models import (
    Conversation,
    EventSummary,
    Message,
    Notification,
    Participant,
    User,
    direct_pair_key,
)
from .base import EventStore, Store

logger = structlog.get_logger()


class InMemoryStore(Store):
    """Process-local store; every mutation runs under a single asyncio lock.

    Returned models are copies, so callers cannot change stored state
    without going through the store.
    """

    def __init__(self) -> None:
        self._users: Dict[UUID, User] = {}
        self._conversations: Dict[UUID, Conversation] = {}
        self._direct: Dict[Tuple[UUID, UUID], UUID] = {}
        self._messages: Dict[UUID, List[Message]] = {}
        self._notifications: Dict[UUID, Notification] = {}
        self._lock = asyncio.Lock()
        logger.info("store_initialized", backend="memory")

    async def add_user(self, user: User) -> User:
        async with self._lock:
            self._users[user.id] = user.model_copy()
        return user

    async def get_user(self, user_id: UUID) -> Optional[User]:
        async with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                logger.debug("conversation_not_found", conversation_id=str(conversation_id))
                return None
            return conversation.model_copy(deep=True)

    async def list_conversations_for_user(self, user_id: UUID) -> List[Conversation]:
        async with self._lock:
            conversations = [
                c for c in self._conversations.values() if c.has_participant(user_id)
            ]
            conversations.sort(key=lambda c: c.updated_at, reverse=True)
            return [c.model_copy(deep=True) for c in conversations]

    async def get_or_create_direct_conversation(
        self, first: UUID, second: UUID
    ) -> Tuple[Conversation, bool]:
        key = direct_pair_key(first, second)
        async with self._lock:
            existing_id = self._direct.get(key)
            if existing_id is not None:
                return self._conversations[existing_id].model_copy(deep=True), False

            conversation_id = uuid4()
            conversation = Conversation(
                id=conversation_id,
                is_group=False,
                participants=[
                    Participant(conversation_id=conversation_id, user_id=first),
                    Participant(conversation_id=conversation_id, user_id=second),
                ],
            )
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
            self._direct[key] = conversation.id
            logger.info(
                "direct_conversation_created",
                conversation_id=str(conversation.id),
                participants=[str(first), str(second)],
            )
            return conversation.model_copy(deep=True), True

    async def create_group_conversation(
        self, participant_ids: Sequence[UUID], title: Optional[str] = None
    ) -> Conversation:
        conversation_id = uuid4()
        conversation = Conversation(
            id=conversation_id,
            title=title,
            is_group=True,
            participants=[
                Participant(conversation_id=conversation_id, user_id=user_id)
                for user_id in dict.fromkeys(participant_ids)
            ],
        )
        async with self._lock:
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
            logger.info(
                "group_conversation_created",
                conversation_id=str(conversation.id),
                participant_count=len(conversation.participants),
            )
        return conversation.model_copy(deep=True)

    async def add_message(self, message: Message) -> Message:
        async with self._lock:
            conversation = self._conversations.get(message.conversation_id)
            if conversation is None:
                logger.error(
                    "conversation_not_found_for_message",
                    conversation_id=str(message.conversation_id),
                )
                raise NotFound(f"Conversation {message.conversation_id} not found")

            stored = message.model_copy()
            self._messages[message.conversation_id].append(stored)
            conversation.updated_at = max(conversation.updated_at, stored.created_at)
            logger.debug(
                "message_added",
                conversation_id=str(message.conversation_id),
                message_id=str(message.id),
            )
            return stored.model_copy()

    def _page(self, conversation_id: UUID, limit: int, offset: int) -> List[Message]:
        newest_first = list(reversed(self._messages.get(conversation_id, [])))
        return list(reversed(newest_first[offset : offset + limit]))

    async def get_messages(
        self, conversation_id: UUID, limit: int = 50, offset: int = 0
    ) -> List[Message]:
        async with self._lock:
            if conversation_id not in self._conversations:
                raise NotFound(f"Conversation {conversation_id} not found")
            return [m.model_copy() for m in self._page(conversation_id, limit, offset)]

    async def read_messages(
        self,
        conversation_id: UUID,
        reader_id: UUID,
        read_at: datetime,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Message]:
        async with self._lock:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                raise NotFound(f"Conversation {conversation_id} not found")

            marked = 0
            for message in self._messages[conversation_id]:
                if message.sender_id != reader_id and not message.is_read:
                    message.is_read = True
                    marked += 1

            participant = conversation.participant(reader_id)
            if participant is not None and (
                participant.last_read_at is None or participant.last_read_at < read_at
            ):
                participant.last_read_at = read_at

            if marked:
                logger.info(
                    "messages_marked_read",
                    conversation_id=str(conversation_id),
                    reader_id=str(reader_id),
                    count=marked,
                )
            return [m.model_copy() for m in self._page(conversation_id, limit, offset)]

    async def last_message(self, conversation_id: UUID) -> Optional[Message]:
        async with self._lock:
            messages = self._messages.get(conversation_id)
            return messages[-1].model_copy() if messages else None

    async def count_unread_messages(self, conversation_id: UUID, user_id: UUID) -> int:
        async with self._lock:
            return sum(
                1
                for m in self._messages.get(conversation_id, [])
                if m.sender_id != user_id and not m.is_read
            )

    async def add_notification(self, notification: Notification) -> Notification:
        async with self._lock:
            self._notifications[notification.id] = notification.model_copy()
            return notification.model_copy()

    async def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        async with self._lock:
            notification = self._notifications.get(notification_id)
            return notification.model_copy() if notification else None

    def _notifications_of(self, user_id: UUID, unread_only: bool) -> List[Notification]:
        return [
            n
            for n in self._notifications.values()
            if n.user_id == user_id and not (unread_only and n.is_read)
        ]

    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, limit: int = 20, offset: int = 0
    ) -> List[Notification]:
        async with self._lock:
            notifications = sorted(
                self._notifications_of(user_id, unread_only),
                key=lambda n: n.created_at,
                reverse=True,
            )
            return [n.model_copy() for n in notifications[offset : offset + limit]]

    async def count_notifications(self, user_id: UUID, unread_only: bool = False) -> int:
        async with self._lock:
            return len(self._notifications_of(user_id, unread_only))

    async def mark_notification_read(self, notification_id: UUID) -> Notification:
        async with self._lock:
            notification = self._notifications.get(notification_id)
            if notification is None:
                raise NotFound(f"Notification {notification_id} not found")
            notification.is_read = True
            return notification.model_copy()

    async def mark_all_notifications_read(self, user_id: UUID) -> int:
        async with self._lock:
            unread = self._notifications_of(user_id, unread_only=True)
            for notification in unread:
                notification.is_read = True
            return len(unread)

    async def delete_notification(self, notification_id: UUID) -> None:
        async with self._lock:
            if self._notifications.pop(notification_id, None) is None:
                raise NotFound(f"Notification {notification_id} not found")


class InMemoryEventStore(EventStore):
    """Event lookups backed by a dict; events are owned by the scheduling side."""

    def __init__(self) -> None:
        self._events: Dict[UUID, EventSummary] = {}

    def add_event(self, event: EventSummary) -> EventSummary:
        self._events[event.id] = event
        return event

    async def get_event(self, event_id: UUID) -> Optional[EventSummary]:
        return self._events.get(event_id)
