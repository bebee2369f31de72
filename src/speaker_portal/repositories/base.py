"""Base repository interfaces."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from uuid import UUID

from ..domain.models import Conversation, EventSummary, Message, Notification, User


class UserDirectory(ABC):
    """Resolves user identities, e.g. email targets for the mailer."""

    @abstractmethod
    async def get_user(self, user_id: UUID) -> Optional[User]:
        """Retrieve a user by ID."""
        pass


class EventStore(ABC):
    """Read access to scheduled events."""

    @abstractmethod
    async def get_event(self, event_id: UUID) -> Optional[EventSummary]:
        """Retrieve an event with its confirmed attendees."""
        pass


class Store(UserDirectory):
    """Abstract persistence for conversations, messages and notifications.

    Implementations raise ``StorageError`` on persistence failures and
    ``NotFound`` when a write references a missing parent entity.
    """

    @abstractmethod
    async def add_user(self, user: User) -> User:
        """Register a user."""
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: UUID) -> Optional[Conversation]:
        """Retrieve a conversation by ID."""
        pass

    @abstractmethod
    async def list_conversations_for_user(self, user_id: UUID) -> List[Conversation]:
        """Conversations the user participates in, most recent activity first."""
        pass

    @abstractmethod
    async def get_or_create_direct_conversation(
        self, first: UUID, second: UUID
    ) -> Tuple[Conversation, bool]:
        """Atomically find or create the direct conversation of an unordered pair.

        Returns the conversation and whether it was created by this call.
        """
        pass

    @abstractmethod
    async def create_group_conversation(
        self, participant_ids: Sequence[UUID], title: Optional[str] = None
    ) -> Conversation:
        """Create a group conversation."""
        pass

    @abstractmethod
    async def add_message(self, message: Message) -> Message:
        """Append a message and bump the conversation's last activity."""
        pass

    @abstractmethod
    async def get_messages(
        self, conversation_id: UUID, limit: int = 50, offset: int = 0
    ) -> List[Message]:
        """Page of messages counted from the newest, returned oldest first."""
        pass

    @abstractmethod
    async def read_messages(
        self,
        conversation_id: UUID,
        reader_id: UUID,
        read_at: datetime,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Message]:
        """Fetch a page and, in the same critical section, mark every unread
        message not sent by ``reader_id`` as read and advance the reader's
        last-read timestamp."""
        pass

    @abstractmethod
    async def last_message(self, conversation_id: UUID) -> Optional[Message]:
        pass

    @abstractmethod
    async def count_unread_messages(self, conversation_id: UUID, user_id: UUID) -> int:
        """Unread messages in the conversation authored by someone else."""
        pass

    @abstractmethod
    async def add_notification(self, notification: Notification) -> Notification:
        pass

    @abstractmethod
    async def get_notification(self, notification_id: UUID) -> Optional[Notification]:
        pass

    @abstractmethod
    async def list_notifications(
        self, user_id: UUID, unread_only: bool = False, limit: int = 20, offset: int = 0
    ) -> List[Notification]:
        """Notifications of a user, newest first."""
        pass

    @abstractmethod
    async def count_notifications(self, user_id: UUID, unread_only: bool = False) -> int:
        pass

    @abstractmethod
    async def mark_notification_read(self, notification_id: UUID) -> Notification:
        pass

    @abstractmethod
    async def mark_all_notifications_read(self, user_id: UUID) -> int:
        """Flag every unread notification of the user; returns how many changed."""
        pass

    @abstractmethod
    async def delete_notification(self, notification_id: UUID) -> None:
        pass
