"""Conversation resolution, listing and the view-driven read path."""

from typing import List, Optional, Sequence
from uuid import UUID

import structlog

from ..domain.errors import NotAuthorized, NotFound, ValidationError
from ..domain.models import (
    Conversation,
    ConversationSummary,
    Message,
    MessageKind,
    utcnow,
)
from ..repositories.base import Store
from .dispatcher import MessageDispatcher

logger = structlog.get_logger()


class ConversationResolver:
    """Maps a send intent to the conversation it targets."""

    def __init__(self, store: Store) -> None:
        self.store = store

    async def resolve(
        self,
        sender_id: UUID,
        conversation_id: Optional[UUID] = None,
        receiver_id: Optional[UUID] = None,
    ) -> UUID:
        if conversation_id is not None:
            conversation = await self.store.get_conversation(conversation_id)
            if conversation is None:
                raise NotFound("Conversation not found")
            if not conversation.has_participant(sender_id):
                logger.warning(
                    "resolve_not_participant",
                    conversation_id=str(conversation_id),
                    user_id=str(sender_id),
                )
                raise NotAuthorized("Not authorized to post in this conversation")
            return conversation.id

        if receiver_id is None:
            raise ValidationError("Conversation ID or receiver ID required")
        if receiver_id == sender_id:
            raise ValidationError("Cannot start a direct conversation with yourself")
        if await self.store.get_user(receiver_id) is None:
            raise NotFound("Receiver not found")

        conversation, created = await self.store.get_or_create_direct_conversation(
            sender_id, receiver_id
        )
        logger.info(
            "direct_conversation_resolved",
            conversation_id=str(conversation.id),
            created=created,
        )
        return conversation.id


class ConversationService:
    """Boundary-facing operations on conversations and their messages."""

    def __init__(
        self, store: Store, resolver: ConversationResolver, dispatcher: MessageDispatcher
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.dispatcher = dispatcher

    async def _participating(self, user_id: UUID, conversation_id: UUID) -> Conversation:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        if not conversation.has_participant(user_id):
            raise NotAuthorized("Not authorized to view this conversation")
        return conversation

    async def send_message(
        self,
        sender_id: UUID,
        content: str,
        conversation_id: Optional[UUID] = None,
        receiver_id: Optional[UUID] = None,
        kind: MessageKind = MessageKind.TEXT,
    ) -> Message:
        """Validate the intent, resolve its conversation and dispatch the message."""
        if (conversation_id is None) == (receiver_id is None):
            raise ValidationError("Exactly one of conversation_id or receiver_id is required")
        if not content or not content.strip():
            raise ValidationError("Message content must not be empty")

        resolved = await self.resolver.resolve(
            sender_id, conversation_id=conversation_id, receiver_id=receiver_id
        )
        return await self.dispatcher.send(
            sender_id, resolved, content, kind=kind, receiver_id=receiver_id
        )

    async def get_messages(
        self, user_id: UUID, conversation_id: UUID, page: int = 1, limit: int = 50
    ) -> List[Message]:
        """Fetch a page of history; viewing marks other people's messages read."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        await self._participating(user_id, conversation_id)
        return await self.store.read_messages(
            conversation_id,
            reader_id=user_id,
            read_at=utcnow(),
            limit=limit,
            offset=(page - 1) * limit,
        )

    async def unread_count(self, user_id: UUID, conversation_id: UUID) -> int:
        await self._participating(user_id, conversation_id)
        return await self.store.count_unread_messages(conversation_id, user_id)

    async def list_conversations(self, user_id: UUID) -> List[ConversationSummary]:
        summaries = []
        for conversation in await self.store.list_conversations_for_user(user_id):
            summaries.append(
                ConversationSummary(
                    id=conversation.id,
                    title=conversation.title,
                    is_group=conversation.is_group,
                    participant_ids=[
                        p.user_id for p in conversation.participants if p.user_id != user_id
                    ],
                    last_message=await self.store.last_message(conversation.id),
                    unread_count=await self.store.count_unread_messages(conversation.id, user_id),
                    updated_at=conversation.updated_at,
                )
            )
        return summaries

    async def create_group(
        self, creator_id: UUID, participant_ids: Sequence[UUID], title: Optional[str] = None
    ) -> Conversation:
        others = [uid for uid in dict.fromkeys(participant_ids) if uid != creator_id]
        if not others:
            raise ValidationError("Participant IDs required")
        for user_id in others:
            if await self.store.get_user(user_id) is None:
                raise NotFound(f"User {user_id} not found")
        conversation = await self.store.create_group_conversation([creator_id, *others], title=title)
        logger.info(
            "group_created",
            conversation_id=str(conversation.id),
            creator_id=str(creator_id),
            participant_count=len(others) + 1,
        )
        return conversation
