"""Inbound side of live channels: authentication and client frames."""

import json
from typing import Any, Dict
from uuid import UUID

import structlog

from ..config import Settings
from ..domain.errors import NotAuthorized, NotFound, PortalError, ValidationError
from ..domain.models import User
from ..repositories.base import Store
from ..services.auth import authenticate
from .bus import LiveBus
from .channel import LiveChannel
from .events import (
    ClientEvent,
    build_error_event,
    build_rooms_joined_event,
    build_typing_event,
    conversation_topic,
)
from .presence import PresenceRegistry

logger = structlog.get_logger()

# Close code sent when the handshake credential is missing or invalid.
AUTH_FAILURE_CODE = 4401


class LiveGateway:
    def __init__(
        self, store: Store, registry: PresenceRegistry, bus: LiveBus, settings: Settings
    ) -> None:
        self.store = store
        self.registry = registry
        self.bus = bus
        self.settings = settings

    async def authenticate(self, token: str) -> User:
        return await authenticate(token, self.settings, self.store)

    def connect(self, channel: LiveChannel) -> None:
        self.registry.attach(channel)

    def disconnect(self, channel: LiveChannel) -> None:
        self.registry.detach(channel)

    async def handle_text(self, channel: LiveChannel, text: str) -> None:
        try:
            frame = json.loads(text)
        except ValueError:
            await channel.send(build_error_event("invalid_frame", "Frames must be JSON objects"))
            return
        await self.handle(channel, frame)

    async def handle(self, channel: LiveChannel, frame: Any) -> None:
        """Apply one client frame; errors go back to the channel as events."""
        try:
            if not isinstance(frame, dict):
                raise ValidationError("Frames must be JSON objects")
            try:
                event = ClientEvent(frame.get("type"))
            except ValueError:
                raise ValidationError(f"Unknown frame type: {frame.get('type')!r}")

            if event is ClientEvent.JOIN_CONVERSATIONS:
                await self.join_all(channel)
                return

            conversation_id = self._conversation_id(frame)
            if event is ClientEvent.JOIN_CONVERSATION:
                await self.join(channel, conversation_id)
            elif event is ClientEvent.LEAVE_CONVERSATION:
                self.registry.leave(channel, conversation_id)
            else:
                self.typing(channel, conversation_id, event is ClientEvent.TYPING_START)
        except PortalError as e:
            logger.info(
                "live_frame_rejected",
                channel_id=channel.id,
                error=e.message,
                code=type(e).__name__,
            )
            await channel.send(build_error_event(type(e).__name__, e.message))

    @staticmethod
    def _conversation_id(frame: Dict[str, Any]) -> UUID:
        raw = frame.get("conversation_id")
        try:
            return UUID(str(raw))
        except ValueError:
            raise ValidationError("conversation_id is required")

    async def join(self, channel: LiveChannel, conversation_id: UUID) -> None:
        conversation = await self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        if not conversation.has_participant(channel.user_id):
            raise NotAuthorized("Not a participant of this conversation")
        if self.registry.join(channel, conversation_id):
            await channel.send(build_rooms_joined_event([conversation_id]))

    async def join_all(self, channel: LiveChannel) -> int:
        conversations = await self.store.list_conversations_for_user(channel.user_id)
        joined = [c.id for c in conversations if self.registry.join(channel, c.id)]
        logger.info("conversations_joined", channel_id=channel.id, count=len(joined))
        await channel.send(build_rooms_joined_event(joined))
        return len(joined)

    def typing(self, channel: LiveChannel, conversation_id: UUID, started: bool) -> None:
        if not self.registry.is_member(channel, conversation_id):
            raise NotAuthorized("Join the conversation before sending typing events")
        self.bus.emit(
            conversation_topic(conversation_id),
            build_typing_event(started, conversation_id, channel.user_id, channel.user_name),
            exclude_user=channel.user_id,
        )
