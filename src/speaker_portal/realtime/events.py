"""
Live event names, topic naming and event builders.

Every outbound event has the same envelope:
{
    "type": str,           # Event type identifier
    "schema_version": int, # Schema version (currently 1)
    "timestamp": str,      # ISO 8601 timestamp
    "payload": dict        # Event-specific data
}
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from ..domain.models import Message, Notification


class EventType(str, Enum):
    """Outbound event types."""

    NEW_MESSAGE = "new_message"
    MESSAGE_NOTIFICATION = "message_notification"
    NOTIFICATION = "notification"
    USER_TYPING = "user_typing"
    USER_STOPPED_TYPING = "user_stopped_typing"
    ROOMS_JOINED = "rooms_joined"
    ERROR = "error"


class ClientEvent(str, Enum):
    """Inbound frame types accepted from a connected client."""

    JOIN_CONVERSATION = "join_conversation"
    LEAVE_CONVERSATION = "leave_conversation"
    JOIN_CONVERSATIONS = "join_conversations"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"


SCHEMA_VERSION = 1


def user_topic(user_id: UUID) -> str:
    return f"user:{user_id}"


def conversation_topic(conversation_id: UUID) -> str:
    return f"conversation:{conversation_id}"


def build_event(event_type: EventType, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": event_type.value,
        "schema_version": SCHEMA_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }


def build_new_message_event(message: Message) -> Dict[str, Any]:
    return build_event(EventType.NEW_MESSAGE, {"message": message.model_dump(mode="json")})


def build_message_notification_event(
    message: Message, sender_name: Optional[str]
) -> Dict[str, Any]:
    """Lightweight ping for the receiver's personal channel."""
    return build_event(
        EventType.MESSAGE_NOTIFICATION,
        {
            "conversation_id": str(message.conversation_id),
            "message_id": str(message.id),
            "sender": {"id": str(message.sender_id), "name": sender_name},
            "content": message.content,
        },
    )


def build_notification_event(notification: Notification) -> Dict[str, Any]:
    return build_event(
        EventType.NOTIFICATION, {"notification": notification.model_dump(mode="json")}
    )


def build_typing_event(
    typing: bool, conversation_id: UUID, user_id: UUID, user_name: Optional[str] = None
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "conversation_id": str(conversation_id),
        "user_id": str(user_id),
    }
    if typing:
        payload["user_name"] = user_name
        return build_event(EventType.USER_TYPING, payload)
    return build_event(EventType.USER_STOPPED_TYPING, payload)


def build_error_event(code: str, detail: str) -> Dict[str, Any]:
    return build_event(EventType.ERROR, {"code": code, "detail": detail})


def build_rooms_joined_event(conversation_ids: List[UUID]) -> Dict[str, Any]:
    """Acknowledges a join so the client knows room events will now arrive."""
    return build_event(
        EventType.ROOMS_JOINED, {"conversation_ids": [str(cid) for cid in conversation_ids]}
    )
