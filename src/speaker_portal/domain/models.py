"""Domain models for the speaker portal realtime core."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Set, Tuple, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    SPEAKER = "speaker"
    ORGANIZER = "organizer"
    ADMIN = "admin"


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class NotificationKind(str, Enum):
    REMINDER = "reminder"
    INVITATION = "invitation"
    MESSAGE_RECEIVED = "message_received"
    RSVP_UPDATE = "rsvp_update"
    CANCELLED = "cancelled"
    SYSTEM = "system"


class User(BaseModel):
    """Portal member as seen by the realtime core."""

    id: UUID = Field(default_factory=uuid4)
    email: str
    name: str
    role: UserRole = UserRole.SPEAKER


class Participant(BaseModel):
    """A user's membership in a conversation, with per-user read progress."""

    conversation_id: UUID
    user_id: UUID
    joined_at: datetime = Field(default_factory=utcnow)
    last_read_at: Optional[datetime] = None


class Conversation(BaseModel):
    """Direct (two participants) or group conversation."""

    id: UUID = Field(default_factory=uuid4)
    title: Optional[str] = None
    is_group: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    participants: List[Participant] = []

    @model_validator(mode="after")
    def _check_participants(self) -> "Conversation":
        user_ids = [p.user_id for p in self.participants]
        if len(set(user_ids)) != len(user_ids):
            raise ValueError("participants must be unique per conversation")
        if not self.is_group and len(user_ids) != 2:
            raise ValueError("a direct conversation needs exactly two participants")
        return self

    @property
    def participant_ids(self) -> Set[UUID]:
        return {p.user_id for p in self.participants}

    def has_participant(self, user_id: UUID) -> bool:
        return user_id in self.participant_ids

    def participant(self, user_id: UUID) -> Optional[Participant]:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None


class Message(BaseModel):
    """Message model. Only ``is_read`` changes after creation."""

    id: UUID = Field(default_factory=uuid4)
    conversation_id: UUID
    sender_id: UUID
    receiver_id: Optional[UUID] = None
    content: str
    kind: MessageKind = MessageKind.TEXT
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class ReminderPayload(BaseModel):
    kind: Literal["reminder"] = "reminder"
    event_id: UUID
    event_title: str
    event_date: datetime
    meeting_link: Optional[str] = None
    hours_until_event: int


class InvitationPayload(BaseModel):
    kind: Literal["invitation"] = "invitation"
    event_id: UUID
    event_title: str
    event_date: datetime


class MessageReceivedPayload(BaseModel):
    kind: Literal["message_received"] = "message_received"
    conversation_id: UUID
    message_id: UUID
    sender_id: UUID


class RsvpUpdatePayload(BaseModel):
    kind: Literal["rsvp_update"] = "rsvp_update"
    event_id: UUID
    rsvp_status: str


class CancelledPayload(BaseModel):
    kind: Literal["cancelled"] = "cancelled"
    event_id: UUID
    event_title: str
    event_date: datetime


class SystemPayload(BaseModel):
    kind: Literal["system"] = "system"
    detail: Optional[str] = None


NotificationPayload = Annotated[
    Union[
        ReminderPayload,
        InvitationPayload,
        MessageReceivedPayload,
        RsvpUpdatePayload,
        CancelledPayload,
        SystemPayload,
    ],
    Field(discriminator="kind"),
]


class Notification(BaseModel):
    """Stored notification addressed to one user."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    title: str
    message: str
    kind: NotificationKind
    payload: Optional[NotificationPayload] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "Notification":
        if self.payload is not None and self.payload.kind != self.kind.value:
            raise ValueError(
                f"payload of kind {self.payload.kind!r} does not match notification kind {self.kind.value!r}"
            )
        return self


class EventSummary(BaseModel):
    """Read-only view of a scheduled event, served by the event store."""

    id: UUID = Field(default_factory=uuid4)
    title: str
    date: datetime
    organizer_id: UUID
    meeting_link: Optional[str] = None
    attendee_ids: List[UUID] = []


class ConversationSummary(BaseModel):
    id: UUID
    title: Optional[str] = None
    is_group: bool
    participant_ids: List[UUID]
    last_message: Optional[Message] = None
    unread_count: int = 0
    updated_at: datetime


class NotificationPage(BaseModel):
    notifications: List[Notification]
    unread_count: int
    page: int
    limit: int
    total: int
    pages: int


def direct_pair_key(first: UUID, second: UUID) -> Tuple[UUID, UUID]:
    """Order-independent key for the direct conversation between two users."""
    low, high = sorted((first, second))
    return low, high
