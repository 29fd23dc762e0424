from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from rendezvous.models.enums import ConversationKind
from rendezvous.models.enums import MessageType
from rendezvous.models.enums import NotificationType
from rendezvous.models.enums import ParticipantRole

# ------------------------------------------------------------
# Users
# ------------------------------------------------------------


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    is_active: bool
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None


class UserSummary(BaseModel):
    """Public projection of another user (no e-mail)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


class FollowOut(BaseModel):
    follower_id: int
    following_id: int
    following: bool
    mutual: bool


class FollowRespondRequest(BaseModel):
    accept: bool


# ------------------------------------------------------------
# Conversations
# ------------------------------------------------------------


class DirectConversationCreate(BaseModel):
    user_id: int = Field(ge=1)


class GroupConversationCreate(BaseModel):
    name: str
    member_ids: List[int] = Field(default_factory=list)


class ConversationRename(BaseModel):
    name: str


class ParticipantAdd(BaseModel):
    user_id: int = Field(ge=1)


class ParticipantRoleUpdate(BaseModel):
    role: ParticipantRole


class ParticipantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    role: ParticipantRole
    joined_at: datetime
    user: Optional[UserSummary] = None


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: ConversationKind
    name: Optional[str] = None
    created_by: int
    created_at: datetime
    last_activity_at: datetime
    archived_at: Optional[datetime] = None
    participants: List[ParticipantOut] = Field(default_factory=list)


class DirectConversationOut(BaseModel):
    conversation: ConversationOut
    created: bool


class MessagePreview(BaseModel):
    id: int
    sender_id: int
    content: str
    message_type: MessageType
    created_at: datetime


class ConversationSummary(BaseModel):
    """Read-side projection rendered in the conversation list."""

    id: int
    kind: ConversationKind
    display_name: str
    avatar_url: Optional[str] = None
    participant_count: int
    last_activity_at: datetime
    last_message: Optional[MessagePreview] = None
    unread_count: int = 0


# ------------------------------------------------------------
# Messages
# ------------------------------------------------------------


class MessageCreate(BaseModel):
    content: str = ""
    message_type: MessageType = MessageType.TEXT
    attachment_ref: Optional[str] = None
    reply_to_id: Optional[int] = None


class MessageUpdate(BaseModel):
    content: str


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    sender_id: int
    content: str
    message_type: MessageType
    attachment_ref: Optional[str] = None
    reply_to_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    is_edited: bool


class MarkReadRequest(BaseModel):
    message_ids: List[int]

    @field_validator("message_ids")
    @classmethod
    def _dedupe(cls, value: List[int]) -> List[int]:
        return sorted(set(value))


class MarkReadOut(BaseModel):
    marked: int


# ------------------------------------------------------------
# Notifications & counters
# ------------------------------------------------------------


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    recipient_id: int
    type: NotificationType
    title: str
    body: str
    payload: Optional[Dict[str, Any]] = None
    actor_id: Optional[int] = None
    created_at: datetime
    is_read: bool
    read_at: Optional[datetime] = None


class MarkAllReadRequest(BaseModel):
    up_to_id: Optional[int] = None


class MarkAllReadOut(BaseModel):
    updated: int


class NotificationCounts(BaseModel):
    total: int
    by_type: Dict[str, int]


class UnreadCounts(BaseModel):
    unread_messages: int
    unread_conversations: int
    notifications: NotificationCounts


def serialize(schema_cls, row) -> Dict[str, Any]:
    """Render an ORM *row* through *schema_cls* into JSON-safe primitives."""

    return schema_cls.model_validate(row).model_dump(mode="json")
