from sqlalchemy import JSON

# SQLAlchemy core imports
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey
from sqlalchemy import Index
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import UniqueConstraint
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import relationship
from sqlalchemy.orm import validates
from sqlalchemy.sql import func

# Local helpers / enums
from rendezvous.database import Base
from rendezvous.models.enums import ConversationKind
from rendezvous.models.enums import MessageType
from rendezvous.models.enums import NotificationType
from rendezvous.models.enums import ParticipantRole
from rendezvous.utils.time import utc_now_naive


def _enum_values(enum_cls):
    # Persist the lowercase wire values ("direct"), not the member names.
    return [member.value for member in enum_cls]


# ---------------------------------------------------------------------------
# Identity – users are owned by the identity collaborator; we keep the
# columns the core needs to render conversation summaries.
# ---------------------------------------------------------------------------


class User(Base):
    """Application user as seen by the interaction core."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Optional display name shown in the UI (fallback: username, e-mail)
    username = Column(String, nullable=True, unique=True)
    display_name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def public_name(self) -> str:  # noqa: D401 – simple accessor
        """Name shown to other users."""

        return self.display_name or self.username or self.email


# ---------------------------------------------------------------------------
# Social graph – follow edges.  The core only reads/inserts edges through
# ``rendezvous.services.social_graph``.
# ---------------------------------------------------------------------------


class UserFollow(Base):
    __tablename__ = "user_follows"

    # One edge per ordered pair; lets ``follow`` run as an idempotent upsert.
    __table_args__ = (UniqueConstraint("follower_id", "following_id", name="uix_follow_pair"),)

    id = Column(Integer, primary_key=True)
    follower_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    following_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class Conversation(Base):
    """A direct (two-person) or group conversation.

    Direct conversations carry a ``direct_key`` – the participant pair sorted
    ascending and joined with a colon (``"3:17"``).  The UNIQUE constraint on
    that column is what guarantees *one* direct conversation per unordered
    pair, even when two processes race to create it.  Group rows leave the
    column NULL; NULLs never collide under a UNIQUE constraint.
    """

    __tablename__ = "conversations"

    __table_args__ = (
        UniqueConstraint("direct_key", name="uix_conversation_direct_key"),
        Index("ix_conversations_last_activity", "last_activity_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(
        SAEnum(ConversationKind, native_enum=False, name="conversation_kind_enum", values_callable=_enum_values),
        nullable=False,
    )
    name = Column(String, nullable=True)  # group only
    direct_key = Column(String, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime, nullable=False, default=utc_now_naive)
    # Bumped by every appended message; orders the conversation list.
    last_activity_at = Column(DateTime, nullable=False, default=utc_now_naive)
    # Soft archival – conversations are never physically deleted.
    archived_at = Column(DateTime, nullable=True)

    participants = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        order_by="ConversationParticipant.joined_at",
    )

    @property
    def is_direct(self) -> bool:
        return self.kind == ConversationKind.DIRECT

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"

    __table_args__ = (UniqueConstraint("conversation_id", "user_id", name="uix_participant"),)

    id = Column(Integer, primary_key=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(
        SAEnum(ParticipantRole, native_enum=False, name="participant_role_enum", values_callable=_enum_values),
        nullable=False,
        default=ParticipantRole.MEMBER.value,
    )
    joined_at = Column(DateTime, nullable=False, default=utc_now_naive)

    conversation = relationship("Conversation", back_populates="participants")
    user = relationship("User")


# ---------------------------------------------------------------------------
# Messages & read marks
# ---------------------------------------------------------------------------


class Message(Base):
    __tablename__ = "messages"

    # Keyset pagination walks this index backwards.
    __table_args__ = (Index("ix_messages_conversation_order", "conversation_id", "created_at", "id"),)

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    message_type = Column(
        SAEnum(MessageType, native_enum=False, name="message_type_enum", values_callable=_enum_values),
        nullable=False,
        default=MessageType.TEXT.value,
    )
    # Opaque reference (URL or storage key) handed out by the attachment store.
    attachment_ref = Column(String, nullable=True)
    reply_to_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)

    # Assigned by the server at insert time; client timestamps are ignored.
    created_at = Column(DateTime, nullable=False, default=utc_now_naive)
    updated_at = Column(DateTime, nullable=False, default=utc_now_naive)
    is_edited = Column(Boolean, nullable=False, default=False)

    sender = relationship("User")

    @validates("conversation_id")
    def _freeze_conversation(self, _key, value):
        # A message never moves between conversations.
        if self.conversation_id is not None and value != self.conversation_id:
            raise ValueError("conversation_id of a message is immutable")
        return value


class MessageRead(Base):
    __tablename__ = "message_reads"

    # At most one read mark per (message, user); inserts use ON CONFLICT DO NOTHING.
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uix_message_read"),)

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    read_at = Column(DateTime, nullable=False, default=utc_now_naive)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Per-recipient activity notification.

    ``is_read`` only ever flips from False to True.  ``actor_id`` duplicates
    the acting user from ``payload`` so pending follow requests can be found
    (and removed) with an indexed lookup.
    """

    __tablename__ = "notifications"

    __table_args__ = (Index("ix_notifications_recipient_unread", "recipient_id", "is_read"),)

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(
        SAEnum(NotificationType, native_enum=False, name="notification_type_enum", values_callable=_enum_values),
        nullable=False,
    )
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False, default="")
    payload = Column(MutableDict.as_mutable(JSON), nullable=True, default={})
    actor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utc_now_naive)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
