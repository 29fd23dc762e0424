# Thin persistence helpers.  Business rules (permissions, invariants, events)
# live in ``rendezvous.services``; the functions here only shape SQL.
from datetime import datetime
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Sequence

from sqlalchemy import and_
from sqlalchemy import func
from sqlalchemy import or_
from sqlalchemy import select
from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm import selectinload

from rendezvous.models.enums import ConversationKind
from rendezvous.models.enums import NotificationType
from rendezvous.models.enums import ParticipantRole
from rendezvous.models.models import Conversation
from rendezvous.models.models import ConversationParticipant
from rendezvous.models.models import Message
from rendezvous.models.models import MessageRead
from rendezvous.models.models import Notification
from rendezvous.models.models import User
from rendezvous.models.models import UserFollow
from rendezvous.utils.time import utc_now_naive


def _dialect_insert(db: Session):
    """Return the dialect-specific ``insert()`` that supports ON CONFLICT."""

    # Local imports keep the PostgreSQL driver optional for SQLite setups.
    if db.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def get_user(db: Session, user_id: int) -> Optional[User]:
    """Return user by *id* or None."""
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    """Return user by *email* (case-insensitive) or None."""
    return db.query(User).filter(func.lower(User.email) == email.lower()).first()


def get_users(db: Session, user_ids: Iterable[int]) -> List[User]:
    ids = list(set(user_ids))
    if not ids:
        return []
    return db.query(User).filter(User.id.in_(ids)).all()


def create_user(
    db: Session,
    *,
    email: str,
    username: Optional[str] = None,
    display_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> User:
    """Insert a new user row."""
    new_user = User(email=email, username=username, display_name=display_name, avatar_url=avatar_url)
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    return new_user


# ---------------------------------------------------------------------------
# Follow edges
# ---------------------------------------------------------------------------


def insert_follow(db: Session, follower_id: int, following_id: int, *, commit: bool = True) -> bool:
    """Create the edge follower → following; returns False if it existed."""

    insert = _dialect_insert(db)
    stmt = (
        insert(UserFollow)
        .values(follower_id=follower_id, following_id=following_id)
        .on_conflict_do_nothing(index_elements=["follower_id", "following_id"])
        .returning(UserFollow.id)
    )
    created = db.execute(stmt).first() is not None
    if commit:
        db.commit()
    return created


def delete_follow(db: Session, follower_id: int, following_id: int, *, commit: bool = True) -> bool:
    deleted = (
        db.query(UserFollow)
        .filter(UserFollow.follower_id == follower_id, UserFollow.following_id == following_id)
        .delete(synchronize_session=False)
    )
    if commit:
        db.commit()
    return bool(deleted)


def follow_exists(db: Session, follower_id: int, following_id: int) -> bool:
    return (
        db.query(UserFollow.id)
        .filter(UserFollow.follower_id == follower_id, UserFollow.following_id == following_id)
        .first()
        is not None
    )


# ---------------------------------------------------------------------------
# Conversations & participants
# ---------------------------------------------------------------------------


def direct_key_for(user_a: int, user_b: int) -> str:
    """Canonical key of an unordered user pair (``"low:high"``)."""

    low, high = sorted((int(user_a), int(user_b)))
    return f"{low}:{high}"


def insert_direct_conversation(db: Session, *, direct_key: str, created_by: int) -> Optional[int]:
    """Atomically insert a direct conversation unless the pair already has one.

    Issues ``INSERT … ON CONFLICT(direct_key) DO NOTHING RETURNING id``.
    Returns the new primary key, or ``None`` when another writer already
    owns the pair.  Does **not** commit – the caller adds participant rows
    in the same transaction.
    """

    insert = _dialect_insert(db)
    now = utc_now_naive()
    stmt = (
        insert(Conversation)
        .values(
            kind=ConversationKind.DIRECT.value,
            direct_key=direct_key,
            created_by=created_by,
            created_at=now,
            last_activity_at=now,
        )
        .on_conflict_do_nothing(index_elements=["direct_key"])
        .returning(Conversation.id)
    )
    row = db.execute(stmt).first()
    return row[0] if row is not None else None


def get_conversation_by_direct_key(db: Session, direct_key: str) -> Optional[Conversation]:
    return db.query(Conversation).filter(Conversation.direct_key == direct_key).first()


def get_conversation(db: Session, conversation_id: int) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .execution_options(populate_existing=True)
        .options(selectinload(Conversation.participants).selectinload(ConversationParticipant.user))
        .filter(Conversation.id == conversation_id)
        .first()
    )


def create_group_conversation(
    db: Session,
    *,
    name: str,
    created_by: int,
    members: Sequence[int],
) -> Conversation:
    """Insert a group conversation and all participant rows in one transaction."""

    now = utc_now_naive()
    conversation = Conversation(
        kind=ConversationKind.GROUP.value,
        name=name,
        created_by=created_by,
        created_at=now,
        last_activity_at=now,
    )
    db.add(conversation)
    db.flush([conversation])

    db.add(
        ConversationParticipant(
            conversation_id=conversation.id,
            user_id=created_by,
            role=ParticipantRole.ADMIN.value,
            joined_at=now,
        )
    )
    for user_id in members:
        db.add(
            ConversationParticipant(
                conversation_id=conversation.id,
                user_id=user_id,
                role=ParticipantRole.MEMBER.value,
                joined_at=now,
            )
        )
    db.commit()
    db.refresh(conversation)
    return conversation


def add_participant_rows(
    db: Session,
    conversation_id: int,
    user_roles: Dict[int, ParticipantRole],
    *,
    commit: bool = True,
) -> int:
    """Insert participant rows, ignoring users that are already present."""

    if not user_roles:
        return 0

    insert = _dialect_insert(db)
    now = utc_now_naive()
    stmt = (
        insert(ConversationParticipant)
        .values(
            [
                {
                    "conversation_id": conversation_id,
                    "user_id": user_id,
                    "role": ParticipantRole(role).value,
                    "joined_at": now,
                }
                for user_id, role in user_roles.items()
            ]
        )
        .on_conflict_do_nothing(index_elements=["conversation_id", "user_id"])
        .returning(ConversationParticipant.id)
    )
    inserted = len(db.execute(stmt).all())
    if commit:
        db.commit()
    return inserted


def get_participant(db: Session, conversation_id: int, user_id: int) -> Optional[ConversationParticipant]:
    return (
        db.query(ConversationParticipant)
        .filter(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
        .first()
    )


def get_participants(db: Session, conversation_id: int) -> List[ConversationParticipant]:
    return (
        db.query(ConversationParticipant)
        .options(selectinload(ConversationParticipant.user))
        .filter(ConversationParticipant.conversation_id == conversation_id)
        .order_by(ConversationParticipant.joined_at, ConversationParticipant.id)
        .all()
    )


def get_participant_ids(db: Session, conversation_id: int) -> List[int]:
    rows = (
        db.query(ConversationParticipant.user_id)
        .filter(ConversationParticipant.conversation_id == conversation_id)
        .order_by(ConversationParticipant.id)
        .all()
    )
    return [r[0] for r in rows]


def count_admins(db: Session, conversation_id: int) -> int:
    return (
        db.query(func.count(ConversationParticipant.id))
        .filter(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.role == ParticipantRole.ADMIN.value,
        )
        .scalar()
    )


def delete_participant(db: Session, conversation_id: int, user_id: int, *, commit: bool = True) -> bool:
    deleted = (
        db.query(ConversationParticipant)
        .filter(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
        .delete(synchronize_session=False)
    )
    if commit:
        db.commit()
    return bool(deleted)


def get_conversations_for_user(db: Session, user_id: int, *, include_archived: bool = False) -> List[Conversation]:
    """Conversations *user_id* participates in, most recently active first."""

    query = (
        db.query(Conversation)
        .execution_options(populate_existing=True)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .options(selectinload(Conversation.participants).selectinload(ConversationParticipant.user))
        .filter(ConversationParticipant.user_id == user_id)
    )
    if not include_archived:
        query = query.filter(Conversation.archived_at.is_(None))
    return query.order_by(Conversation.last_activity_at.desc(), Conversation.id.desc()).all()


def touch_conversation(db: Session, conversation_id: int, when: datetime, *, commit: bool = True) -> None:
    """Bump ``last_activity_at`` without ever moving it backwards."""

    db.query(Conversation).filter(
        Conversation.id == conversation_id,
        Conversation.last_activity_at < when,
    ).update({Conversation.last_activity_at: when}, synchronize_session=False)
    if commit:
        db.commit()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def create_message(
    db: Session,
    *,
    conversation_id: int,
    sender_id: int,
    content: str,
    message_type: str,
    attachment_ref: Optional[str] = None,
    reply_to_id: Optional[int] = None,
    commit: bool = True,
) -> Message:
    now = utc_now_naive()
    db_message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        message_type=message_type,
        attachment_ref=attachment_ref,
        reply_to_id=reply_to_id,
        created_at=now,
        updated_at=now,
        is_edited=False,
    )
    db.add(db_message)

    if commit:
        db.commit()
        db.refresh(db_message)
    else:
        # Ensure primary key is assigned so callers can reference ``row.id``
        db.flush([db_message])
    return db_message


def get_message(db: Session, message_id: int) -> Optional[Message]:
    return db.query(Message).filter(Message.id == message_id).first()


def get_messages_page(
    db: Session,
    conversation_id: int,
    *,
    limit: int,
    before: Optional[Message] = None,
) -> List[Message]:
    """Return up to *limit* messages strictly older than *before*, newest first.

    Keyset pagination on ``(created_at, id)``: rows inserted after the cursor
    was handed out are newer than it and can never shift a page boundary.
    """

    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if before is not None:
        query = query.filter(
            or_(
                Message.created_at < before.created_at,
                and_(Message.created_at == before.created_at, Message.id < before.id),
            )
        )
    return query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit).all()


def get_latest_message(db: Session, conversation_id: int) -> Optional[Message]:
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .first()
    )


def delete_message(db: Session, message: Message, *, commit: bool = True) -> None:
    """Hard-delete *message* together with its read marks."""

    db.query(MessageRead).filter(MessageRead.message_id == message.id).delete(synchronize_session=False)
    db.query(Message).filter(Message.reply_to_id == message.id).update(
        {Message.reply_to_id: None}, synchronize_session="evaluate"
    )
    db.delete(message)
    if commit:
        db.commit()


# ---------------------------------------------------------------------------
# Read marks
# ---------------------------------------------------------------------------


def _visible_messages_clause(user_id: int):
    """Messages in conversations *user_id* belongs to, excluding their own."""

    member_of = select(ConversationParticipant.conversation_id).where(ConversationParticipant.user_id == user_id)
    return and_(Message.conversation_id.in_(member_of), Message.sender_id != user_id)


def _unread_clause(user_id: int):
    read_ids = select(MessageRead.message_id).where(MessageRead.user_id == user_id)
    return and_(_visible_messages_clause(user_id), Message.id.not_in(read_ids))


def filter_readable_message_ids(db: Session, user_id: int, message_ids: Iterable[int]) -> List[int]:
    """Subset of *message_ids* the user may hold a read mark for."""

    ids = list(set(message_ids))
    if not ids:
        return []
    rows = db.query(Message.id).filter(Message.id.in_(ids), _visible_messages_clause(user_id)).all()
    return [r[0] for r in rows]


def unread_message_ids(db: Session, user_id: int, conversation_id: Optional[int] = None) -> List[int]:
    query = db.query(Message.id).filter(_unread_clause(user_id))
    if conversation_id is not None:
        query = query.filter(Message.conversation_id == conversation_id)
    return [r[0] for r in query.order_by(Message.id).all()]


def insert_read_marks(db: Session, user_id: int, message_ids: Sequence[int], *, commit: bool = True) -> List[int]:
    """Idempotently insert read marks; returns the message ids newly marked."""

    if not message_ids:
        return []

    insert = _dialect_insert(db)
    now = utc_now_naive()
    stmt = (
        insert(MessageRead)
        .values([{"message_id": mid, "user_id": user_id, "read_at": now} for mid in message_ids])
        .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
        .returning(MessageRead.message_id)
    )
    inserted = [r[0] for r in db.execute(stmt).all()]
    if commit:
        db.commit()
    return inserted


def count_unread_messages(db: Session, user_id: int, conversation_id: Optional[int] = None) -> int:
    query = db.query(func.count(Message.id)).filter(_unread_clause(user_id))
    if conversation_id is not None:
        query = query.filter(Message.conversation_id == conversation_id)
    return query.scalar() or 0


def unread_counts_by_conversation(db: Session, user_id: int) -> Dict[int, int]:
    rows = (
        db.query(Message.conversation_id, func.count(Message.id))
        .filter(_unread_clause(user_id))
        .group_by(Message.conversation_id)
        .all()
    )
    return {conversation_id: count for conversation_id, count in rows}


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def create_notification(
    db: Session,
    *,
    recipient_id: int,
    type: NotificationType,
    title: str,
    body: str = "",
    payload: Optional[Dict[str, Any]] = None,
    actor_id: Optional[int] = None,
    commit: bool = True,
) -> Notification:
    row = Notification(
        recipient_id=recipient_id,
        type=NotificationType(type).value,
        title=title,
        body=body,
        payload=payload or {},
        actor_id=actor_id,
        created_at=utc_now_naive(),
        is_read=False,
    )
    db.add(row)
    if commit:
        db.commit()
        db.refresh(row)
    else:
        db.flush([row])
    return row


def get_notification(db: Session, notification_id: int, recipient_id: int) -> Optional[Notification]:
    """Return the notification only when it is addressed to *recipient_id*."""
    return (
        db.query(Notification)
        .execution_options(populate_existing=True)
        .filter(Notification.id == notification_id, Notification.recipient_id == recipient_id)
        .first()
    )


def get_notifications(
    db: Session,
    recipient_id: int,
    *,
    skip: int = 0,
    limit: int = 50,
    unread_only: bool = False,
    type: Optional[NotificationType] = None,
) -> List[Notification]:
    query = (
        db.query(Notification)
        .execution_options(populate_existing=True)
        .filter(Notification.recipient_id == recipient_id)
    )
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    if type is not None:
        query = query.filter(Notification.type == NotificationType(type).value)
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(skip).limit(limit).all()


def mark_notification_read(db: Session, notification_id: int, recipient_id: int) -> bool:
    """Conditional single-row update; True only when the row flipped."""

    updated = (
        db.query(Notification)
        .filter(
            Notification.id == notification_id,
            Notification.recipient_id == recipient_id,
            Notification.is_read.is_(False),
        )
        .update({Notification.is_read: True, Notification.read_at: utc_now_naive()}, synchronize_session=False)
    )
    db.commit()
    return bool(updated)


def mark_all_notifications_read(db: Session, recipient_id: int, *, up_to_id: Optional[int] = None) -> List[int]:
    """Flip every unread notification of *recipient_id* in **one** UPDATE.

    Returns the ids that changed.  Rows committed by other writers after the
    statement's snapshot are not touched, so a notification that arrives
    mid-call stays unread.
    """

    conditions = [Notification.recipient_id == recipient_id, Notification.is_read.is_(False)]
    if up_to_id is not None:
        conditions.append(Notification.id <= up_to_id)

    stmt = (
        update(Notification)
        .where(*conditions)
        .values(is_read=True, read_at=utc_now_naive())
        .returning(Notification.id)
    )
    changed = [r[0] for r in db.execute(stmt).all()]
    db.commit()
    return changed


def delete_notification(db: Session, notification_id: int, recipient_id: int) -> bool:
    deleted = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.recipient_id == recipient_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return bool(deleted)


def delete_follow_notifications(db: Session, recipient_id: int, follower_id: int, *, commit: bool = True) -> List[int]:
    """Remove pending follow notifications for (recipient, follower); returns their ids."""

    rows = (
        db.query(Notification.id)
        .filter(
            Notification.recipient_id == recipient_id,
            Notification.actor_id == follower_id,
            Notification.type == NotificationType.FOLLOW.value,
        )
        .all()
    )
    ids = [r[0] for r in rows]
    if ids:
        db.query(Notification).filter(Notification.id.in_(ids)).delete(synchronize_session=False)
    if commit:
        db.commit()
    return ids


def count_unread_notifications_by_type(db: Session, recipient_id: int) -> Dict[str, int]:
    rows = (
        db.query(Notification.type, func.count(Notification.id))
        .filter(Notification.recipient_id == recipient_id, Notification.is_read.is_(False))
        .group_by(Notification.type)
        .all()
    )
    return {NotificationType(t).value: count for t, count in rows}
