"""Message store: append, keyset pagination, edit and delete."""

import logging
from typing import List
from typing import Optional

from sqlalchemy.orm import Session

from rendezvous.config import get_settings
from rendezvous.crud import crud
from rendezvous.events import EventType
from rendezvous.events.publisher import publish_change
from rendezvous.exceptions import InvalidOperation
from rendezvous.exceptions import NotFound
from rendezvous.exceptions import PermissionDenied
from rendezvous.exceptions import ValidationError
from rendezvous.models.enums import MessageType
from rendezvous.models.models import Conversation
from rendezvous.models.models import Message
from rendezvous.schemas.schemas import MessageOut
from rendezvous.schemas.schemas import serialize
from rendezvous.services.notification_service import NotificationService
from rendezvous.utils.time import utc_now_naive

logger = logging.getLogger(__name__)


class MessageService:
    def __init__(self, notifications: Optional[NotificationService] = None):
        self.notifications = notifications or NotificationService()

    def _require_participant(self, db: Session, conversation_id: int, user_id: int) -> Conversation:
        conversation = crud.get_conversation(db, conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found", conversation_id=conversation_id)
        if crud.get_participant(db, conversation_id, user_id) is None:
            raise PermissionDenied("Not a participant of this conversation", conversation_id=conversation_id)
        return conversation

    def _clean_content(self, content: Optional[str], *, required: bool) -> str:
        content = (content or "").strip()
        if required and not content:
            raise ValidationError("Message content must not be empty")
        limit = get_settings().max_message_length
        if len(content) > limit:
            raise ValidationError(f"Message exceeds {limit} characters", max_length=limit)
        return content

    async def append(
        self,
        db: Session,
        conversation_id: int,
        sender_id: int,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        attachment_ref: Optional[str] = None,
        reply_to_id: Optional[int] = None,
    ) -> Message:
        """Persist a message and bump the conversation's last activity.

        The id and timestamps are assigned server-side.  Participants other
        than the sender are notified; notification failures never affect the
        stored message.
        """

        conversation = self._require_participant(db, conversation_id, sender_id)
        if conversation.is_archived:
            raise InvalidOperation("Conversation is archived", conversation_id=conversation_id)

        message_type = MessageType(message_type)
        if message_type == MessageType.TEXT:
            content = self._clean_content(content, required=True)
            attachment_ref = None
        else:
            if not attachment_ref:
                raise ValidationError(f"{message_type.value} messages need an attachment reference")
            content = self._clean_content(content, required=False)

        if reply_to_id is not None:
            parent = crud.get_message(db, reply_to_id)
            if parent is None or parent.conversation_id != conversation_id:
                raise NotFound("Replied-to message not found in this conversation", message_id=reply_to_id)

        try:
            message = crud.create_message(
                db,
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                message_type=message_type.value,
                attachment_ref=attachment_ref,
                reply_to_id=reply_to_id,
                commit=False,
            )
            crud.touch_conversation(db, conversation_id, message.created_at, commit=False)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(message)

        participant_ids = crud.get_participant_ids(db, conversation_id)
        await publish_change(
            EventType.MESSAGE_CREATED,
            audience=participant_ids,
            entity_id=message.id,
            conversation_id=conversation_id,
            data=serialize(MessageOut, message),
        )

        preview = content or f"Sent a {message_type.value}"
        for recipient_id in participant_ids:
            if recipient_id == sender_id:
                continue
            await self.notifications.notify_message(
                db,
                recipient_id,
                conversation_id,
                preview,
                sender_id=sender_id,
                message_id=message.id,
            )
        return message

    def page(
        self,
        db: Session,
        conversation_id: int,
        user_id: int,
        *,
        limit: Optional[int] = None,
        before_id: Optional[int] = None,
    ) -> List[Message]:
        """Return one page of history, oldest first.

        Without *before_id* the newest page is returned; pass the ``id`` of
        the oldest message already held to walk further back.  The cursor is
        a position in ``(created_at, id)`` order, so messages appended while
        paging never shift or duplicate older pages.
        """

        self._require_participant(db, conversation_id, user_id)

        settings = get_settings()
        if limit is None:
            limit = settings.default_page_size
        limit = max(1, min(int(limit), settings.max_page_size))

        cursor = None
        if before_id is not None:
            cursor = crud.get_message(db, before_id)
            if cursor is None or cursor.conversation_id != conversation_id:
                raise NotFound("Cursor message not found", message_id=before_id)

        rows = crud.get_messages_page(db, conversation_id, limit=limit, before=cursor)
        rows.reverse()
        return rows

    def _require_sender(self, db: Session, message_id: int, user_id: int) -> Message:
        message = crud.get_message(db, message_id)
        if message is None:
            raise NotFound("Message not found", message_id=message_id)
        if message.sender_id != user_id:
            raise PermissionDenied("Only the sender can change a message", message_id=message_id)
        return message

    async def edit(self, db: Session, message_id: int, editor_id: int, new_content: str) -> Message:
        message = self._require_sender(db, message_id, editor_id)
        content = self._clean_content(new_content, required=message.message_type == MessageType.TEXT)

        message.content = content
        message.is_edited = True
        message.updated_at = utc_now_naive()
        db.commit()
        db.refresh(message)

        await publish_change(
            EventType.MESSAGE_UPDATED,
            audience=crud.get_participant_ids(db, message.conversation_id),
            entity_id=message.id,
            conversation_id=message.conversation_id,
            data=serialize(MessageOut, message),
        )
        return message

    async def delete(self, db: Session, message_id: int, requester_id: int) -> None:
        """Hard delete; clients that rendered it drop it on the delete event or next sync."""

        message = self._require_sender(db, message_id, requester_id)
        conversation_id = message.conversation_id

        try:
            crud.delete_message(db, message, commit=False)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Message %s deleted by sender %s", message_id, requester_id)

        await publish_change(
            EventType.MESSAGE_DELETED,
            audience=crud.get_participant_ids(db, conversation_id),
            entity_id=message_id,
            conversation_id=conversation_id,
            data={"id": message_id, "conversation_id": conversation_id},
        )
