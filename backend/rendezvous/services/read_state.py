"""Read-state ledger.

Unread counters are *derived*: every number returned here is recomputed from
``message_reads`` and ``notifications`` rows, never stored.  Writes rely on
store constraints rather than application locks:

* read marks are inserted with ``ON CONFLICT(message_id, user_id) DO
  NOTHING`` so concurrent ``mark_read`` calls from several devices commute;
* mark-all-read on notifications is one conditional ``UPDATE`` statement.
"""

import logging
from typing import Any
from typing import Dict
from typing import Iterable
from typing import Optional

from sqlalchemy.orm import Session

from rendezvous.crud import crud
from rendezvous.events import EventType
from rendezvous.events.publisher import publish_change
from rendezvous.exceptions import NotFound
from rendezvous.exceptions import PermissionDenied
from rendezvous.models.enums import NotificationType

logger = logging.getLogger(__name__)


class ReadStateLedger:
    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def mark_read(self, db: Session, user_id: int, message_ids: Iterable[int]) -> int:
        """Insert read marks for *message_ids*; returns how many were new.

        The user's own messages and messages outside their conversations are
        skipped silently; re-marking is a no-op.
        """

        readable = crud.filter_readable_message_ids(db, user_id, message_ids)
        if not readable:
            return 0

        inserted = crud.insert_read_marks(db, user_id, readable)
        if inserted:
            await publish_change(
                EventType.MESSAGES_READ,
                audience=[user_id],
                entity_id=None,
                data={"user_id": user_id, "message_ids": sorted(inserted)},
            )
        return len(inserted)

    async def mark_conversation_read(self, db: Session, user_id: int, conversation_id: int) -> int:
        if crud.get_participant(db, conversation_id, user_id) is None:
            raise PermissionDenied("Not a participant of this conversation", conversation_id=conversation_id)

        pending = crud.unread_message_ids(db, user_id, conversation_id)
        if not pending:
            return 0

        inserted = crud.insert_read_marks(db, user_id, pending)
        if inserted:
            await publish_change(
                EventType.MESSAGES_READ,
                audience=[user_id],
                entity_id=None,
                conversation_id=conversation_id,
                data={"user_id": user_id, "message_ids": sorted(inserted)},
            )
        return len(inserted)

    def unread_message_count(self, db: Session, user_id: int) -> int:
        return crud.count_unread_messages(db, user_id)

    def unread_count_for_conversation(self, db: Session, user_id: int, conversation_id: int) -> int:
        return crud.count_unread_messages(db, user_id, conversation_id)

    def unread_conversation_count(self, db: Session, user_id: int) -> int:
        return len(crud.unread_counts_by_conversation(db, user_id))

    def unread_by_conversation(self, db: Session, user_id: int) -> Dict[int, int]:
        return crud.unread_counts_by_conversation(db, user_id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def mark_notification_read(self, db: Session, user_id: int, notification_id: int) -> bool:
        """Flip one notification to read; ``False`` when it already was."""

        if crud.get_notification(db, notification_id, user_id) is None:
            raise NotFound("Notification not found", notification_id=notification_id)

        changed = crud.mark_notification_read(db, notification_id, user_id)
        if changed:
            await publish_change(
                EventType.NOTIFICATION_UPDATED,
                audience=[user_id],
                entity_id=notification_id,
                data={"ids": [notification_id], "is_read": True},
            )
        return changed

    async def mark_all_notifications_read(self, db: Session, user_id: int, *, up_to_id: Optional[int] = None) -> int:
        """Mark every unread notification (optionally ``id <= up_to_id``) read.

        One bulk UPDATE: notifications committed after the statement's
        snapshot keep ``is_read = False``.  Passing the highest id the client
        has displayed as *up_to_id* also protects rows that land between the
        client's last fetch and this call.
        """

        changed = crud.mark_all_notifications_read(db, user_id, up_to_id=up_to_id)
        if changed:
            # One batched event: a per-row fan-out could overflow a
            # subscriber's bounded queue.
            await publish_change(
                EventType.NOTIFICATION_UPDATED,
                audience=[user_id],
                entity_id=None,
                data={"ids": sorted(changed), "is_read": True},
            )
        return len(changed)

    def notification_counts(self, db: Session, user_id: int) -> Dict[str, Any]:
        by_type = {t.value: 0 for t in NotificationType}
        by_type.update(crud.count_unread_notifications_by_type(db, user_id))
        return {"total": sum(by_type.values()), "by_type": by_type}

    def counts(self, db: Session, user_id: int) -> Dict[str, Any]:
        """Every unread counter a client badge needs, in one snapshot."""

        per_conversation = crud.unread_counts_by_conversation(db, user_id)
        return {
            "unread_messages": sum(per_conversation.values()),
            "unread_conversations": len(per_conversation),
            "notifications": self.notification_counts(db, user_id),
        }
