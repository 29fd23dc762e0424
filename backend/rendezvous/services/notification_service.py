"""Notification aggregation.

Notifications are created as *side effects* of another action (a follow, a
message send).  The ``notify_*`` helpers therefore never raise: a failure is
rolled back, logged with full context and reported as ``None`` so the action
that triggered it stays committed.
"""

import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy.orm import Session

from rendezvous.crud import crud
from rendezvous.events import EventType
from rendezvous.events.publisher import publish_change
from rendezvous.exceptions import NotFound
from rendezvous.models.enums import NotificationType
from rendezvous.models.models import Notification
from rendezvous.schemas.schemas import NotificationOut
from rendezvous.schemas.schemas import serialize
from rendezvous.services.social_graph import SocialGraph
from rendezvous.services.social_graph import social_graph as default_social_graph
from rendezvous.utils.log import get_logger

logger = logging.getLogger(__name__)
slog = get_logger(component="notifications")

PREVIEW_LENGTH = 120


def _preview(text: str, limit: int = PREVIEW_LENGTH) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


class NotificationService:
    """Create, list and resolve per-recipient notifications."""

    def __init__(self, social_graph: Optional[SocialGraph] = None):
        self.social_graph = social_graph or default_social_graph

    # ------------------------------------------------------------------
    # Side-effect creation (never raises)
    # ------------------------------------------------------------------

    async def _create(
        self,
        db: Session,
        *,
        recipient_id: int,
        type: NotificationType,
        title: str,
        body: str,
        payload: Dict[str, Any],
        actor_id: Optional[int] = None,
    ) -> Optional[Notification]:
        try:
            row = crud.create_notification(
                db,
                recipient_id=recipient_id,
                type=type,
                title=title,
                body=body,
                payload=payload,
                actor_id=actor_id,
            )
        except Exception:
            db.rollback()
            slog.exception(
                "notification_create_failed",
                recipient_id=recipient_id,
                notification_type=NotificationType(type).value,
                actor_id=actor_id,
            )
            return None

        await publish_change(
            EventType.NOTIFICATION_CREATED,
            audience=[recipient_id],
            entity_id=row.id,
            data=serialize(NotificationOut, row),
        )
        return row

    async def notify_follow(self, db: Session, recipient_id: int, follower_id: int) -> Optional[Notification]:
        follower = crud.get_user(db, follower_id)
        name = follower.public_name if follower else "Someone"
        return await self._create(
            db,
            recipient_id=recipient_id,
            type=NotificationType.FOLLOW,
            title="New follower",
            body=f"{name} started following you",
            payload={"follower_id": follower_id},
            actor_id=follower_id,
        )

    async def notify_message(
        self,
        db: Session,
        recipient_id: int,
        conversation_id: int,
        preview: str,
        *,
        sender_id: Optional[int] = None,
        message_id: Optional[int] = None,
    ) -> Optional[Notification]:
        return await self._create(
            db,
            recipient_id=recipient_id,
            type=NotificationType.MESSAGE,
            title="New message",
            body=_preview(preview),
            payload={
                "conversation_id": conversation_id,
                "message_id": message_id,
                "sender_id": sender_id,
            },
            actor_id=sender_id,
        )

    async def notify_like(
        self,
        db: Session,
        recipient_id: int,
        post_id: Any,
        *,
        actor_id: Optional[int] = None,
    ) -> Optional[Notification]:
        return await self._create(
            db,
            recipient_id=recipient_id,
            type=NotificationType.LIKE,
            title="New like",
            body="Someone liked your post",
            payload={"post_id": post_id, "actor_id": actor_id},
            actor_id=actor_id,
        )

    async def notify_comment(
        self,
        db: Session,
        recipient_id: int,
        post_id: Any,
        excerpt: str,
        *,
        actor_id: Optional[int] = None,
    ) -> Optional[Notification]:
        return await self._create(
            db,
            recipient_id=recipient_id,
            type=NotificationType.COMMENT,
            title="New comment",
            body=_preview(excerpt),
            payload={"post_id": post_id, "actor_id": actor_id, "excerpt": _preview(excerpt)},
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Follow request lifecycle: pending -> accepted | declined
    # ------------------------------------------------------------------

    async def respond_to_follow(self, db: Session, recipient_id: int, follower_id: int, accept: bool) -> Dict[str, Any]:
        """Resolve the pending follow request of *follower_id*.

        Accepting creates the reciprocal edge (recipient → follower).  Both
        outcomes delete the pending notification(s) in the same transaction,
        so a decided request cannot be answered twice.

        Raises:
            NotFound: there is no pending request for the pair.
        """

        try:
            removed = crud.delete_follow_notifications(db, recipient_id, follower_id, commit=False)
            if not removed:
                raise NotFound("No pending follow request", recipient_id=recipient_id, follower_id=follower_id)
            if accept:
                self.social_graph.follow(db, recipient_id, follower_id, commit=False)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            "Follow request %s -> %s %s",
            follower_id,
            recipient_id,
            "accepted" if accept else "declined",
        )

        for notification_id in removed:
            await publish_change(
                EventType.NOTIFICATION_DELETED,
                audience=[recipient_id],
                entity_id=notification_id,
                data={"id": notification_id, "reason": "accepted" if accept else "declined"},
            )

        return {
            "accepted": accept,
            "removed_notification_ids": removed,
            "mutual": self.social_graph.are_mutual(db, recipient_id, follower_id),
        }

    async def withdraw_follow(self, db: Session, recipient_id: int, follower_id: int) -> List[int]:
        """The follow was undone: drop its pending notification, if any."""

        removed = crud.delete_follow_notifications(db, recipient_id, follower_id)
        for notification_id in removed:
            await publish_change(
                EventType.NOTIFICATION_DELETED,
                audience=[recipient_id],
                entity_id=notification_id,
                data={"id": notification_id, "reason": "withdrawn"},
            )
        return removed

    # ------------------------------------------------------------------
    # Recipient-facing reads and deletes
    # ------------------------------------------------------------------

    def list_notifications(
        self,
        db: Session,
        user_id: int,
        *,
        limit: int = 50,
        offset: int = 0,
        unread_only: bool = False,
        type: Optional[NotificationType] = None,
    ) -> List[Notification]:
        return crud.get_notifications(
            db,
            user_id,
            skip=max(offset, 0),
            limit=max(limit, 1),
            unread_only=unread_only,
            type=type,
        )

    async def delete_notification(self, db: Session, user_id: int, notification_id: int) -> None:
        if not crud.delete_notification(db, notification_id, user_id):
            raise NotFound("Notification not found", notification_id=notification_id)
        await publish_change(
            EventType.NOTIFICATION_DELETED,
            audience=[user_id],
            entity_id=notification_id,
            data={"id": notification_id, "reason": "deleted"},
        )
