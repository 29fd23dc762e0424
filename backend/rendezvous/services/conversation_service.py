"""Conversation manager.

Direct conversations are unique per unordered user pair.  Uniqueness is a
store constraint (``UNIQUE(direct_key)``) and creation is a single
``INSERT … ON CONFLICT DO NOTHING RETURNING id``; the loser of a creation
race simply selects the winner's row.  No application-level lock is taken.
"""

import logging
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Tuple

from sqlalchemy.orm import Session

from rendezvous.crud import crud
from rendezvous.events import EventType
from rendezvous.events.publisher import publish_change
from rendezvous.exceptions import InvalidOperation
from rendezvous.exceptions import NotFound
from rendezvous.exceptions import PermissionDenied
from rendezvous.exceptions import ValidationError
from rendezvous.models.enums import ParticipantRole
from rendezvous.models.kinds import DirectConversationDraft
from rendezvous.models.kinds import GroupConversationDraft
from rendezvous.models.models import Conversation
from rendezvous.models.models import ConversationParticipant
from rendezvous.schemas.schemas import ConversationOut
from rendezvous.schemas.schemas import ParticipantOut
from rendezvous.schemas.schemas import serialize
from rendezvous.services.read_state import ReadStateLedger
from rendezvous.utils.time import utc_now_naive

logger = logging.getLogger(__name__)


def _require_users(db: Session, user_ids: Iterable[int]) -> None:
    wanted = set(user_ids)
    found = {u.id for u in crud.get_users(db, wanted)}
    missing = sorted(wanted - found)
    if missing:
        raise NotFound("User not found", user_ids=missing)


class ConversationService:
    """Create, list and administer conversations."""

    def __init__(self, read_state: Optional[ReadStateLedger] = None):
        self.read_state = read_state or ReadStateLedger()

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def get_conversation(self, db: Session, conversation_id: int, user_id: int) -> Conversation:
        """Return the conversation when *user_id* participates in it."""

        conversation = crud.get_conversation(db, conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found", conversation_id=conversation_id)
        if crud.get_participant(db, conversation_id, user_id) is None:
            raise PermissionDenied("Not a participant of this conversation", conversation_id=conversation_id)
        return conversation

    def _require_admin(self, db: Session, conversation: Conversation, actor_id: int) -> None:
        if conversation.is_direct:
            raise InvalidOperation("Direct conversations have a fixed roster", conversation_id=conversation.id)
        if conversation.is_archived:
            raise InvalidOperation("Conversation is archived", conversation_id=conversation.id)
        participant = crud.get_participant(db, conversation.id, actor_id)
        if participant is None or participant.role != ParticipantRole.ADMIN:
            raise PermissionDenied("Only group admins can do this", conversation_id=conversation.id)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def get_or_create_direct(self, db: Session, user_a: int, user_b: int) -> Tuple[Conversation, bool]:
        """Return the direct conversation of the pair, creating it if needed.

        Returns ``(conversation, created)``.  ``created`` is False when the
        pair already had a conversation, including when a concurrent caller
        won the insert race.
        """

        draft = DirectConversationDraft(user_a, user_b)
        _require_users(db, draft.pair)

        try:
            conversation_id = crud.insert_direct_conversation(db, direct_key=draft.direct_key, created_by=user_a)
            if conversation_id is not None:
                crud.add_participant_rows(db, conversation_id, draft.roles(), commit=False)
            db.commit()
        except Exception:
            db.rollback()
            raise

        created = conversation_id is not None
        conversation = crud.get_conversation_by_direct_key(db, draft.direct_key)
        if conversation is None:  # pragma: no cover – row vanished between statements
            raise NotFound("Direct conversation disappeared", direct_key=draft.direct_key)
        db.refresh(conversation)

        if created:
            logger.info("Created direct conversation %s for %s", conversation.id, draft.direct_key)
            await publish_change(
                EventType.CONVERSATION_CREATED,
                audience=draft.pair,
                entity_id=conversation.id,
                conversation_id=conversation.id,
                data=serialize(ConversationOut, conversation),
            )
        return conversation, created

    async def create_group(self, db: Session, creator_id: int, name: str, member_ids: Iterable[int]) -> Conversation:
        draft = GroupConversationDraft(creator_id, name, tuple(member_ids))
        _require_users(db, draft.roles().keys())

        conversation = crud.create_group_conversation(
            db,
            name=draft.name,
            created_by=draft.creator_id,
            members=draft.member_ids,
        )
        logger.info("Created group conversation %s with %d participants", conversation.id, len(draft.roles()))

        await publish_change(
            EventType.CONVERSATION_CREATED,
            audience=draft.roles().keys(),
            entity_id=conversation.id,
            conversation_id=conversation.id,
            data=serialize(ConversationOut, conversation),
        )
        return conversation

    # ------------------------------------------------------------------
    # Read-side projection
    # ------------------------------------------------------------------

    def list_for_user(self, db: Session, user_id: int) -> List[Dict[str, Any]]:
        """Conversation summaries ordered by last activity (newest first)."""

        unread = self.read_state.unread_by_conversation(db, user_id)
        summaries = []
        for conversation in crud.get_conversations_for_user(db, user_id):
            participants = conversation.participants
            if conversation.is_direct:
                others = [p.user for p in participants if p.user_id != user_id]
                other = others[0] if others else None
                display_name = other.public_name if other else "Unknown user"
                avatar_url = other.avatar_url if other else None
            else:
                display_name = conversation.name or ""
                avatar_url = None

            latest = crud.get_latest_message(db, conversation.id)
            last_message = None
            if latest is not None:
                last_message = {
                    "id": latest.id,
                    "sender_id": latest.sender_id,
                    "content": latest.content,
                    "message_type": latest.message_type,
                    "created_at": latest.created_at,
                }

            summaries.append(
                {
                    "id": conversation.id,
                    "kind": conversation.kind,
                    "display_name": display_name,
                    "avatar_url": avatar_url,
                    "participant_count": len(participants),
                    "last_activity_at": conversation.last_activity_at,
                    "last_message": last_message,
                    "unread_count": unread.get(conversation.id, 0),
                }
            )
        return summaries

    def list_participants(self, db: Session, conversation_id: int, user_id: int) -> List[ConversationParticipant]:
        self.get_conversation(db, conversation_id, user_id)
        return crud.get_participants(db, conversation_id)

    # ------------------------------------------------------------------
    # Group administration
    # ------------------------------------------------------------------

    async def add_participant(
        self,
        db: Session,
        conversation_id: int,
        actor_id: int,
        user_id: int,
    ) -> ConversationParticipant:
        """Admin adds *user_id* to a group; adding a current member is a no-op."""

        conversation = self.get_conversation(db, conversation_id, actor_id)
        self._require_admin(db, conversation, actor_id)
        _require_users(db, [user_id])

        existing = crud.get_participant(db, conversation_id, user_id)
        if existing is not None:
            return existing

        crud.add_participant_rows(db, conversation_id, {user_id: ParticipantRole.MEMBER})
        participant = crud.get_participant(db, conversation_id, user_id)

        await publish_change(
            EventType.PARTICIPANT_ADDED,
            audience=crud.get_participant_ids(db, conversation_id),
            entity_id=user_id,
            conversation_id=conversation_id,
            data=serialize(ParticipantOut, participant),
        )
        return participant

    async def remove_participant(self, db: Session, conversation_id: int, actor_id: int, user_id: int) -> None:
        """Admin removes *user_id*; removing yourself is :meth:`leave_group`."""

        if actor_id == user_id:
            await self.leave_group(db, conversation_id, actor_id)
            return

        conversation = self.get_conversation(db, conversation_id, actor_id)
        self._require_admin(db, conversation, actor_id)

        if crud.get_participant(db, conversation_id, user_id) is None:
            raise NotFound("User is not a participant", conversation_id=conversation_id, user_id=user_id)

        audience = crud.get_participant_ids(db, conversation_id)
        if len(audience) - 1 < 2:
            raise InvalidOperation("A group needs at least two participants", conversation_id=conversation_id)

        crud.delete_participant(db, conversation_id, user_id)
        logger.info("User %s removed %s from conversation %s", actor_id, user_id, conversation_id)

        await publish_change(
            EventType.PARTICIPANT_REMOVED,
            audience=audience,
            entity_id=user_id,
            conversation_id=conversation_id,
            data={"conversation_id": conversation_id, "user_id": user_id, "removed_by": actor_id},
        )

    async def leave_group(self, db: Session, conversation_id: int, user_id: int) -> None:
        """Leave a group.

        If the last admin leaves, the longest-standing remaining member is
        promoted.  A group left with fewer than two participants is archived.
        """

        conversation = self.get_conversation(db, conversation_id, user_id)
        if conversation.is_direct:
            raise InvalidOperation("Cannot leave a direct conversation", conversation_id=conversation_id)

        audience = crud.get_participant_ids(db, conversation_id)
        promoted: Optional[ConversationParticipant] = None
        try:
            crud.delete_participant(db, conversation_id, user_id, commit=False)
            db.flush()
            remaining = crud.get_participants(db, conversation_id)
            if remaining and crud.count_admins(db, conversation_id) == 0:
                promoted = remaining[0]
                promoted.role = ParticipantRole.ADMIN.value
            if len(remaining) < 2 and conversation.archived_at is None:
                conversation.archived_at = utc_now_naive()
            db.commit()
            db.refresh(conversation)
        except Exception:
            db.rollback()
            raise

        logger.info("User %s left conversation %s", user_id, conversation_id)

        await publish_change(
            EventType.PARTICIPANT_REMOVED,
            audience=audience,
            entity_id=user_id,
            conversation_id=conversation_id,
            data={"conversation_id": conversation_id, "user_id": user_id, "removed_by": user_id},
        )
        if promoted is not None:
            await publish_change(
                EventType.PARTICIPANT_UPDATED,
                audience=[uid for uid in audience if uid != user_id],
                entity_id=promoted.user_id,
                conversation_id=conversation_id,
                data=serialize(ParticipantOut, promoted),
            )
        if conversation.is_archived:
            await publish_change(
                EventType.CONVERSATION_UPDATED,
                audience=audience,
                entity_id=conversation_id,
                conversation_id=conversation_id,
                data=serialize(ConversationOut, conversation),
            )

    async def set_role(
        self,
        db: Session,
        conversation_id: int,
        actor_id: int,
        user_id: int,
        role: ParticipantRole,
    ) -> ConversationParticipant:
        conversation = self.get_conversation(db, conversation_id, actor_id)
        self._require_admin(db, conversation, actor_id)

        participant = crud.get_participant(db, conversation_id, user_id)
        if participant is None:
            raise NotFound("User is not a participant", conversation_id=conversation_id, user_id=user_id)

        role = ParticipantRole(role)
        if participant.role == role:
            return participant
        if role == ParticipantRole.MEMBER and crud.count_admins(db, conversation_id) <= 1:
            raise InvalidOperation("A group needs at least one admin", conversation_id=conversation_id)

        participant.role = role.value
        db.commit()
        db.refresh(participant)

        await publish_change(
            EventType.PARTICIPANT_UPDATED,
            audience=crud.get_participant_ids(db, conversation_id),
            entity_id=user_id,
            conversation_id=conversation_id,
            data=serialize(ParticipantOut, participant),
        )
        return participant

    async def rename_group(self, db: Session, conversation_id: int, actor_id: int, name: str) -> Conversation:
        conversation = self.get_conversation(db, conversation_id, actor_id)
        self._require_admin(db, conversation, actor_id)

        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name must not be empty")

        conversation.name = name
        db.commit()
        db.refresh(conversation)

        await publish_change(
            EventType.CONVERSATION_UPDATED,
            audience=crud.get_participant_ids(db, conversation_id),
            entity_id=conversation_id,
            conversation_id=conversation_id,
            data=serialize(ConversationOut, conversation),
        )
        return conversation
