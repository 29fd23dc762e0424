"""
Router for conversation, participant and message-history endpoints.

All endpoints act on behalf of the authenticated user; the caller id is
passed explicitly to the services.
"""

import logging
from typing import List
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Query
from fastapi import Response
from fastapi import status
from sqlalchemy.orm import Session

from rendezvous.database import get_db
from rendezvous.dependencies.auth import get_current_user
from rendezvous.schemas.schemas import ConversationOut
from rendezvous.schemas.schemas import ConversationRename
from rendezvous.schemas.schemas import ConversationSummary
from rendezvous.schemas.schemas import DirectConversationCreate
from rendezvous.schemas.schemas import DirectConversationOut
from rendezvous.schemas.schemas import GroupConversationCreate
from rendezvous.schemas.schemas import MarkReadOut
from rendezvous.schemas.schemas import MessageCreate
from rendezvous.schemas.schemas import MessageOut
from rendezvous.schemas.schemas import ParticipantAdd
from rendezvous.schemas.schemas import ParticipantOut
from rendezvous.schemas.schemas import ParticipantRoleUpdate
from rendezvous.services import conversation_service
from rendezvous.services import message_service
from rendezvous.services import read_state

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["conversations"],
)


@router.get("", response_model=List[ConversationSummary])
def list_conversations(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    """Conversations of the current user, most recently active first"""
    return conversation_service.list_for_user(db, current_user.id)


@router.post("/direct", response_model=DirectConversationOut, status_code=status.HTTP_201_CREATED)
async def create_direct_conversation(
    payload: DirectConversationCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """Return the direct conversation with ``user_id``, creating it on first use"""
    conversation, created = await conversation_service.get_or_create_direct(db, current_user.id, payload.user_id)
    if not created:
        response.status_code = status.HTTP_200_OK
    return {"conversation": conversation, "created": created}


@router.post("/group", response_model=ConversationOut, status_code=status.HTTP_201_CREATED)
async def create_group_conversation(
    payload: GroupConversationCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return await conversation_service.create_group(db, current_user.id, payload.name, payload.member_ids)


@router.get("/{conversation_id}", response_model=ConversationOut)
def read_conversation(conversation_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return conversation_service.get_conversation(db, conversation_id, current_user.id)


@router.patch("/{conversation_id}", response_model=ConversationOut)
async def rename_conversation(
    conversation_id: int,
    payload: ConversationRename,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """Rename a group (admins only)"""
    return await conversation_service.rename_group(db, conversation_id, current_user.id, payload.name)


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


@router.get("/{conversation_id}/participants", response_model=List[ParticipantOut])
def list_participants(conversation_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return conversation_service.list_participants(db, conversation_id, current_user.id)


@router.post(
    "/{conversation_id}/participants",
    response_model=ParticipantOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_participant(
    conversation_id: int,
    payload: ParticipantAdd,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return await conversation_service.add_participant(db, conversation_id, current_user.id, payload.user_id)


@router.delete("/{conversation_id}/participants/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_participant(
    conversation_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    await conversation_service.remove_participant(db, conversation_id, current_user.id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{conversation_id}/participants/{user_id}/role", response_model=ParticipantOut)
async def update_participant_role(
    conversation_id: int,
    user_id: int,
    payload: ParticipantRoleUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return await conversation_service.set_role(db, conversation_id, current_user.id, user_id, payload.role)


@router.post("/{conversation_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    await conversation_service.leave_group(db, conversation_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get("/{conversation_id}/messages", response_model=List[MessageOut])
async def read_messages(
    conversation_id: int,
    limit: Optional[int] = Query(default=None, ge=1),
    before_id: Optional[int] = None,
    mark_read: bool = True,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """One page of history (oldest first); observing a page marks it read"""
    messages = message_service.page(db, conversation_id, current_user.id, limit=limit, before_id=before_id)
    if mark_read and messages:
        await read_state.mark_read(db, current_user.id, [m.id for m in messages])
    return messages


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: int,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return await message_service.append(
        db,
        conversation_id,
        current_user.id,
        payload.content,
        message_type=payload.message_type,
        attachment_ref=payload.attachment_ref,
        reply_to_id=payload.reply_to_id,
    )


@router.post("/{conversation_id}/read", response_model=MarkReadOut)
async def mark_conversation_read(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    marked = await read_state.mark_conversation_read(db, current_user.id, conversation_id)
    return {"marked": marked}
