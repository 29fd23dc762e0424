"""Router for operations on individual messages."""

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Response
from fastapi import status
from sqlalchemy.orm import Session

from rendezvous.database import get_db
from rendezvous.dependencies.auth import get_current_user
from rendezvous.schemas.schemas import MarkReadOut
from rendezvous.schemas.schemas import MarkReadRequest
from rendezvous.schemas.schemas import MessageOut
from rendezvous.schemas.schemas import MessageUpdate
from rendezvous.services import message_service
from rendezvous.services import read_state

router = APIRouter(
    tags=["messages"],
)


@router.post("/read", response_model=MarkReadOut)
async def mark_messages_read(
    payload: MarkReadRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """Idempotently mark messages read; own and foreign messages are skipped"""
    marked = await read_state.mark_read(db, current_user.id, payload.message_ids)
    return {"marked": marked}


@router.patch("/{message_id}", response_model=MessageOut)
async def edit_message(
    message_id: int,
    payload: MessageUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return await message_service.edit(db, message_id, current_user.id, payload.content)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    await message_service.delete(db, message_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
