"""Router for the current user's notifications and unread counters."""

from typing import List
from typing import Optional

from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Query
from fastapi import Response
from fastapi import status
from sqlalchemy.orm import Session

from rendezvous.database import get_db
from rendezvous.dependencies.auth import get_current_user
from rendezvous.models.enums import NotificationType
from rendezvous.schemas.schemas import MarkAllReadOut
from rendezvous.schemas.schemas import MarkAllReadRequest
from rendezvous.schemas.schemas import NotificationCounts
from rendezvous.schemas.schemas import NotificationOut
from rendezvous.schemas.schemas import UnreadCounts
from rendezvous.services import notification_service
from rendezvous.services import read_state

router = APIRouter(
    tags=["notifications"],
)

# ``GET /counts`` lives at the API root rather than under /notifications.
counts_router = APIRouter(
    tags=["counts"],
)


@router.get("", response_model=List[NotificationOut])
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    unread_only: bool = False,
    type: Optional[NotificationType] = None,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """Newest first"""
    return notification_service.list_notifications(
        db,
        current_user.id,
        limit=limit,
        offset=offset,
        unread_only=unread_only,
        type=type,
    )


@router.get("/counts", response_model=NotificationCounts)
def notification_counts(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    return read_state.notification_counts(db, current_user.id)


@router.post("/read_all", response_model=MarkAllReadOut)
async def mark_all_read(
    payload: Optional[MarkAllReadRequest] = Body(default=None),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    up_to_id = payload.up_to_id if payload is not None else None
    updated = await read_state.mark_all_notifications_read(db, current_user.id, up_to_id=up_to_id)
    return {"updated": updated}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    changed = await read_state.mark_notification_read(db, current_user.id, notification_id)
    return {"id": notification_id, "changed": changed}


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    await notification_service.delete_notification(db, current_user.id, notification_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@counts_router.get("/counts", response_model=UnreadCounts)
def unread_counts(db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    """Every unread counter for badge rendering"""
    return read_state.counts(db, current_user.id)
