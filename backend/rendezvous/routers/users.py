"""Router for the current user and follow relationships."""

import logging

from fastapi import APIRouter
from fastapi import Depends
from fastapi import status
from sqlalchemy.orm import Session

from rendezvous.database import get_db
from rendezvous.dependencies.auth import get_current_user
from rendezvous.schemas.schemas import FollowOut
from rendezvous.schemas.schemas import FollowRespondRequest
from rendezvous.schemas.schemas import UserOut
from rendezvous.services import notification_service
from rendezvous.services import social_graph

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["users"],
)


def _follow_state(db: Session, follower_id: int, following_id: int) -> dict:
    return {
        "follower_id": follower_id,
        "following_id": following_id,
        "following": social_graph.is_following(db, follower_id, following_id),
        "mutual": social_graph.are_mutual(db, follower_id, following_id),
    }


@router.get("/me", response_model=UserOut)
def read_current_user(current_user=Depends(get_current_user)):
    return current_user


@router.post("/{user_id}/follow", response_model=FollowOut, status_code=status.HTTP_201_CREATED)
async def follow_user(user_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    """Follow ``user_id``; a new edge sends them a follow request notification"""
    created = social_graph.follow(db, current_user.id, user_id)
    if created:
        await notification_service.notify_follow(db, user_id, current_user.id)
    return _follow_state(db, current_user.id, user_id)


@router.delete("/{user_id}/follow", response_model=FollowOut)
async def unfollow_user(user_id: int, db: Session = Depends(get_db), current_user=Depends(get_current_user)):
    if social_graph.unfollow(db, current_user.id, user_id):
        await notification_service.withdraw_follow(db, user_id, current_user.id)
    return _follow_state(db, current_user.id, user_id)


@router.post("/{user_id}/follow/respond")
async def respond_to_follow(
    user_id: int,
    payload: FollowRespondRequest,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """Accept (follow back) or decline the pending request from ``user_id``"""
    return await notification_service.respond_to_follow(db, current_user.id, user_id, payload.accept)
