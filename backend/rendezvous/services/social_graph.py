"""Follow edges consumed by the interaction core.

The core never owns follow semantics beyond three questions and one write:
"is X following Y", "are X and Y mutual", and inserting/removing an edge.
Inserts are idempotent upserts on UNIQUE(follower_id, following_id).
"""

import logging

from sqlalchemy.orm import Session

from rendezvous.crud import crud
from rendezvous.exceptions import InvalidParticipant
from rendezvous.exceptions import NotFound

logger = logging.getLogger(__name__)


class SocialGraph:
    """Thin façade over the ``user_follows`` table."""

    def is_following(self, db: Session, follower_id: int, following_id: int) -> bool:
        return crud.follow_exists(db, follower_id, following_id)

    def are_mutual(self, db: Session, user_a: int, user_b: int) -> bool:
        return self.is_following(db, user_a, user_b) and self.is_following(db, user_b, user_a)

    def follow(self, db: Session, follower_id: int, following_id: int, *, commit: bool = True) -> bool:
        """Create the edge; returns ``False`` when it already existed."""

        if follower_id == following_id:
            raise InvalidParticipant("Users cannot follow themselves", user_id=follower_id)
        if crud.get_user(db, following_id) is None:
            raise NotFound("User not found", user_id=following_id)

        created = crud.insert_follow(db, follower_id, following_id, commit=commit)
        if created:
            logger.debug("User %s now follows %s", follower_id, following_id)
        return created

    def unfollow(self, db: Session, follower_id: int, following_id: int, *, commit: bool = True) -> bool:
        return crud.delete_follow(db, follower_id, following_id, commit=commit)


social_graph = SocialGraph()
