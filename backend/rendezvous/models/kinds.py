"""Tagged variants describing a conversation *before* it is persisted.

Each variant checks its own invariants in ``__post_init__`` so callers get a
``ValidationError``/``InvalidParticipant`` at construction time and the
services never need scattered ``if kind == ...`` participant checks.
"""

from dataclasses import dataclass
from dataclasses import field
from typing import Dict
from typing import Tuple
from typing import Union

from rendezvous.exceptions import InvalidParticipant
from rendezvous.exceptions import ValidationError
from rendezvous.models.enums import ConversationKind
from rendezvous.models.enums import ParticipantRole


@dataclass(frozen=True)
class DirectConversationDraft:
    """Two distinct users, both plain members."""

    user_a: int
    user_b: int
    kind: ConversationKind = field(default=ConversationKind.DIRECT, init=False)

    def __post_init__(self):
        if int(self.user_a) == int(self.user_b):
            raise InvalidParticipant("A direct conversation needs two different users", user_id=self.user_a)

    @property
    def pair(self) -> Tuple[int, int]:
        low, high = sorted((int(self.user_a), int(self.user_b)))
        return low, high

    @property
    def direct_key(self) -> str:
        low, high = self.pair
        return f"{low}:{high}"

    def roles(self) -> Dict[int, ParticipantRole]:
        return {user_id: ParticipantRole.MEMBER for user_id in self.pair}


@dataclass(frozen=True)
class GroupConversationDraft:
    """Named conversation: creator is admin, at least one other member."""

    creator_id: int
    name: str
    member_ids: Tuple[int, ...] = ()
    kind: ConversationKind = field(default=ConversationKind.GROUP, init=False)

    def __post_init__(self):
        name = (self.name or "").strip()
        if not name:
            raise ValidationError("Group name must not be empty")

        # Collapse duplicates and the creator listing themself.
        members = tuple(dict.fromkeys(int(m) for m in self.member_ids if int(m) != int(self.creator_id)))
        if not members:
            raise ValidationError("A group needs at least one member besides its creator")

        object.__setattr__(self, "name", name)
        object.__setattr__(self, "member_ids", members)

    def roles(self) -> Dict[int, ParticipantRole]:
        roles = {int(self.creator_id): ParticipantRole.ADMIN}
        roles.update({m: ParticipantRole.MEMBER for m in self.member_ids})
        return roles


ConversationDraft = Union[DirectConversationDraft, GroupConversationDraft]

__all__ = ["DirectConversationDraft", "GroupConversationDraft", "ConversationDraft"]
