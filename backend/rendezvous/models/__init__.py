"""Database models for the application."""

from .models import Conversation
from .models import ConversationParticipant
from .models import Message
from .models import MessageRead
from .models import Notification
from .models import User
from .models import UserFollow

__all__ = [
    "Conversation",
    "ConversationParticipant",
    "Message",
    "MessageRead",
    "Notification",
    "User",
    "UserFollow",
]
