"""Domain services of the interaction core.

The module-level instances are what routers and the websocket endpoint use;
tests may build their own with different collaborators.
"""

from .conversation_service import ConversationService
from .message_service import MessageService
from .notification_service import NotificationService
from .read_state import ReadStateLedger
from .social_graph import SocialGraph
from .social_graph import social_graph

read_state = ReadStateLedger()
notification_service = NotificationService(social_graph)
conversation_service = ConversationService(read_state)
message_service = MessageService(notification_service)

__all__ = [
    "ConversationService",
    "MessageService",
    "NotificationService",
    "ReadStateLedger",
    "SocialGraph",
    "conversation_service",
    "message_service",
    "notification_service",
    "read_state",
    "social_graph",
]
