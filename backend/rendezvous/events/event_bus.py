"""Event bus implementation for decoupled event handling.

Services publish a change event after their transaction commits; the
real-time dispatcher is the main subscriber.  Every payload follows the same
shape so subscribers never need per-type parsing::

    {
        "event_type": EventType.MESSAGE_CREATED,
        "audience": [3, 17],          # user ids entitled to see the row
        "entity_id": 42,
        "conversation_id": 9,          # None for notifications
        "data": {...},                 # serialised row
    }
"""

import logging
from enum import Enum
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import Set

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Standardized event types for the system."""

    # Conversation events
    CONVERSATION_CREATED = "conversation_created"
    CONVERSATION_UPDATED = "conversation_updated"

    # Participant events
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"
    PARTICIPANT_UPDATED = "participant_updated"

    # Message events
    MESSAGE_CREATED = "message_created"
    MESSAGE_UPDATED = "message_updated"
    MESSAGE_DELETED = "message_deleted"

    # Read-state events (a batch of read marks for one reader)
    MESSAGES_READ = "messages_read"

    # Notification events
    NOTIFICATION_CREATED = "notification_created"
    NOTIFICATION_UPDATED = "notification_updated"
    NOTIFICATION_DELETED = "notification_deleted"


class EventBus:
    """Central event bus for publishing and subscribing to events."""

    def __init__(self):
        """Initialize an empty event bus."""
        self._subscribers: Dict[EventType, Set[Callable[[Dict[str, Any]], Awaitable[None]]]] = {}

    async def publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        """Publish an event to all subscribers.

        A failing subscriber is logged and skipped; the remaining subscribers
        still receive the event.

        Args:
            event_type: The type of event being published
            data: Event payload data
        """
        if event_type not in self._subscribers:
            return

        logger.debug(f"Publishing event {event_type} with data: {data}")

        # Copy: a callback may unsubscribe itself while we iterate.
        for callback in list(self._subscribers[event_type]):
            try:
                await callback(data)
            except Exception as e:
                logger.error(f"Error in event handler for {event_type}: {str(e)}")

    def subscribe(self, event_type: EventType, callback: Callable[[Dict[str, Any]], Awaitable[None]]) -> None:
        """Subscribe to an event type.

        Args:
            event_type: The event type to subscribe to
            callback: Async callback function to handle the event
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = set()

        self._subscribers[event_type].add(callback)
        logger.debug(f"Added subscriber for event {event_type}")

    def unsubscribe(self, event_type: EventType, callback: Callable[[Dict[str, Any]], Awaitable[None]]) -> None:
        """Unsubscribe from an event type.

        Args:
            event_type: The event type to unsubscribe from
            callback: The callback function to remove
        """
        if event_type in self._subscribers:
            self._subscribers[event_type].discard(callback)
            logger.debug(f"Removed subscriber for event {event_type}")

            # Clean up empty subscriber sets
            if not self._subscribers[event_type]:
                del self._subscribers[event_type]

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, ()))


# Global event bus instance
event_bus = EventBus()
