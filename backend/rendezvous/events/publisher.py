"""
Change-event publishing.

Single entry point for services that need to announce a committed change.
Publishing happens *after* the database transaction commits, so a failure
here can never undo the write; it is logged and swallowed.
"""

import logging
from typing import Any
from typing import Dict
from typing import Iterable
from typing import Optional

from . import EventType
from . import event_bus

logger = logging.getLogger(__name__)


def build_change(
    event_type: EventType,
    *,
    audience: Iterable[int],
    entity_id: Any,
    conversation_id: Optional[int] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Assemble the payload every change event carries."""

    return {
        "event_type": event_type,
        "audience": sorted({int(uid) for uid in audience}),
        "entity_id": entity_id,
        "conversation_id": conversation_id,
        "data": data or {},
    }


async def publish_event(event_type: EventType, data: Dict[str, Any]) -> None:
    """
    Publish *data* on the process event bus.

    Args:
        event_type: The event type to publish
        data: Event data dictionary (usually from :func:`build_change`)

    Usage:
        await publish_event(EventType.MESSAGE_CREATED, build_change(...))
    """
    try:
        await event_bus.publish(event_type, data)
    except Exception as e:
        logger.error(f"Failed to publish event {event_type}: {e}")
        # Don't re-raise - the change is already committed


async def publish_change(
    event_type: EventType,
    *,
    audience: Iterable[int],
    entity_id: Any,
    conversation_id: Optional[int] = None,
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """Shorthand for ``publish_event(event_type, build_change(...))``."""

    await publish_event(
        event_type,
        build_change(
            event_type,
            audience=audience,
            entity_id=entity_id,
            conversation_id=conversation_id,
            data=data,
        ),
    )
