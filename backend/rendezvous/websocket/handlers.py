"""Handlers for client → server websocket frames.

Clients only ever send three frame types: ``ping`` (answered with ``pong``),
``pong`` (heart-beat acknowledgement) and ``sync`` (request a counter
snapshot).  Everything else the client needs travels over REST.
"""

import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from sqlalchemy.orm import Session

from rendezvous.schemas.ws_messages import Envelope
from rendezvous.schemas.ws_messages import ErrorData
from rendezvous.schemas.ws_messages import MessageType
from rendezvous.schemas.ws_messages import PingData
from rendezvous.schemas.ws_messages import PongData
from rendezvous.schemas.ws_messages import SyncData
from rendezvous.schemas.ws_messages import user_topic
from rendezvous.services import read_state

logger = logging.getLogger(__name__)


async def send_to_client(websocket: WebSocket, envelope: Envelope) -> bool:
    """Push one envelope; ``False`` when the socket refused it."""

    try:
        await websocket.send_json(envelope.model_dump_validated())
        return True
    except Exception as e:  # noqa: BLE001 – log & swallow
        logger.error("Error sending to client: %s", e)
        return False


async def send_error(websocket: WebSocket, error_msg: str, req_id: Optional[str] = None) -> None:
    error_data = ErrorData(
        error=error_msg,
        details={"req_id": req_id} if req_id else None,
    )
    envelope = Envelope.create(
        message_type=MessageType.ERROR.value,
        topic="system",
        data=error_data.model_dump(),
        req_id=req_id,
    )
    await send_to_client(websocket, envelope)


def build_sync_envelope(db: Session, user_id: int, req_id: Optional[str] = None) -> Envelope:
    """Counter snapshot the client reconciles against after (re)connecting."""

    counts = read_state.counts(db, user_id)
    sync_data = SyncData(
        user_id=user_id,
        unread_messages=counts["unread_messages"],
        unread_conversations=counts["unread_conversations"],
        notifications=counts["notifications"],
    )
    return Envelope.create(
        message_type=MessageType.SYNC.value,
        topic=user_topic(user_id),
        data=jsonable_encoder(sync_data.model_dump()),
        req_id=req_id,
    )


async def handle_ping(websocket: WebSocket, user_id: int, envelope: Envelope, _: Session) -> None:
    ping_data = PingData.model_validate(envelope.data)
    response_envelope = Envelope.create(
        message_type=MessageType.PONG.value,
        topic="system",
        data=PongData(timestamp=ping_data.timestamp).model_dump(),
        req_id=envelope.req_id,
    )
    await send_to_client(websocket, response_envelope)


async def handle_pong(websocket: WebSocket, user_id: int, envelope: Envelope, _: Session) -> None:  # noqa: D401
    """Heart-beat acknowledgement; nothing to send back."""
    logger.debug("pong from user %s", user_id)


async def handle_sync(websocket: WebSocket, user_id: int, envelope: Envelope, db: Session) -> None:
    await send_to_client(websocket, build_sync_envelope(db, user_id, envelope.req_id))


Handler = Callable[[WebSocket, int, Envelope, Session], Awaitable[None]]

MESSAGE_HANDLERS: Dict[str, Handler] = {
    MessageType.PING.value: handle_ping,
    MessageType.PONG.value: handle_pong,
    MessageType.SYNC.value: handle_sync,
}


async def dispatch_message(websocket: WebSocket, user_id: int, message: Dict[str, Any], db: Session) -> None:
    """Validate an incoming frame and route it to its handler."""

    try:
        # Clients may omit the server-side bookkeeping fields.
        message = dict(message)
        message.setdefault("topic", "system")
        message.setdefault("data", {})
        message.setdefault("ts", 0)
        envelope = Envelope.model_validate(message)
    except ValidationError as e:
        logger.debug("Rejected malformed frame from user %s: %s", user_id, e)
        await send_error(websocket, "Invalid message format")
        return

    handler = MESSAGE_HANDLERS.get(envelope.type.lower())
    if handler is None:
        await send_error(websocket, f"Unknown message type: {envelope.type}", envelope.req_id)
        return

    try:
        await handler(websocket, user_id, envelope, db)
    except ValidationError:
        await send_error(websocket, f"Invalid {envelope.type} payload", envelope.req_id)
    except Exception as e:
        logger.error("Error handling %s frame: %s", envelope.type, e)
        await send_error(websocket, f"Failed to process {envelope.type}", envelope.req_id)
