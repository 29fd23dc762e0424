"""WebSocket routing module.

One socket per client session.  After authenticating, the socket is
attached to the :data:`dispatcher` for its user and immediately receives a
``sync`` snapshot; change events then stream until either side closes.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter
from fastapi import WebSocket
from fastapi import WebSocketDisconnect
from sqlalchemy.orm import Session
from sqlalchemy.orm import sessionmaker

from rendezvous.constants import WS_ENDPOINT
from rendezvous.database import get_session_factory
from rendezvous.dependencies.auth import validate_ws_jwt
from rendezvous.websocket.dispatcher import ChangeEvent
from rendezvous.websocket.dispatcher import dispatcher
from rendezvous.websocket.handlers import build_sync_envelope
from rendezvous.websocket.handlers import dispatch_message
from rendezvous.websocket.handlers import send_error
from rendezvous.websocket.handlers import send_to_client

router = APIRouter()
logger = logging.getLogger(__name__)

# Close code sent when the dispatcher drops a lagging subscriber.
CLOSE_SUBSCRIBER_DROPPED = 4408


def get_websocket_session(session_factory: Optional[sessionmaker] = None) -> Session:
    """Create a new database session for WebSocket handlers.

    The caller must close it.
    """
    factory = session_factory or get_session_factory()
    return factory()


@router.websocket(WS_ENDPOINT)
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    # Authenticate BEFORE accepting the handshake; 4401 mirrors HTTP 401.
    db_for_auth = get_websocket_session()
    try:
        user = validate_ws_jwt(token, db_for_auth)
        user_id = getattr(user, "id", None)
    finally:
        db_for_auth.close()

    if user_id is None:
        logger.info("WebSocket auth failed – closing connection")
        await websocket.close(code=4401, reason="Unauthorized")
        return

    await websocket.accept()

    async def on_event(event: ChangeEvent) -> None:
        await websocket.send_json(event.to_envelope(user_id).model_dump())

    async def on_close(reason: str) -> None:
        try:
            await websocket.close(code=CLOSE_SUBSCRIBER_DROPPED, reason=reason)
        except Exception:  # noqa: BLE001 – socket already gone
            pass

    subscription = await dispatcher.subscribe(user_id, on_event, on_close)

    try:
        db = get_websocket_session()
        try:
            await send_to_client(websocket, build_sync_envelope(db, user_id))
        finally:
            db.close()

        # Main message loop
        while True:
            raw_data = await websocket.receive_text()
            try:
                data = json.loads(raw_data)
            except json.JSONDecodeError as e:
                logger.warning("Invalid JSON from user %s: %s", user_id, e)
                await send_error(websocket, "Invalid JSON payload")
                continue
            if not isinstance(data, dict):
                await send_error(websocket, "Invalid message format")
                continue

            db = get_websocket_session()
            try:
                await dispatch_message(websocket, user_id, data, db)
            finally:
                db.close()

    except WebSocketDisconnect:
        logger.info("WebSocket connection closed for user %s", user_id)
    except Exception as e:
        logger.error("WebSocket error for user %s: %s", user_id, e)
    finally:
        subscription.cancel()
