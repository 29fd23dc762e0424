"""Typed websocket frames.

Every frame on ``/api/ws`` is an :class:`Envelope`; ``data`` holds one of the
payload models below.  Envelopes are validated against
:data:`ENVELOPE_SCHEMA` with *jsonschema* when they are created so a
malformed frame fails at the producer rather than in the browser.
"""

import time
from enum import Enum
from typing import Any
from typing import Dict
from typing import Literal
from typing import Optional

import jsonschema
from pydantic import BaseModel
from pydantic import Field


class Envelope(BaseModel):
    """Unified envelope for all WebSocket messages with validation."""

    v: int = Field(default=1, description="Protocol version")
    type: str = Field(description="Message type identifier")
    topic: str = Field(description="Topic routing string")
    req_id: Optional[str] = Field(default=None, description="Request correlation ID")
    ts: int = Field(description="Timestamp in milliseconds since epoch")
    data: Dict[str, Any] = Field(description="Message payload")

    @classmethod
    def create(
        cls,
        message_type: str,
        topic: str,
        data: Dict[str, Any],
        req_id: Optional[str] = None,
    ) -> "Envelope":
        """Create and validate a new envelope."""
        envelope = cls(
            type=message_type.lower(),
            topic=topic,
            data=data,
            req_id=req_id,
            ts=int(time.time() * 1000),
        )
        # Validate on creation for fail-fast behavior
        validate_envelope_fast(envelope.model_dump())
        return envelope

    def model_dump_validated(self) -> Dict[str, Any]:
        """Dump model with runtime validation."""
        data = self.model_dump()
        validate_envelope_fast(data)
        return data


# Message payload schemas


class PingData(BaseModel):
    """Payload for PingData messages"""

    timestamp: Optional[int] = Field(default=None, ge=0, description="")


class PongData(BaseModel):
    """Payload for PongData messages"""

    timestamp: Optional[int] = Field(default=None, ge=0, description="")


class ErrorData(BaseModel):
    """Payload for ErrorData messages"""

    error: str = Field(min_length=1, description="")
    details: Optional[Dict[str, Any]] = None


class ChangeData(BaseModel):
    """Payload for row-change messages (insert/update/delete)."""

    entity: Literal["conversation", "participant", "message", "read", "notification"]
    op: Literal["insert", "update", "delete"]
    entity_id: Any
    conversation_id: Optional[int] = Field(default=None, ge=1, description="")
    row: Dict[str, Any] = Field(default_factory=dict)


class SyncData(BaseModel):
    """Counter snapshot sent on (re)connect and on request.

    Streams are not replayed, so clients re-fetch whatever the snapshot
    shows as stale.
    """

    user_id: int = Field(ge=1, description="")
    unread_messages: int = Field(ge=0, description="")
    unread_conversations: int = Field(ge=0, description="")
    notifications: Dict[str, Any]


class MessageType(str, Enum):
    """Enumeration of all WebSocket message types."""

    PING = "ping"
    PONG = "pong"
    ERROR = "error"
    SYNC = "sync"


# Row-change frames use the originating event type as their ``type``
# (``message_created``, ``notification_updated``, ...) with a ChangeData payload.


def user_topic(user_id: int) -> str:
    return f"user:{user_id}"


def conversation_topic(conversation_id: int) -> str:
    return f"conversation:{conversation_id}"


# Fast validation functions


def validate_envelope_fast(data: Dict[str, Any]) -> None:
    """Envelope validation using jsonschema.

    Raises:
        ValueError: when *data* does not match :data:`ENVELOPE_SCHEMA`.
    """
    try:
        jsonschema.validate(data, ENVELOPE_SCHEMA)
    except jsonschema.ValidationError as e:
        raise ValueError(f"Envelope validation failed: {e.message}") from e


# Schema constants for validation
ENVELOPE_SCHEMA = {
    "type": "object",
    "required": ["v", "type", "topic", "ts", "data"],
    "additionalProperties": False,
    "properties": {
        "v": {"type": "integer", "const": 1},
        "type": {"type": "string"},
        "topic": {"type": "string"},
        "req_id": {"type": ["string", "null"]},
        "ts": {"type": "integer"},
        "data": {"type": "object"},
    },
}
