"""Shared *Enum* definitions for SQLAlchemy & Pydantic models.

The Enums inherit from ``str`` so that JSON serialisation renders plain
strings and equality checks against raw literals (``kind == "direct"``) keep
working.
"""

from __future__ import annotations

from enum import Enum


class ConversationKind(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


class ParticipantRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class NotificationType(str, Enum):
    FOLLOW = "follow"
    MESSAGE = "message"
    LIKE = "like"
    COMMENT = "comment"


__all__ = [
    "ConversationKind",
    "ParticipantRole",
    "MessageType",
    "NotificationType",
]
