"""Domain errors raised by the interaction core.

Routers translate them into HTTP responses (see ``rendezvous.main``) and the
websocket layer into ``error`` envelopes.  A direct-conversation creation
race that resolves to an existing row is **not** an error: the services
report it as a normal result with ``created=False``.
"""


class CoreError(Exception):
    """Base class for every error surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str = "", **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CoreError):
    """Malformed or missing required input (e.g. an empty group name)."""

    status_code = 400


class InvalidParticipant(ValidationError):
    """A participant list that violates the conversation kind's invariants."""


class InvalidOperation(ValidationError):
    """The operation does not apply to this conversation (kind or state)."""

    status_code = 409


class PermissionDenied(CoreError):
    """Actor lacks rights: not a participant, not the sender, not an admin."""

    status_code = 403


class NotFound(CoreError):
    """Referenced conversation, message, notification or user is absent."""

    status_code = 404


class Unavailable(CoreError):
    """Backing store or change feed unreachable."""

    status_code = 503


__all__ = [
    "CoreError",
    "ValidationError",
    "InvalidParticipant",
    "InvalidOperation",
    "PermissionDenied",
    "NotFound",
    "Unavailable",
]
