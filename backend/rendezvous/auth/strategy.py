"""Authentication strategy abstraction.

The interaction core never trusts a caller-supplied identity: every service
call receives the user id resolved here.  Two interchangeable strategies
exist so the choice is made once at startup instead of per request:

• :class:`DevAuthStrategy` – auth disabled (local development, tests).
• :class:`JWTAuthStrategy` – HS256 bearer tokens whose ``sub`` is the user id.
"""

from __future__ import annotations

from abc import ABC
from abc import abstractmethod
from typing import Any

from fastapi import HTTPException
from fastapi import Request
from fastapi import status
from jose import jwt
from sqlalchemy.orm import Session

from rendezvous.config import get_settings
from rendezvous.crud import crud

# ---------------------------------------------------------------------------
# Strategy base-class
# ---------------------------------------------------------------------------


class AuthStrategy(ABC):
    """Pluggable authentication backend (strategy pattern)."""

    @abstractmethod
    def get_current_user(self, request: Request, db: Session):  # noqa: D401 – abstract
        """Return the authenticated user or raise **401**."""

    @abstractmethod
    def validate_ws_token(self, token: str | None, db: Session):  # noqa: D401 – abstract
        """Return user for valid token, *None* otherwise (WS handshake)."""


# ---------------------------------------------------------------------------
# Development-mode bypass
# ---------------------------------------------------------------------------


class DevAuthStrategy(AuthStrategy):
    """Bypass all checks – used when *AUTH_DISABLED* is true or in tests."""

    DEV_EMAIL = "dev@local"

    def _get_or_create_dev_user(self, db: Session):
        user = crud.get_user_by_email(db, self.DEV_EMAIL)
        if user is not None:
            return user
        return crud.create_user(db, email=self.DEV_EMAIL, display_name="Developer")

    def get_current_user(self, request: Request, db: Session):  # noqa: D401 – impl
        return self._get_or_create_dev_user(db)

    def validate_ws_token(self, token: str | None, db: Session):  # noqa: D401 – impl
        return self._get_or_create_dev_user(db)


# ---------------------------------------------------------------------------
# HS256 JWT validation (production)
# ---------------------------------------------------------------------------


class JWTAuthStrategy(AuthStrategy):
    """Production strategy that validates HS256 tokens."""

    def __init__(self):
        self._secret = get_settings().jwt_secret

    def _decode(self, token: str) -> dict[str, Any]:  # noqa: D401 – helper
        return jwt.decode(token, self._secret, algorithms=["HS256"])

    def _user_from_token(self, token: str, db: Session):
        """Return the active user for *token*; raise ``ValueError`` otherwise."""

        try:
            payload = self._decode(token)
        except Exception as exc:  # noqa: BLE001
            raise ValueError("Invalid or expired token") from exc

        try:
            user_id_int = int(payload.get("sub"))
        except (TypeError, ValueError) as exc:
            raise ValueError("Invalid token subject") from exc

        user = crud.get_user(db, user_id_int)
        if user is None or not getattr(user, "is_active", True):
            raise ValueError("User not found or inactive")
        return user

    def get_current_user(self, request: Request, db: Session):  # noqa: D401 – impl
        auth_header: str | None = request.headers.get("Authorization")
        if not auth_header or not auth_header.lower().startswith("bearer "):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

        token = auth_header[7:].strip()
        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

        try:
            return self._user_from_token(token, db)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))

    def validate_ws_token(self, token: str | None, db: Session):  # noqa: D401 – impl
        if not token:
            return None
        try:
            return self._user_from_token(token, db)
        except ValueError:
            return None


def issue_token(user_id: int, *, secret: str | None = None, expires_in: int = 3600) -> str:
    """Mint an HS256 token for *user_id* (used by tests and tooling)."""

    from rendezvous.utils.time import utc_now

    now = int(utc_now().timestamp())
    claims = {"sub": str(user_id), "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, secret or get_settings().jwt_secret, algorithm="HS256")


__all__ = [
    "AuthStrategy",
    "DevAuthStrategy",
    "JWTAuthStrategy",
    "issue_token",
]
