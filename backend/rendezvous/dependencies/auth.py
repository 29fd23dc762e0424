"""FastAPI dependencies that expose the *current user*.

The concrete strategy (development bypass vs. JWT validation) lives in
:pymod:`rendezvous.auth.strategy` and is picked from
:pydata:`settings.auth_disabled` so request handlers stay branch-free.
"""

from __future__ import annotations

from fastapi import Depends
from fastapi import Request
from sqlalchemy.orm import Session

from rendezvous.auth.strategy import DevAuthStrategy
from rendezvous.auth.strategy import JWTAuthStrategy
from rendezvous.config import get_settings
from rendezvous.database import get_db

# Tests patch this flag to switch between strategies at runtime.
AUTH_DISABLED: bool = get_settings().auth_disabled  # noqa: N816 – module flag

DEV_EMAIL: str = DevAuthStrategy.DEV_EMAIL

_strategy_cache: dict[str, object] = {}


def _get_strategy():  # noqa: D401 – internal helper
    """Return *singleton* strategy instance based on ``AUTH_DISABLED`` flag."""

    if AUTH_DISABLED:
        if "dev" not in _strategy_cache:
            _strategy_cache["dev"] = DevAuthStrategy()
        return _strategy_cache["dev"]

    if "jwt" not in _strategy_cache:
        _strategy_cache["jwt"] = JWTAuthStrategy()
    return _strategy_cache["jwt"]


def get_current_user(request: Request, db: Session = Depends(get_db)):
    """Return the authenticated *User* row or raise **401**."""

    return _get_strategy().get_current_user(request, db)


def validate_ws_jwt(token: str | None, db: Session):
    """Return user for a valid WebSocket token – *None* when invalid."""

    return _get_strategy().validate_ws_token(token, db)


__all__ = [
    "get_current_user",
    "validate_ws_jwt",
]
