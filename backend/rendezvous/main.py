import logging

from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from rendezvous.config import get_settings
from rendezvous.constants import API_PREFIX
from rendezvous.constants import CONVERSATIONS_PREFIX
from rendezvous.constants import MESSAGES_PREFIX
from rendezvous.constants import NOTIFICATIONS_PREFIX
from rendezvous.constants import USERS_PREFIX
from rendezvous.database import initialize_database
from rendezvous.exceptions import CoreError
from rendezvous.exceptions import Unavailable
from rendezvous.routers.conversations import router as conversations_router
from rendezvous.routers.messages import router as messages_router
from rendezvous.routers.notifications import counts_router
from rendezvous.routers.notifications import router as notifications_router
from rendezvous.routers.users import router as users_router
from rendezvous.routers.websocket import router as websocket_router
from rendezvous.utils.log import set_level

_settings = get_settings()

# --------------------------------------------------------------------------
# LOGGING CONFIGURATION
# --------------------------------------------------------------------------
#
# - Default log level: INFO
# - Can be set at runtime with LOG_LEVEL env (e.g. LOG_LEVEL=WARNING for CI)
# - Websocket connect/disconnect chatter is suppressed to WARNING
#
_log_level = getattr(logging, _settings.log_level.upper(), logging.INFO)
if not isinstance(_log_level, int):
    _log_level = logging.INFO
logging.basicConfig(level=_log_level, format="%(levelname)s - %(message)s", handlers=[logging.StreamHandler()])
set_level(_log_level)

for _noisy_mod in ("rendezvous.routers.websocket", "rendezvous.websocket.dispatcher"):
    logging.getLogger(_noisy_mod).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

app = FastAPI(title="Rendezvous", redirect_slashes=True)

# ------------------------------------------------------------------
# CORS – open wildcard in dev/tests, restricted in production unless
# `ALLOWED_CORS_ORIGINS` (comma-separated) overrides it.
# ------------------------------------------------------------------

if _settings.auth_disabled:
    cors_origins = ["*"]
else:
    cors_origins_env = _settings.allowed_cors_origins
    if cors_origins_env.strip():
        cors_origins = [o.strip() for o in cors_origins_env.split(",") if o.strip()]
    else:
        cors_origins = ["http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error mapping – domain errors carry their own HTTP status
# ---------------------------------------------------------------------------


def _error_response(exc: CoreError) -> JSONResponse:
    content = {"detail": exc.message or exc.__class__.__name__, "error": exc.__class__.__name__}
    if exc.details:
        content["context"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.__class__.__name__, request.url.path, exc.message)
    else:
        logger.debug("%s on %s: %s", exc.__class__.__name__, request.url.path, exc.message)
    return _error_response(exc)


@app.exception_handler(OperationalError)
async def store_unavailable_handler(request: Request, exc: OperationalError):
    """Backing store unreachable – clients fall back to cached state and retry."""
    logger.error("Database unavailable on %s: %s", request.url.path, exc)
    return _error_response(Unavailable("Backing store unavailable"))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Include our API routers with centralized prefixes
app.include_router(conversations_router, prefix=f"{API_PREFIX}{CONVERSATIONS_PREFIX}")
app.include_router(messages_router, prefix=f"{API_PREFIX}{MESSAGES_PREFIX}")
app.include_router(notifications_router, prefix=f"{API_PREFIX}{NOTIFICATIONS_PREFIX}")
app.include_router(counts_router, prefix=API_PREFIX)
app.include_router(users_router, prefix=f"{API_PREFIX}{USERS_PREFIX}")
app.include_router(websocket_router, prefix=API_PREFIX)


@app.on_event("startup")
async def startup_event():
    """Create DB tables if they don't exist."""
    initialize_database()
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown_event():
    """Drop live subscriptions so writer tasks do not outlive the app."""
    from rendezvous.websocket.dispatcher import dispatcher

    await dispatcher.shutdown()
    logger.info("Realtime dispatcher stopped")


@app.get("/")
async def read_root():
    """Return a simple message to indicate the API is working."""
    return {"message": "Rendezvous API is running"}
