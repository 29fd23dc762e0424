"""API route configuration."""

# Base prefix for all HTTP routes (served under /api/*)
API_PREFIX = "/api"

# WebSocket endpoint – mounted under API_PREFIX
WS_ENDPOINT = "/ws"

# Router prefixes (relative to API_PREFIX)
CONVERSATIONS_PREFIX = "/conversations"
MESSAGES_PREFIX = "/messages"
NOTIFICATIONS_PREFIX = "/notifications"
USERS_PREFIX = "/users"

