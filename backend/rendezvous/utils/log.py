"""Structured logging helpers built on *structlog*.

Most modules log through ``logging.getLogger(__name__)``.  Code paths whose
log lines are consumed by dashboards (notification side effects, real-time
delivery drops) use the bound loggers returned by :func:`get_logger` so every
line carries machine-readable key/value context::

    log = get_logger(component="dispatcher")
    log.warning("subscription_dropped", user_id=7, reason="queue_full")
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

# structlog renders through the stdlib logging machinery so LOG_LEVEL and the
# handlers installed by ``rendezvous.main`` apply to structured lines too.
if not structlog.is_configured():
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

# Keep the logger global so every import shares the same base instance.
log = structlog.get_logger("rendezvous")


def get_logger(**bindings: Any):  # noqa: D401 – factory helper
    """Return a bound logger carrying *bindings* on every line."""

    return log.bind(**bindings)


def set_level(level: int) -> None:
    """Apply *level* to the ``rendezvous`` logger hierarchy."""

    logging.getLogger("rendezvous").setLevel(level)


__all__ = ["log", "get_logger", "set_level"]
