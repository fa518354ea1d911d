"""
Structured logging for clawkeeper.

Every component logs dotted event names with key/value context:

    log = get_logger("supervisor", service="gateway")
    log.info("gateway.start", command=command)
    log.error("gateway.start_error", exc=e)

Output is one JSON object per line on stdout. ``exc`` values are expanded into
``error_type`` and ``error`` fields so exceptions stay machine readable.
"""

import logging
import os
import sys
from typing import Any

import structlog

_configured = False


def _render_exc(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    exc = event_dict.pop("exc", None)
    if exc is not None:
        event_dict["error_type"] = type(exc).__name__
        event_dict["error"] = str(exc)
    return event_dict


def configure_logging(level: str | None = None) -> None:
    """Configure structlog once per process. Level defaults to $LOG_LEVEL or INFO."""
    global _configured
    if _configured and level is None:
        return

    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _render_exc,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )
    _configured = True


def get_logger(name: str, **context: Any) -> Any:
    """Return a logger bound to ``name`` and any static context fields."""
    # "logger" would collide with the first parameter of structlog.wrap_logger
    return structlog.get_logger(logger_name=name, **context)
