"""
Structured logging for the SoulSync import service.

Every entry is a structlog event rendered as JSON (or as readable console
lines when ``json_logs`` is off). Request-scoped values such as the client
session id are bound through contextvars by the HTTP middleware, so poll and
propagation logs emitted while serving a request carry them too.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

# Keys whose values must never reach the log stream
SECRET_KEYS = frozenset({"token", "access_token", "refresh_token", "authorization"})


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog over stdlib logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines; False gives console output for local runs
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_import_context,
            _redact_secrets,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Per-request noise from the HTTP stack; poll ticks are logged by the poller
    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _add_import_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag entries that carry a conversation id so import traffic is easy to filter."""
    if "conversation_id" in event_dict:
        event_dict.setdefault("component", "chat_import")
    return event_dict


def _redact_secrets(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_context(**values: Any) -> None:
    """Start a fresh request context holding only the given non-empty values."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**{k: v for k, v in values.items() if v})


def log_request(method: str, path: str, status_code: int, duration_ms: float, session_id: str = None):
    """One line per served request; 4xx/5xx at warning level."""
    fields = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "event_type": "http_request",
    }
    # Left out when absent so a session bound on the request context still shows
    if session_id:
        fields["session_id"] = session_id

    logger = get_logger("http")
    if status_code >= 400:
        logger.warning("HTTP request failed", **fields)
    else:
        logger.info("HTTP request completed", **fields)
