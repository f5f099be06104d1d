"""Structured logging configuration.

Configures structlog with JSON output in production and a coloured console
renderer in dev. Request-scoped values (request_id, user_id, role) are kept
in context variables and merged into every entry.

A production line looks like:

    {"event": "gdpr.request_handled", "level": "info", "logger": "src.services.gdpr_workflow",
     "timestamp": "...Z", "request_id": "req_5f0c...", "user_id": "...", "role": "dpo",
     "request_type": "access"}
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import structlog
from structlog.types import Processor

_REQUEST_ID_HEADER = b"x-request-id"


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Route structlog through stdlib logging on stdout.

    json_logs picks JSONRenderer over the console renderer; log_level is a
    stdlib level name and falls back to INFO when unknown.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    # SQL echo is controlled by DB_ECHO_SQL, keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Request correlation


class RequestIdMiddleware:
    """ASGI middleware that binds a request_id to the log context.

    An incoming X-Request-ID header is reused, otherwise a new id is
    generated. The id is echoed back in the response headers.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = None
        for name, value in scope.get("headers", []):
            if name == _REQUEST_ID_HEADER:
                request_id = value.decode("latin-1")[:64]
                break
        if not request_id:
            request_id = f"req_{uuid.uuid4().hex[:16]}"

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        async def send_with_request_id(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((_REQUEST_ID_HEADER, request_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_request_id)


# Context helpers


def bind_user_context(user_id: str | uuid.UUID, role: str | None = None) -> None:
    """Bind the authenticated user to the log context for this request."""
    values: dict[str, str] = {"user_id": str(user_id)}
    if role:
        values["role"] = str(role)
    structlog.contextvars.bind_contextvars(**values)


def clear_context() -> None:
    """Drop every bound context value."""
    structlog.contextvars.clear_contextvars()
