"""Telemetry package: structured logging and request correlation."""

from __future__ import annotations

from src.telemetry.logging import (
    RequestIdMiddleware,
    bind_user_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "RequestIdMiddleware",
    "bind_user_context",
    "clear_context",
    "configure_logging",
]
