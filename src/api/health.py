"""Health check endpoints.

/health/live   - Liveness probe: is the process up?
/health/ready  - Readiness probe: DB reachable and notification workers running?

These are public endpoints - no auth required.
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.database import get_engine
from src.notifications.dispatcher import get_dispatcher

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict:
    """Liveness probe - always returns 200 if the process is running."""
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


@router.get("/ready")
async def readiness(response: Response) -> dict:
    """Readiness probe - checks DB connectivity and the dispatcher."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "ok"
    except (RuntimeError, SQLAlchemyError, OSError) as exc:
        log.warning("health.database_unavailable", error=str(exc))
        db_status = f"error: {exc}"

    try:
        dispatcher = get_dispatcher()
        notifications_status = "ok" if dispatcher.is_running else "stopped"
        pending = dispatcher.pending
    except RuntimeError:
        notifications_status = "not_configured"
        pending = 0

    is_ready = db_status == "ok" and notifications_status == "ok"
    if not is_ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "ready" if is_ready else "not_ready",
        "database": db_status,
        "notifications": notifications_status,
        "notifications_pending": pending,
        "timestamp": datetime.now(UTC).isoformat(),
    }
