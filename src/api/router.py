"""Main API router - aggregates all sub-routers.

All routes are versioned under /api/v1 except health checks.
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api import (
    apps,
    auth,
    consents,
    contacts,
    health,
    messages,
    notifications,
    privacy_notices,
    requests,
)

# Public router (no auth required)
public_router = APIRouter()
public_router.include_router(health.router)

# Versioned API router
api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(auth.router)
api_v1_router.include_router(apps.router)
api_v1_router.include_router(contacts.router)
api_v1_router.include_router(consents.router)
api_v1_router.include_router(requests.router)
api_v1_router.include_router(messages.router)
api_v1_router.include_router(privacy_notices.router)
api_v1_router.include_router(notifications.router)
