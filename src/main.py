"""Privacy dashboard API: app factory, lifespan and error mapping.

On startup the lifespan configures logging, opens the database, optionally
creates tables and demo accounts, then starts the notification dispatcher.
On shutdown the dispatcher drains its queue before the pool is disposed, so
queued in-app notifications can still be written.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.router import api_v1_router, public_router
from src.config import Settings, get_settings
from src.core.errors import PrivacyDashboardError
from src.database import close_db, create_all, get_session_factory, init_db
from src.notifications.channels import channels_from_settings
from src.notifications.dispatcher import NotificationDispatcher, set_dispatcher
from src.services.provisioning import ProvisioningService
from src.telemetry import RequestIdMiddleware, configure_logging

log = structlog.get_logger(__name__)


async def _seed_demo_accounts() -> None:
    async with get_session_factory()() as session:
        await ProvisioningService(session).seed_demo_accounts()
        await session.commit()


def build_dispatcher(settings: Settings) -> NotificationDispatcher:
    return NotificationDispatcher(
        channels_from_settings(settings, get_session_factory()),
        workers=settings.notification_workers,
        backlog_warning=settings.notification_backlog_warning,
        max_retries=settings.notification_max_retries,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()

    configure_logging(
        json_logs=settings.use_json_logs,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )

    log.info(
        "app.starting",
        environment=settings.environment,
        database=settings.database_url.rsplit("@", 1)[-1],
    )

    init_db(settings)
    if settings.db_create_all:
        await create_all()
    if settings.seed_demo_accounts:
        await _seed_demo_accounts()

    dispatcher = build_dispatcher(settings)
    await dispatcher.start()
    set_dispatcher(dispatcher)
    app.state.dispatcher = dispatcher

    log.info("app.ready")
    yield

    await dispatcher.shutdown(drain=True)
    set_dispatcher(None)
    await close_db()
    log.info("app.shutdown")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PrivacyDashboardError)
    async def dashboard_error_handler(request: Request, exc: PrivacyDashboardError) -> JSONResponse:
        log.info(
            "app.request_rejected",
            path=request.url.path,
            method=request.method,
            error=exc.code,
            detail=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "app.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error", "code": "internal_error"})


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Privacy Dashboard",
        description=(
            "GDPR privacy dashboard: consent ledger, data subject requests, "
            "messaging and privacy notices for subjects, controllers and DPOs."
        ),
        version="0.1.0",
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )

    # RequestIdMiddleware is added last so it wraps CORS and sees every response
    cors_origins = ["*"] if settings.is_dev else settings.cors_allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.is_prod,
        allow_methods=["*"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(public_router)
    app.include_router(api_v1_router)

    register_exception_handlers(app)
    return app


# uvicorn src.main:app
app = create_app()
