from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any

import asyncpg
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from helpdesk.api.routes import activity, auth, companies, mail, setup, tickets, users
from helpdesk.core.config import Settings, get_settings
from helpdesk.core.database import Database
from helpdesk.core.errors import HelpdeskError, classify_database_error
from helpdesk.core.logging import configure_logging, log_error, log_info, log_warning
from helpdesk.repositories.audit_logs import ActivityLogRepository
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.imap import MailboxFactory

tags_metadata = [
    {"name": "Auth", "description": "Login, session validation, registration, and password resets."},
    {"name": "Setup", "description": "One-time bootstrap of the first administrator."},
    {"name": "Users", "description": "User administration for admins."},
    {"name": "Companies", "description": "Customer organisations and their mail domains."},
    {"name": "Tickets", "description": "Ticket lifecycle, conversation history, and analytics."},
    {"name": "Mail", "description": "Mailbox ingestion and mail connection settings."},
    {"name": "Activity", "description": "Activity log listing."},
]


def _error_response(status_code: int, message: str, details: Any = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    # Submitted values are left out so passwords never echo back.
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": str(error.get("msg", "")),
            "type": str(error.get("type", "")),
        }
        for error in exc.errors()
    ]


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HelpdeskError)
    async def _helpdesk_error_handler(request: Request, exc: HelpdeskError) -> JSONResponse:
        if exc.status_code >= 500:
            log_error(
                "Request failed",
                path=request.url.path,
                method=request.method,
                error=exc.message,
                error_type=type(exc).__name__,
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(
            status.HTTP_400_BAD_REQUEST,
            "Invalid request",
            _validation_details(exc),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return _error_response(exc.status_code, message)

    async def _database_error_handler(request: Request, exc: Exception) -> JSONResponse:
        classified = classify_database_error(exc)
        if classified is not None:
            log_warning(
                "Database error translated",
                path=request.url.path,
                error_type=type(exc).__name__,
                status_code=classified.status_code,
            )
            return JSONResponse(status_code=classified.status_code, content=classified.to_payload())
        log_error(
            "Database error",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Database error")

    app.add_exception_handler(sqlite3.Error, _database_error_handler)
    app.add_exception_handler(asyncpg.PostgresError, _database_error_handler)

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log_error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    mailbox_factory: MailboxFactory | None = None,
) -> FastAPI:
    """Build the API application around one shared :class:`Database`."""

    settings = settings or get_settings()
    database = database or Database(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Helpdesk API turning a support mailbox into tracked tickets.",
        openapi_tags=tags_metadata,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.activity_logger = ActivityLogger(ActivityLogRepository(database))
    app.state.mailbox_factory = mailbox_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin).rstrip("/") for origin in settings.allowed_origins] or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    @app.on_event("startup")
    async def on_startup() -> None:
        await database.connect()
        await database.run_migrations()
        log_info(
            "Application started",
            environment=settings.environment,
            backend="sqlite" if database.is_sqlite() else "postgres",
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await app.state.activity_logger.drain()
        await database.disconnect()
        log_info("Application shutdown")

    @app.get("/health", tags=["Setup"])
    async def health_check():
        try:
            database_ok = await database.ping()
        except Exception as exc:  # noqa: BLE001 - reported in the payload
            log_warning("Health check database ping failed", error=str(exc))
            database_ok = False
        return {
            "status": "ok" if database_ok else "degraded",
            "database": "ok" if database_ok else "unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(auth.router)
    app.include_router(setup.router)
    app.include_router(users.router)
    app.include_router(companies.router)
    app.include_router(tickets.router)
    app.include_router(mail.router)
    app.include_router(activity.router)
    return app


configure_logging()
app = create_app()
