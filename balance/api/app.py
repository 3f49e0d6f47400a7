"""FastAPI server for Balance statement uploads"""

from __future__ import annotations

import os
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from balance import __version__
from balance.api.middleware.security_headers import SecurityHeadersMiddleware
from balance.api.routes.auth import router as auth_router
from balance.api.routes.files import router as files_router
from balance.api.routes.health import router as health_router
from balance.api.routes.sessions import router as sessions_router
from balance.auth.access_tokens import AccessTokenIssuer
from balance.auth.email_tokens import EmailTokenService
from balance.auth.rate_limiter import SlidingWindowRateLimiter
from balance.auth.service import AuthService
from balance.config import Settings, get_settings
from balance.errors import BalanceError, StorageError
from balance.files.service import FileService
from balance.infrastructure.database import init_database, validate_schema
from balance.infrastructure.email_delivery import (
    EmailSender,
    MagicLinkMailer,
    build_email_sender,
)
from balance.infrastructure.storage import ObjectStorage
from balance.observability.logging import get_logger
from balance.observability.telemetry import counter, log_event
from balance.sessions.service import SessionService
from balance.storage.retention import start_maintenance_thread
from balance.utils.redaction import redact

logger = get_logger(__name__)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Request-shape errors become 400s that name fields but not rules.

    Side Effects:
        - Logs detailed validation errors for debugging (with PII redaction)
        - Increments validation error counter for monitoring
    """
    logger.warning("Validation error on %s: %s", redact(str(request.url)), exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            # Only expose field names, not validation logic
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


async def balance_exception_handler(request: Request, exc: BalanceError) -> JSONResponse:
    """Map domain errors onto their status code with a caller-safe message."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    else:
        logger.info("%s on %s %s", type(exc).__name__, request.method, request.url.path)
    counter(f"api.errors.{exc.status_code}")

    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def _init_database_schema() -> None:
    """
    Create and validate the SQLite schema (fail fast if the database is broken).

    Raises:
        RuntimeError: If the database can't be initialized or is invalid
    """
    try:
        logger.info("Initializing database schema...")
        init_database()
        validate_schema()
        logger.info("Database initialization complete")
    except sqlite3.OperationalError as e:
        logger.critical("Database schema error: %s", e)
        raise RuntimeError(f"Database initialization failed: {e}") from e
    except ValueError as e:
        logger.critical("Database schema invalid: %s", e)
        raise RuntimeError(f"Database schema validation failed: {e}") from e


def create_app(
    settings: Settings | None = None,
    storage: ObjectStorage | None = None,
    email_sender: EmailSender | None = None,
    start_maintenance: bool = True,
) -> FastAPI:
    """
    Build the API with its services wired onto ``app.state``.

    Raises:
        ConfigurationError: Missing JWT secret, email credentials or public URL
        RuntimeError: Database initialization failed
    """
    settings = settings or get_settings()
    try:
        settings.validate()
    except RuntimeError as e:
        logger.critical("Configuration error: %s", e)
        raise

    _init_database_schema()

    storage = storage or ObjectStorage(settings)
    access_tokens = AccessTokenIssuer(
        settings.jwt_secret,
        settings.jwt_expires_in,
        settings.session_bootstrap_expires_in,
    )
    email_tokens = EmailTokenService(settings.magic_link_ttl_minutes)
    session_service = SessionService(settings, storage, access_tokens)
    file_service = FileService(settings, storage)
    auth_service = AuthService(
        email_tokens=email_tokens,
        access_tokens=access_tokens,
        sessions=session_service,
        mailer=MagicLinkMailer(settings, email_sender or build_email_sender(settings)),
        rate_limiter=SlidingWindowRateLimiter(
            settings.rate_limit_window_seconds, settings.rate_limit_max_requests
        ),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.storage_verify_on_startup:
            try:
                storage.verify_bucket()
            except StorageError as e:
                logger.critical("Storage check failed: %s", e.message)
                raise RuntimeError(f"Storage verification failed: {e.message}") from e

        stop_event = None
        if start_maintenance:
            _, stop_event = start_maintenance_thread(
                session_service, email_tokens, settings.maintenance_interval_seconds
            )

        log_event("api.startup", service="balance", version=__version__, env=settings.env)
        yield

        if stop_event is not None:
            stop_event.set()

    app = FastAPI(title="Balance API", version=__version__, lifespan=lifespan)

    app.state.settings = settings
    app.state.storage = storage
    app.state.access_tokens = access_tokens
    app.state.session_service = session_service
    app.state.file_service = file_service
    app.state.auth_service = auth_service

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(BalanceError, balance_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(SecurityHeadersMiddleware, enforce_https=not settings.is_local)

    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(auth_router)
    app.include_router(files_router)

    @app.get("/")
    def root() -> dict[str, Any]:
        return {
            "service": "Balance API",
            "version": __version__,
            "status": "running",
            "endpoints": {
                "health": "/health",
                "sessions": "/sessions",
                "request_link": "/auth/request-link",
                "request_sessions": "/auth/request-sessions",
                "verify": "/auth/verify",
            },
        }

    return app


def main() -> None:
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run(
        "balance.api.app:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
