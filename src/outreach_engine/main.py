"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from outreach_engine import __version__
from outreach_engine.api import clients, health, outreach
from outreach_engine.config import Settings, get_settings
from outreach_engine.core.exceptions import OutreachEngineError
from outreach_engine.core.log_setup import get_logger, setup_logging
from outreach_engine.db import SqlClientStore, close_db, get_session_factory, init_db
from outreach_engine.integrations.mailbox.factory import create_mailbox
from outreach_engine.lifecycle.engine import OutreachEngine
from outreach_engine.lifecycle.poller import ReplyPoller


def outreach_error_handler(request: Request, exc: OutreachEngineError) -> JSONResponse:
    """Map engine errors to their HTTP status and structured body."""
    log = get_logger(__name__)
    if exc.status_code >= 500:
        log.error("Request failed", error=str(exc), path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with structured response."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": _status_code_to_error_type(exc.status_code),
            "message": str(exc.detail),
            "status_code": exc.status_code,
        },
    )


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with detailed field information."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors.append({
            "field": field or "request",
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": {"errors": errors},
        },
    )


def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Logs the error and returns a generic 500 response without exposing
    internal details outside debug mode.
    """
    log = get_logger(__name__)
    log.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )

    settings = get_settings()
    detail = str(exc) if settings.debug else "An internal error occurred"

    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": detail,
        },
    )


def _status_code_to_error_type(status_code: int) -> str:
    """Map HTTP status codes to error type strings."""
    error_types = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    return error_types.get(status_code, "ERROR")


def build_engine(settings: Settings) -> OutreachEngine:
    """Engine over the configured SQL database and mailbox."""
    mailbox = create_mailbox(settings.mailbox, timeout=settings.outreach.mailbox_timeout_seconds)
    return OutreachEngine(
        SqlClientStore(get_session_factory()),
        mailbox,
        settings.outreach,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    log = get_logger(__name__)

    owns_engine = app.state.engine is None
    if owns_engine:
        setup_logging(
            level=settings.log_level,
            json_output=settings.log_json,
            instance_id=settings.instance_id or None,
        )
        log.info(
            "Starting Outreach Engine",
            version=__version__,
            environment=settings.environment,
        )

        log.info("Initializing database")
        await init_db()
        app.state.engine = build_engine(settings)

    engine: OutreachEngine = app.state.engine
    await engine.start()

    poller: ReplyPoller | None = None
    start_poller = app.state.start_poller
    if start_poller is None:
        start_poller = settings.poller_enabled
    if start_poller and engine.monitor is not None:
        poller = ReplyPoller(
            engine.check_replies_now,
            interval_seconds=engine.settings.reply_check_interval_seconds,
            sweep=engine.sweep,
        )
        await poller.start()
    app.state.poller = poller

    yield

    log.info("Shutting down Outreach Engine")
    if poller:
        await poller.stop()
        app.state.poller = None

    await engine.close()

    if owns_engine:
        app.state.engine = None
        await close_db()
        log.info("Database connections closed")


def create_app(
    engine: OutreachEngine | None = None,
    start_poller: bool | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        engine: Pre-built engine; when omitted the lifespan builds one
            over the configured database and mailbox
        start_poller: Override ``poller_enabled`` from settings
    """
    settings = get_settings()

    app = FastAPI(
        title="Outreach Engine",
        description="Client outreach lifecycle engine",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.engine = engine
    app.state.start_poller = start_poller
    app.state.poller = None

    # Exception handlers (most specific first)
    app.add_exception_handler(OutreachEngineError, outreach_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(clients.router, tags=["Clients"])
    app.include_router(outreach.router, tags=["Outreach"])

    return app


def run() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "outreach_engine.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
