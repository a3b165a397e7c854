"""MailSync - FastAPI Application

This module creates and configures the FastAPI application for MailSync.
"""

import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import health_router, mailbox_router
from .core.config import get_settings_instance
from .core.database import close_db, init_db
from .core.exceptions import MailSyncException
from .core.http_client import HTTPClientManager
from .core.logging import get_logger, setup_logging
from .mailbox.client import GraphMailboxClient
from .services.account_service import MailboxAccountService
from .services.mailbox_repository import SqlAlchemyMailboxRepository
from .services.mailbox_sync_service import MailboxSyncService
from .services.sync_guard import RedisSyncGuard, build_sync_guard

logger = get_logger(__name__)
settings = get_settings_instance()


def generate_error_id() -> str:
    """Generate a unique error ID for tracking."""
    return f"ERR-{uuid.uuid4().hex[:8].upper()}"


def get_request_context(request: Request) -> dict[str, Any]:
    """Extract relevant context from request for error logging."""
    return {
        "method": request.method,
        "path": request.url.path,
        "query_params": dict(request.query_params),
        "user_id": request.headers.get("x-user-id"),
        "client_host": request.client.host if request.client else None,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()

    logger.info("Starting MailSync...")
    logger.info(f"Version: {settings.version}")
    logger.info(f"Environment: {settings.environment}")

    try:
        await init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    http_manager = HTTPClientManager(settings)
    client = GraphMailboxClient(
        await http_manager.get_client(),
        base_url=settings.graph_base_url,
        page_size=settings.delta_page_size,
        batch_size=settings.read_state_batch_size,
    )
    guard = build_sync_guard(settings)
    sync_service = MailboxSyncService(
        client=client,
        repository=SqlAlchemyMailboxRepository(),
        guard=guard,
        settings=settings,
    )
    app.state.http_manager = http_manager
    app.state.sync_service = sync_service
    app.state.account_service = MailboxAccountService(sync_service)
    logger.info("MailSync services initialized")

    yield

    logger.info("Shutting down MailSync...")
    await sync_service.shutdown()
    await http_manager.close()
    if isinstance(guard, RedisSyncGuard):
        await guard.close()
    await close_db()
    logger.info("MailSync shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="MailSync mailbox synchronization API",
        version=settings.version,
        debug=settings.debug,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app)
    setup_exception_handlers(app)
    setup_routes(app)

    logger.info("MailSync FastAPI application created successfully")
    return app


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register handlers that render every failure into the error envelope.

    5xx responses carry an ``error_id`` that is also logged, so a report from a
    client can be matched to the server log line.
    """

    @app.exception_handler(MailSyncException)
    async def mailsync_exception_handler(request: Request, exc: MailSyncException):
        error_id = generate_error_id() if exc.status_code >= 500 else None

        if exc.status_code >= 500:
            logger.error(
                "MailSync server error",
                extra={
                    "error_id": error_id,
                    "error_code": exc.error_code,
                    "error_message": exc.message,
                    "details": exc.details,
                    "request_context": get_request_context(request),
                },
            )
        else:
            logger.warning(
                "MailSync client error",
                extra={
                    "error_code": exc.error_code,
                    "error_message": exc.message,
                    "request_context": get_request_context(request),
                },
            )

        error_response = {
            "error": {
                "code": exc.error_code,
                "message": exc.message,
                "details": exc.details,
            }
        }
        if error_id:
            error_response["error"]["error_id"] = error_id

        return JSONResponse(status_code=exc.status_code, content=error_response)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning(
            "HTTP client error",
            extra={
                "status_code": exc.status_code,
                "detail": exc.detail,
                "request_context": get_request_context(request),
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": f"HTTP_{exc.status_code}", "message": exc.detail, "details": {}}},
            headers=getattr(exc, "headers", None) or None,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "details": {"errors": jsonable_errors(exc)},
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        error_id = generate_error_id()
        include_traceback = settings.debug or settings.log_level == "DEBUG"

        logger.error(
            "Unhandled exception",
            extra={
                "error_id": error_id,
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
                "request_context": get_request_context(request),
            },
            exc_info=include_traceback,
        )

        error_response: dict[str, Any] = {
            "error": {
                "code": "INTERNAL_SERVER_ERROR",
                "message": "Internal server error",
                "error_id": error_id,
                "details": {},
            }
        }
        if include_traceback:
            error_response["error"]["details"] = {
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
                "traceback": traceback.format_exc().split("\n"),
            }

        return JSONResponse(status_code=500, content=error_response)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")} for err in exc.errors()
    ]


def setup_routes(app: FastAPI) -> None:
    """Configure application routes."""
    app.include_router(health_router, prefix=settings.api_v1_prefix)
    app.include_router(mailbox_router, prefix=settings.api_v1_prefix)

    @app.get("/")
    async def root():
        return {"message": f"{settings.app_name} API", "version": settings.version}


# Ensure logging is configured as early as possible (before app instantiation)
# The lifespan will call setup_logging() again but it's guarded to no-op on second call
setup_logging()

app = create_app()
