"""
Rate Lowry Backend — FastAPI Application Factory
==================================================

What:  Builds the FastAPI app: middleware, exception handlers, routers and
       the startup/shutdown lifecycle.
Who:   uvicorn (`uvicorn rate_lowry.main:app`).

Lifecycle:
    Startup:
    1. Configure logging
    2. Check image host configuration (warn, keep serving)
    3. Create the upload staging directory
    4. Start the review write buffer flusher and the cache sweeper

    Shutdown:
    1. Stop the cache sweeper
    2. Stop the write buffer, draining every accepted review
    3. Dispose the database engine

Error Envelope:
    Every failure, including FastAPI request validation and unknown routes,
    is answered as {"error", "message", "details", "request_id"}.
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rate_lowry import __version__
from rate_lowry.config import settings
from rate_lowry.database import dispose_engine
from rate_lowry.exceptions import (
    CircuitBreakerOpenError,
    DatabaseError,
    FileStorageError,
    ForbiddenError,
    ImageHostError,
    NotFoundError,
    RateLowryError,
    ValidationError,
    WriteBufferFullError,
    WriteTimeoutError,
)
from rate_lowry.middleware.logging import RequestLoggingMiddleware
from rate_lowry.middleware.rate_limit import RateLimitMiddleware
from rate_lowry.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware, request_id_var
from rate_lowry.routes import admin, food_items, health, reviews, stations, upload
from rate_lowry.services.food_item_service import food_item_service
from rate_lowry.services.write_buffer import review_write_buffer

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """
    Configure the root logger once at startup.

    Format: 2025-01-15T12:00:00 [INFO] rate_lowry.services.review_service: ...
    Library loggers that are chatty at INFO are raised to WARNING.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("Rate Lowry backend %s starting (environment=%s)", __version__, settings.environment)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Only photo uploads depend on these; reviews keep working
        logger.warning("Configuration incomplete: %s", str(e))

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Upload staging directory: %s", storage.resolve())

    review_write_buffer.start()
    food_item_service.cache.start_sweeper()
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)

    yield

    logger.info("Rate Lowry backend shutting down...")
    await food_item_service.cache.stop_sweeper()
    await review_write_buffer.stop()
    await dispose_engine()
    logger.info("Shutdown complete.")


def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details or None,
            "request_id": request_id_var.get("") or None,
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions to HTTP responses.

        ValidationError, RequestValidationError  → 400
        ForbiddenError                           → 403
        NotFoundError                            → 404
        Starlette HTTPException (404/405/...)    → its own status
        DatabaseError, FileStorageError          → 500 (generic message)
        ImageHostError, CircuitBreakerOpenError  → 503 + Retry-After
        WriteBufferFullError, WriteTimeoutError  → 503 + Retry-After
        RateLowryError, Exception                → 500

    Server-side failures never return their context; it is logged instead.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.info("Validation error on %s %s: %s", request.method, request.url.path, exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        first = errors[0] if errors else {"field": "", "message": "Invalid request"}
        message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
        return _error_response(400, "validation_error", message, {"errors": errors})

    @app.exception_handler(ForbiddenError)
    async def handle_forbidden(request: Request, exc: ForbiddenError):
        logger.warning("Forbidden: %s %s", request.method, request.url.path)
        return _error_response(403, "forbidden", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message, exc.context)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        codes = {404: "not_found", 405: "method_not_allowed"}
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if exc.status_code == 405:
            message = f"Method '{request.method}' Not Allowed"
        return _error_response(
            exc.status_code,
            codes.get(exc.status_code, "http_error"),
            message,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("Database error: %s | Context: %s", exc.message, exc.context)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("File storage error: %s | Context: %s", exc.message, exc.context)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_open(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("Image host circuit open: %s", exc.message)
        return _error_response(
            503,
            "service_unavailable",
            exc.message,
            {"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(ImageHostError)
    async def handle_image_host_error(request: Request, exc: ImageHostError):
        logger.error("Image host error: %s | Context: %s", exc.message, exc.context)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return _error_response(503, "image_host_error", exc.message, headers=headers)

    @app.exception_handler(WriteBufferFullError)
    async def handle_buffer_full(request: Request, exc: WriteBufferFullError):
        return _error_response(
            503,
            "write_buffer_full",
            exc.message,
            {"retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(WriteTimeoutError)
    async def handle_write_timeout(request: Request, exc: WriteTimeoutError):
        return _error_response(
            503,
            "write_timeout",
            exc.message,
            {"timeout_seconds": exc.timeout},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(RateLowryError)
    async def handle_app_error(request: Request, exc: RateLowryError):
        logger.error("Unhandled application error: %s | Context: %s", exc.message, exc.context)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unexpected error on %s %s: %s", request.method, request.url.path, str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Rate Lowry API",
        description=(
            "Reviews and ratings for the food served at Lowry dining hall: "
            "submit reviews with photos, browse per-dish averages by station."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (last added runs first) ────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    # Outermost so 429 responses carry the request ID too
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(reviews.router)
    app.include_router(food_items.router)
    app.include_router(stations.router)
    app.include_router(upload.router)
    app.include_router(admin.router)
    app.include_router(health.router)

    return app


app = create_app()
