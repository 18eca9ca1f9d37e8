"""S3-compatible file server - FastAPI application."""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from objectstore import api_routes, s3_routes
from objectstore.body import RequestBodyError
from objectstore.config import Settings, settings as default_settings
from objectstore.errors import StorageError
from objectstore.storage import ObjectStorage


def setup_logging(debug: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if debug else logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def _error_response(request: Request, code: str, message: str, status_code: int, resource: str) -> Response:
    """Render an error as JSON on the REST surface and as S3 XML everywhere else."""
    api_prefix = request.app.state.settings.api_prefix
    path = request.url.path
    if path == api_prefix or path.startswith(api_prefix + "/"):
        return JSONResponse(status_code=status_code, content={"error": code, "message": message})
    return s3_routes.s3_error_response(request, code, message, status_code, resource)


async def storage_error_handler(request: Request, exc: StorageError) -> Response:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "storage_error",
        code=exc.code,
        bucket=exc.bucket,
        key=exc.key,
        method=request.method,
        path=request.url.path,
        error=exc.message,
    )
    return _error_response(request, exc.code, exc.message, exc.status_code, exc.resource)


async def request_body_error_handler(request: Request, exc: RequestBodyError) -> Response:
    logger.info("request_body_rejected", code=exc.code, path=request.url.path, error=exc.message)
    return _error_response(request, exc.code, exc.message, exc.status_code, request.url.path)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = first.get("loc", ("request",))[-1]
        message = f"Invalid value for {field}: {first.get('msg', 'invalid')}"
    else:
        message = "Invalid request"
    logger.info("request_validation_failed", path=request.url.path, error=message)
    return _error_response(request, "InvalidArgument", message, 400, request.url.path)


async def unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    logger.error(
        "unhandled_exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    debug = request.app.state.settings.debug
    message = str(exc) if debug else "We encountered an internal error. Please try again."
    return _error_response(request, "InternalError", message, 500, request.url.path)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    app_settings: Settings = app.state.settings
    base_url = app_settings.base_url
    logger.info(
        "application_startup",
        version=app_settings.api_version,
        storage_path=str(app.state.storage.root),
        server=base_url,
        docs=f"{base_url}{app_settings.docs_url}",
        rest_api=f"{base_url}{app_settings.api_prefix}",
        s3_api=base_url,
    )
    yield
    logger.info("application_shutdown")


def create_app(settings: Optional[Settings] = None, storage: Optional[ObjectStorage] = None) -> FastAPI:
    """Build the application around a single shared ObjectStorage instance."""
    if settings is None:
        settings = default_settings
    if storage is None:
        storage = ObjectStorage(settings.storage_path)

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
Local object storage with S3 semantics on top of a directory tree.

- REST API (JSON) under `/api`
- S3-compatible API (XML, path-style) at the root, usable with AWS SDKs
        """,
        lifespan=lifespan,
        docs_url=settings.docs_url,
        redoc_url=None,
        openapi_url=f"{settings.docs_url}/openapi.json",
    )
    app.state.settings = settings
    app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag", "X-Request-ID"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Log all requests with timing and request ID."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()
        logger.info("request_started", method=request.method, path=request.url.path)

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["x-amz-request-id"] = request_id
        return response

    app.add_exception_handler(StorageError, storage_error_handler)
    app.add_exception_handler(RequestBodyError, request_body_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Health check must be registered before the catch-all S3 routes
    @app.get("/health", tags=["Health"], summary="Health check")
    def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.include_router(api_routes.router, prefix=settings.api_prefix)
    # S3 routes are mounted at root for SDK compatibility, so they go last
    app.include_router(s3_routes.router)

    return app


setup_logging(default_settings.debug)
app = create_app()


def run() -> None:
    uvicorn.run(
        "objectstore.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
    )


if __name__ == "__main__":
    run()
