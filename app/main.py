"""
FastAPI Application Entry Point

This module sets up the FastAPI application with all middleware,
exception handlers and routing for the Rescue App backend.
"""

import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Dict, Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from app.api.v1.api import api_router
from app.api.v1.contracts import LEGACY_EMAIL_PATH
from app.core.config import settings, setup_logging
from app.core.exceptions import (
    APIException,
    RescueAppException,
    error_body,
    format_exception_for_logging,
)
from app.models.database import check_database_health, create_tables, engine, wait_for_database
from app.services.email import get_email_service

logger = structlog.get_logger(__name__)

# =============================================================================
# Metrics Collection
# =============================================================================

REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code']
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

GENERIC_ERROR_MESSAGE = "An internal server error occurred."

# =============================================================================
# Application Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events for proper resource management.
    """
    setup_logging()
    structlog.contextvars.bind_contextvars(
        app=settings.APP_NAME,
        environment=settings.ENVIRONMENT,
        version=settings.APP_VERSION,
    )

    logger.info("Starting Rescue App backend", version=settings.APP_VERSION, environment=settings.ENVIRONMENT)

    if settings.DATABASE_CREATE_TABLES:
        try:
            await wait_for_database()
            await create_tables()
            logger.info("Database tables initialized")
        except Exception as e:
            logger.error("Database initialization failed", error=str(e))
            raise

    db_health = await check_database_health()
    if db_health["status"] == "healthy":
        logger.info("Database connection verified", **db_health)
    else:
        logger.error("Database health check failed", **db_health)

    if not get_email_service().is_configured:
        logger.warning("SMTP is not configured; email endpoints will return 503")

    yield

    logger.info("Shutting down Rescue App backend")
    try:
        await engine.dispose()
        await get_email_service().close()
        get_email_service.cache_clear()
    except Exception as e:
        logger.error("Error during shutdown", error=str(e))
    logger.info("Application shutdown completed")


# =============================================================================
# Error Rendering
# =============================================================================

def is_legacy_path(request: Request) -> bool:
    return request.url.path == f"{settings.API_V1_PREFIX}{LEGACY_EMAIL_PATH}"


def error_response(
    request: Request,
    status_code: int,
    message: str,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Render an error in the canonical shape (or the legacy one for /send-email)."""
    content = {"message": message} if is_legacy_path(request) else error_body(status_code, message)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def validation_message(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(location)
        messages.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return "; ".join(messages) or "Invalid request data."


async def rescue_app_exception_handler(request: Request, exc: RescueAppException):
    """Handle custom application exceptions."""
    status_code = exc.status_code if isinstance(exc, APIException) else status.HTTP_500_INTERNAL_SERVER_ERROR
    log = logger.bind(path=request.url.path, **format_exception_for_logging(exc))

    if status_code >= 500:
        log.error("Application error")
    else:
        log.info("Request rejected")

    message = exc.message if isinstance(exc, APIException) else GENERIC_ERROR_MESSAGE
    headers = exc.headers if isinstance(exc, APIException) else None
    return error_response(request, status_code, message, headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP errors raised by handlers and by routing (404/405)."""
    if isinstance(exc.detail, str) and exc.detail:
        message = exc.detail
    else:
        message = HTTPStatus(exc.status_code).phrase
    return error_response(request, exc.status_code, message, getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors as 400 with one combined message."""
    message = validation_message(exc)
    logger.info("Request validation failed", path=request.url.path, message=message)
    return error_response(request, status.HTTP_400_BAD_REQUEST, message)


async def unhandled_exception_handler(request: Request, exc: Exception):
    """Log the failure in full; the caller only sees a generic message."""
    logger.error(
        "Unhandled error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    return error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, GENERIC_ERROR_MESSAGE)


# =============================================================================
# Request/Response Middleware
# =============================================================================

async def request_logging_middleware(request: Request, call_next):
    """
    Log all requests and add request ID for tracing.
    """
    structlog.contextvars.clear_contextvars()
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    request.state.request_id = request_id
    structlog.contextvars.bind_contextvars(request_id=request_id)

    log = logger.bind(
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
    )

    start_time = time.perf_counter()
    log.debug("Incoming request")

    try:
        response = await call_next(request)
    except Exception as exc:
        duration = time.perf_counter() - start_time
        log.error("Request failed", error=str(exc), duration=f"{duration:.3f}s")
        if settings.METRICS_ENABLED:
            REQUEST_COUNT.labels(method=request.method, endpoint=route_label(request), status_code=500).inc()
        raise

    duration = time.perf_counter() - start_time

    if settings.METRICS_ENABLED:
        endpoint = route_label(request)
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code
        ).inc()
        REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(duration)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Response-Time"] = f"{duration:.3f}s"

    log.info("Request completed", status_code=response.status_code, duration=f"{duration:.3f}s")
    return response


def route_label(request: Request) -> str:
    """Route template (``/api/v1/animals/{animal_id}``) to keep label cardinality bounded."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


# =============================================================================
# Health Check and Monitoring Endpoints
# =============================================================================

async def health_check():
    """Application health check endpoint."""
    db_health = await check_database_health()
    healthy = db_health["status"] == "healthy"
    health_data = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "services": {
            "database": db_health,
            "email": {"status": "configured" if settings.email_enabled else "disabled"},
        },
    }
    return JSONResponse(
        content=health_data,
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
    )


async def metrics():
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


async def version_info() -> Dict[str, Any]:
    """Application version information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": settings.APP_DESCRIPTION,
        "environment": settings.ENVIRONMENT,
    }


async def root() -> Dict[str, Any]:
    """API root endpoint with basic information."""
    return {
        "message": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs_url": "/docs" if settings.SHOW_DOCS else None,
        "health_url": settings.HEALTH_CHECK_PATH,
        "api_prefix": settings.API_V1_PREFIX,
        "environment": settings.ENVIRONMENT,
        "status": "running",
    }


# =============================================================================
# Application Factory
# =============================================================================

def create_app() -> FastAPI:
    """
    Application factory function.

    Returns:
        Configured FastAPI application instance
    """
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=settings.APP_DESCRIPTION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json" if settings.SHOW_DOCS else None,
        docs_url="/docs" if settings.SHOW_DOCS else None,
        redoc_url="/redoc" if settings.SHOW_DOCS else None,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Location"],
    )
    application.add_middleware(GZipMiddleware, minimum_size=1000)
    application.middleware("http")(request_logging_middleware)

    application.add_exception_handler(RescueAppException, rescue_app_exception_handler)
    application.add_exception_handler(StarletteHTTPException, http_exception_handler)
    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.add_exception_handler(Exception, unhandled_exception_handler)

    application.add_api_route(settings.HEALTH_CHECK_PATH, health_check, methods=["GET"], tags=["system"])
    application.add_api_route("/version", version_info, methods=["GET"], tags=["system"])
    application.add_api_route("/", root, methods=["GET"], tags=["system"])
    if settings.METRICS_ENABLED:
        application.add_api_route("/metrics", metrics, methods=["GET"], tags=["system"])

    application.include_router(api_router, prefix=settings.API_V1_PREFIX)
    return application


app = create_app()


# =============================================================================
# CLI and Development Server
# =============================================================================

if __name__ == "__main__":
    # For production: uvicorn app.main:app --host 0.0.0.0 --port 8000
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=not settings.is_production,
        server_header=False,
    )
