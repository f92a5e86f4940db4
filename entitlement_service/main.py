"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from entitlement_service.api.dependencies import close_clerk_client
from entitlement_service.api.routes import router
from entitlement_service.api.webhook_routes import router as webhook_router
from entitlement_service.config import settings
from entitlement_service.db.migration_runner import run_migrations
from entitlement_service.db.session import close_engines
from entitlement_service.observability import get_logger, metrics, setup_logging, setup_tracing
from entitlement_service.observability.tracing import instrument_fastapi

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)

UNMATCHED_ROUTE = "unmatched"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
        revenuecat_configured=bool(settings.revenuecat_webhook_secret),
        stripe_configured=bool(settings.stripe_api_key),
    )

    if settings.run_migrations_on_startup:
        await run_in_threadpool(run_migrations)

    yield

    logger.info("application_shutting_down")
    await close_clerk_client()
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Log validation errors without echoing request bodies."""
    sanitized_errors: list[dict[str, Any]] = [
        {"type": error.get("type"), "loc": error.get("loc"), "msg": error.get("msg")}
        for error in exc.errors()
    ]

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(status_code=422, content={"detail": sanitized_errors})


# Setup tracing
setup_tracing()
instrument_fastapi(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _route_template(request: Request) -> str:
    """Route path template, so metrics are not labelled per user or resource.

    Requests that matched no route share one label.
    """
    route = request.scope.get("route")
    path: str | None = getattr(route, "path", None)
    return path or UNMATCHED_ROUTE


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.perf_counter()
    request_id = request.headers.get("X-Request-ID", "unknown")
    method = request.method

    logger.debug("request_started", method=method, path=request.url.path, request_id=request_id)
    metrics.http_requests_in_progress.labels(method=method).inc()

    try:
        response = await call_next(request)
        duration = time.perf_counter() - start_time
        metrics.record_http_request(_route_template(request), method, response.status_code, duration)

        logger.info(
            "request_completed",
            method=method,
            path=request.url.path,
            status_code=response.status_code,
            duration_seconds=duration,
            request_id=request_id,
        )
        return response
    except Exception as e:
        duration = time.perf_counter() - start_time
        metrics.record_http_request(_route_template(request), method, 500, duration)
        metrics.record_error(type(e).__name__, "http_request")

        logger.error(
            "request_failed",
            method=method,
            path=request.url.path,
            error=str(e),
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise
    finally:
        metrics.http_requests_in_progress.labels(method=method).dec()


# Register routes
app.include_router(router)  # Entitlement, usage and billing session routes
app.include_router(webhook_router)  # RevenueCat and Stripe webhooks


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "entitlement_service.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
