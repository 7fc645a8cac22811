"""
FastAPI application factory.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from anchor_indexer import __version__
from anchor_indexer.api.dependencies import cleanup_dependencies
from anchor_indexer.api.routes import checkins, crawl, health, repos
from anchor_indexer.config.settings import get_settings
from anchor_indexer.errors import ConsistencyError
from anchor_indexer.observability.tracing import (
    get_tracer,
    is_tracing_enabled,
    setup_tracing,
    traced,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Indexer API starting up")

    settings = get_settings()
    if settings.tracing_enabled and not is_tracing_enabled():
        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )

    yield

    logger.info("Indexer API shutting down")
    await cleanup_dependencies()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    openapi_tags = [
        {"name": "health", "description": "Service health checks"},
        {"name": "checkins", "description": "Canonical check-in feeds"},
        {"name": "repos", "description": "Tracked-repo registration"},
        {"name": "crawl", "description": "Manually triggered crawl sessions"},
    ]

    app = FastAPI(
        title="Anchor Indexer API",
        description="""
Read and control interface for the check-in indexer.

## Authentication

Requires `X-API-KEY` header for all requests except `/health`.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=openapi_tags,
    )

    cors_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    tracer = get_tracer("anchor_indexer.api")

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()
        route = f"{request.method} {request.url.path}"

        try:
            with traced(tracer, route, {"http.request_id": request_id}) as span:
                response = await call_next(request)
                span.set_attribute("http.status_code", response.status_code)

            response.headers["X-Request-ID"] = request_id
            logger.info(
                "HTTP request",
                route=route,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(ConsistencyError)
    async def consistency_exception_handler(request: Request, exc: ConsistencyError):
        logger.error("Registry consistency failure", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "error_type": "consistency"},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "internal"},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(checkins.router, tags=["checkins"])
    app.include_router(repos.router, tags=["repos"])
    app.include_router(crawl.router, tags=["crawl"])

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": "Anchor Indexer API",
            "version": __version__,
            "docs": "/docs",
        }

    return app
