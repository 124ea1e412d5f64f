"""
Site Insights API.

Ingests first-party tracking and RUM beacons and serves the aggregated
analytics the admin dashboards chart.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from siteinsights.core.config import settings
from siteinsights.core.database import close_db, init_db
from siteinsights.core.logging import configure_logging, get_logger
from siteinsights.middleware import ErrorHandlerMiddleware, RequestIdMiddleware
from siteinsights.routers import (
    analytics_router,
    health_router,
    ingest_router,
    insights_router,
)

configure_logging()
logger = get_logger(__name__)

# Mounted under /api; health stays at the root for probes
API_ROUTERS = (ingest_router, analytics_router, insights_router)


def init_sentry() -> None:
    if not settings.sentry_dsn:
        return
    import sentry_sdk

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=0.1,
        send_default_pii=False,
    )
    logger.info("Sentry initialized")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(
        "Starting application",
        version=settings.app_version,
        environment=settings.environment,
        analytics=settings.analytics_configured,
        search_console=settings.search_console_configured,
        pagespeed=settings.pagespeed_configured,
    )
    await init_db()
    init_sentry()

    yield

    logger.info("Shutting down application")
    await close_db()


def add_cors(app: FastAPI) -> None:
    """Beacons and tracker calls arrive cross-origin from the public site."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Analytics-Source", "X-Request-ID"],
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="First-party analytics, RUM ingestion and dashboard aggregation API",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # First added is innermost
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIdMiddleware)
    add_cors(app)

    app.include_router(health_router)
    for router in API_ROUTERS:
        app.include_router(router, prefix="/api")

    logger.debug("Application created", routes=len(app.routes), cors_origins=settings.allowed_origins)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "siteinsights.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
