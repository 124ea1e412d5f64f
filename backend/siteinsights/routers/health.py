"""
Health check and monitoring endpoints.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from siteinsights.core.config import settings
from siteinsights.core.database import get_db_session

router = APIRouter(tags=["health"])


@router.get("/")
async def root() -> dict:
    """API root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@router.get("/health")
async def health_check() -> dict:
    """Basic health check, including which external sources are configured."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
        "external_sources": {
            "analytics": settings.analytics_configured,
            "search_console": settings.search_console_configured,
            "pagespeed": settings.pagespeed_configured,
        },
    }


@router.get("/health/ready")
async def readiness_check(
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """
    Readiness probe - checks if the service can handle requests.
    Verifies database connectivity.
    """
    try:
        await session.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        db_status = f"error: {e.__class__.__name__}"

    is_ready = db_status == "connected"

    return {
        "status": "ready" if is_ready else "not_ready",
        "checks": {
            "database": db_status,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/live")
async def liveness_check() -> dict:
    """
    Liveness probe - checks if the service is alive.
    Simple check that doesn't verify dependencies.
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
