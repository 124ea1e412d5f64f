"""
API routers package.
"""
from siteinsights.routers.analytics import router as analytics_router
from siteinsights.routers.health import router as health_router
from siteinsights.routers.ingest import router as ingest_router
from siteinsights.routers.insights import router as insights_router

__all__ = [
    "health_router",
    "analytics_router",
    "ingest_router",
    "insights_router",
]
