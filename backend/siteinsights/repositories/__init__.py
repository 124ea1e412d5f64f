"""
Repository package for data access layer.
"""
from siteinsights.repositories.base import BaseRepository
from siteinsights.repositories.cache import AnalyticsCacheRepository, SeoCacheRepository
from siteinsights.repositories.insight import InsightRepository
from siteinsights.repositories.tracking import (
    ClickEventRepository,
    PageViewRepository,
    SessionRepository,
    VisitorRepository,
)

__all__ = [
    "BaseRepository",
    "AnalyticsCacheRepository",
    "SeoCacheRepository",
    "InsightRepository",
    "VisitorRepository",
    "SessionRepository",
    "PageViewRepository",
    "ClickEventRepository",
]
