"""
SQLAlchemy models package.
All models are imported here so they register on the metadata.
"""
from siteinsights.models.cache import AnalyticsCache, SeoCache, SeoKeyword, SeoPage
from siteinsights.models.insight import (
    DecisionInsight,
    InsightPriority,
    InsightStatus,
    InsightType,
)
from siteinsights.models.rum import (
    JourneyEvent,
    ReplayChunk,
    ResourceMetric,
    RumMetric,
    RumMetricType,
)
from siteinsights.models.tracking import (
    CONVERSION_EVENT_TYPES,
    ClickEvent,
    ClickEventType,
    PageView,
    Visitor,
    VisitorSession,
)

__all__ = [
    # Raw event store
    "Visitor",
    "VisitorSession",
    "PageView",
    "ClickEvent",
    "ClickEventType",
    "CONVERSION_EVENT_TYPES",
    "RumMetric",
    "RumMetricType",
    "ResourceMetric",
    "JourneyEvent",
    "ReplayChunk",
    # Caches
    "AnalyticsCache",
    "SeoCache",
    "SeoKeyword",
    "SeoPage",
    # Insights
    "DecisionInsight",
    "InsightType",
    "InsightPriority",
    "InsightStatus",
]
