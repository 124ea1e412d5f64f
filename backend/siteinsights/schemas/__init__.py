"""
Pydantic schemas package.
"""
from siteinsights.schemas.analytics import (
    AggregateRequest,
    ConversionsShape,
    EventsShape,
    GeoShape,
    InsightsRunShape,
    MetricShape,
    MetricType,
    OverviewShape,
    PagesShape,
    PerformanceShape,
    RealtimeShape,
    SeoShape,
    TrafficShape,
    VisitorsShape,
)
from siteinsights.schemas.insight import (
    InsightListResponse,
    InsightResponse,
    InsightStatusUpdate,
)

__all__ = [
    # Aggregation
    "AggregateRequest",
    "MetricType",
    "MetricShape",
    "OverviewShape",
    "VisitorsShape",
    "TrafficShape",
    "GeoShape",
    "RealtimeShape",
    "PagesShape",
    "EventsShape",
    "ConversionsShape",
    "PerformanceShape",
    "SeoShape",
    "InsightsRunShape",
    # Insight
    "InsightResponse",
    "InsightListResponse",
    "InsightStatusUpdate",
]
