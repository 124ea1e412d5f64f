"""
Aggregation request and the normalized result shape of every metric type.

Both the Google-backed path and the first-party computation build these
models, so dashboards receive the same keys whichever source answered.
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class MetricType(str, Enum):
    OVERVIEW = "overview"
    VISITORS = "visitors"
    TRAFFIC = "traffic"
    GEO = "geo"
    REALTIME = "realtime"
    PAGES = "pages"
    EVENTS = "events"
    CONVERSIONS = "conversions"
    PERFORMANCE = "performance"
    SEO = "seo"
    GENERATE_INSIGHTS = "generate_insights"


class AggregateRequest(BaseModel):
    """Body of the aggregation endpoint."""

    metric_type: MetricType
    date_range: str = Field(default="7days", max_length=20)


class MetricShape(BaseModel):
    """Base for normalized shapes; serialize with ``by_alias=True``."""

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# --- visitors ---------------------------------------------------------------

class DeviceBreakdown(MetricShape):
    mobile: int = 0
    desktop: int = 0
    tablet: int = 0


class VisitorsShape(MetricShape):
    total: int = 0
    new: int = 0
    returning: int = 0
    device_breakdown: DeviceBreakdown = Field(default_factory=DeviceBreakdown, alias="deviceBreakdown")
    browsers: dict[str, int] = Field(default_factory=dict)
    visitors: list[dict[str, Any]] = Field(default_factory=list)


# --- overview ---------------------------------------------------------------

class OverviewShape(MetricShape):
    avg_session_duration: int = Field(0, alias="avgSessionDuration")
    avg_scroll_depth: int = Field(0, alias="avgScrollDepth")
    bounce_rate: str = Field("0", alias="bounceRate")


# --- pages ------------------------------------------------------------------

class PageStat(MetricShape):
    page_path: str
    views: int
    avg_time: int
    avg_scroll: int


class PagesShape(MetricShape):
    total_pages: int = Field(0, alias="totalPages")
    total_views: int = Field(0, alias="totalViews")
    top_page: str = Field("N/A", alias="topPage")
    pages: list[PageStat] = Field(default_factory=list)


# --- traffic ----------------------------------------------------------------

class TrafficSource(MetricShape):
    name: str
    sessions: int
    percentage: int


class TrafficShape(MetricShape):
    total_sessions: int = Field(0, alias="totalSessions")
    sources: list[TrafficSource] = Field(default_factory=list)
    direct_percentage: int = Field(0, alias="directPercentage")


# --- geo --------------------------------------------------------------------

class GeoCountry(MetricShape):
    name: str
    users: int
    percentage: int


class GeoCity(MetricShape):
    name: str
    users: int


class GeoShape(MetricShape):
    total_visitors: int = Field(0, alias="totalVisitors")
    countries: list[GeoCountry] = Field(default_factory=list)
    cities: list[GeoCity] = Field(default_factory=list)
    unique_cities: int = Field(0, alias="uniqueCities")
    top_country: str = Field("Unknown", alias="topCountry")
    top_city: str = Field("Unknown", alias="topCity")


# --- realtime ---------------------------------------------------------------

class RealtimeShape(MetricShape):
    active_users: int = Field(0, alias="activeUsers")
    active_sessions: list[dict[str, Any]] = Field(default_factory=list, alias="activeSessions")
    recent_views: list[dict[str, Any]] = Field(default_factory=list, alias="recentViews")


# --- events / conversions ---------------------------------------------------

class EventRollup(MetricShape):
    event_type: str
    count: int
    last_triggered: Optional[str] = Field(None, alias="lastTriggered")
    top_page: Optional[str] = Field(None, alias="topPage")


class EventsShape(MetricShape):
    total_events: int = Field(0, alias="totalEvents")
    events: list[EventRollup] = Field(default_factory=list)
    recent_events: list[dict[str, Any]] = Field(default_factory=list, alias="recentEvents")


class ConversionsShape(MetricShape):
    total_conversions: int = Field(0, alias="totalConversions")
    whatsapp_clicks: int = Field(0, alias="whatsappClicks")
    form_submits: int = Field(0, alias="formSubmits")
    film_plays: int = Field(0, alias="filmPlays")
    gallery_opens: int = Field(0, alias="galleryOpens")
    conversion_rate: str = Field("0.00", alias="conversionRate")
    events: list[dict[str, Any]] = Field(default_factory=list)


# --- performance ------------------------------------------------------------

class PerformancePage(MetricShape):
    page_url: str
    load_time: int  # ms
    score: int
    lcp: float  # seconds
    cls: float
    inp: int  # ms
    device_type: str
    status: str


class PerformanceShape(MetricShape):
    avg_load_time: int = Field(0, alias="avgLoadTime")
    mobile_score: int = Field(0, alias="mobileScore")
    desktop_score: int = Field(0, alias="desktopScore")
    slow_pages_count: int = Field(0, alias="slowPagesCount")
    pages: list[PerformancePage] = Field(default_factory=list)


# --- seo --------------------------------------------------------------------

class SeoOverview(MetricShape):
    total_clicks: int = Field(0, alias="totalClicks")
    total_impressions: int = Field(0, alias="totalImpressions")
    avg_ctr: float = Field(0.0, alias="avgCTR")
    avg_position: float = Field(0.0, alias="avgPosition")


class SeoKeywordStat(MetricShape):
    keyword: str
    clicks: int
    impressions: int
    ctr: float  # percent
    position: float
    page_url: str = ""


class SeoPageStat(MetricShape):
    page_url: str
    clicks: int
    impressions: int
    position: float
    indexed: bool = True
    status: str = "valid"


class SeoTrendPoint(MetricShape):
    date: str
    clicks: int
    impressions: int
    ctr: float
    position: float


class SeoShape(MetricShape):
    overview: SeoOverview = Field(default_factory=SeoOverview)
    keywords: list[SeoKeywordStat] = Field(default_factory=list)
    pages: list[SeoPageStat] = Field(default_factory=list)
    trend: list[SeoTrendPoint] = Field(default_factory=list)


# --- generate_insights ------------------------------------------------------

class InsightDefinition(MetricShape):
    type: str
    title: str
    description: str
    priority: str
    suggested_action: str


class InsightsRunShape(MetricShape):
    insights_generated: int = 0
    details: list[InsightDefinition] = Field(default_factory=list)
