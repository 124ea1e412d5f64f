"""
First-party computation of every normalized metric shape.

The ``compute_*`` functions are pure: they take already-loaded rows and
return a shape. ``RawEventReader`` does the loading, always filtered by the
start of the requested window.
"""
import math
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence
from urllib.parse import urlparse

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from siteinsights.core.logging import get_logger
from siteinsights.models.cache import SeoKeyword, SeoPage
from siteinsights.models.rum import RumMetric, RumMetricType
from siteinsights.models.tracking import (
    CONVERSION_EVENT_TYPES,
    ClickEvent,
    ClickEventType,
    PageView,
    Visitor,
    VisitorSession,
)
from siteinsights.repositories.cache import SeoCacheRepository
from siteinsights.schemas.analytics import (
    ConversionsShape,
    DeviceBreakdown,
    EventRollup,
    EventsShape,
    GeoCity,
    GeoCountry,
    GeoShape,
    MetricShape,
    MetricType,
    OverviewShape,
    PagesShape,
    PageStat,
    PerformancePage,
    PerformanceShape,
    RealtimeShape,
    SeoKeywordStat,
    SeoOverview,
    SeoPageStat,
    SeoShape,
    TrafficShape,
    TrafficSource,
    VisitorsShape,
)
from siteinsights.services.date_range import DateWindow

logger = get_logger(__name__)

REALTIME_WINDOW = timedelta(minutes=30)
RECENT_VIEWS_LIMIT = 20
RECENT_EVENTS_LIMIT = 50
LISTED_VISITORS_LIMIT = 50
TOP_GEO_LIMIT = 10
SLOW_PAGE_MS = 3000

# (good, poor) thresholds per Core Web Vital
LCP_THRESHOLDS = (2.5, 4.0)  # seconds
CLS_THRESHOLDS = (0.1, 0.25)
INP_THRESHOLDS = (200.0, 500.0)  # milliseconds


def rounded(value: float) -> int:
    """Round half up, the way dashboards display integer percentages."""
    return int(math.floor(value + 0.5))


def percentage(part: float, whole: float) -> int:
    if not whole:
        return 0
    return rounded(part / whole * 100)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def weighted_position(rows: Iterable[tuple[float, float]]) -> float:
    """Impression-weighted mean of (position, impressions) pairs, 1 decimal."""
    total_impressions = 0.0
    weighted = 0.0
    for position, impressions in rows:
        total_impressions += impressions
        weighted += position * impressions
    if not total_impressions:
        return 0.0
    return round(weighted / total_impressions, 1)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# --- pure computations ------------------------------------------------------

def compute_overview(sessions: Sequence[VisitorSession], page_views: Sequence[PageView]) -> OverviewShape:
    if not sessions and not page_views:
        return OverviewShape()

    bounced = sum(1 for s in sessions if (s.page_count or 0) <= 1)
    return OverviewShape(
        avg_session_duration=rounded(_mean([s.duration_seconds or 0 for s in sessions])),
        avg_scroll_depth=rounded(_mean([p.scroll_depth or 0 for p in page_views])),
        bounce_rate=str(percentage(bounced, len(sessions))),
    )


def _visitor_summary(visitor: Visitor) -> dict[str, Any]:
    return {
        "id": str(visitor.id),
        "device_type": visitor.device_type,
        "browser": visitor.browser,
        "os": visitor.os,
        "country": visitor.country,
        "city": visitor.city,
        "first_visit": _iso(visitor.first_visit),
        "last_visit": _iso(visitor.last_visit),
        "total_visits": visitor.total_visits,
    }


def compute_visitors(visitors: Sequence[Visitor], window_start: datetime) -> VisitorsShape:
    total = len(visitors)
    new = sum(1 for v in visitors if v.first_visit and _as_utc(v.first_visit) >= window_start)

    devices = Counter(v.device_type for v in visitors)
    browsers = Counter(v.browser for v in visitors if v.browser)

    ordered = sorted(visitors, key=lambda v: _as_utc(v.last_visit), reverse=True)
    return VisitorsShape(
        total=total,
        new=new,
        returning=max(0, total - new),
        device_breakdown=DeviceBreakdown(
            mobile=devices.get("mobile", 0),
            desktop=devices.get("desktop", 0),
            tablet=devices.get("tablet", 0),
        ),
        browsers=dict(browsers),
        visitors=[_visitor_summary(v) for v in ordered[:LISTED_VISITORS_LIMIT]],
    )


def compute_pages(page_views: Sequence[PageView]) -> PagesShape:
    stats: dict[str, list[int]] = defaultdict(lambda: [0, 0, 0])  # views, time, scroll
    for view in page_views:
        entry = stats[view.page_path]
        entry[0] += 1
        entry[1] += view.time_on_page or 0
        entry[2] += view.scroll_depth or 0

    pages = [
        PageStat(
            page_path=path,
            views=views,
            avg_time=rounded(total_time / views),
            avg_scroll=rounded(total_scroll / views),
        )
        for path, (views, total_time, total_scroll) in stats.items()
    ]
    pages.sort(key=lambda p: p.views, reverse=True)

    return PagesShape(
        total_pages=len(pages),
        total_views=len(page_views),
        top_page=pages[0].page_path if pages else "N/A",
        pages=pages,
    )


def resolve_traffic_source(
    utm_source: Optional[str],
    referrer: Optional[str],
    site_host: Optional[str] = None,
) -> str:
    """UTM source, else Direct for empty/same-site referrers, else the referring host."""
    if utm_source:
        return utm_source
    if not referrer:
        return "Direct"
    # The page tracker sends bare referring hosts
    if "://" not in referrer:
        referrer = f"//{referrer}"
    try:
        host = urlparse(referrer).hostname
    except ValueError:
        return "Referral"
    if not host:
        return "Referral"
    if site_host and host.lower() == site_host.lower():
        return "Direct"
    return host


def compute_traffic(sessions: Sequence[VisitorSession], site_host: Optional[str] = None) -> TrafficShape:
    counts = Counter(
        resolve_traffic_source(s.utm_source, s.referrer, site_host) for s in sessions
    )
    total = len(sessions)
    sources = [
        TrafficSource(name=name, sessions=count, percentage=percentage(count, total))
        for name, count in counts.most_common()
    ]
    return TrafficShape(
        total_sessions=total,
        sources=sources,
        direct_percentage=percentage(counts.get("Direct", 0), total),
    )


def compute_geo(visitors: Sequence[Visitor]) -> GeoShape:
    countries = Counter(v.country for v in visitors if v.country)
    cities = Counter(v.city for v in visitors if v.city)
    total = len(visitors)

    top_countries = countries.most_common(TOP_GEO_LIMIT)
    top_cities = cities.most_common(TOP_GEO_LIMIT)
    return GeoShape(
        total_visitors=total,
        countries=[
            GeoCountry(name=name, users=users, percentage=percentage(users, total))
            for name, users in top_countries
        ],
        cities=[GeoCity(name=name, users=users) for name, users in top_cities],
        unique_cities=len(cities),
        top_country=top_countries[0][0] if top_countries else "Unknown",
        top_city=top_cities[0][0] if top_cities else "Unknown",
    )


def compute_realtime(
    active_sessions: Sequence[VisitorSession],
    recent_views: Sequence[PageView],
) -> RealtimeShape:
    return RealtimeShape(
        active_users=len(active_sessions),
        active_sessions=[
            {
                "id": str(s.id),
                "visitor_id": str(s.visitor_id) if s.visitor_id else None,
                "entry_page": s.entry_page,
                "last_activity_at": _iso(s.last_activity_at),
            }
            for s in active_sessions[:10]
        ],
        recent_views=[
            {
                "page_path": v.page_path,
                "viewed_at": _iso(v.viewed_at),
                "session_id": str(v.session_id) if v.session_id else None,
            }
            for v in recent_views[:RECENT_VIEWS_LIMIT]
        ],
    )


def _event_summary(event: ClickEvent) -> dict[str, Any]:
    return {
        "id": str(event.id),
        "session_id": str(event.session_id) if event.session_id else None,
        "event_type": event.event_type,
        "page_path": event.page_path,
        "element_id": event.element_id,
        "element_text": event.element_text,
        "metadata": event.event_metadata or {},
        "clicked_at": _iso(event.clicked_at),
    }


def _newest_first(events: Sequence[ClickEvent]) -> list[ClickEvent]:
    return sorted(events, key=lambda e: _as_utc(e.clicked_at), reverse=True)


def compute_events(events: Sequence[ClickEvent]) -> EventsShape:
    ordered = _newest_first(events)

    by_type: dict[str, list[ClickEvent]] = defaultdict(list)
    for event in ordered:
        by_type[event.event_type].append(event)

    rollups = [
        EventRollup(
            event_type=event_type,
            count=len(items),
            last_triggered=_iso(items[0].clicked_at),
            top_page=Counter(e.page_path for e in items).most_common(1)[0][0],
        )
        for event_type, items in by_type.items()
    ]
    rollups.sort(key=lambda r: r.count, reverse=True)

    return EventsShape(
        total_events=len(events),
        events=rollups,
        recent_events=[_event_summary(e) for e in ordered[:RECENT_EVENTS_LIMIT]],
    )


def conversion_rate(conversions: int, visitors: int) -> str:
    if visitors <= 0:
        return "0.00"
    return f"{conversions / visitors * 100:.2f}"


def compute_conversions(events: Sequence[ClickEvent], visitor_count: int) -> ConversionsShape:
    counts = Counter(e.event_type for e in events)
    whatsapp = counts.get(ClickEventType.WHATSAPP_CLICK.value, 0)
    forms = counts.get(ClickEventType.FORM_SUBMIT.value, 0)
    conversions = sum(counts.get(event_type, 0) for event_type in CONVERSION_EVENT_TYPES)

    return ConversionsShape(
        total_conversions=conversions,
        whatsapp_clicks=whatsapp,
        form_submits=forms,
        film_plays=counts.get(ClickEventType.FILM_PLAY.value, 0),
        gallery_opens=counts.get(ClickEventType.GALLERY_OPEN.value, 0),
        conversion_rate=conversion_rate(conversions, visitor_count),
        events=[_event_summary(e) for e in _newest_first(events)[:RECENT_EVENTS_LIMIT]],
    )


def vital_score(value: float, good: float, poor: float) -> float:
    """
    100 at or under the good threshold, linearly down to 50 at the poor
    threshold, then down to 0 at twice the poor threshold.
    """
    if value <= good:
        return 100.0
    if value <= poor:
        return 100.0 - 50.0 * (value - good) / (poor - good)
    return max(0.0, 50.0 - 50.0 * (value - poor) / poor)


def score_status(score: int) -> str:
    if score >= 90:
        return "good"
    if score >= 50:
        return "needs_improvement"
    return "poor"


def compute_performance(metrics: Sequence[RumMetric]) -> PerformanceShape:
    groups: dict[tuple[str, str], dict[str, list[float]]] = defaultdict(lambda: defaultdict(list))
    for metric in metrics:
        key = (metric.page_url or "/", metric.device_type or "unknown")
        groups[key][metric.metric_type].append(metric.value)

    pages: list[PerformancePage] = []
    for (page_url, device_type), values in groups.items():
        lcp = _mean(values.get(RumMetricType.LCP.value, []))
        cls = _mean(values.get(RumMetricType.CLS.value, []))
        inp = _mean(values.get(RumMetricType.INTERACTION.value, []))

        scores = []
        if RumMetricType.LCP.value in values:
            scores.append(vital_score(lcp, *LCP_THRESHOLDS))
        if RumMetricType.CLS.value in values:
            scores.append(vital_score(cls, *CLS_THRESHOLDS))
        if RumMetricType.INTERACTION.value in values:
            scores.append(vital_score(inp, *INP_THRESHOLDS))
        if not scores:
            continue

        score = rounded(_mean(scores))
        pages.append(
            PerformancePage(
                page_url=page_url,
                load_time=rounded(lcp * 1000),
                score=score,
                lcp=round(lcp, 2),
                cls=round(cls, 3),
                inp=rounded(inp),
                device_type=device_type,
                status=score_status(score),
            )
        )

    pages.sort(key=lambda p: p.load_time, reverse=True)
    return build_performance_shape(pages)


def build_performance_shape(pages: list[PerformancePage]) -> PerformanceShape:
    """Roll per-page results up into the dashboard summary."""
    timed = [p.load_time for p in pages if p.load_time]
    mobile = [p.score for p in pages if p.device_type == "mobile"]
    desktop = [p.score for p in pages if p.device_type == "desktop"]
    return PerformanceShape(
        avg_load_time=rounded(_mean(timed)),
        mobile_score=rounded(_mean(mobile)),
        desktop_score=rounded(_mean(desktop)),
        slow_pages_count=sum(1 for p in pages if p.load_time > SLOW_PAGE_MS),
        pages=pages,
    )


def build_seo_overview(rows: Sequence[tuple[int, int, float]]) -> SeoOverview:
    """Totals over (clicks, impressions, position) rows."""
    clicks = sum(r[0] for r in rows)
    impressions = sum(r[1] for r in rows)
    return SeoOverview(
        total_clicks=clicks,
        total_impressions=impressions,
        avg_ctr=round(clicks / impressions * 100, 2) if impressions else 0.0,
        avg_position=weighted_position((r[2], r[1]) for r in rows),
    )


def compute_seo(keywords: Sequence[SeoKeyword], pages: Sequence[SeoPage]) -> SeoShape:
    if pages:
        totals = [(p.clicks or 0, p.impressions or 0, p.avg_position or 0.0) for p in pages]
    else:
        totals = [(k.clicks or 0, k.impressions or 0, k.avg_position or 0.0) for k in keywords]

    return SeoShape(
        overview=build_seo_overview(totals),
        keywords=[
            SeoKeywordStat(
                keyword=k.keyword,
                clicks=k.clicks or 0,
                impressions=k.impressions or 0,
                ctr=k.ctr or 0.0,
                position=k.avg_position or 0.0,
                page_url=k.page_url or "",
            )
            for k in keywords
        ],
        pages=[
            SeoPageStat(
                page_url=p.page_url,
                clicks=p.clicks or 0,
                impressions=p.impressions or 0,
                position=p.avg_position or 0.0,
                indexed=p.indexed,
                status=p.status,
            )
            for p in pages
        ],
    )


# --- loading ----------------------------------------------------------------

class RawEventReader:
    """Read-only queries over the raw event store."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _all(self, stmt) -> list:
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def visitors(self, since: datetime) -> list[Visitor]:
        return await self._all(select(Visitor).where(Visitor.last_visit >= since))

    async def visitor_count(self, since: datetime) -> int:
        stmt = select(func.count(Visitor.id)).where(Visitor.last_visit >= since)
        return (await self.session.execute(stmt)).scalar() or 0

    async def sessions(self, since: datetime) -> list[VisitorSession]:
        return await self._all(select(VisitorSession).where(VisitorSession.started_at >= since))

    async def page_views(self, since: datetime) -> list[PageView]:
        return await self._all(select(PageView).where(PageView.viewed_at >= since))

    async def click_events(self, since: datetime) -> list[ClickEvent]:
        return await self._all(select(ClickEvent).where(ClickEvent.clicked_at >= since))

    async def rum_metrics(self, since: datetime, metric_types: Sequence[str]) -> list[RumMetric]:
        stmt = select(RumMetric).where(
            RumMetric.created_at >= since,
            RumMetric.metric_type.in_(metric_types),
        )
        return await self._all(stmt)

    async def active_sessions(self, since: datetime) -> list[VisitorSession]:
        stmt = (
            select(VisitorSession)
            .where(VisitorSession.is_active.is_(True), VisitorSession.last_activity_at >= since)
            .order_by(VisitorSession.last_activity_at.desc())
        )
        return await self._all(stmt)

    async def recent_views(self, since: datetime, limit: int = RECENT_VIEWS_LIMIT) -> list[PageView]:
        stmt = (
            select(PageView)
            .where(PageView.viewed_at >= since)
            .order_by(PageView.viewed_at.desc())
            .limit(limit)
        )
        return await self._all(stmt)


class InternalMetrics:
    """Computes a metric shape from first-party data for one window."""

    def __init__(self, session: AsyncSession, site_url: Optional[str] = None) -> None:
        self.session = session
        self.reader = RawEventReader(session)
        self.site_host = urlparse(site_url).hostname if site_url else None

    async def compute(self, metric: MetricType, window: DateWindow) -> MetricShape:
        handler = getattr(self, f"_{metric.value}", None)
        if handler is None:
            raise ValueError(f"No first-party computation for {metric.value}")
        shape = await handler(window)
        logger.debug("Computed metric from raw events", metric_type=metric.value, date_range=window.label)
        return shape

    async def _overview(self, window: DateWindow) -> OverviewShape:
        return compute_overview(
            await self.reader.sessions(window.start),
            await self.reader.page_views(window.start),
        )

    async def _visitors(self, window: DateWindow) -> VisitorsShape:
        return compute_visitors(await self.reader.visitors(window.start), window.start)

    async def _pages(self, window: DateWindow) -> PagesShape:
        return compute_pages(await self.reader.page_views(window.start))

    async def _traffic(self, window: DateWindow) -> TrafficShape:
        return compute_traffic(await self.reader.sessions(window.start), self.site_host)

    async def _geo(self, window: DateWindow) -> GeoShape:
        return compute_geo(await self.reader.visitors(window.start))

    async def _realtime(self, window: DateWindow) -> RealtimeShape:
        since = window.end - REALTIME_WINDOW
        return compute_realtime(
            await self.reader.active_sessions(since),
            await self.reader.recent_views(since),
        )

    async def _events(self, window: DateWindow) -> EventsShape:
        return compute_events(await self.reader.click_events(window.start))

    async def _conversions(self, window: DateWindow) -> ConversionsShape:
        return compute_conversions(
            await self.reader.click_events(window.start),
            await self.reader.visitor_count(window.start),
        )

    async def _performance(self, window: DateWindow) -> PerformanceShape:
        metrics = await self.reader.rum_metrics(
            window.start,
            [RumMetricType.LCP.value, RumMetricType.CLS.value, RumMetricType.INTERACTION.value],
        )
        return compute_performance(metrics)

    async def _seo(self, window: DateWindow) -> SeoShape:
        repo = SeoCacheRepository(self.session)
        return compute_seo(
            await repo.get_keywords(window.cache_key),
            await repo.get_pages(window.cache_key),
        )
