"""
Google-backed metric fetchers.

Each fetcher issues the provider queries for one metric type and hands the
row-oriented responses to a pure ``normalize_*`` function that produces the
same shape the first-party computation does.
"""
from collections import defaultdict
from typing import Any, Awaitable, Callable, Iterator, Optional

from siteinsights.core.logging import get_logger
from siteinsights.models.tracking import ClickEventType
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
    SeoPageStat,
    SeoShape,
    SeoTrendPoint,
    TrafficShape,
    TrafficSource,
    VisitorsShape,
)
from siteinsights.services.date_range import DateWindow
from siteinsights.services.google_client import GoogleAPIError, GoogleClients
from siteinsights.services.internal_metrics import (
    TOP_GEO_LIMIT,
    build_performance_shape,
    build_seo_overview,
    conversion_rate,
    percentage,
    rounded,
    score_status,
    weighted_position,
)

logger = get_logger(__name__)

NOT_SET = "(not set)"
SEO_ROW_LIMIT = 250


class CredentialsNotConfigured(Exception):
    """The provider a metric needs is not configured; not a failure."""


# --- GA report helpers ------------------------------------------------------

def report_rows(report: dict[str, Any]) -> Iterator[tuple[list[str], list[float]]]:
    """Yield (dimension values, metric values) per row of a Data API report."""
    for row in report.get("rows") or []:
        dims = [d.get("value", "") for d in row.get("dimensionValues") or []]
        values = []
        for m in row.get("metricValues") or []:
            try:
                values.append(float(m.get("value", 0)))
            except (TypeError, ValueError):
                values.append(0.0)
        yield dims, values


def _single_row(report: dict[str, Any]) -> list[float]:
    for _, values in report_rows(report):
        return values
    return []


def _report(window: DateWindow, metrics: list[str], dimensions: Optional[list[str]] = None, **extra: Any) -> dict[str, Any]:
    start, end = window.ga_relative_dates()
    body: dict[str, Any] = {
        "dateRanges": [{"startDate": start, "endDate": end}],
        "metrics": [{"name": name} for name in metrics],
    }
    if dimensions:
        body["dimensions"] = [{"name": name} for name in dimensions]
    body.update(extra)
    return body


def _order_by_metric(name: str) -> list[dict[str, Any]]:
    return [{"metric": {"metricName": name}, "desc": True}]


# --- normalizers ------------------------------------------------------------

def normalize_overview(report: dict[str, Any]) -> OverviewShape:
    """averageSessionDuration, bounceRate (fraction), scrolledUsers, activeUsers."""
    values = _single_row(report)
    if not values:
        return OverviewShape()
    duration, bounce, scrolled, active = (values + [0.0] * 4)[:4]
    # GA4 records a scroll event at 90% depth only
    return OverviewShape(
        avg_session_duration=rounded(duration),
        avg_scroll_depth=rounded(scrolled / active * 90) if active else 0,
        bounce_rate=str(rounded(bounce * 100)),
    )


def normalize_visitors(
    totals: dict[str, Any],
    devices: dict[str, Any],
    browsers: dict[str, Any],
) -> VisitorsShape:
    total_users, new_users = (_single_row(totals) + [0.0, 0.0])[:2]
    total, new = int(total_users), int(new_users)

    breakdown = DeviceBreakdown()
    for dims, values in report_rows(devices):
        category = dims[0].lower()
        if category in ("mobile", "desktop", "tablet"):
            setattr(breakdown, category, int(values[0]))

    return VisitorsShape(
        total=total,
        new=new,
        returning=max(0, total - new),
        device_breakdown=breakdown,
        browsers={dims[0]: int(values[0]) for dims, values in report_rows(browsers) if dims[0] != NOT_SET},
    )


def normalize_traffic(report: dict[str, Any]) -> TrafficShape:
    counts: dict[str, int] = defaultdict(int)
    for dims, values in report_rows(report):
        source = dims[0]
        name = "Direct" if source in ("(direct)", NOT_SET, "") else source
        counts[name] += int(values[0])

    total = sum(counts.values())
    ordered = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return TrafficShape(
        total_sessions=total,
        sources=[
            TrafficSource(name=name, sessions=sessions, percentage=percentage(sessions, total))
            for name, sessions in ordered
        ],
        direct_percentage=percentage(counts.get("Direct", 0), total),
    )


def normalize_geo(countries: dict[str, Any], cities: dict[str, Any]) -> GeoShape:
    country_rows = [(d[0], int(v[0])) for d, v in report_rows(countries) if d[0] != NOT_SET]
    city_rows = [(d[0], int(v[0])) for d, v in report_rows(cities) if d[0] != NOT_SET]
    country_rows.sort(key=lambda r: r[1], reverse=True)
    city_rows.sort(key=lambda r: r[1], reverse=True)

    total = sum(users for _, users in country_rows)
    return GeoShape(
        total_visitors=total,
        countries=[
            GeoCountry(name=name, users=users, percentage=percentage(users, total))
            for name, users in country_rows[:TOP_GEO_LIMIT]
        ],
        cities=[GeoCity(name=name, users=users) for name, users in city_rows[:TOP_GEO_LIMIT]],
        unique_cities=len(city_rows),
        top_country=country_rows[0][0] if country_rows else "Unknown",
        top_city=city_rows[0][0] if city_rows else "Unknown",
    )


def normalize_realtime(totals: dict[str, Any], screens: dict[str, Any]) -> RealtimeShape:
    active = _single_row(totals)
    return RealtimeShape(
        active_users=int(active[0]) if active else 0,
        recent_views=[
            {"page_path": dims[0], "views": int(values[0])}
            for dims, values in report_rows(screens)
        ][:20],
    )


def normalize_pages(report: dict[str, Any]) -> PagesShape:
    """pagePath x (screenPageViews, userEngagementDuration)."""
    pages = []
    for dims, values in report_rows(report):
        views, engagement = (values + [0.0, 0.0])[:2]
        if views <= 0:
            continue
        pages.append(
            PageStat(
                page_path=dims[0],
                views=int(views),
                avg_time=rounded(engagement / views),
                avg_scroll=0,
            )
        )
    pages.sort(key=lambda p: p.views, reverse=True)
    return PagesShape(
        total_pages=len(pages),
        total_views=sum(p.views for p in pages),
        top_page=pages[0].page_path if pages else "N/A",
        pages=pages,
    )


def _event_counts(report: dict[str, Any]) -> dict[str, int]:
    counts: dict[str, int] = defaultdict(int)
    for dims, values in report_rows(report):
        counts[dims[0]] += int(values[0])
    return counts


def normalize_events(report: dict[str, Any]) -> EventsShape:
    counts = _event_counts(report)
    rollups = [
        EventRollup(event_type=name, count=count)
        for name, count in sorted(counts.items(), key=lambda item: item[1], reverse=True)
    ]
    return EventsShape(total_events=sum(counts.values()), events=rollups)


def normalize_conversions(events: dict[str, Any], users: dict[str, Any]) -> ConversionsShape:
    counts = _event_counts(events)
    whatsapp = counts.get(ClickEventType.WHATSAPP_CLICK.value, 0)
    forms = counts.get(ClickEventType.FORM_SUBMIT.value, 0)
    total_users = _single_row(users)

    return ConversionsShape(
        total_conversions=whatsapp + forms,
        whatsapp_clicks=whatsapp,
        form_submits=forms,
        film_plays=counts.get(ClickEventType.FILM_PLAY.value, 0),
        gallery_opens=counts.get(ClickEventType.GALLERY_OPEN.value, 0),
        conversion_rate=conversion_rate(whatsapp + forms, int(total_users[0]) if total_users else 0),
    )


def normalize_pagespeed(result: dict[str, Any], device_type: str) -> PerformancePage:
    """One PageSpeed run (a single strategy) as a performance row."""
    lighthouse = result.get("lighthouseResult") or {}
    audits = lighthouse.get("audits") or {}
    category = (lighthouse.get("categories") or {}).get("performance") or {}

    lcp_ms = float((audits.get("largest-contentful-paint") or {}).get("numericValue") or 0)
    cls = float((audits.get("cumulative-layout-shift") or {}).get("numericValue") or 0)
    field = ((result.get("loadingExperience") or {}).get("metrics") or {})
    inp = float((field.get("INTERACTION_TO_NEXT_PAINT") or {}).get("percentile") or 0)

    score = rounded(float(category.get("score") or 0) * 100)
    return PerformancePage(
        page_url=lighthouse.get("finalUrl") or result.get("id") or "/",
        load_time=rounded(lcp_ms),
        score=score,
        lcp=round(lcp_ms / 1000, 2),
        cls=round(cls, 3),
        inp=rounded(inp),
        device_type=device_type,
        status=score_status(score),
    )


def normalize_performance(mobile: dict[str, Any], desktop: dict[str, Any]) -> PerformanceShape:
    pages = [normalize_pagespeed(mobile, "mobile"), normalize_pagespeed(desktop, "desktop")]
    return build_performance_shape(pages)


def normalize_seo(
    query_pages: dict[str, Any],
    trend: dict[str, Any],
) -> SeoShape:
    """
    Build the SEO shape from two Search Console queries: dimensions
    ``[query, page]`` and ``[date]``. Page rows and overview positions are
    impression-weighted.
    """
    keywords = []
    per_page: dict[str, list[tuple[int, int, float]]] = defaultdict(list)
    for row in query_pages.get("rows") or []:
        keys = row.get("keys") or []
        if len(keys) < 2:
            continue
        clicks = int(row.get("clicks", 0))
        impressions = int(row.get("impressions", 0))
        position = float(row.get("position", 0))
        keywords.append(
            SeoKeywordStat(
                keyword=keys[0],
                page_url=keys[1],
                clicks=clicks,
                impressions=impressions,
                ctr=round(float(row.get("ctr", 0)) * 100, 2),
                position=round(position, 1),
            )
        )
        per_page[keys[1]].append((clicks, impressions, position))

    keywords.sort(key=lambda k: (k.clicks, k.impressions), reverse=True)

    pages = [
        SeoPageStat(
            page_url=url,
            clicks=sum(r[0] for r in rows),
            impressions=sum(r[1] for r in rows),
            position=weighted_position((r[2], r[1]) for r in rows),
        )
        for url, rows in per_page.items()
    ]
    pages.sort(key=lambda p: p.clicks, reverse=True)

    trend_points = []
    trend_totals = []
    for row in trend.get("rows") or []:
        keys = row.get("keys") or [""]
        clicks = int(row.get("clicks", 0))
        impressions = int(row.get("impressions", 0))
        position = float(row.get("position", 0))
        trend_points.append(
            SeoTrendPoint(
                date=keys[0],
                clicks=clicks,
                impressions=impressions,
                ctr=round(float(row.get("ctr", 0)) * 100, 2),
                position=round(position, 1),
            )
        )
        trend_totals.append((clicks, impressions, position))
    trend_points.sort(key=lambda p: p.date)

    # Date rows carry unfiltered totals; query rows omit anonymized queries
    totals = trend_totals or [(k.clicks, k.impressions, k.position) for k in keywords]
    return SeoShape(
        overview=build_seo_overview(totals),
        keywords=keywords,
        pages=pages,
        trend=trend_points,
    )


# --- fetchers ---------------------------------------------------------------

async def _overview(clients: GoogleClients, window: DateWindow) -> MetricShape:
    report = await clients.analytics.run_report(
        _report(window, ["averageSessionDuration", "bounceRate", "scrolledUsers", "activeUsers"])
    )
    return normalize_overview(report)


async def _visitors(clients: GoogleClients, window: DateWindow) -> MetricShape:
    ga = clients.analytics
    totals = await ga.run_report(_report(window, ["totalUsers", "newUsers"]))
    devices = await ga.run_report(_report(window, ["totalUsers"], ["deviceCategory"]))
    browsers = await ga.run_report(_report(window, ["totalUsers"], ["browser"], limit=20))
    return normalize_visitors(totals, devices, browsers)


async def _traffic(clients: GoogleClients, window: DateWindow) -> MetricShape:
    report = await clients.analytics.run_report(
        _report(window, ["sessions"], ["sessionSource"], orderBys=_order_by_metric("sessions"), limit=50)
    )
    return normalize_traffic(report)


async def _geo(clients: GoogleClients, window: DateWindow) -> MetricShape:
    ga = clients.analytics
    countries = await ga.run_report(_report(window, ["totalUsers"], ["country"], limit=50))
    cities = await ga.run_report(_report(window, ["totalUsers"], ["city"], limit=100))
    return normalize_geo(countries, cities)


async def _realtime(clients: GoogleClients, window: DateWindow) -> MetricShape:
    ga = clients.analytics
    totals = await ga.run_realtime_report({"metrics": [{"name": "activeUsers"}]})
    screens = await ga.run_realtime_report({
        "dimensions": [{"name": "unifiedScreenName"}],
        "metrics": [{"name": "screenPageViews"}],
        "orderBys": _order_by_metric("screenPageViews"),
        "limit": 20,
    })
    return normalize_realtime(totals, screens)


async def _pages(clients: GoogleClients, window: DateWindow) -> MetricShape:
    report = await clients.analytics.run_report(
        _report(
            window,
            ["screenPageViews", "userEngagementDuration"],
            ["pagePath"],
            orderBys=_order_by_metric("screenPageViews"),
            limit=100,
        )
    )
    return normalize_pages(report)


async def _events(clients: GoogleClients, window: DateWindow) -> MetricShape:
    report = await clients.analytics.run_report(
        _report(window, ["eventCount"], ["eventName"], orderBys=_order_by_metric("eventCount"))
    )
    return normalize_events(report)


async def _conversions(clients: GoogleClients, window: DateWindow) -> MetricShape:
    ga = clients.analytics
    tracked = [t.value for t in ClickEventType]
    events = await ga.run_report(
        _report(
            window,
            ["eventCount"],
            ["eventName"],
            dimensionFilter={
                "filter": {"fieldName": "eventName", "inListFilter": {"values": tracked}},
            },
        )
    )
    users = await ga.run_report(_report(window, ["totalUsers"]))
    return normalize_conversions(events, users)


async def _performance(clients: GoogleClients, window: DateWindow) -> MetricShape:
    mobile = await clients.pagespeed.run("mobile")
    desktop = await clients.pagespeed.run("desktop")
    return normalize_performance(mobile, desktop)


async def _seo(clients: GoogleClients, window: DateWindow) -> MetricShape:
    gsc = clients.search_console
    start, end = window.calendar_dates()
    base = {"startDate": start.isoformat(), "endDate": end.isoformat()}
    query_pages = await gsc.query({**base, "dimensions": ["query", "page"], "rowLimit": SEO_ROW_LIMIT})
    trend = await gsc.query({**base, "dimensions": ["date"]})
    return normalize_seo(query_pages, trend)


Fetcher = Callable[[GoogleClients, DateWindow], Awaitable[MetricShape]]

# metric -> (client attribute it needs, fetcher)
EXTERNAL_FETCHERS: dict[MetricType, tuple[str, Fetcher]] = {
    MetricType.OVERVIEW: ("analytics", _overview),
    MetricType.VISITORS: ("analytics", _visitors),
    MetricType.TRAFFIC: ("analytics", _traffic),
    MetricType.GEO: ("analytics", _geo),
    MetricType.REALTIME: ("analytics", _realtime),
    MetricType.PAGES: ("analytics", _pages),
    MetricType.EVENTS: ("analytics", _events),
    MetricType.CONVERSIONS: ("analytics", _conversions),
    MetricType.PERFORMANCE: ("pagespeed", _performance),
    MetricType.SEO: ("search_console", _seo),
}


def has_external_source(metric: MetricType, clients: GoogleClients) -> bool:
    entry = EXTERNAL_FETCHERS.get(metric)
    return entry is not None and getattr(clients, entry[0]) is not None


async def fetch_external(metric: MetricType, window: DateWindow, clients: GoogleClients) -> MetricShape:
    """
    Fetch and normalize one metric from its Google provider.

    Raises CredentialsNotConfigured when the metric has no configured
    provider, GoogleAPIError on provider failure, and GoogleAPIError for
    responses that cannot be normalized.
    """
    entry = EXTERNAL_FETCHERS.get(metric)
    if entry is None or getattr(clients, entry[0]) is None:
        raise CredentialsNotConfigured(metric.value)

    _, fetcher = entry
    try:
        return await fetcher(clients, window)
    except GoogleAPIError:
        raise
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
        logger.warning("Unreadable provider response", metric=metric.value, error=repr(e))
        raise GoogleAPIError(f"Unexpected {metric.value} response: {e!r}")
