"""
Tests for first-party metric computation.
"""
from datetime import datetime, timedelta, timezone

import pytest

from siteinsights.models import ClickEvent, PageView, RumMetric, Visitor, VisitorSession
from siteinsights.schemas.analytics import MetricType
from siteinsights.services.date_range import resolve_date_range
from siteinsights.services.internal_metrics import (
    InternalMetrics,
    compute_overview,
    compute_performance,
    compute_traffic,
    compute_visitors,
    conversion_rate,
    percentage,
    resolve_traffic_source,
    rounded,
    vital_score,
    weighted_position,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestRounding:
    def test_half_rounds_up(self):
        assert rounded(2.5) == 3
        assert rounded(64.5) == 65
        assert rounded(64.49) == 64

    def test_percentage_of_nothing_is_zero(self):
        assert percentage(3, 0) == 0

    def test_weighted_position(self):
        assert weighted_position([(2.0, 100), (10.0, 300)]) == 8.0
        assert weighted_position([]) == 0.0

    def test_conversion_rate(self):
        assert conversion_rate(0, 0) == "0.00"
        assert conversion_rate(1, 3) == "33.33"


class TestOverview:
    def test_bounce_rate_counts_single_page_sessions(self):
        sessions = [VisitorSession(page_count=n, duration_seconds=0) for n in (1, 1, 2, 3, 1)]

        shape = compute_overview(sessions, [])

        assert shape.to_payload()["bounceRate"] == "60"

    def test_averages(self):
        sessions = [
            VisitorSession(page_count=2, duration_seconds=100),
            VisitorSession(page_count=1, duration_seconds=51),
        ]
        views = [PageView(page_path="/", scroll_depth=40), PageView(page_path="/", scroll_depth=None)]

        payload = compute_overview(sessions, views).to_payload()

        assert payload["avgSessionDuration"] == 76
        assert payload["avgScrollDepth"] == 20
        assert payload["bounceRate"] == "50"

    def test_empty_is_all_zero(self):
        assert compute_overview([], []).to_payload() == {
            "avgSessionDuration": 0,
            "avgScrollDepth": 0,
            "bounceRate": "0",
        }


class TestVisitors:
    def test_new_and_returning(self):
        window_start = NOW - timedelta(days=7)
        visitors = [
            Visitor(fingerprint="a", device_type="mobile", browser="Chrome",
                    first_visit=NOW - timedelta(days=1), last_visit=NOW, total_visits=1),
            Visitor(fingerprint="b", device_type="desktop", browser="Firefox",
                    first_visit=NOW - timedelta(days=40), last_visit=NOW - timedelta(hours=2), total_visits=5),
        ]

        payload = compute_visitors(visitors, window_start).to_payload()

        assert payload["total"] == 2
        assert payload["new"] == 1
        assert payload["returning"] == 1
        assert payload["deviceBreakdown"] == {"mobile": 1, "desktop": 1, "tablet": 0}
        assert payload["browsers"] == {"Chrome": 1, "Firefox": 1}
        assert [v["total_visits"] for v in payload["visitors"]] == [1, 5]

    def test_naive_timestamps_are_treated_as_utc(self):
        visitor = Visitor(
            fingerprint="a",
            first_visit=datetime(2026, 3, 9, 12, 0),
            last_visit=datetime(2026, 3, 10, 11, 0),
        )

        payload = compute_visitors([visitor], NOW - timedelta(days=7)).to_payload()

        assert payload["new"] == 1


class TestTraffic:
    @pytest.mark.parametrize(
        "utm, referrer, expected",
        [
            ("newsletter", "https://google.com/", "newsletter"),
            (None, None, "Direct"),
            (None, "https://www.google.com/search", "www.google.com"),
            (None, "instagram.com", "instagram.com"),
            (None, "https://example.com/films", "Direct"),
        ],
    )
    def test_resolve_source(self, utm, referrer, expected):
        assert resolve_traffic_source(utm, referrer, "example.com") == expected

    def test_percentages(self):
        sessions = [
            VisitorSession(referrer=None),
            VisitorSession(referrer=None),
            VisitorSession(referrer="instagram.com"),
        ]

        payload = compute_traffic(sessions).to_payload()

        assert payload["totalSessions"] == 3
        assert payload["directPercentage"] == 67
        assert payload["sources"][0] == {"name": "Direct", "sessions": 2, "percentage": 67}


class TestPerformance:
    def test_vital_score_bands(self):
        assert vital_score(2.0, 2.5, 4.0) == 100
        assert vital_score(4.0, 2.5, 4.0) == 50
        assert vital_score(8.0, 2.5, 4.0) == 0

    def test_groups_by_page_and_device(self):
        metrics = [
            RumMetric(metric_type="LCP", value=2.0, page_url="/", device_type="desktop"),
            RumMetric(metric_type="CLS", value=0.05, page_url="/", device_type="desktop"),
            RumMetric(metric_type="LCP", value=4.0, page_url="/films", device_type="mobile"),
        ]

        payload = compute_performance(metrics).to_payload()

        assert payload["desktopScore"] == 100
        assert payload["mobileScore"] == 50
        assert payload["avgLoadTime"] == 3000
        assert payload["slowPagesCount"] == 1
        slow = payload["pages"][0]
        assert slow["page_url"] == "/films"
        assert slow["status"] == "needs_improvement"


class TestInternalMetrics:
    """End-to-end computation against the database."""

    async def test_overview_with_no_events(self, db_session):
        metrics = InternalMetrics(db_session)

        shape = await metrics.compute(MetricType.OVERVIEW, resolve_date_range("today", now=NOW))

        assert shape.to_payload() == {"avgSessionDuration": 0, "avgScrollDepth": 0, "bounceRate": "0"}

    async def test_pages_rollup(self, db_session):
        visit = VisitorSession(page_count=2)
        db_session.add(visit)
        await db_session.flush()
        db_session.add_all([
            PageView(session_id=visit.id, page_path="/films", time_on_page=120, scroll_depth=80),
            PageView(session_id=visit.id, page_path="/films", time_on_page=40, scroll_depth=50),
        ])
        await db_session.flush()

        shape = await InternalMetrics(db_session).compute(MetricType.PAGES, resolve_date_range("7d"))

        assert shape.to_payload() == {
            "totalPages": 1,
            "totalViews": 2,
            "topPage": "/films",
            "pages": [{"page_path": "/films", "views": 2, "avg_time": 80, "avg_scroll": 65}],
        }

    async def test_conversions(self, db_session):
        for event_type in ("whatsapp_click", "whatsapp_click", "form_submit", "film_play", "gallery_open"):
            db_session.add(ClickEvent(page_path="/", event_type=event_type))
        await db_session.flush()

        payload = (
            await InternalMetrics(db_session).compute(MetricType.CONVERSIONS, resolve_date_range("7d"))
        ).to_payload()

        assert payload["totalConversions"] == 3
        assert payload["whatsappClicks"] == 2
        assert payload["formSubmits"] == 1
        assert payload["filmPlays"] == 1
        assert payload["galleryOpens"] == 1
        assert payload["conversionRate"] == "0.00"
        assert len(payload["events"]) == 5

    async def test_geo_from_visitors(self, db_session):
        db_session.add_all([
            Visitor(fingerprint="a", country="Spain", city="Madrid"),
            Visitor(fingerprint="b", country="Spain", city="Seville"),
            Visitor(fingerprint="c", country="France", city=None),
        ])
        await db_session.flush()

        payload = (await InternalMetrics(db_session).compute(MetricType.GEO, resolve_date_range("30d"))).to_payload()

        assert payload["totalVisitors"] == 3
        assert payload["topCountry"] == "Spain"
        assert payload["countries"][0] == {"name": "Spain", "users": 2, "percentage": 67}
        assert payload["uniqueCities"] == 2

    async def test_realtime_counts_active_sessions(self, db_session):
        now = datetime.now(timezone.utc)
        db_session.add_all([
            VisitorSession(is_active=True, last_activity_at=now - timedelta(minutes=5)),
            VisitorSession(is_active=True, last_activity_at=now - timedelta(hours=2)),
            VisitorSession(is_active=False, last_activity_at=now),
        ])
        await db_session.flush()

        payload = (
            await InternalMetrics(db_session).compute(MetricType.REALTIME, resolve_date_range("today", now=now))
        ).to_payload()

        assert payload["activeUsers"] == 1

    async def test_insights_are_not_a_computed_metric(self, db_session):
        with pytest.raises(ValueError):
            await InternalMetrics(db_session).compute(MetricType.GENERATE_INSIGHTS, resolve_date_range("7d"))
