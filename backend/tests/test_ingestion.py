"""
Tests for beacon ingestion and page-tracker actions.
"""
import json

import httpx
import pytest
from sqlalchemy import select

from siteinsights.core.config import Settings
from siteinsights.models import (
    ClickEvent,
    JourneyEvent,
    PageView,
    ReplayChunk,
    ResourceMetric,
    RumMetric,
    Visitor,
    VisitorSession,
)
from siteinsights.schemas.ingest import TrackRequest
from siteinsights.services.ingestion import (
    GeoLocator,
    IngestionError,
    IngestionService,
    client_ip,
    is_public_ip,
    parse_user_agent,
)

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class NoGeo(GeoLocator):
    async def lookup(self, ip):
        return {}


@pytest.fixture
def service(db_session) -> IngestionService:
    return IngestionService(db_session, geo=NoGeo())


async def rows(session, model):
    return list((await session.execute(select(model))).scalars().all())


class TestHelpers:
    def test_parse_user_agent(self):
        assert parse_user_agent(IPHONE_UA)["device_type"] == "mobile"
        desktop = parse_user_agent(DESKTOP_UA)
        assert desktop["device_type"] == "desktop"
        assert desktop["browser"] == "Chrome"
        assert parse_user_agent(None)["device_type"] == "unknown"

    def test_client_ip_order(self):
        assert client_ip({"x-forwarded-for": "8.8.8.8, 10.0.0.1", "x-real-ip": "1.1.1.1"}, "127.0.0.1") == "8.8.8.8"
        assert client_ip({"x-real-ip": "1.1.1.1"}, "127.0.0.1") == "1.1.1.1"
        assert client_ip({}, "127.0.0.1") == "127.0.0.1"

    @pytest.mark.parametrize(
        "ip, expected",
        [("8.8.8.8", True), ("127.0.0.1", False), ("192.168.1.4", False), ("garbage", False), (None, False)],
    )
    def test_is_public_ip(self, ip, expected):
        assert is_public_ip(ip) is expected


class TestGeoLocator:
    async def test_successful_lookup(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "8.8.8.8" in str(request.url)
            return httpx.Response(200, json={
                "status": "success", "country": "Spain", "regionName": "Madrid", "city": "Madrid",
            })

        geo = GeoLocator(Settings(_env_file=None), transport=httpx.MockTransport(handler))

        assert await geo.lookup("8.8.8.8") == {"country": "Spain", "city": "Madrid", "region": "Madrid"}

    async def test_private_addresses_are_skipped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no lookup expected")

        geo = GeoLocator(Settings(_env_file=None), transport=httpx.MockTransport(handler))

        assert await geo.lookup("10.0.0.3") == {}

    async def test_failures_yield_empty_geo(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        geo = GeoLocator(Settings(_env_file=None), transport=transport)

        assert await geo.lookup("8.8.8.8") == {}


class TestBeacons:
    async def test_rum_metric(self, service, db_session):
        await service.ingest_beacon({
            "type": "RUM_METRIC",
            "metric_type": "LCP",
            "value": 2.1,
            "journey_id": "j-1",
            "page_url": "/films",
            "device_type": "mobile",
            "network_type": "4g",
            "browser": "Safari",
            "metadata": {},
        })

        [metric] = await rows(db_session, RumMetric)
        assert (metric.metric_type, metric.value, metric.page_url) == ("LCP", 2.1, "/films")

    async def test_resource_metric_goes_to_its_own_table(self, service, db_session):
        await service.ingest_beacon({
            "type": "RESOURCE_METRIC",
            "resource_name": "hero.jpg",
            "initiator_type": "img",
            "duration": 812.5,
            "transfer_size": 0,
            "is_cache_hit": True,
        })

        [resource] = await rows(db_session, ResourceMetric)
        assert resource.is_cache_hit is True
        assert await rows(db_session, RumMetric) == []

    async def test_journey_events(self, service, db_session):
        await service.ingest_beacon({"type": "JOURNEY_START", "journey_id": "j-1", "page_url": "/", "referrer": "google.com"})
        await service.ingest_beacon({"type": "JOURNEY_EVENT", "journey_id": "j-1", "event_type": "page_view", "page_url": "/films"})

        events = await rows(db_session, JourneyEvent)
        assert sorted(e.event_type for e in events) == ["JOURNEY_START", "page_view"]

    async def test_replay_chunk(self, service, db_session):
        await service.ingest_beacon({
            "type": "REPLAY_CHUNK",
            "journey_id": "j-1",
            "events_chunk": [{"t": "c", "x": 1, "y": 2}, {"t": "s", "y": 300}],
        })

        [chunk] = await rows(db_session, ReplayChunk)
        assert chunk.event_count == 2

    @pytest.mark.parametrize(
        "body",
        [
            ["not", "an", "object"],
            {"type": "SOMETHING_ELSE"},
            {"type": "RUM_METRIC", "metric_type": "LCP"},
        ],
    )
    async def test_invalid_beacons(self, service, body):
        with pytest.raises(IngestionError):
            await service.ingest_beacon(body)


class TestTrackActions:
    async def track(self, service, action, data, **kwargs):
        return await service.track(TrackRequest(action=action, data=data), **kwargs)

    async def test_visitor_upsert_by_fingerprint(self, service, db_session):
        first = await self.track(service, "create_visitor", {"fingerprint": "fp-1"}, user_agent=IPHONE_UA)
        second = await self.track(service, "create_visitor", {"fingerprint": "fp-1"}, user_agent=IPHONE_UA)

        assert first["success"] is True
        assert first["created"] is True
        assert second["created"] is False
        assert first["visitor_id"] == second["visitor_id"]
        [visitor] = await rows(db_session, Visitor)
        assert visitor.total_visits == 2
        assert visitor.device_type == "mobile"

    async def test_session_page_views_and_events(self, service, db_session):
        visitor = await self.track(service, "create_visitor", {"fingerprint": "fp-2", "device_type": "desktop"})
        session = await self.track(service, "create_session", {
            "visitor_id": visitor["visitor_id"],
            "entry_page": "/",
            "utm_source": "newsletter",
        })
        session_id = session["session_id"]

        await self.track(service, "track_pageview", {"session_id": session_id, "page_path": "/"})
        await self.track(service, "track_pageview", {"session_id": session_id, "page_path": "/films"})
        updated = await self.track(service, "update_pageview", {
            "session_id": session_id, "page_path": "/films", "time_on_page": 42, "scroll_depth": 75,
        })
        event = await self.track(service, "track_event", {
            "session_id": session_id, "page_path": "/films", "event_type": "film_play",
            "element_text": "Teaser", "metadata": {"film_id": "f1"},
        })
        await self.track(service, "end_session", {
            "session_id": session_id, "exit_page": "/films", "duration_seconds": 95,
        })

        assert updated["updated"] is True
        assert "event_id" in event
        [visit] = await rows(db_session, VisitorSession)
        assert visit.page_count == 2
        assert visit.utm_source == "newsletter"
        assert visit.is_active is False
        assert visit.duration_seconds == 95
        films = [v for v in await rows(db_session, PageView) if v.page_path == "/films"]
        assert (films[0].time_on_page, films[0].scroll_depth) == (42, 75)
        [click] = await rows(db_session, ClickEvent)
        assert click.event_metadata == {"film_id": "f1"}

    async def test_unknown_action(self, service):
        with pytest.raises(IngestionError):
            await self.track(service, "delete_everything", {})

    async def test_unknown_event_type(self, service):
        with pytest.raises(IngestionError):
            await self.track(service, "track_event", {"page_path": "/", "event_type": "hover"})

    async def test_end_unknown_session(self, service):
        with pytest.raises(IngestionError):
            await self.track(service, "end_session", {"session_id": "00000000-0000-0000-0000-000000000000"})


class TestIngestAPI:
    async def test_beacon_as_text_plain(self, async_client):
        body = json.dumps({"type": "RUM_METRIC", "metric_type": "CLS", "value": 0.02})

        response = await async_client.post(
            "/api/rum/ingest", content=body, headers={"Content-Type": "text/plain"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True}

    async def test_beacon_not_json(self, async_client):
        response = await async_client.post("/api/rum/ingest", content=b"{oops")

        assert response.status_code == 400
        assert "error" in response.json()

    async def test_track_allocates_ids(self, async_client):
        response = await async_client.post(
            "/api/track",
            json={"action": "create_visitor", "data": {"fingerprint": "fp-api"}},
            headers={"User-Agent": DESKTOP_UA},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["visitor_id"]

    async def test_track_without_action(self, async_client):
        response = await async_client.post("/api/track", json={"data": {}})

        assert response.status_code == 400
