"""
Ingestion service - persists RUM beacons and page-tracker actions.

Handlers validate their payload, write the raw event rows and return the
ids the page tracker needs. Invalid payloads raise ``IngestionError``,
which the routers turn into a 400.
"""
import ipaddress
from typing import Any, Optional
from uuid import UUID

import httpx
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from user_agents import parse as parse_ua

from siteinsights.core.config import Settings, settings as default_settings
from siteinsights.core.logging import get_logger
from siteinsights.models.rum import JourneyEvent, ReplayChunk, ResourceMetric, RumMetric
from siteinsights.models.tracking import ClickEvent, PageView, VisitorSession
from siteinsights.repositories.tracking import (
    ClickEventRepository,
    PageViewRepository,
    SessionRepository,
    VisitorRepository,
)
from siteinsights.schemas.ingest import (
    ClickEventCreate,
    JourneyEventBeacon,
    JourneyStartBeacon,
    PageViewCreate,
    PageViewUpdate,
    ResourceMetricBeacon,
    RumMetricBeacon,
    SessionCreate,
    SessionEnd,
    TrackRequest,
    VisitorCreate,
    VisitorGeoUpdate,
    rum_beacon_adapter,
)

logger = get_logger(__name__)


class IngestionError(Exception):
    """Payload rejected; the message is safe to return to the sender."""


def parse_user_agent(user_agent: Optional[str]) -> dict[str, str]:
    """
    Parse a User-Agent header into device type, browser and OS.

    Unparseable or missing headers yield ``unknown``/``Unknown`` values.
    """
    if not user_agent:
        return {"device_type": "unknown", "browser": "Unknown", "os": "Unknown"}

    try:
        ua = parse_ua(user_agent)
    except Exception as e:
        logger.warning("User agent parse failed", error=str(e))
        return {"device_type": "unknown", "browser": "Unknown", "os": "Unknown"}

    if ua.is_mobile:
        device_type = "mobile"
    elif ua.is_tablet:
        device_type = "tablet"
    elif ua.is_pc:
        device_type = "desktop"
    else:
        device_type = "unknown"

    return {"device_type": device_type, "browser": ua.browser.family, "os": ua.os.family}


def client_ip(headers: dict[str, str], peer: Optional[str] = None) -> Optional[str]:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer


def is_public_ip(ip: Optional[str]) -> bool:
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_global


class GeoLocator:
    """Best-effort country/city/region for a client IP."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.transport = transport

    async def lookup(self, ip: Optional[str]) -> dict[str, Optional[str]]:
        if not self.settings.geo_lookup_enabled or not is_public_ip(ip):
            return {}

        url = self.settings.geo_lookup_url.format(ip=ip)
        try:
            async with httpx.AsyncClient(timeout=self.settings.geo_lookup_timeout, transport=self.transport) as client:
                response = await client.get(url)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Geo lookup failed", error=str(e))
            return {}

        if data.get("status") != "success":
            return {}
        return {
            "country": data.get("country"),
            "city": data.get("city"),
            "region": data.get("regionName"),
        }


def _validate(model: type[BaseModel], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise IngestionError(f"Invalid payload: {e.error_count()} error(s)")


class IngestionService:
    """Writes client payloads into the raw event store."""

    def __init__(
        self,
        session: AsyncSession,
        geo: Optional[GeoLocator] = None,
    ) -> None:
        self.session = session
        self.geo = geo or GeoLocator()
        self.visitors = VisitorRepository(session)
        self.sessions = SessionRepository(session)
        self.page_views = PageViewRepository(session)
        self.click_events = ClickEventRepository(session)

    # --- RUM beacons --------------------------------------------------------

    async def ingest_beacon(self, body: Any) -> None:
        if not isinstance(body, dict):
            raise IngestionError("Beacon must be a JSON object")
        try:
            beacon = rum_beacon_adapter.validate_python(body)
        except ValidationError as e:
            raise IngestionError(f"Invalid beacon: {e.error_count()} error(s)")

        if isinstance(beacon, JourneyStartBeacon):
            row = JourneyEvent(
                journey_id=beacon.journey_id,
                event_type=beacon.type,
                page_url=beacon.page_url,
                referrer=beacon.referrer,
                device_type=beacon.device_type,
                browser=beacon.browser,
            )
        elif isinstance(beacon, JourneyEventBeacon):
            row = JourneyEvent(
                journey_id=beacon.journey_id,
                event_type=beacon.event_type,
                page_url=beacon.page_url,
                device_type=beacon.device_type,
                browser=beacon.browser,
            )
        elif isinstance(beacon, RumMetricBeacon):
            row = RumMetric(
                journey_id=beacon.journey_id,
                metric_type=beacon.metric_type,
                value=beacon.value,
                page_url=beacon.page_url,
                device_type=beacon.device_type,
                network_type=beacon.network_type,
                browser=beacon.browser,
                city=beacon.city,
                country=beacon.country,
                metric_metadata=beacon.metadata,
            )
        elif isinstance(beacon, ResourceMetricBeacon):
            row = ResourceMetric(
                journey_id=beacon.journey_id,
                page_url=beacon.page_url,
                resource_name=beacon.resource_name,
                resource_type=beacon.resource_type,
                initiator_type=beacon.initiator_type,
                duration=beacon.duration,
                transfer_size=beacon.transfer_size,
                is_cache_hit=beacon.is_cache_hit,
                device_type=beacon.device_type,
                network_type=beacon.network_type,
                browser=beacon.browser,
            )
        else:
            row = ReplayChunk(
                journey_id=beacon.journey_id,
                events=beacon.events_chunk,
                event_count=len(beacon.events_chunk),
                page_url=beacon.page_url,
            )

        self.session.add(row)
        await self.session.flush()
        logger.debug("Beacon stored", type=beacon.type, journey_id=beacon.journey_id)

    # --- page tracker actions -----------------------------------------------

    async def track(
        self,
        request: TrackRequest,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> dict[str, Any]:
        handlers = {
            "create_visitor": self._create_visitor,
            "update_visitor_geo": self._update_visitor_geo,
            "create_session": self._create_session,
            "end_session": self._end_session,
            "track_pageview": self._track_pageview,
            "update_pageview": self._update_pageview,
            "track_event": self._track_event,
        }
        handler = handlers.get(request.action)
        if handler is None:
            raise IngestionError(f"Unknown action: {request.action}")

        result = await handler(request.data, user_agent=user_agent, ip=ip)
        return {"success": True, **result}

    async def _create_visitor(self, data: dict[str, Any], *, user_agent: Optional[str], ip: Optional[str]) -> dict[str, Any]:
        payload = _validate(VisitorCreate, data)
        parsed = parse_user_agent(user_agent)

        attributes = payload.model_dump(exclude={"fingerprint"})
        for field in ("device_type", "browser", "os"):
            if not attributes.get(field):
                attributes[field] = parsed[field]
        attributes.update(await self.geo.lookup(ip))

        visitor, created = await self.visitors.create_or_revisit(payload.fingerprint, attributes)
        return {"visitor_id": str(visitor.id), "created": created}

    async def _update_visitor_geo(self, data: dict[str, Any], *, user_agent: Optional[str], ip: Optional[str]) -> dict[str, Any]:
        payload = _validate(VisitorGeoUpdate, data)
        visitor = await self.visitors.get_by_id(payload.visitor_id)
        if visitor is None:
            raise IngestionError("Unknown visitor")

        geo = await self.geo.lookup(ip)
        if geo:
            await self.visitors.update(visitor, geo)
        return {"visitor_id": str(visitor.id), "geo": geo}

    async def _create_session(self, data: dict[str, Any], *, user_agent: Optional[str], ip: Optional[str]) -> dict[str, Any]:
        payload = _validate(SessionCreate, data)
        visit = await self.sessions.create(payload.model_dump())
        return {"session_id": str(visit.id)}

    async def _end_session(self, data: dict[str, Any], *, user_agent: Optional[str], ip: Optional[str]) -> dict[str, Any]:
        payload = _validate(SessionEnd, data)
        visit = await self.sessions.end(
            payload.session_id,
            exit_page=payload.exit_page,
            duration_seconds=payload.duration_seconds,
        )
        if visit is None:
            raise IngestionError("Unknown session")
        return {"session_id": str(visit.id)}

    async def _touch(self, session_id: Optional[UUID], *, new_page: bool = False) -> Optional[VisitorSession]:
        if session_id is None:
            return None
        return await self.sessions.touch(session_id, new_page=new_page)

    async def _track_pageview(self, data: dict[str, Any], *, user_agent: Optional[str], ip: Optional[str]) -> dict[str, Any]:
        payload = _validate(PageViewCreate, data)
        view: PageView = await self.page_views.create(payload.model_dump())
        await self._touch(payload.session_id, new_page=True)
        return {"pageview_id": str(view.id)}

    async def _update_pageview(self, data: dict[str, Any], *, user_agent: Optional[str], ip: Optional[str]) -> dict[str, Any]:
        payload = _validate(PageViewUpdate, data)
        view = await self.page_views.backfill(
            payload.session_id,
            payload.page_path,
            time_on_page=payload.time_on_page,
            scroll_depth=payload.scroll_depth,
        )
        await self._touch(payload.session_id)
        return {"updated": view is not None}

    async def _track_event(self, data: dict[str, Any], *, user_agent: Optional[str], ip: Optional[str]) -> dict[str, Any]:
        payload = _validate(ClickEventCreate, data)
        fields = payload.model_dump(exclude={"metadata"})
        fields["event_type"] = payload.event_type.value
        fields["event_metadata"] = payload.metadata
        event: ClickEvent = await self.click_events.create(fields)
        await self._touch(payload.session_id)
        return {"event_id": str(event.id)}
