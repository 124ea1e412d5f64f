"""
Ingestion payloads: RUM beacons and page-tracker actions.
"""
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter

from siteinsights.models.tracking import ClickEventType


class BeaconBase(BaseModel):
    """Fields the client transport adds to every beacon."""

    model_config = ConfigDict(extra="ignore")

    journey_id: Optional[str] = Field(None, max_length=64)
    page_url: Optional[str] = Field(None, max_length=1024)
    device_type: Optional[str] = Field(None, max_length=20)
    network_type: Optional[str] = Field(None, max_length=20)
    browser: Optional[str] = Field(None, max_length=100)
    metadata: dict[str, Any] = Field(default_factory=dict)


class JourneyStartBeacon(BeaconBase):
    type: Literal["JOURNEY_START"]
    journey_id: str = Field(max_length=64)
    referrer: Optional[str] = Field(None, max_length=2048)


class JourneyEventBeacon(BeaconBase):
    type: Literal["JOURNEY_EVENT"]
    journey_id: str = Field(max_length=64)
    event_type: str = Field(max_length=50)


class RumMetricBeacon(BeaconBase):
    type: Literal["RUM_METRIC"]
    metric_type: str = Field(max_length=30)
    value: float
    city: Optional[str] = None
    country: Optional[str] = None


class ResourceMetricBeacon(BeaconBase):
    type: Literal["RESOURCE_METRIC"]
    resource_name: str = Field(max_length=1024)
    resource_type: Optional[str] = None
    initiator_type: Optional[str] = None
    duration: float
    transfer_size: int = 0
    is_cache_hit: bool = False


class ReplayChunkBeacon(BeaconBase):
    type: Literal["REPLAY_CHUNK"]
    journey_id: str = Field(max_length=64)
    events_chunk: list[dict[str, Any]]


RumBeacon = Annotated[
    Union[
        JourneyStartBeacon,
        JourneyEventBeacon,
        RumMetricBeacon,
        ResourceMetricBeacon,
        ReplayChunkBeacon,
    ],
    Field(discriminator="type"),
]

rum_beacon_adapter: TypeAdapter[RumBeacon] = TypeAdapter(RumBeacon)


class TrackRequest(BaseModel):
    """Envelope for page-tracker calls: ``{"action": ..., "data": {...}}``."""

    action: str
    data: dict[str, Any] = Field(default_factory=dict)


class VisitorCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    fingerprint: str = Field(min_length=1, max_length=128)
    device_type: Optional[str] = None
    browser: Optional[str] = None
    os: Optional[str] = None
    screen_resolution: Optional[str] = None
    language: Optional[str] = None
    timezone: Optional[str] = None


class VisitorGeoUpdate(BaseModel):
    visitor_id: UUID


class SessionCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    visitor_id: Optional[UUID] = None
    entry_page: Optional[str] = Field(
        None, validation_alias=AliasChoices("entry_page", "landing_page")
    )
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None


class SessionEnd(BaseModel):
    session_id: UUID
    exit_page: Optional[str] = None
    duration_seconds: int = Field(0, ge=0)


class PageViewCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: Optional[UUID] = None
    visitor_id: Optional[UUID] = None
    page_path: str = Field(min_length=1, max_length=1024)
    page_title: Optional[str] = None
    referrer_path: Optional[str] = None


class PageViewUpdate(BaseModel):
    session_id: Optional[UUID] = None
    page_path: str
    time_on_page: int = Field(ge=0)
    scroll_depth: int = Field(ge=0, le=100)


class ClickEventCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: Optional[UUID] = None
    visitor_id: Optional[UUID] = None
    page_path: str = Field(min_length=1, max_length=1024)
    event_type: ClickEventType
    element_id: Optional[str] = None
    element_text: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
