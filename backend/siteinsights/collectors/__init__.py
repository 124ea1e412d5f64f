from siteinsights.collectors.config import CollectorConfig
from siteinsights.collectors.context import TrackerContext
from siteinsights.collectors.identity import JourneyIdentity, SessionClock, VisitorIdentity
from siteinsights.collectors.page_tracker import PageTracker
from siteinsights.collectors.replay import ReplaySampler
from siteinsights.collectors.runtime import (
    DomEvent,
    InMemoryPageRuntime,
    NavigatorInfo,
    PageRuntime,
    PerformanceEntry,
    ScreenInfo,
)
from siteinsights.collectors.transport import BeaconTransport, TrackClient

__all__ = [
    "BeaconTransport",
    "CollectorConfig",
    "DomEvent",
    "InMemoryPageRuntime",
    "JourneyIdentity",
    "NavigatorInfo",
    "PageRuntime",
    "PageTracker",
    "PerformanceEntry",
    "ReplaySampler",
    "ScreenInfo",
    "SessionClock",
    "TrackClient",
    "TrackerContext",
    "VisitorIdentity",
]
