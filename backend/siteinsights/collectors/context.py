"""
Per-page-load tracker context.

One ``TrackerContext`` is built per page load and owns every collector,
the transports and the identity helpers. ``shutdown`` is wired to the
page's ``beforeunload`` so buffered replay events and the page-view
backfill go out before the page goes away.
"""
from typing import Optional

import httpx

from siteinsights.collectors.config import CollectorConfig
from siteinsights.collectors.environment import external_referrer
from siteinsights.collectors.identity import JourneyIdentity
from siteinsights.collectors.page_tracker import PageTracker
from siteinsights.collectors.replay import ReplaySampler
from siteinsights.collectors.runtime import DomEvent, PageRuntime
from siteinsights.collectors.transport import BeaconTransport, TrackClient
from siteinsights.collectors.vitals import start_vitals
from siteinsights.core.logging import get_logger

logger = get_logger(__name__)

JOURNEY_START = "JOURNEY_START"
JOURNEY_EVENT = "JOURNEY_EVENT"


class TrackerContext:
    def __init__(
        self,
        runtime: PageRuntime,
        config: Optional[CollectorConfig] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.runtime = runtime
        self.config = config or CollectorConfig()
        self.beacons = BeaconTransport(runtime, self.config, transport=transport)
        self.track_client = TrackClient(self.config, transport=transport)
        self.journey = JourneyIdentity(runtime)
        self.replay = ReplaySampler(runtime, self.beacons, self.config)
        self.tracker = PageTracker(runtime, self.config, self.track_client)
        self.collectors: list = []

        self._journey_path: Optional[str] = None
        self._poll: Optional[int] = None
        self._started = False

    def start(self) -> "TrackerContext":
        if self._started:
            return self
        self._started = True

        self.journey.get_or_create(on_start=self._report_journey_start)
        self._journey_path = self.runtime.path
        self.collectors = start_vitals(self.runtime, self.beacons, self.config)
        self.replay.start()
        self.tracker.initialize()

        self._poll = self.runtime.set_interval(self._check_journey_path, self.config.path_poll_interval_ms)
        self.runtime.add_event_listener("window", "beforeunload", self._on_unload)
        logger.debug("Tracker started", journey_id=self.journey.journey_id)
        return self

    def _report_journey_start(self, journey_id: str) -> None:
        self.beacons.send({
            "type": JOURNEY_START,
            "journey_id": journey_id,
            "page_url": self.runtime.path,
            "referrer": external_referrer(self.runtime),
        })

    def _check_journey_path(self) -> None:
        path = self.runtime.path
        if path == self._journey_path:
            return
        self._journey_path = path
        self.beacons.send({
            "type": JOURNEY_EVENT,
            "journey_id": self.journey.get_or_create(on_start=self._report_journey_start),
            "event_type": "page_view",
            "page_url": path,
        })

    def _on_unload(self, event: DomEvent) -> None:
        self.shutdown()

    def shutdown(self) -> None:
        """Flush buffers, detach listeners and close the transports."""
        if not self._started:
            return
        self._started = False
        if self._poll is not None:
            self.runtime.clear_interval(self._poll)
            self._poll = None
        self.runtime.remove_event_listener("window", "beforeunload", self._on_unload)

        self.replay.stop()
        self.tracker.shutdown()
        self.beacons.shutdown()
        self.track_client.shutdown()
