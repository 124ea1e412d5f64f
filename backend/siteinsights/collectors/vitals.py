"""
Core Web Vitals, long-task, resource and interaction collectors.

Each collector subscribes to one performance-entry stream and turns
entries into beacons. Subscription failures are logged and the collector
stays silent.
"""
import json
from typing import Callable, Optional
from urllib.parse import urlparse

from siteinsights.collectors.config import CollectorConfig
from siteinsights.collectors.runtime import DomEvent, PageRuntime, PerformanceEntry
from siteinsights.collectors.transport import BeaconTransport
from siteinsights.core.logging import get_logger

logger = get_logger(__name__)

RUM_METRIC = "RUM_METRIC"
RESOURCE_METRIC = "RESOURCE_METRIC"

LCP = "LCP"
CLS = "CLS"
LONG_TASK = "LONG_TASK"
INTERACTION = "INTERACTION"


def resource_file_name(url: str) -> str:
    path = urlparse(url).path or url
    return path.rstrip("/").rsplit("/", 1)[-1] or url


def safe_subscribe(
    runtime: PageRuntime,
    entry_type: str,
    callback: Callable[[list[PerformanceEntry]], None],
    **options,
) -> bool:
    """Subscribe to an entry stream; False if the runtime refuses."""
    try:
        runtime.observe(entry_type, callback, **options)
        return True
    except Exception as e:
        logger.warning("Performance observer unavailable", entry_type=entry_type, error=str(e))
        return False


class _Collector:
    entry_type: str = ""

    def __init__(self, runtime: PageRuntime, transport: BeaconTransport, config: CollectorConfig) -> None:
        self.runtime = runtime
        self.transport = transport
        self.config = config
        self.active = False

    def start(self) -> bool:
        self.active = safe_subscribe(self.runtime, self.entry_type, self._on_entries, buffered=True)
        return self.active

    def _on_entries(self, entries: list[PerformanceEntry]) -> None:
        for entry in entries:
            try:
                self.handle(entry)
            except Exception as e:
                logger.warning("Dropped performance entry", entry_type=self.entry_type, error=str(e))

    def handle(self, entry: PerformanceEntry) -> None:
        raise NotImplementedError

    def emit(self, metric_type: str, value: float, metadata: Optional[dict] = None) -> None:
        self.transport.send({
            "type": RUM_METRIC,
            "metric_type": metric_type,
            "value": value,
            "page_url": self.runtime.path,
            "metadata": metadata,
        })


class LCPCollector(_Collector):
    entry_type = "largest-contentful-paint"

    def handle(self, entry: PerformanceEntry) -> None:
        self.emit(LCP, entry.start_time / 1000)


class CLSCollector(_Collector):
    """One beacon per layout shift not caused by recent input."""

    entry_type = "layout-shift"

    def handle(self, entry: PerformanceEntry) -> None:
        if entry.had_recent_input:
            return
        self.emit(CLS, entry.value)


class LongTaskCollector(_Collector):
    entry_type = "longtask"

    def handle(self, entry: PerformanceEntry) -> None:
        self.emit(
            LONG_TASK,
            entry.duration,
            {"attribution": json.dumps(entry.attribution), "name": entry.name},
        )


class ResourceCollector(_Collector):
    entry_type = "resource"

    def handle(self, entry: PerformanceEntry) -> None:
        if entry.duration <= self.config.resource_duration_threshold_ms:
            return
        self.transport.send({
            "type": RESOURCE_METRIC,
            "resource_name": resource_file_name(entry.name),
            "resource_type": entry.initiator_type or None,
            "initiator_type": entry.initiator_type or None,
            "duration": entry.duration,
            "transfer_size": entry.transfer_size,
            "is_cache_hit": entry.transfer_size == 0,
            "page_url": self.runtime.path,
        })


class InteractionCollector(_Collector):
    """
    Event-timing entries with an interaction id. Without event timing it
    falls back to a click listener that records nothing.
    """

    entry_type = "event"

    def start(self) -> bool:
        self.active = safe_subscribe(
            self.runtime,
            self.entry_type,
            self._on_entries,
            buffered=True,
            duration_threshold=self.config.interaction_duration_threshold_ms,
        )
        if not self.active:
            self.runtime.add_event_listener("document", "click", self._noop_click)
        return self.active

    @staticmethod
    def _noop_click(event: DomEvent) -> None:
        pass

    def handle(self, entry: PerformanceEntry) -> None:
        if not entry.interaction_id:
            return
        self.emit(
            INTERACTION,
            entry.duration,
            {
                "event": entry.name,
                "input_delay": entry.processing_start - entry.start_time,
                "processing_time": entry.processing_end - entry.processing_start,
                "target": entry.target,
            },
        )


COLLECTORS = (LCPCollector, CLSCollector, LongTaskCollector, ResourceCollector, InteractionCollector)


def start_vitals(runtime: PageRuntime, transport: BeaconTransport, config: CollectorConfig) -> list[_Collector]:
    collectors = []
    for collector_class in COLLECTORS:
        collector = collector_class(runtime, transport, config)
        collector.start()
        collectors.append(collector)
    return collectors
