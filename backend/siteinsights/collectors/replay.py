"""
Lightweight session replay sampling.
"""
from typing import Any, Optional

from siteinsights.collectors.config import CollectorConfig
from siteinsights.collectors.identity import JourneyIdentity
from siteinsights.collectors.runtime import DomEvent, PageRuntime
from siteinsights.collectors.transport import BeaconTransport
from siteinsights.core.logging import get_logger

logger = get_logger(__name__)

REPLAY_CHUNK = "REPLAY_CHUNK"


class ReplaySampler:
    """
    Buffers scroll, pointer-move and click records and flushes them as one
    ``REPLAY_CHUNK`` per interval. Scroll and move are throttled; clicks are
    always kept. An empty buffer is never sent.
    """

    def __init__(self, runtime: PageRuntime, transport: BeaconTransport, config: CollectorConfig) -> None:
        self.runtime = runtime
        self.transport = transport
        self.config = config
        self.journey = JourneyIdentity(runtime)
        self.buffer: list[dict[str, Any]] = []
        self._last_scroll: Optional[float] = None
        self._last_move: Optional[float] = None
        self._interval: Optional[int] = None
        self._listeners = (
            ("window", "scroll", self._on_scroll),
            ("document", "mousemove", self._on_move),
            ("document", "click", self._on_click),
        )

    @property
    def running(self) -> bool:
        return self._interval is not None

    def start(self) -> None:
        if self.running:
            return
        try:
            for target, event_type, callback in self._listeners:
                self.runtime.add_event_listener(target, event_type, callback)
            self._interval = self.runtime.set_interval(self.flush, self.config.replay_flush_interval_ms)
        except Exception as e:
            logger.warning("Replay sampler unavailable", error=str(e))

    def _throttled(self, last: Optional[float], window_ms: int) -> bool:
        return last is not None and self.runtime.now_ms() - last <= window_ms

    def _on_scroll(self, event: DomEvent) -> None:
        if self._throttled(self._last_scroll, self.config.replay_scroll_throttle_ms):
            return
        self._last_scroll = self.runtime.now_ms()
        self.buffer.append({"t": "s", "y": self.runtime.scroll_y, "ts": self._last_scroll})

    def _on_move(self, event: DomEvent) -> None:
        if self._throttled(self._last_move, self.config.replay_move_throttle_ms):
            return
        self._last_move = self.runtime.now_ms()
        self.buffer.append({"t": "m", "x": event.client_x, "y": event.client_y, "ts": self._last_move})

    def _on_click(self, event: DomEvent) -> None:
        self.buffer.append({
            "t": "c",
            "x": event.client_x,
            "y": event.client_y,
            "el": event.target_tag,
            "ts": self.runtime.now_ms(),
        })

    def flush(self) -> None:
        if not self.buffer:
            return
        chunk, self.buffer = self.buffer, []
        journey_id = self.journey.journey_id
        if not journey_id:
            return
        self.transport.send({
            "type": REPLAY_CHUNK,
            "journey_id": journey_id,
            "events_chunk": chunk,
            "page_url": self.runtime.path,
        })

    def stop(self) -> None:
        if self._interval is not None:
            self.runtime.clear_interval(self._interval)
            self._interval = None
        for target, event_type, callback in self._listeners:
            self.runtime.remove_event_listener(target, event_type, callback)
        self.flush()
