"""
Outbound delivery for the collector SDK.

``BeaconTransport`` is at-most-once and non-blocking: ``send`` hands the
payload to a small worker pool and returns immediately. There is no retry
on the send path and a failed delivery is only logged.
"""
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Optional

import httpx

from siteinsights.collectors.config import CollectorConfig
from siteinsights.collectors.environment import browser_name, device_type, network_type
from siteinsights.collectors.identity import JourneyIdentity
from siteinsights.collectors.runtime import PageRuntime
from siteinsights.core.logging import get_logger

logger = get_logger(__name__)


class _Sender:
    """Shared HTTP client and worker pool."""

    def __init__(
        self,
        config: CollectorConfig,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(timeout=config.send_timeout, transport=transport)
        self._pool = ThreadPoolExecutor(
            max_workers=config.send_workers, thread_name_prefix="siteinsights-send"
        )
        self._pending: list[Future] = []

    def _post(self, url: str, payload: dict[str, Any]) -> Optional[dict[str, Any]]:
        response = self._client.post(url, json=payload)
        response.raise_for_status()
        return response.json() if response.content else None

    def submit(self, url: str, payload: dict[str, Any]) -> Future:
        future = self._pool.submit(self._post, url, payload)
        future.add_done_callback(_log_failure)
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(future)
        return future

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight deliveries; used at shutdown and by tests."""
        for future in list(self._pending):
            try:
                future.result(timeout=timeout)
            except Exception:
                pass  # already logged by _log_failure
        self._pending.clear()

    def shutdown(self) -> None:
        self.flush()
        self._pool.shutdown(wait=True)
        self._client.close()


def _log_failure(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.warning("Beacon delivery failed", error=str(error))


class BeaconTransport:
    """Fire-and-forget delivery of RUM beacons to the ingestion endpoint."""

    def __init__(
        self,
        runtime: PageRuntime,
        config: CollectorConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.runtime = runtime
        self.config = config
        self.journey = JourneyIdentity(runtime)
        self._sender = _Sender(config, transport) if config.ingest_url else None

    def enrich(self, payload: dict[str, Any]) -> dict[str, Any]:
        user_agent = self.runtime.navigator.user_agent
        enriched = dict(payload)
        journey_id = self.journey.journey_id
        if journey_id and not enriched.get("journey_id"):
            enriched["journey_id"] = journey_id
        enriched.setdefault("page_url", self.runtime.path)
        enriched["device_type"] = device_type(user_agent)
        enriched["network_type"] = network_type(self.runtime)
        enriched["browser"] = browser_name(user_agent)
        if enriched.get("metadata") is None:
            enriched["metadata"] = {}
        return enriched

    def send(self, payload: dict[str, Any]) -> None:
        if self._sender is None:
            return
        try:
            self._sender.submit(self.config.ingest_url, self.enrich(payload))
        except Exception as e:
            logger.warning("Beacon not queued", type=payload.get("type"), error=str(e))

    def flush(self, timeout: Optional[float] = None) -> None:
        if self._sender is not None:
            self._sender.flush(timeout)

    def shutdown(self) -> None:
        if self._sender is not None:
            self._sender.shutdown()
            self._sender = None


class TrackClient:
    """
    Client for the page-tracker endpoint.

    ``request`` waits for the reply and is used only where the tracker
    needs an allocated id; ``send`` is fire-and-forget like beacons.
    """

    def __init__(
        self,
        config: CollectorConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config
        self._sender = _Sender(config, transport) if config.track_url else None

    @property
    def enabled(self) -> bool:
        return self._sender is not None

    def request(self, action: str, data: dict[str, Any]) -> Optional[dict[str, Any]]:
        if self._sender is None:
            return None
        future = self._sender.submit(self.config.track_url, {"action": action, "data": data})
        try:
            return future.result(timeout=self.config.send_timeout + 1)
        except Exception as e:
            logger.warning("Track request failed", action=action, error=str(e))
            return None

    def send(self, action: str, data: dict[str, Any]) -> None:
        if self._sender is None:
            return
        try:
            self._sender.submit(self.config.track_url, {"action": action, "data": data})
        except Exception as e:
            logger.warning("Track call not queued", action=action, error=str(e))

    def flush(self, timeout: Optional[float] = None) -> None:
        if self._sender is not None:
            self._sender.flush(timeout)

    def shutdown(self) -> None:
        if self._sender is not None:
            self._sender.shutdown()
            self._sender = None
