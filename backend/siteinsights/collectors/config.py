"""
Collector SDK configuration.
"""
from dataclasses import dataclass
from typing import Optional

SESSION_TIMEOUT_MS = 30 * 60 * 1000


@dataclass
class CollectorConfig:
    """
    Endpoints and sampling policy for one page load.

    Without ``ingest_url`` beacons are silently dropped; without
    ``track_url`` the page tracker records nothing.
    """

    ingest_url: Optional[str] = None
    track_url: Optional[str] = None

    session_timeout_ms: int = SESSION_TIMEOUT_MS
    replay_flush_interval_ms: int = 5000
    replay_scroll_throttle_ms: int = 500
    replay_move_throttle_ms: int = 200
    resource_duration_threshold_ms: float = 500
    interaction_duration_threshold_ms: int = 16
    path_poll_interval_ms: int = 1000

    send_timeout: float = 5.0
    send_workers: int = 1  # one worker keeps per-tab delivery order
