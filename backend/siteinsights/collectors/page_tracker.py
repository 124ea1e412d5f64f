"""
CMS page tracker: visitors, sessions, page views and click events.

The tracker talks to the ``/api/track`` endpoint. Only visitor and session
creation wait for a reply (the server allocates the ids); every other call
is fire-and-forget.
"""
from typing import Any, Optional

from siteinsights.collectors import environment
from siteinsights.collectors.config import CollectorConfig
from siteinsights.collectors.identity import SessionClock, VisitorIdentity
from siteinsights.collectors.runtime import DomEvent, PageRuntime
from siteinsights.collectors.transport import TrackClient
from siteinsights.core.logging import get_logger

logger = get_logger(__name__)


class PageTracker:
    def __init__(self, runtime: PageRuntime, config: CollectorConfig, client: TrackClient) -> None:
        self.runtime = runtime
        self.config = config
        self.client = client
        self.visitor = VisitorIdentity(runtime)
        self.clock = SessionClock(runtime, config.session_timeout_ms)

        self.current_path: Optional[str] = None
        self.page_started_at: Optional[float] = None
        self.max_scroll_depth = 0
        self._last_backfill: Optional[dict[str, Any]] = None
        self._poll: Optional[int] = None
        self._listeners = (
            ("window", "scroll", self._on_scroll),
            ("document", "visibilitychange", self._on_visibility_change),
            ("window", "beforeunload", self._on_unload),
        )

    # --- lifecycle ----------------------------------------------------------

    def initialize(self) -> bool:
        """Register the visitor, open a session and record the landing page."""
        if not self.client.enabled:
            return False
        if not self.ensure_session():
            return False

        for target, event_type, callback in self._listeners:
            self.runtime.add_event_listener(target, event_type, callback)
        self._poll = self.runtime.set_interval(self._check_path, self.config.path_poll_interval_ms)
        self.track_page_view()
        return True

    def shutdown(self) -> None:
        self.backfill_page_view()
        if self._poll is not None:
            self.runtime.clear_interval(self._poll)
            self._poll = None
        for target, event_type, callback in self._listeners:
            self.runtime.remove_event_listener(target, event_type, callback)

    # --- identity -----------------------------------------------------------

    def register_visitor(self) -> Optional[str]:
        ua = self.runtime.navigator.user_agent
        reply = self.client.request("create_visitor", {
            "fingerprint": self.visitor.get_or_create_fingerprint(),
            "device_type": environment.device_type(ua),
            "browser": environment.browser_name(ua),
            "os": environment.os_name(ua),
            "screen_resolution": environment.screen_resolution(self.runtime),
            "language": self.runtime.navigator.language or None,
            "timezone": self.runtime.timezone,
        })
        if reply and reply.get("visitor_id"):
            self.visitor.visitor_id = reply["visitor_id"]
        return self.visitor.visitor_id

    def ensure_session(self) -> Optional[str]:
        """Current session id, starting a new session if the old one lapsed."""
        if not self.clock.is_expired() and self.clock.session_id:
            return self.clock.session_id

        if self.clock.session_id:
            self._end_stale_session()
        self.clock.clear()

        visitor_id = self.register_visitor()
        if not visitor_id:
            return None
        reply = self.client.request("create_session", {
            "visitor_id": visitor_id,
            "entry_page": self.runtime.path,
            "referrer": environment.external_referrer(self.runtime),
            **environment.utm_params(self.runtime),
        })
        if not reply or not reply.get("session_id"):
            return None
        self.clock.start(reply["session_id"])
        logger.debug("Session started", session_id=reply["session_id"])
        return self.clock.session_id

    def _end_stale_session(self) -> None:
        self.client.send("end_session", {
            "session_id": self.clock.session_id,
            "exit_page": self.current_path,
            "duration_seconds": self.clock.duration_seconds(),
        })

    # --- page views ---------------------------------------------------------

    def track_page_view(self) -> None:
        if self.current_path is not None:
            self.backfill_page_view()
        session_id = self.ensure_session()
        if not session_id:
            return

        referrer_path = self.current_path or environment.internal_referrer_path(self.runtime)
        self.current_path = self.runtime.path
        self.page_started_at = self.runtime.now_ms()
        self.max_scroll_depth = 0
        self._record_scroll()

        self.client.send("track_pageview", {
            "session_id": session_id,
            "visitor_id": self.visitor.visitor_id,
            "page_path": self.current_path,
            "page_title": self.runtime.title or None,
            "referrer_path": referrer_path,
        })
        self.clock.touch()

    def backfill_page_view(self) -> None:
        """Send time on page and max scroll depth for the current page."""
        if self.current_path is None or self.page_started_at is None:
            return
        session_id = self.clock.session_id
        if not session_id:
            return
        seconds = int((self.runtime.now_ms() - self.page_started_at) // 1000)
        update = {
            "session_id": session_id,
            "page_path": self.current_path,
            "time_on_page": max(0, seconds),
            "scroll_depth": self.max_scroll_depth,
        }
        if update == self._last_backfill:
            return
        self._last_backfill = update
        self.client.send("update_pageview", update)

    def _check_path(self) -> None:
        if self.runtime.path != self.current_path:
            self.track_page_view()

    def _record_scroll(self) -> None:
        height = self.runtime.scroll_height
        if height <= 0:
            return
        depth = round((self.runtime.scroll_y + self.runtime.inner_height) / height * 100)
        self.max_scroll_depth = max(self.max_scroll_depth, min(100, depth))

    def _on_scroll(self, event: DomEvent) -> None:
        self._record_scroll()

    def _on_visibility_change(self, event: DomEvent) -> None:
        if self.runtime.visibility_state == "hidden":
            self.backfill_page_view()

    def _on_unload(self, event: DomEvent) -> None:
        self.backfill_page_view()

    # --- events -------------------------------------------------------------

    def track_event(
        self,
        event_type: str,
        element_id: Optional[str] = None,
        element_text: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        session_id = self.ensure_session()
        if not session_id:
            return
        self.client.send("track_event", {
            "session_id": session_id,
            "visitor_id": self.visitor.visitor_id,
            "page_path": self.runtime.path,
            "event_type": event_type,
            "element_id": element_id,
            "element_text": element_text,
            "metadata": metadata,
        })
        self.clock.touch()

    def track_whatsapp_click(self, element_id: Optional[str] = None, **metadata: Any) -> None:
        self.track_event("whatsapp_click", element_id, "WhatsApp", metadata or None)

    def track_form_submit(self, form_name: str, **metadata: Any) -> None:
        self.track_event("form_submit", form_name, None, metadata or None)

    def track_film_play(self, film_title: str, film_id: Optional[str] = None) -> None:
        self.track_event("film_play", film_id, film_title)

    def track_gallery_open(self, gallery_title: str, gallery_id: Optional[str] = None) -> None:
        self.track_event("gallery_open", gallery_id, gallery_title)

    def track_service_view(self, service_name: str) -> None:
        self.track_event("service_view", None, service_name)

    def track_plan_view(self, plan_name: str, plan_id: Optional[str] = None) -> None:
        self.track_event("plan_view", plan_id, plan_name)

    def track_link_click(self, href: str, text: Optional[str] = None) -> None:
        self.track_event("link_click", None, text, {"href": href})
