"""
Visitor, session and journey identity.

- the visitor fingerprint lives in durable (local) storage and is reused
  once set
- the CMS session id lives in tab storage and expires after 30 minutes
  without activity
- the RUM journey id lives in tab storage for the tab's lifetime and its
  creation is reported as ``JOURNEY_START``
"""
import uuid
from typing import Callable, Optional

from siteinsights.collectors.config import SESSION_TIMEOUT_MS
from siteinsights.collectors.runtime import PageRuntime

VISITOR_ID_KEY = "si_visitor_id"
FINGERPRINT_KEY = "si_fingerprint"
SESSION_ID_KEY = "si_session_id"
SESSION_START_KEY = "si_session_start"
LAST_ACTIVITY_KEY = "si_last_activity"
JOURNEY_ID_KEY = "rum_journey_id"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def string_hash(text: str) -> int:
    """Signed 32-bit rolling hash (h * 31 + c) over UTF-16 code units."""
    h = 0
    encoded = text.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        code = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + code) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def fingerprint_components(runtime: PageRuntime) -> list[str]:
    nav = runtime.navigator
    screen = runtime.screen
    return [
        nav.user_agent,
        nav.language,
        str(runtime.timezone_offset),
        f"{screen.width}x{screen.height}",
        "" if screen.color_depth is None else str(screen.color_depth),
        "" if nav.hardware_concurrency is None else str(nav.hardware_concurrency),
        "" if nav.max_touch_points is None else str(nav.max_touch_points),
    ]


def generate_fingerprint(runtime: PageRuntime) -> str:
    """Hash of the device tuple plus a time suffix."""
    digest = to_base36(abs(string_hash("|".join(fingerprint_components(runtime)))))
    return digest + to_base36(int(runtime.now_ms()))[-4:]


class VisitorIdentity:
    """Durable fingerprint and server-allocated visitor id."""

    def __init__(self, runtime: PageRuntime) -> None:
        self.runtime = runtime

    def get_or_create_fingerprint(self) -> str:
        storage = self.runtime.local_storage
        fingerprint = storage.get(FINGERPRINT_KEY)
        if not fingerprint:
            fingerprint = generate_fingerprint(self.runtime)
            storage[FINGERPRINT_KEY] = fingerprint
        return fingerprint

    @property
    def visitor_id(self) -> Optional[str]:
        return self.runtime.local_storage.get(VISITOR_ID_KEY)

    @visitor_id.setter
    def visitor_id(self, value: str) -> None:
        self.runtime.local_storage[VISITOR_ID_KEY] = value


class SessionClock:
    """
    Inactivity timeout for the CMS session.

    A session is expired iff more than ``timeout_ms`` has passed since the
    last activity; exactly ``timeout_ms`` is still live. No recorded
    activity counts as expired.
    """

    def __init__(self, runtime: PageRuntime, timeout_ms: int = SESSION_TIMEOUT_MS) -> None:
        self.runtime = runtime
        self.timeout_ms = timeout_ms

    @property
    def storage(self):
        return self.runtime.session_storage

    @property
    def session_id(self) -> Optional[str]:
        return self.storage.get(SESSION_ID_KEY)

    @property
    def last_activity(self) -> Optional[float]:
        raw = self.storage.get(LAST_ACTIVITY_KEY)
        return float(raw) if raw else None

    @property
    def started_at(self) -> Optional[float]:
        raw = self.storage.get(SESSION_START_KEY)
        return float(raw) if raw else None

    def is_expired(self, now_ms: Optional[float] = None) -> bool:
        last = self.last_activity
        if last is None:
            return True
        now = self.runtime.now_ms() if now_ms is None else now_ms
        return now - last > self.timeout_ms

    def start(self, session_id: str) -> None:
        now = self.runtime.now_ms()
        self.storage[SESSION_ID_KEY] = session_id
        self.storage[SESSION_START_KEY] = str(now)
        self.storage[LAST_ACTIVITY_KEY] = str(now)

    def touch(self) -> None:
        self.storage[LAST_ACTIVITY_KEY] = str(self.runtime.now_ms())

    def duration_seconds(self) -> int:
        """Seconds from session start to last activity."""
        start, last = self.started_at, self.last_activity
        if start is None or last is None:
            return 0
        return max(0, int((last - start) // 1000))

    def clear(self) -> None:
        for key in (SESSION_ID_KEY, SESSION_START_KEY, LAST_ACTIVITY_KEY):
            self.storage.pop(key, None)


class JourneyIdentity:
    """Tab-scoped journey id for RUM beacons."""

    def __init__(self, runtime: PageRuntime) -> None:
        self.runtime = runtime

    @property
    def journey_id(self) -> Optional[str]:
        return self.runtime.session_storage.get(JOURNEY_ID_KEY)

    def get_or_create(self, on_start: Optional[Callable[[str], None]] = None) -> str:
        journey_id = self.journey_id
        if journey_id:
            return journey_id
        journey_id = str(uuid.uuid4())
        self.runtime.session_storage[JOURNEY_ID_KEY] = journey_id
        if on_start is not None:
            on_start(journey_id)
        return journey_id
