"""
The page runtime the collectors run against.

A runtime exposes what a browser page offers: performance-entry streams,
DOM-style event listeners, timers, location, storage areas and navigator
hints. ``InMemoryPageRuntime`` is a headless implementation that a harness
drives explicitly; it is also what the tests use.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Callable, MutableMapping, Optional, Protocol

EntryCallback = Callable[[list["PerformanceEntry"]], None]
EventCallback = Callable[["DomEvent"], None]


@dataclass
class PerformanceEntry:
    """A performance timeline entry; fields not used by an entry type stay at their defaults."""

    entry_type: str
    name: str = ""
    start_time: float = 0.0  # ms since navigation start
    duration: float = 0.0  # ms

    # layout-shift
    value: float = 0.0
    had_recent_input: bool = False

    # event timing
    interaction_id: int = 0
    processing_start: float = 0.0
    processing_end: float = 0.0
    target: Optional[str] = None

    # resource timing
    initiator_type: str = ""
    transfer_size: int = 0

    # longtask
    attribution: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class DomEvent:
    type: str
    client_x: int = 0
    client_y: int = 0
    target_tag: str = ""


@dataclass
class NavigatorInfo:
    user_agent: str = ""
    language: str = ""
    hardware_concurrency: Optional[int] = None
    max_touch_points: Optional[int] = None
    effective_type: Optional[str] = None  # navigator.connection.effectiveType


@dataclass
class ScreenInfo:
    width: int = 0
    height: int = 0
    color_depth: Optional[int] = None


class PageRuntime(Protocol):
    navigator: NavigatorInfo
    screen: ScreenInfo
    local_storage: MutableMapping[str, str]
    session_storage: MutableMapping[str, str]

    @property
    def path(self) -> str: ...

    @property
    def search(self) -> str: ...

    @property
    def hostname(self) -> str: ...

    @property
    def referrer(self) -> str: ...

    @property
    def title(self) -> str: ...

    @property
    def timezone(self) -> str: ...

    @property
    def timezone_offset(self) -> int: ...

    @property
    def visibility_state(self) -> str: ...

    @property
    def scroll_y(self) -> float: ...

    @property
    def inner_height(self) -> float: ...

    @property
    def scroll_height(self) -> float: ...

    def now_ms(self) -> float: ...

    def observe(self, entry_type: str, callback: EntryCallback, **options: Any) -> None:
        """Subscribe to a performance entry type; raises if unsupported."""

    def add_event_listener(self, target: str, event_type: str, callback: EventCallback) -> None: ...

    def remove_event_listener(self, target: str, event_type: str, callback: EventCallback) -> None: ...

    def set_interval(self, callback: Callable[[], None], interval_ms: float) -> int: ...

    def clear_interval(self, handle: int) -> None: ...


class UnsupportedEntryType(Exception):
    pass


@dataclass
class _Interval:
    callback: Callable[[], None]
    interval_ms: float
    next_due: float


class InMemoryPageRuntime:
    """
    Headless runtime. Nothing happens on its own: the harness emits entries,
    dispatches events, navigates and advances the clock.
    """

    def __init__(
        self,
        path: str = "/",
        *,
        search: str = "",
        hostname: str = "example.com",
        referrer: str = "",
        title: str = "",
        navigator: Optional[NavigatorInfo] = None,
        screen: Optional[ScreenInfo] = None,
        timezone: str = "UTC",
        timezone_offset: int = 0,
        unsupported_entry_types: tuple[str, ...] = (),
        now_ms: Optional[float] = None,
    ) -> None:
        self._path = path
        self._search = search
        self._hostname = hostname
        self._referrer = referrer
        self._title = title
        self._timezone = timezone
        self._timezone_offset = timezone_offset
        self.navigator = navigator or NavigatorInfo()
        self.screen = screen or ScreenInfo()
        self.local_storage: dict[str, str] = {}
        self.session_storage: dict[str, str] = {}
        self.unsupported_entry_types = set(unsupported_entry_types)

        self.visibility = "visible"
        self.scroll_position = 0.0
        self.viewport_height = 800.0
        self.document_height = 800.0

        self._now = now_ms if now_ms is not None else time.time() * 1000
        self._observers: dict[str, list[EntryCallback]] = {}
        self._listeners: dict[tuple[str, str], list[EventCallback]] = {}
        self._intervals: dict[int, _Interval] = {}
        self._next_handle = 1

    # --- page state ---------------------------------------------------------

    @property
    def path(self) -> str:
        return self._path

    @property
    def search(self) -> str:
        return self._search

    @property
    def hostname(self) -> str:
        return self._hostname

    @property
    def referrer(self) -> str:
        return self._referrer

    @property
    def title(self) -> str:
        return self._title

    @property
    def timezone(self) -> str:
        return self._timezone

    @property
    def timezone_offset(self) -> int:
        return self._timezone_offset

    @property
    def visibility_state(self) -> str:
        return self.visibility

    @property
    def scroll_y(self) -> float:
        return self.scroll_position

    @property
    def inner_height(self) -> float:
        return self.viewport_height

    @property
    def scroll_height(self) -> float:
        return self.document_height

    def now_ms(self) -> float:
        return self._now

    # --- subscriptions ------------------------------------------------------

    def observe(self, entry_type: str, callback: EntryCallback, **options: Any) -> None:
        if entry_type in self.unsupported_entry_types:
            raise UnsupportedEntryType(entry_type)
        self._observers.setdefault(entry_type, []).append(callback)

    def add_event_listener(self, target: str, event_type: str, callback: EventCallback) -> None:
        self._listeners.setdefault((target, event_type), []).append(callback)

    def remove_event_listener(self, target: str, event_type: str, callback: EventCallback) -> None:
        callbacks = self._listeners.get((target, event_type), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def listener_count(self, target: str, event_type: str) -> int:
        return len(self._listeners.get((target, event_type), []))

    def set_interval(self, callback: Callable[[], None], interval_ms: float) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._intervals[handle] = _Interval(callback, interval_ms, self._now + interval_ms)
        return handle

    def clear_interval(self, handle: int) -> None:
        self._intervals.pop(handle, None)

    # --- driving ------------------------------------------------------------

    def emit_entries(self, entry_type: str, entries: list[PerformanceEntry]) -> None:
        for callback in list(self._observers.get(entry_type, [])):
            callback(entries)

    def dispatch(self, target: str, event: DomEvent) -> None:
        for callback in list(self._listeners.get((target, event.type), [])):
            callback(event)

    def scroll_to(self, y: float) -> None:
        self.scroll_position = y
        self.dispatch("window", DomEvent("scroll"))

    def navigate(self, path: str, title: str = "") -> None:
        """Client-side route change: only the location changes."""
        self._path = path
        self._title = title or self._title

    def hide(self) -> None:
        self.visibility = "hidden"
        self.dispatch("document", DomEvent("visibilitychange"))

    def unload(self) -> None:
        self.dispatch("window", DomEvent("beforeunload"))

    def advance(self, ms: float) -> None:
        """Move the clock forward, firing due intervals in order."""
        target = self._now + ms
        while True:
            due = [
                (interval.next_due, handle)
                for handle, interval in self._intervals.items()
                if interval.next_due <= target
            ]
            if not due:
                break
            next_due, handle = min(due)
            self._now = next_due
            interval = self._intervals[handle]
            interval.next_due += interval.interval_ms
            interval.callback()
        self._now = target
