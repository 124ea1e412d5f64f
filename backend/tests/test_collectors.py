"""
Tests for the client-side collectors: identity, vitals, replay and transport.
"""
import json

import httpx
import pytest

from siteinsights.collectors.config import SESSION_TIMEOUT_MS, CollectorConfig
from siteinsights.collectors.identity import (
    JOURNEY_ID_KEY,
    JourneyIdentity,
    SessionClock,
    VisitorIdentity,
    generate_fingerprint,
    string_hash,
    to_base36,
)
from siteinsights.collectors.replay import ReplaySampler
from siteinsights.collectors.runtime import (
    DomEvent,
    InMemoryPageRuntime,
    NavigatorInfo,
    PerformanceEntry,
    ScreenInfo,
)
from siteinsights.collectors.transport import BeaconTransport
from siteinsights.collectors.vitals import (
    CLSCollector,
    InteractionCollector,
    LCPCollector,
    LongTaskCollector,
    ResourceCollector,
    resource_file_name,
    start_vitals,
)

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


def make_runtime(**kwargs) -> InMemoryPageRuntime:
    defaults = {
        "navigator": NavigatorInfo(
            user_agent=IPHONE_UA,
            language="es-ES",
            hardware_concurrency=6,
            max_touch_points=5,
            effective_type="4g",
        ),
        "screen": ScreenInfo(width=390, height=844, color_depth=24),
        "timezone_offset": -60,
        "now_ms": 1_700_000_000_000,
    }
    defaults.update(kwargs)
    return InMemoryPageRuntime(**defaults)


class RecordingBeacons:
    """Stands in for BeaconTransport; keeps what collectors send."""

    def __init__(self):
        self.sent = []

    def send(self, payload):
        self.sent.append(payload)


class TestHashing:
    def test_matches_string_hash_code(self):
        assert string_hash("") == 0
        assert string_hash("ab") == 97 * 31 + 98
        assert string_hash("hello world") == 1794106052

    def test_wraps_to_signed_32_bits(self):
        assert string_hash("polygenelubricants") == -2147483648

    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"


class TestVisitorIdentity:
    def test_fingerprint_is_deterministic_for_same_device_and_time(self):
        assert generate_fingerprint(make_runtime()) == generate_fingerprint(make_runtime())

    def test_fingerprint_depends_on_device(self):
        other = make_runtime(screen=ScreenInfo(width=1920, height=1080, color_depth=24))

        assert generate_fingerprint(other) != generate_fingerprint(make_runtime())

    def test_get_or_create_is_idempotent(self):
        runtime = make_runtime()
        identity = VisitorIdentity(runtime)

        first = identity.get_or_create_fingerprint()
        runtime.advance(10_000)
        second = identity.get_or_create_fingerprint()

        assert first == second
        assert first.endswith(to_base36(1_700_000_000_000)[-4:])


class TestSessionClock:
    def test_no_activity_is_expired(self):
        assert SessionClock(make_runtime()).is_expired()

    def test_exact_timeout_is_still_live(self):
        runtime = make_runtime()
        clock = SessionClock(runtime)
        clock.start("s-1")

        runtime.advance(SESSION_TIMEOUT_MS)
        assert not clock.is_expired()

        runtime.advance(1)
        assert clock.is_expired()

    def test_touch_extends_the_session(self):
        runtime = make_runtime()
        clock = SessionClock(runtime)
        clock.start("s-1")

        runtime.advance(20 * 60 * 1000)
        clock.touch()
        runtime.advance(20 * 60 * 1000)

        assert not clock.is_expired()
        assert clock.duration_seconds() == 20 * 60

    def test_clear(self):
        runtime = make_runtime()
        clock = SessionClock(runtime)
        clock.start("s-1")

        clock.clear()

        assert clock.session_id is None
        assert clock.is_expired()


class TestJourneyIdentity:
    def test_created_once_per_tab(self):
        runtime = make_runtime()
        journey = JourneyIdentity(runtime)
        started = []

        first = journey.get_or_create(on_start=started.append)
        second = journey.get_or_create(on_start=started.append)

        assert first == second
        assert started == [first]
        assert runtime.session_storage[JOURNEY_ID_KEY] == first


class TestVitals:
    @pytest.fixture
    def runtime(self):
        return make_runtime(path="/films")

    @pytest.fixture
    def beacons(self):
        return RecordingBeacons()

    def test_lcp_in_seconds(self, runtime, beacons):
        LCPCollector(runtime, beacons, CollectorConfig()).start()

        runtime.emit_entries("largest-contentful-paint", [PerformanceEntry("largest-contentful-paint", start_time=2500)])

        assert beacons.sent == [
            {"type": "RUM_METRIC", "metric_type": "LCP", "value": 2.5, "page_url": "/films", "metadata": None}
        ]

    def test_cls_ignores_shifts_after_input(self, runtime, beacons):
        CLSCollector(runtime, beacons, CollectorConfig()).start()

        runtime.emit_entries("layout-shift", [
            PerformanceEntry("layout-shift", value=0.3, had_recent_input=True),
            PerformanceEntry("layout-shift", value=0.05),
        ])
        runtime.emit_entries("layout-shift", [PerformanceEntry("layout-shift", value=0.4, had_recent_input=True)])
        runtime.emit_entries("layout-shift", [PerformanceEntry("layout-shift", value=0.02)])

        values = [b["value"] for b in beacons.sent]
        assert values == [pytest.approx(0.05), pytest.approx(0.02)]

    def test_cls_reports_each_shift_once(self, runtime, beacons):
        CLSCollector(runtime, beacons, CollectorConfig()).start()

        runtime.emit_entries("layout-shift", [
            PerformanceEntry("layout-shift", value=0.1),
            PerformanceEntry("layout-shift", value=0.2),
        ])
        runtime.emit_entries("layout-shift", [PerformanceEntry("layout-shift", value=0.05)])

        assert [b["metric_type"] for b in beacons.sent] == ["CLS", "CLS", "CLS"]
        assert [b["value"] for b in beacons.sent] == [
            pytest.approx(0.1), pytest.approx(0.2), pytest.approx(0.05)
        ]

    @pytest.mark.parametrize("duration, emitted", [(499, False), (500, False), (501, True)])
    def test_resource_threshold(self, runtime, beacons, duration, emitted):
        ResourceCollector(runtime, beacons, CollectorConfig()).start()

        runtime.emit_entries("resource", [
            PerformanceEntry(
                "resource",
                name="https://cdn.example.com/img/hero.jpg?v=2",
                duration=duration,
                initiator_type="img",
                transfer_size=0,
            )
        ])

        assert bool(beacons.sent) is emitted
        if emitted:
            beacon = beacons.sent[0]
            assert beacon["type"] == "RESOURCE_METRIC"
            assert beacon["resource_name"] == "hero.jpg"
            assert beacon["is_cache_hit"] is True

    def test_resource_file_name(self):
        assert resource_file_name("https://example.com/static/app.js") == "app.js"
        assert resource_file_name("https://fonts.example.com/") == "https://fonts.example.com/"

    def test_long_task_attribution_is_text(self, runtime, beacons):
        LongTaskCollector(runtime, beacons, CollectorConfig()).start()

        runtime.emit_entries("longtask", [
            PerformanceEntry("longtask", name="self", duration=120, attribution=[{"containerType": "window"}])
        ])

        beacon = beacons.sent[0]
        assert beacon["metric_type"] == "LONG_TASK"
        assert beacon["value"] == 120
        assert json.loads(beacon["metadata"]["attribution"]) == [{"containerType": "window"}]

    def test_interactions_need_an_interaction_id(self, runtime, beacons):
        InteractionCollector(runtime, beacons, CollectorConfig()).start()

        runtime.emit_entries("event", [
            PerformanceEntry("event", name="mousemove", duration=40),
            PerformanceEntry(
                "event",
                name="click",
                duration=96,
                start_time=1000,
                processing_start=1030,
                processing_end=1080,
                interaction_id=7,
                target="button",
            ),
        ])

        [beacon] = beacons.sent
        assert beacon["metric_type"] == "INTERACTION"
        assert beacon["value"] == 96
        assert beacon["metadata"]["input_delay"] == 30
        assert beacon["metadata"]["processing_time"] == 50

    def test_interaction_falls_back_to_click_listener(self, beacons):
        runtime = make_runtime(unsupported_entry_types=("event",))
        collector = InteractionCollector(runtime, beacons, CollectorConfig())

        assert collector.start() is False
        assert runtime.listener_count("document", "click") == 1
        runtime.dispatch("document", DomEvent("click"))
        assert beacons.sent == []

    def test_unsupported_streams_are_silent(self, beacons):
        runtime = make_runtime(
            unsupported_entry_types=("largest-contentful-paint", "layout-shift", "longtask", "resource", "event")
        )

        collectors = start_vitals(runtime, beacons, CollectorConfig())

        assert [c.active for c in collectors] == [False] * 5
        assert beacons.sent == []


class TestReplaySampler:
    @pytest.fixture
    def runtime(self):
        runtime = make_runtime(now_ms=0)
        runtime.session_storage[JOURNEY_ID_KEY] = "j-1"
        return runtime

    def test_scroll_and_move_are_throttled(self, runtime):
        beacons = RecordingBeacons()
        sampler = ReplaySampler(runtime, beacons, CollectorConfig())
        sampler.start()

        runtime.scroll_to(100)
        runtime.advance(500)
        runtime.scroll_to(200)
        runtime.advance(1)
        runtime.scroll_to(300)
        runtime.dispatch("document", DomEvent("mousemove", 1, 1))
        runtime.advance(200)
        runtime.dispatch("document", DomEvent("mousemove", 2, 2))
        runtime.advance(1)
        runtime.dispatch("document", DomEvent("mousemove", 3, 3))

        assert [r["y"] for r in sampler.buffer if r["t"] == "s"] == [100, 300]
        assert [r["x"] for r in sampler.buffer if r["t"] == "m"] == [1, 3]

    def test_clicks_are_never_throttled(self, runtime):
        sampler = ReplaySampler(runtime, RecordingBeacons(), CollectorConfig())
        sampler.start()

        for x in range(3):
            runtime.dispatch("document", DomEvent("click", x, 0, "BUTTON"))

        assert [r["x"] for r in sampler.buffer] == [0, 1, 2]

    def test_flushes_only_non_empty_buffers(self, runtime):
        beacons = RecordingBeacons()
        sampler = ReplaySampler(runtime, beacons, CollectorConfig())
        sampler.start()

        runtime.dispatch("document", DomEvent("click", 5, 5, "A"))
        runtime.advance(5000)
        runtime.advance(5000)

        [chunk] = beacons.sent
        assert chunk["type"] == "REPLAY_CHUNK"
        assert chunk["journey_id"] == "j-1"
        assert len(chunk["events_chunk"]) == 1
        assert sampler.buffer == []

    def test_stop_flushes_and_detaches(self, runtime):
        beacons = RecordingBeacons()
        sampler = ReplaySampler(runtime, beacons, CollectorConfig())
        sampler.start()
        runtime.dispatch("document", DomEvent("click"))

        sampler.stop()

        assert len(beacons.sent) == 1
        assert runtime.listener_count("document", "click") == 0
        assert not sampler.running


class TestBeaconTransport:
    def test_enrichment(self):
        runtime = make_runtime(path="/plans")
        runtime.session_storage[JOURNEY_ID_KEY] = "j-9"
        transport = BeaconTransport(runtime, CollectorConfig())

        payload = transport.enrich({"type": "RUM_METRIC", "metric_type": "CLS", "value": 0.1, "metadata": None})

        assert payload["journey_id"] == "j-9"
        assert payload["device_type"] == "mobile"
        assert payload["network_type"] == "4g"
        assert payload["browser"] == "Mobile Safari"
        assert payload["metadata"] == {}
        assert payload["page_url"] == "/plans"

    def test_unknown_network(self):
        runtime = make_runtime(navigator=NavigatorInfo(user_agent=IPHONE_UA))

        assert BeaconTransport(runtime, CollectorConfig()).enrich({})["network_type"] == "unknown"

    def test_no_endpoint_is_a_silent_noop(self):
        transport = BeaconTransport(make_runtime(), CollectorConfig())

        transport.send({"type": "RUM_METRIC"})
        transport.shutdown()

    def test_delivers_to_ingest_url(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        config = CollectorConfig(ingest_url="https://api.example.com/api/rum/ingest")
        transport = BeaconTransport(make_runtime(), config, transport=httpx.MockTransport(handler))

        transport.send({"type": "RUM_METRIC", "metric_type": "LCP", "value": 1.2})
        transport.send({"type": "RUM_METRIC", "metric_type": "CLS", "value": 0.0})
        transport.shutdown()

        assert [b["metric_type"] for b in received] == ["LCP", "CLS"]

    def test_failures_do_not_propagate(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        config = CollectorConfig(ingest_url="https://api.example.com/api/rum/ingest")
        transport = BeaconTransport(make_runtime(), config, transport=httpx.MockTransport(handler))

        transport.send({"type": "RUM_METRIC", "metric_type": "LCP", "value": 1.2})
        transport.flush()
        transport.shutdown()
